"""
Core configuration for the strategy backtester.

This package contains:
- Strategy parameter records
- Environment-driven runtime settings
- Logging setup
"""

from .config import INITIAL_CAPITAL, Settings, StrategyConfig, settings
from .log_setup import setup_logging

__all__ = [
    'INITIAL_CAPITAL',
    'Settings',
    'StrategyConfig',
    'settings',
    'setup_logging',
]
