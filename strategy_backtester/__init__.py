"""
Strategy Backtester
Indicator-driven long-only backtesting and parameter grid search
"""

from .core.config import StrategyConfig
from .data_structures import (
    BacktestMetrics,
    BacktestResult,
    OHLCSeries,
    OptimizationResult,
    Signal,
    SignalType,
    Timeframe,
    Trade,
)
from .data_utils import load_csv, resample_ohlc, validate_series
from .indicators import compute_indicators
from .optimizer import OptimizationCancelled, parse_range_spec, run_optimization
from .performance_metrics import PerformanceMetrics, buy_and_hold
from .portfolio_simulator import PortfolioSimulator, run_backtest
from .signals import generate_signals

__version__ = "0.1.0"
__all__ = [
    "BacktestMetrics",
    "BacktestResult",
    "OHLCSeries",
    "OptimizationCancelled",
    "OptimizationResult",
    "PerformanceMetrics",
    "PortfolioSimulator",
    "Signal",
    "SignalType",
    "StrategyConfig",
    "Timeframe",
    "Trade",
    "buy_and_hold",
    "compute_indicators",
    "generate_signals",
    "load_csv",
    "parse_range_spec",
    "resample_ohlc",
    "run_backtest",
    "run_optimization",
    "validate_series",
]
