"""
Configuration module for the strategy backtester.

This module holds the strategy parameter record used by every backtest and
the runtime settings loaded from environment variables.
"""
import math
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Starting account value for every simulation
INITIAL_CAPITAL = 10_000.0

# Accepted spellings for boolean fields given as text
TRUE_WORDS = ('true', '1', 'yes', 'on')
FALSE_WORDS = ('false', '0', 'no', 'off')


@dataclass(frozen=True)
class StrategyConfig:
    """
    Strategy parameters for a single backtest run.

    Instances are immutable; parameter sweeps derive new instances with
    :meth:`with_overrides`.
    """
    # Reversal entry / exit rules
    use_bb: bool = True
    use_rsi: bool = True
    use_macd: bool = True
    bb_period: int = 20
    bb_std: float = 2.0
    rsi_period: int = 14
    rsi_overbought: float = 70.0
    rsi_oversold: float = 30.0
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9

    # Risk and execution costs
    risk_pct: float = 1.0
    stop_atr: float = 2.0
    atr_period: int = 14
    commission: float = 0.5
    slip_bps: float = 5.0

    # Filters and optional exits
    use_trend_filter: bool = True
    trend_filter_period: int = 200
    use_take_profit: bool = True
    take_profit_atr: float = 1.5
    use_momentum_entry: bool = True
    momentum_sma_period: int = 50

    @property
    def slippage(self) -> float:
        """Slippage as a price fraction."""
        return self.slip_bps / 10_000

    def with_overrides(self, **overrides: Any) -> 'StrategyConfig':
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def parse_field(cls, name: str, text: str) -> Any:
        """
        Convert a command line string to the type of the named field.

        Booleans accept true/false, yes/no, on/off and 1/0.

        Raises:
            ValueError: On an unknown field or a value of the wrong type
        """
        types = {f.name: f.type for f in fields(cls)}
        if name not in types:
            raise ValueError(f"Unknown strategy parameter '{name}'. Expected one of: {', '.join(types)}")

        kind = types[name]
        value = text.strip()
        if kind is bool:
            if value.lower() in TRUE_WORDS:
                return True
            if value.lower() in FALSE_WORDS:
                return False
            raise ValueError(f"{name} takes true or false, got '{text}'")
        try:
            parsed = kind(value)
        except ValueError:
            raise ValueError(f"{name} takes a {kind.__name__}, got '{text}'") from None
        if not math.isfinite(parsed):
            raise ValueError(f"{name} must be finite, got '{text}'")
        return parsed

    def validate_periods(self) -> None:
        """Check that every indicator period is a positive whole number."""
        for name in ('bb_period', 'rsi_period', 'macd_fast', 'macd_slow', 'macd_signal',
                     'atr_period', 'trend_filter_period', 'momentum_sma_period'):
            value = getattr(self, name)
            if int(value) != value or value <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value}")

    def validate(self) -> bool:
        """Validate the configuration values."""
        self.validate_periods()

        if self.bb_std <= 0:
            raise ValueError("bb_std must be greater than 0")

        if not 0 <= self.rsi_oversold < self.rsi_overbought <= 100:
            raise ValueError("RSI thresholds must satisfy 0 <= oversold < overbought <= 100")

        if not 0 < self.risk_pct <= 100:
            raise ValueError("Risk percent must be between 0 and 100")

        if self.stop_atr <= 0:
            raise ValueError("stop_atr must be greater than 0")

        if self.take_profit_atr <= 0:
            raise ValueError("take_profit_atr must be greater than 0")

        if self.commission < 0 or self.slip_bps < 0:
            raise ValueError("Commission and slippage cannot be negative")

        return True


@dataclass
class Settings:
    """Runtime settings for logging and the optimizer."""
    log_level: str = 'INFO'
    log_file: str = ''
    optimizer_max_workers: int = 1
    optimizer_min_trades: int = 5
    range_spec_cap: int = 80

    @classmethod
    def from_env(cls) -> 'Settings':
        """Create a Settings instance from environment variables."""
        return cls(
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
            log_file=os.getenv('LOG_FILE', ''),
            optimizer_max_workers=int(os.getenv('OPTIMIZER_MAX_WORKERS', '1')),
            optimizer_min_trades=int(os.getenv('OPTIMIZER_MIN_TRADES', '5')),
            range_spec_cap=int(os.getenv('RANGE_SPEC_CAP', '80')),
        )

    def validate(self) -> bool:
        """Validate the settings values."""
        if self.log_level not in ('TRACE', 'DEBUG', 'INFO', 'SUCCESS', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f"Unknown log level: {self.log_level}")

        if self.optimizer_max_workers < 1:
            raise ValueError("OPTIMIZER_MAX_WORKERS must be at least 1")

        if self.optimizer_min_trades < 0:
            raise ValueError("OPTIMIZER_MIN_TRADES cannot be negative")

        if self.range_spec_cap < 1:
            raise ValueError("RANGE_SPEC_CAP must be at least 1")

        return True


# Global settings instance
settings = Settings.from_env()
