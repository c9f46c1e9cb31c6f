import math

import numpy as np
import pandas as pd
import pytest

from strategy_backtester.core.config import StrategyConfig
from strategy_backtester.data_structures import BollingerBands, IndicatorSeries, MACDResult, OHLCSeries


def make_series(closes, spread=1.0, start='2020-01-01', freq='B'):
    """Build a series whose bars open at the previous close and span +/- ``spread``."""
    closes = [float(c) for c in closes]
    opens = [closes[0]] + closes[:-1]
    dates = pd.date_range(start=start, periods=len(closes), freq=freq)
    return OHLCSeries(
        dates=tuple(d.strftime('%Y-%m-%d') for d in dates),
        open=tuple(opens),
        high=tuple(max(o, c) + spread for o, c in zip(opens, closes)),
        low=tuple(min(o, c) - spread for o, c in zip(opens, closes)),
        close=tuple(closes),
        volume=tuple(1000.0 for _ in closes),
    )


def make_indicators(n, **overrides):
    """Indicator readings that are undefined everywhere unless overridden"""
    empty = (None,) * n
    values = {
        'bb': BollingerBands(empty, empty, empty),
        'rsi': empty,
        'macd': MACDResult(empty, empty, empty),
        'atr': empty,
        'sma_slow': empty,
        'sma_fast': empty,
    }
    values.update(overrides)
    return IndicatorSeries(**values)


def create_sample_series(periods=400, start_price=100.0, volatility=0.015):
    """Create a seeded random-walk price series for testing"""
    np.random.seed(42)  # For reproducible tests
    returns = np.random.normal(0.0003, volatility, periods)
    prices = start_price * (1 + returns).cumprod()
    return make_series(prices, spread=0.5)


def create_cyclical_series(periods=300, cycle=40, amplitude=10.0):
    """Oscillating prices that keep the reversal rules busy"""
    np.random.seed(7)
    noise = np.random.normal(0, 0.3, periods)
    prices = [100 + amplitude * math.sin(2 * math.pi * i / cycle) + noise[i] for i in range(periods)]
    return make_series(prices, spread=0.5)


# Fixtures
@pytest.fixture
def sample_series():
    """Fixture that provides a random-walk price series"""
    return create_sample_series()


@pytest.fixture
def cyclical_series():
    """Fixture that provides an oscillating price series"""
    return create_cyclical_series()


@pytest.fixture
def flat_series():
    """Fixture that provides 60 bars at a constant price"""
    return make_series([100.0] * 60)


@pytest.fixture
def reversal_config():
    """Reversal rules only, no trend filter or momentum entries"""
    return StrategyConfig(use_trend_filter=False, use_momentum_entry=False)
