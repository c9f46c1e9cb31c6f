import math

import pytest

from strategy_backtester.core.config import StrategyConfig
from strategy_backtester.data_structures import Timeframe
from strategy_backtester.indicators import compute_indicators
from strategy_backtester.optimizer import (
    OptimizationCancelled,
    parse_range_spec,
    run_optimization,
    score_result,
)
from strategy_backtester.portfolio_simulator import run_backtest

from conftest import make_series

# Zero-width bands make the band votes cancel, so flat prices never signal
FLAT_CONFIG = StrategyConfig(use_macd=False)


class CountingEvent:
    """Cancel event that trips after ``limit`` checks"""

    def __init__(self, limit):
        self.limit = limit
        self.checks = 0

    def is_set(self):
        self.checks += 1
        return self.checks > self.limit


# Range specs

def test_parse_range_with_step():
    assert parse_range_spec("10-20:2") == [10, 12, 14, 16, 18, 20]


def test_parse_range_default_steps():
    assert parse_range_spec("1-4") == [1, 2, 3, 4]
    assert parse_range_spec("0.5-2") == [0.5, 1.0, 1.5, 2.0]


def test_parse_range_fractional_step():
    values = parse_range_spec("1.0-4.0:0.25")
    assert len(values) == 13
    assert values[0] == 1.0
    assert values[1] == 1.25
    assert values[-1] == 4.0


def test_parse_range_rounds_to_step_precision():
    assert parse_range_spec("0.1-0.3:0.1") == [0.1, 0.2, 0.3]


def test_parse_range_integral_step_returns_ints():
    values = parse_range_spec("7-9:1")
    assert values == [7, 8, 9]
    assert all(isinstance(v, int) for v in values)


def test_parse_range_swaps_bounds_and_ignores_whitespace():
    assert parse_range_spec(" 9 - 7 : 1 ") == [7, 8, 9]


def test_parse_range_cap():
    assert len(parse_range_spec("1-500")) == 80
    assert parse_range_spec("1-500", cap=3) == [1, 2, 3]


@pytest.mark.parametrize('spec', ["", None, "abc", "1-x", "5", "1-2:0", "1-2:-1", "1-2:abc", "nan-3", "1-inf",
                                  "10-11:1e-27", "1e30-2e30:1e30"])
def test_parse_range_invalid(spec):
    assert parse_range_spec(spec) == []


# Validation

def test_unknown_parameter_rejected(flat_series):
    with pytest.raises(ValueError, match="Unknown optimization parameter"):
        run_optimization(flat_series, StrategyConfig(), 'lookback', [10, 20])


def test_unknown_objective_rejected(flat_series):
    with pytest.raises(ValueError, match="Unknown objective"):
        run_optimization(flat_series, StrategyConfig(), 'rsi_period', [10], objective='profit')


def test_empty_range_rejected(flat_series):
    with pytest.raises(ValueError):
        run_optimization(flat_series, StrategyConfig(), 'rsi_period', [])


def test_fractional_integer_parameter_rejected(flat_series):
    with pytest.raises(ValueError):
        run_optimization(flat_series, StrategyConfig(), 'rsi_period', [7, 7.5])


def test_same_parameter_twice_rejected(flat_series):
    with pytest.raises(ValueError):
        run_optimization(flat_series, StrategyConfig(), 'rsi_period', [7], 'rsi_period', [9])


def test_short_series_returns_empty_grid():
    result = run_optimization(make_series([100.0]), StrategyConfig(), 'rsi_period', [7, 14])
    assert result.grid == []
    assert result.best is None


# Sweeps

def test_grid_matches_direct_backtests(cyclical_series, reversal_config):
    result = run_optimization(
        cyclical_series, reversal_config,
        'rsi_period', [7, 14],
        'stop_loss_atr', [1.5, 3.0],
        min_trades=0,
    )
    assert result.xs == [7, 14]
    assert result.ys == [1.5, 3.0]
    assert len(result.grid) == 2 and all(len(row) == 2 for row in result.grid)

    for row, stop in enumerate(result.ys):
        for col, period in enumerate(result.xs):
            config = reversal_config.with_overrides(rsi_period=period, stop_atr=stop)
            direct = run_backtest(cyclical_series, compute_indicators(cyclical_series, config), config, Timeframe.DAILY)
            assert result.grid[row][col] == direct.metrics.sharpe_ratio


def test_single_parameter_sweep_has_one_row(cyclical_series, reversal_config):
    for unused in (None, 'none', 'select', ''):
        result = run_optimization(cyclical_series, reversal_config, 'bb_period', [10, 20, 30], unused, [1, 2],
                                  min_trades=0)
        assert len(result.grid) == 1
        assert len(result.grid[0]) == 3
        assert result.param2 is None
        assert result.ys == []


def test_best_cell_is_greatest_score(cyclical_series, reversal_config):
    result = run_optimization(cyclical_series, reversal_config, 'rsi_period', [5, 9, 14, 21], min_trades=0)
    scores = result.grid[0]
    best_col = scores.index(max(scores))

    assert result.best is not None
    assert result.best.score == scores[best_col]
    assert result.best.params == {'rsi_period': result.xs[best_col]}

    config = reversal_config.with_overrides(rsi_period=result.xs[best_col])
    direct = run_backtest(cyclical_series, compute_indicators(cyclical_series, config), config)
    assert result.best.result == direct


def test_ties_keep_first_cell(flat_series):
    """Flat prices never trade, so every cell scores a Sharpe of 0"""
    result = run_optimization(flat_series, FLAT_CONFIG, 'rsi_period', [7, 14], 'bb_std', [1.0, 2.0],
                              min_trades=0)
    assert result.grid == [[0.0, 0.0], [0.0, 0.0]]
    assert result.best.params == {'rsi_period': 7, 'bb_std': 1.0}


def test_cells_with_too_few_trades_are_disqualified(flat_series):
    result = run_optimization(flat_series, FLAT_CONFIG, 'rsi_period', [7, 14], 'bb_std', [1.0, 2.0])
    assert result.grid == [[None, None], [None, None]]
    assert result.best is None


def test_alpha_objective_subtracts_benchmark(cyclical_series, reversal_config):
    cagr = run_optimization(cyclical_series, reversal_config, 'macd_fast', [8, 12], objective='cagr', min_trades=0)
    alpha = run_optimization(cyclical_series, reversal_config, 'macd_fast', [8, 12], objective='alpha_cagr',
                             min_trades=0)
    assert alpha.benchmark_cagr == cagr.benchmark_cagr
    for c, a in zip(cagr.grid[0], alpha.grid[0]):
        assert a == pytest.approx(c - cagr.benchmark_cagr)


def test_drawdown_objective_is_negated(cyclical_series, reversal_config):
    result = run_optimization(cyclical_series, reversal_config, 'bb_std', [1.5, 2.5], objective='max_drawdown',
                              min_trades=0)
    assert all(score <= 0 for score in result.grid[0])


def test_score_result_penalizes_few_trades(cyclical_series, reversal_config):
    direct = run_backtest(cyclical_series, compute_indicators(cyclical_series, reversal_config), reversal_config)
    too_many = direct.metrics.num_trades + 1
    assert score_result(direct, 'sharpe', min_trades=too_many) == -math.inf
    assert score_result(direct, 'win_rate', min_trades=0) == direct.metrics.win_rate


def test_parallel_matches_sequential(cyclical_series, reversal_config):
    kwargs = dict(param1='rsi_period', range1=[7, 10, 14], param2='bb_std', range2=[1.5, 2.0], min_trades=0)
    sequential = run_optimization(cyclical_series, reversal_config, max_workers=1, **kwargs)
    parallel = run_optimization(cyclical_series, reversal_config, max_workers=2, **kwargs)
    assert parallel.grid == sequential.grid
    assert parallel.best.params == sequential.best.params


# Cancellation

def test_cancel_before_start(flat_series):
    event = CountingEvent(limit=0)
    with pytest.raises(OptimizationCancelled):
        run_optimization(flat_series, StrategyConfig(), 'rsi_period', [7, 14], cancel_event=event, max_workers=1)


def test_cancel_between_cells(flat_series):
    event = CountingEvent(limit=2)
    with pytest.raises(OptimizationCancelled):
        run_optimization(flat_series, StrategyConfig(), 'rsi_period', [5, 7, 9, 14], cancel_event=event,
                         max_workers=1)
    assert event.checks == 3


def test_cancel_parallel_sweep(flat_series):
    event = CountingEvent(limit=1)
    with pytest.raises(OptimizationCancelled):
        run_optimization(flat_series, FLAT_CONFIG, 'rsi_period', [5, 7, 9, 14], cancel_event=event,
                         max_workers=2)
    # Checked once per finished cell, cancelled at the second
    assert event.checks == 2


def test_non_positive_period_rejected_before_sweep(flat_series):
    event = CountingEvent(limit=100)
    with pytest.raises(ValueError, match='macd_fast'):
        run_optimization(flat_series, FLAT_CONFIG, 'macd_fast', [0, 1, 2, 3], cancel_event=event, max_workers=1)
    assert event.checks == 0
