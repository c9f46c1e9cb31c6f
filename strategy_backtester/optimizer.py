"""
Grid search over one or two strategy parameters.

Every cell of the grid re-runs the full pipeline (indicators, signals,
simulation) on daily bars with the cell's parameter values and is scored by
the chosen objective. Cells are independent, so they can run on a process
pool; scores are written back by (row, col) and the result is identical to a
sequential sweep.
"""
import math
from concurrent.futures import ProcessPoolExecutor, as_completed
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from loguru import logger

from .core.config import StrategyConfig, settings
from .data_structures import BacktestResult, BestCell, OHLCSeries, OptimizationResult, Timeframe
from .indicators import compute_indicators
from .performance_metrics import buy_and_hold
from .portfolio_simulator import run_backtest

Number = Union[int, float]

# Optimizer parameter name -> StrategyConfig field
PARAMETER_MAP: Dict[str, str] = {
    'rsi_period': 'rsi_period',
    'bb_std': 'bb_std',
    'stop_loss_atr': 'stop_atr',
    'rsi_oversold': 'rsi_oversold',
    'risk_per_trade': 'risk_pct',
    'bb_period': 'bb_period',
    'rsi_overbought': 'rsi_overbought',
    'macd_fast': 'macd_fast',
    'macd_slow': 'macd_slow',
    'macd_signal': 'macd_signal',
    'take_profit_atr': 'take_profit_atr',
    'trend_filter_period': 'trend_filter_period',
    'momentum_sma_period': 'momentum_sma_period',
}

INTEGER_FIELDS = frozenset({
    'rsi_period', 'bb_period', 'macd_fast', 'macd_slow', 'macd_signal',
    'trend_filter_period', 'momentum_sma_period',
})

OBJECTIVES = ('sharpe', 'cagr', 'alpha_cagr', 'win_rate', 'max_drawdown')

# Values of param2 meaning "single-parameter sweep"
UNUSED_PARAMETER = (None, '', 'none', 'select')

# Tolerance when comparing the running value with the upper bound
RANGE_EPSILON = 1e-9


class OptimizationCancelled(Exception):
    """Raised when a sweep is stopped through its cancel event."""


def _step_precision(step: float) -> int:
    exponent = Decimal(repr(step)).normalize().as_tuple().exponent
    return max(0, -exponent)


def _round_to(value: float, precision: int) -> Number:
    quantum = Decimal(1).scaleb(-precision)
    rounded = Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return int(rounded) if precision == 0 else float(rounded)


def parse_range_spec(spec: Optional[str], cap: Optional[int] = None) -> List[Number]:
    """
    Expand a ``"min-max:step"`` or ``"min-max"`` string into parameter values.

    Without a step, integral bounds step by 1 and other bounds by 0.5.
    Reversed bounds are swapped. Values are rounded to the step's decimal
    places and returned as ints when the step is a whole number.

    Args:
        spec: Range string, whitespace ignored
        cap: Maximum number of values (defaults to ``settings.range_spec_cap``)

    Returns:
        Ascending values, or an empty list when the string is invalid
    """
    if cap is None:
        cap = settings.range_spec_cap
    if not spec:
        return []

    clean = ''.join(spec.split())
    bounds, _, step_text = clean.partition(':')
    parts = bounds.split('-')
    if len(parts) != 2:
        return []

    try:
        low, high = float(parts[0]), float(parts[1])
        step = float(step_text) if step_text else None
    except ValueError:
        return []

    if not (math.isfinite(low) and math.isfinite(high)):
        return []
    if low > high:
        low, high = high, low

    if step is None:
        step = 1.0 if low.is_integer() and high.is_integer() else 0.5
    if not math.isfinite(step) or step <= 0:
        return []

    precision = _step_precision(step)

    values: List[Number] = []
    k = 0
    while len(values) < cap:
        value = low + k * step
        if value > high + RANGE_EPSILON:
            break
        try:
            values.append(_round_to(value, precision))
        except InvalidOperation:
            # Rounded value needs more digits than the decimal context holds
            return []
        k += 1
    return values


def _resolve_parameter(name: str) -> str:
    try:
        return PARAMETER_MAP[name]
    except KeyError:
        raise ValueError(
            f"Unknown optimization parameter '{name}'. Expected one of: {', '.join(PARAMETER_MAP)}"
        ) from None


def _coerce_values(field_name: str, values: Sequence[Number]) -> List[Number]:
    """Cast sweep values to the field's type, rejecting fractional integers."""
    if field_name not in INTEGER_FIELDS:
        return [float(v) for v in values]
    coerced = []
    for v in values:
        if float(v) != int(v):
            raise ValueError(f"{field_name} takes whole numbers, got {v}")
        coerced.append(int(v))
    return coerced


def score_result(result: BacktestResult, objective: str, benchmark_cagr: float = 0.0,
                 min_trades: int = 5) -> float:
    """
    Score a backtest by the objective.

    Results with fewer than ``min_trades`` round trips score ``-inf``.
    """
    metrics = result.metrics
    if metrics.num_trades < min_trades:
        return -math.inf

    if objective == 'sharpe':
        return metrics.sharpe_ratio
    if objective == 'cagr':
        return metrics.cagr
    if objective == 'alpha_cagr':
        return metrics.cagr - benchmark_cagr
    if objective == 'win_rate':
        return metrics.win_rate
    if objective == 'max_drawdown':
        return -metrics.max_drawdown
    raise ValueError(f"Unknown objective '{objective}'. Expected one of: {', '.join(OBJECTIVES)}")


def backtest_cell(series: OHLCSeries, config: StrategyConfig) -> BacktestResult:
    """Full pipeline for one grid cell, always on daily bars."""
    indicators = compute_indicators(series, config)
    return run_backtest(series, indicators, config, Timeframe.DAILY)


def _evaluate_cell(task: Tuple[OHLCSeries, StrategyConfig, str, float, int]) -> float:
    # Module level so the process pool can pickle it
    series, config, objective, benchmark_cagr, min_trades = task
    result = backtest_cell(series, config)
    return score_result(result, objective, benchmark_cagr, min_trades)


def _check_cancelled(cancel_event: Any) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise OptimizationCancelled("Optimization cancelled")


def _run_sequential(tasks, cells, scores, cancel_event) -> None:
    for task, (row, col) in zip(tasks, cells):
        _check_cancelled(cancel_event)
        scores[row][col] = _evaluate_cell(task)


def _run_parallel(tasks, cells, scores, cancel_event, max_workers: int) -> None:
    with ProcessPoolExecutor(max_workers=max_workers) as executor:
        future_to_cell = {
            executor.submit(_evaluate_cell, task): cell
            for task, cell in zip(tasks, cells)
        }
        try:
            for future in as_completed(future_to_cell):
                _check_cancelled(cancel_event)
                row, col = future_to_cell[future]
                scores[row][col] = future.result()
        except BaseException:
            for future in future_to_cell:
                future.cancel()
            raise


def run_optimization(
    series: OHLCSeries,
    base_config: StrategyConfig,
    param1: str,
    range1: Sequence[Number],
    param2: Optional[str] = None,
    range2: Sequence[Number] = (),
    objective: str = 'sharpe',
    max_workers: Optional[int] = None,
    cancel_event: Any = None,
    min_trades: Optional[int] = None,
) -> OptimizationResult:
    """
    Sweep one or two parameters and find the best-scoring combination.

    ``grid[row][col]`` is the score for ``range2[row]`` and ``range1[col]``;
    a single-parameter sweep has one row. Scores that are not finite are
    stored as None. The best cell is the first strictly greatest score in
    row-major order, and its backtest is returned in full.

    Args:
        series: Daily price series
        base_config: Parameters every cell starts from
        param1: Name from ``PARAMETER_MAP`` for the grid columns
        range1: Values for ``param1``; must not be empty
        param2: Name for the grid rows, or None/"none"/"select"/"" for 1D
        range2: Values for ``param2``
        objective: One of ``OBJECTIVES``
        max_workers: Worker processes (defaults to ``settings.optimizer_max_workers``);
            1 runs in-process
        cancel_event: Object with ``is_set()`` checked between cells
        min_trades: Round trips a cell needs to be scored
            (defaults to ``settings.optimizer_min_trades``)

    Returns:
        OptimizationResult

    Raises:
        ValueError: On unknown parameters or objectives, an empty ``range1``,
            fractional values for whole-number parameters or non-positive periods
        OptimizationCancelled: When ``cancel_event`` is set during the sweep
    """
    if objective not in OBJECTIVES:
        raise ValueError(f"Unknown objective '{objective}'. Expected one of: {', '.join(OBJECTIVES)}")
    if max_workers is None:
        max_workers = settings.optimizer_max_workers
    if min_trades is None:
        min_trades = settings.optimizer_min_trades

    field1 = _resolve_parameter(param1)
    if not range1:
        raise ValueError(f"Range for '{param1}' has no values")
    xs = _coerce_values(field1, range1)

    field2: Optional[str] = None
    ys: List[Number] = []
    if param2 not in UNUSED_PARAMETER:
        field2 = _resolve_parameter(param2)
        if field2 == field1:
            raise ValueError(f"'{param1}' and '{param2}' set the same parameter")
        if range2:
            ys = _coerce_values(field2, range2)
        else:
            logger.warning(f"Range for '{param2}' has no values, sweeping '{param1}' only")
            field2, param2 = None, None
    else:
        param2 = None

    if len(series) < 2:
        logger.warning(f"Series has {len(series)} bars, nothing to optimize")
        return OptimizationResult(grid=[], xs=xs, ys=ys, param1=param1, param2=param2, objective=objective)

    benchmark_cagr = buy_and_hold(series).cagr
    rows = ys if field2 is not None else [None]

    tasks = []
    cells: List[Tuple[int, int]] = []
    cell_params: Dict[Tuple[int, int], Dict[str, Number]] = {}
    for row, y in enumerate(rows):
        for col, x in enumerate(xs):
            params: Dict[str, Number] = {field1: x}
            if field2 is not None:
                params[field2] = y
            cell_config = base_config.with_overrides(**params)
            cell_config.validate_periods()
            cell_params[(row, col)] = params
            cells.append((row, col))
            tasks.append((series, cell_config, objective, benchmark_cagr, min_trades))

    workers = min(max_workers, len(tasks))
    logger.info(
        f"Optimizing {param1}" + (f" x {param2}" if param2 else "")
        + f" over {len(tasks)} cells by {objective} ({workers} worker{'s' if workers != 1 else ''})"
    )

    scores: List[List[float]] = [[-math.inf] * len(xs) for _ in rows]
    if workers > 1:
        _run_parallel(tasks, cells, scores, cancel_event, workers)
    else:
        _run_sequential(tasks, cells, scores, cancel_event)

    grid: List[List[Optional[float]]] = [
        [score if math.isfinite(score) else None for score in row]
        for row in scores
    ]

    best_cell: Optional[Tuple[int, int]] = None
    best_score = -math.inf
    for row, col in cells:
        if scores[row][col] > best_score:
            best_score = scores[row][col]
            best_cell = (row, col)

    best: Optional[BestCell] = None
    if best_cell is not None:
        params = cell_params[best_cell]
        result = backtest_cell(series, base_config.with_overrides(**params))
        best = BestCell(score=best_score, params=params, result=result)
        logger.info(f"Best {objective} {best_score:.4f} at {params}")
    else:
        logger.warning(f"No cell reached {min_trades} round trips; no best parameters")

    return OptimizationResult(
        grid=grid,
        xs=xs,
        ys=ys,
        param1=param1,
        param2=param2,
        objective=objective,
        best=best,
        benchmark_cagr=benchmark_cagr,
    )
