"""
Technical indicators module.

Every indicator returns a tuple aligned with its input. Bars inside the
warm-up window hold None rather than 0 or NaN so that downstream rules can
tell "no value yet" apart from a real reading.
"""
from typing import List, Optional, Sequence

import numpy as np
from loguru import logger
from numpy.lib.stride_tricks import sliding_window_view

from .core.config import StrategyConfig
from .data_structures import (
    BollingerBands,
    IndicatorSeries,
    MACDResult,
    OHLCSeries,
    OptionalSeries,
)

# Relative strength used when the average loss is zero
RS_ZERO_LOSS = 1000.0


def _check_period(period: int, name: str = 'period') -> None:
    if period <= 0 or int(period) != period:
        raise ValueError(f"{name} must be a positive integer, got {period}")


def rma(values: Sequence[Optional[float]], period: int) -> OptionalSeries:
    """
    Wilder's running moving average.

    Seeded with the simple average of the first ``period`` defined values,
    then ``avg = (avg * (period - 1) + v) / period``. None inputs yield None
    and leave the running state untouched.
    """
    _check_period(period)
    out: List[Optional[float]] = []
    avg = 0.0
    count = 0
    for v in values:
        if v is None:
            out.append(None)
            continue
        if count < period:
            avg += v
            count += 1
            if count < period:
                out.append(None)
            else:
                avg /= period
                out.append(avg)
        else:
            avg = (avg * (period - 1) + v) / period
            out.append(avg)
    return tuple(out)


def rsi(close: Sequence[float], period: int = 14) -> OptionalSeries:
    """
    Relative Strength Index.

    The first bar has no previous close, so the output starts with one None
    ahead of the RMA warm-up. A window with no gains and no losses reads 50;
    a window with gains but no losses uses a relative strength of
    RS_ZERO_LOSS instead of dividing by zero.
    """
    _check_period(period)
    changes = [close[i] - close[i - 1] for i in range(1, len(close))]
    gains = [x if x > 0 else 0.0 for x in changes]
    losses = [-x if x < 0 else 0.0 for x in changes]
    avg_gains = rma(gains, period)
    avg_losses = rma(losses, period)

    out: List[Optional[float]] = [None]
    for gain, loss in zip(avg_gains, avg_losses):
        if gain is None or loss is None:
            out.append(None)
            continue
        if gain == 0 and loss == 0:
            # Flat window: neither side has moved
            out.append(50.0)
            continue
        rs = RS_ZERO_LOSS if loss == 0 else gain / loss
        out.append(100 - (100 / (1 + rs)))

    while len(out) < len(close):
        out.append(None)
    return tuple(out[:len(close)])


def ema(values: Sequence[float], period: int) -> OptionalSeries:
    """Exponential moving average seeded by the simple average of the first ``period`` values."""
    _check_period(period)
    k = 2 / (period + 1)
    out: List[Optional[float]] = []
    prev: Optional[float] = None
    total = 0.0
    n = 0
    for v in values:
        if prev is None:
            total += v
            n += 1
            if n == period:
                prev = total / period
                out.append(prev)
            else:
                out.append(None)
        else:
            prev = v * k + prev * (1 - k)
            out.append(prev)
    return tuple(out)


def macd(close: Sequence[float], fast: int = 12, slow: int = 26, signal: int = 9) -> MACDResult:
    """
    Moving Average Convergence Divergence.

    The signal line runs its EMA over the MACD line with undefined entries
    treated as 0, but is only reported where the MACD line itself is defined.
    """
    ema_fast = ema(close, fast)
    ema_slow = ema(close, slow)
    line = tuple(
        f - s if f is not None and s is not None else None
        for f, s in zip(ema_fast, ema_slow)
    )
    smoothed = ema([0.0 if m is None else m for m in line], signal)
    signal_line = tuple(None if m is None else s for m, s in zip(line, smoothed))
    histogram = tuple(
        m - s if m is not None and s is not None else None
        for m, s in zip(line, signal_line)
    )
    return MACDResult(macd=line, signal=signal_line, histogram=histogram)


def _rolling_windows(values: Sequence[float], period: int) -> Optional[np.ndarray]:
    """Trailing windows of ``period`` values, one row per fully warmed-up bar."""
    data = np.asarray(values, dtype=float)
    if len(data) < period:
        return None
    return sliding_window_view(data, period)


def _pad_warm_up(values: Optional[np.ndarray], period: int, length: int) -> OptionalSeries:
    if values is None:
        return (None,) * length
    return tuple([None] * (period - 1) + values.tolist())


def bollinger_bands(close: Sequence[float], period: int = 20, std_mult: float = 2.0) -> BollingerBands:
    """Bollinger Bands from the trailing mean and population standard deviation."""
    _check_period(period)
    windows = _rolling_windows(close, period)
    if windows is None:
        empty = (None,) * len(close)
        return BollingerBands(upper=empty, middle=empty, lower=empty)

    mean = windows.mean(axis=1)
    sd = windows.std(axis=1)  # ddof=0
    return BollingerBands(
        upper=_pad_warm_up(mean + std_mult * sd, period, len(close)),
        middle=_pad_warm_up(mean, period, len(close)),
        lower=_pad_warm_up(mean - std_mult * sd, period, len(close)),
    )


def true_range(high: Sequence[float], low: Sequence[float], close: Sequence[float]) -> List[float]:
    """True range per bar; the first bar has no previous close and uses high - low."""
    tr = []
    for i in range(len(close)):
        if i == 0:
            tr.append(high[i] - low[i])
            continue
        tr.append(max(
            high[i] - low[i],
            abs(high[i] - close[i - 1]),
            abs(low[i] - close[i - 1]),
        ))
    return tr


def atr(high: Sequence[float], low: Sequence[float], close: Sequence[float], period: int = 14) -> OptionalSeries:
    """Average True Range smoothed with :func:`rma`."""
    return rma(true_range(high, low, close), period)


def sma(values: Sequence[float], period: int) -> OptionalSeries:
    """Simple trailing-window mean."""
    _check_period(period)
    windows = _rolling_windows(values, period)
    means = windows.mean(axis=1) if windows is not None else None
    return _pad_warm_up(means, period, len(values))


def compute_indicators(series: OHLCSeries, config: StrategyConfig) -> IndicatorSeries:
    """
    Compute every indicator the strategy uses.

    Args:
        series: Price series
        config: Strategy parameters supplying the indicator periods

    Returns:
        IndicatorSeries aligned with ``series``
    """
    close = series.close
    indicators = IndicatorSeries(
        bb=bollinger_bands(close, config.bb_period, config.bb_std),
        rsi=rsi(close, config.rsi_period),
        macd=macd(close, config.macd_fast, config.macd_slow, config.macd_signal),
        atr=atr(series.high, series.low, close, config.atr_period),
        sma_slow=sma(close, config.trend_filter_period),
        sma_fast=sma(close, config.momentum_sma_period),
    )
    logger.debug(f"Computed indicators for {len(series)} bars")
    return indicators
