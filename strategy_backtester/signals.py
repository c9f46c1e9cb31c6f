"""
Signal generation from indicator readings.

Three reversal rules (Bollinger Bands, RSI, MACD crossover) vote for or
against a trade on each bar; a momentum rule can add a buy on its own, and
the trend filter can veto any buy.
"""
from typing import List, Optional, Tuple

from loguru import logger

from .core.config import StrategyConfig
from .data_structures import IndicatorSeries, OHLCSeries, Signal, SignalType

MOMENTUM_ENTRY = 'Momentum Entry'
REVERSAL_ENTRY = 'Reversal Entry'
REVERSAL_SELL = 'Reversal Sell'

# RSI level the momentum rule must exceed
MOMENTUM_RSI_LEVEL = 50


def _reversal_votes(i: int, price: float, ind: IndicatorSeries, config: StrategyConfig) -> Tuple[int, int]:
    """Count buy and sell votes from the enabled reversal rules at bar ``i``."""
    buys = sells = 0

    if config.use_bb and ind.bb.upper[i] is not None and ind.bb.lower[i] is not None:
        if price <= ind.bb.lower[i]:
            buys += 1
        if price >= ind.bb.upper[i]:
            sells += 1

    if config.use_rsi and ind.rsi[i] is not None:
        if ind.rsi[i] <= config.rsi_oversold:
            buys += 1
        if ind.rsi[i] >= config.rsi_overbought:
            sells += 1

    if config.use_macd:
        line, signal = ind.macd.macd, ind.macd.signal
        values = (line[i], signal[i], line[i - 1], signal[i - 1])
        if all(v is not None for v in values):
            now_macd, now_signal, prev_macd, prev_signal = values
            if now_macd > now_signal and prev_macd <= prev_signal:
                buys += 1
            if now_macd < now_signal and prev_macd >= prev_signal:
                sells += 1

    return buys, sells


def _is_momentum_buy(i: int, price: float, ind: IndicatorSeries, config: StrategyConfig) -> bool:
    if not config.use_momentum_entry:
        return False
    fast: Optional[float] = ind.sma_fast[i]
    strength: Optional[float] = ind.rsi[i]
    if fast is None or strength is None:
        return False
    return price > fast and strength > MOMENTUM_RSI_LEVEL


def generate_signals(series: OHLCSeries, indicators: IndicatorSeries, config: StrategyConfig) -> List[Signal]:
    """
    Derive per-bar buy/sell signals.

    Bar 0 never signals. Conflicting reversal votes cancel each other, and a
    bar emits at most one signal with buys taking priority over sells.

    Args:
        series: Price series
        indicators: Indicator readings aligned with ``series``
        config: Strategy toggles and thresholds

    Returns:
        Signals in bar order
    """
    signals: List[Signal] = []
    close = series.close

    for i in range(1, len(series)):
        price = close[i]
        buys, sells = _reversal_votes(i, price, indicators, config)
        is_reversal_buy = buys > 0 and sells == 0
        is_reversal_sell = sells > 0 and buys == 0
        is_momentum_buy = _is_momentum_buy(i, price, indicators, config)

        total_buy = is_reversal_buy or is_momentum_buy

        # Trend filter overrides every buy, momentum included
        trend = indicators.sma_slow[i]
        if total_buy and config.use_trend_filter and trend is not None and price < trend:
            total_buy = False

        if total_buy:
            reason = MOMENTUM_ENTRY if is_momentum_buy and not is_reversal_buy else REVERSAL_ENTRY
            signals.append(Signal(SignalType.BUY, i, series.dates[i], price, reason))
        elif is_reversal_sell:
            signals.append(Signal(SignalType.SELL, i, series.dates[i], price, REVERSAL_SELL))

    logger.debug(f"Generated {len(signals)} signals over {len(series)} bars")
    return signals
