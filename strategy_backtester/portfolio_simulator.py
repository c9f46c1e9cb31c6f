"""
Portfolio Simulator for the strategy backtester

This module runs the bar-by-bar simulation of a single long-only position:
- Next-bar execution of signals at the open, with slippage and commission
- ATR-based take-profit and stop-loss exits checked inside each bar
- Fractional-risk position sizing
- Mark-to-market equity curve and drawdown tracking
"""
import math
from typing import List, Optional, Sequence, Set

from loguru import logger

from .core.config import INITIAL_CAPITAL, StrategyConfig
from .data_structures import (
    BacktestResult,
    IndicatorSeries,
    OHLCSeries,
    Position,
    Signal,
    SignalType,
    Timeframe,
    Trade,
)
from .performance_metrics import PerformanceMetrics, log_summary
from .signals import generate_signals

SIGNAL_EXIT = 'Signal Exit'
TAKE_PROFIT = 'Take Profit'
STOP_LOSS = 'Stop Loss'
SIGNAL_ENTRY = 'Signal Entry'

# ATR stand-in while the indicator is still warming up, as a fraction of close
ATR_FALLBACK_PCT = 0.02

# Smallest stop distance used for position sizing
MIN_STOP_DISTANCE = 0.01


class PortfolioSimulator:
    """
    Event loop over bars managing at most one open long position.

    On every bar the rules run in a fixed order: signal exit, take-profit,
    stop-loss, then signal entry. Exits always come before entries, so a bar
    can close a position and open a new one but never reverses a position it
    still holds.
    """

    def __init__(self, config: Optional[StrategyConfig] = None, initial_capital: float = INITIAL_CAPITAL):
        """
        Initialize the simulator.

        Args:
            config: Strategy parameters (uses defaults if None)
            initial_capital: Starting cash
        """
        self.config = config or StrategyConfig()
        self.initial_capital = initial_capital
        self.slippage = self.config.slippage
        self._reset()

    def _reset(self) -> None:
        self.cash = self.initial_capital
        self.position: Optional[Position] = None
        self.trades: List[Trade] = []
        self.equity_curve: List[float] = []
        self.equity_dates: List[str] = []
        self.peak = self.initial_capital
        self.max_drawdown = 0.0
        self.exposure_bars = 0

    # Execution

    def open_position(self, date: str, open_price: float, atr_value: float) -> bool:
        """
        Buy at the bar's open, sized so a stop-out loses ``risk_pct`` of cash.

        Returns:
            True if a position was opened
        """
        if self.position is not None:
            logger.warning(f"Position already open on {date}, entry skipped")
            return False

        fill = open_price * (1 + self.slippage)
        stop_distance = max(MIN_STOP_DISTANCE, self.config.stop_atr * atr_value)
        risk_budget = self.cash * (self.config.risk_pct / 100)
        shares = math.floor(risk_budget / stop_distance)

        if shares <= 0 or self.cash < shares * fill + self.config.commission:
            logger.debug(f"Entry on {date} rejected: {shares} shares @ {fill:.2f} with cash {self.cash:.2f}")
            return False

        self.cash -= shares * fill + self.config.commission
        self.position = Position(entry_price=fill, shares=shares)
        self.trades.append(Trade(SignalType.BUY, date, fill, shares, SIGNAL_ENTRY))
        logger.debug(f"Opened position on {date}: {shares} shares @ {fill:.2f}")
        return True

    def close_position(self, date: str, price: float, reason: str) -> None:
        """Sell the whole position at ``price`` before slippage and pay commission."""
        position = self.position
        if position is None:
            return
        fill = price * (1 - self.slippage)
        self.cash += position.shares * fill - self.config.commission
        self.trades.append(Trade(SignalType.SELL, date, fill, position.shares, reason))
        self.position = None
        logger.debug(f"Closed position on {date} ({reason}): {position.shares} shares @ {fill:.2f}")

    # Exit rules

    def _check_take_profit(self, date: str, open_price: float, high: float, atr_value: float) -> None:
        target = self.position.entry_price + self.config.take_profit_atr * atr_value
        if high >= target:
            self.close_position(date, max(open_price, target), TAKE_PROFIT)

    def _check_stop_loss(self, date: str, open_price: float, low: float, atr_value: float) -> None:
        stop = self.position.entry_price - self.config.stop_atr * atr_value
        if low <= stop:
            self.close_position(date, min(open_price, stop), STOP_LOSS)

    def _mark_to_market(self, date: str, close: float) -> None:
        if self.position is not None:
            self.exposure_bars += 1

        equity = self.cash + (self.position.value(close) if self.position is not None else 0.0)
        self.equity_curve.append(equity)
        self.equity_dates.append(date)

        # Update max drawdown
        self.peak = max(self.peak, equity)
        self.max_drawdown = max(self.max_drawdown, (self.peak - equity) / self.peak * 100)

    def _liquidate(self, close: float) -> None:
        """Terminal unwind at the last close, without commission or a trade record."""
        if self.position is not None:
            self.cash += self.position.shares * close * (1 - self.slippage)
            self.position = None

    # Main loop

    def run(
        self,
        series: OHLCSeries,
        indicators: IndicatorSeries,
        signals: Sequence[Signal],
        timeframe: Timeframe = Timeframe.DAILY
    ) -> BacktestResult:
        """
        Simulate the strategy over the whole series.

        Args:
            series: Price series
            indicators: Indicator readings aligned with ``series``
            signals: Signals to act on at the following bar's open
            timeframe: Bar resolution used for annualized metrics

        Returns:
            BacktestResult with trades, equity curve and metrics
        """
        self._reset()
        dates, opens, highs, lows, closes = series.dates, series.open, series.high, series.low, series.close
        n = len(series)
        buy_bars: Set[int] = {s.index for s in signals if s.type == SignalType.BUY}
        sell_bars: Set[int] = {s.index for s in signals if s.type == SignalType.SELL}
        atr_series = indicators.atr

        for i in range(1, n):
            date = dates[i]
            atr_value = atr_series[i] if atr_series[i] is not None else closes[i] * ATR_FALLBACK_PCT

            if self.position is not None and (i - 1) in sell_bars:
                self.close_position(date, opens[i], SIGNAL_EXIT)

            if self.position is not None and self.config.use_take_profit:
                self._check_take_profit(date, opens[i], highs[i], atr_value)

            if self.position is not None:
                self._check_stop_loss(date, opens[i], lows[i], atr_value)

            if self.position is None and (i - 1) in buy_bars:
                self.open_position(date, opens[i], atr_value)

            self._mark_to_market(date, closes[i])

        if n > 0:
            self._liquidate(closes[-1])
        final_equity = self.cash

        metrics = PerformanceMetrics(self.initial_capital).calculate(
            trades=self.trades,
            equity=self.equity_curve,
            dates=dates,
            final_equity=final_equity,
            max_drawdown=self.max_drawdown,
            exposure_bars=self.exposure_bars,
            timeframe=timeframe,
        )

        return BacktestResult(
            trades=tuple(self.trades),
            signals=tuple(signals),
            equity=tuple(self.equity_curve),
            equity_dates=tuple(self.equity_dates),
            metrics=metrics,
        )


def run_backtest(
    series: OHLCSeries,
    indicators: IndicatorSeries,
    config: StrategyConfig,
    timeframe: Timeframe = Timeframe.DAILY
) -> BacktestResult:
    """
    Generate signals and simulate them on a fresh simulator.

    Args:
        series: Price series at the chosen resolution
        indicators: Output of ``compute_indicators`` for ``series`` and ``config``
        config: Strategy parameters
        timeframe: Bar resolution of ``series``

    Returns:
        BacktestResult
    """
    timeframe = Timeframe(timeframe)
    signals = generate_signals(series, indicators, config)
    result = PortfolioSimulator(config).run(series, indicators, signals, timeframe)
    log_summary(result.metrics)
    return result
