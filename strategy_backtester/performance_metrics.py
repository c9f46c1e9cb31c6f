"""
Performance metrics calculation for backtesting
"""
import math
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from loguru import logger

from .core.config import INITIAL_CAPITAL
from .data_structures import (
    BacktestMetrics,
    Benchmark,
    OHLCSeries,
    RoundTrip,
    SignalType,
    Timeframe,
    Trade,
)

SECONDS_PER_YEAR = 365.25 * 24 * 3600


def years_between(start: str, end: str) -> float:
    """Elapsed calendar time between two bar dates in years of 365.25 days."""
    elapsed = pd.Timestamp(end) - pd.Timestamp(start)
    return elapsed.total_seconds() / SECONDS_PER_YEAR


def annualized_growth(final_value: float, initial_value: float, years: float) -> float:
    """Compound annual growth rate in percent, 0 when no time has elapsed."""
    if years <= 0 or initial_value <= 0:
        return 0.0
    ratio = final_value / initial_value
    if ratio <= 0:
        return -100.0
    return (ratio ** (1 / years) - 1) * 100


def pair_trades(trades: Sequence[Trade]) -> List[RoundTrip]:
    """
    Match each sell with the most recent unmatched buy.

    A trailing buy without a closing sell is not a round trip.
    """
    paired: List[RoundTrip] = []
    last_buy: Optional[Trade] = None
    for trade in trades:
        if trade.type == SignalType.BUY:
            last_buy = trade
        elif trade.type == SignalType.SELL and last_buy is not None:
            paired.append(RoundTrip(buy=last_buy, sell=trade))
            last_buy = None
    return paired


def buy_and_hold(series: OHLCSeries, initial_capital: float = INITIAL_CAPITAL) -> Benchmark:
    """
    Buy-and-hold reference on the series' closes.

    Returns:
        Benchmark with the equity path, total return and CAGR in percent
    """
    close = series.close
    flat = Benchmark(equity=tuple(initial_capital for _ in close), total_return=0.0, cagr=0.0)
    if len(close) < 2:
        return flat

    first = close[0]
    if first <= 0:
        logger.warning(f"First close is {first}, buy-and-hold benchmark set to zero")
        return flat

    equity = tuple(initial_capital * (price / first) for price in close)
    total_return = (close[-1] - first) / first
    years = years_between(series.dates[0], series.dates[-1])
    cagr = annualized_growth(1 + total_return, 1.0, years)
    return Benchmark(equity=equity, total_return=total_return * 100, cagr=cagr)


class PerformanceMetrics:
    """
    Performance metrics calculator for a single-asset backtest.

    Ratios assume a zero risk-free rate.
    """

    def __init__(self, initial_capital: float = INITIAL_CAPITAL):
        """
        Initialize PerformanceMetrics

        Args:
            initial_capital: Starting account value of the backtest
        """
        self.initial_capital = initial_capital

    def calculate(
        self,
        trades: Sequence[Trade],
        equity: Sequence[float],
        dates: Sequence[str],
        final_equity: float,
        max_drawdown: float,
        exposure_bars: int,
        timeframe: Timeframe = Timeframe.DAILY
    ) -> BacktestMetrics:
        """
        Calculate the full metric set.

        Args:
            trades: Executed trades in order
            equity: Mark-to-market equity per simulated bar
            dates: Dates of the whole series (first and last set the period length)
            final_equity: Account value after the terminal liquidation
            max_drawdown: Maximum peak-to-trough decline in percent
            exposure_bars: Number of bars a position was held
            timeframe: Bar resolution used for annualization

        Returns:
            BacktestMetrics
        """
        paired = pair_trades(trades)
        trade_metrics = self._calculate_trade_metrics(paired)
        risk_metrics = self._calculate_risk_metrics(equity, timeframe)

        years = years_between(dates[0], dates[-1]) if len(dates) > 1 else 0.0
        cagr = annualized_growth(final_equity, self.initial_capital, years)
        total_return = (final_equity - self.initial_capital) / self.initial_capital * 100
        calmar_ratio = cagr / max_drawdown if max_drawdown > 0 else math.inf
        time_in_market = exposure_bars / len(dates) * 100 if len(dates) > 0 else 0.0

        return BacktestMetrics(
            final_equity=final_equity,
            total_return=total_return,
            win_rate=trade_metrics['win_rate'],
            profit_factor=trade_metrics['profit_factor'],
            avg_win=trade_metrics['avg_win'],
            avg_loss=trade_metrics['avg_loss'],
            max_drawdown=max_drawdown,
            sharpe_ratio=risk_metrics['sharpe_ratio'],
            sortino_ratio=risk_metrics['sortino_ratio'],
            calmar_ratio=calmar_ratio,
            cagr=cagr,
            num_trades=len(paired),
            time_in_market_pct=time_in_market,
            max_consec_losses=trade_metrics['max_consecutive_losses'],
        )

    def _calculate_trade_metrics(self, paired: List[RoundTrip]) -> Dict[str, float]:
        """Calculate round-trip based metrics"""
        if not paired:
            return {
                'win_rate': 0.0,
                'avg_win': 0.0,
                'avg_loss': 0.0,
                'profit_factor': 0.0,
                'max_consecutive_losses': 0
            }

        returns = np.array([trip.return_pct for trip in paired])
        wins = returns[returns > 0]
        losses = returns[returns <= 0]

        win_rate = len(wins) / len(paired) * 100
        avg_win = wins.mean() * 100 if len(wins) > 0 else 0.0
        avg_loss = abs(losses.mean()) * 100 if len(losses) > 0 else 0.0

        # Gross profit and loss in currency
        gross_profit = sum(trip.pnl for trip in paired if trip.sell.price > trip.buy.price)
        gross_loss = sum(-trip.pnl for trip in paired if trip.sell.price <= trip.buy.price)
        if gross_loss > 0:
            profit_factor = gross_profit / gross_loss
        else:
            profit_factor = math.inf if gross_profit > 0 else 0.0

        return {
            'win_rate': win_rate,
            'avg_win': float(avg_win),
            'avg_loss': float(avg_loss),
            'profit_factor': profit_factor,
            'max_consecutive_losses': self._calculate_max_consecutive_losses(returns)
        }

    @staticmethod
    def _calculate_max_consecutive_losses(returns: np.ndarray) -> int:
        """Longest run of round trips that did not make money."""
        current = longest = 0
        for r in returns:
            if r <= 0:
                current += 1
                longest = max(longest, current)
            else:
                current = 0
        return longest

    def _calculate_risk_metrics(self, equity: Sequence[float], timeframe: Timeframe) -> Dict[str, float]:
        """Calculate return-based risk metrics"""
        if len(equity) < 2:
            return {'sharpe_ratio': 0.0, 'sortino_ratio': 0.0}

        values = np.asarray(equity, dtype=float)
        returns = np.diff(values) / values[:-1]
        factor = timeframe.periods_per_year

        mean_return = returns.mean()
        std_dev = returns.std()
        sharpe_ratio = (mean_return * factor) / (std_dev * math.sqrt(factor)) if std_dev > 0 else 0.0

        negative = returns[returns < 0]
        downside_dev = math.sqrt((negative ** 2).mean()) if len(negative) > 0 else 0.0
        sortino_ratio = (mean_return * factor) / (downside_dev * math.sqrt(factor)) if downside_dev > 0 else 0.0

        return {
            'sharpe_ratio': float(sharpe_ratio),
            'sortino_ratio': float(sortino_ratio)
        }


def log_summary(metrics: BacktestMetrics) -> None:
    logger.debug(
        f"Backtest complete: final equity {metrics.final_equity:,.2f} "
        f"({metrics.total_return:.2f}%), {metrics.num_trades} round trips, "
        f"Sharpe {metrics.sharpe_ratio:.2f}, max drawdown {metrics.max_drawdown:.2f}%"
    )
