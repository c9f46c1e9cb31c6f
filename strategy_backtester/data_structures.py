"""
Data structures for price series, signals, trades and backtest results.
"""
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

import pandas as pd

# Indicator output: one entry per bar, None during the warm-up window
OptionalSeries = Tuple[Optional[float], ...]

OHLC_COLUMNS = ['date', 'open', 'high', 'low', 'close', 'volume']


class Timeframe(str, Enum):
    """Bar resolution of a price series."""
    DAILY = 'daily'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'

    @property
    def periods_per_year(self) -> int:
        """Annualization factor for per-bar returns."""
        return {'daily': 252, 'weekly': 52, 'monthly': 12}[self.value]


class SignalType(str, Enum):
    """Direction of a signal or trade."""
    BUY = 'buy'
    SELL = 'sell'


@dataclass(frozen=True)
class OHLCSeries:
    """
    Immutable OHLCV price series for a single asset.

    Attributes:
        dates: Bar dates as ISO strings, strictly ascending
        open: Opening prices
        high: High prices
        low: Low prices
        close: Closing prices
        volume: Traded volume
    """
    dates: Tuple[str, ...]
    open: Tuple[float, ...]
    high: Tuple[float, ...]
    low: Tuple[float, ...]
    close: Tuple[float, ...]
    volume: Tuple[float, ...] = ()

    def __post_init__(self):
        # Freeze whatever sequences were passed in
        for name in ('dates', 'open', 'high', 'low', 'close', 'volume'):
            object.__setattr__(self, name, tuple(getattr(self, name)))
        if not self.volume:
            object.__setattr__(self, 'volume', tuple(0.0 for _ in self.dates))

        lengths = {name: len(getattr(self, name)) for name in ('dates', 'open', 'high', 'low', 'close', 'volume')}
        if len(set(lengths.values())) > 1:
            raise ValueError(f"OHLC columns must have equal length, got {lengths}")

    def __len__(self) -> int:
        return len(self.dates)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> 'OHLCSeries':
        """
        Build a series from a DataFrame.

        The DataFrame needs ``open``, ``high``, ``low`` and ``close`` columns and
        either a ``date`` column or a DatetimeIndex. ``volume`` is optional.
        """
        missing = [col for col in ('open', 'high', 'low', 'close') if col not in df.columns]
        if missing:
            raise ValueError(f"Missing required columns: {missing}")

        if 'date' in df.columns:
            dates = pd.to_datetime(df['date'])
        elif isinstance(df.index, pd.DatetimeIndex):
            dates = df.index.to_series()
        else:
            raise ValueError("DataFrame needs a 'date' column or a DatetimeIndex")

        volume = df['volume'] if 'volume' in df.columns else pd.Series(0.0, index=df.index)
        return cls(
            dates=tuple(d.strftime('%Y-%m-%d') for d in dates),
            open=tuple(float(x) for x in df['open']),
            high=tuple(float(x) for x in df['high']),
            low=tuple(float(x) for x in df['low']),
            close=tuple(float(x) for x in df['close']),
            volume=tuple(float(x) for x in volume),
        )

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame({
            'date': list(self.dates),
            'open': list(self.open),
            'high': list(self.high),
            'low': list(self.low),
            'close': list(self.close),
            'volume': list(self.volume),
        })


class BollingerBands(NamedTuple):
    upper: OptionalSeries
    middle: OptionalSeries
    lower: OptionalSeries


class MACDResult(NamedTuple):
    macd: OptionalSeries
    signal: OptionalSeries
    histogram: OptionalSeries


@dataclass(frozen=True)
class IndicatorSeries:
    """All indicator outputs for one series, aligned bar-for-bar."""
    bb: BollingerBands
    rsi: OptionalSeries
    macd: MACDResult
    atr: OptionalSeries
    sma_slow: OptionalSeries
    sma_fast: OptionalSeries

    def to_dataframe(self) -> pd.DataFrame:
        """Indicator table with None kept as missing values."""
        return pd.DataFrame({
            'bb_upper': list(self.bb.upper),
            'bb_middle': list(self.bb.middle),
            'bb_lower': list(self.bb.lower),
            'rsi': list(self.rsi),
            'macd': list(self.macd.macd),
            'macd_signal': list(self.macd.signal),
            'macd_histogram': list(self.macd.histogram),
            'atr': list(self.atr),
            'sma_slow': list(self.sma_slow),
            'sma_fast': list(self.sma_fast),
        }, dtype=object)


@dataclass(frozen=True)
class Signal:
    """
    A buy or sell signal raised at the close of bar ``index``.

    The simulator acts on it at the open of the following bar.
    """
    type: SignalType
    index: int
    date: str
    price: float
    reason: str


@dataclass(frozen=True)
class Position:
    """The single open long position held by the simulator."""
    entry_price: float
    shares: int

    @property
    def cost_basis(self) -> float:
        return self.entry_price * self.shares

    def value(self, price: float) -> float:
        """Market value at the given price."""
        return self.shares * price


@dataclass(frozen=True)
class Trade:
    """
    A single executed buy or sell.

    Attributes:
        type: SignalType.BUY or SignalType.SELL
        date: Execution bar date
        price: Fill price after slippage
        shares: Number of shares
        reason: Rule that triggered the execution
    """
    type: SignalType
    date: str
    price: float
    shares: int
    reason: str


@dataclass(frozen=True)
class RoundTrip:
    """A buy matched with the sell that closed it."""
    buy: Trade
    sell: Trade

    @property
    def return_pct(self) -> float:
        """Return as a fraction of the entry price."""
        return (self.sell.price - self.buy.price) / self.buy.price

    @property
    def pnl(self) -> float:
        return (self.sell.price - self.buy.price) * self.buy.shares

    @property
    def is_winning_trade(self) -> bool:
        return self.return_pct > 0


@dataclass(frozen=True)
class BacktestMetrics:
    """
    Performance summary of a backtest.

    Percent-valued fields (returns, drawdown, win rate, averages, exposure)
    are expressed in percent.
    """
    final_equity: float
    total_return: float
    win_rate: float
    profit_factor: float
    avg_win: float
    avg_loss: float
    max_drawdown: float
    sharpe_ratio: float
    sortino_ratio: float
    calmar_ratio: float
    cagr: float
    num_trades: int
    time_in_market_pct: float
    max_consec_losses: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BacktestResult:
    """
    Container for backtest results and metrics.

    Attributes:
        trades: Executed trades in order
        signals: Signals raised by the strategy
        equity: Mark-to-market account value for bars 1..N-1
        equity_dates: Dates matching ``equity``
        metrics: Performance metrics
    """
    trades: Tuple[Trade, ...]
    signals: Tuple[Signal, ...]
    equity: Tuple[float, ...]
    equity_dates: Tuple[str, ...]
    metrics: BacktestMetrics

    def round_trips(self) -> List[RoundTrip]:
        from .performance_metrics import pair_trades
        return pair_trades(self.trades)

    def trades_frame(self) -> pd.DataFrame:
        """Completed round trips as a DataFrame."""
        rows = []
        for pair_id, trip in enumerate(self.round_trips(), start=1):
            rows.append({
                'pair_id': pair_id,
                'entry_date': trip.buy.date,
                'entry_price': trip.buy.price,
                'exit_date': trip.sell.date,
                'exit_price': trip.sell.price,
                'shares': trip.buy.shares,
                'return_pct': trip.return_pct * 100,
                'pnl': trip.pnl,
                'exit_reason': trip.sell.reason,
            })
        return pd.DataFrame(rows, columns=[
            'pair_id', 'entry_date', 'entry_price', 'exit_date', 'exit_price',
            'shares', 'return_pct', 'pnl', 'exit_reason'
        ])

    def equity_frame(self) -> pd.DataFrame:
        """Equity curve with running drawdown in percent."""
        df = pd.DataFrame({'date': list(self.equity_dates), 'equity': list(self.equity)})
        running_max = df['equity'].cummax()
        df['drawdown_pct'] = (running_max - df['equity']) / running_max * 100
        return df


@dataclass(frozen=True)
class Benchmark:
    """Buy-and-hold reference for the same series."""
    equity: Tuple[float, ...]
    total_return: float
    cagr: float


@dataclass(frozen=True)
class BestCell:
    """Best-scoring optimization cell."""
    score: float
    params: Dict[str, float]
    result: BacktestResult


@dataclass(frozen=True)
class OptimizationResult:
    """
    Grid search output.

    ``grid[row][col]`` holds the score for ``ys[row]`` (parameter 2) and
    ``xs[col]`` (parameter 1); None where the score is not finite.
    """
    grid: List[List[Optional[float]]]
    xs: List[float]
    ys: List[float]
    param1: str
    param2: Optional[str]
    objective: str
    best: Optional[BestCell] = None
    benchmark_cagr: float = 0.0

    def to_frame(self) -> pd.DataFrame:
        """Score heatmap indexed by parameter 2 values, columns parameter 1 values."""
        if not self.grid:
            return pd.DataFrame()
        index = self.ys if len(self.ys) == len(self.grid) else list(range(len(self.grid)))
        return pd.DataFrame(self.grid, index=index, columns=self.xs, dtype=float)
