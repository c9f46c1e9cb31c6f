"""
Utility functions for price series validation, loading and resampling.
"""
from typing import Any, Dict, List, Union

import pandas as pd
from loguru import logger

from .data_structures import OHLC_COLUMNS, OHLCSeries, Timeframe

# Aggregation applied to every weekly/monthly group
OHLC_AGGREGATION = {
    'date': 'last',
    'open': 'first',
    'high': 'max',
    'low': 'min',
    'close': 'last',
    'volume': 'sum'
}


def validate_series(series: OHLCSeries) -> Dict[str, Any]:
    """
    Check an OHLC series for quality problems.

    Args:
        series: Series to validate

    Returns:
        Dictionary with ``is_valid``, ``row_count`` and a list of ``issues``
    """
    if len(series) == 0:
        return {
            'is_valid': False,
            'row_count': 0,
            'issues': ['Series is empty']
        }

    issues: List[str] = []

    timestamps = pd.to_datetime(list(series.dates), utc=True)
    if not timestamps.is_monotonic_increasing:
        issues.append("Dates are not in ascending order")
    if timestamps.duplicated().any():
        issues.append(f"Found {int(timestamps.duplicated().sum())} duplicate dates")

    for name in ('open', 'high', 'low', 'close'):
        values = getattr(series, name)
        bad = sum(1 for v in values if v <= 0)
        if bad:
            issues.append(f"Column '{name}' contains {bad} non-positive values")

    inverted = sum(1 for high, low in zip(series.high, series.low) if high < low)
    if inverted:
        issues.append(f"Found {inverted} bars with high below low")

    if any(v < 0 for v in series.volume):
        issues.append("Negative volume values found")

    return {
        'is_valid': len(issues) == 0,
        'row_count': len(series),
        'issues': issues
    }


def _group_keys(timestamps: pd.DatetimeIndex, timeframe: Timeframe) -> pd.Index:
    if timeframe == Timeframe.WEEKLY:
        # Weeks start on Sunday; pandas numbers Monday as 0
        days_since_sunday = (timestamps.dayofweek + 1) % 7
        week_start = timestamps.normalize() - pd.to_timedelta(days_since_sunday, unit='D')
        return pd.Index(week_start.strftime('%Y-%m-%d'))
    return pd.Index(timestamps.strftime('%Y-%m'))


def resample_ohlc(series: OHLCSeries, timeframe: Union[Timeframe, str]) -> OHLCSeries:
    """
    Aggregate daily bars into weekly or monthly bars.

    Weeks are Sunday-anchored UTC weeks and months are UTC calendar months.
    Each group takes the first open, the last close, the highest high, the
    lowest low, the summed volume and the date of its last bar.

    Args:
        series: Daily series
        timeframe: Target resolution; daily returns the series unchanged

    Returns:
        Resampled series
    """
    timeframe = Timeframe(timeframe)
    if timeframe == Timeframe.DAILY or len(series) == 0:
        return series

    df = series.to_dataframe()
    timestamps = pd.DatetimeIndex(pd.to_datetime(df['date'], utc=True))
    keys = _group_keys(timestamps, timeframe)

    resampled = df.groupby(keys, sort=False).agg(OHLC_AGGREGATION).reset_index(drop=True)
    logger.debug(f"Resampled {len(series)} daily bars into {len(resampled)} {timeframe.value} bars")

    return OHLCSeries(
        dates=tuple(resampled['date']),
        open=tuple(float(x) for x in resampled['open']),
        high=tuple(float(x) for x in resampled['high']),
        low=tuple(float(x) for x in resampled['low']),
        close=tuple(float(x) for x in resampled['close']),
        volume=tuple(float(x) for x in resampled['volume']),
    )


def load_csv(path: str) -> OHLCSeries:
    """
    Read bars from a CSV file with date/open/high/low/close[/volume] columns.

    Column names are matched case-insensitively and rows are sorted by date.
    """
    df = pd.read_csv(path)
    df.columns = [str(col).strip().lower() for col in df.columns]
    if 'date' not in df.columns and 'timestamp' in df.columns:
        df = df.rename(columns={'timestamp': 'date'})
    if 'date' not in df.columns:
        raise ValueError(f"{path} has no 'date' column")

    df['date'] = pd.to_datetime(df['date'])
    df = df.sort_values('date').reset_index(drop=True)
    columns = [col for col in OHLC_COLUMNS if col in df.columns]
    series = OHLCSeries.from_dataframe(df[columns])
    logger.info(f"Loaded {len(series)} bars from {path}")
    return series
