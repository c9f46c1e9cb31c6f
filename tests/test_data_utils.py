import pandas as pd
import pytest

from strategy_backtester.data_structures import OHLCSeries, Timeframe
from strategy_backtester.data_utils import load_csv, resample_ohlc, validate_series


def calendar_series(start, days):
    """One bar per calendar day with distinct values per bar"""
    dates = pd.date_range(start=start, periods=days, freq='D')
    return OHLCSeries(
        dates=[d.strftime('%Y-%m-%d') for d in dates],
        open=[100.0 + i for i in range(days)],
        high=[105.0 + i for i in range(days)],
        low=[95.0 + i for i in range(days)],
        close=[101.0 + i for i in range(days)],
        volume=[10.0] * days,
    )


def test_weekly_bars_start_on_sunday():
    # 2024-01-01 is a Monday, 2024-01-07 and 2024-01-14 are Sundays
    series = calendar_series('2024-01-01', 14)
    weekly = resample_ohlc(series, Timeframe.WEEKLY)

    assert weekly.dates == ('2024-01-06', '2024-01-13', '2024-01-14')
    assert weekly.open == (100.0, 106.0, 113.0)
    assert weekly.close == (106.0, 113.0, 114.0)
    assert weekly.high == (110.0, 117.0, 118.0)
    assert weekly.low == (95.0, 101.0, 108.0)
    assert weekly.volume == (60.0, 70.0, 10.0)


def test_monthly_bars():
    series = calendar_series('2024-01-30', 4)
    monthly = resample_ohlc(series, 'monthly')
    assert monthly.dates == ('2024-01-31', '2024-02-02')
    assert monthly.open == (100.0, 102.0)
    assert monthly.close == (102.0, 104.0)


def test_daily_returns_series_unchanged(sample_series):
    assert resample_ohlc(sample_series, Timeframe.DAILY) is sample_series


def test_unequal_columns_rejected():
    with pytest.raises(ValueError):
        OHLCSeries(dates=['2024-01-01', '2024-01-02'], open=[1.0], high=[1.0, 2.0], low=[1.0, 2.0],
                   close=[1.0, 2.0])


def test_volume_defaults_to_zero():
    series = OHLCSeries(dates=['2024-01-01'], open=[1.0], high=[1.0], low=[1.0], close=[1.0])
    assert series.volume == (0.0,)


def test_validate_clean_series(sample_series):
    report = validate_series(sample_series)
    assert report['is_valid'] is True
    assert report['row_count'] == len(sample_series)
    assert report['issues'] == []


def test_validate_reports_problems():
    series = OHLCSeries(
        dates=['2024-01-02', '2024-01-01', '2024-01-01'],
        open=[100.0, 0.0, 100.0],
        high=[99.0, 101.0, 101.0],
        low=[100.0, 99.0, 99.0],
        close=[100.0, 100.0, 100.0],
        volume=[1.0, -5.0, 1.0],
    )
    report = validate_series(series)
    assert report['is_valid'] is False
    assert len(report['issues']) == 5


def test_validate_empty_series():
    report = validate_series(OHLCSeries(dates=[], open=[], high=[], low=[], close=[]))
    assert report['is_valid'] is False
    assert report['row_count'] == 0


def test_load_csv_normalizes_columns(tmp_path):
    path = tmp_path / 'prices.csv'
    pd.DataFrame({
        'Date': ['2024-01-03', '2024-01-02'],
        'Open': [11.0, 10.0],
        'High': [12.0, 11.0],
        'Low': [10.0, 9.0],
        'Close': [11.5, 10.5],
    }).to_csv(path, index=False)

    series = load_csv(str(path))
    assert series.dates == ('2024-01-02', '2024-01-03')
    assert series.close == (10.5, 11.5)
    assert series.volume == (0.0, 0.0)


def test_load_csv_round_trip(tmp_path, sample_series):
    path = tmp_path / 'sample.csv'
    sample_series.to_dataframe().to_csv(path, index=False)
    loaded = load_csv(str(path))
    assert loaded.dates == sample_series.dates
    assert loaded.close == pytest.approx(sample_series.close)


def test_load_csv_requires_dates(tmp_path):
    path = tmp_path / 'nodates.csv'
    pd.DataFrame({'open': [1.0], 'high': [1.0], 'low': [1.0], 'close': [1.0]}).to_csv(path, index=False)
    with pytest.raises(ValueError):
        load_csv(str(path))
