#!/usr/bin/env python3
"""
Strategy Backtester command line

Runs a single backtest or a parameter grid search on a CSV of daily bars.
"""
import argparse
import signal
import sys
import threading

from loguru import logger

from .core.config import StrategyConfig, settings
from .core.log_setup import setup_logging
from .data_structures import BacktestResult, Timeframe
from .data_utils import load_csv, resample_ohlc, validate_series
from .indicators import compute_indicators
from .optimizer import OBJECTIVES, PARAMETER_MAP, OptimizationCancelled, parse_range_spec, run_optimization
from .performance_metrics import buy_and_hold
from .portfolio_simulator import run_backtest


def print_summary(result: BacktestResult, benchmark_cagr: float) -> None:
    """Print the headline metrics of a backtest."""
    m = result.metrics
    print(f"Final Equity: ${m.final_equity:,.2f}")
    print(f"Total Return: {m.total_return:.2f}%")
    print(f"CAGR: {m.cagr:.2f}% (buy & hold {benchmark_cagr:.2f}%)")
    print(f"Sharpe Ratio: {m.sharpe_ratio:.2f}")
    print(f"Sortino Ratio: {m.sortino_ratio:.2f}")
    print(f"Calmar Ratio: {m.calmar_ratio:.2f}")
    print(f"Max Drawdown: {m.max_drawdown:.2f}%")
    print(f"Round Trips: {m.num_trades}")
    print(f"Win Rate: {m.win_rate:.2f}%")
    print(f"Profit Factor: {m.profit_factor:.2f}")
    print(f"Time in Market: {m.time_in_market_pct:.2f}%")
    print(f"Max Consecutive Losses: {m.max_consec_losses}")


def build_config(pairs) -> StrategyConfig:
    """Default strategy parameters with FIELD=VALUE overrides applied."""
    overrides = {}
    for pair in pairs:
        name, sep, text = pair.partition('=')
        if not sep:
            raise ValueError(f"Expected FIELD=VALUE, got '{pair}'")
        overrides[name.strip()] = StrategyConfig.parse_field(name.strip(), text)

    config = StrategyConfig().with_overrides(**overrides)
    config.validate()
    if overrides:
        logger.info(f"Strategy overrides: {overrides}")
    return config


def _load(path: str):
    series = load_csv(path)
    report = validate_series(series)
    for issue in report['issues']:
        logger.warning(f"{path}: {issue}")
    return series


def cmd_backtest(args: argparse.Namespace) -> int:
    config = build_config(args.overrides)

    series = resample_ohlc(_load(args.csv), args.timeframe)
    indicators = compute_indicators(series, config)
    result = run_backtest(series, indicators, config, args.timeframe)

    logger.info(f"Backtest on {len(series)} {args.timeframe} bars finished")
    print_summary(result, buy_and_hold(series).cagr)
    if args.show_trades:
        print()
        print(result.trades_frame().to_string(index=False))
    return 0


def cmd_optimize(args: argparse.Namespace) -> int:
    range1 = parse_range_spec(args.range1)
    range2 = parse_range_spec(args.range2) if args.param2 else []
    if not range1:
        logger.error(f"Invalid range for {args.param1}: '{args.range1}'")
        return 1

    base_config = build_config(args.overrides)
    series = _load(args.csv)

    # Ctrl-C stops the sweep after the running cell
    cancel_event = threading.Event()
    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: cancel_event.set())
    try:
        result = run_optimization(
            series,
            base_config,
            args.param1,
            range1,
            args.param2,
            range2,
            objective=args.objective,
            max_workers=args.workers,
            cancel_event=cancel_event,
        )
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    print(result.to_frame().to_string(float_format=lambda v: f"{v:.4f}"))
    print()
    if result.best is None:
        print("No parameter combination produced enough trades")
        return 0

    params = ', '.join(f"{k}={v}" for k, v in result.best.params.items())
    print(f"Best {result.objective}: {result.best.score:.4f} with {params}")
    print_summary(result.best.result, result.benchmark_cagr)
    return 0


def _add_override_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--set',
        dest='overrides',
        action='append',
        default=[],
        metavar='FIELD=VALUE',
        help='Override a strategy parameter, e.g. rsi_period=10 or use_macd=false (repeatable)'
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='strategy-backtester', description='Backtest and optimize an indicator strategy')
    parser.add_argument('--log-level', default=settings.log_level, help=f'Log level (default: {settings.log_level})')
    subparsers = parser.add_subparsers(dest='command', required=True)

    bt = subparsers.add_parser('backtest', help='Run one backtest')
    bt.add_argument('csv', help='CSV file with date, open, high, low, close[, volume] columns')
    bt.add_argument(
        '--timeframe',
        choices=[t.value for t in Timeframe],
        default=Timeframe.DAILY.value,
        help='Bar resolution to resample to (default: daily)'
    )
    bt.add_argument('--show-trades', action='store_true', help='Print the round-trip ledger')
    _add_override_argument(bt)
    bt.set_defaults(func=cmd_backtest)

    opt = subparsers.add_parser('optimize', help='Grid search one or two parameters on daily bars')
    opt.add_argument('csv', help='CSV file with date, open, high, low, close[, volume] columns')
    opt.add_argument('--param1', required=True, choices=sorted(PARAMETER_MAP), help='Parameter for the grid columns')
    opt.add_argument('--range1', required=True, help="Range such as '7-21:1'")
    opt.add_argument('--param2', choices=sorted(PARAMETER_MAP), help='Parameter for the grid rows')
    opt.add_argument('--range2', default='', help="Range such as '1.0-4.0:0.25'")
    opt.add_argument('--objective', choices=OBJECTIVES, default='sharpe', help='Score to maximize (default: sharpe)')
    opt.add_argument('--workers', type=int, default=settings.optimizer_max_workers,
                     help=f'Worker processes (default: {settings.optimizer_max_workers})')
    _add_override_argument(opt)
    opt.set_defaults(func=cmd_optimize)

    return parser


def main(argv=None) -> None:
    """Main entry point for the command line."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level.upper(), settings.log_file or None)

    try:
        sys.exit(args.func(args))
    except OptimizationCancelled:
        logger.warning("Optimization cancelled by user")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Stopped by user")
        sys.exit(1)
    except (OSError, ValueError) as e:
        logger.error(f"{e}")
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
