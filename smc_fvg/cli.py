"""
Command line entry point: run an SMC liquidity/FVG backtest over a CSV file
"""
import argparse
import logging
import sys
from pathlib import Path

import yaml

from config import AppConfig, ConfigLoader
from .backtester import BacktestSimulator
from .data_loader import load_csv, resample_bars, setup_logging
from .errors import SMCError
from .report import print_report, save_results
from .strategy import create_default_registry

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='SMC Liquidity + FVG Retracement - Backtest',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  smc-fvg --data data/btcusdt_15m.csv
  smc-fvg --data data/btcusdt_1m.csv --timeframe 5m --config config/smc_fvg.yaml --out trades.csv
        """
    )

    parser.add_argument('--data', required=True,
                        help='OHLCV CSV file (timestamp, open, high, low, close[, volume])')
    parser.add_argument('--config', default=None,
                        help='YAML config file (default: built-in defaults)')
    parser.add_argument('--symbol', default=None,
                        help='Symbol name for the report (default: from config)')
    parser.add_argument('--timeframe', default=None,
                        help='Resample the data to this timeframe before testing (e.g. 5m, 1h)')
    parser.add_argument('--balance', type=float, default=None,
                        help='Initial balance (default: from config)')
    parser.add_argument('--out', default=None,
                        help='Write closed trades to this CSV file')
    parser.add_argument('--results-dir', default=None,
                        help='Write summary JSON, trades and equity CSV files to this directory')
    parser.add_argument('--log-level', default=None,
                        help='Logging level (default: from config)')
    return parser


def run(args: argparse.Namespace) -> int:
    try:
        config = ConfigLoader(args.config).load() if args.config else AppConfig()
    except (ValueError, yaml.YAMLError) as e:
        logger.error(f"Invalid configuration {args.config}: {e}")
        return 1

    setup_logging(args.log_level or config.log_level, config.log_file)

    backtest = config.backtest
    if args.symbol:
        backtest.symbol = args.symbol.upper()
    if args.balance is not None:
        backtest.initial_balance = args.balance
    if not backtest.params:
        backtest.params = config.strategy.to_dict()

    if not Path(args.data).exists():
        logger.error(f"Data file not found: {args.data}")
        return 1

    try:
        bars = load_csv(args.data)
        if args.timeframe:
            bars = resample_bars(bars, args.timeframe)
            backtest.timeframe = args.timeframe
            logger.info(f"Resampled to {len(bars)} {args.timeframe} bars")

        registry = create_default_registry()
        simulator = BacktestSimulator(registry.get(config.strategy_id))
        result = simulator.run(backtest, bars)
    except (SMCError, ValueError, OSError) as e:
        logger.error(f"Error during backtest: {e}")
        return 1

    print_report(result)

    if args.out:
        result.trades_frame().to_csv(args.out, index=False)
        logger.info(f"Trades saved to: {args.out}")
    if args.results_dir:
        save_results(result, args.results_dir)

    return 0


def main(argv=None) -> None:
    """Main function with command line argument parsing"""
    args = build_parser().parse_args(argv)
    sys.exit(run(args))


if __name__ == '__main__':
    main()
