#!/usr/bin/env python3
"""
Strategy Lab - Demo Runner

Runs the evaluation core end to end on one candle series:
    Step 1: Load candles (CSV upload or seeded synthetic walk)
    Step 2: Genetic parameter search (optional)
    Step 3: Backtest the selected (or optimized) strategy
    Step 4: Monte Carlo resampling of the final ledger
    Step 5: Save the strategy / export JSON (optional)

EXECUTION
    python run_demo.py
    python run_demo.py --csv data/BTCUSDT_1h.csv --strategy sma-cross --optimize
    python run_demo.py --strategy rsi-filter --monte-carlo 5000 --seed 7
    python run_demo.py --output outputs/result.json --store outputs/strategies.json

Version: 1.0.0
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from strategy_lab.backtest_engine import BacktestEngine, BacktestResult, format_backtest_report
from strategy_lab.config import DEFAULT_PARAM_RANGES, MC_DEFAULT_ITERATIONS, OPTIMIZER, VERSION
from strategy_lab.data_collector import CandleSourceError, CsvCandleSource, generate_synthetic_candles
from strategy_lab.monte_carlo import MonteCarloSimulator, format_monte_carlo_report
from strategy_lab.optimizer import GeneticOptimizer
from strategy_lab.strategy import Candle, InvalidParameterError, StrategyConfig, StrategyKind, rsi_filter, sma_cross
from strategy_lab.strategy_store import JsonStrategyStore


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_SYMBOL: str = "DEMO"
DEFAULT_TIMEFRAME: str = "1d"
DEFAULT_SYNTHETIC_BARS: int = 500


# =============================================================================
# DISPLAY COMPONENTS
# =============================================================================

def print_section_header(title: str, char: str = "═") -> None:
    """Print a formatted section header."""
    width = 79
    print()
    print(char * width)
    print(f"  {title}")
    print(char * width)
    print()


# =============================================================================
# STEPS
# =============================================================================

def load_candles(args: argparse.Namespace, logger: logging.Logger) -> Optional[List[Candle]]:
    """Step 1: candles from the CSV file, or a synthetic walk when none is given."""
    print_section_header("STEP 1: MARKET DATA")

    if args.csv:
        try:
            candles = CsvCandleSource(args.csv).fetch(args.symbol, args.timeframe, args.limit)
        except (CandleSourceError, OSError) as e:
            logger.error(f"Could not load candles: {e}")
            return None
    else:
        logger.info(f"No CSV given; generating {args.bars} synthetic bars (seed {args.seed})")
        candles = generate_synthetic_candles(args.bars, seed=args.seed)

    if not candles:
        logger.warning("Candle series is empty")
    else:
        logger.info(f"Loaded {len(candles):,} candles")
    return candles


def build_config(args: argparse.Namespace) -> StrategyConfig:
    kind = StrategyKind(args.strategy)
    if kind is StrategyKind.SMA_CROSS:
        return sma_cross(allow_short=args.allow_short)
    return rsi_filter(allow_short=args.allow_short)


def run_optimizer(
    config: StrategyConfig,
    candles: List[Candle],
    args: argparse.Namespace,
    logger: logging.Logger,
) -> StrategyConfig:
    """Step 2: genetic search over the dashboard's default grid."""
    print_section_header("STEP 2: PARAMETER OPTIMIZATION")

    ranges = {k: v for k, v in DEFAULT_PARAM_RANGES.items() if config.accepts(k)}
    optimizer = GeneticOptimizer(seed=args.seed, max_workers=args.workers)
    result = optimizer.run(config, ranges, candles)

    print(f"  Generations:   {result.generations_run}" + (" (early stop)" if result.early_stopped else ""))
    print(f"  Backtests:     {result.evaluations}")
    print(f"  Best fitness:  {result.best_fitness:.4f}")
    print(f"  Best values:   {result.best_values}")
    logger.info("Optimization complete")
    return result.best_config


def export_json(
    path: Path,
    config: StrategyConfig,
    result: BacktestResult,
    mc_payload: Optional[Dict[str, Any]],
    logger: logging.Logger,
) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "version": VERSION,
        "strategy": config.to_dict(),
        "backtest": result.to_dict(),
        "monteCarlo": mc_payload,
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    logger.info(f"Saved: {path}")


# =============================================================================
# MAIN
# =============================================================================

def main() -> int:
    """
    Main entry point for the demo runner.

    Returns
    -------
    int
        Exit code (0 for success, 1 for failure)
    """
    start_time = time.time()

    parser = argparse.ArgumentParser(
        description="Strategy Lab - Demo Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_demo.py                                   # SMA cross on synthetic data
  python run_demo.py --csv prices.csv --optimize       # Optimize on a CSV upload
  python run_demo.py --strategy rsi-filter --allow-short
        """
    )
    parser.add_argument("--csv", type=str, default=None,
                        help="CSV file or directory of {symbol}_{timeframe}.csv files")
    parser.add_argument("--symbol", "-s", type=str, default=DEFAULT_SYMBOL,
                        help=f"Symbol to load from a CSV directory (default: {DEFAULT_SYMBOL})")
    parser.add_argument("--timeframe", type=str, default=DEFAULT_TIMEFRAME,
                        help=f"Timeframe label (default: {DEFAULT_TIMEFRAME})")
    parser.add_argument("--limit", type=int, default=None,
                        help="Keep only the most recent N candles")
    parser.add_argument("--bars", type=int, default=DEFAULT_SYNTHETIC_BARS,
                        help=f"Synthetic bars when no CSV is given (default: {DEFAULT_SYNTHETIC_BARS})")
    parser.add_argument("--strategy", choices=[k.value for k in StrategyKind],
                        default=StrategyKind.SMA_CROSS.value, help="Signal rules")
    parser.add_argument("--allow-short", action="store_true",
                        help="Let sell signals open short positions")
    parser.add_argument("--optimize", action="store_true",
                        help="Run the genetic parameter search first")
    parser.add_argument("--workers", type=int, default=None,
                        help="Thread pool size for optimizer evaluations")
    parser.add_argument("--monte-carlo", type=int, default=MC_DEFAULT_ITERATIONS,
                        help=f"Monte Carlo iterations, 0 to skip (default: {MC_DEFAULT_ITERATIONS})")
    parser.add_argument("--seed", type=int, default=OPTIMIZER.default_seed,
                        help=f"Random seed (default: {OPTIMIZER.default_seed})")
    parser.add_argument("--output", "-o", type=str, default=None,
                        help="Write the results as JSON to this path")
    parser.add_argument("--store", type=str, default=None,
                        help="Save the final strategy to this JSON strategy store")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable verbose logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")

    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="  %(asctime)s │ %(levelname)s │ %(message)s",
        datefmt="%H:%M:%S"
    )
    logger = logging.getLogger(__name__)

    candles = load_candles(args, logger)
    if candles is None:
        return 1

    try:
        config = build_config(args)
        if args.optimize:
            config = run_optimizer(config, candles, args, logger)
    except InvalidParameterError as e:
        logger.error(f"Invalid strategy configuration: {e}")
        return 1

    print_section_header("STEP 3: BACKTEST")
    result = BacktestEngine().run(config, candles)
    print(format_backtest_report(result, title=f"{config.kind.value} {config.to_dict()['params']}"))

    mc_payload = None
    if args.monte_carlo > 0:
        print_section_header("STEP 4: MONTE CARLO")
        if result.trades:
            mc = MonteCarloSimulator(seed=args.seed).simulate(result, args.monte_carlo)
            print(format_monte_carlo_report(mc))
            mc_payload = mc.to_dict()
        else:
            logger.warning("No closed trades to resample")

    if args.output or args.store:
        print_section_header("STEP 5: EXPORT")
        if args.output:
            export_json(Path(args.output), config, result, mc_payload, logger)
        if args.store:
            strategy_id = JsonStrategyStore(args.store).save(
                None, config, market={"symbol": args.symbol, "timeframe": args.timeframe}
            )
            logger.info(f"Saved strategy {strategy_id} to {args.store}")

    logger.info(f"Finished in {time.time() - start_time:.1f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
