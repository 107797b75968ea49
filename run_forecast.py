#!/usr/bin/env python3
"""
Crypto Forecast CLI

Fetches daily price history for a cryptocurrency, runs the ten technical
indicators and six trading strategies, merges the indicator forecasts into
a weighted consensus and renders everything as ASCII charts and tables.

WORKFLOW
    1. Validate arguments and print the configuration summary
    2. Fetch historical data (Yahoo Finance) and print the data summary
    3. Calculate technical indicators
    4. Run trading strategies and combine their signals
    5. Chart every indicator forecast
    6. Merge forecasts, chart the consensus and the price trajectory
    7. Optional: export JSON/CSV (--save)
    8. Optional: historical backtest (--compare)
    9. Overall summary and cache statistics

EXECUTION
    python run_forecast.py --coin BTC
    python run_forecast.py --coin ETH --forecast 30 --range 90
    python run_forecast.py --coin SOL --forecast 20 --save
    python run_forecast.py --coin BTC --compare

    DEBUG_CACHE=1 python run_forecast.py --coin BTC    # dump cache contents

Author: Tamer
Version: 1.0.0
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from crypto_forecast.backtest_engine import BacktestConfig, BacktestHarness, format_backtest_report
from crypto_forecast.config import (
    BACKTEST,
    COIN_NAMES,
    EXPORT,
    FORECAST,
    SUPPORTED_COINS,
    is_cache_debug_enabled,
)
from crypto_forecast.data_collector import PriceDataFetcher
from crypto_forecast.forecast_export import (
    ExportConfig,
    ForecastExportData,
    create_export_metadata,
    export_forecast,
    get_export_stats,
)
from crypto_forecast.forecast_merge import ForecastMerger
from crypto_forecast.models import ForecastError, ValidationError, create_strategy_config
from crypto_forecast.report_generator import (
    ChartRenderer,
    format_data_summary,
    format_forecast_summary,
    format_indicator_summary,
    format_overall_summary,
    format_strategy_summary,
)
from crypto_forecast.strategy_orchestrator import StrategyOrchestrator
from crypto_forecast.technical_indicators import IndicatorEngine

logger = logging.getLogger("crypto_forecast.cli")


# =============================================================================
# CONSTANTS
# =============================================================================

VERSION: str = "1.0.0"
DEFAULT_FORECAST: int = FORECAST.default_horizon
DEFAULT_RANGE: int = FORECAST.default_range_days


# =============================================================================
# DISPLAY COMPONENTS
# =============================================================================

BANNER = r'''
╔═══════════════════════════════════════════════════════════════════════════════╗
║                                                                               ║
║                          CRYPTO FORECAST CLI TOOL                             ║
║                    Technical Analysis with ASCII Charts                       ║
║                                                                               ║
║          Usage: run_forecast.py --coin BTC --forecast 20 --range 60           ║
║                                                                               ║
╚═══════════════════════════════════════════════════════════════════════════════╝
'''

EXAMPLES = """
Examples:
  python run_forecast.py --coin BTC --forecast 10            # 10-day BTC forecast
  python run_forecast.py --coin ETH --forecast 30 --range 90 # 30-day ETH forecast, 90-day history
  python run_forecast.py --coin SOL --forecast 20 --save     # Save forecast to exports/
  python run_forecast.py --coin BTC --forecast 10 --compare  # Compare with historical accuracy
"""


def print_section_header(title: str, char: str = "═") -> None:
    """Print a formatted section header."""
    width = 79
    print()
    print(char * width)
    print(f"  {title}")
    print(char * width)
    print()


def print_subsection(title: str) -> None:
    """Print a subsection divider."""
    print()
    print(f"  {'─' * 75}")
    print(f"  {title}")
    print(f"  {'─' * 75}")


# =============================================================================
# ARGUMENTS
# =============================================================================

@dataclass
class CLIConfig:
    coin: str
    forecast: int = DEFAULT_FORECAST
    range: int = DEFAULT_RANGE
    save: bool = False
    compare: bool = False
    verbose: bool = False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="run_forecast.py",
        description="Crypto Forecast CLI - technical analysis with ASCII charts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""{EXAMPLES}
Supported coins:
  {', '.join(SUPPORTED_COINS)}
        """
    )

    parser.add_argument(
        "--coin", "-c",
        type=str,
        required=True,
        help="Cryptocurrency symbol (e.g., BTC, ETH, SOL)"
    )

    parser.add_argument(
        "--forecast", "-f",
        type=int,
        default=DEFAULT_FORECAST,
        help=f"Number of days to forecast: 10, 20 or 30 (default: {DEFAULT_FORECAST})"
    )

    parser.add_argument(
        "--range", "-r",
        type=int,
        default=DEFAULT_RANGE,
        help=f"Historical data range in days, 30-365 (default: {DEFAULT_RANGE})"
    )

    parser.add_argument(
        "--save", "-s",
        action="store_true",
        help="Save forecast to JSON and CSV files"
    )

    parser.add_argument(
        "--compare",
        action="store_true",
        help="Compare with historical accuracy (backtest)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {VERSION}"
    )
    return parser


def parse_arguments(argv: Optional[Sequence[str]] = None) -> CLIConfig:
    args = build_parser().parse_args(argv)
    return CLIConfig(
        coin=args.coin.upper(),
        forecast=args.forecast,
        range=args.range,
        save=args.save,
        compare=args.compare,
        verbose=args.verbose,
    )


def validate_configuration(config: CLIConfig) -> None:
    """
    Check coin, horizon and range.

    Raises:
        ValidationError: first invalid setting found
    """
    if config.coin.upper() not in SUPPORTED_COINS:
        raise ValidationError(
            f"Unsupported coin: {config.coin}. Supported: {', '.join(SUPPORTED_COINS)}"
        )
    if config.forecast not in FORECAST.allowed_horizons:
        raise ValidationError(f"Forecast must be 10, 20, or 30 days. Got: {config.forecast}")
    if not FORECAST.min_range_days <= config.range <= FORECAST.max_range_days:
        raise ValidationError(
            f"Range must be between {FORECAST.min_range_days} and "
            f"{FORECAST.max_range_days} days. Got: {config.range}"
        )
    logger.debug("CLI configuration validated successfully")


def format_config_summary(config: CLIConfig) -> str:
    name = COIN_NAMES.get(config.coin)
    coin = f"{config.coin} ({name})" if name else config.coin
    return f"""
    Cryptocurrency:   {coin}
    Forecast Period:  {config.forecast} days
    Historical Range: {config.range} days
    Save to File:     {'Yes' if config.save else 'No'}
    Backtest Mode:    {'Yes' if config.compare else 'No'}
    """


# =============================================================================
# WORKFLOW
# =============================================================================

class ForecastWorkflow:
    """
    One CLI run: owns every component and therefore every cache.

    Args:
        fetcher: Price source, Yahoo Finance by default
        export_dir: Directory for --save output
    """

    def __init__(self, fetcher=None, export_dir=EXPORT.export_dir):
        self.fetcher = fetcher or PriceDataFetcher()
        self.indicator_engine = IndicatorEngine()
        self.merger = ForecastMerger()
        self.strategy_orchestrator = StrategyOrchestrator(merger=ForecastMerger())
        self.charts = ChartRenderer()
        self.export_dir = export_dir

    async def run(self, config: CLIConfig) -> None:
        """
        Execute the full workflow.

        Raises:
            ForecastError: a required stage failed
        """
        started = time.perf_counter()

        # ------------------------------------------------------------------
        # Data
        # ------------------------------------------------------------------
        print_section_header("STEP 1: FETCHING HISTORICAL DATA")
        fetch_start = time.perf_counter()
        response = await self.fetcher.fetch_historical_data(config.coin, config.range)
        if not response.success:
            raise ForecastError(f"Data fetch failed: {response.error}")
        logger.info(f"{len(response.data)} days of data fetched "
                    f"({(time.perf_counter() - fetch_start) * 1000:.0f}ms)")
        print(format_data_summary(response.data, config.coin, response.source, response.cached))

        try:
            live_price = await self.fetcher.get_current_price(config.coin)
            print(f"\n  Current {config.coin} Price: ${live_price:,.2f}")
        except ForecastError as e:
            logger.warning(f"Could not fetch current price: {e}")

        # ------------------------------------------------------------------
        # Indicators
        # ------------------------------------------------------------------
        print_section_header("STEP 2: TECHNICAL INDICATORS")
        indicator_start = time.perf_counter()
        indicators = await self.indicator_engine.calculate_all_indicators(
            config.coin, response.data, config.forecast
        )
        logger.info(f"{len(indicators)} technical indicators calculated "
                    f"({(time.perf_counter() - indicator_start) * 1000:.0f}ms)")
        print(format_indicator_summary(indicators))

        # ------------------------------------------------------------------
        # Strategies
        # ------------------------------------------------------------------
        print_section_header("STEP 3: TRADING STRATEGIES")
        strategy_config = create_strategy_config(forecast_days=config.forecast, symbol=config.coin)
        combined = await self.strategy_orchestrator.run_all_strategies(indicators, strategy_config)
        print(format_strategy_summary(combined))

        # ------------------------------------------------------------------
        # Charts and merge
        # ------------------------------------------------------------------
        print_section_header("STEP 4: FORECAST CHARTS")
        print(self.charts.plot_all_indicators(indicators))

        print_section_header("STEP 5: MERGED FORECAST")
        merged = self.merger.merge(indicators, config.forecast)
        stats = self.merger.stats(merged, indicators)
        logger.info(f"Forecasts merged: {stats.forecast_days} days, trend {stats.trend_direction} "
                    f"({stats.trend_strength:.2f}%)")
        print(self.charts.plot_combined_forecast(indicators, merged))

        current_price = response.data[-1].close
        print(self.charts.plot_price_comparison(current_price, [p.avg for p in merged], config.coin))
        print(format_forecast_summary(merged, current_price, indicators))

        # ------------------------------------------------------------------
        # Optional stages
        # ------------------------------------------------------------------
        if config.save:
            self.run_export(config, indicators, merged, current_price, response.source, started)

        if config.compare:
            await self.run_backtest(config)

        print_section_header("OVERALL SUMMARY")
        print(format_overall_summary(
            indicators,
            combined,
            merged,
            current_price,
            coin=config.coin,
            forecast_days=config.forecast,
            range_days=config.range,
            execution_time=(time.perf_counter() - started) * 1000,
        ))

    def run_export(self, config, indicators, merged, current_price, source, started) -> List[Any]:
        print_subsection("Saving forecast to file")
        try:
            data = ForecastExportData(
                metadata=create_export_metadata(
                    config.coin, config.forecast, config.range, indicators, merged, current_price
                ),
                combined_forecast=merged,
                individual_indicators=list(indicators),
                performance_stats={
                    "cacheStats": self.cache_stats(),
                    "executionTime": (time.perf_counter() - started) * 1000,
                    "dataSource": source,
                },
            )
            files = export_forecast(data, ExportConfig(format="both", export_dir=self.export_dir))
        except ForecastError as e:
            logger.error(f"Export failed: {e}")
            return []

        for path in files:
            print(f"    {path}")
        stats = get_export_stats(self.export_dir)
        print(f"    Export Directory: {stats['exportDir']}")
        print(f"    Total Files:      {stats['totalFiles']}")
        return files

    async def run_backtest(self, config: CLIConfig) -> Optional[Any]:
        print_section_header("HISTORICAL BACKTEST")
        backtest_config = BacktestConfig(
            periods=BACKTEST.periods,
            forecast_days=config.forecast,
            historical_range=max(BACKTEST.min_historical_range, config.range),
            min_data_points=BACKTEST.min_data_points,
        )
        print(f"    Test Periods:     {backtest_config.periods}")
        print(f"    Historical Range: {backtest_config.historical_range} days")
        print(f"    Forecast Days:    {backtest_config.forecast_days}")
        print(f"    Min Data Points:  {backtest_config.min_data_points}")

        harness = BacktestHarness(self.fetcher)
        try:
            analysis = await harness.run_backtest(config.coin, backtest_config)
        except ForecastError as e:
            logger.error(f"Backtest failed: {e}")
            logger.warning("Backtest requires extensive historical data. Try with --range 90 or higher.")
            return None

        print(format_backtest_report(analysis))
        return analysis

    # ----------------------------------------------------------------------
    # Cache reporting
    # ----------------------------------------------------------------------

    def cache_stats(self) -> Dict[str, Any]:
        return {
            "data": self.fetcher.cache_stats(),
            "indicators": self.indicator_engine.cache_stats(),
            "mergedForecast": self.merger.cache_stats(),
            "strategies": self.strategy_orchestrator.cache_stats(),
            "charts": self.charts.cache_stats(),
        }

    def format_cache_stats(self) -> str:
        caches = [
            ("Price Data Cache", self.fetcher.cache_stats()),
            ("Indicator Cache", self.indicator_engine.cache_stats()),
            ("Merged Forecast Cache", self.merger.cache_stats()),
            ("Chart Cache", self.charts.cache_stats()),
        ]
        caches.extend(
            (f"{cache.name} cache", cache.stats()) for cache in self.strategy_orchestrator.caches()
        )
        return "\n".join(
            f"    {label:<34} {stats['size']:>3}/{stats['max_size']:<4} "
            f"hits={stats['hits']:<4} misses={stats['misses']:<4} ttl={stats['ttl']:.0f}s"
            for label, stats in caches
        )

    def dump_caches(self) -> List[str]:
        lines = list(self.fetcher.describe_cache())
        lines.extend(self.indicator_engine.cache.describe())
        lines.extend(self.merger.cache.describe())
        lines.extend(self.charts.describe_cache())
        for cache in self.strategy_orchestrator.caches():
            lines.extend(cache.describe())
        return lines


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main entry point for the forecast CLI.

    Returns
    -------
    int
        Exit code (0 for success, 1 for failure)
    """
    config = parse_arguments(argv)

    # Configure logging
    log_level = logging.DEBUG if config.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="  %(asctime)s │ %(levelname)s │ %(message)s",
        datefmt="%H:%M:%S"
    )

    print(BANNER)
    print(f"  Execution Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"  Version:           {VERSION}")

    try:
        validate_configuration(config)
    except ValidationError as e:
        logger.error(str(e))
        print(EXAMPLES)
        return 1

    print_subsection("Configuration Summary")
    print(format_config_summary(config))

    workflow = ForecastWorkflow()
    try:
        asyncio.run(workflow.run(config))
    except ForecastError as e:
        logger.error(f"Forecast workflow failed: {e}")
        print("\n  Please check your internet connection and try again.")
        return 1

    print_subsection("Final Performance Statistics")
    print(workflow.format_cache_stats())

    if is_cache_debug_enabled():
        print_subsection("Cache Contents")
        for line in workflow.dump_caches():
            print(f"    {line}")

    print_section_header(
        f"FORECAST COMPLETE: {config.coin} {config.forecast}-day forecast "
        f"from {config.range} days of history"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
