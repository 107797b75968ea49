"""
Tests for argument handling and the end-to-end CLI workflow (offline).

Run with: python -m pytest tests/test_cli.py -v
"""

import asyncio

import pytest

from crypto_forecast.config import is_cache_debug_enabled
from crypto_forecast.models import ForecastError, ValidationError
from run_forecast import CLIConfig, ForecastWorkflow, format_config_summary, main, parse_arguments, validate_configuration


class TestArguments:

    def test_defaults(self):
        config = parse_arguments(["--coin", "btc"])
        assert config == CLIConfig(coin="BTC", forecast=10, range=60)

    def test_all_flags(self):
        config = parse_arguments(["-c", "eth", "-f", "30", "-r", "90", "--save", "--compare", "-v"])
        assert (config.coin, config.forecast, config.range) == ("ETH", 30, 90)
        assert config.save and config.compare and config.verbose

    def test_coin_required(self):
        with pytest.raises(SystemExit):
            parse_arguments([])

    @pytest.mark.parametrize("config, message", [
        (CLIConfig(coin="XYZ"), "Unsupported coin: XYZ"),
        (CLIConfig(coin="BTC", forecast=15), "Forecast must be 10, 20, or 30 days. Got: 15"),
        (CLIConfig(coin="BTC", range=29), "Range must be between 30 and 365 days. Got: 29"),
        (CLIConfig(coin="BTC", range=366), "Range must be between 30 and 365 days. Got: 366"),
    ])
    def test_validation(self, config, message):
        with pytest.raises(ValidationError, match=message):
            validate_configuration(config)

    def test_valid_configuration(self):
        validate_configuration(CLIConfig(coin="SOL", forecast=20, range=365))

    def test_config_summary_names_coin(self):
        assert "BTC (Bitcoin)" in format_config_summary(CLIConfig(coin="BTC"))
        assert "Backtest Mode:    No" in format_config_summary(CLIConfig(coin="SEI"))

    def test_invalid_arguments_exit_code(self, capsys):
        assert main(["--coin", "XYZ"]) == 1
        assert main(["--coin", "BTC", "--forecast", "7"]) == 1


class TestCacheDebugFlag:

    @pytest.mark.parametrize("value, expected", [
        ("1", True), ("true", True), ("YES", True), ("0", False), ("", False),
    ])
    def test_env_values(self, monkeypatch, value, expected):
        monkeypatch.setenv("DEBUG_CACHE", value)
        assert is_cache_debug_enabled() is expected


class TestForecastWorkflow:

    def test_full_run(self, make_prices, stub_fetcher_factory, tmp_path, capsys):
        fetcher = stub_fetcher_factory(make_prices(300), current_price=101.0)
        workflow = ForecastWorkflow(fetcher=fetcher, export_dir=tmp_path)
        asyncio.run(workflow.run(CLIConfig(coin="BTC", forecast=10, range=60, save=True, compare=True)))

        output = capsys.readouterr().out
        for heading in ("STEP 1: FETCHING HISTORICAL DATA", "STEP 3: TRADING STRATEGIES",
                        "INDIVIDUAL INDICATOR ANALYSIS", "BACKTEST ANALYSIS RESULTS", "OVERALL SUMMARY"):
            assert heading in output
        assert "Current BTC Price: $101.00" in output
        assert fetcher.requests[0] == ("BTC", 60)
        assert len(list(tmp_path.iterdir())) == 3

        stats = workflow.cache_stats()
        assert stats["indicators"]["size"] == 10
        assert "Indicator Cache" in workflow.format_cache_stats()
        assert workflow.dump_caches()

    def test_fetch_failure(self, stub_fetcher_factory, tmp_path, capsys):
        workflow = ForecastWorkflow(fetcher=stub_fetcher_factory(error="timeout"), export_dir=tmp_path)
        with pytest.raises(ForecastError, match="Data fetch failed: timeout"):
            asyncio.run(workflow.run(CLIConfig(coin="BTC")))

    def test_missing_live_price_is_not_fatal(self, make_prices, stub_fetcher_factory, tmp_path, capsys):
        workflow = ForecastWorkflow(fetcher=stub_fetcher_factory(make_prices(90)), export_dir=tmp_path)
        asyncio.run(workflow.run(CLIConfig(coin="ETH", range=90)))
        assert "OVERALL SUMMARY" in capsys.readouterr().out
        assert not list(tmp_path.iterdir())
