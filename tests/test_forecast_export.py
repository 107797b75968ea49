"""
Tests for JSON/CSV forecast export.

Run with: python -m pytest tests/test_forecast_export.py -v
"""

import json
from datetime import datetime

import pytest

from crypto_forecast.config import IndicatorKind
from crypto_forecast.forecast_export import (
    ExportConfig,
    ForecastExportData,
    create_export_metadata,
    export_forecast,
    export_indicators_csv,
    export_to_csv,
    generate_filename,
    get_export_stats,
    load_forecast_json,
)
from crypto_forecast.forecast_merge import merge_forecasts
from crypto_forecast.models import ForecastError


@pytest.fixture
def export_data(make_indicator):
    rsi = make_indicator(IndicatorKind.RSI, [100.0, 102.0, 104.0], weight=0.12, confidence=0.453)
    ema = make_indicator(IndicatorKind.EMA, [100.0, 101.0, 102.0], weight=0.15, confidence=0.6)
    rsi.execution_time = 12.4
    combined = merge_forecasts([rsi, ema], 3)
    metadata = create_export_metadata("BTC", 3, 60, [rsi, ema], combined, current_price=100.0)
    return ForecastExportData(metadata=metadata, combined_forecast=combined, individual_indicators=[rsi, ema])


class TestMetadata:

    def test_price_range(self, export_data):
        meta = export_data.metadata.to_dict()
        assert meta["indicatorsUsed"] == ["RSI", "EMA"]
        assert meta["totalWeight"] == pytest.approx(0.27)
        target = export_data.combined_forecast[-1].avg
        assert meta["priceRange"]["target"] == pytest.approx(target)
        assert meta["priceRange"]["changePercent"] == pytest.approx(target - 100.0)

    def test_empty_forecast_targets_current_price(self):
        meta = create_export_metadata("ETH", 10, 60, [], [], current_price=50.0)
        assert meta.target_price == 50.0
        assert meta.change_percent == 0.0
        assert meta.average_confidence == 0.0

    def test_filename(self, export_data):
        name = generate_filename(export_data.metadata, now=datetime(2024, 5, 6, 7, 8))
        assert name == "BTC_forecast_3d_2024-05-06_0708"


class TestCsv:

    def test_combined_layout(self, export_data):
        lines = export_to_csv(export_data, ExportConfig()).split("\n")
        assert lines[0] == "# Crypto Forecast Export - BTC"
        blank = lines.index("")
        assert lines[blank + 1] == "Day,High,Low,Average,Confidence,Indicator"
        assert len(lines) == blank + 2 + 3
        assert lines[blank + 2].startswith("1,")
        assert lines[blank + 2].endswith(",MERGED_AVERAGE")

    def test_without_metadata(self, export_data):
        text = export_to_csv(export_data, ExportConfig(include_metadata=False))
        assert text.startswith("Day,High,Low,Average,Confidence,Indicator")

    def test_indicator_rows(self, export_data):
        lines = export_indicators_csv(export_data.individual_indicators).split("\n")
        assert lines[0] == "Indicator,Day,High,Low,Average,Confidence,Accuracy,Weight,ExecutionTime"
        assert lines[1] == "RSI,1,102.00,98.00,100.00,45.3%,70.0%,0.120,12ms"
        assert len(lines) == 1 + 6


class TestExportFiles:

    def test_both_formats(self, export_data, tmp_path):
        config = ExportConfig(format="both", filename="run", export_dir=tmp_path / "out")
        paths = export_forecast(export_data, config)

        assert [p.name for p in paths] == ["run.json", "run.csv", "run_indicators.csv"]
        document = json.loads(paths[0].read_text())
        assert document["version"] == "1.0.0"
        assert set(document) >= {"exportedAt", "metadata", "combinedForecast", "individualIndicators"}

    def test_json_round_trip(self, export_data, tmp_path):
        config = ExportConfig(format="json", filename="run", export_dir=tmp_path)
        (path,) = export_forecast(export_data, config)
        assert load_forecast_json(path) == export_data.combined_forecast

    def test_csv_only_without_indicators(self, export_data, tmp_path):
        config = ExportConfig(format="csv", filename="run", export_dir=tmp_path,
                              include_individual_indicators=False)
        paths = export_forecast(export_data, config)
        assert [p.name for p in paths] == ["run.csv"]

    def test_unwritable_directory(self, export_data, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        config = ExportConfig(filename="run", export_dir=blocker / "nested")
        with pytest.raises(ForecastError, match="Export failed"):
            export_forecast(export_data, config)

    def test_rejects_unknown_format(self):
        with pytest.raises(ValueError):
            ExportConfig(format="xml")

    def test_stats(self, export_data, tmp_path):
        assert get_export_stats(tmp_path / "missing") == {
            "exportDir": "Not created", "totalFiles": 0, "lastExport": "Never",
        }
        export_forecast(export_data, ExportConfig(filename="run", export_dir=tmp_path))
        stats = get_export_stats(tmp_path)
        assert stats["totalFiles"] == 3
        assert stats["lastExport"] != "Never"
