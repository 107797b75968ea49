"""
Forecast Export

Writes a completed forecast run to disk as JSON and/or CSV.

FILES
    {SYM}_forecast_{N}d_{YYYY-MM-DD}_{HHMM}.json
        version, exportedAt, metadata, combinedForecast,
        individualIndicators, performanceStats
    {SYM}_forecast_{N}d_{YYYY-MM-DD}_{HHMM}.csv
        "# " comment header followed by
        Day,High,Low,Average,Confidence,Indicator
    {SYM}_forecast_{N}d_{YYYY-MM-DD}_{HHMM}_indicators.csv
        Indicator,Day,High,Low,Average,Confidence,Accuracy,Weight,ExecutionTime

Prices are written with 2 decimals and confidences as 1-decimal percents
in CSV; JSON keeps full precision and can be read back with
``load_forecast_json``.

Author: Tamer
Version: 1.0.0
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd

from crypto_forecast.config import EXPORT
from crypto_forecast.models import ForecastError, ForecastPoint, IndicatorResult
from crypto_forecast.numerics import safe_mean, safe_ratio

# Module-level logger
logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "csv", "both")

COMBINED_COLUMNS = ["Day", "High", "Low", "Average", "Confidence", "Indicator"]
INDICATOR_COLUMNS = [
    "Indicator", "Day", "High", "Low", "Average", "Confidence", "Accuracy", "Weight", "ExecutionTime",
]


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class ExportConfig:
    """What to write and where."""
    format: str = EXPORT.default_format
    filename: Optional[str] = None
    include_individual_indicators: bool = True
    include_metadata: bool = True
    export_dir: Union[str, Path] = EXPORT.export_dir

    def __post_init__(self):
        if self.format not in EXPORT_FORMATS:
            raise ValueError(f"Export format must be one of {', '.join(EXPORT_FORMATS)}")


@dataclass
class ExportMetadata:
    symbol: str
    forecast_days: int
    historical_days: int
    indicators_used: List[str]
    generated_at: str
    total_weight: float
    average_confidence: float
    current_price: float
    target_price: float
    change: float
    change_percent: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "forecastDays": self.forecast_days,
            "historicalDays": self.historical_days,
            "indicatorsUsed": list(self.indicators_used),
            "generatedAt": self.generated_at,
            "totalWeight": self.total_weight,
            "averageConfidence": self.average_confidence,
            "priceRange": {
                "current": self.current_price,
                "target": self.target_price,
                "change": self.change,
                "changePercent": self.change_percent,
            },
        }


@dataclass
class ForecastExportData:
    """Everything one export writes."""
    metadata: ExportMetadata
    combined_forecast: List[ForecastPoint]
    individual_indicators: List[IndicatorResult] = field(default_factory=list)
    performance_stats: Optional[Dict[str, Any]] = None


# =============================================================================
# METADATA
# =============================================================================

def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def create_export_metadata(
    symbol: str,
    forecast_days: int,
    historical_days: int,
    indicators: Sequence[IndicatorResult],
    forecast: Sequence[ForecastPoint],
    current_price: float,
) -> ExportMetadata:
    """
    Summarize a run for the export header.

    The target price is the last forecast day's average, or the current
    price when the forecast is empty.
    """
    target = forecast[-1].avg if forecast else current_price
    change = target - current_price
    return ExportMetadata(
        symbol=symbol,
        forecast_days=forecast_days,
        historical_days=historical_days,
        indicators_used=[ind.name for ind in indicators],
        generated_at=_utc_now().isoformat(),
        total_weight=float(sum(ind.weight for ind in indicators)),
        average_confidence=safe_mean(p.confidence for p in forecast),
        current_price=current_price,
        target_price=target,
        change=change,
        change_percent=safe_ratio(change, current_price) * 100,
    )


def generate_filename(metadata: ExportMetadata, now: Optional[datetime] = None) -> str:
    now = now or _utc_now()
    return f"{metadata.symbol}_forecast_{metadata.forecast_days}d_{now:%Y-%m-%d}_{now:%H%M}"


# =============================================================================
# JSON
# =============================================================================

def export_to_json(data: ForecastExportData, config: ExportConfig) -> Dict[str, Any]:
    """JSON document for one export."""
    document: Dict[str, Any] = {
        "version": EXPORT.format_version,
        "exportedAt": _utc_now().isoformat(),
    }
    if config.include_metadata:
        document["metadata"] = data.metadata.to_dict()

    document["combinedForecast"] = [p.to_dict() for p in data.combined_forecast]

    if config.include_individual_indicators and data.individual_indicators:
        document["individualIndicators"] = [
            {
                "name": ind.name,
                "accuracy": ind.accuracy,
                "weight": ind.weight,
                "executionTime": ind.execution_time,
                "forecast": [p.to_dict() for p in ind.forecast],
            }
            for ind in data.individual_indicators
        ]

    if data.performance_stats:
        document["performanceStats"] = data.performance_stats

    return document


def load_forecast_json(path: Union[str, Path]) -> List[ForecastPoint]:
    """Read the combined forecast back from a JSON export."""
    with open(path, 'r', encoding='utf-8') as f:
        document = json.load(f)
    return [ForecastPoint.from_dict(point) for point in document.get("combinedForecast", [])]


# =============================================================================
# CSV
# =============================================================================

def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"


def export_to_csv(data: ForecastExportData, config: ExportConfig) -> str:
    """Combined forecast table, preceded by a commented metadata block."""
    lines: List[str] = []
    if config.include_metadata:
        meta = data.metadata
        lines.extend([
            f"# Crypto Forecast Export - {meta.symbol}",
            f"# Generated: {meta.generated_at}",
            f"# Forecast Days: {meta.forecast_days}",
            f"# Historical Days: {meta.historical_days}",
            f"# Indicators Used: {', '.join(meta.indicators_used)}",
            f"# Average Confidence: {meta.average_confidence * 100:.1f}%",
            f"# Expected Change: {meta.change_percent:.2f}%",
            "",
        ])

    table = pd.DataFrame(
        [
            [p.day, f"{p.high:.2f}", f"{p.low:.2f}", f"{p.avg:.2f}", _pct(p.confidence), p.indicator]
            for p in data.combined_forecast
        ],
        columns=COMBINED_COLUMNS,
    )
    lines.append(table.to_csv(index=False, lineterminator="\n").rstrip("\n"))
    return "\n".join(lines)


def export_indicators_csv(indicators: Sequence[IndicatorResult]) -> str:
    """One row per indicator forecast point."""
    table = pd.DataFrame(
        [
            [
                ind.name, p.day, f"{p.high:.2f}", f"{p.low:.2f}", f"{p.avg:.2f}",
                _pct(p.confidence), _pct(ind.accuracy), f"{ind.weight:.3f}",
                f"{ind.execution_time:.0f}ms",
            ]
            for ind in indicators
            for p in ind.forecast
        ],
        columns=INDICATOR_COLUMNS,
    )
    return table.to_csv(index=False, lineterminator="\n").rstrip("\n")


# =============================================================================
# FILE OUTPUT
# =============================================================================

def export_forecast(data: ForecastExportData, config: Optional[ExportConfig] = None) -> List[Path]:
    """
    Write the export files.

    Args:
        data: Forecast run to export
        config: Format, filename and directory

    Returns:
        Paths of the files created

    Raises:
        ForecastError: a file could not be written
    """
    config = config or ExportConfig()
    start = time.perf_counter()
    base = config.filename or generate_filename(data.metadata)
    export_dir = Path(config.export_dir)
    created: List[Path] = []

    try:
        if not export_dir.exists():
            export_dir.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Created exports directory: {export_dir}")

        if config.format in ("json", "both"):
            json_path = export_dir / f"{base}.json"
            with open(json_path, 'w', encoding='utf-8') as f:
                json.dump(export_to_json(data, config), f, indent=2, default=str)
            created.append(json_path)
            logger.info(f"JSON export saved: {json_path}")

        if config.format in ("csv", "both"):
            csv_path = export_dir / f"{base}.csv"
            csv_path.write_text(export_to_csv(data, config), encoding='utf-8')
            created.append(csv_path)
            logger.info(f"CSV export saved: {csv_path}")

            if config.include_individual_indicators and data.individual_indicators:
                indicators_path = export_dir / f"{base}_indicators.csv"
                indicators_path.write_text(export_indicators_csv(data.individual_indicators), encoding='utf-8')
                created.append(indicators_path)
                logger.info(f"Indicators CSV saved: {indicators_path}")
    except OSError as e:
        raise ForecastError(f"Export failed: {e}") from e

    elapsed = (time.perf_counter() - start) * 1000
    logger.info(f"Export completed in {elapsed:.0f}ms - {len(created)} files created")
    return created


def get_export_stats(export_dir: Union[str, Path] = EXPORT.export_dir) -> Dict[str, Any]:
    """File count and most recent modification time of the export directory."""
    export_dir = Path(export_dir)
    if not export_dir.exists():
        return {"exportDir": "Not created", "totalFiles": 0, "lastExport": "Never"}

    files = [p for p in export_dir.iterdir() if p.is_file()]
    last_export = "Never"
    if files:
        latest = max(p.stat().st_mtime for p in files)
        last_export = datetime.fromtimestamp(latest, tz=timezone.utc).isoformat()

    return {"exportDir": str(export_dir.resolve()), "totalFiles": len(files), "lastExport": last_export}


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    "EXPORT_FORMATS",
    "ExportConfig",
    "ExportMetadata",
    "ForecastExportData",
    "create_export_metadata",
    "generate_filename",
    "export_to_json",
    "load_forecast_json",
    "export_to_csv",
    "export_indicators_csv",
    "export_forecast",
    "get_export_stats",
]
