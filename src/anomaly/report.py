"""
Per-line report: anomaly counts plus recent consumption statistics.

Usage:
    python -m src.anomaly.report --line-id LINE_1_1 [--organization-id org-1]
"""

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass
from typing import Optional

import pandas as pd
import structlog

from src.core.logger import setup_logging

from .cache import StatsCache
from .database import EnergyDatabase
from .detect import add_storage_arguments
from .engine import AnomalyDetectionEngine
from .models import AnomalyConfig, LineAnomalyStats

logger = structlog.get_logger(__name__)


@dataclass
class ConsumptionSummary:
    average: float
    maximum: float
    minimum: float
    data_points: int


@dataclass
class LineReport:
    line_id: str
    anomaly_stats: LineAnomalyStats
    consumption_stats: ConsumptionSummary
    recent_data: list[dict]

    def to_dict(self) -> dict:
        return asdict(self)


def summarize_consumption(history: pd.DataFrame) -> ConsumptionSummary:
    """Average (2 decimals), max and min consumption; zeros when empty"""
    if "consumption" not in history:
        values = pd.Series(dtype=float)
    else:
        values = history["consumption"].dropna()

    if values.empty:
        return ConsumptionSummary(average=0.0, maximum=0.0, minimum=0.0, data_points=0)

    return ConsumptionSummary(
        average=round(float(values.mean()), 2),
        maximum=float(values.max()),
        minimum=float(values.min()),
        data_points=int(len(values)),
    )


def build_line_report(
    engine: AnomalyDetectionEngine,
    db: EnergyDatabase,
    line_id: str,
    organization_id: Optional[str] = None,
    history_limit: int = 100,
    recent_limit: int = 20,
) -> LineReport:
    """Assemble the report for one line"""
    history = db.query_consumption_history(line_id, organization_id, limit=history_limit)

    return LineReport(
        line_id=line_id,
        anomaly_stats=engine.line_anomaly_stats(line_id, organization_id),
        consumption_stats=summarize_consumption(history),
        recent_data=history.head(recent_limit).to_dict(orient="records"),
    )


def parse_arguments(argv=None):
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(description="Anomaly and consumption report for one line")
    parser.add_argument("--line-id", required=True, help="Line identifier")
    parser.add_argument(
        "--organization-id",
        default=os.getenv("ORGANIZATION_ID"),
        help="Tenant scope (default: all organizations)",
    )
    parser.add_argument(
        "--history-limit",
        type=int,
        default=100,
        help="Readings used for consumption statistics (default: 100)",
    )
    add_storage_arguments(parser)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.getenv("LOG_LEVEL", "WARNING"),
        help="Logging level (default: WARNING)",
    )
    return parser.parse_args(argv)


def main():
    """Main entry point"""
    args = parse_arguments()
    setup_logging(level=getattr(logging, args.log_level))

    db = None
    try:
        config = AnomalyConfig(
            postgres_host=args.postgres_host,
            postgres_port=args.postgres_port,
            postgres_database=args.postgres_db,
            postgres_user=args.postgres_user,
            postgres_password=args.postgres_password,
            statement_timeout_ms=args.statement_timeout_ms or None,
            cache_enabled=not args.no_cache,
            redis_host=args.redis_host,
            redis_port=args.redis_port,
        )
        db = EnergyDatabase(config)
        cache = StatsCache(config) if config.cache_enabled else None
        engine = AnomalyDetectionEngine(db, db, config.detection, stats_cache=cache)

        report = build_line_report(
            engine, db, args.line_id, args.organization_id, history_limit=args.history_limit
        )
        print(json.dumps(report.to_dict(), indent=2, default=str))
        return 0

    except Exception as e:
        logger.error("Report failed", line_id=args.line_id, error=str(e), exc_info=True)
        return 1

    finally:
        if db is not None:
            db.close()


if __name__ == "__main__":
    sys.exit(main())
