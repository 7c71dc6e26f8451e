"""
Resolve an anomaly.

Usage:
    python -m src.anomaly.resolve 42 --resolved-by operator --notes "breaker reset"

Exit codes: 0 resolved, 1 not found or already resolved, 2 invalid
arguments, 3 storage error.
"""

import argparse
import logging
import os
import sys

import structlog

from src.core.logger import setup_logging

from .cache import StatsCache
from .database import EnergyDatabase
from .detect import add_storage_arguments
from .engine import AnomalyDetectionEngine
from .models import AnomalyConfig

logger = structlog.get_logger(__name__)


def parse_arguments(argv=None):
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(description="Mark an anomaly as resolved")
    parser.add_argument("anomaly_id", type=int, help="Anomaly identifier")
    parser.add_argument("--resolved-by", help="Who resolved the anomaly")
    parser.add_argument("--notes", help="Resolution notes (max 500 characters)")
    parser.add_argument(
        "--organization-id",
        default=os.getenv("ORGANIZATION_ID"),
        help="Only resolve within this tenant (default: any organization)",
    )
    add_storage_arguments(parser)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
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

        resolved = engine.resolve_anomaly(
            args.anomaly_id,
            resolved_by=args.resolved_by,
            notes=args.notes,
            organization_id=args.organization_id,
        )
        return 0 if resolved else 1

    except ValueError as e:
        logger.error("Invalid resolution", anomaly_id=args.anomaly_id, error=str(e))
        return 2

    except Exception as e:
        logger.error("Resolution failed", anomaly_id=args.anomaly_id, error=str(e), exc_info=True)
        return 3

    finally:
        if db is not None:
            db.close()


if __name__ == "__main__":
    sys.exit(main())
