"""
CLI for the real-time anomaly detection consumer.

Usage:
    python -m src.anomaly.detect [options]
"""

import argparse
import logging
import os
import sys

import structlog

from src.core.logger import setup_logging

from .consumer import ReadingConsumer
from .models import AnomalyConfig, DetectionConfig

logger = structlog.get_logger(__name__)


def add_storage_arguments(parser: argparse.ArgumentParser):
    """PostgreSQL and Redis options shared by the service CLIs"""
    parser.add_argument(
        "--postgres-host",
        default=os.getenv("POSTGRES_HOST", "localhost"),
        help="PostgreSQL host",
    )
    parser.add_argument(
        "--postgres-port",
        type=int,
        default=int(os.getenv("POSTGRES_PORT", "5432")),
        help="PostgreSQL port",
    )
    parser.add_argument(
        "--postgres-db",
        default=os.getenv("POSTGRES_DB", "wattup"),
        help="PostgreSQL database",
    )
    parser.add_argument(
        "--postgres-user",
        default=os.getenv("POSTGRES_USER", "wattup"),
        help="PostgreSQL user",
    )
    parser.add_argument(
        "--postgres-password",
        default=os.getenv("POSTGRES_PASSWORD", "wattup_password"),
        help="PostgreSQL password",
    )
    parser.add_argument(
        "--statement-timeout-ms",
        type=int,
        default=int(os.getenv("POSTGRES_STATEMENT_TIMEOUT_MS", "5000")),
        help="Server-side statement timeout in ms, 0 to disable (default: 5000)",
    )

    parser.add_argument(
        "--redis-host",
        default=os.getenv("REDIS_HOST", "localhost"),
        help="Redis host (default: localhost or REDIS_HOST env var)",
    )
    parser.add_argument(
        "--redis-port",
        type=int,
        default=int(os.getenv("REDIS_PORT", "6379")),
        help="Redis port",
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Disable the Redis line stats cache",
    )


def parse_arguments(argv=None):
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        description="Real-time energy anomaly detection consumer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
        Examples:
        # Basic usage
        python -m src.anomaly.detect

        # Stricter z-score and a larger window
        python -m src.anomaly.detect \\
            --kafka-servers kafka:9092 \\
            --z-score-threshold 3.0 \\
            --window-size 100

        # Also record anomalies found by the threshold fallback
        python -m src.anomaly.detect --record-threshold-anomalies

        # Test run for 5 minutes
        python -m src.anomaly.detect --duration 300
        """,
    )

    # Kafka settings
    parser.add_argument(
        "--kafka-servers",
        default=os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"),
        help="Kafka bootstrap servers (default: localhost:9092)",
    )
    parser.add_argument(
        "--topic",
        default=os.getenv("KAFKA_TOPIC", "energy-readings"),
        help="Kafka topic (default: energy-readings)",
    )
    parser.add_argument(
        "--group-id",
        default="anomaly-detection-consumer-group",
        help="Kafka consumer group ID",
    )
    parser.add_argument(
        "--offset-reset",
        choices=["earliest", "latest"],
        default="latest",
        help="Auto offset reset (default: latest - only new messages)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=50,
        help="Readings analyzed per batch (default: 50)",
    )

    # Detection parameters
    parser.add_argument(
        "--window-size",
        type=int,
        default=int(os.getenv("WINDOW_SIZE", "50")),
        help="Historical readings per z-score window (default: 50)",
    )
    parser.add_argument(
        "--min-history",
        type=int,
        default=int(os.getenv("MIN_HISTORY_FOR_ZSCORE", "10")),
        help="Minimum history before using the z-score (default: 10)",
    )
    parser.add_argument(
        "--z-score-threshold",
        type=float,
        default=float(os.getenv("Z_SCORE_THRESHOLD", "2.5")),
        help="Z-score above which a reading is anomalous (default: 2.5)",
    )
    parser.add_argument(
        "--threshold-ratio",
        type=float,
        default=float(os.getenv("SIMPLE_THRESHOLD_RATIO", "0.10")),
        help="Relative deviation limit for the threshold fallback (default: 0.10)",
    )
    parser.add_argument(
        "--record-threshold-anomalies",
        action="store_true",
        help="Store anomalies flagged by the threshold fallback too",
    )

    add_storage_arguments(parser)

    # Runtime settings
    parser.add_argument(
        "--duration",
        type=int,
        help="Run for N seconds then stop (default: infinite)",
    )

    # Logging
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(argv)


def build_config(args) -> AnomalyConfig:
    """Build configuration from arguments"""
    return AnomalyConfig(
        detection=DetectionConfig(
            window_size=args.window_size,
            min_history_for_zscore=args.min_history,
            z_score_threshold=args.z_score_threshold,
            simple_threshold_ratio=args.threshold_ratio,
            record_threshold_anomalies=args.record_threshold_anomalies,
        ),
        kafka_bootstrap_servers=args.kafka_servers,
        kafka_topic=args.topic,
        kafka_group_id=args.group_id,
        kafka_auto_offset_reset=args.offset_reset,
        batch_size=args.batch_size,
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


def main():
    """Main entry point"""
    args = parse_arguments()

    log_level = getattr(logging, args.log_level)
    setup_logging(level=log_level)

    logger.info("Starting anomaly detection consumer")

    try:
        config = build_config(args)

        consumer = ReadingConsumer(config)
        consumer.run(duration_seconds=args.duration)

        logger.info("Consumer completed successfully")
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0

    except Exception as e:
        logger.error("Consumer failed", error=str(e), exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
