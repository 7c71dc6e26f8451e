"""
Energy Reading Generator - CLI Entry Point
Simulates line consumption readings with configurable anomaly injection
"""

import argparse
import dataclasses
import os
import sys

import structlog

from src.core.logger import setup_logging
from src.generator import (
    DEV_CONFIG,
    NORMAL_CONFIG,
    QUIET_CONFIG,
    STRESS_CONFIG,
    EnergyGenerator,
    GeneratorConfig,
)

logger = structlog.get_logger(__name__)


# Predefined configurations
CONFIGS = {
    "normal": NORMAL_CONFIG,
    "stress": STRESS_CONFIG,
    "quiet": QUIET_CONFIG,
    "dev": DEV_CONFIG,
}


def parse_arguments(argv=None):
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        description="Energy Reading Generator for Kafka",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
            Examples:
            # Use predefined normal config
            python -m src.generator.generate --config normal

            # Stress config for 300 seconds
            python -m src.generator.generate --config stress --duration 300

            # Seven days of history, one reading per line every 2 hours
            python -m src.generator.generate --config quiet --backfill --backfill-days 7

            # Specify Kafka settings
            python -m src.generator.generate --kafka-servers kafka:9092 --topic readings
        """,
    )

    # Predefined config
    parser.add_argument(
        "--config", choices=list(CONFIGS.keys()), help="Use a predefined configuration"
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
        help="Kafka topic name (default: energy-readings)",
    )

    # Generation settings
    parser.add_argument("--organizations", type=int, help="Number of organizations")
    parser.add_argument("--lines", type=int, help="Lines per organization (1-10)")
    parser.add_argument("--threshold", type=float, help="Line warning threshold")
    parser.add_argument("--interval", type=float, help="Interval between events in seconds")
    parser.add_argument(
        "--anomaly-prob", type=float, help="Probability of anomaly injection (0.0 to 1.0)"
    )

    # Runtime settings
    parser.add_argument(
        "--duration", type=int, help="Duration to run in seconds (default: infinite)"
    )

    # Backfill mode settings
    parser.add_argument(
        "--backfill",
        action="store_true",
        help="Enable backfill mode (generate historical data quickly)",
    )
    parser.add_argument(
        "--backfill-days",
        type=int,
        default=7,
        help="Days of historical data to generate in backfill mode (default: 7)",
    )
    parser.add_argument(
        "--backfill-interval",
        type=int,
        default=7200,
        help="Seconds between backfill readings (default: 7200 = 2h)",
    )

    # Logging
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(argv)


def build_config_from_args(args) -> GeneratorConfig:
    """Build a GeneratorConfig from command-line arguments"""
    base = CONFIGS[args.config] if args.config else GeneratorConfig()
    if args.config:
        logger.info("Using predefined configuration", config_name=args.config)
    else:
        logger.info("Using default configuration")

    overrides = {
        "kafka_bootstrap_servers": args.kafka_servers,
        "kafka_topic": args.topic,
        "backfill_mode": args.backfill,
        "backfill_days": args.backfill_days,
        "backfill_interval_seconds": args.backfill_interval,
    }
    if args.organizations:
        overrides["num_organizations"] = args.organizations
        overrides["organization_ids"] = None  # Regenerated for the new count
    if args.lines:
        overrides["lines_per_organization"] = args.lines
    if args.threshold is not None:
        overrides["threshold"] = args.threshold
    if args.interval:
        overrides["event_interval_seconds"] = args.interval
    if args.anomaly_prob is not None:
        overrides["anomaly_probability"] = args.anomaly_prob

    # Presets are shared module objects, never mutate them
    return dataclasses.replace(base, **overrides)


def main():
    """Main entry point"""
    args = parse_arguments()

    log_level = getattr(structlog.stdlib.logging, args.log_level)
    setup_logging(level=log_level)

    logger.info("Starting Energy Reading Generator")

    try:
        config = build_config_from_args(args)

        generator = EnergyGenerator(config)

        if config.backfill_mode:
            logger.info("Running in BACKFILL mode")
            generator.run_backfill()
        else:
            logger.info("Running in REAL-TIME mode")
            generator.run(duration_seconds=args.duration)

        logger.info("Generator completed successfully")
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0

    except Exception as e:
        logger.error("Generator failed", error=str(e), exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
