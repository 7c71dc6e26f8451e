"""
Energy reading generator publishing simulated line readings to Kafka.
"""

import json
import random
import time
from datetime import UTC, datetime, timedelta

import structlog
from kafka import KafkaProducer

from .line_state import LineState
from .models import LINE_NAMES, LOCATIONS, GeneratorConfig

logger = structlog.get_logger(__name__)


class EnergyGenerator:
    """Simulates every line of every organization"""

    def __init__(self, config: GeneratorConfig):
        self.config = config
        logger.info("Initializing energy generator", config=config)

        try:
            self.producer = KafkaProducer(
                bootstrap_servers=config.kafka_bootstrap_servers,
                value_serializer=lambda v: json.dumps(v).encode("utf-8"),
                key_serializer=lambda k: k.encode("utf-8"),
                compression_type="gzip",
            )
            logger.info(
                "Kafka producer initialized",
                bootstrap_servers=config.kafka_bootstrap_servers,
                topic=config.kafka_topic,
            )
        except Exception as e:
            logger.error("Failed to initialize Kafka producer", error=str(e))
            raise

        self.lines: list[LineState] = []
        for org_index, organization_id in enumerate(config.organization_ids):
            for line_index in range(config.lines_per_organization):
                self.lines.append(
                    LineState(
                        line_id=f"LINE_{org_index + 1}_{line_index + 1}",
                        line_name=LINE_NAMES[line_index],
                        organization_id=organization_id,
                        location=LOCATIONS[line_index],
                        threshold=config.threshold,
                        base_consumption=800 + line_index * 200 + random.uniform(0, 300),
                    )
                )

        logger.info(
            "Lines initialized",
            count=len(self.lines),
            organizations=config.organization_ids,
            anomaly_probability=config.anomaly_probability,
        )

    def generate_event(self, timestamp: datetime | None = None) -> int:
        """Generate and send one reading per line

        Returns:
            Number of readings sent
        """
        for line in self.lines:
            inject = random.random() < self.config.anomaly_probability
            reading = line.generate_reading(inject_anomaly=inject, timestamp=timestamp)

            # Keyed by line so a line's readings stay ordered within a partition
            self.producer.send(self.config.kafka_topic, key=line.line_id, value=reading)

            if inject:
                logger.warning(
                    "Anomaly injected",
                    line_id=line.line_id,
                    organization_id=line.organization_id,
                    consumption=reading["consumption"],
                )

        self.producer.flush()
        return len(self.lines)

    def run(self, duration_seconds: int = None):
        """Run the generator continuously or for a specified duration

        Args:
            duration_seconds: Optional duration in seconds. If None, runs indefinitely.
        """
        logger.info(
            "Starting generator",
            topic=self.config.kafka_topic,
            duration=duration_seconds if duration_seconds else "indefinite",
        )

        start_time = time.time()
        event_count = 0
        last_log_time = start_time

        try:
            while True:
                event_count += self.generate_event()

                elapsed = time.time() - start_time

                # Log stats every 10 seconds
                if time.time() - last_log_time >= 10:
                    rate = event_count / elapsed if elapsed > 0 else 0
                    logger.info(
                        "Generator stats",
                        total_events=event_count,
                        rate_per_sec=round(rate, 1),
                        elapsed_sec=round(elapsed, 1),
                    )
                    last_log_time = time.time()

                if duration_seconds and elapsed >= duration_seconds:
                    logger.info("Duration limit reached", duration_seconds=duration_seconds)
                    break

                time.sleep(self.config.event_interval_seconds)

        except KeyboardInterrupt:
            logger.info("Received interrupt signal, stopping generator")

        except Exception as e:
            logger.error("Generator error", error=str(e), exc_info=True)
            raise

        finally:
            elapsed = time.time() - start_time
            rate = event_count / elapsed if elapsed > 0 else 0

            self.producer.close()
            logger.info(
                "Generator stopped",
                total_events=event_count,
                elapsed_sec=round(elapsed, 1),
                avg_rate_per_sec=round(rate, 1),
            )

    def run_backfill(self, end: datetime | None = None) -> int:
        """Publish `backfill_days` of history ending at `end`, oldest first

        Returns:
            Number of readings sent
        """
        end = end or datetime.now(UTC)
        step = timedelta(seconds=self.config.backfill_interval_seconds)
        timestamp = end - timedelta(days=self.config.backfill_days)

        logger.info(
            "Starting backfill",
            start=timestamp.isoformat(),
            end=end.isoformat(),
            interval_seconds=self.config.backfill_interval_seconds,
        )

        event_count = 0
        try:
            while timestamp < end:
                event_count += self.generate_event(timestamp=timestamp)
                timestamp += step
        finally:
            self.producer.close()
            logger.info("Backfill finished", total_events=event_count)

        return event_count
