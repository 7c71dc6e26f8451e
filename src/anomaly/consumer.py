"""
Real-time anomaly detection consumer.

Consumes energy readings from Kafka, judges them in batches with the detection
engine, then stores each reading with its verdict in PostgreSQL.
"""

import json
import time
from typing import Any, Optional

import structlog
from kafka import KafkaConsumer

from .cache import StatsCache
from .database import EnergyDatabase
from .engine import AnomalyDetectionEngine, DegradedReason, DetectionOutcome
from .models import AnomalyConfig, Reading

logger = structlog.get_logger(__name__)


class ReadingConsumer:
    """Consumes energy readings from Kafka and flags anomalies"""

    def __init__(self, config: AnomalyConfig):
        self.config = config

        # Initialize database
        self.db = EnergyDatabase(config)
        if not self.db.check_health():
            raise RuntimeError("Database health check failed")
        self.db.ensure_schema()

        # Line stats cache is optional
        self.cache: Optional[StatsCache] = StatsCache(config) if config.cache_enabled else None

        self.engine = AnomalyDetectionEngine(
            reading_store=self.db,
            anomaly_store=self.db,
            config=config.detection,
            stats_cache=self.cache,
        )

        # Initialize Kafka consumer
        try:
            self.consumer = KafkaConsumer(
                config.kafka_topic,
                bootstrap_servers=config.kafka_bootstrap_servers,
                group_id=config.kafka_group_id,
                auto_offset_reset=config.kafka_auto_offset_reset,
                enable_auto_commit=config.enable_auto_commit,
                max_poll_records=config.max_poll_records,
                value_deserializer=lambda m: json.loads(m.decode("utf-8")),
            )
            logger.info(
                "Kafka consumer initialized",
                bootstrap_servers=config.kafka_bootstrap_servers,
                topic=config.kafka_topic,
                group_id=config.kafka_group_id,
            )
        except Exception as e:
            logger.error("Failed to initialize Kafka consumer", error=str(e))
            raise

        self.batch: list[Reading] = []
        self.last_commit_time = time.time()

        self.stats = {
            "total_consumed": 0,
            "total_analyzed": 0,
            "anomalies_detected": 0,
            "anomalies_recorded": 0,
            "insufficient_history": 0,
            "history_unavailable": 0,
            "persistence_failures": 0,
            "parse_errors": 0,
            "unknown_type": 0,
            "insert_errors": 0,
        }

    def _parse_message(self, message: dict[str, Any]) -> bool:
        """Parse a message into a Reading and queue it for analysis"""
        if message.get("type") != "energy_reading":
            logger.warning("Unknown message type", type=message.get("type"))
            self.stats["unknown_type"] += 1
            return False

        try:
            reading = Reading.from_message(message)
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Failed to parse reading", error=str(e), message=message)
            self.stats["parse_errors"] += 1
            return False

        self.batch.append(reading)
        return True

    def _track(self, outcome: DetectionOutcome):
        self.stats["total_analyzed"] += 1
        if outcome.is_anomaly:
            self.stats["anomalies_detected"] += 1
        if outcome.persisted:
            self.stats["anomalies_recorded"] += 1
        if outcome.persistence_failed:
            self.stats["persistence_failures"] += 1
        if outcome.degraded_reason == DegradedReason.INSUFFICIENT_HISTORY:
            self.stats["insufficient_history"] += 1
        elif outcome.degraded_reason == DegradedReason.HISTORY_UNAVAILABLE:
            self.stats["history_unavailable"] += 1

    def _flush_batch(self) -> int:
        """Analyze queued readings, then store them with their verdicts"""
        if not self.batch:
            return 0

        # Taken off the queue first: a failed batch is never analyzed twice
        pending, self.batch = self.batch, []

        outcomes = self.engine.batch_evaluate(pending)
        for outcome in outcomes:
            self._track(outcome)

        rows = [(outcome.reading, outcome.is_anomaly) for outcome in outcomes]
        inserted = self.db.insert_batch_readings(rows)
        if inserted < len(rows):
            self.stats["insert_errors"] += len(rows) - inserted

        logger.debug(
            "Batch flushed",
            readings=inserted,
            anomalies=sum(1 for o in outcomes if o.is_anomaly),
        )

        return inserted

    def _should_commit(self) -> bool:
        """Check if we should flush based on batch size or time"""
        time_elapsed = time.time() - self.last_commit_time

        return (
            len(self.batch) >= self.config.batch_size
            or time_elapsed >= self.config.commit_interval_seconds
        )

    def _log_stats(self, event: str, elapsed: float):
        rate = self.stats["total_consumed"] / elapsed if elapsed > 0 else 0
        detection_rate = (
            self.stats["anomalies_detected"] / self.stats["total_analyzed"] * 100
            if self.stats["total_analyzed"] > 0
            else 0
        )
        logger.info(
            event,
            **self.stats,
            detection_rate_percent=round(detection_rate, 2),
            rate_per_sec=round(rate, 1),
            elapsed_sec=round(elapsed, 1),
        )

    def run(self, duration_seconds: int = None):
        """Run the consumer

        Args:
            duration_seconds: Optional duration in seconds. If None, runs indefinitely.
        """
        logger.info(
            "Starting anomaly detection consumer",
            topic=self.config.kafka_topic,
            duration=duration_seconds if duration_seconds else "indefinite",
        )

        start_time = time.time()
        last_log_time = start_time
        failed = False

        try:
            for message in self.consumer:
                self.stats["total_consumed"] += 1

                self._parse_message(message.value)

                if self._should_commit():
                    self._flush_batch()
                    if not self.config.enable_auto_commit:
                        self.consumer.commit()
                    self.last_commit_time = time.time()

                # Log stats every 30 seconds
                elapsed = time.time() - start_time
                if time.time() - last_log_time >= 30:
                    self._log_stats("Consumer stats", elapsed)
                    last_log_time = time.time()

                if duration_seconds and elapsed >= duration_seconds:
                    logger.info("Duration limit reached", duration_seconds=duration_seconds)
                    break

        except KeyboardInterrupt:
            logger.info("Received interrupt signal, stopping consumer")

        except Exception as e:
            failed = True
            logger.error("Consumer error", error=str(e), exc_info=True)
            raise

        finally:
            try:
                if failed:
                    # Offsets stay uncommitted so Kafka redelivers these readings
                    logger.warning(
                        "Dropping unflushed readings after failure", pending=len(self.batch)
                    )
                    self.batch.clear()
                else:
                    logger.info("Flushing remaining readings", pending=len(self.batch))
                    self._flush_batch()
                    if not self.config.enable_auto_commit:
                        self.consumer.commit()
            finally:
                self.consumer.close()
                self.db.close()

            self._log_stats("Consumer stopped", time.time() - start_time)
