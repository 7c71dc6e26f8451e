"""
Energy Anomaly Detection

Statistical anomaly detection for electricity consumption on monitored lines.

Architecture:
- Detection engine: rolling z-score over each line's recent readings, with a
  threshold fallback when history is short or unavailable
- Stores: PostgreSQL for readings and anomalies, Redis for line stats
- Real-time consumer: Kafka readings in, verdicts and anomalies out

Usage:
    # Run real-time detection
    python -m src.anomaly.detect

    # Report on a line
    python -m src.anomaly.report --line-id LINE_1_1
"""

from .consumer import ReadingConsumer
from .engine import AnomalyDetectionEngine, DegradedReason, DetectionOutcome, DetectionPath
from .models import (
    Anomaly,
    AnomalyConfig,
    AnomalyFilter,
    DetectionConfig,
    LineAnomalyStats,
    Reading,
    Severity,
    calculate_severity,
)
from .stores import AnomalyStore, OperationCancelled, ReadingStore

__all__ = [
    "Anomaly",
    "AnomalyConfig",
    "AnomalyDetectionEngine",
    "AnomalyFilter",
    "AnomalyStore",
    "DegradedReason",
    "DetectionConfig",
    "DetectionOutcome",
    "DetectionPath",
    "LineAnomalyStats",
    "OperationCancelled",
    "Reading",
    "ReadingConsumer",
    "ReadingStore",
    "Severity",
    "calculate_severity",
]
