"""
Data models and configuration for the energy anomaly detection service.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from functools import total_ordering
from types import MappingProxyType
from typing import Any, Mapping, Optional


@total_ordering
class Severity(Enum):
    """Ordered anomaly severity (LOW < MEDIUM < HIGH < CRITICAL)"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


def calculate_severity(deviation: float, threshold: float) -> Severity:
    """Bucket an anomaly's magnitude relative to the line threshold

    Args:
        deviation: Signed deviation of the reading; only its magnitude is used
        threshold: Configured nominal consumption level for the line

    Returns:
        CRITICAL at >= 50%, HIGH at >= 30%, MEDIUM at >= 15%, LOW otherwise.
        A zero threshold yields CRITICAL for any non-zero deviation, else LOW.
    """
    magnitude = abs(deviation)

    if threshold <= 0:
        return Severity.CRITICAL if magnitude > 0 else Severity.LOW

    deviation_percentage = (magnitude / threshold) * 100

    if deviation_percentage >= 50:
        return Severity.CRITICAL
    elif deviation_percentage >= 30:
        return Severity.HIGH
    elif deviation_percentage >= 15:
        return Severity.MEDIUM
    else:
        return Severity.LOW


@dataclass(frozen=True)
class Reading:
    """A single time-stamped consumption observation for a line"""

    line_id: str
    line_name: str
    consumption: float
    timestamp: datetime
    threshold: float
    organization_id: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        # Read-only copy so the reading stays immutable and hashable
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "Reading":
        """Build a Reading from a decoded Kafka message

        Raises:
            KeyError: If a required field is missing
            ValueError: If a numeric or timestamp field cannot be parsed
        """
        timestamp = message["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))

        return cls(
            line_id=str(message["line_id"]),
            line_name=str(message["line_name"]),
            consumption=float(message["consumption"]),
            timestamp=timestamp,
            threshold=float(message["threshold"]),
            organization_id=message.get("organization_id"),
            metadata=message.get("metadata") or {},
        )

    def to_db_dict(self, is_anomaly: bool) -> dict:
        """Convert to dict for database insertion"""
        return {
            "line_id": self.line_id,
            "line_name": self.line_name,
            "consumption": self.consumption,
            "timestamp": self.timestamp,
            "threshold": self.threshold,
            "is_anomaly": is_anomaly,
            "organization_id": self.organization_id,
            "voltage": self.metadata.get("voltage"),
            "current_amps": self.metadata.get("current"),
            "power_factor": self.metadata.get("power_factor"),
            "location": self.metadata.get("location"),
        }


@dataclass
class Anomaly:
    """A reading judged abnormal, as stored in the anomalies table"""

    line_id: str
    line_name: str
    consumption: float
    threshold: float
    deviation: float
    severity: Severity
    timestamp: datetime
    organization_id: Optional[str] = None
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_reading(cls, reading: Reading, deviation: float) -> "Anomaly":
        """Derive an anomaly from its triggering reading"""
        return cls(
            line_id=reading.line_id,
            line_name=reading.line_name,
            consumption=reading.consumption,
            threshold=reading.threshold,
            deviation=deviation,
            severity=calculate_severity(deviation, reading.threshold),
            timestamp=reading.timestamp,
            organization_id=reading.organization_id,
        )

    def to_db_dict(self) -> dict:
        """Convert to dict for database insertion"""
        return {
            "line_id": self.line_id,
            "line_name": self.line_name,
            "consumption": self.consumption,
            "threshold": self.threshold,
            "deviation": self.deviation,
            "severity": self.severity.value,
            "timestamp": self.timestamp,
            "resolved": self.resolved,
            "organization_id": self.organization_id,
        }


@dataclass(frozen=True)
class AnomalyFilter:
    """Query scope for anomaly counts and groupings"""

    line_id: str
    organization_id: Optional[str] = None
    resolved: Optional[bool] = None


@dataclass
class LineAnomalyStats:
    """Anomaly counts for one line"""

    line_id: str
    total: int
    resolved: int
    unresolved: int
    severity_breakdown: dict[str, int]

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "LineAnomalyStats":
        return cls(**data)


@dataclass
class DetectionConfig:
    """Tunables for the detection engine"""

    window_size: int = 50  # Historical readings used for the z-score window
    min_history_for_zscore: int = 10  # Below this, fall back to the threshold test
    z_score_threshold: float = 2.5
    simple_threshold_ratio: float = 0.10  # 10% relative deviation from threshold

    # Threshold-path anomalies are flagged but not stored unless enabled
    record_threshold_anomalies: bool = False


@dataclass
class AnomalyConfig:
    """Configuration for the anomaly detection service"""

    detection: DetectionConfig = field(default_factory=DetectionConfig)

    # PostgreSQL settings
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_database: str = "wattup"
    postgres_user: str = "wattup"
    postgres_password: str = "wattup_password"
    statement_timeout_ms: Optional[int] = 5000

    # Kafka settings
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_topic: str = "energy-readings"
    kafka_group_id: str = "anomaly-detection-consumer-group"
    kafka_auto_offset_reset: str = "latest"

    # Consumer behavior
    batch_size: int = 50
    commit_interval_seconds: float = 5.0
    max_poll_records: int = 500
    enable_auto_commit: bool = False

    # Redis settings (line stats cache)
    cache_enabled: bool = True
    cache_ttl_seconds: int = 300
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None
