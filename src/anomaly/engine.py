"""
Anomaly detection engine for energy readings.

For each new reading the engine pulls the line's recent history from the
reading store and picks a test:

- at least `min_history_for_zscore` points: rolling z-score on the window,
  anomalies are recorded in the anomaly store
- fewer points, or an unreadable history: relative deviation from the line
  threshold; anomalies are flagged but only recorded when
  `record_threshold_anomalies` is enabled

The engine holds no mutable state. Build one at start-up and share it.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

import structlog

from .methods import DetectionResult, ThresholdMethod, ZScoreMethod, validate_history
from .models import (
    Anomaly,
    AnomalyFilter,
    DetectionConfig,
    LineAnomalyStats,
    Reading,
    Severity,
    calculate_severity,
)
from .stores import AnomalyStore, OperationCancelled, ReadingStore

if TYPE_CHECKING:
    from .cache import StatsCache

logger = structlog.get_logger(__name__)


class DetectionPath(Enum):
    ZSCORE = "zscore"
    THRESHOLD = "threshold"


class DegradedReason(Enum):
    """Why the threshold test was used instead of the z-score"""

    INSUFFICIENT_HISTORY = "insufficient_history"
    HISTORY_UNAVAILABLE = "history_unavailable"


@dataclass
class DetectionOutcome:
    """Verdict for one reading plus what happened around it"""

    reading: Reading
    is_anomaly: bool
    path: DetectionPath
    result: DetectionResult
    history_size: int
    degraded_reason: Optional[DegradedReason] = None
    anomaly: Optional[Anomaly] = None
    persisted: bool = False
    persistence_error: Optional[str] = None

    @property
    def persistence_failed(self) -> bool:
        """True when an anomaly should have been recorded but was not"""
        return self.persistence_error is not None


class AnomalyDetectionEngine:
    """Statistical anomaly detector for line consumption readings"""

    def __init__(
        self,
        reading_store: ReadingStore,
        anomaly_store: AnomalyStore,
        config: Optional[DetectionConfig] = None,
        stats_cache: Optional["StatsCache"] = None,
    ):
        self.reading_store = reading_store
        self.anomaly_store = anomaly_store
        self.config = config or DetectionConfig()
        self.stats_cache = stats_cache

        self.zscore = ZScoreMethod(self.config.z_score_threshold)
        self.fallback = ThresholdMethod(self.config.simple_threshold_ratio)

        logger.info(
            "Detection engine initialized",
            window_size=self.config.window_size,
            min_history=self.config.min_history_for_zscore,
            z_score_threshold=self.config.z_score_threshold,
            threshold_ratio=self.config.simple_threshold_ratio,
            record_threshold_anomalies=self.config.record_threshold_anomalies,
        )

    def analyze_reading(self, reading: Reading) -> bool:
        """Return whether the reading is anomalous, recording it if required"""
        return self.evaluate(reading).is_anomaly

    def batch_analyze(self, readings: Iterable[Reading]) -> list[bool]:
        """Analyze readings independently, preserving input order"""
        return [outcome.is_anomaly for outcome in self.batch_evaluate(readings)]

    def batch_evaluate(self, readings: Iterable[Reading]) -> list[DetectionOutcome]:
        """Evaluate each reading on its own.

        Windows come from the reading store only, so a batch member never
        sees its siblings as history.
        """
        outcomes = [self.evaluate(reading) for reading in readings]

        logger.debug(
            "Batch evaluated",
            size=len(outcomes),
            anomalies=sum(1 for o in outcomes if o.is_anomaly),
            persistence_failures=sum(1 for o in outcomes if o.persistence_failed),
        )
        return outcomes

    def evaluate(self, reading: Reading) -> DetectionOutcome:
        """Judge one reading and record an anomaly when the rules say so"""
        try:
            raw_history = self.reading_store.fetch_recent_readings(
                reading.line_id,
                reading.organization_id,
                reading.timestamp,
                self.config.window_size,
            )
            history = validate_history(raw_history)[: self.config.window_size]
        except OperationCancelled:
            raise
        except Exception as e:
            logger.warning(
                "History unavailable, falling back to threshold detection",
                line_id=reading.line_id,
                organization_id=reading.organization_id,
                error=str(e),
            )
            return self._threshold_outcome(reading, 0, DegradedReason.HISTORY_UNAVAILABLE)

        if len(history) < self.config.min_history_for_zscore:
            logger.debug(
                "Insufficient history for z-score",
                line_id=reading.line_id,
                history_size=len(history),
                required=self.config.min_history_for_zscore,
            )
            return self._threshold_outcome(
                reading, len(history), DegradedReason.INSUFFICIENT_HISTORY
            )

        result = self.zscore.predict(reading, history)
        outcome = DetectionOutcome(
            reading=reading,
            is_anomaly=result.is_anomaly,
            path=DetectionPath.ZSCORE,
            result=result,
            history_size=len(history),
        )

        if outcome.is_anomaly:
            self._record(outcome)

        return outcome

    def severity(self, deviation: float, threshold: float) -> Severity:
        return calculate_severity(deviation, threshold)

    def line_anomaly_stats(
        self, line_id: str, organization_id: Optional[str] = None
    ) -> LineAnomalyStats:
        """Total, resolved and unresolved counts plus a per-severity breakdown

        Store errors propagate to the caller.
        """
        if self.stats_cache is not None:
            cached = self.stats_cache.load_stats(line_id, organization_id)
            if cached is not None:
                return cached

        scope = AnomalyFilter(line_id=line_id, organization_id=organization_id)
        stats = LineAnomalyStats(
            line_id=line_id,
            total=self.anomaly_store.count_anomalies(scope),
            resolved=self.anomaly_store.count_anomalies(
                AnomalyFilter(line_id, organization_id, resolved=True)
            ),
            unresolved=self.anomaly_store.count_anomalies(
                AnomalyFilter(line_id, organization_id, resolved=False)
            ),
            severity_breakdown=dict(self.anomaly_store.group_anomalies_by_severity(scope)),
        )

        if self.stats_cache is not None:
            self.stats_cache.save_stats(stats, organization_id)

        return stats

    def resolve_anomaly(
        self,
        anomaly_id: int,
        resolved_by: Optional[str] = None,
        notes: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> bool:
        """Resolve an anomaly and drop the cached stats of its line

        Returns:
            False if the anomaly does not exist (in this tenant) or is already resolved

        Raises:
            ValueError: If notes exceed 500 characters
        """
        resolved = self.anomaly_store.resolve_anomaly(
            anomaly_id, resolved_by=resolved_by, notes=notes, organization_id=organization_id
        )
        if resolved is None:
            return False

        line_id, line_organization_id = resolved
        if self.stats_cache is not None:
            self.stats_cache.invalidate(line_id, line_organization_id)

        return True

    def _threshold_outcome(
        self, reading: Reading, history_size: int, reason: DegradedReason
    ) -> DetectionOutcome:
        result = self.fallback.predict(reading)
        outcome = DetectionOutcome(
            reading=reading,
            is_anomaly=result.is_anomaly,
            path=DetectionPath.THRESHOLD,
            result=result,
            history_size=history_size,
            degraded_reason=reason,
        )

        if outcome.is_anomaly and self.config.record_threshold_anomalies:
            self._record(outcome)

        return outcome

    def _record(self, outcome: DetectionOutcome) -> None:
        """Persist the anomaly behind a positive verdict.

        A failed write leaves the verdict untouched and is reported on the
        outcome as `persistence_error`.
        """
        reading = outcome.reading
        anomaly = Anomaly.from_reading(reading, outcome.result.deviation)
        outcome.anomaly = anomaly

        try:
            persisted = self.anomaly_store.create_anomaly(anomaly)
            error = None if persisted else "anomaly store rejected the write"
        except OperationCancelled:
            raise
        except Exception as e:
            persisted = False
            error = str(e)

        if not persisted:
            outcome.persistence_error = error
            logger.error(
                "Failed to record anomaly",
                line_id=reading.line_id,
                organization_id=reading.organization_id,
                severity=anomaly.severity.value,
                deviation=round(anomaly.deviation, 2),
                error=error,
            )
            return

        outcome.persisted = True

        if self.stats_cache is not None:
            self.stats_cache.invalidate(reading.line_id, reading.organization_id)

        logger.info(
            "Anomaly detected",
            line_id=reading.line_id,
            line_name=reading.line_name,
            organization_id=reading.organization_id,
            path=outcome.path.value,
            severity=anomaly.severity.value,
            consumption=round(reading.consumption, 2),
            expected=round(outcome.result.expected_value, 2),
            deviation=round(anomaly.deviation, 2),
            score=round(outcome.result.score, 3) if outcome.result.score is not None else None,
        )
