"""
Collaborator interfaces consumed by the detection engine.

The engine reads line history from a ReadingStore and writes anomalies to an
AnomalyStore. EnergyDatabase implements both on PostgreSQL; tests use mocks.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from .models import Anomaly, AnomalyFilter


class OperationCancelled(Exception):
    """A store call was cancelled or timed out.

    The engine never retries nor degrades on this error: it propagates to the
    caller unchanged.
    """


class ReadingStore(ABC):
    """Read access to historical readings"""

    @abstractmethod
    def fetch_recent_readings(
        self,
        line_id: str,
        organization_id: Optional[str],
        before: datetime,
        limit: int,
    ) -> list[float]:
        """Return consumptions of the latest readings strictly before `before`

        Args:
            line_id: Line identifier
            organization_id: Tenant scope, or None for no tenant filter
            before: Exclusive upper bound on reading timestamps
            limit: Maximum number of readings

        Returns:
            Consumption values ordered newest first, at most `limit` long
        """
        pass


class AnomalyStore(ABC):
    """Write and aggregate access to anomaly records"""

    @abstractmethod
    def create_anomaly(self, anomaly: Anomaly) -> bool:
        """Persist a new anomaly, returning False if the write failed"""
        pass

    @abstractmethod
    def count_anomalies(self, anomaly_filter: AnomalyFilter) -> int:
        pass

    @abstractmethod
    def group_anomalies_by_severity(self, anomaly_filter: AnomalyFilter) -> dict[str, int]:
        """Map severity value ("low", "medium", ...) to anomaly count"""
        pass

    @abstractmethod
    def resolve_anomaly(
        self,
        anomaly_id: int,
        resolved_by: Optional[str] = None,
        notes: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> Optional[tuple[str, Optional[str]]]:
        """Resolve an unresolved anomaly

        Returns:
            (line_id, organization_id) of the anomaly, or None if nothing changed
        """
        pass
