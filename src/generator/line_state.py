"""
Line state management and reading generation.
"""

import random
from datetime import UTC, datetime
from typing import Any


class LineState:
    """A monitored line with a stable base load and a daily usage pattern"""

    def __init__(
        self,
        line_id: str,
        line_name: str,
        organization_id: str,
        location: str,
        threshold: float,
        base_consumption: float,
    ):
        self.line_id = line_id
        self.line_name = line_name
        self.organization_id = organization_id
        self.location = location
        self.threshold = threshold
        self.base_consumption = base_consumption

    @staticmethod
    def daily_factor(hour: int) -> float:
        """Business hours run hot, evenings warm, nights low"""
        if 8 <= hour <= 18:
            return 1.3
        elif 19 <= hour <= 22:
            return 1.1
        return 0.7

    def generate_reading(
        self, inject_anomaly: bool = False, timestamp: datetime | None = None
    ) -> dict[str, Any]:
        """Generate one reading message

        Args:
            inject_anomaly: Replace the consumption with a spike above threshold
            timestamp: Optional custom timestamp (for backfill mode)
        """
        timestamp = timestamp or datetime.now(UTC)

        consumption = self.base_consumption * self.daily_factor(timestamp.hour)
        consumption += random.uniform(-100, 100)

        if inject_anomaly:
            consumption = self.threshold + random.uniform(0, 500)

        consumption = max(0.0, consumption)
        voltage = 220 + random.uniform(-10, 10)

        return {
            "type": "energy_reading",
            "timestamp": timestamp.isoformat(),
            "line_id": self.line_id,
            "line_name": self.line_name,
            "organization_id": self.organization_id,
            "consumption": round(consumption, 2),
            "threshold": self.threshold,
            "metadata": {
                "voltage": round(voltage, 1),
                "current": round(consumption / 220, 2),
                "power_factor": round(random.uniform(0.85, 0.95), 3),
                "location": self.location,
            },
        }
