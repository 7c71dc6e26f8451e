"""
Data models for the energy reading generator.
"""

from dataclasses import dataclass

LINE_NAMES = [
    "Main Distribution Line A",
    "Main Distribution Line B",
    "Secondary Line 1",
    "Secondary Line 2",
    "Industrial Load Line",
    "Residential Block 1",
    "Residential Block 2",
    "Commercial District",
    "Emergency Backup Line",
    "Renewable Energy Feed",
]

LOCATIONS = [
    "North Grid",
    "South Grid",
    "East Grid",
    "West Grid",
    "Central Hub",
    "Industrial Zone",
    "Residential Area A",
    "Residential Area B",
    "Commercial District",
    "Emergency Station",
]


@dataclass
class GeneratorConfig:
    """Configuration for the reading generator"""

    # Kafka settings
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_topic: str = "energy-readings"

    # Generation settings
    num_organizations: int = 2
    lines_per_organization: int = 10
    event_interval_seconds: float = 5.0

    # Line settings
    threshold: float = 1500.0  # Warning level shared by every line
    anomaly_probability: float = 0.03  # 3% chance of an injected spike per reading

    # Backfill settings
    backfill_mode: bool = False
    backfill_days: int = 7
    backfill_interval_seconds: int = 7200  # One reading per line every 2 hours

    organization_ids: list[str] | None = None

    def __post_init__(self):
        if self.organization_ids is None:
            self.organization_ids = [f"org-{i + 1}" for i in range(self.num_organizations)]
        if not 1 <= self.lines_per_organization <= len(LINE_NAMES):
            raise ValueError(
                f"lines_per_organization must be between 1 and {len(LINE_NAMES)}, "
                f"got {self.lines_per_organization}"
            )
