"""
Predefined configurations for different simulation scenarios.
"""

from .models import GeneratorConfig

# Normal operation, matches the historical seed data (3% spikes)
NORMAL_CONFIG = GeneratorConfig(
    num_organizations=2,
    lines_per_organization=10,
    anomaly_probability=0.03,
    event_interval_seconds=5.0,
)


# Frequent spikes on every line
STRESS_CONFIG = GeneratorConfig(
    num_organizations=3,
    lines_per_organization=10,
    anomaly_probability=0.15,
    event_interval_seconds=1.0,
)


# Clean traffic, useful to build up history before detection starts
QUIET_CONFIG = GeneratorConfig(
    num_organizations=2,
    lines_per_organization=10,
    anomaly_probability=0.0,
    event_interval_seconds=5.0,
)


# Development/Testing (fast and small)
DEV_CONFIG = GeneratorConfig(
    num_organizations=1,
    lines_per_organization=3,
    anomaly_probability=0.05,
    event_interval_seconds=1.0,
)
