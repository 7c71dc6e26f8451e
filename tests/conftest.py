"""
Pytest configuration and shared fixtures.
"""

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from src.anomaly.models import AnomalyConfig, DetectionConfig, Reading
from src.anomaly.stores import AnomalyStore, ReadingStore
from src.generator.models import GeneratorConfig

BASE_TIME = datetime(2025, 10, 2, 12, 0, tzinfo=UTC)


# Generator fixtures
@pytest.fixture
def basic_config():
    """Basic generator configuration for testing."""
    return GeneratorConfig(
        kafka_bootstrap_servers="localhost:9092",
        kafka_topic="test-topic",
        num_organizations=2,
        lines_per_organization=3,
        event_interval_seconds=1.0,
        anomaly_probability=0.1,
    )


@pytest.fixture
def minimal_config():
    """Minimal configuration for fast tests."""
    return GeneratorConfig(
        num_organizations=1,
        lines_per_organization=1,
        event_interval_seconds=0.1,
        anomaly_probability=0.0,  # No anomalies for predictable tests
    )


# Detection fixtures
@pytest.fixture
def detection_config():
    """Default detection tunables."""
    return DetectionConfig()


@pytest.fixture
def anomaly_config():
    """Service configuration for testing."""
    return AnomalyConfig(
        kafka_bootstrap_servers="localhost:9092",
        kafka_topic="test-topic",
        kafka_group_id="test-group",
        postgres_host="localhost",
        postgres_port=5432,
        postgres_database="test_db",
        postgres_user="test_user",
        postgres_password="test_password",
        statement_timeout_ms=None,
        batch_size=10,
        commit_interval_seconds=1.0,
        cache_enabled=False,
    )


@pytest.fixture
def make_reading():
    """Factory for readings on LINE_1_1 of org-1."""

    def _make(
        consumption=1000.0,
        threshold=1500.0,
        line_id="LINE_1_1",
        organization_id="org-1",
        timestamp=None,
    ):
        return Reading(
            line_id=line_id,
            line_name="Main Distribution Line A",
            consumption=consumption,
            timestamp=timestamp or BASE_TIME,
            threshold=threshold,
            organization_id=organization_id,
        )

    return _make


@pytest.fixture
def reading_store():
    """Reading store returning no history unless told otherwise."""
    store = MagicMock(spec=ReadingStore)
    store.fetch_recent_readings.return_value = []
    return store


@pytest.fixture
def anomaly_store():
    """Anomaly store accepting every write."""
    store = MagicMock(spec=AnomalyStore)
    store.create_anomaly.return_value = True
    store.count_anomalies.return_value = 0
    store.group_anomalies_by_severity.return_value = {}
    store.resolve_anomaly.return_value = None
    return store


@pytest.fixture
def scenario_history():
    """20 readings with mean 1000 and population std 50."""
    return [950.0, 1050.0] * 10
