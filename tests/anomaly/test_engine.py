"""
Tests for AnomalyDetectionEngine.
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from src.anomaly.engine import AnomalyDetectionEngine, DegradedReason, DetectionPath
from src.anomaly.models import (
    Anomaly,
    AnomalyFilter,
    DetectionConfig,
    LineAnomalyStats,
    Severity,
)
from src.anomaly.stores import OperationCancelled


@pytest.fixture
def engine(reading_store, anomaly_store):
    return AnomalyDetectionEngine(reading_store, anomaly_store)


class TestZScorePath:
    """Readings on lines with enough history."""

    def test_flat_history_is_not_anomalous(self, engine, reading_store, anomaly_store, make_reading):
        """20 readings of 1000 and a new 1000: std is 0, so no anomaly."""
        reading_store.fetch_recent_readings.return_value = [1000.0] * 20

        assert engine.analyze_reading(make_reading(consumption=1000, threshold=1500)) is False
        anomaly_store.create_anomaly.assert_not_called()

    @pytest.mark.parametrize("consumption", [0.0, 999.0, 1500.0, 10_000.0])
    def test_flat_history_ignores_any_value(
        self, engine, reading_store, anomaly_store, make_reading, consumption
    ):
        """A flat window never flags, even for a wildly different reading."""
        reading_store.fetch_recent_readings.return_value = [1000.0] * 20

        outcome = engine.evaluate(make_reading(consumption=consumption))

        assert outcome.is_anomaly is False
        assert outcome.path == DetectionPath.ZSCORE
        anomaly_store.create_anomaly.assert_not_called()

    def test_outlier_is_recorded(
        self, engine, reading_store, anomaly_store, make_reading, scenario_history
    ):
        """Mean 1000, std 50, reading 1200: z = 4 > 2.5, recorded as LOW."""
        reading_store.fetch_recent_readings.return_value = scenario_history
        reading = make_reading(consumption=1200, threshold=1500)

        outcome = engine.evaluate(reading)

        assert outcome.is_anomaly is True
        assert outcome.path == DetectionPath.ZSCORE
        assert outcome.degraded_reason is None
        assert outcome.history_size == 20
        assert outcome.persisted is True
        assert outcome.persistence_failed is False

        anomaly_store.create_anomaly.assert_called_once()
        anomaly = anomaly_store.create_anomaly.call_args[0][0]
        assert isinstance(anomaly, Anomaly)
        assert anomaly.deviation == pytest.approx(200.0)
        assert anomaly.severity == Severity.LOW
        assert anomaly.line_id == reading.line_id
        assert anomaly.organization_id == "org-1"
        assert anomaly.resolved is False

    def test_negative_outlier_keeps_signed_deviation(
        self, engine, reading_store, anomaly_store, make_reading, scenario_history
    ):
        """A drop in consumption is recorded with a negative deviation."""
        reading_store.fetch_recent_readings.return_value = scenario_history

        assert engine.analyze_reading(make_reading(consumption=500, threshold=1000)) is True

        anomaly = anomaly_store.create_anomaly.call_args[0][0]
        assert anomaly.deviation == pytest.approx(-500.0)
        assert anomaly.severity == Severity.CRITICAL

    def test_normal_reading_not_recorded(
        self, engine, reading_store, anomaly_store, make_reading, scenario_history
    ):
        reading_store.fetch_recent_readings.return_value = scenario_history

        assert engine.analyze_reading(make_reading(consumption=1010)) is False
        anomaly_store.create_anomaly.assert_not_called()

    def test_fetches_window_before_reading(self, engine, reading_store, make_reading):
        """History is requested for the reading's line, tenant and timestamp."""
        reading = make_reading()

        engine.analyze_reading(reading)

        reading_store.fetch_recent_readings.assert_called_once_with(
            "LINE_1_1", "org-1", reading.timestamp, 50
        )

    def test_no_tenant_filter_without_organization(self, engine, reading_store, make_reading):
        reading = make_reading(organization_id=None)

        engine.analyze_reading(reading)

        reading_store.fetch_recent_readings.assert_called_once_with(
            "LINE_1_1", None, reading.timestamp, 50
        )

    def test_oversized_history_is_truncated(self, engine, reading_store, make_reading):
        """Only the newest window_size values are used."""
        reading_store.fetch_recent_readings.return_value = [1000.0] * 50 + [1.0] * 10

        outcome = engine.evaluate(make_reading(consumption=1000))

        assert outcome.history_size == 50
        assert outcome.is_anomaly is False

    def test_custom_z_score_threshold(
        self, reading_store, anomaly_store, make_reading, scenario_history
    ):
        """A z-score limit above 4 lets the scenario outlier pass."""
        reading_store.fetch_recent_readings.return_value = scenario_history
        engine = AnomalyDetectionEngine(
            reading_store, anomaly_store, DetectionConfig(z_score_threshold=4.5)
        )

        assert engine.analyze_reading(make_reading(consumption=1200)) is False


class TestThresholdPath:
    """Readings on lines with too little or unreadable history."""

    def test_short_history_uses_threshold(self, engine, reading_store, anomaly_store, make_reading):
        """5 readings, threshold 1000, reading 1200: 20% > 10%, flagged but not recorded."""
        reading_store.fetch_recent_readings.return_value = [1000.0] * 5

        outcome = engine.evaluate(make_reading(consumption=1200, threshold=1000))

        assert outcome.is_anomaly is True
        assert outcome.path == DetectionPath.THRESHOLD
        assert outcome.degraded_reason == DegradedReason.INSUFFICIENT_HISTORY
        assert outcome.history_size == 5
        assert outcome.anomaly is None
        assert outcome.persisted is False
        assert outcome.persistence_failed is False
        anomaly_store.create_anomaly.assert_not_called()

    def test_zero_threshold_is_guarded(self, engine, reading_store, make_reading):
        """5 readings, threshold 0, reading 500: no crash, not anomalous."""
        reading_store.fetch_recent_readings.return_value = [1000.0] * 5

        assert engine.analyze_reading(make_reading(consumption=500, threshold=0)) is False

    @pytest.mark.parametrize("history_size", range(0, 10))
    @pytest.mark.parametrize(
        "consumption,threshold",
        [(1200, 1000), (1100, 1000), (1099, 1000), (850, 1000), (0, 10), (42, 0)],
    )
    def test_short_history_matches_threshold_test(
        self, engine, reading_store, make_reading, history_size, consumption, threshold
    ):
        """Below 10 points the verdict is exactly |c - t| / t > 0.10."""
        reading_store.fetch_recent_readings.return_value = [123.0 * (i + 1) for i in range(history_size)]

        expected = threshold > 0 and abs(consumption - threshold) / threshold > 0.10

        verdict = engine.analyze_reading(make_reading(consumption=consumption, threshold=threshold))
        assert verdict is expected

    def test_threshold_anomalies_recorded_when_enabled(
        self, reading_store, anomaly_store, make_reading
    ):
        """With record_threshold_anomalies, deviation is measured from the threshold."""
        engine = AnomalyDetectionEngine(
            reading_store, anomaly_store, DetectionConfig(record_threshold_anomalies=True)
        )

        outcome = engine.evaluate(make_reading(consumption=1200, threshold=1000))

        assert outcome.persisted is True
        anomaly = anomaly_store.create_anomaly.call_args[0][0]
        assert anomaly.deviation == pytest.approx(200.0)
        assert anomaly.severity == Severity.MEDIUM

    def test_min_history_is_configurable(self, reading_store, anomaly_store, make_reading):
        reading_store.fetch_recent_readings.return_value = [1000.0] * 15
        engine = AnomalyDetectionEngine(
            reading_store, anomaly_store, DetectionConfig(min_history_for_zscore=20)
        )

        outcome = engine.evaluate(make_reading())

        assert outcome.path == DetectionPath.THRESHOLD


class TestDegradedHistory:
    """History store failures degrade to the threshold test."""

    def test_store_error_falls_back(self, engine, reading_store, anomaly_store, make_reading):
        reading_store.fetch_recent_readings.side_effect = ConnectionError("postgres down")

        outcome = engine.evaluate(make_reading(consumption=1200, threshold=1000))

        assert outcome.is_anomaly is True
        assert outcome.path == DetectionPath.THRESHOLD
        assert outcome.degraded_reason == DegradedReason.HISTORY_UNAVAILABLE
        assert outcome.history_size == 0
        anomaly_store.create_anomaly.assert_not_called()

    def test_store_error_normal_reading(self, engine, reading_store, make_reading):
        reading_store.fetch_recent_readings.side_effect = RuntimeError("boom")

        assert engine.analyze_reading(make_reading(consumption=1000, threshold=1000)) is False

    def test_malformed_history_falls_back(self, engine, reading_store, make_reading):
        reading_store.fetch_recent_readings.return_value = [1000.0] * 15 + [None]

        outcome = engine.evaluate(make_reading(consumption=1200, threshold=1000))

        assert outcome.degraded_reason == DegradedReason.HISTORY_UNAVAILABLE
        assert outcome.is_anomaly is True

    def test_cancellation_propagates(self, engine, reading_store, make_reading):
        """Cancelled history reads are not degraded nor retried."""
        reading_store.fetch_recent_readings.side_effect = OperationCancelled("timeout")

        with pytest.raises(OperationCancelled):
            engine.analyze_reading(make_reading())

        assert reading_store.fetch_recent_readings.call_count == 1


class TestPersistenceFailure:
    """Anomaly write failures keep the verdict and surface a soft error."""

    def test_rejected_write(
        self, engine, reading_store, anomaly_store, make_reading, scenario_history
    ):
        reading_store.fetch_recent_readings.return_value = scenario_history
        anomaly_store.create_anomaly.return_value = False

        outcome = engine.evaluate(make_reading(consumption=1200))

        assert outcome.is_anomaly is True
        assert outcome.persisted is False
        assert outcome.persistence_failed is True
        assert outcome.anomaly is not None
        assert "rejected" in outcome.persistence_error

    def test_write_exception(
        self, engine, reading_store, anomaly_store, make_reading, scenario_history
    ):
        reading_store.fetch_recent_readings.return_value = scenario_history
        anomaly_store.create_anomaly.side_effect = RuntimeError("disk full")

        assert engine.analyze_reading(make_reading(consumption=1200)) is True
        assert engine.evaluate(make_reading(consumption=1200)).persistence_error == "disk full"

    def test_write_cancellation_propagates(
        self, engine, reading_store, anomaly_store, make_reading, scenario_history
    ):
        reading_store.fetch_recent_readings.return_value = scenario_history
        anomaly_store.create_anomaly.side_effect = OperationCancelled("timeout")

        with pytest.raises(OperationCancelled):
            engine.analyze_reading(make_reading(consumption=1200))


class TestBatchAnalyze:
    """Batch analysis is independent per reading."""

    def test_matches_sequential_calls(self, reading_store, anomaly_store, make_reading):
        histories = {
            "LINE_A": [950.0, 1050.0] * 10,
            "LINE_B": [1000.0] * 20,
            "LINE_C": [1000.0] * 3,
        }
        reading_store.fetch_recent_readings.side_effect = (
            lambda line_id, organization_id, before, limit: histories[line_id]
        )
        engine = AnomalyDetectionEngine(reading_store, anomaly_store)

        readings = [
            make_reading(line_id="LINE_A", consumption=1200),
            make_reading(line_id="LINE_B", consumption=5000),
            make_reading(line_id="LINE_C", consumption=1200, threshold=1000),
            make_reading(line_id="LINE_A", consumption=1010),
            make_reading(line_id="LINE_C", consumption=1000, threshold=1000),
        ]

        batch = engine.batch_analyze(readings)
        sequential = [engine.analyze_reading(r) for r in readings]

        assert batch == sequential == [True, False, True, False, False]

    def test_siblings_do_not_feed_history(self, engine, reading_store, make_reading):
        """Each reading gets its own fetch; batch members are never chained."""
        first = make_reading(consumption=1200)
        second = make_reading(consumption=1200, timestamp=first.timestamp + timedelta(minutes=5))

        engine.batch_analyze([first, second])

        calls = reading_store.fetch_recent_readings.call_args_list
        assert [c.args[2] for c in calls] == [first.timestamp, second.timestamp]

    def test_empty_batch(self, engine):
        assert engine.batch_analyze([]) == []

    def test_batch_evaluate_preserves_order(self, engine, make_reading):
        readings = [make_reading(line_id=f"LINE_{i}") for i in range(5)]

        outcomes = engine.batch_evaluate(readings)

        assert [o.reading.line_id for o in outcomes] == [r.line_id for r in readings]


class TestSeverityAndStats:
    """Severity helper and line statistics."""

    def test_severity(self, engine):
        assert engine.severity(800, 1000) == Severity.CRITICAL
        assert engine.severity(0, 0) == Severity.LOW
        assert engine.severity(800, 1000) == engine.severity(800, 1000)

    def test_line_anomaly_stats(self, engine, anomaly_store):
        counts = {None: 7, True: 4, False: 3}
        anomaly_store.count_anomalies.side_effect = lambda f: counts[f.resolved]
        anomaly_store.group_anomalies_by_severity.return_value = {"low": 5, "critical": 2}

        stats = engine.line_anomaly_stats("LINE_1_1", "org-1")

        assert stats == LineAnomalyStats(
            line_id="LINE_1_1",
            total=7,
            resolved=4,
            unresolved=3,
            severity_breakdown={"low": 5, "critical": 2},
        )
        anomaly_store.group_anomalies_by_severity.assert_called_once_with(
            AnomalyFilter(line_id="LINE_1_1", organization_id="org-1")
        )

    def test_line_anomaly_stats_without_tenant(self, engine, anomaly_store):
        engine.line_anomaly_stats("LINE_1_1")

        scopes = [c.args[0] for c in anomaly_store.count_anomalies.call_args_list]
        assert all(scope.organization_id is None for scope in scopes)
        assert {scope.resolved for scope in scopes} == {None, True, False}

    def test_stats_errors_propagate(self, engine, anomaly_store):
        anomaly_store.count_anomalies.side_effect = RuntimeError("db down")

        with pytest.raises(RuntimeError):
            engine.line_anomaly_stats("LINE_1_1")


class TestStatsCache:
    """Engine interaction with the line stats cache."""

    def test_cache_hit_skips_store(self, reading_store, anomaly_store):
        cached = LineAnomalyStats("LINE_1_1", 1, 0, 1, {"high": 1})
        cache = MagicMock()
        cache.load_stats.return_value = cached
        engine = AnomalyDetectionEngine(reading_store, anomaly_store, stats_cache=cache)

        assert engine.line_anomaly_stats("LINE_1_1", "org-1") is cached
        anomaly_store.count_anomalies.assert_not_called()

    def test_cache_miss_saves(self, reading_store, anomaly_store):
        cache = MagicMock()
        cache.load_stats.return_value = None
        engine = AnomalyDetectionEngine(reading_store, anomaly_store, stats_cache=cache)

        stats = engine.line_anomaly_stats("LINE_1_1", "org-1")

        cache.save_stats.assert_called_once_with(stats, "org-1")

    def test_recorded_anomaly_invalidates_line(
        self, reading_store, anomaly_store, make_reading, scenario_history
    ):
        reading_store.fetch_recent_readings.return_value = scenario_history
        cache = MagicMock()
        engine = AnomalyDetectionEngine(reading_store, anomaly_store, stats_cache=cache)

        engine.analyze_reading(make_reading(consumption=1200))

        cache.invalidate.assert_called_once_with("LINE_1_1", "org-1")

    def test_failed_write_keeps_cache(
        self, reading_store, anomaly_store, make_reading, scenario_history
    ):
        reading_store.fetch_recent_readings.return_value = scenario_history
        anomaly_store.create_anomaly.return_value = False
        cache = MagicMock()
        engine = AnomalyDetectionEngine(reading_store, anomaly_store, stats_cache=cache)

        engine.analyze_reading(make_reading(consumption=1200))

        cache.invalidate.assert_not_called()


class TestResolveAnomaly:
    """Resolution through the engine keeps line stats fresh."""

    def test_resolve_invalidates_line_stats(self, reading_store, anomaly_store):
        """Stats cached before a resolution are not served afterwards."""
        cache = MagicMock()
        cache.load_stats.return_value = LineAnomalyStats("LINE_1_1", 1, 0, 1, {"high": 1})
        anomaly_store.resolve_anomaly.return_value = ("LINE_1_1", "org-1")
        engine = AnomalyDetectionEngine(reading_store, anomaly_store, stats_cache=cache)

        assert engine.resolve_anomaly(7, resolved_by="operator", organization_id="org-1") is True

        anomaly_store.resolve_anomaly.assert_called_once_with(
            7, resolved_by="operator", notes=None, organization_id="org-1"
        )
        cache.invalidate.assert_called_once_with("LINE_1_1", "org-1")

    def test_unscoped_resolve_uses_row_tenant(self, reading_store, anomaly_store):
        """The tenant comes from the resolved row, not from the caller."""
        cache = MagicMock()
        anomaly_store.resolve_anomaly.return_value = ("LINE_2_1", "org-2")
        engine = AnomalyDetectionEngine(reading_store, anomaly_store, stats_cache=cache)

        engine.resolve_anomaly(9)

        cache.invalidate.assert_called_once_with("LINE_2_1", "org-2")

    def test_nothing_resolved(self, reading_store, anomaly_store):
        cache = MagicMock()
        engine = AnomalyDetectionEngine(reading_store, anomaly_store, stats_cache=cache)

        assert engine.resolve_anomaly(7) is False
        cache.invalidate.assert_not_called()

    def test_without_cache(self, engine, anomaly_store):
        anomaly_store.resolve_anomaly.return_value = ("LINE_1_1", None)

        assert engine.resolve_anomaly(7) is True

    def test_long_notes_rejected(self, engine, anomaly_store):
        anomaly_store.resolve_anomaly.side_effect = ValueError("Notes cannot exceed 500 characters")

        with pytest.raises(ValueError):
            engine.resolve_anomaly(7, notes="x" * 501)
