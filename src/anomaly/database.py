"""
PostgreSQL operations for the anomaly detection service.

Handles:
- Querying recent line history for the detection engine
- Storing readings with their verdicts
- Inserting, counting, grouping and resolving anomalies
"""

from datetime import datetime
from typing import Any, Optional

import pandas as pd
import psycopg2.extensions
import psycopg2.extras
import structlog

from src.core.database import PostgresConnection

from .models import Anomaly, AnomalyConfig, AnomalyFilter, Reading
from .stores import AnomalyStore, OperationCancelled, ReadingStore

logger = structlog.get_logger(__name__)

MAX_NOTES_LENGTH = 500

SCHEMA = """
    CREATE TABLE IF NOT EXISTS energy_readings (
        id BIGSERIAL PRIMARY KEY,
        line_id VARCHAR(100) NOT NULL,
        line_name VARCHAR(200) NOT NULL,
        consumption DOUBLE PRECISION NOT NULL CHECK (consumption >= 0),
        timestamp TIMESTAMPTZ NOT NULL,
        threshold DOUBLE PRECISION NOT NULL CHECK (threshold >= 0),
        is_anomaly BOOLEAN NOT NULL DEFAULT FALSE,
        organization_id VARCHAR(100),
        voltage DOUBLE PRECISION,
        current_amps DOUBLE PRECISION,
        power_factor DOUBLE PRECISION,
        location VARCHAR(200),
        created_at TIMESTAMPTZ DEFAULT NOW()
    );

    CREATE INDEX IF NOT EXISTS idx_energy_readings_line_time
    ON energy_readings(line_id, timestamp DESC);
    CREATE INDEX IF NOT EXISTS idx_energy_readings_org_time
    ON energy_readings(organization_id, timestamp DESC);
    CREATE INDEX IF NOT EXISTS idx_energy_readings_anomaly_time
    ON energy_readings(is_anomaly, timestamp DESC);

    CREATE TABLE IF NOT EXISTS anomalies (
        id BIGSERIAL PRIMARY KEY,
        line_id VARCHAR(100) NOT NULL,
        line_name VARCHAR(200) NOT NULL,
        consumption DOUBLE PRECISION NOT NULL CHECK (consumption >= 0),
        threshold DOUBLE PRECISION NOT NULL CHECK (threshold >= 0),
        deviation DOUBLE PRECISION NOT NULL,
        severity VARCHAR(10) NOT NULL
            CHECK (severity IN ('low', 'medium', 'high', 'critical')),
        timestamp TIMESTAMPTZ NOT NULL,
        resolved BOOLEAN NOT NULL DEFAULT FALSE,
        resolved_by VARCHAR(100),
        resolved_at TIMESTAMPTZ,
        notes VARCHAR(500),
        organization_id VARCHAR(100),
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    );

    CREATE INDEX IF NOT EXISTS idx_anomalies_line_time
    ON anomalies(line_id, timestamp DESC);
    CREATE INDEX IF NOT EXISTS idx_anomalies_severity_resolved
    ON anomalies(severity, resolved);
    CREATE INDEX IF NOT EXISTS idx_anomalies_org_time
    ON anomalies(organization_id, timestamp DESC);
    CREATE INDEX IF NOT EXISTS idx_anomalies_resolved_time
    ON anomalies(resolved, timestamp DESC);
"""

INSERT_READING = """
    INSERT INTO energy_readings (
        line_id, line_name, consumption, timestamp, threshold, is_anomaly,
        organization_id, voltage, current_amps, power_factor, location
    ) VALUES (
        %(line_id)s, %(line_name)s, %(consumption)s, %(timestamp)s, %(threshold)s,
        %(is_anomaly)s, %(organization_id)s, %(voltage)s, %(current_amps)s,
        %(power_factor)s, %(location)s
    )
"""


def _anomaly_where(anomaly_filter: AnomalyFilter) -> tuple[str, dict[str, Any]]:
    """Build the WHERE clause for an anomaly filter"""
    clauses = ["line_id = %(line_id)s"]
    params: dict[str, Any] = {"line_id": anomaly_filter.line_id}

    if anomaly_filter.organization_id is not None:
        clauses.append("organization_id = %(organization_id)s")
        params["organization_id"] = anomaly_filter.organization_id
    if anomaly_filter.resolved is not None:
        clauses.append("resolved = %(resolved)s")
        params["resolved"] = anomaly_filter.resolved

    return " AND ".join(clauses), params


class EnergyDatabase(PostgresConnection, ReadingStore, AnomalyStore):
    """Database operations for readings and anomalies"""

    def __init__(self, config: AnomalyConfig):
        super().__init__(
            host=config.postgres_host,
            port=config.postgres_port,
            database=config.postgres_database,
            user=config.postgres_user,
            password=config.postgres_password,
            statement_timeout_ms=config.statement_timeout_ms,
        )
        self.config = config

    # ========================================
    # Readings
    # ========================================

    def fetch_recent_readings(
        self,
        line_id: str,
        organization_id: Optional[str],
        before: datetime,
        limit: int,
    ) -> list[float]:
        """Consumptions of the latest readings before `before`, newest first

        Raises:
            OperationCancelled: If PostgreSQL cancelled the statement
        """
        query = """
            SELECT consumption
            FROM energy_readings
            WHERE line_id = %(line_id)s
              AND timestamp < %(before)s
        """
        params: dict[str, Any] = {"line_id": line_id, "before": before, "limit": limit}
        if organization_id is not None:
            query += "  AND organization_id = %(organization_id)s\n"
            params["organization_id"] = organization_id
        query += "ORDER BY timestamp DESC LIMIT %(limit)s"

        try:
            rows = self.fetch_all(query, params)
        except psycopg2.extensions.QueryCanceledError as e:
            raise OperationCancelled(f"History query cancelled: {e}") from e

        logger.debug(
            "Queried recent readings",
            line_id=line_id,
            organization_id=organization_id,
            rows=len(rows),
        )
        return [row[0] for row in rows]

    def insert_reading(self, reading: Reading, is_anomaly: bool) -> bool:
        """Insert a single reading with its verdict"""
        try:
            with self.get_cursor() as cursor:
                cursor.execute(INSERT_READING, reading.to_db_dict(is_anomaly))
            return True
        except Exception as e:
            logger.error("Failed to insert reading", line_id=reading.line_id, error=str(e))
            return False

    def insert_batch_readings(self, readings: list[tuple[Reading, bool]]) -> int:
        """Batch insert (reading, is_anomaly) pairs, returning the number stored"""
        if not readings:
            return 0

        rows = [reading.to_db_dict(is_anomaly) for reading, is_anomaly in readings]
        inserted = 0
        try:
            with self.get_cursor() as cursor:
                psycopg2.extras.execute_batch(cursor, INSERT_READING, rows, page_size=100)
                inserted = len(rows)
        except Exception as e:
            logger.error("Failed to batch insert readings", count=len(rows), error=str(e))
        return inserted

    def query_consumption_history(
        self, line_id: str, organization_id: Optional[str] = None, limit: int = 100
    ) -> pd.DataFrame:
        """Latest readings for a line

        Returns:
            DataFrame with columns ['timestamp', 'consumption'], newest first
        """
        query = """
            SELECT timestamp, consumption
            FROM energy_readings
            WHERE line_id = %(line_id)s
        """
        params: dict[str, Any] = {"line_id": line_id, "limit": limit}
        if organization_id is not None:
            query += "  AND organization_id = %(organization_id)s\n"
            params["organization_id"] = organization_id
        query += "ORDER BY timestamp DESC LIMIT %(limit)s"

        rows = self.fetch_all(query, params)
        df = pd.DataFrame(rows, columns=["timestamp", "consumption"])
        logger.debug("Queried consumption history", line_id=line_id, rows=len(df))
        return df

    # ========================================
    # Anomalies
    # ========================================

    def create_anomaly(self, anomaly: Anomaly) -> bool:
        """Insert a detected anomaly

        Returns:
            True if successful, False otherwise
        """
        query = """
            INSERT INTO anomalies (
                line_id, line_name, consumption, threshold, deviation,
                severity, timestamp, resolved, organization_id
            ) VALUES (
                %(line_id)s, %(line_name)s, %(consumption)s, %(threshold)s, %(deviation)s,
                %(severity)s, %(timestamp)s, %(resolved)s, %(organization_id)s
            )
            RETURNING id
        """

        try:
            with self.get_cursor() as cursor:
                cursor.execute(query, anomaly.to_db_dict())
                anomaly_id = cursor.fetchone()[0]
                logger.debug(
                    "Anomaly inserted",
                    anomaly_id=anomaly_id,
                    line_id=anomaly.line_id,
                    severity=anomaly.severity.value,
                )
                return True
        except psycopg2.extensions.QueryCanceledError as e:
            raise OperationCancelled(f"Anomaly insert cancelled: {e}") from e
        except Exception as e:
            logger.error(
                "Failed to insert anomaly",
                line_id=anomaly.line_id,
                severity=anomaly.severity.value,
                error=str(e),
            )
            return False

    def count_anomalies(self, anomaly_filter: AnomalyFilter) -> int:
        where, params = _anomaly_where(anomaly_filter)
        row = self.fetch_one(f"SELECT COUNT(*) FROM anomalies WHERE {where}", params)
        return int(row[0]) if row else 0

    def group_anomalies_by_severity(self, anomaly_filter: AnomalyFilter) -> dict[str, int]:
        where, params = _anomaly_where(anomaly_filter)
        rows = self.fetch_all(
            f"SELECT severity, COUNT(*) FROM anomalies WHERE {where} GROUP BY severity",
            params,
        )
        return {severity: int(count) for severity, count in rows}

    def resolve_anomaly(
        self,
        anomaly_id: int,
        resolved_by: Optional[str] = None,
        notes: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> Optional[tuple[str, Optional[str]]]:
        """Mark an anomaly resolved, once.

        Only resolved, resolved_at, resolved_by and notes change; severity and
        deviation are left as they were.

        Returns:
            (line_id, organization_id) of the resolved anomaly, or None if it does
            not exist (in this tenant) or is already resolved

        Raises:
            ValueError: If notes exceed 500 characters
        """
        if notes is not None and len(notes) > MAX_NOTES_LENGTH:
            raise ValueError(f"Notes cannot exceed {MAX_NOTES_LENGTH} characters")

        query = """
            UPDATE anomalies
            SET resolved = TRUE,
                resolved_at = NOW(),
                resolved_by = %(resolved_by)s,
                notes = COALESCE(%(notes)s, notes),
                updated_at = NOW()
            WHERE id = %(anomaly_id)s
              AND resolved = FALSE
        """
        params: dict[str, Any] = {
            "anomaly_id": anomaly_id,
            "resolved_by": resolved_by,
            "notes": notes,
        }
        if organization_id is not None:
            query += "  AND organization_id = %(organization_id)s\n"
            params["organization_id"] = organization_id
        query += "RETURNING id, line_id, organization_id"

        row = self.fetch_one(query, params)
        if row is None:
            logger.warning(
                "Anomaly not found or already resolved",
                anomaly_id=anomaly_id,
                organization_id=organization_id,
            )
            return None

        _, line_id, line_organization_id = row
        logger.info(
            "Anomaly resolved", anomaly_id=anomaly_id, line_id=line_id, resolved_by=resolved_by
        )
        return line_id, line_organization_id

    def ensure_schema(self):
        """Create the readings and anomalies tables if they don't exist"""
        try:
            with self.get_cursor() as cursor:
                cursor.execute(SCHEMA)
                logger.info("Ensured energy_readings and anomalies tables exist")
        except Exception as e:
            logger.error("Failed to create schema", error=str(e))
            raise
