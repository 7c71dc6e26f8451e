"""
Generic PostgreSQL connection management.
Shared by the anomaly store and the reading store.
"""

from contextlib import contextmanager
from typing import Any

import psycopg2
import structlog

logger = structlog.get_logger(__name__)


class PostgresConnection:
    """Base class for PostgreSQL connection management"""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        connect_timeout: int = 10,
        statement_timeout_ms: int | None = None,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.connect_timeout = connect_timeout
        self.statement_timeout_ms = statement_timeout_ms
        self.connection = None
        self._connect()

    def _connect(self):
        """Establish connection to PostgreSQL"""
        params: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
        }
        # Server-side cancellation surfaces as QueryCanceledError
        if self.statement_timeout_ms:
            params["options"] = f"-c statement_timeout={int(self.statement_timeout_ms)}"

        try:
            self.connection = psycopg2.connect(**params)
            logger.info(
                "PostgreSQL connection established",
                host=self.host,
                database=self.database,
                statement_timeout_ms=self.statement_timeout_ms,
            )
        except Exception as e:
            logger.error("Failed to connect to PostgreSQL", host=self.host, error=str(e))
            raise

    @contextmanager
    def get_cursor(self):
        """Context manager for database cursor with automatic commit/rollback"""
        cursor = self.connection.cursor()
        try:
            yield cursor
            self.connection.commit()
        except Exception as e:
            self.connection.rollback()
            logger.error("Database operation failed", error=str(e))
            raise
        finally:
            cursor.close()

    def fetch_all(self, query: str, params: dict[str, Any] | None = None) -> list[tuple]:
        """Run a read query and return every row. Errors propagate."""
        with self.get_cursor() as cursor:
            cursor.execute(query, params or {})
            return cursor.fetchall()

    def fetch_one(self, query: str, params: dict[str, Any] | None = None) -> tuple | None:
        """Run a read query and return the first row, or None. Errors propagate."""
        with self.get_cursor() as cursor:
            cursor.execute(query, params or {})
            return cursor.fetchone()

    def execute_query(self, query: str, params: dict[str, Any] | None = None) -> bool:
        """Execute a single write query, returning False on failure"""
        try:
            with self.get_cursor() as cursor:
                cursor.execute(query, params or {})
            return True
        except Exception as e:
            logger.error("Query execution failed", error=str(e), query=query)
            return False

    def check_health(self) -> bool:
        """Check if database connection is healthy"""
        try:
            with self.get_cursor() as cursor:
                cursor.execute("SELECT 1")
                return cursor.fetchone()[0] == 1
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return False

    def close(self):
        """Close database connection"""
        if self.connection:
            self.connection.close()
            logger.info("PostgreSQL connection closed", database=self.database)
