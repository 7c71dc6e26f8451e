"""
Redis cache for per-line anomaly statistics.
"""

import json
from typing import Optional

import redis
import structlog

from .models import AnomalyConfig, LineAnomalyStats

logger = structlog.get_logger(__name__)


class StatsCache:
    """Redis cache backend for LineAnomalyStats"""

    def __init__(self, config: AnomalyConfig):
        try:
            self.redis = redis.Redis(
                host=config.redis_host,
                port=config.redis_port,
                db=config.redis_db,
                password=config.redis_password,
                decode_responses=True,
            )
            self.ttl = config.cache_ttl_seconds
            self.redis.ping()  # Test connection
            logger.info("Redis cache initialized", host=config.redis_host, port=config.redis_port)
        except Exception as e:
            logger.error("Failed to initialize Redis", error=str(e))
            raise

    def save_stats(self, stats: LineAnomalyStats, organization_id: Optional[str] = None) -> bool:
        """Save line stats to Redis"""
        key = self._make_key(stats.line_id, organization_id)
        try:
            self.redis.setex(key, self.ttl, json.dumps(stats.to_dict()))
            logger.debug("Line stats cached", key=key)
            return True
        except Exception as e:
            logger.error("Failed to cache line stats", key=key, error=str(e))
            return False

    def load_stats(
        self, line_id: str, organization_id: Optional[str] = None
    ) -> Optional[LineAnomalyStats]:
        """Load line stats from Redis, None on miss or error"""
        key = self._make_key(line_id, organization_id)
        try:
            data = self.redis.get(key)
            if data is None:
                return None

            return LineAnomalyStats.from_dict(json.loads(data))

        except Exception as e:
            logger.error("Failed to load line stats from Redis", key=key, error=str(e))
            return None

    def invalidate(self, line_id: str, organization_id: Optional[str] = None) -> bool:
        """Drop cached stats for the line, both tenant-scoped and unscoped"""
        keys = [self._make_key(line_id, None)]
        if organization_id is not None:
            keys.append(self._make_key(line_id, organization_id))
        try:
            self.redis.delete(*keys)
            return True
        except Exception as e:
            logger.error("Failed to invalidate line stats", keys=keys, error=str(e))
            return False

    def _make_key(self, line_id: str, organization_id: Optional[str]) -> str:
        """Generate Redis key, JSON-encoded so no tenant id can alias another scope"""
        return "anomaly:stats:" + json.dumps([organization_id, line_id])
