"""
Core utilities shared across the detection service and the reading generator.
"""

from .database import PostgresConnection
from .logger import setup_logging

__all__ = ["PostgresConnection", "setup_logging"]
