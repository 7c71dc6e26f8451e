"""
Energy Reading Generator for Kafka
Simulates consumption readings for monitored lines with injected spikes.
"""

from .config import DEV_CONFIG, NORMAL_CONFIG, QUIET_CONFIG, STRESS_CONFIG
from .generator import EnergyGenerator
from .line_state import LineState
from .models import GeneratorConfig

__all__ = [
    "GeneratorConfig",
    "LineState",
    "EnergyGenerator",
    "NORMAL_CONFIG",
    "STRESS_CONFIG",
    "QUIET_CONFIG",
    "DEV_CONFIG",
]

__version__ = "1.0.0"
