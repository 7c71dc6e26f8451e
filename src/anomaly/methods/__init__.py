"""
Detection methods used by the engine.
"""

from .base import DetectionMethod, DetectionResult, validate_history
from .threshold import ThresholdMethod
from .zscore import ZScoreMethod

__all__ = [
    "DetectionMethod",
    "DetectionResult",
    "ThresholdMethod",
    "ZScoreMethod",
    "validate_history",
]
