"""
Relative-deviation test against the configured line threshold.

Used when a line has too little history for a z-score, or when the history
store cannot be read.
"""

import numpy as np

from ..models import Reading
from .base import DetectionMethod, DetectionResult


class ThresholdMethod(DetectionMethod):
    """Flags readings that stray more than `ratio` away from the threshold"""

    def __init__(self, ratio: float = 0.10):
        self.ratio = ratio

    @property
    def name(self) -> str:
        return "threshold"

    def predict(self, reading: Reading, history: np.ndarray | None = None) -> DetectionResult:
        threshold = reading.threshold

        # Ratio is undefined for a zero threshold: never anomalous
        if threshold <= 0:
            return DetectionResult(
                is_anomaly=False,
                score=None,
                expected_value=threshold,
                actual_value=reading.consumption,
                details={"ratio_limit": self.ratio, "guard": "zero_threshold"},
            )

        relative_deviation = abs(reading.consumption - threshold) / threshold

        return DetectionResult(
            is_anomaly=relative_deviation > self.ratio,
            score=relative_deviation,
            expected_value=threshold,
            actual_value=reading.consumption,
            details={
                "relative_deviation": round(relative_deviation, 4),
                "ratio_limit": self.ratio,
            },
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(ratio={self.ratio})"
