"""
Rolling-window z-score detection.

The window mean and population standard deviation (divide by N) of recent
consumption define the expected behavior of a line; a reading whose absolute
z-score exceeds the limit is anomalous.
"""

import numpy as np
import structlog

from ..models import Reading
from .base import DetectionMethod, DetectionResult

logger = structlog.get_logger(__name__)


class ZScoreMethod(DetectionMethod):
    """Z-score of a reading against its line's recent window"""

    def __init__(self, z_score_threshold: float = 2.5):
        self.z_score_threshold = z_score_threshold

    @property
    def name(self) -> str:
        return "zscore"

    def predict(self, reading: Reading, history: np.ndarray) -> DetectionResult:
        if len(history) == 0:
            raise ValueError("Z-score detection needs a non-empty history")

        mean = float(np.mean(history))
        std_dev = float(np.std(history))  # ddof=0, population estimator

        # A flat window cannot single out an outlier. Kept conservative: a
        # wildly different reading after a constant history is not flagged.
        if std_dev == 0:
            logger.debug(
                "Flat consumption window, skipping z-score",
                line_id=reading.line_id,
                mean=mean,
                window=len(history),
            )
            return DetectionResult(
                is_anomaly=False,
                score=None,
                expected_value=mean,
                actual_value=reading.consumption,
                details={
                    "mean": mean,
                    "std_dev": 0.0,
                    "window": len(history),
                    "threshold": self.z_score_threshold,
                    "guard": "flat_history",
                },
            )

        z_score = abs((reading.consumption - mean) / std_dev)

        return DetectionResult(
            is_anomaly=z_score > self.z_score_threshold,
            score=z_score,
            expected_value=mean,
            actual_value=reading.consumption,
            details={
                "z_score": round(z_score, 4),
                "mean": round(mean, 4),
                "std_dev": round(std_dev, 4),
                "window": len(history),
                "threshold": self.z_score_threshold,
            },
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(z_score_threshold={self.z_score_threshold})"
