"""
Base abstract interface for anomaly detection methods.

All detection methods inherit from DetectionMethod and implement predict(),
which judges one reading against the line's recent consumption history.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Optional

import numpy as np

from ..models import Reading


@dataclass
class DetectionResult:
    """Result of judging a single reading"""

    is_anomaly: bool
    score: Optional[float]  # z-score or relative deviation, None when undefined
    expected_value: float  # window mean, or the line threshold
    actual_value: float
    details: dict[str, Any]

    @property
    def deviation(self) -> float:
        """Signed distance of the reading from its expected value"""
        return self.actual_value - self.expected_value

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization"""
        return asdict(self)


class DetectionMethod(ABC):
    """Abstract base class for all detection methods"""

    @abstractmethod
    def predict(self, reading: Reading, history: np.ndarray) -> DetectionResult:
        """Decide whether the reading is anomalous

        Args:
            reading: The new reading
            history: Consumption values of previous readings, newest first

        Returns:
            DetectionResult with the verdict and the statistics behind it
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Name of the detection method"""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


def validate_history(values) -> np.ndarray:
    """Convert raw store values to a float array

    Raises:
        ValueError: If any value is missing, non-numeric or not finite
    """
    try:
        history = np.asarray(list(values), dtype=float)
    except (TypeError, ValueError) as e:
        raise ValueError(f"History contains non-numeric values: {e}") from e

    if history.ndim != 1:
        raise ValueError(f"History must be one-dimensional, got shape {history.shape}")
    if not np.all(np.isfinite(history)):
        raise ValueError("History contains missing or non-finite values")

    return history
