"""Detection output record."""

from dataclasses import dataclass
from enum import Enum

from detection.color import RGB


class DetectionMethod(Enum):
    EDGE = "edge"  # Border-ring histogram
    CLUSTER = "cluster"  # K-means centroid
    HYBRID = "hybrid"  # Full-frame histogram or cross-frame consensus


@dataclass(frozen=True)
class ChromakeyResult:
    color: RGB
    confidence: float
    coverage: float
    hue: float
    method: DetectionMethod

    def to_dict(self) -> dict:
        return {
            "color": self.color.to_dict(),
            "confidence": self.confidence,
            "coverage": self.coverage,
            "hue": self.hue,
            "method": self.method.value,
        }


def result_to_dict(result: ChromakeyResult | None) -> dict | None:
    """Wire form of a detection: the result dict, or None for no detection."""
    if result is None:
        return None
    return result.to_dict()
