"""Core detection data types shared across the inspection engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class DefectLabel(str, Enum):
    """Defect categories the inspection prompt asks the model for."""

    DEFORMATION = "DEFORMATION & DENTS"
    MISSING_BOLTS = "MISSING OR LOOSE BOLTS"
    HOLES = "HOLES"


class ConfidenceTier(str, Enum):
    """Coarse confidence buckets used by overlays and reports."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @classmethod
    def from_score(cls, score: float) -> ConfidenceTier:
        """Bucket a confidence score: >=0.85 high, >=0.6 medium, else low."""
        if score >= 0.85:
            return cls.HIGH
        if score >= 0.6:
            return cls.MEDIUM
        return cls.LOW


class BoxScale(str, Enum):
    """Coordinate convention resolved for a raw box."""

    NORMALIZED = "normalized"
    PER_MILLE = "per_mille"


@dataclass(frozen=True)
class Detection:
    """One candidate defect reported by the model.

    Attributes:
        label: Defect label as reported (usually a :class:`DefectLabel` value,
            passed through unvalidated).
        confidence: Model confidence, intended in [0, 1].
        description: Free-text explanation of the visual cue.
        image_index: 0-based position of the source image in the analyzed set.
        box: Raw ``(ymin, xmin, ymax, xmax)`` with ambiguous scale.
    """

    label: str
    confidence: float
    description: str
    image_index: int
    box: tuple[float, float, float, float]

    @property
    def tier(self) -> ConfidenceTier:
        return ConfidenceTier.from_score(self.confidence)

    def confidence_text(self) -> str:
        """Return the confidence as a rounded percentage, e.g. ``"90%"``."""
        return f"{round(self.confidence * 100)}%"


@dataclass(frozen=True)
class NormalizedBox:
    """Overlay rectangle as fractions of the displayed image extent.

    All four values lie in [0, 1]. ``scale`` records which input convention
    the raw box was read with and is ignored by equality.
    """

    top: float
    left: float
    width: float
    height: float
    scale: BoxScale = field(compare=False)

    def area(self) -> float:
        """Return the covered fraction of the image area."""
        return self.width * self.height

    def as_percent(self) -> dict[str, str]:
        """Return CSS-style percentage strings for absolute positioning."""
        return {
            "top": f"{self.top * 100:g}%",
            "left": f"{self.left * 100:g}%",
            "width": f"{self.width * 100:g}%",
            "height": f"{self.height * 100:g}%",
        }
