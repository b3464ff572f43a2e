"""Validating parse step for untrusted detection records."""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from guardrail_inspect.vision.geometry import coerce_box
from guardrail_inspect.vision.types import Detection

_INT_RE = re.compile(r"[+-]?\d+")


class DropReason(str, Enum):
    """Why a raw record did not make it into a detection group."""

    NOT_A_RECORD = "not_a_record"
    BAD_IMAGE_INDEX = "bad_image_index"
    IMAGE_INDEX_OUT_OF_RANGE = "image_index_out_of_range"
    BAD_BOX = "bad_box"


def coerce_image_index(v: Any) -> int:
    """Coerce a model-reported image index to ``int``.

    Accepts native ints, integral floats and strings holding an integer.

    Raises:
        ValueError: For booleans, fractional numbers and any other input.
    """
    if isinstance(v, bool):
        raise ValueError(f"Boolean is not an image index: {v!r}")
    if isinstance(v, int):
        return v
    if isinstance(v, float):
        if v.is_integer():
            return int(v)
        raise ValueError(f"Fractional image index: {v!r}")
    if isinstance(v, str) and _INT_RE.fullmatch(v.strip()):
        return int(v.strip())
    raise ValueError(f"Unparseable image index: {v!r}")


class RawDetection(BaseModel):
    """Wire shape of one model-produced detection record."""

    model_config = ConfigDict(extra="ignore")

    label: str = ""
    confidence: float = 0.0
    description: str = ""
    image_index: int = Field(validation_alias=AliasChoices("imageIndex", "image_index"))
    box: tuple[float, float, float, float] = Field(
        validation_alias=AliasChoices("box_2d", "box")
    )

    @field_validator("label", "description", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        if v is None:
            return ""
        return str(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, v: Any) -> float:
        # An unusable score keeps the record and renders it in the lowest tier.
        if isinstance(v, bool):
            return 0.0
        try:
            f = float(v)
        except (TypeError, ValueError, OverflowError):
            return 0.0
        return f if math.isfinite(f) else 0.0

    @field_validator("image_index", mode="before")
    @classmethod
    def _coerce_image_index(cls, v: Any) -> int:
        return coerce_image_index(v)

    @field_validator("box", mode="before")
    @classmethod
    def _coerce_box(cls, v: Any) -> tuple[float, float, float, float]:
        return coerce_box(v)

    def to_detection(self) -> Detection:
        return Detection(
            label=self.label,
            confidence=self.confidence,
            description=self.description,
            image_index=self.image_index,
            box=self.box,
        )


@dataclass(frozen=True)
class ParsedDetection:
    """Successful parse outcome."""

    detection: Detection


@dataclass(frozen=True)
class DroppedDetection:
    """Rejected record with the position it had in the batch."""

    position: int
    reason: DropReason
    detail: str = ""


_FIELD_REASONS: dict[str, DropReason] = {
    "imageIndex": DropReason.BAD_IMAGE_INDEX,
    "image_index": DropReason.BAD_IMAGE_INDEX,
    "box_2d": DropReason.BAD_BOX,
    "box": DropReason.BAD_BOX,
}


def _reason_for(err: ValidationError) -> DropReason:
    for e in err.errors():
        loc = e.get("loc") or ()
        if loc and str(loc[0]) in _FIELD_REASONS:
            return _FIELD_REASONS[str(loc[0])]
    return DropReason.NOT_A_RECORD


def parse_detection(
    raw: Any, image_count: int, *, position: int = 0
) -> ParsedDetection | DroppedDetection:
    """Validate one raw record against the current image count.

    Never raises for bad input; the failure is returned as a
    :class:`DroppedDetection`.
    """
    if not isinstance(raw, Mapping):
        return DroppedDetection(position, DropReason.NOT_A_RECORD, type(raw).__name__)
    try:
        rec = RawDetection.model_validate(dict(raw))
    except ValidationError as e:
        return DroppedDetection(position, _reason_for(e), str(e.errors()[0].get("msg", "")))
    if not 0 <= rec.image_index < image_count:
        return DroppedDetection(
            position,
            DropReason.IMAGE_INDEX_OUT_OF_RANGE,
            f"imageIndex={rec.image_index} image_count={image_count}",
        )
    return ParsedDetection(rec.to_detection())
