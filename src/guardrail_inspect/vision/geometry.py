"""Box geometry: scale resolution and projection of detection boxes."""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any

from .types import BoxScale, NormalizedBox

# Guard band above 1.0 so slight overshoot still reads as normalized.
NORMALIZED_MAX = 1.5
PER_MILLE = 1000.0
# Fractions are rounded so both conventions give equal boxes for the same region.
FRACTION_DIGITS = 9


def _clamp01(v: float) -> float:
    return max(0.0, min(1.0, v))


def _round(v: float) -> float:
    return round(v, FRACTION_DIGITS)


def coerce_box(box: Any) -> tuple[float, float, float, float]:
    """Coerce a raw ``[ymin, xmin, ymax, xmax]`` into four finite floats.

    Raises:
        ValueError: If the input is not a 4-item sequence of finite numbers.
    """
    if isinstance(box, (str, bytes)) or not isinstance(box, Sequence):
        raise ValueError(f"Box must be a sequence of 4 numbers, got {type(box).__name__}")
    if len(box) != 4:
        raise ValueError(f"Box must have 4 coordinates, got {len(box)}")
    out: list[float] = []
    for v in box:
        if isinstance(v, bool):
            raise ValueError(f"Non-numeric box coordinate: {v!r}")
        try:
            f = float(v)
        except (TypeError, ValueError, OverflowError) as e:
            raise ValueError(f"Non-numeric box coordinate: {v!r}") from e
        if not math.isfinite(f):
            raise ValueError(f"Non-finite box coordinate: {v!r}")
        out.append(f)
    ymin, xmin, ymax, xmax = out
    return ymin, xmin, ymax, xmax


def resolve_scale(box: tuple[float, float, float, float]) -> BoxScale:
    """Pick the coordinate convention: normalized only if all values <= 1.5."""
    if all(v <= NORMALIZED_MAX for v in box):
        return BoxScale.NORMALIZED
    return BoxScale.PER_MILLE


def normalize_box(box: Any) -> NormalizedBox:
    """Convert a raw ``[ymin, xmin, ymax, xmax]`` into an overlay rectangle.

    Boxes are read as fractions when every coordinate is <= 1.5 and as a
    0-1000 grid otherwise; both branches yield fractions of the image extent.
    Inverted extents clamp to zero so degenerate boxes render as markers.

    Raises:
        ValueError: If the box is not four finite numbers.
    """
    ymin, xmin, ymax, xmax = coerce_box(box)
    scale = resolve_scale((ymin, xmin, ymax, xmax))
    div = 1.0 if scale is BoxScale.NORMALIZED else PER_MILLE

    top = _clamp01(ymin / div)
    left = _clamp01(xmin / div)
    width = max(0.0, (xmax - xmin) / div)
    height = max(0.0, (ymax - ymin) / div)
    return NormalizedBox(
        top=_round(top),
        left=_round(left),
        width=_round(min(width, 1.0 - left)),
        height=_round(min(height, 1.0 - top)),
        scale=scale,
    )


def to_pixels(nb: NormalizedBox, w: int, h: int) -> tuple[float, float, float, float]:
    """Project a normalized box onto a ``w`` x ``h`` image as ``(x1, y1, x2, y2)``."""
    x1 = nb.left * w
    y1 = nb.top * h
    return x1, y1, x1 + nb.width * w, y1 + nb.height * h
