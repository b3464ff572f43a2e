"""Overlay rendering of detections on inspected images."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

from .geometry import normalize_box, to_pixels
from .types import ConfidenceTier, Detection

COLOR_BY_TIER: dict[ConfidenceTier, tuple[int, int, int]] = {
    ConfidenceTier.HIGH: (239, 68, 68),  # red
    ConfidenceTier.MEDIUM: (249, 115, 22),  # orange
    ConfidenceTier.LOW: (234, 179, 8),  # yellow
}
HOVER_COLOR = (255, 255, 255)


def draw_detections(
    img: Image.Image,
    detections: Sequence[Detection],
    out_path: Path | None = None,
    *,
    highlight: int | None = None,
) -> Image.Image:
    """Draw labeled detection boxes on a copy of `img`.

    Boxes go through the same normalization as interactive overlays, so a
    degenerate box shows up as a zero-size marker. `highlight` is the position
    of a detection to draw in the hover color.
    """
    vis = img.copy()
    dr = ImageDraw.Draw(vis)
    w, h = vis.size
    # Make boxes readable even on very large images.
    thickness = max(2, round(min(w, h) / 250))
    font_size = max(12, round(min(w, h) / 60))
    try:
        font = ImageFont.truetype("DejaVuSans.ttf", font_size)
    except OSError:  # pragma: no cover
        font = ImageFont.load_default()
    for i, det in enumerate(detections):
        color = HOVER_COLOR if i == highlight else COLOR_BY_TIER[det.tier]
        x1, y1, x2, y2 = (round(v) for v in to_pixels(normalize_box(det.box), w, h))
        dr.rectangle([x1, y1, x2, y2], width=thickness, outline=color)
        txt = f"{det.label} | {det.confidence_text()}"
        tx, ty = x1 + thickness, max(0, y1 - font_size - 2 * thickness)
        bbox = dr.textbbox((tx, ty), txt, font=font)
        dr.rectangle(bbox, fill=color)
        dr.text((tx, ty), txt, fill=(0, 0, 0) if i == highlight else (255, 255, 255), font=font)
    if out_path is not None:
        vis.save(out_path)
    return vis
