"""Image I/O and encoding for inspection requests."""

from __future__ import annotations

import base64
import io
from dataclasses import dataclass
from pathlib import Path

from PIL import Image


@dataclass(frozen=True)
class InspectionImage:
    """A decoded image plus where it came from."""

    path: Path
    image: Image.Image

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size


def read_image(path: Path) -> Image.Image:
    """Read an image from disk and convert it to RGB."""
    return Image.open(path).convert("RGB")


def load_images(paths: list[Path]) -> list[InspectionImage]:
    """Decode images in order; the list position is the model's imageIndex."""
    return [InspectionImage(path=p, image=read_image(p)) for p in paths]


def img_to_jpeg_bytes(img: Image.Image, quality: int = 90) -> bytes:
    """Encode an image as JPEG bytes."""
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def img_to_b64_jpeg(img: Image.Image, quality: int = 90) -> str:
    """Encode an image as base64 JPEG."""
    return base64.b64encode(img_to_jpeg_bytes(img, quality=quality)).decode("ascii")


def img_to_data_url(img: Image.Image, quality: int = 90) -> str:
    return f"data:image/jpeg;base64,{img_to_b64_jpeg(img, quality=quality)}"
