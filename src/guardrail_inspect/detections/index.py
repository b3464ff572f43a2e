"""Per-image grouping of a raw detection batch."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterator, Mapping, Sequence
from typing import Any

from guardrail_inspect.vision.types import Detection

from .records import DroppedDetection, ParsedDetection, parse_detection

LOG = logging.getLogger(__name__)


class DetectionGroup(Mapping[int, tuple[Detection, ...]]):
    """Read-only mapping from image position to that image's detections.

    Keys are dense over ``[0, image_count)``: clean images map to an empty
    tuple. Detections keep their batch order within each image.
    """

    def __init__(
        self,
        groups: dict[int, tuple[Detection, ...]],
        dropped: Sequence[DroppedDetection] = (),
    ) -> None:
        self._groups = dict(groups)
        self.dropped: tuple[DroppedDetection, ...] = tuple(dropped)

    def __getitem__(self, image_index: int) -> tuple[Detection, ...]:
        return self._groups[image_index]

    def __iter__(self) -> Iterator[int]:
        return iter(self._groups)

    def __len__(self) -> int:
        return len(self._groups)

    def __repr__(self) -> str:
        return f"DetectionGroup({self._groups!r}, dropped={len(self.dropped)})"

    @property
    def image_count(self) -> int:
        return len(self._groups)

    @property
    def total(self) -> int:
        """Number of accepted detections across all images."""
        return sum(len(v) for v in self._groups.values())

    def detections_for(self, image_index: int) -> tuple[Detection, ...]:
        """Return detections for an image, or ``()`` for unknown positions."""
        return self._groups.get(image_index, ())

    def counts(self) -> dict[int, int]:
        return {i: len(v) for i, v in self._groups.items()}

    def is_clean(self, image_index: int) -> bool:
        return not self.detections_for(image_index)


class DetectionIndex:
    """Builds :class:`DetectionGroup` views from untrusted detection batches."""

    @staticmethod
    def build(raw_detections: Any, image_count: int) -> DetectionGroup:
        """Group a raw batch by image position.

        Malformed or misattributed records are dropped one by one; nothing in
        the batch content can make this raise.

        Raises:
            ValueError: If ``image_count`` is negative.
        """
        if image_count < 0:
            raise ValueError(f"image_count must be >= 0, got {image_count}")

        buckets: dict[int, list[Detection]] = {i: [] for i in range(image_count)}
        dropped: list[DroppedDetection] = []

        if raw_detections is None:
            records: Sequence[Any] = ()
        elif isinstance(raw_detections, (str, bytes, Mapping)) or not isinstance(
            raw_detections, Sequence
        ):
            LOG.warning(
                "Detection batch is not a sequence (%s); treating as empty",
                type(raw_detections).__name__,
            )
            records = ()
        else:
            records = raw_detections

        for pos, raw in enumerate(records):
            outcome = parse_detection(raw, image_count, position=pos)
            if isinstance(outcome, ParsedDetection):
                det = outcome.detection
                buckets[det.image_index].append(det)
            else:
                LOG.debug(
                    "Dropped detection #%s: %s %s",
                    outcome.position,
                    outcome.reason.value,
                    outcome.detail,
                )
                dropped.append(outcome)

        group = DetectionGroup({i: tuple(v) for i, v in buckets.items()}, dropped)
        if dropped:
            LOG.info(
                "Detection batch: accepted=%s dropped=%s (%s)",
                group.total,
                len(dropped),
                dict(Counter(d.reason.value for d in dropped)),
            )
        else:
            LOG.info("Detection batch: accepted=%s dropped=0", group.total)
        return group
