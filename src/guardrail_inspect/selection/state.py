"""Selected-image and hovered-detection state for the results view.

The image list and the selected index are updated by different triggers
(an image deletion, a thumbnail click) and may be observed before they agree.
Readers therefore never use ``selected_index`` directly: they call
:meth:`SelectionState.resolve` with the live image count, which clamps
without mutating. :meth:`SelectionState.reconcile` is the separate settle
step that brings the stored index back in range once the new count has been
acknowledged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from guardrail_inspect.detections.index import DetectionGroup
from guardrail_inspect.vision.types import Detection

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class HoverKey:
    """Composite id of a detection: image position + position within that image."""

    image_index: int
    detection_index: int

    def __str__(self) -> str:
        return f"{self.image_index}-{self.detection_index}"


@dataclass
class SelectionState:
    """Mutable selection cursor."""

    selected_index: int = 0
    hovered: HoverKey | None = None

    def select(self, index: int) -> None:
        """Store a new selection as given; range is enforced at read time."""
        self.selected_index = index

    def resolve(self, image_count: int) -> int | None:
        """Return a safe image index for the current render, or ``None``.

        ``None`` means there is nothing to show (no images). A stale or
        negative stored index resolves to ``0``. Does not mutate state.
        """
        if image_count <= 0:
            return None
        if not 0 <= self.selected_index < image_count:
            return 0
        return self.selected_index

    def reconcile(self, image_count: int) -> bool:
        """Settle the stored index after the image count changed.

        Returns:
            True if the stored index was out of range and got reset to 0.
        """
        if 0 <= self.selected_index < image_count:
            return False
        if self.selected_index == 0:
            # Empty image list; 0 is already the reset value.
            return False
        LOG.debug(
            "Selection %s out of range for %s images; resetting to 0",
            self.selected_index,
            image_count,
        )
        self.selected_index = 0
        return True

    def hover(self, key: HoverKey) -> None:
        self.hovered = key

    def clear_hover(self) -> None:
        self.hovered = None

    def is_hovered(self, image_index: int, detection_index: int) -> bool:
        return self.hovered == HoverKey(image_index, detection_index)

    def current_detections(
        self, group: DetectionGroup, image_count: int
    ) -> tuple[Detection, ...]:
        """Detections of the resolved image, or ``()`` if nothing is selectable."""
        idx = self.resolve(image_count)
        if idx is None:
            return ()
        return group.detections_for(idx)

    def hovered_detection(self, group: DetectionGroup, image_count: int) -> Detection | None:
        """Return the hovered detection if it is still visible, else ``None``.

        A hover key left over from another image, or pointing past the end of
        the current image's detections, is inert.
        """
        if self.hovered is None:
            return None
        if self.hovered.image_index != self.resolve(image_count):
            return None
        dets = group.detections_for(self.hovered.image_index)
        if not 0 <= self.hovered.detection_index < len(dets):
            return None
        return dets[self.hovered.detection_index]
