"""Inspection session: images, prompts, one model run at a time, results."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from time import perf_counter
from typing import Any

from PIL import Image

from guardrail_inspect.detections.index import DetectionGroup, DetectionIndex
from guardrail_inspect.detections.response import format_response, parse_detection_batch
from guardrail_inspect.detectors.vlm_litellm import (
    GenerationConfig,
    ThinkingLevel,
    analyze_images,
    build_request,
    redact_request,
)
from guardrail_inspect.prompts.defaults import PromptSet
from guardrail_inspect.selection.state import SelectionState
from guardrail_inspect.vision.image import InspectionImage, load_images
from guardrail_inspect.vision.types import Detection

LOG = logging.getLogger(__name__)

Analyzer = Callable[[list[Image.Image], str, GenerationConfig], str]


class RunStatus(str, Enum):
    IDLE = "IDLE"
    LOADING = "LOADING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class RunInProgressError(RuntimeError):
    """Raised when the session is asked to change while a run is pending."""


@dataclass
class InspectionConfig:
    """Configuration for an inspection session."""

    vlm_model: str
    thinking_level: ThinkingLevel = "LOW"
    temperature: float = 1.0
    max_tokens: int = 16000
    timeout_s: float = 300.0
    prompt_store: Path | None = None
    verbose: bool = False

    def generation(self) -> GenerationConfig:
        return GenerationConfig(
            model=self.vlm_model,
            thinking_level=self.thinking_level,
            temperature=float(self.temperature),
            max_tokens=int(self.max_tokens),
            timeout_s=float(self.timeout_s),
        )


@dataclass(frozen=True)
class RunTicket:
    """Identity of one dispatched request."""

    run_id: int
    image_count: int
    prompt: str


@dataclass(frozen=True)
class InspectionResult:
    """Outcome of a completed run.

    ``batch`` is None when the response was not structured; the raw text is
    then the only thing to show.
    """

    run_id: int
    response_text: str
    batch: list[Any] | None
    group: DetectionGroup | None

    @property
    def view_mode(self) -> str:
        return "visual" if self.group is not None else "raw"

    def formatted_text(self) -> str:
        return format_response(self.response_text, self.batch)


@dataclass
class InspectionSession:
    """Holds the mutable state of an operator session.

    Only one run may be pending. Responses carry the ticket of the run that
    produced them, and anything but the latest ticket is discarded.
    """

    prompts: PromptSet
    config: InspectionConfig
    analyzer: Analyzer = analyze_images
    images: list[InspectionImage] = field(default_factory=list)
    selection: SelectionState = field(default_factory=SelectionState)
    status: RunStatus = RunStatus.IDLE
    error: str | None = None
    result: InspectionResult | None = None
    debug_request: dict[str, Any] | None = None
    _run_id: int = field(default=0, init=False, repr=False)

    # ------------------------------------------------------------------
    # Image list
    # ------------------------------------------------------------------

    def _check_idle(self) -> None:
        if self.status is RunStatus.LOADING:
            raise RunInProgressError("An inspection run is already in progress")

    def add_images(self, paths: list[Path]) -> None:
        self._check_idle()
        self.images.extend(load_images(paths))
        self.selection.reconcile(len(self.images))

    def remove_image(self, index: int) -> None:
        self._check_idle()
        del self.images[index]
        self.selection.reconcile(len(self.images))

    def clear_images(self) -> None:
        self._check_idle()
        self.images.clear()
        self.selection.reconcile(0)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def begin_run(self) -> RunTicket:
        """Commit all prompt sections and mark a new run as pending.

        Raises:
            RunInProgressError: If a previous run has not finished.
            ValueError: If there are no images or the prompt is empty.
        """
        self._check_idle()
        if not self.images:
            raise ValueError("No images to inspect.")
        prompt = self.prompts.compose()
        if not prompt.strip():
            raise ValueError("Prompt is empty.")

        # History must reflect exactly the inputs of this run.
        self.prompts.commit_all()

        self._run_id += 1
        ticket = RunTicket(run_id=self._run_id, image_count=len(self.images), prompt=prompt)
        self.debug_request = redact_request(
            build_request([im.image for im in self.images], prompt, self.config.generation())
        )
        self.status = RunStatus.LOADING
        self.error = None
        LOG.info("Run %s dispatched: images=%s", ticket.run_id, ticket.image_count)
        return ticket

    def _is_current(self, ticket: RunTicket) -> bool:
        if ticket.run_id != self._run_id:
            LOG.info("Discarding response of superseded run %s", ticket.run_id)
            return False
        return True

    def complete_run(self, ticket: RunTicket, response_text: str) -> bool:
        """Apply a model response. Returns False if the ticket is stale."""
        if not self._is_current(ticket):
            return False
        batch = parse_detection_batch(response_text)
        group = None if batch is None else DetectionIndex.build(batch, ticket.image_count)
        self.result = InspectionResult(
            run_id=ticket.run_id,
            response_text=response_text,
            batch=batch,
            group=group,
        )
        self.status = RunStatus.SUCCESS
        self.selection.clear_hover()
        return True

    def fail_run(self, ticket: RunTicket, message: str) -> bool:
        """Mark the run failed; previous results stay in place."""
        if not self._is_current(ticket):
            return False
        self.error = message or "Something went wrong."
        self.status = RunStatus.ERROR
        return True

    def run(self) -> RunStatus:
        """Run one inspection synchronously with the configured analyzer."""
        if self.config.verbose:
            logging.basicConfig(
                level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s"
            )
        ticket = self.begin_run()
        t0 = perf_counter()
        try:
            text = self.analyzer(
                [im.image for im in self.images], ticket.prompt, self.config.generation()
            )
        except Exception as e:
            LOG.exception("Run %s failed", ticket.run_id)
            self.fail_run(ticket, str(e))
        else:
            self.complete_run(ticket, text)
            LOG.info("Run %s finished in %.2fs", ticket.run_id, perf_counter() - t0)
        return self.status

    # ------------------------------------------------------------------
    # Read-side helpers
    # ------------------------------------------------------------------

    def current_index(self) -> int | None:
        return self.selection.resolve(len(self.images))

    def current_image(self) -> InspectionImage | None:
        idx = self.current_index()
        return None if idx is None else self.images[idx]

    def current_detections(self) -> tuple[Detection, ...]:
        if self.result is None or self.result.group is None:
            return ()
        return self.selection.current_detections(self.result.group, len(self.images))
