from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from PIL import Image

from guardrail_inspect.detectors.vlm_litellm import IMAGE_PLACEHOLDER, GenerationConfig
from guardrail_inspect.pipelines.inspection import (
    InspectionConfig,
    InspectionSession,
    RunInProgressError,
    RunStatus,
)
from guardrail_inspect.prompts.defaults import PromptSet
from guardrail_inspect.prompts.store import MemoryStore


def _write_images(tmp_path: Path, n: int) -> list[Path]:
    paths = []
    for i in range(n):
        p = tmp_path / f"rail_{i}.png"
        Image.new("RGB", (64, 48), color=(10 * i, 0, 0)).save(p)
        paths.append(p)
    return paths


def _batch() -> list[dict[str, Any]]:
    return [
        {
            "label": "HOLES",
            "confidence": 0.9,
            "description": "x",
            "imageIndex": "1",
            "box_2d": [10, 10, 50, 50],
        },
        {
            "label": "HOLES",
            "confidence": 0.9,
            "description": "y",
            "imageIndex": 7,
            "box_2d": [10, 10, 50, 50],
        },
    ]


class _FakeAnalyzer:
    def __init__(self, text: str = "", exc: Exception | None = None):
        self.text = text
        self.exc = exc
        self.calls: list[tuple[int, str, GenerationConfig]] = []

    def __call__(self, images: list[Image.Image], prompt: str, config: GenerationConfig) -> str:
        self.calls.append((len(images), prompt, config))
        if self.exc is not None:
            raise self.exc
        return self.text


def _session(analyzer: _FakeAnalyzer, store: MemoryStore | None = None) -> InspectionSession:
    return InspectionSession(
        prompts=PromptSet(store if store is not None else MemoryStore()),
        config=InspectionConfig(vlm_model="gemini/fake", thinking_level="HIGH"),
        analyzer=analyzer,
    )


def test_run_groups_detections_by_image(tmp_path: Path) -> None:
    analyzer = _FakeAnalyzer(json.dumps(_batch()))
    session = _session(analyzer)
    session.add_images(_write_images(tmp_path, 3))

    assert session.run() is RunStatus.SUCCESS
    result = session.result
    assert result is not None
    assert result.view_mode == "visual"
    assert result.group is not None
    assert result.group.counts() == {0: 0, 1: 1, 2: 0}
    assert len(result.group.dropped) == 1

    n_images, prompt, cfg = analyzer.calls[0]
    assert n_images == 3
    assert prompt.startswith("## ROLE & OBJECTIVE")
    assert cfg.thinking_level == "HIGH"

    assert session.current_index() == 0
    assert session.current_detections() == ()
    session.selection.select(1)
    assert [d.description for d in session.current_detections()] == ["x"]


def test_prompts_are_committed_before_dispatch(tmp_path: Path) -> None:
    store = MemoryStore()
    seen: list[str | None] = []

    def analyzer(images: list[Image.Image], prompt: str, config: GenerationConfig) -> str:
        seen.append(store.get("inspector_criteria_history"))
        return "[]"

    session = InspectionSession(
        prompts=PromptSet(store),
        config=InspectionConfig(vlm_model="gemini/fake"),
        analyzer=analyzer,
    )
    session.prompts["inspector_criteria"].set_value("look for holes")
    session.add_images(_write_images(tmp_path, 1))
    session.run()
    assert seen[0] is not None
    assert json.loads(seen[0]) == ["look for holes"]


def test_unstructured_response_falls_back_to_raw(tmp_path: Path) -> None:
    session = _session(_FakeAnalyzer("The rail looks fine."))
    session.add_images(_write_images(tmp_path, 1))
    assert session.run() is RunStatus.SUCCESS
    assert session.result is not None
    assert session.result.group is None
    assert session.result.view_mode == "raw"
    assert session.result.formatted_text() == "The rail looks fine."
    assert session.current_detections() == ()


def test_failed_run_keeps_previous_results(tmp_path: Path) -> None:
    analyzer = _FakeAnalyzer(json.dumps(_batch()))
    session = _session(analyzer)
    session.add_images(_write_images(tmp_path, 2))
    session.run()
    previous = session.result

    analyzer.exc = RuntimeError("quota exceeded")
    assert session.run() is RunStatus.ERROR
    assert session.error == "quota exceeded"
    assert session.result is previous


def test_only_one_run_in_flight(tmp_path: Path) -> None:
    session = _session(_FakeAnalyzer("[]"))
    session.add_images(_write_images(tmp_path, 2))
    ticket = session.begin_run()
    assert session.status is RunStatus.LOADING
    with pytest.raises(RunInProgressError):
        session.begin_run()
    with pytest.raises(RunInProgressError):
        session.remove_image(0)
    assert session.complete_run(ticket, "[]") is True
    assert session.status is RunStatus.SUCCESS


def test_superseded_response_is_discarded(tmp_path: Path) -> None:
    session = _session(_FakeAnalyzer())
    session.add_images(_write_images(tmp_path, 2))
    first = session.begin_run()
    session.fail_run(first, "timed out")
    second = session.begin_run()

    assert session.complete_run(first, json.dumps(_batch())) is False
    assert session.status is RunStatus.LOADING
    assert session.result is None
    assert session.fail_run(first, "late failure") is False

    assert session.complete_run(second, "[]") is True
    assert session.result is not None
    assert session.result.run_id == second.run_id
    # Applying the same response again is harmless.
    assert session.complete_run(second, "[]") is True


def test_begin_run_requires_images() -> None:
    session = _session(_FakeAnalyzer("[]"))
    with pytest.raises(ValueError):
        session.begin_run()
    assert session.status is RunStatus.IDLE


def test_debug_request_omits_image_data(tmp_path: Path) -> None:
    session = _session(_FakeAnalyzer("[]"))
    session.add_images(_write_images(tmp_path, 2))
    session.run()
    assert session.debug_request is not None
    parts = session.debug_request["input"][0]["content"]
    assert [p["image_url"] for p in parts if p["type"] == "input_image"] == [
        IMAGE_PLACEHOLDER,
        IMAGE_PLACEHOLDER,
    ]


def test_removing_selected_image_settles_selection(tmp_path: Path) -> None:
    session = _session(_FakeAnalyzer("[]"))
    session.add_images(_write_images(tmp_path, 3))
    session.selection.select(2)
    session.remove_image(2)
    assert session.selection.selected_index == 0
    assert session.current_image() is session.images[0]

    session.clear_images()
    assert session.current_index() is None
    assert session.current_image() is None
