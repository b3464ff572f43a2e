from __future__ import annotations

import logging
from typing import Any

import pytest

from guardrail_inspect.detections.index import DetectionIndex
from guardrail_inspect.detections.records import (
    DroppedDetection,
    DropReason,
    ParsedDetection,
    coerce_image_index,
    parse_detection,
)
from guardrail_inspect.vision.types import ConfidenceTier


def _rec(image_index: Any, **kw: Any) -> dict[str, Any]:
    rec: dict[str, Any] = {
        "label": "HOLES",
        "confidence": 0.9,
        "description": "x",
        "imageIndex": image_index,
        "box_2d": [10, 10, 50, 50],
    }
    rec.update(kw)
    return rec


def test_end_to_end_string_index_and_out_of_range() -> None:
    batch = [_rec("1"), _rec(7)]
    group = DetectionIndex.build(batch, 3)
    assert set(group) == {0, 1, 2}
    assert group[0] == ()
    assert group[2] == ()
    assert len(group[1]) == 1
    det = group[1][0]
    assert det.image_index == 1
    assert det.box == (10.0, 10.0, 50.0, 50.0)
    assert det.label == "HOLES"
    assert [d.reason for d in group.dropped] == [DropReason.IMAGE_INDEX_OUT_OF_RANGE]
    assert group.dropped[0].position == 1


@pytest.mark.parametrize("image_count", [0, 1, 4])
def test_keys_are_dense_over_image_range(image_count: int) -> None:
    batch = [_rec(i) for i in (-1, 0, 1, 2, 3, 4, "abc", None, "2.5", 1.5)]
    group = DetectionIndex.build(batch, image_count)
    assert sorted(group) == list(range(image_count))
    assert group.image_count == image_count
    for idx, dets in group.items():
        assert all(d.image_index == idx for d in dets)
    assert all(0 <= d.image_index < image_count for dets in group.values() for d in dets)


def test_order_within_image_is_input_order() -> None:
    batch = [
        _rec(0, confidence=0.2, description="first"),
        _rec(1, description="other"),
        _rec("0", confidence=0.99, description="second"),
        _rec(0.0, confidence=0.5, description="third"),
    ]
    group = DetectionIndex.build(batch, 2)
    assert [d.description for d in group[0]] == ["first", "second", "third"]
    assert group.counts() == {0: 3, 1: 1}
    assert group.total == 4
    assert not group.is_clean(0)


def test_build_is_deterministic() -> None:
    batch = [_rec(i % 3, description=str(i)) for i in range(10)] + [_rec("bad")]
    assert DetectionIndex.build(batch, 3) == DetectionIndex.build(batch, 3)


def test_malformed_records_are_dropped_with_reason() -> None:
    batch: list[Any] = [
        "not a dict",
        _rec(0, box_2d=[1, 2, 3]),
        _rec(0, box_2d=["a", 0, 1, 1]),
        _rec(True),
        {"label": "HOLES", "confidence": 0.5, "box_2d": [0, 0, 1, 1]},
        _rec(0),
    ]
    group = DetectionIndex.build(batch, 1)
    assert len(group[0]) == 1
    assert [d.reason for d in group.dropped] == [
        DropReason.NOT_A_RECORD,
        DropReason.BAD_BOX,
        DropReason.BAD_BOX,
        DropReason.BAD_IMAGE_INDEX,
        DropReason.BAD_IMAGE_INDEX,
    ]


def test_huge_box_coordinate_drops_only_that_record() -> None:
    group = DetectionIndex.build([_rec(0, box_2d=[10**400, 0, 0, 0]), _rec(0)], 1)
    assert len(group[0]) == 1
    assert [(d.position, d.reason) for d in group.dropped] == [(0, DropReason.BAD_BOX)]


@pytest.mark.parametrize("confidence", ["high", None, True, 10**400, float("nan")])
def test_unusable_confidence_keeps_record_at_zero(confidence: Any) -> None:
    group = DetectionIndex.build([_rec(0, confidence=confidence), _rec(0)], 1)
    assert group.dropped == ()
    det = group[0][0]
    assert det.confidence == 0.0
    assert det.tier is ConfidenceTier.LOW
    assert det.confidence_text() == "0%"


def test_missing_confidence_defaults_to_zero() -> None:
    rec = _rec(0)
    del rec["confidence"]
    result = parse_detection(rec, 1)
    assert isinstance(result, ParsedDetection)
    assert result.detection.confidence == 0.0


def test_label_and_confidence_are_passed_through() -> None:
    batch = [_rec(0, label="RUST", confidence=1.7, description=None, box=[0, 0, 1, 1])]
    del batch[0]["box_2d"]
    group = DetectionIndex.build(batch, 1)
    det = group[0][0]
    assert det.label == "RUST"
    assert det.confidence == 1.7
    assert det.description == ""
    assert det.box == (0.0, 0.0, 1.0, 1.0)


@pytest.mark.parametrize("batch", [None, {"items": []}, "[]", 42])
def test_non_sequence_batch_yields_empty_group(batch: Any) -> None:
    group = DetectionIndex.build(batch, 2)
    assert dict(group) == {0: (), 1: ()}
    assert group.is_clean(1)


def test_negative_image_count_is_rejected() -> None:
    with pytest.raises(ValueError):
        DetectionIndex.build([], -1)


def test_detections_for_unknown_image_is_empty() -> None:
    group = DetectionIndex.build([_rec(0)], 1)
    assert group.detections_for(5) == ()
    with pytest.raises(KeyError):
        group[5]


def test_drops_are_logged_at_debug(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.DEBUG, logger="guardrail_inspect.detections.index"):
        DetectionIndex.build([_rec(9)], 1)
    assert any("image_index_out_of_range" in r.getMessage() for r in caplog.records)


def test_coerce_image_index() -> None:
    assert coerce_image_index(3) == 3
    assert coerce_image_index(" 2 ") == 2
    assert coerce_image_index("-1") == -1
    assert coerce_image_index(4.0) == 4
    for bad in ("1.5", "one", "", 2.5, None, False, [1]):
        with pytest.raises(ValueError):
            coerce_image_index(bad)


def test_parse_detection_outcomes() -> None:
    ok = parse_detection(_rec("0"), 1)
    assert isinstance(ok, ParsedDetection)
    assert ok.detection.image_index == 0

    out = parse_detection(_rec(1), 1, position=3)
    assert isinstance(out, DroppedDetection)
    assert out.position == 3
    assert out.reason is DropReason.IMAGE_INDEX_OUT_OF_RANGE
