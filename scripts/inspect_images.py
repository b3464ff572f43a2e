#!/usr/bin/env python3
"""Batch runner for guardrail defect inspection.

Zero-config for the common case:
- Scans JPG/JPEG/PNG images under `assets/images/` and sends them as one request.
- Uses the persisted prompt sections (edited versions survive between runs).
- Writes under `outputs/inspection/`:
  - `response.txt`: raw model response
  - `debug_request.json`: the request with image data omitted
  - `<image_stem>.overlay.jpg`: detections drawn on each image
  - `summary.yaml`: detections per image, plus dropped records

Tuning via environment variables:
- `VLM_MODEL` (default: "gemini/gemini-3-pro-preview"; must include provider prefix for LiteLLM)
- `VLM_THINKING` (LOW or HIGH, default: LOW)
- `VLM_TEMPERATURE` (default: 1.0)
- `VLM_MAX_TOKENS` (default: 16000)
- `PROMPT_STORE` (default: "~/.config/guardrail_inspect/prompts.json")
"""

import argparse
import json
import os
import sys
from pathlib import Path
from typing import cast

import yaml

from guardrail_inspect.detectors.vlm_litellm import ThinkingLevel
from guardrail_inspect.pipelines.inspection import InspectionConfig, InspectionSession, RunStatus
from guardrail_inspect.prompts.defaults import PromptSet
from guardrail_inspect.prompts.store import JsonFileStore
from guardrail_inspect.vision.geometry import normalize_box
from guardrail_inspect.vision.vis import draw_detections

DEFAULT_PROMPT_STORE = "~/.config/guardrail_inspect/prompts.json"


def _iter_images(images_dir: Path) -> list[Path]:
    exts = {".jpg", ".jpeg", ".png"}
    return sorted(p for p in images_dir.iterdir() if p.is_file() and p.suffix.lower() in exts)


def _yaml_dump(data: object) -> str:
    dumped = yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    if dumped is None:
        return ""
    if isinstance(dumped, bytes):
        return dumped.decode("utf-8")
    return dumped


def _config_from_env(verbose: bool) -> InspectionConfig:
    vlm_model = os.environ.get("VLM_MODEL", "gemini/gemini-3-pro-preview")
    if "/" not in vlm_model:
        raise SystemExit(
            "LiteLLM requires a provider-prefixed model name.\n"
            f"Got VLM_MODEL={vlm_model!r}.\n"
            "Examples:\n"
            "  export VLM_MODEL='gemini/gemini-3-pro-preview'\n"
            "  export GEMINI_API_KEY='...'\n"
        )
    thinking = os.environ.get("VLM_THINKING", "LOW").strip().upper()
    if thinking not in {"LOW", "HIGH"}:
        raise SystemExit(f"Invalid VLM_THINKING={thinking!r}; expected LOW or HIGH.")
    return InspectionConfig(
        vlm_model=vlm_model,
        thinking_level=cast(ThinkingLevel, thinking),
        temperature=float(os.environ.get("VLM_TEMPERATURE", "1.0")),
        max_tokens=int(os.environ.get("VLM_MAX_TOKENS", "16000")),
        prompt_store=Path(
            os.environ.get("PROMPT_STORE", DEFAULT_PROMPT_STORE)
        ).expanduser(),
        verbose=verbose,
    )


def main(argv: list[str]) -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--images_dir", type=str, default="assets/images")
    ap.add_argument("--out_dir", type=str, default="outputs/inspection")
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args(argv)

    images_dir = Path(args.images_dir).expanduser().resolve()
    if not images_dir.is_dir():
        raise SystemExit(f"--images_dir is not a directory: {images_dir}")
    image_paths = _iter_images(images_dir)
    if not image_paths:
        raise SystemExit(f"No images found under: {images_dir}")

    out_dir = Path(args.out_dir).expanduser().resolve()
    out_dir.mkdir(parents=True, exist_ok=True)

    cfg = _config_from_env(bool(args.verbose))
    store = JsonFileStore(cfg.prompt_store or Path(DEFAULT_PROMPT_STORE).expanduser())
    session = InspectionSession(prompts=PromptSet(store), config=cfg)
    session.add_images(image_paths)

    print(f"Inspecting {len(image_paths)} images with {cfg.vlm_model}")
    status = session.run()
    (out_dir / "debug_request.json").write_text(
        json.dumps(session.debug_request, indent=2), encoding="utf-8"
    )
    if status is not RunStatus.SUCCESS or session.result is None:
        print(f"[ERROR] {session.error}", file=sys.stderr)
        return 1

    result = session.result
    (out_dir / "response.txt").write_text(result.formatted_text(), encoding="utf-8")
    if result.group is None:
        print("Response is not structured; see response.txt", file=sys.stderr)
        return 1

    images: list[dict[str, object]] = []
    for idx, im in enumerate(session.images):
        dets = result.group.detections_for(idx)
        draw_detections(im.image, dets, out_dir / f"{im.path.stem}.overlay.jpg")
        images.append(
            {
                "image": str(im.path),
                "image_index": idx,
                "status": "OK" if not dets else f"{len(dets)} defects",
                "detections": [
                    {
                        "label": d.label,
                        "confidence": d.confidence,
                        "tier": d.tier.value,
                        "description": d.description,
                        "box_2d": list(d.box),
                        "overlay": normalize_box(d.box).as_percent(),
                    }
                    for d in dets
                ],
            }
        )

    (out_dir / "summary.yaml").write_text(
        _yaml_dump(
            {
                "model": cfg.vlm_model,
                "images": images,
                "dropped": [
                    {"position": d.position, "reason": d.reason.value, "detail": d.detail}
                    for d in result.group.dropped
                ],
            }
        ),
        encoding="utf-8",
    )
    print(f"Found {result.group.total} defects; outputs in {out_dir}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
