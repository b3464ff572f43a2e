"""Vision-language model inspection requests via LiteLLM."""

import logging
from copy import deepcopy
from dataclasses import dataclass
from typing import Any, Literal, cast

import litellm
from PIL import Image
from pydantic import BaseModel, ConfigDict, Field

from guardrail_inspect.vision.image import img_to_data_url

LOG = logging.getLogger(__name__)

ThinkingLevel = Literal["LOW", "HIGH"]

IMAGE_PLACEHOLDER = "[BASE64_IMAGE_DATA_OMITTED]"

_REASONING_EFFORT: dict[str, str] = {"LOW": "low", "HIGH": "high"}


@dataclass
class GenerationConfig:
    """Model settings for one inspection request."""

    model: str
    thinking_level: ThinkingLevel = "LOW"
    temperature: float = 1.0
    max_tokens: int = 16000
    timeout_s: float = 300.0

    def __post_init__(self) -> None:
        if self.thinking_level not in _REASONING_EFFORT:
            raise ValueError(
                f"Unsupported thinking_level: {self.thinking_level!r}. "
                f"Allowed: {sorted(_REASONING_EFFORT)}"
            )


class _DetectionOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    label: Literal["DEFORMATION & DENTS", "MISSING OR LOOSE BOLTS", "HOLES"]
    confidence: float = Field(
        description=(
            "Confidence score between 0.0 (low certainty) and 1.0 (high certainty) "
            "that the defect exists."
        )
    )
    description: str
    imageIndex: int = Field(description="0-based position of the image in the request.")
    box_2d: list[float] = Field(
        description="Bounding box as [ymin, xmin, ymax, xmax] on a 1000x1000 scale."
    )


class _InspectionOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: list[_DetectionOut]


def _inline_refs(node: Any, defs: dict[str, Any]) -> Any:
    """Replace pydantic `#/$defs/...` references with the definitions they name.

    Strict `json_schema` output formats reject some `$ref` layouts, so the
    schema sent to the model is flat.
    """
    if isinstance(node, list):
        return [_inline_refs(v, defs) for v in node]
    if not isinstance(node, dict):
        return node
    ref = node.get("$ref")
    if isinstance(ref, str):
        name = ref.removeprefix("#/$defs/")
        if name not in defs:
            raise ValueError(f"Unresolvable $ref: {ref}")
        return _inline_refs(deepcopy(defs[name]), defs)
    return {k: _inline_refs(v, defs) for k, v in node.items() if k != "$defs"}


def _detection_schema() -> dict[str, Any]:
    schema = _InspectionOut.model_json_schema()
    return cast(dict[str, Any], _inline_refs(schema, schema.get("$defs", {})))


DETECTION_JSON_SCHEMA: dict[str, Any] = _detection_schema()
_TEXT_FORMAT: dict[str, Any] = {
    "format": {
        "type": "json_schema",
        "name": "guardrail_inspection",
        "strict": True,
        "schema": DETECTION_JSON_SCHEMA,
    }
}


def _output_text(resp: Any) -> tuple[str, str]:
    """Return ``(text, status)`` from a Responses API payload.

    Prefers the aggregated `output_text`; otherwise joins the text parts of
    the assistant message items.
    """
    if isinstance(resp, BaseModel):
        resp = resp.model_dump()
    if not isinstance(resp, dict):
        raise TypeError(f"Unsupported response type: {type(resp)!r}")
    status = str(resp.get("status") or "")
    text = resp.get("output_text")
    if isinstance(text, str) and text.strip():
        return text.strip(), status
    parts = [
        part["text"]
        for item in resp.get("output") or []
        if isinstance(item, dict) and item.get("type") == "message"
        for part in item.get("content") or []
        if isinstance(part, dict) and isinstance(part.get("text"), str)
    ]
    return "\n".join(parts).strip(), status


def build_request(
    images: list[Image.Image], prompt: str, config: GenerationConfig
) -> dict[str, Any]:
    """Build `litellm.responses` keyword arguments: all images, then the prompt."""
    content: list[dict[str, Any]] = [
        {"type": "input_image", "image_url": img_to_data_url(img), "detail": "high"}
        for img in images
    ]
    content.append({"type": "input_text", "text": prompt})
    return {
        "model": config.model,
        "input": [{"role": "user", "content": content}],
        "temperature": config.temperature,
        "max_output_tokens": config.max_tokens,
        "reasoning": {"effort": _REASONING_EFFORT[config.thinking_level]},
        "text": _TEXT_FORMAT,
        "timeout": config.timeout_s,
    }


def redact_request(request: dict[str, Any]) -> dict[str, Any]:
    """Copy of a request with image payloads replaced, for the debug view."""
    out = deepcopy(request)
    for msg in out.get("input", []):
        for part in msg.get("content", []):
            if part.get("type") == "input_image":
                part["image_url"] = IMAGE_PLACEHOLDER
    return out


def analyze_images(images: list[Image.Image], prompt: str, config: GenerationConfig) -> str:
    """Send an inspection request and return the raw response text.

    Raises:
        RuntimeError: If the model returns no content.
    """
    LOG.info(
        "Requesting inspection via LiteLLM: model=%s images=%s thinking=%s",
        config.model,
        len(images),
        config.thinking_level,
    )
    resp = litellm.responses(**build_request(images, prompt, config))  # type: ignore
    text, status = _output_text(resp)
    LOG.info("Inspection response received: status=%s chars=%s", status, len(text))
    if not text:
        raise RuntimeError(
            f"Model returned empty content. status={status!r}, "
            f"max_tokens={config.max_tokens}"
        )
    return text
