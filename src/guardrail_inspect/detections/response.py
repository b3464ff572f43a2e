"""Turn raw model response text into a detection batch (or give up)."""

from __future__ import annotations

import json
import logging
from typing import Any

LOG = logging.getLogger(__name__)

_OPENERS = {"[": "]", "{": "}"}


def _loads_or_none(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:  # JSONDecodeError or the int digit limit
        return None


def extract_json(text: str) -> str:
    """Extract a JSON array or object from a possibly noisy model response."""
    if not text:
        return text
    # Common case: fenced JSON block
    if "```" in text:
        # Odd parts sit inside fences; their first line is the language tag.
        for fenced in text.split("```")[1::2]:
            lang, _, rest = fenced.partition("\n")
            lang = lang.strip().lower()
            if lang in {"json", "application/json", ""}:
                body = rest.strip()
            elif lang[:1] in _OPENERS:
                body = fenced.strip()
            else:
                continue
            if body[:1] in _OPENERS and body.endswith(_OPENERS[body[:1]]):
                return body
    if _loads_or_none(text) is not None:
        return text
    for opener, closer in _OPENERS.items():
        i = text.find(opener)
        j = text.rfind(closer)
        if i != -1 and j > i:
            cand = text[i : j + 1]
            if _loads_or_none(cand) is not None:
                return cand
    return text


def parse_detection_batch(text: str) -> list[Any] | None:
    """Deserialize a model response into a raw detection batch.

    Accepts a bare JSON array or an object wrapping it under ``items``.
    Returns ``None`` when the response is not structured, so callers can
    fall back to showing the raw text.
    """
    if not text or not text.strip():
        return None
    data = _loads_or_none(extract_json(text.strip()))
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("items"), list):
        return data["items"]
    LOG.warning("Model response is not a detection array; falling back to raw text")
    return None


def format_response(text: str, parsed: list[Any] | None) -> str:
    """Return the response for the raw view, pretty-printed when it parsed."""
    if parsed is None or text.strip().startswith("```"):
        return text
    data = _loads_or_none(text)
    if data is None:
        return text
    return "```json\n" + json.dumps(data, indent=2) + "\n```"
