"""The four prompt sections of an inspection request and their defaults."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .history import PromptField
from .store import KeyValueStore

LOG = logging.getLogger(__name__)

DEFAULT_ROLE = """\
You are an expert highway infrastructure inspection assistant. Your task is to analyze a \
set of input images depicting W-beam guardrail systems.

Your goal is to identify and localize defects that compromise structural integrity or \
safety. Operate with high sensitivity; flag any suspected anomalies even if image \
resolution prevents absolute confirmation."""

DEFAULT_CRITERIA = """\
Scan the images for the following specific issues:

1. DEFORMATION & DENTS
   - Scan upper and lower silhouette edges for interruptions, jaggedness, or sudden vertical deviations.
   - Analyze light reflections: look for "zig-zags" or sudden breaks in the linear reflection patterns on the rail surface.

2. MISSING OR LOOSE BOLTS
   - Inspect the overlap of rail segments.
   - Flag visible holes missing bolt heads.
   - Flag bolt heads protruding significantly further than neighbors or casting irregular/drooping shadows.

3. HOLES
   - Flag irregular, jagged, or rust-rimmed holes that indicate tears or rust-through."""

DEFAULT_ATTRIBUTES = """\
When reporting a defect, populate the fields as follows:
- Confidence: a score between 0.0 and 1.0 that the defect exists.
- Description: a concise explanation of the visual cue observed (e.g. "Top edge \
silhouette appears jagged", "Shadow indicates protruding bolt")."""

DEFAULT_FORMAT = """\
Return the results as a single valid JSON array. Follow these rules strictly:

1. Batch processing: use `imageIndex` (0-based) to indicate which image in the set the detection belongs to.
2. Coordinates: `box_2d` must be [ymin, xmin, ymax, xmax] using normalized coordinates (0 to 1).
3. Format: output ONLY raw JSON. No Markdown fences, no explanatory text."""


@dataclass(frozen=True)
class SectionSpec:
    key: str
    title: str
    default: str


SECTIONS: tuple[SectionSpec, ...] = (
    SectionSpec("inspector_role", "ROLE & OBJECTIVE", DEFAULT_ROLE),
    SectionSpec("inspector_criteria", "VISUAL DEFECT CRITERIA", DEFAULT_CRITERIA),
    SectionSpec("inspector_attributes", "ATTRIBUTE DEFINITIONS", DEFAULT_ATTRIBUTES),
    SectionSpec("inspector_format", "OUTPUT FORMAT INSTRUCTIONS", DEFAULT_FORMAT),
)


class PromptSet:
    """The ordered prompt sections sharing one store."""

    def __init__(
        self, store: KeyValueStore, sections: tuple[SectionSpec, ...] = SECTIONS
    ) -> None:
        self._sections = sections
        self.fields: dict[str, PromptField] = {
            s.key: PromptField(s.key, s.default, store) for s in sections
        }

    def __getitem__(self, key: str) -> PromptField:
        return self.fields[key]

    def commit_all(self) -> list[str]:
        """Commit every section; returns the keys whose history changed."""
        changed = [key for key, f in self.fields.items() if f.commit()]
        if changed:
            LOG.info("Committed new prompt versions: %s", changed)
        return changed

    def compose(self) -> str:
        """Assemble the full request prompt from the current section values."""
        blocks = [f"## {s.title}\n{self.fields[s.key].value}" for s in self._sections]
        return "\n\n".join(blocks)
