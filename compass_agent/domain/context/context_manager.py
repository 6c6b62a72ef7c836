from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
import json

import structlog

from compass_agent.domain.models.persona import PersonaType
from compass_agent.domain.models.tooling import ChunkResult, ToolResultBag

logger = structlog.get_logger(__name__)


NO_CONTEXT_MARKER = "No relevant context found in the knowledge base."
SECTION_SEPARATOR = "\n\n---\n\n"
SOURCE_SEPARATOR = "\n---\n"
TRUNCATION_MARKER = "\n[truncated]"

FIRST_PERSON_INSTRUCTION = (
    "CRITICAL: The data below is YOUR OWN data. Always refer to it in first person "
    "(e.g., 'You have...', 'Your claims...', 'Your policies...'). "
    "Never describe it in the third person by name."
)

# result key -> (first-person label, neutral label), in rendering order
SECTION_LABELS: Tuple[Tuple[str, str, str], ...] = (
    ("policies", "Your Policies:", "Customer Policies:"),
    ("claims", "Your Claims:", "Customer Claims:"),
    ("interactions", "Your Interactions:", "Customer Interactions:"),
    ("tasks", "Advisor Tasks:", "Advisor Tasks:"),
    ("documents", "Available Documents:", "Available Documents:"),
    ("profile", "Your Profile:", "Profile Data:"),
    ("recommended_advisors", "Recommended Advisors for You:", "Recommended Advisors:"),
)


@dataclass(frozen=True)
class ContextSection:
    """One labelled block of grounding text"""
    label: Optional[str]
    body: str

    def render(self) -> str:
        if self.label:
            return f"{self.label}\n{self.body}"
        return self.body


def _truncate(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[: max(limit - len(TRUNCATION_MARKER), 0)] + TRUNCATION_MARKER


def _pretty_json(data: Any) -> str:
    return json.dumps(data, indent=2, default=str, ensure_ascii=False)


def render_calculation(calculation: Dict[str, Any]) -> str:
    if "error" in calculation:
        return f"Calculation Error: {calculation.get('message') or calculation['error']}"
    return (
        "Calculation Result:\n"
        f"Formula: {calculation.get('formula', '')}\n"
        f"Result: {calculation.get('result')}\n"
        f"Type: {calculation.get('calculation_type', 'basic')}"
    )


class ContextAssembler:
    """Turns tool output into ordered, bounded grounding text for the model.

    Sections always appear in the same order: CRM summary, perspective
    instruction, CRM data sections, calculation, then search snippets. A
    customer persona reads its own data in the first person; advisors and
    anonymous callers get neutral labels.
    """

    def __init__(
        self,
        max_section_chars: int = 4000,
        max_snippet_chars: int = 1200,
        max_context_chars: int = 12000
    ):
        self.max_section_chars = max_section_chars
        self.max_snippet_chars = max_snippet_chars
        self.max_context_chars = max_context_chars

    def build_sections(
        self,
        bag: ToolResultBag,
        crm_summary: Optional[str] = None,
        persona_type: Optional[PersonaType] = None
    ) -> List[ContextSection]:
        first_person = persona_type == PersonaType.CUSTOMER
        data_sections: List[ContextSection] = []

        for key, first_person_label, neutral_label in SECTION_LABELS:
            data = bag.tool_results.get(key)
            if not data:
                continue
            label = first_person_label if first_person else neutral_label
            data_sections.append(ContextSection(label, _truncate(_pretty_json(data), self.max_section_chars)))

        calculation = bag.tool_results.get("calculation")
        if calculation:
            data_sections.append(ContextSection(None, render_calculation(calculation)))

        if bag.sources:
            data_sections.append(ContextSection(None, self._render_sources(bag.sources)))

        sections: List[ContextSection] = []
        if crm_summary:
            sections.append(ContextSection(None, crm_summary))

        if not data_sections:
            sections.append(ContextSection(None, NO_CONTEXT_MARKER))
            return sections

        if first_person:
            sections.append(ContextSection(None, FIRST_PERSON_INSTRUCTION))
        sections.extend(data_sections)
        return sections

    def _render_sources(self, sources: List[ChunkResult]) -> str:
        snippets = []
        for index, chunk in enumerate(sources, start=1):
            title = chunk.document_title or "Unknown"
            content = _truncate(chunk.content, self.max_snippet_chars)
            snippets.append(f"[Source {index}: {title}]\n{content}\n")
        return SOURCE_SEPARATOR.join(snippets)

    def render(self, sections: List[ContextSection]) -> str:
        text = SECTION_SEPARATOR.join(section.render() for section in sections)
        if len(text) > self.max_context_chars:
            logger.info("context_truncated", length=len(text), limit=self.max_context_chars)
            text = _truncate(text, self.max_context_chars)
        return text

    def assemble(
        self,
        bag: ToolResultBag,
        crm_summary: Optional[str] = None,
        persona_type: Optional[PersonaType] = None
    ) -> str:
        return self.render(self.build_sections(bag, crm_summary, persona_type))
