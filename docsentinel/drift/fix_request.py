"""Request bundle handed to an external LLM fix collaborator."""

from dataclasses import dataclass, replace
from typing import List, Optional

from ..extract.models import CodeChunk, DocChunk
from .models import DriftEvent


@dataclass
class FixRequest:
    """A drift event together with the code and documentation it concerns."""

    drift_event: DriftEvent
    old_code: Optional[CodeChunk]
    new_code: Optional[CodeChunk]
    doc_chunk: DocChunk

    def to_prompt(self) -> str:
        """Render the request as a prompt for an LLM.

        Returns:
            Prompt text describing the event, the previous and current code
            (when present) and the documentation section
        """
        lines: List[str] = ["You are analyzing a potential documentation drift issue.", ""]

        lines.append("## Drift Event")
        lines.append(f"Severity: {self.drift_event.severity}")
        lines.append(f"Description: {self.drift_event.description}")
        lines.append(f"Evidence: {self.drift_event.evidence}")
        lines.append("")

        if self.old_code is not None:
            lines.extend(_code_section("Previous Code", self.old_code))
        if self.new_code is not None:
            lines.extend(_code_section("Current Code", self.new_code))

        lines.append("## Current Documentation")
        lines.append(f"Section: {self.doc_chunk.full_path()}")
        lines.append(f"Content:\n{self.doc_chunk.content}")
        lines.append("")

        lines.append("## Instructions")
        lines.append("Analyze this drift and respond with a JSON object containing:")
        lines.append("- summary: Brief summary of what changed")
        lines.append("- reason: Why the documentation is now incorrect")
        lines.append("- suggested_fix: The corrected documentation text (or null if no fix needed)")
        lines.append("- confidence: Your confidence in this analysis (0.0 to 1.0)")
        lines.append("")
        lines.append("Respond ONLY with valid JSON, no other text.")

        return "\n".join(lines) + "\n"

    def apply_response(self, response: str) -> DriftEvent:
        """Attach the collaborator's response to a copy of the event.

        The response is stored verbatim as the suggested fix.
        """
        return replace(self.drift_event, suggested_fix=response)


def _code_section(title: str, chunk: CodeChunk) -> List[str]:
    lines = [f"## {title}", f"Symbol: {chunk.symbol_name}"]
    if chunk.signature:
        lines.append(f"Signature: {chunk.signature}")
    if chunk.doc_comment:
        lines.append(f"Doc comment:\n{chunk.doc_comment}")
    lines.append(f"```\n{chunk.content}\n```")
    lines.append("")
    return lines
