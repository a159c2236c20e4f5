"""Data models for drift events and similarity results."""

import uuid
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Iterable, List, Optional


class DriftSeverity(IntEnum):
    """Severity of a drift event, totally ordered LOW < MEDIUM < HIGH < CRITICAL."""

    LOW = 1  # Minor inconsistency
    MEDIUM = 2  # Behavioral or semantic change
    HIGH = 3  # Signature changed
    CRITICAL = 4  # Documented public API removed

    def __str__(self) -> str:
        return self.name


class DriftStatus(str, Enum):
    """Review status of a drift event."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    IGNORED = "ignored"
    FIXED = "fixed"


def _unique(ids: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(ids))


@dataclass
class DriftEvent:
    """A detected inconsistency between code and documentation."""

    severity: DriftSeverity
    description: str
    evidence: str
    confidence: float  # 0.0 - 1.0
    related_code_chunks: List[str] = field(default_factory=list)
    related_doc_chunks: List[str] = field(default_factory=list)
    suggested_fix: Optional[str] = None
    rule: Optional[str] = None  # name of the rule that produced the event
    status: DriftStatus = DriftStatus.PENDING
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        self.related_code_chunks = _unique(self.related_code_chunks)
        self.related_doc_chunks = _unique(self.related_doc_chunks)

    def dedup_key(self) -> str:
        """Order-independent key over every related chunk id."""
        return "|".join(sorted(set(self.related_code_chunks) | set(self.related_doc_chunks)))

    def outranks(self, other: "DriftEvent") -> bool:
        """Strictly higher severity, or equal severity with strictly higher confidence."""
        if self.severity != other.severity:
            return self.severity > other.severity
        return self.confidence > other.confidence

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "severity": self.severity.name,
            "description": self.description,
            "evidence": self.evidence,
            "confidence": self.confidence,
            "related_code_chunks": list(self.related_code_chunks),
            "related_doc_chunks": list(self.related_doc_chunks),
            "suggested_fix": self.suggested_fix,
            "rule": self.rule,
            "status": self.status.value,
        }


@dataclass
class SimilarityResult:
    """Similarity between one code chunk and one doc chunk."""

    code_chunk_id: str
    doc_chunk_id: str
    similarity: float
    previous_similarity: Optional[float] = None

    def has_significant_drop(self, threshold: float) -> bool:
        """Check whether similarity fell by more than ``threshold``."""
        if self.previous_similarity is None:
            return False
        return (self.previous_similarity - self.similarity) > threshold
