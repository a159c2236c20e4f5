"""Drift detection engine.

Coordinates rule evaluation, semantic similarity checks and event
deduplication for changed code and documentation chunks.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from ..extract.models import CodeChunk, DocChunk
from .fix_request import FixRequest
from .models import DriftEvent, DriftSeverity, SimilarityResult
from .rules import RuleSet, hard_rules, soft_rules
from .rules import doc_rules as default_doc_rules
from .similarity import ScoredMatch, best_matches, cosine_similarity, find_top_k, similarity_matrix

logger = logging.getLogger(__name__)


@dataclass
class DriftConfig:
    """Configuration for drift detection."""

    similarity_threshold: float = 0.7  # below this, drift is suspected
    drop_threshold: float = 0.2  # similarity loss considered significant
    top_k: int = 5  # nearest chunks considered related
    use_hard_rules: bool = True
    use_soft_rules: bool = True


def _changed_ids(old: Mapping[str, object], new: Mapping[str, object]) -> List[str]:
    return list(dict.fromkeys(list(old) + list(new)))


def deduplicate_events(events: Iterable[DriftEvent]) -> List[DriftEvent]:
    """Collapse events that refer to the same set of chunks.

    For each key (sorted union of related chunk ids) one event is kept. An
    incoming event replaces the kept one only when it strictly outranks it,
    so the result does not depend on the order colliding events arrive in
    beyond exact ties.

    Args:
        events: Events in evaluation order

    Returns:
        One event per key, in the order keys were first seen
    """
    kept: Dict[str, DriftEvent] = {}
    for event in events:
        key = event.dedup_key()
        existing = kept.get(key)
        if existing is None or event.outranks(existing):
            kept[key] = event
    return list(kept.values())


class DriftDetector:
    """Detect drift between code and documentation."""

    def __init__(
        self,
        config: Optional[DriftConfig] = None,
        hard: Optional[RuleSet] = None,
        soft: Optional[RuleSet] = None,
        doc_rules: Optional[RuleSet] = None,
    ):
        """Initialize drift detector.

        Args:
            config: Detection thresholds and enabled rule families
            hard: Hard rules (defaults to the built-in hard rules)
            soft: Soft rules (defaults to the built-in soft rules)
            doc_rules: Rules applied to documentation changes
        """
        self.config = config or DriftConfig()
        self.hard_rules = hard if hard is not None else hard_rules()
        self.soft_rules = soft if soft is not None else soft_rules()
        self.doc_rules = doc_rules if doc_rules is not None else default_doc_rules()

    def detect_code_drift(
        self,
        old_chunks: Mapping[str, CodeChunk],
        new_chunks: Mapping[str, CodeChunk],
        doc_chunks: Sequence[DocChunk],
    ) -> List[DriftEvent]:
        """Detect drift caused by changed, added or removed code chunks.

        Args:
            old_chunks: Previous code chunks keyed by id
            new_chunks: Current code chunks keyed by id
            doc_chunks: Documentation chunks to relate changes to

        Returns:
            Deduplicated drift events
        """
        events: List[DriftEvent] = []

        for chunk_id in _changed_ids(old_chunks, new_chunks):
            old = old_chunks.get(chunk_id)
            new = new_chunks.get(chunk_id)

            if old is not None and new is not None and old.content_hash == new.content_hash:
                continue

            surviving = new if new is not None else old
            related_docs = self.find_related_docs(surviving, doc_chunks)

            if self.config.use_hard_rules:
                events.extend(self.hard_rules.check_code_change(old, new, related_docs))
            if self.config.use_soft_rules:
                events.extend(self.soft_rules.check_code_change(old, new, related_docs))

            if new is not None and new.embedding:
                events.extend(self._check_low_similarity(new, related_docs))
                if old is not None and old.embedding:
                    events.extend(self._check_similarity_drop(old, new, doc_chunks))

        deduplicated = deduplicate_events(events)
        logger.info(
            f"Code drift: {len(deduplicated)} events ({len(events)} before deduplication) "
            f"from {len(old_chunks)} old / {len(new_chunks)} new chunks"
        )
        return deduplicated

    def detect_doc_drift(
        self,
        old_docs: Mapping[str, DocChunk],
        new_docs: Mapping[str, DocChunk],
        code_chunks: Sequence[CodeChunk],
    ) -> List[DriftEvent]:
        """Detect drift caused by changed, added or removed documentation sections.

        Args:
            old_docs: Previous doc chunks keyed by id
            new_docs: Current doc chunks keyed by id
            code_chunks: Code chunks to relate changes to

        Returns:
            Deduplicated drift events
        """
        events: List[DriftEvent] = []

        for doc_id in _changed_ids(old_docs, new_docs):
            old = old_docs.get(doc_id)
            new = new_docs.get(doc_id)

            if old is not None and new is not None and old.content_hash == new.content_hash:
                continue

            surviving = new if new is not None else old
            related_code = self.find_related_code(surviving, code_chunks)
            events.extend(self.doc_rules.check_doc_change(old, new, related_code))

        deduplicated = deduplicate_events(events)
        logger.info(f"Doc drift: {len(deduplicated)} events from {len(old_docs)} old / {len(new_docs)} new sections")
        return deduplicated

    def find_related_docs(self, chunk: CodeChunk, doc_chunks: Sequence[DocChunk]) -> List[DocChunk]:
        """Doc chunks within the top-K nearest to a code chunk and above the threshold."""
        matches = find_top_k(chunk.embedding, doc_chunks, self.config.top_k, self.config.similarity_threshold)
        return [match.candidate for match in matches]

    def find_related_code(self, doc: DocChunk, code_chunks: Sequence[CodeChunk]) -> List[CodeChunk]:
        """Code chunks within the top-K nearest to a doc chunk and above the threshold."""
        matches = find_top_k(doc.embedding, code_chunks, self.config.top_k, self.config.similarity_threshold)
        return [match.candidate for match in matches]

    def _check_low_similarity(self, chunk: CodeChunk, related_docs: Sequence[DocChunk]) -> List[DriftEvent]:
        """Flag related docs whose similarity to the chunk is under the threshold.

        The similarity score doubles as the event confidence.
        """
        events = []
        for doc in related_docs:
            if not doc.embedding:
                continue
            similarity = cosine_similarity(chunk.embedding, doc.embedding)
            if similarity >= self.config.similarity_threshold:
                continue
            events.append(
                DriftEvent(
                    severity=DriftSeverity.MEDIUM,
                    description=f"Low semantic similarity between '{chunk.symbol_name}' and '{doc.heading}'",
                    evidence=f"Similarity score: {similarity:.2f}. "
                    "Documentation may not accurately describe the code.",
                    confidence=max(0.0, min(1.0, similarity)),
                    related_code_chunks=[chunk.id],
                    related_doc_chunks=[doc.id],
                    rule="low_similarity",
                )
            )
        return events

    def _check_similarity_drop(
        self, old: CodeChunk, new: CodeChunk, doc_chunks: Sequence[DocChunk]
    ) -> List[DriftEvent]:
        """Flag docs that described the old code well but no longer match the new code."""
        events = []
        for match in find_top_k(old.embedding, doc_chunks, self.config.top_k, self.config.similarity_threshold):
            doc = match.candidate
            result = SimilarityResult(
                code_chunk_id=new.id,
                doc_chunk_id=doc.id,
                similarity=cosine_similarity(new.embedding, doc.embedding),
                previous_similarity=match.similarity,
            )
            if not result.has_significant_drop(self.config.drop_threshold):
                continue

            drop = result.previous_similarity - result.similarity
            events.append(
                DriftEvent(
                    severity=DriftSeverity.MEDIUM,
                    description=f"Semantic similarity dropped between '{new.symbol_name}' and '{doc.heading}'",
                    evidence=f"Similarity fell from {result.previous_similarity:.2f} to {result.similarity:.2f}. "
                    "The code changed in ways the documentation may not reflect.",
                    confidence=min(1.0, drop),
                    related_code_chunks=[new.id],
                    related_doc_chunks=[doc.id],
                    rule="similarity_drop",
                )
            )
        return events

    def compute_all_similarities(
        self, code_chunks: Sequence[CodeChunk], doc_chunks: Sequence[DocChunk]
    ) -> List[SimilarityResult]:
        """Similarity for every embedded code/doc pair."""
        return similarity_matrix(code_chunks, doc_chunks)

    def find_best_matches(
        self, code_chunk: CodeChunk, doc_chunks: Sequence[DocChunk], limit: int
    ) -> List[ScoredMatch]:
        """Best matching doc chunks for a code chunk, ignoring the threshold."""
        return best_matches(code_chunk, doc_chunks, limit)

    def build_fix_request(
        self,
        event: DriftEvent,
        old_code: Optional[CodeChunk],
        new_code: Optional[CodeChunk],
        doc_chunk: DocChunk,
    ) -> FixRequest:
        return FixRequest(drift_event=event, old_code=old_code, new_code=new_code, doc_chunk=doc_chunk)
