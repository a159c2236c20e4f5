"""Drift detection rules.

Hard rules flag definite drift (API shape changes, removed symbols).
Soft rules flag possible drift (doc comment edits, behavioral heuristics).
Every rule only fires when related documentation exists.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

from ..extract.models import CodeChunk, DocChunk
from .models import DriftEvent, DriftSeverity

logger = logging.getLogger(__name__)

BEHAVIOR_KEYWORDS = (
    "default",
    "error",
    "panic",
    "return",
    "throw",
    "raise",
    "assert",
    "expect",
    "unwrap",
    "if",
    "else",
    "match",
)

# Anchored at a word start only, so unwrap_or and expect_err count
_BEHAVIOR_RE = re.compile(r"\b(?:" + "|".join(BEHAVIOR_KEYWORDS) + r")")

_OPENERS = "([{<"
_CLOSERS = ")]}>"


class DriftRule(ABC):
    """Base class for drift rules.

    A rule inspects one changed unit and returns at most one event. Both
    checks default to "does not apply"; subclasses must supply a ``name``.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier recorded on emitted events."""

    def check_code_change(
        self,
        old: Optional[CodeChunk],
        new: Optional[CodeChunk],
        related_docs: Sequence[DocChunk],
    ) -> Optional[DriftEvent]:
        """Check a code change against the documentation related to it."""
        return None

    def check_doc_change(
        self,
        old: Optional[DocChunk],
        new: Optional[DocChunk],
        related_code: Sequence[CodeChunk],
    ) -> Optional[DriftEvent]:
        """Check a documentation change against the code related to it."""
        return None

    def _code_event(
        self,
        chunk: CodeChunk,
        related_docs: Sequence[DocChunk],
        severity: DriftSeverity,
        description: str,
        evidence: str,
        confidence: float,
    ) -> DriftEvent:
        return DriftEvent(
            severity=severity,
            description=description,
            evidence=evidence,
            confidence=confidence,
            related_code_chunks=[chunk.id],
            related_doc_chunks=[doc.id for doc in related_docs],
            rule=self.name,
        )


# ==================== Hard Rules ====================


class SignatureChangeRule(DriftRule):
    """Public signature changed while documentation references the symbol."""

    name = "signature_change"

    def check_code_change(
        self,
        old: Optional[CodeChunk],
        new: Optional[CodeChunk],
        related_docs: Sequence[DocChunk],
    ) -> Optional[DriftEvent]:
        if old is None or new is None or not new.is_public or not related_docs:
            return None
        if not old.signature or not new.signature or old.signature == new.signature:
            return None

        return self._code_event(
            new,
            related_docs,
            DriftSeverity.HIGH,
            f"Public API signature changed: {new.symbol_name}",
            f"Signature changed from:\n  {old.signature}\nto:\n  {new.signature}",
            0.95,
        )


class RemovedFunctionRule(DriftRule):
    """A documented public symbol no longer exists."""

    name = "removed_function"

    def check_code_change(
        self,
        old: Optional[CodeChunk],
        new: Optional[CodeChunk],
        related_docs: Sequence[DocChunk],
    ) -> Optional[DriftEvent]:
        if old is None or new is not None or not old.is_public or not related_docs:
            return None

        return self._code_event(
            old,
            related_docs,
            DriftSeverity.CRITICAL,
            f"Documented {old.symbol_type.value} removed: {old.symbol_name}",
            f"'{old.symbol_name}' was removed but is still documented",
            1.0,
        )


class ParameterChangeRule(DriftRule):
    """Parameter names were added or removed."""

    name = "parameter_change"

    def check_code_change(
        self,
        old: Optional[CodeChunk],
        new: Optional[CodeChunk],
        related_docs: Sequence[DocChunk],
    ) -> Optional[DriftEvent]:
        if old is None or new is None or not new.is_public or not related_docs:
            return None
        if not old.signature or not new.signature:
            return None

        old_params = extract_parameters(old.signature)
        new_params = extract_parameters(new.signature)
        if old_params == new_params:
            return None

        added = [p for p in new_params if p not in old_params]
        removed = [p for p in old_params if p not in new_params]
        # Pure reordering is left to the signature rule
        if not added and not removed:
            return None

        evidence_parts = []
        if added:
            evidence_parts.append(f"Added parameters: {', '.join(added)}")
        if removed:
            evidence_parts.append(f"Removed parameters: {', '.join(removed)}")

        return self._code_event(
            new,
            related_docs,
            DriftSeverity.HIGH,
            f"Parameters changed for: {new.symbol_name}",
            "\n".join(evidence_parts),
            0.9,
        )


class ReturnTypeChangeRule(DriftRule):
    """The annotated return type changed."""

    name = "return_type_change"

    def check_code_change(
        self,
        old: Optional[CodeChunk],
        new: Optional[CodeChunk],
        related_docs: Sequence[DocChunk],
    ) -> Optional[DriftEvent]:
        if old is None or new is None or not new.is_public or not related_docs:
            return None
        if not old.signature or not new.signature:
            return None

        old_return = extract_return_type(old.signature)
        new_return = extract_return_type(new.signature)
        if old_return == new_return:
            return None

        return self._code_event(
            new,
            related_docs,
            DriftSeverity.HIGH,
            f"Return type changed for: {new.symbol_name}",
            f"Return type changed from '{old_return or 'none'}' to '{new_return or 'none'}'",
            0.9,
        )


# ==================== Soft Rules ====================


class DocCommentChangeRule(DriftRule):
    """Doc comment text changed beyond whitespace."""

    name = "doc_comment_change"

    def check_code_change(
        self,
        old: Optional[CodeChunk],
        new: Optional[CodeChunk],
        related_docs: Sequence[DocChunk],
    ) -> Optional[DriftEvent]:
        if old is None or new is None or not related_docs:
            return None
        if not old.is_public or not new.is_public:
            return None
        if not old.doc_comment or not new.doc_comment:
            return None
        if "".join(old.doc_comment.split()) == "".join(new.doc_comment.split()):
            return None

        return self._code_event(
            new,
            related_docs,
            DriftSeverity.MEDIUM,
            f"Doc comment changed: {new.symbol_name}",
            f"Doc comment changed for '{new.symbol_name}'. External documentation may need update.",
            0.7,
        )


class BehaviorChangeRule(DriftRule):
    """Coarse heuristic: body changed and control-flow/error keywords appeared or vanished."""

    name = "behavior_change"

    def check_code_change(
        self,
        old: Optional[CodeChunk],
        new: Optional[CodeChunk],
        related_docs: Sequence[DocChunk],
    ) -> Optional[DriftEvent]:
        if old is None or new is None or not new.is_public or not related_docs:
            return None
        if old.signature != new.signature or old.content == new.content:
            return None
        if has_behavior_keyword(old.content) == has_behavior_keyword(new.content):
            return None

        return self._code_event(
            new,
            related_docs,
            DriftSeverity.LOW,
            f"Potential behavior change: {new.symbol_name}",
            f"Implementation of '{new.symbol_name}' changed. Behavior may have changed.",
            0.5,
        )


# ==================== Doc Rules ====================


class DocRemovedRule(DriftRule):
    """A documentation section was deleted while related code still exists."""

    name = "doc_removed"

    def check_doc_change(
        self,
        old: Optional[DocChunk],
        new: Optional[DocChunk],
        related_code: Sequence[CodeChunk],
    ) -> Optional[DriftEvent]:
        if old is None or new is not None or not related_code:
            return None

        return DriftEvent(
            severity=DriftSeverity.MEDIUM,
            description=f"Documentation section removed: {old.heading}",
            evidence="Documentation was removed but related code still exists: "
            + ", ".join(chunk.symbol_name for chunk in related_code),
            confidence=0.8,
            related_code_chunks=[chunk.id for chunk in related_code],
            related_doc_chunks=[old.id],
            rule=self.name,
        )


class RuleSet:
    """An ordered collection of rules applied to every changed unit."""

    def __init__(self, rules: Sequence[DriftRule]):
        self.rules = list(rules)

    @property
    def names(self) -> List[str]:
        return [rule.name for rule in self.rules]

    def check_code_change(
        self,
        old: Optional[CodeChunk],
        new: Optional[CodeChunk],
        related_docs: Sequence[DocChunk],
    ) -> List[DriftEvent]:
        """Apply every rule in order, collecting all emitted events."""
        events = []
        for rule in self.rules:
            event = rule.check_code_change(old, new, related_docs)
            if event is not None:
                logger.debug(f"Rule {rule.name} fired: {event.description}")
                events.append(event)
        return events

    def check_doc_change(
        self,
        old: Optional[DocChunk],
        new: Optional[DocChunk],
        related_code: Sequence[CodeChunk],
    ) -> List[DriftEvent]:
        events = []
        for rule in self.rules:
            event = rule.check_doc_change(old, new, related_code)
            if event is not None:
                logger.debug(f"Rule {rule.name} fired: {event.description}")
                events.append(event)
        return events


def hard_rules() -> RuleSet:
    return RuleSet([SignatureChangeRule(), RemovedFunctionRule(), ParameterChangeRule(), ReturnTypeChangeRule()])


def soft_rules() -> RuleSet:
    return RuleSet([DocCommentChangeRule(), BehaviorChangeRule()])


def doc_rules() -> RuleSet:
    return RuleSet([DocRemovedRule()])


# ==================== Helper Functions ====================


def has_behavior_keyword(content: str) -> bool:
    return _BEHAVIOR_RE.search(content) is not None


def _is_arrow(text: str, i: int) -> bool:
    return text[i] == ">" and i > 0 and text[i - 1] == "-"


def _opens_quote(text: str, i: int) -> bool:
    """Whether the character at ``i`` starts a string literal.

    A single quote only counts after ``=`` or ``:`` so Rust lifetimes
    (``&'a str``, ``Foo<'a>``) are not mistaken for strings.
    """
    ch = text[i]
    if ch == '"':
        return True
    if ch != "'":
        return False
    before = text[:i].rstrip()
    return bool(before) and before[-1] in "=:"


def _parameter_span(signature: str) -> Optional[Tuple[int, int]]:
    """Locate the outermost parameter parentheses.

    Returns the indexes of the opening and closing parenthesis. Generic
    brackets before the list (``fn f<T: Fn(i32)>(x: T)``) are skipped.
    """
    depth = 0
    start = None
    for i, ch in enumerate(signature):
        if ch == "(" and depth == 0:
            start = i
            break
        if ch in "[{<":
            depth += 1
        elif ch in "]}>" and not _is_arrow(signature, i):
            depth = max(depth - 1, 0)
    if start is None:
        return None

    depth = 0
    quote = None
    for i in range(start, len(signature)):
        ch = signature[i]
        if quote:
            if ch == quote and signature[i - 1] != "\\":
                quote = None
            continue
        if _opens_quote(signature, i):
            quote = ch
        elif ch in _OPENERS:
            depth += 1
        elif ch in _CLOSERS and not _is_arrow(signature, i):
            depth -= 1
            if depth == 0:
                return start, i
    return start, len(signature)


def _split_top_level(text: str) -> List[str]:
    """Split on commas that are not nested inside brackets or string literals."""
    items = []
    depth = 0
    quote = None
    current: List[str] = []
    for i, ch in enumerate(text):
        if quote:
            current.append(ch)
            if ch == quote and text[i - 1] != "\\":
                quote = None
            continue
        if _opens_quote(text, i):
            quote = ch
        elif ch in _OPENERS:
            depth += 1
        elif ch in _CLOSERS and not _is_arrow(text, i):
            depth = max(depth - 1, 0)
        elif ch == "," and depth == 0:
            items.append("".join(current))
            current = []
            continue
        current.append(ch)
    items.append("".join(current))
    return items


def extract_parameters(signature: str) -> List[str]:
    """Extract parameter names from a function signature.

    Args:
        signature: Textual signature, e.g. ``fn hello(name: &str, age: u32) -> String``

    Returns:
        Parameter names in declaration order, each cut before a type
        annotation (``:``) or default value (``=``)
    """
    span = _parameter_span(signature)
    if span is None:
        return []

    start, end = span
    params = []
    for item in _split_top_level(signature[start + 1 : end]):
        item = item.strip()
        if not item:
            continue
        params.append(item.split(":", 1)[0].split("=", 1)[0].strip())
    return params


def extract_return_type(signature: str) -> Optional[str]:
    """Extract the return type annotation following ``->``.

    Args:
        signature: Textual signature

    Returns:
        Return type text trimmed of a trailing body opener, or None
    """
    span = _parameter_span(signature)
    search_from = span[1] + 1 if span else 0

    arrow = signature.find("->", search_from)
    if arrow == -1:
        return None

    return_type = signature[arrow + 2 :].strip().rstrip("{:").strip()
    return return_type or None
