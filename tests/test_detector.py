"""Tests for the drift detector and event deduplication."""

import itertools
import math

import pytest

from docsentinel.drift.detector import DriftConfig, DriftDetector, deduplicate_events
from docsentinel.drift.fix_request import FixRequest
from docsentinel.drift.models import DriftEvent, DriftSeverity
from docsentinel.drift.rules import RuleSet, SignatureChangeRule
from docsentinel.extract.code_extractor import CodeExtractor
from docsentinel.extract.models import CodeChunk, DocChunk, Language, SymbolType, index_by_id

ALIGNED = [1.0, 0.0, 0.0]
UNRELATED = [0.0, 1.0, 0.0]


def make_code(content, signature, embedding=ALIGNED, is_public=True, doc_comment=None, name="f"):
    chunk = CodeChunk.create(
        file_path="src/lib.rs",
        symbol_name=name,
        symbol_type=SymbolType.FUNCTION,
        content=content,
        language=Language.RUST,
        start_line=1,
        end_line=1,
        doc_comment=doc_comment,
        signature=signature,
        is_public=is_public,
    )
    return chunk.with_embedding(embedding) if embedding is not None else chunk


def make_doc(heading="f", embedding=ALIGNED, content=None):
    chunk = DocChunk.create("README.md", ["API", heading], heading, 2, content or f"## {heading}\n\nUsage of {heading}.", 3, 6)
    return chunk.with_embedding(embedding) if embedding is not None else chunk


def make_event(severity, confidence, code_ids=(), doc_ids=(), description="event"):
    return DriftEvent(
        severity=severity,
        description=description,
        evidence="",
        confidence=confidence,
        related_code_chunks=list(code_ids),
        related_doc_chunks=list(doc_ids),
    )


# =========================================================================
# Code drift
# =========================================================================


def test_changed_signature_collapses_to_one_event():
    extractor = CodeExtractor()
    old = extractor.extract("src/lib.rs", "/// Identity.\npub fn f(x: i32) -> i32 { x }\n")[0].with_embedding(ALIGNED)
    new = extractor.extract("src/lib.rs", "/// Identity.\npub fn f(x: i32, y: i32) -> i32 { x + y }\n")[0].with_embedding(
        ALIGNED
    )
    doc = make_doc()

    events = DriftDetector().detect_code_drift({old.id: old}, {new.id: new}, [doc])

    # Signature (0.95) and parameter (0.9) events share a key; the stronger one is kept
    assert len(events) == 1
    assert events[0].rule == "signature_change"
    assert events[0].severity == DriftSeverity.HIGH
    assert events[0].related_doc_chunks == [doc.id]


def test_made_private_produces_no_events():
    old = make_code("pub fn f(x: i32) -> i32 { x }", "pub fn f(x: i32) -> i32")
    new = make_code("fn f(x: i32) -> i32 { x }", "fn f(x: i32) -> i32", is_public=False)

    events = DriftDetector().detect_code_drift({old.id: old}, {new.id: new}, [make_doc()])

    assert events == []


def test_removed_public_function():
    old = make_code("pub fn f() {}", "pub fn f()")
    doc = make_doc()

    events = DriftDetector().detect_code_drift({old.id: old}, {}, [doc])

    assert len(events) == 1
    assert events[0].severity == DriftSeverity.CRITICAL
    assert events[0].confidence == 1.0
    assert events[0].related_code_chunks == [old.id]
    assert events[0].related_doc_chunks == [doc.id]


def test_unchanged_chunks_are_skipped():
    chunk = make_code("pub fn f() {}", "pub fn f()")

    assert DriftDetector().detect_code_drift({chunk.id: chunk}, {chunk.id: chunk}, [make_doc()]) == []


def test_unembedded_chunks_have_no_related_docs():
    old = make_code("pub fn f() {}", "pub fn f()", embedding=None)

    assert DriftDetector().detect_code_drift({old.id: old}, {}, [make_doc()]) == []


def test_unrelated_docs_are_not_considered():
    old = make_code("pub fn f() {}", "pub fn f()")

    assert DriftDetector().detect_code_drift({old.id: old}, {}, [make_doc(embedding=UNRELATED)]) == []


def test_disabled_rule_families():
    old = make_code("pub fn f() {}", "pub fn f()")
    config = DriftConfig(use_hard_rules=False, use_soft_rules=False)

    assert DriftDetector(config).detect_code_drift({old.id: old}, {}, [make_doc()]) == []


def test_custom_rule_set():
    old = make_code("pub fn f(x: i32) -> i32 { x }", "pub fn f(x: i32) -> i32")
    new = make_code("pub fn f(x: i32, y: i32) -> u8 { 0 }", "pub fn f(x: i32, y: i32) -> u8")
    detector = DriftDetector(hard=RuleSet([SignatureChangeRule()]), soft=RuleSet([]))

    events = detector.detect_code_drift({old.id: old}, {new.id: new}, [make_doc()])

    assert [e.rule for e in events] == ["signature_change"]


def test_similarity_drop():
    old = make_code("pub fn f() { a }", "pub fn f()", embedding=ALIGNED)
    new = make_code("pub fn f() { b }", "pub fn f()", embedding=UNRELATED)
    doc = make_doc(embedding=ALIGNED)

    events = DriftDetector().detect_code_drift({old.id: old}, {new.id: new}, [doc])

    assert len(events) == 1
    assert events[0].rule == "similarity_drop"
    assert events[0].severity == DriftSeverity.MEDIUM
    assert events[0].confidence == 1.0
    assert events[0].related_code_chunks == [new.id]
    assert events[0].related_doc_chunks == [doc.id]


def test_small_similarity_change_is_not_a_drop():
    old = make_code("pub fn f() { a }", "pub fn f()", embedding=[1.0, 0.0, 0.0])
    new = make_code("pub fn f() { b }", "pub fn f()", embedding=[1.0, 0.1, 0.0])

    events = DriftDetector().detect_code_drift({old.id: old}, {new.id: new}, [make_doc()])

    assert events == []


def test_low_similarity_doc_is_flagged():
    code = make_code("pub fn f() {}", "pub fn f()")
    weak = make_doc("weak", embedding=[0.4, math.sqrt(1 - 0.4 * 0.4), 0.0])
    close = make_doc("close", embedding=ALIGNED)
    missing = make_doc("missing", embedding=None)

    events = DriftDetector()._check_low_similarity(code, [weak, close, missing])

    assert len(events) == 1
    assert events[0].rule == "low_similarity"
    assert events[0].severity == DriftSeverity.MEDIUM
    assert events[0].confidence == pytest.approx(0.4)
    assert events[0].related_code_chunks == [code.id]
    assert events[0].related_doc_chunks == [weak.id]


def test_low_similarity_confidence_is_clamped():
    code = make_code("pub fn f() {}", "pub fn f()")
    opposite = make_doc(embedding=[-1.0, 0.0, 0.0])

    events = DriftDetector()._check_low_similarity(code, [opposite])

    assert [event.confidence for event in events] == [0.0]


# =========================================================================
# Doc drift
# =========================================================================


def test_removed_doc_section_with_related_code():
    doc = make_doc()
    code = make_code("pub fn f() {}", "pub fn f()")

    events = DriftDetector().detect_doc_drift({doc.id: doc}, {}, [code])

    assert len(events) == 1
    assert events[0].severity == DriftSeverity.MEDIUM
    assert events[0].confidence == 0.8
    assert events[0].related_doc_chunks == [doc.id]


def test_edited_doc_section_is_not_flagged():
    old_doc = make_doc(content="## f\n\nOld text.")
    new_doc = make_doc(content="## f\n\nNew text.")

    events = DriftDetector().detect_doc_drift({old_doc.id: old_doc}, {new_doc.id: new_doc}, [make_code("x", "fn f()")])

    assert events == []


def test_removed_doc_without_related_code():
    doc = make_doc(embedding=UNRELATED)

    assert DriftDetector().detect_doc_drift({doc.id: doc}, {}, [make_code("pub fn f() {}", "pub fn f()")]) == []


# =========================================================================
# Deduplication
# =========================================================================


def test_deduplicate_keeps_higher_severity():
    low = make_event(DriftSeverity.MEDIUM, 0.9, ["c1"], ["d1"])
    high = make_event(DriftSeverity.HIGH, 0.5, ["c1"], ["d1"])

    assert deduplicate_events([low, high]) == [high]
    assert deduplicate_events([high, low]) == [high]


def test_deduplicate_equal_severity_uses_confidence():
    weak = make_event(DriftSeverity.HIGH, 0.5, ["c1"], ["d1"])
    strong = make_event(DriftSeverity.HIGH, 0.9, ["c1"], ["d1"])

    assert deduplicate_events([weak, strong]) == [strong]


def test_deduplicate_exact_tie_keeps_first():
    first = make_event(DriftSeverity.LOW, 0.5, ["c1"], description="first")
    second = make_event(DriftSeverity.LOW, 0.5, ["c1"], description="second")

    assert deduplicate_events([first, second]) == [first]


def test_deduplicate_key_is_order_independent():
    a = make_event(DriftSeverity.LOW, 0.5, ["c1", "c2"], ["d1"])
    b = make_event(DriftSeverity.MEDIUM, 0.5, ["c2"], ["d1", "c1"])

    assert deduplicate_events([a, b]) == [b]


def test_deduplicate_preserves_first_seen_order():
    a = make_event(DriftSeverity.LOW, 0.5, ["a"])
    b = make_event(DriftSeverity.LOW, 0.5, ["b"])
    a_better = make_event(DriftSeverity.HIGH, 0.5, ["a"])

    assert deduplicate_events([a, b, a_better]) == [a_better, b]


def test_deduplicate_retains_the_best_event_per_key():
    severities = list(DriftSeverity)
    events = [
        make_event(severities[i % 4], (i * 7 % 10) / 10, [f"c{i % 3}"], ["d1"])
        for i in range(24)
    ]

    for ordering in (events, list(reversed(events)), events[::2] + events[1::2]):
        kept = deduplicate_events(ordering)
        keys = [event.dedup_key() for event in kept]
        assert len(keys) == len(set(keys))
        for event in kept:
            for other in ordering:
                if other.dedup_key() == event.dedup_key():
                    assert (event.severity, event.confidence) >= (other.severity, other.confidence)


def test_deduplicate_empty():
    assert deduplicate_events([]) == []


# =========================================================================
# Pass-throughs
# =========================================================================


def test_compute_all_similarities_and_best_matches():
    detector = DriftDetector()
    code = [make_code("pub fn f() {}", "pub fn f()")]
    docs = [make_doc("a", ALIGNED), make_doc("b", UNRELATED), make_doc("c", None)]

    results = detector.compute_all_similarities(code, docs)
    matches = detector.find_best_matches(code[0], docs, 1)

    assert [r.similarity for r in results] == [1.0, 0.0]
    assert [m.candidate.heading for m in matches] == ["a"]


def test_find_related_respects_top_k():
    detector = DriftDetector(DriftConfig(top_k=2))
    docs = [make_doc(name) for name in ("a", "b", "c")]

    related = detector.find_related_docs(make_code("x", "fn f()"), docs)

    assert [d.heading for d in related] == ["a", "b"]


def test_build_fix_request():
    old = make_code("pub fn f() {}", "pub fn f()")
    doc = make_doc()
    event = DriftDetector().detect_code_drift({old.id: old}, {}, [doc])[0]

    request = DriftDetector().build_fix_request(event, old, None, doc)

    assert isinstance(request, FixRequest)
    assert request.drift_event is event
    assert request.new_code is None


def test_index_by_id_keeps_first():
    a = make_code("pub fn f() { 1 }", "pub fn f()")
    b = make_code("pub fn f() { 2 }", "pub fn f()")

    assert index_by_id([a, b]) == {a.id: a}


def test_detection_is_order_insensitive():
    old_chunks = [
        make_code("pub fn a() {}", "pub fn a()", name="a"),
        make_code("pub fn b() {}", "pub fn b()", name="b"),
    ]
    doc = make_doc()
    results = []
    for ordering in itertools.permutations(old_chunks):
        events = DriftDetector().detect_code_drift(index_by_id(list(ordering)), {}, [doc])
        results.append(sorted(e.dedup_key() for e in events))

    assert results[0] == results[1]
    assert len(results[0]) == 2
