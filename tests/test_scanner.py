"""End-to-end tests for scanning changed files."""

import asyncio

from docsentinel.drift.models import DriftSeverity
from docsentinel.extract.models import DocChunk
from docsentinel.repo.changes import ChangedFile, ChangeKind, FileType
from docsentinel.scanner import DriftScanner


class MemorySource:
    """File source backed by a dict of path -> text."""

    def __init__(self, files):
        self.files = dict(files)

    def read_file(self, path):
        return self.files.get(path)


class ConstantEmbeddings:
    """Embeds every text onto the same vector so everything is related."""

    def __init__(self):
        self.calls = 0

    def dimension(self):
        return 2

    async def embed_batch(self, texts):
        self.calls += 1
        return [[1.0, 0.0] for _ in texts]


OLD_LIB = """/// Adds a number to itself.
pub fn add(a: i32) -> i32 {
    a + a
}
"""

NEW_LIB = """/// Adds a number to itself.
pub fn add(a: i32, b: i32) -> i32 {
    a + b
}
"""

REMOVED = """/// Soon to be gone.
pub fn gone() {}
"""

OLD_README = """# Project

Intro text.

## add

Call add with one number.
"""

NEW_README = """# Project

Intro text.
"""


def code_change(path, kind=ChangeKind.MODIFIED, old_path=None):
    return ChangedFile(path, kind, FileType.CODE, old_path=old_path)


def doc_change(path, kind=ChangeKind.MODIFIED):
    return ChangedFile(path, kind, FileType.DOCUMENTATION)


def context_doc():
    return DocChunk.create("docs/api.md", ["API", "add"], "add", 2, "## add\n\nAdds numbers.", 1, 3)


def run_scan(scanner, changes, old_files, new_files, **kwargs):
    return asyncio.run(scanner.scan(changes, MemorySource(old_files), MemorySource(new_files), **kwargs))


def test_signature_and_removal_are_reported_by_severity():
    scanner = DriftScanner(embeddings=ConstantEmbeddings())
    changes = [code_change("src/lib.rs"), code_change("src/old.rs", ChangeKind.DELETED)]

    result = run_scan(
        scanner,
        changes,
        {"src/lib.rs": OLD_LIB, "src/old.rs": REMOVED},
        {"src/lib.rs": NEW_LIB},
        context_docs=[context_doc()],
    )

    assert [e.severity for e in result.events] == [DriftSeverity.CRITICAL, DriftSeverity.HIGH]
    assert result.events[0].related_code_chunks == ["src/old.rs::gone"]
    assert result.events[1].rule == "signature_change"
    assert result.events[1].related_doc_chunks == ["docs/api.md#API > add"]
    assert [c.id for c in result.code_chunks] == ["src/lib.rs::add"]
    assert result.skipped == []


def test_unsupported_files_are_skipped():
    scanner = DriftScanner(embeddings=ConstantEmbeddings())
    changes = [
        code_change("cmd/main.go"),
        doc_change("docs/guide.rst"),
        code_change("src/lib.rs"),
    ]

    result = run_scan(
        scanner,
        changes,
        {"cmd/main.go": "package main\n", "docs/guide.rst": "Guide\n=====\n", "src/lib.rs": OLD_LIB},
        {"cmd/main.go": "package main\n\nfunc main() {}\n", "docs/guide.rst": "Guide\n=====\n\nMore.\n", "src/lib.rs": NEW_LIB},
        context_docs=[context_doc()],
    )

    assert [s.path for s in result.skipped] == ["cmd/main.go", "docs/guide.rst"]
    assert result.skipped[1].reason == "unsupported documentation format"
    assert [e.rule for e in result.events] == ["signature_change"]


def test_ignored_files_are_not_scanned():
    scanner = DriftScanner(embeddings=ConstantEmbeddings())

    result = run_scan(
        scanner,
        [code_change("target/debug/build.rs", ChangeKind.DELETED)],
        {"target/debug/build.rs": REMOVED},
        {},
        context_docs=[context_doc()],
    )

    assert result.events == []
    assert result.skipped == []


def test_removed_doc_section():
    scanner = DriftScanner(embeddings=ConstantEmbeddings())

    result = run_scan(
        scanner,
        [doc_change("README.md"), code_change("src/lib.rs")],
        {"README.md": OLD_README, "src/lib.rs": OLD_LIB},
        {"README.md": NEW_README, "src/lib.rs": OLD_LIB.replace("a + a", "a * 2")},
    )

    doc_events = [e for e in result.events if e.rule == "doc_removed"]
    assert len(doc_events) == 1
    assert doc_events[0].severity == DriftSeverity.MEDIUM
    assert doc_events[0].related_doc_chunks == ["README.md#Project > add"]
    assert "src/lib.rs::add" in doc_events[0].related_code_chunks


def test_renamed_file_keeps_symbol_ids():
    scanner = DriftScanner(embeddings=ConstantEmbeddings())

    result = run_scan(
        scanner,
        [code_change("src/math.rs", ChangeKind.RENAMED, old_path="src/lib.rs")],
        {"src/lib.rs": OLD_LIB},
        {"src/math.rs": OLD_LIB},
        context_docs=[context_doc()],
    )

    assert result.events == []
    assert [c.id for c in result.code_chunks] == ["src/math.rs::add"]


def test_without_embeddings_nothing_is_related():
    scanner = DriftScanner()

    result = run_scan(
        scanner,
        [code_change("src/old.rs", ChangeKind.DELETED)],
        {"src/old.rs": REMOVED},
        {},
        context_docs=[context_doc()],
    )

    assert result.events == []


def test_preembedded_context_is_not_reembedded():
    embeddings = ConstantEmbeddings()
    scanner = DriftScanner(embeddings=embeddings)

    run_scan(scanner, [], {}, {}, context_docs=[context_doc().with_embedding([1.0, 0.0])])

    assert embeddings.calls == 0
