"""Tests for the Markdown section extractor."""

import pytest

from docsentinel.extract.doc_extractor import DocExtractor, normalize_heading, split_lines
from docsentinel.extract.errors import EncodingError


NESTED_DOC = "# A\n\n## B\n\ntext\n\n## C\n\nmore"

GUIDE_DOC = """# Guide

Introduction to the library.

## Installation

Run the installer.

### From source

Clone and build.

## Usage ##

Call `parse` with a string.

# API

Reference material.
"""

DUPLICATE_HEADINGS = """# Notes

first set of notes

# Notes

second set of notes
"""

SETEXT_DOC = """Title
=====

Body text here.

Subtitle
--------

More body text.
"""

CODE_BLOCK_DOC = """# Example

```rust
fn main() {}
```

```
plain block
```
"""


@pytest.fixture(scope="module")
def extractor():
    return DocExtractor()


def test_nested_sections(extractor):
    chunks = extractor.extract("README.md", NESTED_DOC)

    assert [c.heading_path for c in chunks] == [("A",), ("A", "B"), ("A", "C")]
    assert [(c.start_line, c.end_line) for c in chunks] == [(1, 2), (3, 6), (7, 9)]
    assert chunks[1].content == "## B\n\ntext\n"
    assert chunks[2].content == "## C\n\nmore"
    assert [c.level for c in chunks] == [1, 2, 2]


def test_section_ids(extractor):
    chunks = extractor.extract("docs/guide.md", GUIDE_DOC)

    assert [c.id for c in chunks] == [
        "docs/guide.md#Guide",
        "docs/guide.md#Guide > Installation",
        "docs/guide.md#Guide > Installation > From source",
        "docs/guide.md#Guide > Usage",
        "docs/guide.md#API",
    ]


def test_heading_stack_pops_to_level(extractor):
    chunks = extractor.extract("docs/guide.md", GUIDE_DOC)

    usage = chunks[3]
    assert usage.heading == "Usage"
    assert usage.heading_path == ("Guide", "Usage")
    assert usage.level == 2
    assert chunks[4].heading_path == ("API",)


def test_section_content_excludes_next_heading(extractor):
    chunks = extractor.extract("docs/guide.md", GUIDE_DOC)

    install = chunks[1]
    assert install.content.startswith("## Installation")
    assert "From source" not in install.content
    assert install.start_line == 5
    assert install.end_line == 8


def test_code_spans_are_normalized(extractor):
    chunks = extractor.extract("docs/guide.md", "## The `parse` function\n\nParses input.\n")

    assert chunks[0].heading == "The parse function"
    assert chunks[0].start_line == 1


def test_short_sections_dropped():
    chunks = DocExtractor(min_section_length=10).extract("README.md", NESTED_DOC)

    assert [c.heading_path for c in chunks] == [("A", "B"), ("A", "C")]


def test_document_without_headings(extractor):
    chunks = extractor.extract("notes.md", "Just some text without any headings.\nSecond line.\n")

    assert len(chunks) == 1
    assert chunks[0].heading_path == ("notes.md",)
    assert chunks[0].id == "notes.md#notes.md"
    assert chunks[0].start_line == 1
    assert chunks[0].end_line == 2


def test_empty_document(extractor):
    assert extractor.extract("empty.md", "") == []
    assert extractor.extract("blank.md", "\n\n  \n") == []


def test_duplicate_headings(extractor):
    chunks = extractor.extract("notes.md", DUPLICATE_HEADINGS)

    assert [c.id for c in chunks] == ["notes.md#Notes", "notes.md#Notes#2"]
    assert chunks[0].start_line == 1
    assert chunks[1].start_line == 5
    assert "second set" in chunks[1].content


def test_setext_headings(extractor):
    chunks = extractor.extract("README.md", SETEXT_DOC)

    assert [c.heading for c in chunks] == ["Title", "Subtitle"]
    assert [c.level for c in chunks] == [1, 2]
    assert chunks[1].heading_path == ("Title", "Subtitle")


def test_extraction_is_idempotent(extractor):
    first = extractor.extract("docs/guide.md", GUIDE_DOC)
    second = extractor.extract("docs/guide.md", GUIDE_DOC)

    assert [c.heading_path for c in first] == [c.heading_path for c in second]
    assert len(first) == len(second)


def test_bytes_input(extractor):
    from_bytes = extractor.extract("README.md", NESTED_DOC.encode("utf-8"))

    assert from_bytes == extractor.extract("README.md", NESTED_DOC)


def test_invalid_utf8(extractor):
    with pytest.raises(EncodingError):
        extractor.extract("README.md", b"# Title\n\xff\xfe")


def test_extract_code_blocks(extractor):
    blocks = extractor.extract_code_blocks(CODE_BLOCK_DOC)

    assert len(blocks) == 2
    assert blocks[0].language == "rust"
    assert blocks[0].content.strip() == "fn main() {}"
    assert blocks[0].start_line == 3
    assert blocks[1].language is None
    assert blocks[1].content.strip() == "plain block"


def test_normalize_heading():
    assert normalize_heading("  Usage ##  ") == "Usage"
    assert normalize_heading("C# notes") == "C# notes"
    assert normalize_heading("`parse`   and  `format`") == "parse and format"


def test_split_lines():
    assert split_lines("a\nb\n") == ["a", "b"]
    assert split_lines("a\r\nb") == ["a", "b"]
    assert split_lines("") == []
