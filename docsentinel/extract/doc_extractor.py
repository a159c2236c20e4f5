"""Heading-delimited section extraction from Markdown documentation."""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from tree_sitter import Parser

from .errors import EncodingError
from .grammars import load_markdown_grammar
from .models import CodeBlock, DocChunk

logger = logging.getLogger(__name__)

HEADING_KINDS = ("atx_heading", "setext_heading")

_ATX_MARKER_RE = re.compile(r"^atx_h([1-6])_marker$")
_CLOSING_SEQUENCE_RE = re.compile(r"(^|\s+)#+\s*$")


def normalize_heading(text: str) -> str:
    """Reduce heading markup to plain heading text.

    Drops a closing ``#`` sequence and code-span backticks, and collapses
    whitespace.
    """
    text = text.strip()
    text = _CLOSING_SEQUENCE_RE.sub("", text)
    text = text.replace("`", "")
    return " ".join(text.split())


def split_lines(content: str) -> List[str]:
    """Split text into lines the way line numbers are counted (no trailing empty line)."""
    if not content:
        return []
    lines = content.split("\n")
    if content.endswith("\n"):
        lines.pop()
    return [line.rstrip("\r") for line in lines]


@dataclass
class _Section:
    """An open section while the heading stream is consumed."""

    heading_path: Tuple[str, ...]
    heading: str
    level: int
    start_line: int
    end_line: int
    content: str = ""


class DocExtractor:
    """Extract heading-delimited sections from Markdown files."""

    def __init__(self, min_section_length: int = 3):
        """Initialize doc extractor.

        Args:
            min_section_length: Minimum stripped section length in characters;
                shorter sections are dropped
        """
        self.min_section_length = min_section_length
        self.parser = Parser()
        self.parser.language = load_markdown_grammar()

    def extract(self, file_path: str, source: Union[str, bytes]) -> List[DocChunk]:
        """Extract section chunks from a Markdown document.

        Args:
            file_path: Path of the file, relative to the repository root
            source: Document text or raw UTF-8 bytes

        Returns:
            Section chunks in document order

        Raises:
            EncodingError: If bytes content is not valid UTF-8
        """
        content = self._decode(file_path, source)
        lines = split_lines(content)

        chunks: List[DocChunk] = []
        seen: Dict[str, int] = {}
        for section in self._parse_sections(content, lines):
            if len(section.content.strip()) < self.min_section_length:
                logger.debug(f"Dropping short section '{section.heading}' in {file_path}")
                continue

            base_id = f"{file_path}#{' > '.join(section.heading_path)}"
            seen[base_id] = seen.get(base_id, 0) + 1
            chunk_id = base_id if seen[base_id] == 1 else f"{base_id}#{seen[base_id]}"

            chunks.append(
                DocChunk.create(
                    file_path=file_path,
                    heading_path=section.heading_path,
                    heading=section.heading,
                    level=section.level,
                    content=section.content,
                    start_line=section.start_line,
                    end_line=section.end_line,
                    chunk_id=chunk_id,
                )
            )

        # No headings at all: the whole file becomes one section keyed by its path
        if not chunks and content.strip():
            chunks.append(
                DocChunk.create(
                    file_path=file_path,
                    heading_path=[file_path],
                    heading=file_path,
                    level=1,
                    content=content,
                    start_line=1,
                    end_line=len(lines),
                )
            )

        logger.info(f"Extracted {len(chunks)} sections from {file_path}")
        return chunks

    def extract_code_blocks(self, source: Union[str, bytes]) -> List[CodeBlock]:
        """Extract fenced code blocks with their info-string language.

        Args:
            source: Document text or raw UTF-8 bytes

        Returns:
            Code blocks in document order
        """
        content = self._decode("<document>", source)
        tree = self.parser.parse(content.encode("utf-8"))

        blocks = []
        for node in _walk(tree.root_node, ("fenced_code_block",)):
            language = None
            body = ""
            for child in node.children:
                if child.type == "info_string":
                    info = child.text.decode("utf-8").strip()
                    language = info.split()[0] if info else None
                elif child.type == "code_fence_content":
                    body = child.text.decode("utf-8")
            blocks.append(CodeBlock(language=language, content=body, start_line=node.start_point[0] + 1))
        return blocks

    def _decode(self, file_path: str, source: Union[str, bytes]) -> str:
        if isinstance(source, bytes):
            try:
                return source.decode("utf-8")
            except UnicodeDecodeError as e:
                raise EncodingError(file_path) from e
        return source

    def _parse_sections(self, content: str, lines: List[str]) -> List[_Section]:
        """Turn the heading stream into sections with strict nesting."""
        tree = self.parser.parse(content.encode("utf-8"))

        sections: List[_Section] = []
        path: List[Tuple[int, str]] = []
        current: Optional[_Section] = None

        for node in _walk(tree.root_node, HEADING_KINDS):
            heading = self._heading_text(node)
            level = self._heading_level(node)

            heading_line = node.start_point[0] + 1  # Tree-sitter uses 0-based rows

            if current is not None:
                current.end_line = max(heading_line - 1, current.start_line)
                current.content = self._section_content(lines, current.start_line, current.end_line)
                sections.append(current)

            # Close siblings and shallower-or-equal headings, keep ancestors
            while path and path[-1][0] >= level:
                path.pop()
            path.append((level, heading))

            current = _Section(
                heading_path=tuple(text for _, text in path),
                heading=heading,
                level=level,
                start_line=heading_line,
                end_line=heading_line,
            )

        if current is not None:
            current.end_line = max(len(lines), current.start_line)
            current.content = self._section_content(lines, current.start_line, current.end_line)
            sections.append(current)

        return sections

    def _heading_text(self, node: Any) -> str:
        content = node.child_by_field_name("heading_content")
        if content is None:
            return ""
        return normalize_heading(content.text.decode("utf-8"))

    def _heading_level(self, node: Any) -> int:
        for child in node.children:
            match = _ATX_MARKER_RE.match(child.type)
            if match:
                return int(match.group(1))
            if child.type == "setext_h1_underline":
                return 1
            if child.type == "setext_h2_underline":
                return 2
        return 1

    def _section_content(self, lines: List[str], start: int, end: int) -> str:
        start_idx = max(start - 1, 0)
        if start_idx >= len(lines):
            return ""
        return "\n".join(lines[start_idx : min(end, len(lines))])


def _walk(node: Any, kinds: Tuple[str, ...]) -> Iterator[Any]:
    """Yield nodes of the given kinds in document (pre-) order."""
    if node.type in kinds:
        yield node
        return
    for child in node.children:
        yield from _walk(child, kinds)
