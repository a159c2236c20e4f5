"""Data models for extracted code and documentation chunks."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import blake3


def content_hash(content: str) -> str:
    """Compute a stable Blake3 digest of chunk content.

    Args:
        content: Raw chunk text

    Returns:
        Hexadecimal hash string
    """
    return blake3.blake3(content.encode("utf-8")).hexdigest()


class Language(str, Enum):
    """Source languages with a registered grammar."""

    RUST = "rust"
    PYTHON = "python"


class SymbolType(str, Enum):
    """Kind of code symbol a chunk represents."""

    FUNCTION = "function"
    METHOD = "method"
    STRUCT = "struct"
    CLASS = "class"
    ENUM = "enum"
    TRAIT = "trait"
    IMPL = "impl"
    MODULE = "module"
    CONSTANT = "constant"


@dataclass(frozen=True)
class CodeChunk:
    """Represents one public-API-relevant unit of source code."""

    id: str  # "<file_path>::<qualified symbol name>"
    file_path: str
    symbol_name: str  # qualified, e.g. "Parser::parse"
    symbol_type: SymbolType
    content: str
    content_hash: str
    language: Language
    start_line: int  # 1-indexed, inclusive
    end_line: int
    doc_comment: Optional[str] = None
    signature: Optional[str] = None
    is_public: bool = False
    embedding: Optional[Tuple[float, ...]] = field(default=None, compare=False, repr=False)

    @classmethod
    def create(
        cls,
        file_path: str,
        symbol_name: str,
        symbol_type: SymbolType,
        content: str,
        language: Language,
        start_line: int,
        end_line: int,
        doc_comment: Optional[str] = None,
        signature: Optional[str] = None,
        is_public: bool = False,
        chunk_id: Optional[str] = None,
    ) -> "CodeChunk":
        """Build a chunk, deriving its id and content hash.

        Args:
            file_path: File path relative to the repository root
            symbol_name: Qualified symbol name
            symbol_type: Kind of symbol
            content: Raw source text of the symbol
            language: Source language
            start_line: First line (1-indexed)
            end_line: Last line (1-indexed, inclusive)
            doc_comment: Associated documentation comment, if any
            signature: Textual signature, if applicable
            is_public: Whether the symbol is part of the public API
            chunk_id: Explicit id (defaults to "<file_path>::<symbol_name>")

        Returns:
            New immutable chunk
        """
        return cls(
            id=chunk_id or f"{file_path}::{symbol_name}",
            file_path=file_path,
            symbol_name=symbol_name,
            symbol_type=symbol_type,
            content=content,
            content_hash=content_hash(content),
            language=language,
            start_line=start_line,
            end_line=end_line,
            doc_comment=doc_comment,
            signature=signature,
            is_public=is_public,
        )

    def with_embedding(self, embedding: Sequence[float]) -> "CodeChunk":
        """Return a copy of this chunk carrying an embedding vector."""
        return replace(self, embedding=tuple(float(x) for x in embedding))

    def embedding_text(self) -> str:
        """Get a summary of the chunk suitable for embedding."""
        parts = []
        if self.doc_comment:
            parts.append(self.doc_comment)
        if self.signature:
            parts.append(f"Signature: {self.signature}")
        parts.append(f"{self.symbol_type.value} {self.symbol_name} in {self.file_path}")
        return "\n".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for storage. Embeddings are derived data and are not included."""
        return {
            "id": self.id,
            "file_path": self.file_path,
            "symbol_name": self.symbol_name,
            "symbol_type": self.symbol_type.value,
            "content": self.content,
            "content_hash": self.content_hash,
            "language": self.language.value,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "doc_comment": self.doc_comment,
            "signature": self.signature,
            "is_public": self.is_public,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CodeChunk":
        return cls(
            id=data["id"],
            file_path=data["file_path"],
            symbol_name=data["symbol_name"],
            symbol_type=SymbolType(data["symbol_type"]),
            content=data["content"],
            content_hash=data["content_hash"],
            language=Language(data["language"]),
            start_line=data["start_line"],
            end_line=data["end_line"],
            doc_comment=data.get("doc_comment"),
            signature=data.get("signature"),
            is_public=data.get("is_public", False),
        )


@dataclass(frozen=True)
class DocChunk:
    """Represents one heading-delimited documentation section."""

    id: str  # "<file_path>#<heading > path>"
    file_path: str
    heading_path: Tuple[str, ...]
    heading: str
    level: int  # 1-6
    content: str  # includes the heading line
    content_hash: str
    start_line: int
    end_line: int
    embedding: Optional[Tuple[float, ...]] = field(default=None, compare=False, repr=False)

    @classmethod
    def create(
        cls,
        file_path: str,
        heading_path: Sequence[str],
        heading: str,
        level: int,
        content: str,
        start_line: int,
        end_line: int,
        chunk_id: Optional[str] = None,
    ) -> "DocChunk":
        """Build a section chunk, deriving its id and content hash.

        Args:
            file_path: File path relative to the repository root
            heading_path: Ancestor headings ending with this section's heading
            heading: Heading text
            level: Heading level (1-6)
            content: Section text including the heading line
            start_line: First line (1-indexed)
            end_line: Last line (1-indexed, inclusive)
            chunk_id: Explicit id (defaults to "<file_path>#<a > b>")

        Returns:
            New immutable chunk
        """
        path = tuple(heading_path)
        return cls(
            id=chunk_id or f"{file_path}#{' > '.join(path)}",
            file_path=file_path,
            heading_path=path,
            heading=heading,
            level=level,
            content=content,
            content_hash=content_hash(content),
            start_line=start_line,
            end_line=end_line,
        )

    def with_embedding(self, embedding: Sequence[float]) -> "DocChunk":
        """Return a copy of this chunk carrying an embedding vector."""
        return replace(self, embedding=tuple(float(x) for x in embedding))

    def full_path(self) -> str:
        return " > ".join(self.heading_path)

    def embedding_text(self) -> str:
        """Get a summary of the section suitable for embedding."""
        return f"Documentation section: {self.full_path()}\nFile: {self.file_path}\n\n{self.content}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "file_path": self.file_path,
            "heading_path": list(self.heading_path),
            "heading": self.heading,
            "level": self.level,
            "content": self.content,
            "content_hash": self.content_hash,
            "start_line": self.start_line,
            "end_line": self.end_line,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocChunk":
        return cls(
            id=data["id"],
            file_path=data["file_path"],
            heading_path=tuple(data["heading_path"]),
            heading=data["heading"],
            level=data["level"],
            content=data["content"],
            content_hash=data["content_hash"],
            start_line=data["start_line"],
            end_line=data["end_line"],
        )


@dataclass(frozen=True)
class CodeBlock:
    """A fenced code block found in documentation."""

    language: Optional[str]  # info string, if any
    content: str
    start_line: int


def index_by_id(chunks: List[Any]) -> Dict[str, Any]:
    """Key a list of chunks by id, keeping the first chunk for a repeated id."""
    indexed: Dict[str, Any] = {}
    for chunk in chunks:
        indexed.setdefault(chunk.id, chunk)
    return indexed
