"""AST-aware extraction of public API units using tree-sitter."""

import inspect
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from tree_sitter import Parser

from .errors import EncodingError, ParseFailure, UnsupportedLanguage
from .grammars import LanguageConfig, get_language_registry
from .models import CodeChunk, Language, SymbolType

logger = logging.getLogger(__name__)

QUALIFIER_SEPARATOR = "::"

RUST_TYPE_KINDS = {
    "struct_item": SymbolType.STRUCT,
    "union_item": SymbolType.STRUCT,
    "enum_item": SymbolType.ENUM,
}

RUST_CONSTANT_KINDS = ("const_item", "static_item")

RUST_FUNCTION_KINDS = ("function_item", "function_signature_item")

_DOCSTRING_RE = re.compile(r"^[rRuUbBfF]*(\"\"\"|'''|\"|')(.*)\1$", re.DOTALL)


class _FileContext:
    """Per-file state for a single extraction pass."""

    def __init__(self, file_path: str, source: bytes, config: LanguageConfig):
        self.file_path = file_path
        self.source = source
        self.config = config
        self.chunks: List[CodeChunk] = []
        self._seen: Dict[str, int] = {}

    def text(self, node: Any) -> str:
        return self.source[node.start_byte : node.end_byte].decode("utf-8")

    def span(self, start_byte: int, end_byte: int) -> str:
        return self.source[start_byte:end_byte].decode("utf-8")

    def unique_id(self, symbol_name: str) -> str:
        """Chunk id for a symbol, suffixed when the name repeats within the file."""
        base = f"{self.file_path}{QUALIFIER_SEPARATOR}{symbol_name}"
        count = self._seen.get(base, 0) + 1
        self._seen[base] = count
        if count == 1:
            return base
        logger.debug(f"Duplicate symbol '{symbol_name}' in {self.file_path}, using suffix #{count}")
        return f"{base}#{count}"

    def add(
        self,
        node: Any,
        symbol_name: str,
        symbol_type: SymbolType,
        is_public: bool,
        doc_comment: Optional[str],
        signature: Optional[str] = None,
    ) -> CodeChunk:
        chunk = CodeChunk.create(
            file_path=self.file_path,
            symbol_name=symbol_name,
            symbol_type=symbol_type,
            content=self.text(node),
            language=self.config.language,
            start_line=node.start_point[0] + 1,  # Tree-sitter uses 0-based rows
            end_line=node.end_point[0] + 1,
            doc_comment=doc_comment,
            signature=signature,
            is_public=is_public,
            chunk_id=self.unique_id(symbol_name),
        )
        self.chunks.append(chunk)
        logger.debug(f"Extracted {symbol_type.value} '{symbol_name}' from {self.file_path}:{chunk.start_line}")
        return chunk


def _qualify(qualifier: Optional[str], name: str) -> str:
    return f"{qualifier}{QUALIFIER_SEPARATOR}{name}" if qualifier else name


def is_public_python_name(name: str) -> bool:
    """Underscore-prefixed names are private, except dunder names."""
    if name.startswith("__") and name.endswith("__") and len(name) > 4:
        return True
    return not name.startswith("_")


class CodeExtractor:
    """Extract functions, methods and types from source files with tree-sitter."""

    def __init__(self, strict: bool = False):
        """Initialize code extractor.

        Args:
            strict: Raise ParseFailure when the parse tree contains syntax
                errors instead of extracting from the recovered tree
        """
        self.strict = strict
        self.registry = get_language_registry()
        self.parsers: Dict[Language, Parser] = {}
        self._init_parsers()

    def _init_parsers(self) -> None:
        """Initialize one tree-sitter parser per registered language."""
        for language in self.registry.get_supported_languages():
            config = self.registry.get_language_config(language)
            parser = Parser()
            parser.language = config.load_grammar()
            self.parsers[language] = parser
            logger.debug(f"Initialized parser for {language.value}")

    def supports(self, file_path: str) -> bool:
        return self.registry.is_supported_file(file_path)

    def extract(self, file_path: str, source: Union[str, bytes]) -> List[CodeChunk]:
        """Parse a file and extract its code chunks.

        Args:
            file_path: Path of the file, relative to the repository root
            source: File content as text or raw UTF-8 bytes

        Returns:
            Chunks in depth-first declaration order

        Raises:
            UnsupportedLanguage: If the extension maps to no grammar
            EncodingError: If bytes content is not valid UTF-8
            ParseFailure: If the parser cannot build a usable tree
        """
        language = self.registry.detect_language(file_path)
        if language is None or language not in self.parsers:
            raise UnsupportedLanguage(file_path, Path(file_path).suffix)

        if isinstance(source, bytes):
            try:
                source.decode("utf-8")
            except UnicodeDecodeError as e:
                raise EncodingError(file_path) from e
            data = source
        else:
            data = source.encode("utf-8")

        try:
            tree = self.parsers[language].parse(data)
        except (ValueError, RuntimeError) as e:
            raise ParseFailure(file_path, str(e)) from e

        if tree is None or tree.root_node is None:
            raise ParseFailure(file_path, "parser produced no tree")

        root_node = tree.root_node
        if root_node.has_error:
            if self.strict:
                raise ParseFailure(file_path, "syntax errors in source")
            logger.warning(f"Parse errors in {file_path}, extracting from recovered tree")

        ctx = _FileContext(file_path, data, self.registry.get_language_config(language))
        if language == Language.RUST:
            self._walk_rust(root_node, ctx)
        elif language == Language.PYTHON:
            self._walk_python(root_node, ctx)

        logger.info(f"Extracted {len(ctx.chunks)} chunks from {file_path}")
        return ctx.chunks

    # Shared helpers

    def _node_name(self, node: Any, ctx: _FileContext) -> Optional[str]:
        name_node = node.child_by_field_name("name")
        return ctx.text(name_node) if name_node else None

    def _leading_comments(self, ctx: _FileContext, start_byte: int, skip_prefixes: tuple = ()) -> Optional[str]:
        """Collect the comment lines directly above a declaration.

        Lines are gathered upward, stopping at the first blank or
        non-comment line. Lines starting with one of ``skip_prefixes`` are
        passed over without ending the block.
        """
        marker = ctx.config.doc_comment_prefix
        # The last element is the part of the declaration's own line before it
        lines = ctx.span(0, start_byte).split("\n")[:-1]

        doc_lines: List[str] = []
        for line in reversed(lines):
            stripped = line.strip()
            if not stripped:
                break
            if skip_prefixes and stripped.startswith(skip_prefixes):
                continue
            if not stripped.startswith(marker) or self._is_excluded_comment(stripped, ctx.config.language):
                break
            doc_lines.append(stripped[len(marker) :].strip())

        if not doc_lines:
            return None
        doc_lines.reverse()
        return "\n".join(doc_lines)

    @staticmethod
    def _is_excluded_comment(stripped: str, language: Language) -> bool:
        if language == Language.RUST:
            # "////" is a plain comment, "//!" documents the enclosing module
            return stripped.startswith("////") or stripped.startswith("//!")
        return stripped.startswith("#!")

    # Rust

    def _walk_rust(
        self,
        node: Any,
        ctx: _FileContext,
        qualifier: Optional[str] = None,
        inherited_public: Optional[bool] = None,
    ) -> None:
        """Walk the Rust tree in pre-order, emitting chunks."""
        kind = node.type

        if kind in RUST_FUNCTION_KINDS:
            self._rust_function(node, ctx, qualifier, inherited_public)
            # Nested items inside a body never inherit trait visibility
            inherited_public = None

        elif kind in RUST_TYPE_KINDS:
            self._rust_type(node, ctx, RUST_TYPE_KINDS[kind], qualifier)

        elif kind in RUST_CONSTANT_KINDS:
            self._rust_constant(node, ctx, qualifier, inherited_public)

        elif kind == "trait_item":
            chunk = self._rust_type(node, ctx, SymbolType.TRAIT, qualifier)
            if chunk is not None:
                self._walk_rust_body(node, ctx, chunk.symbol_name, chunk.is_public)
            return

        elif kind == "impl_item":
            type_node = node.child_by_field_name("type")
            type_name = ctx.text(type_node) if type_node else "Unknown"
            # Trait impl methods carry no modifier but are reachable through the trait
            is_trait_impl = node.child_by_field_name("trait") is not None
            self._walk_rust_body(node, ctx, _qualify(qualifier, type_name), True if is_trait_impl else None)
            return

        for child in node.children:
            self._walk_rust(child, ctx, qualifier, inherited_public)

    def _walk_rust_body(
        self, node: Any, ctx: _FileContext, qualifier: str, inherited_public: Optional[bool]
    ) -> None:
        body = node.child_by_field_name("body")
        if body is None:
            return
        for child in body.children:
            self._walk_rust(child, ctx, qualifier, inherited_public)

    def _rust_visibility(self, node: Any, ctx: _FileContext) -> bool:
        for child in node.children:
            if child.type == "visibility_modifier":
                return ctx.text(child).startswith("pub")
        return False

    def _rust_doc_comment(self, node: Any, ctx: _FileContext) -> Optional[str]:
        return self._leading_comments(ctx, node.start_byte, skip_prefixes=("#[",))

    def _rust_function(
        self,
        node: Any,
        ctx: _FileContext,
        qualifier: Optional[str],
        inherited_public: Optional[bool],
    ) -> Optional[CodeChunk]:
        name = self._node_name(node, ctx)
        if not name:
            return None

        body = node.child_by_field_name("body")
        signature_end = body.start_byte if body is not None else node.end_byte
        signature = ctx.span(node.start_byte, signature_end).strip().rstrip(";").strip()

        is_public = self._rust_visibility(node, ctx) or bool(inherited_public)
        return ctx.add(
            node,
            symbol_name=_qualify(qualifier, name),
            symbol_type=SymbolType.METHOD if qualifier else SymbolType.FUNCTION,
            is_public=is_public,
            doc_comment=self._rust_doc_comment(node, ctx),
            signature=signature or None,
        )

    def _rust_type(
        self, node: Any, ctx: _FileContext, symbol_type: SymbolType, qualifier: Optional[str]
    ) -> Optional[CodeChunk]:
        name = self._node_name(node, ctx)
        if not name:
            return None
        return ctx.add(
            node,
            symbol_name=_qualify(qualifier, name),
            symbol_type=symbol_type,
            is_public=self._rust_visibility(node, ctx),
            doc_comment=self._rust_doc_comment(node, ctx),
        )

    def _rust_constant(
        self,
        node: Any,
        ctx: _FileContext,
        qualifier: Optional[str],
        inherited_public: Optional[bool],
    ) -> Optional[CodeChunk]:
        name = self._node_name(node, ctx)
        if not name:
            return None

        value = node.child_by_field_name("value")
        if value is not None:
            signature = ctx.span(node.start_byte, value.start_byte).rstrip().rstrip("=").strip()
        else:
            signature = ctx.text(node).rstrip().rstrip(";").strip()

        return ctx.add(
            node,
            symbol_name=_qualify(qualifier, name),
            symbol_type=SymbolType.CONSTANT,
            is_public=self._rust_visibility(node, ctx) or bool(inherited_public),
            doc_comment=self._rust_doc_comment(node, ctx),
            signature=signature,
        )

    # Python

    def _walk_python(self, node: Any, ctx: _FileContext, qualifier: Optional[str] = None) -> None:
        """Walk the Python tree in pre-order, emitting chunks."""
        kind = node.type

        if kind == "function_definition":
            self._python_function(node, ctx, qualifier)
            # Nested functions are never class members
            for child in node.children:
                self._walk_python(child, ctx, None)
            return

        elif kind == "class_definition":
            chunk = self._python_class(node, ctx, qualifier)
            body = node.child_by_field_name("body")
            if body is not None:
                class_qualifier = chunk.symbol_name if chunk else qualifier
                for child in body.children:
                    self._walk_python(child, ctx, class_qualifier)
            # The body was walked with the class bound; do not re-enter it
            return

        for child in node.children:
            self._walk_python(child, ctx, qualifier)

    def _python_anchor(self, node: Any) -> Any:
        """The node whose preceding lines hold comments (above any decorators)."""
        parent = node.parent
        if parent is not None and parent.type == "decorated_definition":
            return parent
        return node

    def _python_docstring(self, node: Any, ctx: _FileContext) -> Optional[str]:
        body = node.child_by_field_name("body")
        if body is None:
            return None

        first = next((child for child in body.named_children if child.type != "comment"), None)
        if first is None or first.type != "expression_statement" or not first.named_children:
            return None

        literal = first.named_children[0]
        if literal.type != "string":
            return None

        match = _DOCSTRING_RE.match(ctx.text(literal))
        if not match:
            return None
        docstring = inspect.cleandoc(match.group(2))
        return docstring or None

    def _python_doc_comment(self, node: Any, ctx: _FileContext) -> Optional[str]:
        docstring = self._python_docstring(node, ctx)
        if docstring is not None:
            return docstring
        return self._leading_comments(ctx, self._python_anchor(node).start_byte)

    def _python_signature(self, node: Any, ctx: _FileContext) -> str:
        body = node.child_by_field_name("body")
        signature_end = body.start_byte if body is not None else node.end_byte
        for child in node.children:
            if child.type == ":":
                signature_end = child.start_byte
                break
        return ctx.span(node.start_byte, signature_end).strip()

    def _python_function(self, node: Any, ctx: _FileContext, qualifier: Optional[str]) -> Optional[CodeChunk]:
        name = self._node_name(node, ctx)
        if not name:
            return None
        return ctx.add(
            node,
            symbol_name=_qualify(qualifier, name),
            symbol_type=SymbolType.METHOD if qualifier else SymbolType.FUNCTION,
            is_public=is_public_python_name(name),
            doc_comment=self._python_doc_comment(node, ctx),
            signature=self._python_signature(node, ctx),
        )

    def _python_class(self, node: Any, ctx: _FileContext, qualifier: Optional[str]) -> Optional[CodeChunk]:
        name = self._node_name(node, ctx)
        if not name:
            return None
        return ctx.add(
            node,
            symbol_name=_qualify(qualifier, name),
            symbol_type=SymbolType.CLASS,
            is_public=is_public_python_name(name),
            doc_comment=self._python_doc_comment(node, ctx),
        )
