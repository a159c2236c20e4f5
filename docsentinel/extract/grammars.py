"""Language grammar configuration and detection for tree-sitter."""

import logging
from pathlib import Path
from types import ModuleType
from typing import Dict, List, Optional

import tree_sitter_markdown as tsmarkdown
import tree_sitter_python as tspython
import tree_sitter_rust as tsrust
from tree_sitter import Language as TSLanguage

from .models import Language

logger = logging.getLogger(__name__)

DOC_EXTENSIONS = (".md", ".mdx", ".markdown")


class LanguageConfig:
    """Configuration for a programming language."""

    def __init__(
        self,
        language: Language,
        extensions: List[str],
        grammar_module: ModuleType,
        doc_comment_prefix: str,
    ):
        """Initialize language configuration.

        Args:
            language: Language this configuration describes
            extensions: File extensions (with leading dot)
            grammar_module: tree-sitter grammar binding module
            doc_comment_prefix: Line prefix marking a documentation comment
        """
        self.language = language
        self.extensions = extensions
        self.grammar_module = grammar_module
        self.doc_comment_prefix = doc_comment_prefix

    @property
    def name(self) -> str:
        return self.language.value

    def load_grammar(self) -> TSLanguage:
        """Load the tree-sitter language object for this grammar."""
        return TSLanguage(self.grammar_module.language())


class LanguageRegistry:
    """Registry of language configurations."""

    def __init__(self, configs: Optional[List[LanguageConfig]] = None):
        """Initialize language registry.

        Args:
            configs: Language configurations (defaults to the built-in set)
        """
        self.languages: Dict[Language, LanguageConfig] = {}
        self.extension_map: Dict[str, Language] = {}

        for config in configs if configs is not None else _default_configs():
            self.register(config)

        logger.debug(f"Loaded {len(self.languages)} language configurations")

    def register(self, config: LanguageConfig) -> None:
        self.languages[config.language] = config
        for ext in config.extensions:
            self.extension_map[ext.lower()] = config.language

    def detect_language(self, file_path: str) -> Optional[Language]:
        """Detect programming language from file extension.

        Args:
            file_path: Path to the file

        Returns:
            Language or None if not recognized
        """
        extension = Path(file_path).suffix.lower()
        language = self.extension_map.get(extension)
        if language is None:
            logger.debug(f"Unknown file extension: {extension}")
        return language

    def get_language_config(self, language: Language) -> Optional[LanguageConfig]:
        return self.languages.get(language)

    def get_supported_languages(self) -> List[Language]:
        return list(self.languages.keys())

    def get_supported_extensions(self) -> List[str]:
        return list(self.extension_map.keys())

    def is_supported_file(self, file_path: str) -> bool:
        """Check if a file is supported for code extraction.

        Args:
            file_path: Path to the file

        Returns:
            True if file is supported
        """
        return self.detect_language(file_path) is not None


def _default_configs() -> List[LanguageConfig]:
    return [
        LanguageConfig(
            language=Language.RUST,
            extensions=[".rs"],
            grammar_module=tsrust,
            doc_comment_prefix="///",
        ),
        LanguageConfig(
            language=Language.PYTHON,
            extensions=[".py", ".pyi"],
            grammar_module=tspython,
            doc_comment_prefix="#",
        ),
    ]


def load_markdown_grammar() -> TSLanguage:
    """Load the tree-sitter Markdown block grammar."""
    return TSLanguage(tsmarkdown.language())


def is_documentation_file(file_path: str) -> bool:
    """Check if a file is a Markdown-like documentation file."""
    return Path(file_path).suffix.lower() in DOC_EXTENSIONS


# Global registry instance
_registry: Optional[LanguageRegistry] = None


def get_language_registry() -> LanguageRegistry:
    """Get the global language registry instance.

    Returns:
        Language registry instance
    """
    global _registry
    if _registry is None:
        _registry = LanguageRegistry()
    return _registry
