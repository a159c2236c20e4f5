"""Repository configuration for drift detection.

Configuration is layered, highest precedence first:
1. Direct kwargs
2. Environment variables (DOCSENTINEL_<FIELD>, e.g. DOCSENTINEL_TOP_K)
3. Repository config file (.docsentinel/config.toml)
4. Built-in defaults

List fields read from the environment are JSON, e.g.
``DOCSENTINEL_IGNORE_PATTERNS='["target/**", "vendor/**"]'``.
"""

import logging
import tomllib
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from ..drift.detector import DriftConfig
from ..extract.grammars import DOC_EXTENSIONS, get_language_registry
from .changes import FileType

logger = logging.getLogger(__name__)

CONFIG_DIR = ".docsentinel"
CONFIG_FILE = "config.toml"

CONFIG_EXTENSIONS = (".toml", ".yaml", ".yml", ".json")
SPECIAL_DOC_NAMES = ("readme", "changelog", "contributing", "license")


class ConfigError(Exception):
    """Raised when configuration cannot be read or holds an invalid value."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(f"Failed to parse config at {path}: {reason}")

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(f"Invalid value for '{field}' ({value!r}): {reason}", field=field)


def _default_doc_patterns() -> List[str]:
    return ["*.md", "*.mdx", "*.rst", "docs/**/*", "README*", "CHANGELOG*"]


def _default_code_patterns() -> List[str]:
    return ["*.rs", "*.py", "src/**/*.rs", "src/**/*.py", "lib/**/*.rs", "lib/**/*.py"]


def _default_ignore_patterns() -> List[str]:
    return ["target/**", "node_modules/**", ".git/**", ".docsentinel/**", "vendor/**", "*.lock", "*.min.js"]


def match_pattern(path: str, pattern: str) -> bool:
    """Match a repository-relative path against a glob pattern.

    Supports ``dir/**`` (everything below a directory), ``prefix/**/suffix``,
    plain wildcards (matched from the right, like ``Path.match``) and bare
    names (exact path, directory prefix, or final component).

    Args:
        path: Path relative to the repository root, using ``/`` separators
        pattern: Glob pattern

    Returns:
        True if the path matches
    """
    if pattern.endswith("/**"):
        # Directory recursive: vendor/** matches vendor/anything/deep
        dir_prefix = pattern[:-3]
        return path == dir_prefix or path.startswith(dir_prefix + "/")

    if "**/" in pattern:
        prefix, _, suffix = pattern.partition("**/")
        prefix = prefix.rstrip("/")
        if prefix and not path.startswith(prefix + "/"):
            return False
        remainder = path[len(prefix) + 1 :] if prefix else path
        return PurePosixPath(remainder).match(suffix)

    if "*" in pattern or "?" in pattern:
        return PurePosixPath(path).match(pattern)

    # Exact match or directory name
    return path == pattern or path.startswith(pattern + "/") or path.endswith("/" + pattern)


class RepoConfig(BaseSettings):
    """Configuration for a repository being analyzed.

    Env vars: DOCSENTINEL_SIMILARITY_THRESHOLD, DOCSENTINEL_TOP_K,
    DOCSENTINEL_EMBEDDING_HOST, DOCSENTINEL_BATCH_SIZE, etc.
    """

    model_config = SettingsConfigDict(
        env_prefix="DOCSENTINEL_",
        case_sensitive=False,
        env_ignore_empty=True,
    )

    doc_patterns: List[str] = Field(default_factory=_default_doc_patterns)
    code_patterns: List[str] = Field(default_factory=_default_code_patterns)
    ignore_patterns: List[str] = Field(default_factory=_default_ignore_patterns)
    languages: List[str] = Field(default_factory=lambda: ["rust", "python"])
    similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    drop_threshold: float = Field(default=0.2, ge=0.0, le=1.0)
    top_k: int = Field(default=5, ge=1)
    min_section_length: int = Field(default=3, ge=0)
    use_hard_rules: bool = True
    use_soft_rules: bool = True
    embedding_host: str = "http://localhost:11434"
    embedding_model: str = "nomic-embed-text"
    embedding_cache_dir: Optional[str] = None
    batch_size: int = Field(default=32, ge=1)
    max_concurrent: int = Field(default=4, ge=1)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, env_settings)

    @classmethod
    def load(cls, repo_root: Path, **kwargs: Any) -> "RepoConfig":
        """Load configuration for a repository.

        Args:
            repo_root: Repository root directory
            **kwargs: Override values (highest precedence)

        Returns:
            Resolved configuration

        Raises:
            ConfigError: On invalid TOML syntax or validation errors
        """
        file_config: Dict[str, Any] = {}

        config_path = Path(repo_root) / CONFIG_DIR / CONFIG_FILE
        if config_path.exists():
            file_config = cls._read_file(config_path)
            logger.info(f"Loaded configuration from {config_path}")

        settings_cls = _make_settings_class(file_config)
        try:
            return settings_cls(**kwargs)
        except ValidationError as e:
            err = e.errors()[0]
            field = ".".join(str(loc) for loc in err["loc"])
            raise ConfigError.invalid_value(field, err.get("input"), err["msg"]) from e

    @classmethod
    def _read_file(cls, config_path: Path) -> Dict[str, Any]:
        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError.parse_error(str(config_path), str(e)) from e

        unknown = sorted(set(data) - set(cls.model_fields))
        if unknown:
            logger.warning(f"Ignoring unknown config keys in {config_path}: {unknown}")
        return {key: value for key, value in data.items() if key in cls.model_fields}

    def should_ignore(self, path: str) -> bool:
        return any(match_pattern(path, pattern) for pattern in self.ignore_patterns)

    def is_doc_file(self, path: str) -> bool:
        return any(match_pattern(path, pattern) for pattern in self.doc_patterns)

    def is_code_file(self, path: str) -> bool:
        return any(match_pattern(path, pattern) for pattern in self.code_patterns)

    def classify(self, path: str) -> FileType:
        """Categorize a file as code, documentation, config, or other.

        Configured patterns win; otherwise the extension decides.
        """
        if self.is_doc_file(path):
            return FileType.DOCUMENTATION
        if self.is_code_file(path):
            return FileType.CODE

        name = PurePosixPath(path).name.lower()
        suffix = PurePosixPath(name).suffix
        if suffix in DOC_EXTENSIONS or suffix in (".rst", ".txt", ".adoc"):
            return FileType.DOCUMENTATION
        if get_language_registry().is_supported_file(path):
            return FileType.CODE
        if suffix in CONFIG_EXTENSIONS:
            return FileType.CONFIG
        if name in SPECIAL_DOC_NAMES:
            return FileType.DOCUMENTATION
        return FileType.OTHER

    def to_drift_config(self) -> DriftConfig:
        return DriftConfig(
            similarity_threshold=self.similarity_threshold,
            drop_threshold=self.drop_threshold,
            top_k=self.top_k,
            use_hard_rules=self.use_hard_rules,
            use_soft_rules=self.use_soft_rules,
        )


class _TomlSource(PydanticBaseSettingsSource):
    """Settings source that reads from a pre-loaded config file."""

    def __init__(self, settings_cls: Type[BaseSettings], file_config: Dict[str, Any]):
        super().__init__(settings_cls)
        self._file_config = file_config

    def get_field_value(self, field: Any, field_name: str) -> Tuple[Any, str, bool]:
        value = self._file_config.get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> Dict[str, Any]:
        return self._file_config


def _make_settings_class(file_config: Dict[str, Any]) -> Type[RepoConfig]:
    """Create a RepoConfig subclass bound to one repository's config file."""

    class FileBackedRepoConfig(RepoConfig):
        @classmethod
        def settings_customise_sources(
            cls,
            settings_cls: Type[BaseSettings],
            init_settings: PydanticBaseSettingsSource,
            env_settings: PydanticBaseSettingsSource,
            dotenv_settings: PydanticBaseSettingsSource,
            file_secret_settings: PydanticBaseSettingsSource,
        ) -> Tuple[PydanticBaseSettingsSource, ...]:
            # Precedence (first wins): init kwargs > env vars > config file
            return (init_settings, env_settings, _TomlSource(settings_cls, file_config))

    return FileBackedRepoConfig
