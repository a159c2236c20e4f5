"""Change tracking types for repository modifications."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ChangeKind(str, Enum):
    """Type of change made to a file."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class FileType(str, Enum):
    """Category of a repository file."""

    CODE = "code"
    DOCUMENTATION = "documentation"
    CONFIG = "config"
    OTHER = "other"


@dataclass(frozen=True)
class ChangedFile:
    """A file changed between two snapshots, relative to the repository root."""

    path: str
    kind: ChangeKind
    file_type: FileType
    old_path: Optional[str] = None  # previous path for renames

    @property
    def is_code(self) -> bool:
        return self.file_type == FileType.CODE

    @property
    def is_documentation(self) -> bool:
        return self.file_type == FileType.DOCUMENTATION

    @property
    def previous_path(self) -> str:
        """Path to read the old content from."""
        return self.old_path or self.path
