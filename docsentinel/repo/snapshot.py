"""Directory snapshots: file reading and content-hash change detection."""

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Protocol

import blake3

from .changes import ChangedFile, ChangeKind
from .config import RepoConfig

logger = logging.getLogger(__name__)

SKIPPED_DIRS = {".git", "target", "node_modules", "__pycache__", ".venv"}


class FileSource(Protocol):
    """Reads repository files at one revision or snapshot."""

    def read_file(self, path: str) -> Optional[str]:
        """Return the text of a repository-relative file, or None if missing or binary."""
        ...


def is_binary(content: bytes) -> bool:
    """Check whether raw file content should be treated as binary."""
    if b"\0" in content:
        return True
    try:
        content.decode("utf-8")
    except UnicodeDecodeError:
        return True
    return False


class DirectorySource:
    """File source backed by a directory on disk."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def read_file(self, path: str) -> Optional[str]:
        file_path = self.root / path
        if not file_path.is_file():
            return None

        content = file_path.read_bytes()
        if is_binary(content):
            logger.debug(f"Treating {path} as binary")
            return None
        return content.decode("utf-8")

    def list_files(self) -> List[str]:
        """List repository-relative paths of all files, using ``/`` separators."""
        if not self.root.exists():
            return []

        files = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIPPED_DIRS)
            for filename in sorted(filenames):
                rel_path = (Path(dirpath) / filename).relative_to(self.root)
                files.append(rel_path.as_posix())
        return files


def compute_file_hash(file_path: Path) -> str:
    """Compute Blake3 hash of a file's contents.

    Args:
        file_path: Path to the file

    Returns:
        Hexadecimal hash string
    """
    with open(file_path, "rb") as f:
        return blake3.blake3(f.read()).hexdigest()


def snapshot_hashes(source: DirectorySource, config: RepoConfig) -> Dict[str, str]:
    """Hash every non-ignored file under a snapshot root."""
    hashes = {}
    for path in source.list_files():
        if config.should_ignore(path):
            continue
        hashes[path] = compute_file_hash(source.root / path)
    return hashes


def diff_snapshots(old_root: Path, new_root: Path, config: Optional[RepoConfig] = None) -> List[ChangedFile]:
    """List files that differ between two directory snapshots.

    Files are compared by content hash. Renames are not detected; a moved
    file shows up as one deletion and one addition.

    Args:
        old_root: Root of the previous snapshot
        new_root: Root of the current snapshot
        config: Repository configuration for ignore patterns and file types

    Returns:
        Changed files sorted by path
    """
    config = config or RepoConfig()
    old_hashes = snapshot_hashes(DirectorySource(old_root), config)
    new_hashes = snapshot_hashes(DirectorySource(new_root), config)

    changes = []
    for path in sorted(set(old_hashes) | set(new_hashes)):
        old_hash = old_hashes.get(path)
        new_hash = new_hashes.get(path)

        if old_hash is None:
            kind = ChangeKind.ADDED
        elif new_hash is None:
            kind = ChangeKind.DELETED
        elif old_hash != new_hash:
            kind = ChangeKind.MODIFIED
        else:
            continue

        changes.append(ChangedFile(path=path, kind=kind, file_type=config.classify(path)))

    logger.info(
        f"Found {len(changes)} changed files out of {len(set(old_hashes) | set(new_hashes))} total "
        f"({len(old_hashes)} old, {len(new_hashes)} new)"
    )
    return changes
