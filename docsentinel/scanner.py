"""Multi-file drift scan over a set of changed files."""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

from .drift.detector import DriftDetector, deduplicate_events
from .drift.models import DriftEvent
from .extract.code_extractor import CodeExtractor
from .extract.doc_extractor import DocExtractor
from .extract.errors import ExtractError
from .extract.grammars import is_documentation_file
from .extract.models import CodeChunk, DocChunk, index_by_id
from .indexer.embeddings import EmbeddingProvider, embed_code_chunks, embed_doc_chunks
from .repo.changes import ChangedFile, ChangeKind
from .repo.config import RepoConfig
from .repo.snapshot import FileSource

logger = logging.getLogger(__name__)

ChunkT = TypeVar("ChunkT", CodeChunk, DocChunk)


@dataclass
class SkippedFile:
    """A changed file that could not be processed."""

    path: str
    reason: str


@dataclass
class ScanResult:
    """Outcome of a scan: drift events plus what was extracted and skipped."""

    events: List[DriftEvent] = field(default_factory=list)
    skipped: List[SkippedFile] = field(default_factory=list)
    code_chunks: List[CodeChunk] = field(default_factory=list)  # current code of changed files
    doc_chunks: List[DocChunk] = field(default_factory=list)  # current docs of changed files


class DriftScanner:
    """Extract, embed and compare the changed files between two snapshots."""

    def __init__(
        self,
        config: Optional[RepoConfig] = None,
        code_extractor: Optional[CodeExtractor] = None,
        doc_extractor: Optional[DocExtractor] = None,
        embeddings: Optional[EmbeddingProvider] = None,
    ):
        """Initialize scanner.

        Args:
            config: Repository configuration
            code_extractor: Code extractor (created on demand if omitted)
            doc_extractor: Documentation extractor (created on demand if omitted)
            embeddings: Embedding provider; without one no similarity is computed
                and only rules that need no related chunks can fire
        """
        self.config = config or RepoConfig()
        self.code_extractor = code_extractor or CodeExtractor()
        self.doc_extractor = doc_extractor or DocExtractor(min_section_length=self.config.min_section_length)
        self.embeddings = embeddings
        self.detector = DriftDetector(self.config.to_drift_config())

    async def scan(
        self,
        changed_files: Sequence[ChangedFile],
        old_source: FileSource,
        new_source: FileSource,
        context_docs: Sequence[DocChunk] = (),
        context_code: Sequence[CodeChunk] = (),
    ) -> ScanResult:
        """Detect drift introduced by a set of changed files.

        Args:
            changed_files: Files changed between the two snapshots
            old_source: Reader for the previous snapshot
            new_source: Reader for the current snapshot
            context_docs: Doc chunks of unchanged files to relate code changes to
            context_code: Code chunks of unchanged files to relate doc changes to

        Returns:
            Events sorted by severity (highest first), skipped files and the
            current chunks of the changed files
        """
        result = ScanResult()
        old_code: List[CodeChunk] = []
        new_code: List[CodeChunk] = []
        old_docs: List[DocChunk] = []
        new_docs: List[DocChunk] = []

        for changed in changed_files:
            if self.config.should_ignore(changed.path):
                logger.debug(f"Ignoring {changed.path}")
                continue

            if changed.is_code:
                extracted = self._extract_pair(changed, old_source, new_source, self.code_extractor.extract, result)
                if extracted is not None:
                    old_code.extend(extracted[0])
                    new_code.extend(extracted[1])
            elif changed.is_documentation:
                if not is_documentation_file(changed.path):
                    result.skipped.append(SkippedFile(changed.path, "unsupported documentation format"))
                    logger.warning(f"Skipping {changed.path}: unsupported documentation format")
                    continue
                extracted = self._extract_pair(changed, old_source, new_source, self.doc_extractor.extract, result)
                if extracted is not None:
                    old_docs.extend(extracted[0])
                    new_docs.extend(extracted[1])

        old_code = await self._embed(old_code, embed_code_chunks)
        new_code = await self._embed(new_code, embed_code_chunks)
        old_docs = await self._embed(old_docs, embed_doc_chunks)
        new_docs = await self._embed(new_docs, embed_doc_chunks)
        context_docs = await self._embed(list(context_docs), embed_doc_chunks)
        context_code = await self._embed(list(context_code), embed_code_chunks)

        # Changed chunks take precedence over stale context with the same id
        all_docs = list({**index_by_id(context_docs), **index_by_id(new_docs)}.values())
        all_code = list({**index_by_id(context_code), **index_by_id(new_code)}.values())

        code_events = self.detector.detect_code_drift(index_by_id(old_code), index_by_id(new_code), all_docs)
        doc_events = self.detector.detect_doc_drift(index_by_id(old_docs), index_by_id(new_docs), all_code)

        events = deduplicate_events(code_events + doc_events)
        result.events = sorted(events, key=lambda event: event.severity, reverse=True)
        result.code_chunks = new_code
        result.doc_chunks = new_docs

        logger.info(
            f"Scan complete: {len(result.events)} drift events from {len(changed_files)} changed files "
            f"({len(result.skipped)} skipped)"
        )
        for skipped in result.skipped:
            logger.warning(f"  - skipped {skipped.path}: {skipped.reason}")

        return result

    def _extract_pair(
        self,
        changed: ChangedFile,
        old_source: FileSource,
        new_source: FileSource,
        extract: Callable[[str, str], List[ChunkT]],
        result: ScanResult,
    ) -> Optional[Tuple[List[ChunkT], List[ChunkT]]]:
        """Extract the old and new chunks of one file, or record it as skipped."""
        old_content = None if changed.kind == ChangeKind.ADDED else old_source.read_file(changed.previous_path)
        new_content = None if changed.kind == ChangeKind.DELETED else new_source.read_file(changed.path)

        # Old content is keyed by the current path so renamed symbols keep their ids
        try:
            old_chunks = extract(changed.path, old_content) if old_content is not None else []
            new_chunks = extract(changed.path, new_content) if new_content is not None else []
        except ExtractError as e:
            logger.warning(f"Skipping {changed.path}: {e}")
            result.skipped.append(SkippedFile(changed.path, str(e)))
            return None

        return old_chunks, new_chunks

    async def _embed(
        self,
        chunks: List[ChunkT],
        embed: Callable[[EmbeddingProvider, Sequence[ChunkT]], Awaitable[List[ChunkT]]],
    ) -> List[ChunkT]:
        """Embed chunks that do not carry an embedding yet."""
        if self.embeddings is None:
            return chunks

        missing = [i for i, chunk in enumerate(chunks) if not chunk.embedding]
        if not missing:
            return chunks

        embedded = await embed(self.embeddings, [chunks[i] for i in missing])
        result = list(chunks)
        for i, chunk in zip(missing, embedded):
            result[i] = chunk

        failed = sum(1 for chunk in embedded if not chunk.embedding)
        if failed:
            logger.warning(f"{failed}/{len(missing)} chunks have no embedding and cannot be related")
        return result
