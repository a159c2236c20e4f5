#!/usr/bin/env python3
"""Standalone drift check - compares two snapshots of a repository and prints drift events as JSON."""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from docsentinel.extract.errors import ExtractError
from docsentinel.extract.grammars import is_documentation_file
from docsentinel.indexer.embeddings import HashEmbeddings, OllamaEmbeddings
from docsentinel.logging_config import configure_logging
from docsentinel.repo.config import ConfigError, RepoConfig
from docsentinel.repo.snapshot import DirectorySource, diff_snapshots
from docsentinel.scanner import DriftScanner

configure_logging()
logger = logging.getLogger(__name__)


def load_context(scanner: DriftScanner, source: DirectorySource, config: RepoConfig, changed_paths: set):
    """Extract chunks of unchanged files so changes can be related to them."""
    context_docs = []
    context_code = []
    for path in source.list_files():
        if path in changed_paths or config.should_ignore(path):
            continue
        content = source.read_file(path)
        if content is None:
            continue
        try:
            if is_documentation_file(path) and config.is_doc_file(path):
                context_docs.extend(scanner.doc_extractor.extract(path, content))
            elif config.is_code_file(path) and scanner.code_extractor.supports(path):
                context_code.extend(scanner.code_extractor.extract(path, content))
        except ExtractError as e:
            logger.warning(f"Skipping context file {path}: {e}")
    return context_docs, context_code


async def main():
    """Main drift check function."""
    old_path = Path(os.getenv("OLD_PATH", "/baseline"))
    workspace_path = Path(os.getenv("WORKSPACE_PATH", "/workspace"))
    use_ollama = os.getenv("USE_OLLAMA", "false").lower() == "true"

    for path in (old_path, workspace_path):
        if not path.exists():
            logger.error(f"Repository path does not exist: {path}")
            sys.exit(1)

    try:
        config = RepoConfig.load(workspace_path)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    logger.info(f"Comparing {old_path} -> {workspace_path}")

    if use_ollama:
        embeddings = OllamaEmbeddings(
            host=config.embedding_host,
            model=config.embedding_model,
            cache_dir=Path(config.embedding_cache_dir) if config.embedding_cache_dir else None,
            batch_size=config.batch_size,
            max_concurrent=config.max_concurrent,
        )
        if not await embeddings.health_check():
            logger.error("Ollama health check failed!")
            sys.exit(1)
    else:
        logger.info("Using offline hash embeddings")
        embeddings = HashEmbeddings()

    old_source = DirectorySource(old_path)
    new_source = DirectorySource(workspace_path)

    changed_files = diff_snapshots(old_path, workspace_path, config)
    if not changed_files:
        logger.info("No changes found")
        print("[]")
        return

    scanner = DriftScanner(config, embeddings=embeddings)
    context_docs, context_code = load_context(scanner, new_source, config, {c.path for c in changed_files})

    try:
        result = await scanner.scan(changed_files, old_source, new_source, context_docs, context_code)
    finally:
        if isinstance(embeddings, OllamaEmbeddings):
            await embeddings.close()

    logger.info("=" * 80)
    logger.info("Drift Check Complete!")
    logger.info(f"Changed files: {len(changed_files)}")
    logger.info(f"Skipped files: {len(result.skipped)}")
    logger.info(f"Drift events: {len(result.events)}")
    logger.info("=" * 80)

    print(json.dumps([event.to_dict() for event in result.events], indent=2))


if __name__ == "__main__":
    asyncio.run(main())
