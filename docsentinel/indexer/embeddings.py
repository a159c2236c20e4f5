"""Embedding providers for code and documentation chunks."""

import asyncio
import json
import logging
import math
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

import blake3
import httpx

from ..extract.models import CodeChunk, DocChunk

logger = logging.getLogger(__name__)

# Output sizes of common Ollama embedding models
MODEL_DIMENSIONS = {
    "nomic-embed-text": 768,
    "mxbai-embed-large": 1024,
    "all-minilm": 384,
}

_TOKEN_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*|[0-9]+")


class EmbeddingProvider(Protocol):
    """Turns texts into fixed-size vectors."""

    async def embed_batch(self, texts: List[str]) -> List[Optional[List[float]]]:
        """Embed texts in order; a failed text yields None."""
        ...

    def dimension(self) -> int:
        ...


class OllamaEmbeddings:
    """Generate embeddings using Ollama's local embedding models."""

    def __init__(
        self,
        host: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        cache_dir: Optional[Path] = None,
        batch_size: int = 32,
        max_concurrent: int = 4,
        max_tokens: int = 2048,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama embeddings client.

        Args:
            host: Ollama API host URL
            model: Name of the embedding model to use
            cache_dir: Directory for caching embeddings (None to disable)
            batch_size: Number of texts to process per batch
            max_concurrent: Maximum concurrent requests to Ollama
            max_tokens: Maximum token length for model (default: 2048 for nomic-embed-text)
            max_retries: Attempts per text on server errors
            retry_delay: Base delay in seconds for exponential backoff
            transport: Custom httpx transport (used in tests)
        """
        self.host = host.rstrip("/")
        self.model = model
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self.batch_size = batch_size
        self.max_concurrent = max_concurrent
        self.max_tokens = max_tokens
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._transport = transport
        self._dimension: Optional[int] = MODEL_DIMENSIONS.get(model.split(":")[0])
        self._client: Optional[httpx.AsyncClient] = None
        self._client_loop_id: Optional[int] = None
        self._semaphore: Optional[asyncio.Semaphore] = None

        if self.cache_dir:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Embedding cache enabled at: {self.cache_dir}")

        logger.info(f"Initialized Ollama embeddings with model: {model} (max_tokens: {max_tokens})")

    def dimension(self) -> int:
        """Vector size produced by the model.

        Known models report a fixed size; otherwise the size is learned from
        the first successful response.

        Raises:
            RuntimeError: If the size is not known yet
        """
        if self._dimension is None:
            raise RuntimeError(f"Embedding dimension of model '{self.model}' is not known until first use")
        return self._dimension

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create an httpx client for the current event loop."""
        loop_id = id(asyncio.get_running_loop())

        # Clients and semaphores are bound to the loop they were created in
        if self._client is None or self._client_loop_id != loop_id:
            self._client = httpx.AsyncClient(timeout=60.0, transport=self._transport)
            self._client_loop_id = loop_id
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
            logger.debug(f"Created new httpx client for event loop {loop_id}")

        return self._client

    def _get_cache_key(self, text: str) -> str:
        """Generate cache key for a text.

        Uses Blake3 hash of (model + text) so a model change invalidates the cache.
        """
        cache_input = f"{self.model}:{text}"
        return blake3.blake3(cache_input.encode()).hexdigest()

    def _get_cached_embedding(self, cache_key: str) -> Optional[List[float]]:
        if not self.cache_dir:
            return None

        cache_file = self.cache_dir / f"{cache_key}.json"
        if not cache_file.exists():
            return None

        try:
            with open(cache_file, "r") as f:
                data = json.load(f)
            logger.debug(f"Cache hit for key: {cache_key}")
            return data["embedding"]
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Error reading cache file {cache_file}: {e}")
            return None

    def _save_cached_embedding(self, cache_key: str, embedding: List[float]) -> None:
        if not self.cache_dir:
            return

        cache_file = self.cache_dir / f"{cache_key}.json"
        try:
            with open(cache_file, "w") as f:
                json.dump({"embedding": embedding}, f)
            logger.debug(f"Cached embedding for key: {cache_key}")
        except OSError as e:
            logger.warning(f"Error writing cache file {cache_file}: {e}")

    def _truncate_text(self, text: str) -> str:
        """Truncate text to fit within the model's token limit.

        Uses a conservative estimate of 3 characters per token with a 20% buffer.
        """
        max_chars = int(self.max_tokens * 3 * 0.8)

        if len(text) > max_chars:
            truncated = text[:max_chars]
            logger.warning(
                f"Truncated text from {len(text)} to {len(truncated)} chars "
                f"to fit {self.max_tokens} token limit (preview: {text[:100]}...)"
            )
            return truncated

        return text

    async def _embed_single(self, text: str) -> List[float]:
        """Generate embedding for a single text using Ollama API.

        Args:
            text: Text to generate embedding for

        Returns:
            Embedding vector

        Raises:
            httpx.HTTPError: If the API request fails after all retries
        """
        original_len = len(text)
        text = self._truncate_text(text)

        client = self._get_client()

        async with self._semaphore:
            for attempt in range(self.max_retries):
                try:
                    response = await client.post(
                        f"{self.host}/api/embeddings",
                        json={"model": self.model, "prompt": text},
                    )
                    response.raise_for_status()
                    embedding = response.json()["embedding"]
                    if self._dimension is None:
                        self._dimension = len(embedding)
                    return embedding
                except httpx.HTTPStatusError as e:
                    # Retry on 5xx (server overload) with exponential backoff
                    if e.response.status_code >= 500 and attempt < self.max_retries - 1:
                        wait_time = self.retry_delay * 2**attempt
                        logger.warning(
                            f"Ollama {e.response.status_code} error (attempt {attempt + 1}/{self.max_retries}), "
                            f"text_len={len(text)} (original={original_len}), retrying in {wait_time}s..."
                        )
                        await asyncio.sleep(wait_time)
                        continue
                    logger.error(
                        f"Ollama API error {e.response.status_code}: text_len={len(text)} "
                        f"(original={original_len}), preview: {text[:200]}..."
                    )
                    raise
                except httpx.HTTPError as e:
                    logger.error(f"Ollama API error: {e}")
                    raise
                except KeyError as e:
                    logger.error(f"Unexpected API response format: {e}")
                    raise

        raise RuntimeError("max_retries must be at least 1")

    async def _embed_uncached(self, texts: List[str], use_cache: bool) -> List[Optional[List[float]]]:
        """Generate embeddings for one batch of texts with caching.

        Failed texts yield None so one bad chunk does not sink the batch.

        Args:
            texts: Texts to embed
            use_cache: Whether to use cached embeddings

        Returns:
            Embedding vectors (or None) in input order
        """
        embeddings: List[Optional[List[float]]] = []
        pending: List[int] = []
        cache_keys = [self._get_cache_key(text) for text in texts]

        for i, text in enumerate(texts):
            cached = self._get_cached_embedding(cache_keys[i]) if use_cache else None
            embeddings.append(cached)
            if cached is None:
                pending.append(i)

        if not pending:
            return embeddings

        logger.info(f"Generating {len(pending)} embeddings ({len(texts) - len(pending)} cached)")

        generated = await asyncio.gather(*(self._embed_single(texts[i]) for i in pending), return_exceptions=True)

        failed_count = 0
        for i, result in zip(pending, generated):
            if isinstance(result, Exception):
                failed_count += 1
                logger.warning(f"Failed to generate embedding for text {i}: {result}")
                continue
            embeddings[i] = result
            if use_cache:
                self._save_cached_embedding(cache_keys[i], result)

        if failed_count > 0:
            logger.warning(f"{failed_count}/{len(pending)} embeddings failed, continuing with successful ones")

        return embeddings

    async def embed_batch(self, texts: List[str], use_cache: bool = True) -> List[Optional[List[float]]]:
        """Embed texts in batches of ``batch_size``.

        Args:
            texts: Texts to embed
            use_cache: Whether to use cached embeddings

        Returns:
            Embedding vectors (or None for failed texts) in input order
        """
        all_embeddings: List[Optional[List[float]]] = []
        for i in range(0, len(texts), self.batch_size):
            batch = texts[i : i + self.batch_size]
            logger.debug(f"Processing batch {i // self.batch_size + 1}")
            all_embeddings.extend(await self._embed_uncached(batch, use_cache))
        return all_embeddings

    async def health_check(self) -> bool:
        """Check if Ollama is reachable and the model is available."""
        try:
            client = self._get_client()
            response = await client.get(f"{self.host}/api/tags")
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Ollama health check failed: {e}")
            return False

        model_names = [m["name"] for m in response.json().get("models", [])]
        if self.model not in model_names and f"{self.model}:latest" not in model_names:
            logger.warning(f"Model '{self.model}' not found in Ollama. Available models: {model_names}")
            logger.info(f"Run: ollama pull {self.model}")
            return False

        logger.info(f"Ollama health check passed. Model '{self.model}' is available.")
        return True

    def get_cache_stats(self) -> Dict[str, Any]:
        if not self.cache_dir:
            return {"enabled": False}

        cache_files = list(self.cache_dir.glob("*.json"))
        total_size = sum(f.stat().st_size for f in cache_files)

        return {
            "enabled": True,
            "cache_dir": str(self.cache_dir),
            "cached_embeddings": len(cache_files),
            "total_size_bytes": total_size,
        }

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class HashEmbeddings:
    """Deterministic bag-of-tokens embeddings that need no model server.

    Each identifier-like token is hashed into one of ``dim`` buckets and
    the counts are L2-normalized, so texts sharing vocabulary score high.
    """

    def __init__(self, dim: int = 256):
        self.dim = dim

    def dimension(self) -> int:
        return self.dim

    def embed_text(self, text: str) -> List[float]:
        vector = [0.0] * self.dim
        for token in _TOKEN_RE.findall(text.lower()):
            digest = blake3.blake3(token.encode("utf-8")).digest()
            vector[int.from_bytes(digest[:4], "little") % self.dim] += 1.0

        norm = math.sqrt(sum(x * x for x in vector))
        if norm == 0.0:
            return vector
        return [x / norm for x in vector]

    async def embed_batch(self, texts: List[str]) -> List[Optional[List[float]]]:
        return [self.embed_text(text) for text in texts]


async def embed_code_chunks(provider: EmbeddingProvider, chunks: Sequence[CodeChunk]) -> List[CodeChunk]:
    """Attach embeddings to code chunks; chunks whose embedding failed are returned unchanged."""
    vectors = await provider.embed_batch([chunk.embedding_text() for chunk in chunks])
    return [chunk.with_embedding(vector) if vector else chunk for chunk, vector in zip(chunks, vectors)]


async def embed_doc_chunks(provider: EmbeddingProvider, chunks: Sequence[DocChunk]) -> List[DocChunk]:
    """Attach embeddings to doc chunks; chunks whose embedding failed are returned unchanged."""
    vectors = await provider.embed_batch([chunk.embedding_text() for chunk in chunks])
    return [chunk.with_embedding(vector) if vector else chunk for chunk, vector in zip(chunks, vectors)]
