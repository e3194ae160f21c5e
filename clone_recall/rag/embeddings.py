from __future__ import annotations

"""Embedding providers, the embedding service, and configuration validation."""

import asyncio
import hashlib
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

from openai import AsyncOpenAI, OpenAIError

from clone_recall.loaders.chunking import split_text
from clone_recall.rag.errors import (
    ConfigurationError,
    DimensionMismatchError,
    ProviderError,
    RecallError,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "text-embedding-3-small"
# text-embedding-3-small accepts 8191 tokens; one char per token is the worst case.
DEFAULT_MAX_CHARS = 5000
DEFAULT_BATCH_SIZE = 100
DEFAULT_LONG_TEXT_MAX_CHARS = 30000
DEFAULT_RETRY_CHARS = 3000
EMPTY_TEXT_MESSAGE = "Cannot generate embedding for empty text after sanitization"

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_INVISIBLE_RE = re.compile("[\ufeff\u200b-\u200d\u2060]")
_WHITESPACE_RE = re.compile(r"\s+")


class EmbeddingError(ProviderError):
    """Raised when a provider returns an unusable embedding."""
    pass


@dataclass(frozen=True)
class ProviderEmbedding:
    """Raw provider output for one call."""
    vectors: list[list[float]]
    token_usage: int = 0


@dataclass(frozen=True)
class EmbeddingResult:
    """Embedding vector with the model and token usage that produced it."""
    embedding: list[float]
    model: str
    token_usage: int = 0


class EmbeddingProvider(Protocol):
    """Protocol for embedding providers."""
    model: str
    dimension: int

    async def embed_texts(self, texts: list[str]) -> ProviderEmbedding:
        """Return one vector per input text, in input order."""
        raise NotImplementedError


def sanitize_text(text: Any) -> str:
    """Strip control and zero-width characters and collapse whitespace."""
    if text is None:
        raise ValidationError("Text is required for embedding")
    if not isinstance(text, str):
        raise ValidationError(f"Expected text for embedding, got {type(text).__name__}")
    cleaned = _CONTROL_RE.sub("", text)
    cleaned = _INVISIBLE_RE.sub("", cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    if not cleaned:
        raise ValidationError(EMPTY_TEXT_MESSAGE)
    return cleaned


def truncate_text(text: str, max_chars: int = DEFAULT_MAX_CHARS) -> str:
    """Cut text to the character budget, marking the cut with an ellipsis."""
    if len(text) <= max_chars:
        return text
    if max_chars <= 3:
        return text[:max_chars]
    return text[: max_chars - 3] + "..."


def validate_vector(vector: list[float], dimension: int) -> list[float]:
    """Validate and normalize embedding vectors."""
    if dimension > 0 and len(vector) != dimension:
        raise EmbeddingError(
            f"Embedding dimension mismatch: expected {dimension}, got {len(vector)}"
        )
    cleaned: list[float] = []
    for value in vector:
        if not isinstance(value, (int, float)):
            raise EmbeddingError("Embedding contains a non-numeric value")
        if not math.isfinite(value):
            raise EmbeddingError("Embedding contains a non-finite value")
        cleaned.append(float(value))
    return cleaned


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Compute cosine similarity between two equal-length vectors."""
    if len(a) != len(b):
        raise DimensionMismatchError(
            f"Cannot compare vectors of length {len(a)} and {len(b)}"
        )
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def mean_vector(vectors: Sequence[Sequence[float]]) -> list[float]:
    """Average vectors per dimension.

    Uniform pooling drops position and importance information; it is kept
    because it tolerates any subset of chunks failing.
    """
    if not vectors:
        raise ValidationError("At least one vector is required")
    dimension = len(vectors[0])
    for vector in vectors:
        if len(vector) != dimension:
            raise DimensionMismatchError(
                f"Cannot average vectors of length {dimension} and {len(vector)}"
            )
    count = float(len(vectors))
    return [sum(vector[idx] for vector in vectors) / count for idx in range(dimension)]


@dataclass
class HashEmbedder:
    """Deterministic hash-based embedder for testing or offline use."""
    dimension: int = 256
    model: str = "hash"

    async def embed_texts(self, texts: list[str]) -> ProviderEmbedding:
        """Embed texts using token hashing and L2 normalization."""
        vectors: list[list[float]] = []
        tokens_used = 0
        for text in texts:
            tokens = _TOKEN_RE.findall(text.lower())
            tokens_used += len(tokens)
            vectors.append(self._embed_tokens(tokens))
        return ProviderEmbedding(vectors=vectors, token_usage=tokens_used)

    def _embed_tokens(self, tokens: list[str]) -> list[float]:
        vector = [0.0] * self.dimension
        for token in tokens:
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            vector[digest[0] % self.dimension] += 1.0
        norm = math.sqrt(sum(value * value for value in vector))
        if norm:
            vector = [value / norm for value in vector]
        return validate_vector(vector, self.dimension)


def resolve_openai_dimension(model: str) -> int | None:
    """Return expected dimension for OpenAI embedding model."""
    mapping = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }
    return mapping.get(model)


@dataclass
class OpenAIEmbedder:
    """Embedding provider using the async OpenAI embeddings API."""
    api_key: str
    model: str = DEFAULT_OPENAI_MODEL
    dimension: int = 0
    timeout: float = 30.0
    max_retries: int = 2
    base_url: str | None = None
    client: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate OpenAI configuration and create a client."""
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for OpenAIEmbedder")
        if not self.model:
            raise ConfigurationError("EMBEDDING_MODEL is required for OpenAIEmbedder")
        resolved = resolve_openai_dimension(self.model)
        if self.dimension <= 0:
            if resolved is None:
                raise ConfigurationError(
                    "EMBEDDING_DIMENSION must be set for OpenAI embeddings when model is unknown"
                )
            self.dimension = resolved
        elif resolved is not None and self.dimension != resolved:
            raise ConfigurationError(
                f"EMBEDDING_DIMENSION should be {resolved} for model {self.model}"
            )
        self.client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=self.max_retries,
        )

    async def embed_texts(self, texts: list[str]) -> ProviderEmbedding:
        """Embed a list of texts with a single API call."""
        try:
            response = await self.client.embeddings.create(model=self.model, input=texts)
        except OpenAIError as exc:
            raise ProviderError(f"OpenAI embedding request failed: {exc}") from exc
        data = sorted(response.data, key=lambda item: item.index)
        vectors = [validate_vector(list(item.embedding), self.dimension) for item in data]
        usage = getattr(response, "usage", None)
        return ProviderEmbedding(
            vectors=vectors,
            token_usage=int(getattr(usage, "total_tokens", 0) or 0),
        )


@dataclass
class EmbeddingService:
    """Sanitizing, truncating, and batching front end to an embedding provider."""
    provider: EmbeddingProvider
    max_chars: int = DEFAULT_MAX_CHARS
    batch_size: int = DEFAULT_BATCH_SIZE
    batch_pause: float = 0.1
    long_text_max_chars: int = DEFAULT_LONG_TEXT_MAX_CHARS
    retry_chars: int = DEFAULT_RETRY_CHARS
    timeout: float | None = None

    @property
    def model(self) -> str:
        return self.provider.model

    @property
    def dimension(self) -> int:
        return self.provider.dimension

    async def embed(self, text: str) -> EmbeddingResult:
        """Embed one text; provider failures propagate to the caller."""
        prepared = truncate_text(sanitize_text(text), self.max_chars)
        response = await self._call([prepared])
        return EmbeddingResult(
            embedding=response.vectors[0],
            model=self.model,
            token_usage=response.token_usage,
        )

    async def embed_batch(self, texts: Sequence[str]) -> list[EmbeddingResult]:
        """Embed many texts in sequential provider-sized batches, keeping input order."""
        prepared = [truncate_text(sanitize_text(text), self.max_chars) for text in texts]

        results: list[EmbeddingResult] = []
        size = max(1, self.batch_size)
        for start in range(0, len(prepared), size):
            if start and self.batch_pause > 0:
                await asyncio.sleep(self.batch_pause)
            batch = prepared[start : start + size]
            response = await self._call(batch)
            per_item = response.token_usage // len(batch)
            results.extend(
                EmbeddingResult(embedding=vector, model=self.model, token_usage=per_item)
                for vector in response.vectors
            )
            logger.debug(
                "embedding_batch_complete",
                extra={"batch_start": start, "batch_size": len(batch)},
            )
        return results

    async def embed_long_text(self, text: str) -> EmbeddingResult:
        """Embed text of any length by mean-pooling per-chunk embeddings."""
        truncated = truncate_text(sanitize_text(text), self.long_text_max_chars)
        if len(truncated) <= self.max_chars:
            return await self.embed(truncated)

        pieces = [piece for piece in split_text(truncated, chunk_size=self.max_chars) if piece.strip()]
        vectors: list[list[float]] = []
        token_usage = 0
        for index, piece in enumerate(pieces):
            try:
                result = await self.embed(piece)
            except ProviderError as exc:
                logger.warning(
                    "long_text_chunk_retry",
                    extra={"chunk_index": index, "chunk_count": len(pieces), "error": str(exc)},
                )
                result = await self.embed(piece[: self.retry_chars])
            vectors.append(result.embedding)
            token_usage += result.token_usage
        logger.info(
            "long_text_embedded",
            extra={"chunk_count": len(vectors), "chars": len(truncated)},
        )
        return EmbeddingResult(embedding=mean_vector(vectors), model=self.model, token_usage=token_usage)

    async def _call(self, texts: list[str]) -> ProviderEmbedding:
        try:
            if self.timeout:
                response = await asyncio.wait_for(self.provider.embed_texts(texts), timeout=self.timeout)
            else:
                response = await self.provider.embed_texts(texts)
        except RecallError:
            raise
        except asyncio.TimeoutError as exc:
            raise ProviderError(f"Embedding provider timed out after {self.timeout}s") from exc
        except Exception as exc:
            raise ProviderError(f"Embedding provider failed: {exc}") from exc
        if len(response.vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding provider returned {len(response.vectors)} vectors for {len(texts)} inputs"
            )
        return response


@dataclass(frozen=True)
class EmbeddingConfigReport:
    """Validation report for embedding configuration."""
    provider: str
    model: str | None
    configured_dimension: int
    expected_dimension: int | None
    ok: bool
    status: str
    detail: str | None = None
    action: str | None = None


def build_embedding_config_report(
    provider: str, model: str | None, dimension: int
) -> EmbeddingConfigReport:
    """Build a validation report for embedding settings."""
    normalized = provider.lower().strip()

    if normalized in {"", "hash"}:
        if dimension <= 0:
            return EmbeddingConfigReport(
                provider="hash",
                model=None,
                configured_dimension=dimension,
                expected_dimension=None,
                ok=False,
                status="error",
                detail="EMBEDDING_DIMENSION must be greater than zero for hash embeddings.",
                action="Set EMBEDDING_DIMENSION to a positive integer.",
            )
        return EmbeddingConfigReport("hash", None, dimension, dimension, True, "ok")

    if normalized == "openai":
        resolved_model = model or DEFAULT_OPENAI_MODEL
        expected = resolve_openai_dimension(resolved_model)
        if expected is None:
            if dimension <= 0:
                return EmbeddingConfigReport(
                    provider="openai",
                    model=resolved_model,
                    configured_dimension=dimension,
                    expected_dimension=None,
                    ok=False,
                    status="error",
                    detail="EMBEDDING_DIMENSION must be set for the configured OpenAI model.",
                    action="Set EMBEDDING_DIMENSION based on the OpenAI model documentation.",
                )
            return EmbeddingConfigReport(
                provider="openai",
                model=resolved_model,
                configured_dimension=dimension,
                expected_dimension=None,
                ok=True,
                status="warning",
                detail="Model dimension cannot be auto-validated. Confirm EMBEDDING_DIMENSION manually.",
            )
        if dimension > 0 and dimension != expected:
            return EmbeddingConfigReport(
                provider="openai",
                model=resolved_model,
                configured_dimension=dimension,
                expected_dimension=expected,
                ok=False,
                status="error",
                detail="EMBEDDING_DIMENSION does not match the model; stored vectors would be incompatible.",
                action=f"Set EMBEDDING_DIMENSION to {expected} or reindex into a new collection.",
            )
        return EmbeddingConfigReport("openai", resolved_model, dimension, expected, True, "ok")

    return EmbeddingConfigReport(
        provider=normalized,
        model=model,
        configured_dimension=dimension,
        expected_dimension=None,
        ok=False,
        status="error",
        detail="Unsupported embedding provider.",
        action="Set EMBEDDING_PROVIDER to hash or openai.",
    )
