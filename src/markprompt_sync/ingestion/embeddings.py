"""Embedding backends: local sentence-transformers or an OpenAI-compatible API."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from markprompt_sync.config import Settings, get_settings
from markprompt_sync.errors import EmbeddingError, QuotaExceededError
from markprompt_sync.observability.metrics import EMBEDDING_REQUESTS, EMBEDDING_TOKENS

logger = structlog.get_logger()


@dataclass
class EmbeddingResult:
    """Vectors for a batch of texts, in input order."""

    vectors: list[list[float]]
    token_counts: list[int] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        return sum(self.token_counts)


class Embedder(ABC):
    """Abstract embedding backend."""

    name: str = "embedder"
    model: str = ""

    @abstractmethod
    async def embed(self, texts: list[str]) -> EmbeddingResult:
        """Embed a batch of texts."""
        pass

    @abstractmethod
    def count_tokens(self, text: str) -> int:
        pass


class _TiktokenCounter:
    """Lazily loaded cl100k_base tokenizer."""

    def __init__(self):
        self._encoding = None

    def count(self, text: str) -> int:
        if self._encoding is None:
            import tiktoken

            self._encoding = tiktoken.get_encoding("cl100k_base")
        return len(self._encoding.encode(text))


class SentenceTransformerEmbedder(Embedder):
    """
    Local embeddings with sentence-transformers.

    Vectors are normalized so cosine similarity is a dot product.
    """

    name = "local"

    def __init__(
        self,
        settings: Settings | None = None,
        model_name: str | None = None,
        batch_size: int | None = None,
    ):
        settings = settings or get_settings()
        self.model = model_name or settings.embedding_model
        self.batch_size = batch_size or settings.embedding_batch_size
        self._model = None
        self._tokens = _TiktokenCounter()

    def _get_model(self):
        """Lazy load the embedding model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(self.model)
        return self._model

    def _encode(self, texts: list[str]):
        # Runs in a worker thread, first model load included.
        return self._get_model().encode(
            texts,
            batch_size=self.batch_size,
            normalize_embeddings=True,
            show_progress_bar=False,
        )

    async def embed(self, texts: list[str]) -> EmbeddingResult:
        if not texts:
            return EmbeddingResult(vectors=[])

        try:
            embeddings = await asyncio.to_thread(self._encode, texts)
        except Exception as e:
            EMBEDDING_REQUESTS.labels(backend=self.name, status="error").inc()
            raise EmbeddingError(f"Local embedding failed: {e}") from e

        token_counts = [self.count_tokens(text) for text in texts]
        EMBEDDING_REQUESTS.labels(backend=self.name, status="success").inc()
        EMBEDDING_TOKENS.labels(backend=self.name).inc(sum(token_counts))
        return EmbeddingResult(
            vectors=[vector.tolist() for vector in embeddings],
            token_counts=token_counts,
        )

    def count_tokens(self, text: str) -> int:
        return self._tokens.count(text)


class OpenAIEmbedder(Embedder):
    """
    Embeddings from an OpenAI-compatible ``/embeddings`` endpoint.

    Transient failures (network errors, 5xx, rate limiting) are retried with
    exponential backoff. A 429 carrying ``insufficient_quota`` is not
    transient and raises QuotaExceededError immediately.
    """

    name = "openai"

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        wait_multiplier: float = 1.0,
    ):
        settings = settings or get_settings()
        self.model = settings.openai_embedding_model
        self.api_base = settings.openai_api_base.rstrip("/")
        self.api_key = settings.openai_api_key
        self.max_attempts = settings.embedding_max_attempts
        self.timeout = settings.http_timeout_seconds
        self.wait_multiplier = wait_multiplier
        self._client = client
        self._tokens = _TiktokenCounter()

    def _get_headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def embed(self, texts: list[str]) -> EmbeddingResult:
        if not texts:
            return EmbeddingResult(vectors=[])

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.wait_multiplier, min=0, max=30),
            retry=retry_if_exception_type(EmbeddingError),
            reraise=True,
        ):
            with attempt:
                return await self._request(texts)

    async def _request(self, texts: list[str]) -> EmbeddingResult:
        payload = {"input": texts, "model": self.model}
        try:
            if self._client is not None:
                response = await self._client.post(
                    f"{self.api_base}/embeddings", json=payload, headers=self._get_headers()
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        f"{self.api_base}/embeddings", json=payload, headers=self._get_headers()
                    )
        except httpx.HTTPError as e:
            EMBEDDING_REQUESTS.labels(backend=self.name, status="error").inc()
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        if response.status_code == 429 and _is_insufficient_quota(response):
            EMBEDDING_REQUESTS.labels(backend=self.name, status="quota_exceeded").inc()
            raise QuotaExceededError("Embedding provider quota exceeded")

        if response.status_code == 429 or response.status_code >= 500:
            EMBEDDING_REQUESTS.labels(backend=self.name, status="error").inc()
            logger.warning(
                "embedding_request_retryable",
                status_code=response.status_code,
                model=self.model,
            )
            raise EmbeddingError(f"Embedding provider returned {response.status_code}")

        if response.status_code != 200:
            EMBEDDING_REQUESTS.labels(backend=self.name, status="error").inc()
            # Client errors are not retried.
            raise ValueError(
                f"Embedding provider returned {response.status_code}: {response.text[:500]}"
            )

        body = response.json()
        data = sorted(body["data"], key=lambda item: item.get("index", 0))
        token_counts = [self.count_tokens(text) for text in texts]

        EMBEDDING_REQUESTS.labels(backend=self.name, status="success").inc()
        EMBEDDING_TOKENS.labels(backend=self.name).inc(
            body.get("usage", {}).get("total_tokens", sum(token_counts))
        )
        return EmbeddingResult(
            vectors=[item["embedding"] for item in data],
            token_counts=token_counts,
        )

    def count_tokens(self, text: str) -> int:
        return self._tokens.count(text)


def _is_insufficient_quota(response: httpx.Response) -> bool:
    try:
        error = response.json().get("error") or {}
    except ValueError:
        return False
    return error.get("code") == "insufficient_quota" or error.get("type") == "insufficient_quota"


def get_embedder(settings: Settings | None = None) -> Embedder:
    """Build the embedder selected by configuration."""
    settings = settings or get_settings()
    if settings.embedding_backend == "openai":
        return OpenAIEmbedder(settings)
    return SentenceTransformerEmbedder(settings)
