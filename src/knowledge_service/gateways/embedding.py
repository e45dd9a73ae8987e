"""
Embedding gateways: text -> fixed-length vector.

Every adapter honours the same contract: ``embed`` never raises and returns
an empty list when the text is empty or generation fails. Callers treat an
empty vector as "no embedding" and degrade accordingly.
"""

import asyncio
import logging
import re
import threading
from typing import Any, Iterable, Protocol, runtime_checkable

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..config import EmbeddingSettings
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


def prepare_text(text: str | None, max_chars: int | None = None) -> str:
    """Collapse whitespace and truncate to ``max_chars``. Case is kept."""
    if not text:
        return ""
    processed = _WHITESPACE_RE.sub(" ", text).strip()
    if max_chars and len(processed) > max_chars:
        logger.warning(f"Text truncated to {max_chars} characters for embedding")
        processed = processed[:max_chars]
    return processed


def combine_fields(fields: Iterable[str | None], separator: str = " ", max_chars: int | None = None) -> str:
    """Join the non-blank fields, e.g. content, summary and tags, into one embedding input."""
    combined = separator.join(f.strip() for f in fields if f and f.strip())
    return prepare_text(combined, max_chars)


@runtime_checkable
class EmbeddingGateway(Protocol):
    """Protocol for pluggable embedding providers."""

    dimensions: int

    async def embed(self, text: str) -> list[float]:
        """Return the embedding for ``text``, or ``[]`` on empty input or failure."""


class NullEmbeddingGateway:
    """Embeddings disabled; semantic search always degrades to text search."""

    def __init__(self, dimensions: int = 384):
        self.dimensions = dimensions

    async def embed(self, text: str) -> list[float]:
        return []


class SentenceTransformerEmbedder:
    """Local sentence-transformers model, loaded lazily on first use."""

    def __init__(self, model_name: str, dimensions: int, max_chars: int | None = None):
        self.model_name = model_name
        self.dimensions = dimensions
        self.max_chars = max_chars
        self._model: Any = None
        # Thread-safe model loading (prevents loading the model twice)
        self._model_lock = threading.Lock()

    def _load_model(self) -> Any:
        if self._model is None:
            with self._model_lock:
                # Double-check after acquiring lock (another thread may have loaded it)
                if self._model is None:
                    from sentence_transformers import SentenceTransformer

                    logger.info(f"Loading embedding model: {self.model_name}")
                    self._model = SentenceTransformer(self.model_name)
                    logger.info(f"Loaded model: {self.model_name}")
        return self._model

    def _encode(self, text: str) -> list[float]:
        vector = self._load_model().encode(text, convert_to_tensor=False)
        values = vector.tolist() if hasattr(vector, "tolist") else list(vector)
        if len(values) != self.dimensions:
            raise ValueError(f"Model produced {len(values)} dimensions, expected {self.dimensions}")
        return values

    async def embed(self, text: str) -> list[float]:
        prepared = prepare_text(text, self.max_chars)
        if not prepared:
            return []
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._encode, prepared)
        except Exception as e:
            logger.warning(f"Embedding generation failed (non-fatal): {e.__class__.__name__}: {e}")
            return []


def _is_retryable_http_error(exception: BaseException) -> bool:
    if isinstance(exception, httpx.TransportError):
        return True
    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code == 429 or exception.response.status_code >= 500
    return False


class HttpEmbeddingGateway:
    """OpenAI-compatible ``/embeddings`` endpoint over httpx."""

    def __init__(
        self,
        api_url: str,
        model_name: str,
        dimensions: int,
        api_key: str | None = None,
        timeout_seconds: float = 10.0,
        max_chars: int | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url
        self.model_name = model_name
        self.dimensions = dimensions
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.max_chars = max_chars
        self._client = client

    @retry(
        retry=retry_if_exception(_is_retryable_http_error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _request(self, text: str) -> list[float]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {"model": self.model_name, "input": text}

        if self._client is not None:
            response = await self._client.post(self.api_url, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(self.api_url, json=payload, headers=headers)
        response.raise_for_status()

        data = response.json().get("data") or []
        if not data or not data[0].get("embedding"):
            raise ValueError("embedding response contained no vector")
        return [float(x) for x in data[0]["embedding"]]

    async def embed(self, text: str) -> list[float]:
        prepared = prepare_text(text, self.max_chars)
        if not prepared:
            return []
        try:
            vector = await self._request(prepared)
        except httpx.TimeoutException:
            logger.warning(f"Embedding request timeout after {self.timeout_seconds}s (non-fatal)")
            return []
        except httpx.HTTPStatusError as e:
            logger.warning(f"Embedding request HTTP error {e.response.status_code} (non-fatal)")
            return []
        except Exception as e:
            logger.warning(f"Embedding request failed (non-fatal): {type(e).__name__}: {e}")
            return []
        if len(vector) != self.dimensions:
            logger.warning(f"Embedding has {len(vector)} dimensions, expected {self.dimensions}; discarding")
            return []
        return vector


def create_embedding_gateway(embedding_settings: EmbeddingSettings) -> EmbeddingGateway:
    """Build the configured embedding adapter."""
    provider = embedding_settings.provider
    if provider == "sentence-transformers":
        return SentenceTransformerEmbedder(
            model_name=embedding_settings.model_name,
            dimensions=embedding_settings.dimensions,
            max_chars=embedding_settings.max_chars,
        )
    if provider == "http":
        return HttpEmbeddingGateway(
            api_url=embedding_settings.api_url,
            model_name=embedding_settings.model_name,
            dimensions=embedding_settings.dimensions,
            api_key=embedding_settings.api_key,
            timeout_seconds=embedding_settings.timeout_seconds,
            max_chars=embedding_settings.max_chars,
        )
    if provider == "none":
        logger.info("Embeddings disabled; semantic search will fall back to text search")
        return NullEmbeddingGateway(embedding_settings.dimensions)
    raise ConfigurationError(f"Unknown embedding provider: {provider!r}")
