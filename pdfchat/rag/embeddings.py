"""Embedding client for an OpenAI-compatible embeddings endpoint."""
import re
from typing import List, Optional

import httpx
import structlog

from pdfchat.errors import UpstreamError, ValidationError
from pdfchat.http_client import OpenAIHTTPClient

logger = structlog.get_logger()

# Upstream token limits; longer input is truncated, never rejected.
MAX_EMBEDDING_CHARS = 8000

_WHITESPACE = re.compile(r"\s+")


def prepare_text(text: str) -> str:
    """Collapse whitespace and truncate to MAX_EMBEDDING_CHARS."""
    text = _WHITESPACE.sub(" ", text or "").strip()
    return text[:MAX_EMBEDDING_CHARS]


class EmbeddingClient(OpenAIHTTPClient):
    """Converts text to vectors. No retries: a failed call surfaces immediately."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-ada-002",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        batch_timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the embedding client.

        Args:
            api_key: Provider API key
            model: Embedding model name
            base_url: API base URL
            timeout: Timeout for single-text requests
            batch_timeout: Timeout for batch requests
            transport: Optional httpx transport
        """
        super().__init__(api_key=api_key, base_url=base_url, timeout=timeout, transport=transport)
        self.model = model
        self.batch_timeout = batch_timeout

    async def embed(self, text: str) -> List[float]:
        """Generate the embedding for one text.

        Args:
            text: Text to embed (normalized and truncated first)

        Returns:
            Embedding vector

        Raises:
            ValidationError: If the text is empty after normalization
            ConfigError: If the API key is missing
            TransportError: On network errors
            UpstreamError: On API errors or malformed responses
        """
        self._check_credentials()

        prepared = prepare_text(text)
        if not prepared:
            raise ValidationError("Empty text provided")

        logger.debug("embedding_request", model=self.model, text_length=len(prepared))

        data = await self.do_request(
            "POST",
            "/embeddings",
            json={"model": self.model, "input": prepared},
            default_error="Failed to generate embedding",
        )

        try:
            embedding = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise UpstreamError("Invalid embedding response") from e

        if not embedding:
            raise UpstreamError("Invalid embedding response")

        logger.debug("embedding_response", model=self.model, dimension=len(embedding))
        return embedding

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for several texts in one request.

        Texts that are empty after normalization are dropped, so the result
        may be shorter than the input.

        Args:
            texts: Texts to embed

        Returns:
            Embedding vectors in the order of the remaining texts

        Raises:
            ValidationError: If no non-empty text remains
            ConfigError: If the API key is missing
            TransportError: On network errors
            UpstreamError: On API errors or malformed responses
        """
        self._check_credentials()

        prepared = [p for p in (prepare_text(t) for t in texts) if p]
        if not prepared:
            raise ValidationError("No valid texts provided")

        logger.info("embedding_batch_request", model=self.model, batch_size=len(prepared))

        data = await self.do_request(
            "POST",
            "/embeddings",
            json={"model": self.model, "input": prepared},
            timeout=self.batch_timeout,
            default_error="Failed to generate embeddings",
        )

        items = data.get("data")
        if not isinstance(items, list) or len(items) != len(prepared):
            raise UpstreamError("Invalid embeddings response")

        # The API may return items out of order; 'index' is authoritative when present.
        items = sorted(items, key=lambda item: item.get("index", 0))
        try:
            return [item["embedding"] for item in items]
        except (KeyError, TypeError) as e:
            raise UpstreamError("Invalid embeddings response") from e
