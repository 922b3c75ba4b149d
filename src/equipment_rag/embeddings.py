"""Dense embedding generation via OpenAI.

Documents are embedded in fixed-size batches issued sequentially, one
request in flight at a time, to stay under provider rate limits. Rate limit
errors are retried with exponential backoff; any other provider failure
surfaces as EmbeddingServiceError.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from openai import APIError, AsyncOpenAI, RateLimitError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.equipment_rag.config import EquipmentRAGConfig
from src.equipment_rag.errors import EmbeddingServiceError

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Generates dense embeddings for chunks and queries.

    Args:
        config: Configuration with API key, model and batch settings.
    """

    def __init__(self, config: EquipmentRAGConfig) -> None:
        self._config = config
        self._openai = AsyncOpenAI(api_key=config.openai_api_key)
        self._model = config.embedding_model
        self._dimensions = config.embedding_dimensions
        self.batch_size = config.embedding_batch_size

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single search query."""
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts in one request.

        Args:
            texts: Input texts to embed.

        Returns:
            One vector per input text, in input order.

        Raises:
            EmbeddingServiceError: If the provider fails after retries.
        """
        if not texts:
            return []
        try:
            return await self._create(texts)
        except (RateLimitError, APIError) as exc:
            logger.error("Embedding request failed for %d texts: %s", len(texts), exc)
            raise EmbeddingServiceError(f"Embedding service failed: {exc}") from exc

    async def iter_batches(
        self, texts: list[str], batch_size: int | None = None
    ) -> AsyncIterator[tuple[int, int, list[list[float]]]]:
        """Embed texts batch by batch, yielding after each request.

        Yields:
            Tuples of (batch_number starting at 1, total_batches, vectors).
        """
        size = batch_size or self.batch_size
        total = (len(texts) + size - 1) // size
        for index in range(total):
            batch = texts[index * size : (index + 1) * size]
            vectors = await self.embed_batch(batch)
            yield index + 1, total, vectors

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(RateLimitError),
        reraise=True,
    )
    async def _create(self, texts: list[str]) -> list[list[float]]:
        response = await self._openai.embeddings.create(
            input=texts,
            model=self._model,
            dimensions=self._dimensions,
        )
        return [item.embedding for item in response.data]
