"""
Embedding service for vector search.
Wraps the OpenAI embeddings API with a TTL cache and deadlines.
"""
import hashlib
import logging
from typing import List, Optional

from cachetools import TTLCache
from openai import AsyncOpenAI

from ..config import Settings, settings as default_settings
from ..tools.tool_call_wrapper import CircuitBreakerConfig, call_with_resilience

logger = logging.getLogger(__name__)


class EmbeddingService:
    """
    Centralized service for generating embeddings.

    Repeat queries are served from an in-process TTL cache keyed by
    model and text hash.
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        settings: Optional[Settings] = None
    ):
        """
        Initialize embedding service.

        Args:
            client: Pre-built OpenAI client (defaults to one built from settings)
            settings: Application settings
        """
        self.settings = settings or default_settings
        self.client = client or AsyncOpenAI(
            api_key=self.settings.get_openai_api_key(),
            base_url=self.settings.openai_base_url
        )
        self.model_name = self.settings.embedding_model
        self.timeout = self.settings.embedding_timeout
        self.breaker_config = CircuitBreakerConfig(
            fail_max=self.settings.circuit_breaker_fail_max,
            reset_timeout=self.settings.circuit_breaker_reset_seconds
        )

        self.cache: Optional[TTLCache] = None
        if self.settings.embedding_cache_size > 0:
            self.cache = TTLCache(
                maxsize=self.settings.embedding_cache_size,
                ttl=self.settings.embedding_cache_ttl
            )

        logger.info(f"Embedding service initialized with model: {self.model_name}")

    def _cache_key(self, text: str) -> str:
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
        return f"{self.model_name}:{digest}"

    async def embed(self, text: str) -> List[float]:
        """
        Embed a single text.

        Raises:
            ExternalCallTimeoutError: If the API does not answer in time
            CircuitOpenError: After repeated failures
            openai.OpenAIError: On API failure
        """
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed several texts, fetching only cache misses from the API."""
        results: List[Optional[List[float]]] = [None] * len(texts)
        missing = []

        for index, text in enumerate(texts):
            cached = self.cache.get(self._cache_key(text)) if self.cache is not None else None
            if cached is not None:
                results[index] = cached
            else:
                missing.append(index)

        if missing:
            response = await call_with_resilience(
                "embedding",
                "embed",
                self.client.embeddings.create,
                model=self.model_name,
                input=[texts[i] for i in missing],
                timeout=self.timeout,
                breaker_config=self.breaker_config
            )
            for index, item in zip(missing, response.data):
                results[index] = list(item.embedding)
                if self.cache is not None:
                    self.cache[self._cache_key(texts[index])] = results[index]

        return results

    async def close(self) -> None:
        await self.client.close()


__all__ = ['EmbeddingService']
