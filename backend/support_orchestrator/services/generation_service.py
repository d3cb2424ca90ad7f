"""
Language generation service.
Thin async client over the OpenAI chat completions API.
"""
import logging
from typing import Dict, List, Optional

import openai
from openai import AsyncOpenAI

from ..config import Settings, settings as default_settings
from ..exceptions import GenerationError
from ..tools.tool_call_wrapper import (
    CircuitBreakerConfig,
    ExternalCallError,
    ExternalCallTimeoutError,
    RetryConfig,
    call_with_resilience
)

logger = logging.getLogger(__name__)


class GenerationService:
    """
    Chat-completion client with timeout, retries and a circuit breaker.

    ``generate`` either returns text or raises GenerationError; callers
    decide how to degrade.
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        settings: Optional[Settings] = None
    ):
        self.settings = settings or default_settings
        self.client = client or AsyncOpenAI(
            api_key=self.settings.get_openai_api_key(),
            base_url=self.settings.openai_base_url,
            max_retries=0
        )
        self.model = self.settings.generation_model
        self.retry_config = RetryConfig(
            max_attempts=self.settings.generation_retry_attempts,
            retry_exceptions=(
                ExternalCallTimeoutError,
                openai.APIConnectionError,
                openai.RateLimitError
            )
        )
        self.breaker_config = CircuitBreakerConfig(
            fail_max=self.settings.circuit_breaker_fail_max,
            reset_timeout=self.settings.circuit_breaker_reset_seconds
        )

        logger.info(f"GenerationService initialized (model={self.model})")

    async def _complete(
        self,
        messages: List[Dict[str, str]],
        max_tokens: int,
        temperature: float
    ) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature
        )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise GenerationError("Generation service returned an empty response")
        return content.strip()

    async def generate(
        self,
        messages: List[Dict[str, str]],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        session_id: Optional[str] = None
    ) -> str:
        """
        Generate a reply for a chat message list.

        Args:
            messages: OpenAI-style ``{"role", "content"}`` messages
            max_tokens: Completion token limit
            temperature: Sampling temperature

        Raises:
            GenerationError: On timeout, API failure or open circuit
        """
        try:
            return await call_with_resilience(
                "generation",
                "complete",
                self._complete,
                messages,
                max_tokens or self.settings.generation_max_tokens,
                self.settings.generation_temperature if temperature is None else temperature,
                timeout=self.settings.generation_timeout,
                retry_config=self.retry_config,
                breaker_config=self.breaker_config,
                session_id=session_id
            )
        except GenerationError:
            raise
        except (ExternalCallError, openai.OpenAIError) as e:
            raise GenerationError(f"Generation failed: {e}") from e

    async def complete(self, prompt: str, max_tokens: Optional[int] = None) -> str:
        """Single-prompt convenience wrapper around :meth:`generate`."""
        return await self.generate([{"role": "user", "content": prompt}], max_tokens=max_tokens)

    async def close(self) -> None:
        await self.client.close()


__all__ = ['GenerationService']
