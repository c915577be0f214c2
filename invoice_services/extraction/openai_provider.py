"""OpenAI-based extraction provider.

Uses the OpenAI chat completions API in JSON mode. Transient API errors
(connection problems, timeouts, rate limits, 5xx) are retried with
exponential backoff and jitter; anything else, or the last transient error,
propagates to the caller.
"""

import logging
import os

from openai import (
    APIConnectionError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    RateLimitError,
)
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from invoice_services.extraction.base import (
    ExtractionProvider,
    ExtractionResult,
    ProviderNotConfiguredError,
)
from invoice_services.extraction.prompts import INVOICE_SYSTEM_PROMPT, build_update_prompt
from invoice_services.shared.config import Settings

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (APIConnectionError, APITimeoutError, RateLimitError, InternalServerError)


class OpenAIExtractionProvider(ExtractionProvider):
    """OpenAI-based extraction provider.

    Requires OPENAI_API_KEY environment variable.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize OpenAI extraction provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._client: AsyncOpenAI | None = None

    @property
    def provider_name(self) -> str:
        return "openai"

    def is_available(self) -> bool:
        """Check if OpenAI API key is configured.

        Returns:
            True if OPENAI_API_KEY environment variable is set
        """
        return os.getenv("OPENAI_API_KEY") is not None

    def _get_client(self) -> AsyncOpenAI:
        api_key = os.getenv("OPENAI_API_KEY")
        if api_key is None:
            raise ProviderNotConfiguredError("OPENAI_API_KEY environment variable not set")
        if self._client is None or self._client.api_key != api_key:
            self._client = AsyncOpenAI(api_key=api_key)
        return self._client

    async def extract(self, raw_text: str) -> ExtractionResult:
        if not raw_text or not raw_text.strip():
            raise ValueError("Empty invoice content provided")
        return await self._complete(INVOICE_SYSTEM_PROMPT, raw_text)

    async def update(self, current_content: str, description: str) -> ExtractionResult:
        return await self._complete(build_update_prompt(current_content), description)

    async def _complete(self, system: str, prompt: str) -> ExtractionResult:
        """Run one JSON-mode chat completion with retry on transient errors.

        Args:
            system: System prompt
            prompt: User prompt

        Returns:
            ExtractionResult with the message text and reported usage
        """
        client = self._get_client()

        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            wait=wait_exponential_jitter(initial=1, max=60),
            stop=stop_after_attempt(self.settings.extraction_max_attempts),
            reraise=True,
        ):
            with attempt:
                response = await client.chat.completions.create(
                    model=self.settings.openai_model,
                    messages=[
                        {"role": "system", "content": system},
                        {"role": "user", "content": prompt},
                    ],
                    response_format={"type": "json_object"},
                    temperature=0,  # Deterministic output
                )

        text = response.choices[0].message.content or ""
        usage = response.usage
        logger.debug(f"OpenAI completion returned {len(text)} characters")
        return self._result(
            text,
            usage.prompt_tokens if usage else 0,
            usage.completion_tokens if usage else 0,
        )
