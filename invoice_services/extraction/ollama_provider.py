"""Ollama-based extraction provider for self-hosted LLM inference.

Uses a local Ollama server in JSON output mode. Supports data sovereignty
requirements by running entirely on-premises.

See: https://ollama.ai/
"""

import logging

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from invoice_services.extraction.base import ExtractionProvider, ExtractionResult
from invoice_services.extraction.prompts import INVOICE_SYSTEM_PROMPT, build_update_prompt
from invoice_services.shared.config import Settings

logger = logging.getLogger(__name__)


class OllamaExtractionProvider(ExtractionProvider):
    """Ollama-based extraction provider.

    Supports models like Qwen2.5, Llama3, Mistral.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize Ollama extraction provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._base_url = settings.ollama_base_url
        self._model = settings.ollama_model
        self._client = httpx.AsyncClient(timeout=120.0)  # LLMs can be slow

    @property
    def provider_name(self) -> str:
        return "ollama"

    def is_available(self) -> bool:
        """Check if Ollama server is running and model is available.

        Returns:
            True if Ollama server responds and model is loaded
        """
        try:
            response = httpx.get(f"{self._base_url}/api/tags", timeout=5.0)
            if response.status_code != 200:
                return False
            models = response.json().get("models", [])
            model_names = [m.get("name", "").split(":")[0] for m in models]
            return self._model.split(":")[0] in model_names
        except httpx.HTTPError:
            return False

    async def extract(self, raw_text: str) -> ExtractionResult:
        if not raw_text or not raw_text.strip():
            raise ValueError("Empty invoice content provided")
        return await self._generate(INVOICE_SYSTEM_PROMPT, raw_text)

    async def update(self, current_content: str, description: str) -> ExtractionResult:
        return await self._generate(build_update_prompt(current_content), description)

    async def _generate(self, system: str, prompt: str) -> ExtractionResult:
        """Call Ollama's generate endpoint with retry logic for transient errors.

        Raises:
            httpx.HTTPError: After all retry attempts exhausted
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(httpx.HTTPError),
            wait=wait_exponential_jitter(initial=1, max=30),
            stop=stop_after_attempt(self.settings.extraction_max_attempts),
            reraise=True,
        ):
            with attempt:
                response = await self._client.post(
                    f"{self._base_url}/api/generate",
                    json={
                        "model": self._model,
                        "system": system,
                        "prompt": prompt,
                        "stream": False,
                        "format": "json",
                        "options": {
                            "temperature": 0,  # Deterministic output
                            "num_predict": 2048,
                        },
                    },
                )
                response.raise_for_status()

        data = response.json()
        logger.debug(f"Ollama generate returned {data.get('eval_count', 0)} tokens")
        return self._result(
            data.get("response", ""),
            data.get("prompt_eval_count", 0),
            data.get("eval_count", 0),
        )
