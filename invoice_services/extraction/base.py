"""Abstract base class for extraction providers.

A provider turns free invoice text into model output text (expected to be JSON
in the invoice shape, or ``{"error": ...}`` for non-invoices) and applies
change descriptions to existing invoice content. Usage is part of the returned
value rather than being reported through callbacks.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

import re
from abc import ABC, abstractmethod

from pydantic import BaseModel

from invoice_services.accounting.usage import calculate_token_usage
from invoice_services.documents.schema import TokenUsage
from invoice_services.shared.config import Settings

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


class ProviderNotConfiguredError(RuntimeError):
    """Raised when a provider is used without its prerequisites (API key, server)."""


class ExtractionResult(BaseModel):
    """Result of a model call.

    Attributes:
        text: Model output text, code fences removed
        token_usage: Usage reported for the call (zeros when not reported)
        provider: Name of provider that performed the call
    """

    text: str
    token_usage: TokenUsage
    provider: str


def strip_code_fences(text: str) -> str:
    """Return the body of a fenced ```json block, or the stripped text."""
    match = _FENCED_JSON.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


class ExtractionProvider(ABC):
    """Abstract base class for invoice extraction providers.

    Provider errors are not wrapped: after the provider's own retries they
    propagate to the caller.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @abstractmethod
    async def extract(self, raw_text: str) -> ExtractionResult:
        """Extract an invoice from free text.

        Args:
            raw_text: Invoice document text

        Returns:
            ExtractionResult with the model's JSON text
        """

    @abstractmethod
    async def update(self, current_content: str, description: str) -> ExtractionResult:
        """Apply a change description to existing invoice content.

        Args:
            current_content: Stored content of the invoice document
            description: Requested change in natural language

        Returns:
            ExtractionResult whose text is a single updated invoice object
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is available/configured.

        Returns:
            True if provider can be used, False otherwise
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier (e.g., 'openai', 'ollama')
        """

    def _result(self, text: str, input_tokens: int | None, output_tokens: int | None) -> ExtractionResult:
        return ExtractionResult(
            text=strip_code_fences(text),
            token_usage=calculate_token_usage(input_tokens, output_tokens),
            provider=self.provider_name,
        )
