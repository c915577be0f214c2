"""Shared fixtures: settings, an in-memory store and a scripted extraction provider."""

import json
from collections.abc import Callable
from typing import Any

import pytest

from invoice_services.extraction.base import ExtractionProvider, ExtractionResult
from invoice_services.shared.config import Settings
from invoice_services.storage.memory import InMemoryDocumentStore

ACME_INVOICE: dict[str, Any] = {
    "customerName": "Globex",
    "vendorName": "Acme Co",
    "invoiceNumber": "INV-100",
    "invoiceDate": "2024-01-01",
    "dueDate": "2024-02-01",
    "amount": 250,
    "lineItems": [{"description": "Widget", "quantity": 5, "unitPrice": 50, "amount": 250}],
}


class ScriptedProvider(ExtractionProvider):
    """Provider returning canned model output in order."""

    def __init__(
        self,
        settings: Settings,
        responses: list[str],
        input_tokens: int = 0,
        output_tokens: int = 0,
    ) -> None:
        super().__init__(settings)
        self.responses = list(responses)
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.calls: list[tuple[str, ...]] = []

    @property
    def provider_name(self) -> str:
        return "scripted"

    def is_available(self) -> bool:
        return True

    async def extract(self, raw_text: str) -> ExtractionResult:
        self.calls.append((raw_text,))
        return self._result(self.responses.pop(0), self.input_tokens, self.output_tokens)

    async def update(self, current_content: str, description: str) -> ExtractionResult:
        self.calls.append((current_content, description))
        return self._result(self.responses.pop(0), self.input_tokens, self.output_tokens)


@pytest.fixture
def settings() -> Settings:
    """Test settings: in-memory store, no settling delay."""
    return Settings(_env_file=None, storage_backend="memory", delete_verify_delay_seconds=0)


@pytest.fixture
def store(settings: Settings) -> InMemoryDocumentStore:
    """Empty in-memory document store."""
    return InMemoryDocumentStore(settings)


@pytest.fixture
def acme_invoice() -> dict[str, Any]:
    """Extraction output for a typical invoice."""
    return json.loads(json.dumps(ACME_INVOICE))


@pytest.fixture
def make_provider(settings: Settings) -> Callable[..., ScriptedProvider]:
    """Factory for scripted providers; dict responses are JSON-encoded."""

    def make(*responses: Any, input_tokens: int = 0, output_tokens: int = 0) -> ScriptedProvider:
        texts = [r if isinstance(r, str) else json.dumps(r) for r in responses]
        return ScriptedProvider(settings, texts, input_tokens, output_tokens)

    return make
