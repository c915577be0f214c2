"""Unit tests for the configuration-driven factories.

Tests cover:
- Registry lookups and registration
- Extraction provider and document store creation from Settings
- Error handling for unknown names
"""

import logging
from unittest.mock import patch

import httpx
import pytest
from pydantic import ValidationError

from invoice_services.extraction.base import ExtractionProvider, ExtractionResult
from invoice_services.extraction.factory import create_extraction_service, providers
from invoice_services.extraction.ollama_provider import OllamaExtractionProvider
from invoice_services.extraction.openai_provider import OpenAIExtractionProvider
from invoice_services.shared.config import Settings
from invoice_services.shared.registry import Registry
from invoice_services.storage.factory import create_document_store, stores
from invoice_services.storage.memory import InMemoryDocumentStore
from invoice_services.storage.service import S3DocumentStore


def test_registry_default_entries() -> None:
    """Test that registries contain the built-in implementations."""
    assert providers.names() == ["openai", "ollama"]
    assert stores.names() == ["memory", "s3"]
    assert providers.get("openai") == OpenAIExtractionProvider


def test_registry_unknown_name() -> None:
    """Test that an unknown name raises ValueError listing the registered ones."""
    with pytest.raises(ValueError, match="Unknown extraction provider") as exc_info:
        providers.get("nonexistent")

    assert "Available: openai, ollama" in str(exc_info.value)


def test_registry_register_new_provider() -> None:
    """Test registering a new provider."""

    class TestProvider(ExtractionProvider):
        async def extract(self, raw_text: str) -> ExtractionResult:
            return self._result("{}", 0, 0)

        async def update(self, current_content: str, description: str) -> ExtractionResult:
            return self._result("{}", 0, 0)

        def is_available(self) -> bool:
            return True

        @property
        def provider_name(self) -> str:
            return "test"

    providers.register("test", TestProvider)

    try:
        assert "test" in providers
        assert providers.get("test") == TestProvider
    finally:
        providers.unregister("test")

    assert "test" not in providers


def test_registry_copies_initial_entries() -> None:
    """Test that registering on one registry leaves the seed mapping alone."""
    seed = {"memory": InMemoryDocumentStore}
    registry = Registry("storage backend", seed)

    registry.register("s3", S3DocumentStore)

    assert seed == {"memory": InMemoryDocumentStore}


def test_create_extraction_service_default() -> None:
    """Test factory creates OpenAI provider by default."""
    provider = create_extraction_service(Settings(_env_file=None))

    assert isinstance(provider, OpenAIExtractionProvider)
    assert provider.provider_name == "openai"


def test_create_extraction_service_ollama() -> None:
    """Test factory honors the configured provider."""
    settings = Settings(_env_file=None, extraction_provider="ollama")

    with patch(
        "invoice_services.extraction.ollama_provider.httpx.get",
        side_effect=httpx.ConnectError("Connection refused"),
    ):
        provider = create_extraction_service(settings)

    assert isinstance(provider, OllamaExtractionProvider)


def test_create_extraction_service_logs_creation(
    caplog: pytest.LogCaptureFixture, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Test that factory logs provider creation and warns if unavailable."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with caplog.at_level(logging.INFO):
        create_extraction_service(Settings(_env_file=None))

    assert "Created extraction provider: openai" in caplog.text
    assert "not fully available" in caplog.text


def test_create_extraction_service_with_invalid_provider() -> None:
    """Test that an invalid provider is rejected by Settings validation."""
    with pytest.raises(ValidationError):
        Settings(_env_file=None, extraction_provider="invalid")  # type: ignore


def test_create_document_store_memory(settings: Settings) -> None:
    """Test factory creates the in-memory store."""
    assert isinstance(create_document_store(settings), InMemoryDocumentStore)


def test_create_document_store_s3_warns_without_credentials(
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Test that an S3 store without credentials is created with a warning."""
    settings = Settings(_env_file=None, storage_backend="s3", storage_access_key="")

    with caplog.at_level(logging.WARNING):
        store = create_document_store(settings)

    assert isinstance(store, S3DocumentStore)
    assert "not fully available" in caplog.text
