"""Unit tests for OpenAIExtractionProvider.

Tests the OpenAI-based provider with a mocked async client.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from openai import APIConnectionError

from invoice_services.extraction.base import ProviderNotConfiguredError
from invoice_services.extraction.openai_provider import OpenAIExtractionProvider
from invoice_services.extraction.prompts import INVOICE_SYSTEM_PROMPT
from invoice_services.shared.config import Settings


@pytest.fixture
def provider() -> OpenAIExtractionProvider:
    """Create OpenAI provider with two attempts per call."""
    return OpenAIExtractionProvider(Settings(_env_file=None, extraction_max_attempts=2))


def _completion(content: str, prompt_tokens: int = 120, completion_tokens: int = 80) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.usage.prompt_tokens = prompt_tokens
    response.usage.completion_tokens = completion_tokens
    return response


def _client(*results: object) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=list(results))
    return client


class TestOpenAIAvailability:
    """Test availability depends on the API key."""

    def test_available_with_key(
        self, provider: OpenAIExtractionProvider, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        assert provider.is_available() is True

    def test_unavailable_without_key(
        self, provider: OpenAIExtractionProvider, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        assert provider.is_available() is False

    @pytest.mark.asyncio
    async def test_extract_without_key_raises(
        self, provider: OpenAIExtractionProvider, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        with pytest.raises(ProviderNotConfiguredError):
            await provider.extract("Invoice INV-1")


class TestOpenAIExtraction:
    """Test extract and update calls."""

    @pytest.mark.asyncio
    async def test_extract_returns_text_and_usage(self, provider: OpenAIExtractionProvider) -> None:
        payload = {"vendorName": "Acme Co", "invoiceNumber": "INV-1", "amount": 10}
        client = _client(_completion(json.dumps(payload)))

        with patch.object(provider, "_get_client", return_value=client):
            result = await provider.extract("Invoice INV-1 from Acme")

        assert json.loads(result.text) == payload
        assert result.provider == "openai"
        assert result.token_usage.input == 120
        assert result.token_usage.output == 80
        assert result.token_usage.total == 200

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": INVOICE_SYSTEM_PROMPT}
        assert kwargs["messages"][1]["content"] == "Invoice INV-1 from Acme"

    @pytest.mark.asyncio
    async def test_update_sends_current_content(self, provider: OpenAIExtractionProvider) -> None:
        client = _client(_completion('{"amount": 20}'))

        with patch.object(provider, "_get_client", return_value=client):
            await provider.update('{"amount": 10}', "Change the amount to 20")

        messages = client.chat.completions.create.call_args.kwargs["messages"]
        assert '{"amount": 10}' in messages[0]["content"]
        assert messages[1]["content"] == "Change the amount to 20"

    @pytest.mark.asyncio
    async def test_missing_usage_counts_as_zero(self, provider: OpenAIExtractionProvider) -> None:
        response = _completion("{}")
        response.usage = None

        with patch.object(provider, "_get_client", return_value=_client(response)):
            result = await provider.extract("Invoice")

        assert result.token_usage.total == 0

    @pytest.mark.asyncio
    async def test_empty_text_rejected(self, provider: OpenAIExtractionProvider) -> None:
        with pytest.raises(ValueError, match="Empty invoice content"):
            await provider.extract("   \n")

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, provider: OpenAIExtractionProvider) -> None:
        error = APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1"))
        client = _client(error, _completion('{"amount": 1}'))

        with patch.object(provider, "_get_client", return_value=client):
            result = await provider.extract("Invoice")

        assert result.text == '{"amount": 1}'
        assert client.chat.completions.create.await_count == 2

    @pytest.mark.asyncio
    async def test_non_transient_error_propagates(self, provider: OpenAIExtractionProvider) -> None:
        client = _client(KeyError("boom"))

        with patch.object(provider, "_get_client", return_value=client):
            with pytest.raises(KeyError):
                await provider.extract("Invoice")

        assert client.chat.completions.create.await_count == 1
