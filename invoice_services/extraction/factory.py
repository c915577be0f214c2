"""Selection of the extraction provider named in configuration.

Based on Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
"""

import logging

from invoice_services.extraction.base import ExtractionProvider
from invoice_services.extraction.ollama_provider import OllamaExtractionProvider
from invoice_services.extraction.openai_provider import OpenAIExtractionProvider
from invoice_services.shared.config import Settings
from invoice_services.shared.registry import Registry

logger = logging.getLogger(__name__)

providers: Registry[ExtractionProvider] = Registry(
    "extraction provider",
    {
        "openai": OpenAIExtractionProvider,
        "ollama": OllamaExtractionProvider,
    },
)


def create_extraction_service(settings: Settings) -> ExtractionProvider:
    """Create the provider named by settings.extraction_provider.

    An unavailable provider (missing API key, unreachable server) is still
    returned; the first call will fail with the underlying error.

    Raises:
        ValueError: If the configured provider is not registered
    """
    name = settings.extraction_provider
    provider = providers.get(name)(settings)

    if not provider.is_available():
        logger.warning(
            f"Extraction provider '{name}' is not fully available. "
            f"Check configuration (e.g., API keys, Ollama server)."
        )

    logger.info(f"Created extraction provider: {name}")
    return provider
