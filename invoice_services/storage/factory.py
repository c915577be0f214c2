"""Selection of the document store named in configuration."""

import logging

from invoice_services.shared.config import Settings
from invoice_services.shared.registry import Registry
from invoice_services.storage.base import DocumentStore
from invoice_services.storage.memory import InMemoryDocumentStore
from invoice_services.storage.service import S3DocumentStore

logger = logging.getLogger(__name__)

stores: Registry[DocumentStore] = Registry(
    "storage backend",
    {
        "memory": InMemoryDocumentStore,
        "s3": S3DocumentStore,
    },
)


def create_document_store(settings: Settings) -> DocumentStore:
    """Create the document store named by settings.storage_backend.

    Raises:
        ValueError: If the configured backend is not registered
    """
    store = stores.get(settings.storage_backend)(settings)

    if not store.is_available():
        logger.warning(
            f"Document store '{store.backend_name}' is not fully available. "
            f"Check storage credentials."
        )

    logger.info(f"Created document store: {store.backend_name}")
    return store
