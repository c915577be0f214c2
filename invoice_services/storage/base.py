"""Abstract document store.

The invoice pipeline only needs a small contract from storage: create, get by
id, list by kind (most recent first), update and delete. Implementations do not
promise read-after-write or read-after-delete consistency, and errors raised by
a backend propagate to the caller unchanged.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from invoice_services.shared.config import Settings

INVOICE_KIND = "invoice"


def utc_now() -> datetime:
    return datetime.now(UTC)


class Document(BaseModel):
    """Persisted container for one processing run.

    Attributes:
        id: Document identity
        kind: Document category (e.g. 'invoice')
        title: Display title
        content: Opaque content; for invoices, JSON in one of the codec shapes
        created_at: Creation timestamp (UTC)
    """

    id: str
    kind: str
    title: str
    content: str | None = None
    created_at: datetime = Field(default_factory=utc_now)


class DocumentStore(ABC):
    """Abstract base class for document storage backends."""

    def __init__(self, settings: Settings) -> None:
        """Initialize store with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Backend identifier for logging (e.g., 'memory', 's3')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the backend is configured and usable."""

    @abstractmethod
    async def create_document(self, id: str, kind: str, title: str, content: str) -> None:
        """Persist a new document."""

    @abstractmethod
    async def get_document(self, id: str) -> Document | None:
        """Fetch a document by id, or None if absent."""

    @abstractmethod
    async def get_all_documents(self, kind: str) -> list[Document]:
        """Fetch all documents of a kind, most recent first."""

    @abstractmethod
    async def update_document(
        self, id: str, title: str | None = None, content: str | None = None
    ) -> None:
        """Update the given fields of a document; a no-op if it does not exist."""

    @abstractmethod
    async def delete_document(self, id: str) -> None:
        """Delete a document; a no-op if it does not exist."""
