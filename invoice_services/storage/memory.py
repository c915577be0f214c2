"""Process-local document store.

Used for development, tests and single-process deployments. Documents live in
a dict keyed by id; listing sorts by creation time, newest first.
"""

import logging

from invoice_services.shared.config import Settings
from invoice_services.storage.base import Document, DocumentStore, utc_now

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(DocumentStore):
    """Document store backed by a dict."""

    def __init__(self, settings: Settings, documents: list[Document] | None = None) -> None:
        """Initialize store, optionally seeded with documents.

        Args:
            settings: Application settings
            documents: Documents to preload (e.g. legacy content in tests)
        """
        super().__init__(settings)
        self._documents: dict[str, Document] = {}
        self._order: dict[str, int] = {}
        self._counter = 0
        for document in documents or []:
            self._put(document)

    @property
    def backend_name(self) -> str:
        return "memory"

    def is_available(self) -> bool:
        return True

    def _put(self, document: Document) -> None:
        if document.id not in self._order:
            self._counter += 1
            self._order[document.id] = self._counter
        self._documents[document.id] = document

    async def create_document(self, id: str, kind: str, title: str, content: str) -> None:
        self._put(Document(id=id, kind=kind, title=title, content=content, created_at=utc_now()))
        logger.debug(f"Created {kind} document {id}")

    async def get_document(self, id: str) -> Document | None:
        return self._documents.get(id)

    async def get_all_documents(self, kind: str) -> list[Document]:
        documents = [d for d in self._documents.values() if d.kind == kind]
        # Insertion order breaks ties between equal timestamps
        return sorted(
            documents,
            key=lambda d: (d.created_at, self._order[d.id]),
            reverse=True,
        )

    async def update_document(
        self, id: str, title: str | None = None, content: str | None = None
    ) -> None:
        document = self._documents.get(id)
        if document is None:
            return
        changes: dict[str, str] = {}
        if title is not None:
            changes["title"] = title
        if content is not None:
            changes["content"] = content
        if changes:
            self._documents[id] = document.model_copy(update=changes)

    async def delete_document(self, id: str) -> None:
        self._documents.pop(id, None)
        self._order.pop(id, None)
