"""Conversion between stored document content and invoice models.

Invoice documents have been persisted in three shapes over time:

- a single invoice object: ``{"vendorName": ..., "tokenUsage": {...}}``
- a bare array of invoice objects: ``[{...}, {...}]``
- the envelope: ``{"invoices": [...], "tokenUsage": {...}}``

All three are read indefinitely; only the envelope is ever written. Content is
resolved into a :class:`DecodedContent` once, at the storage boundary, and the
rest of the service works with plain lists of :class:`Invoice`.
"""

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError

from invoice_services.documents.schema import Invoice, TokenUsage

logger = logging.getLogger(__name__)


class ContentShape(str, Enum):
    """Which of the persisted shapes a document's content used."""

    SINGLE = "single"
    SEQUENCE = "sequence"
    ENVELOPED = "enveloped"


@dataclass
class DecodedContent:
    """Stored content resolved into an ordered list of raw entries.

    Attributes:
        shape: Shape the content was stored in
        entries: Raw decoded entries, error entries included
        token_usage: Usage attached to the outermost payload, if any
    """

    shape: ContentShape
    entries: list[Any] = field(default_factory=list)
    token_usage: TokenUsage | None = None

    @property
    def error(self) -> str | None:
        """Error text of the first rejection entry, if the content holds one."""
        for entry in self.entries:
            if isinstance(entry, dict) and "error" in entry:
                return str(entry["error"])
        return None

    def invoices(self, document_id: str | None = None) -> list[Invoice]:
        """Valid invoices in stored order, error entries excluded.

        Args:
            document_id: Owning document id, assigned to invoices that lack one

        Returns:
            List of invoices
        """
        invoices = []
        for entry in self.entries:
            invoice = _entry_to_invoice(entry)
            if invoice is None:
                continue
            if document_id and not invoice.document_id:
                invoice = invoice.model_copy(update={"document_id": document_id})
            invoices.append(invoice)
        return invoices


def parse_content(content: str) -> DecodedContent:
    """Resolve stored content into its shape and entries.

    Args:
        content: Stored document content

    Returns:
        DecodedContent for the content

    Raises:
        json.JSONDecodeError: If content is not valid JSON
    """
    parsed = json.loads(content)

    if isinstance(parsed, dict) and "invoices" in parsed:
        invoices = parsed["invoices"]
        entries = invoices if isinstance(invoices, list) else [invoices]
        return DecodedContent(
            shape=ContentShape.ENVELOPED,
            entries=entries,
            token_usage=_parse_token_usage(parsed.get("tokenUsage")),
        )

    if isinstance(parsed, list):
        return DecodedContent(shape=ContentShape.SEQUENCE, entries=parsed)

    token_usage = _parse_token_usage(parsed.get("tokenUsage")) if isinstance(parsed, dict) else None
    return DecodedContent(shape=ContentShape.SINGLE, entries=[parsed], token_usage=token_usage)


def decode(content: str | None, document_id: str | None = None) -> list[Invoice]:
    """Decode stored content into invoices, failing softly.

    Args:
        content: Stored document content
        document_id: Owning document id used as documentId fallback

    Returns:
        Invoices in stored order; empty list if content is missing or malformed
    """
    if not content:
        return []
    try:
        decoded = parse_content(content)
    except json.JSONDecodeError:
        return []
    return decoded.invoices(document_id)


def encode(invoices: Iterable[Invoice], token_usage: TokenUsage) -> str:
    """Encode invoices into the envelope shape.

    Args:
        invoices: Invoices to store
        token_usage: Usage for the outermost payload

    Returns:
        Pretty-printed JSON text ``{"invoices": [...], "tokenUsage": {...}}``
    """
    payload = {
        "invoices": [invoice.to_wire() for invoice in invoices],
        "tokenUsage": token_usage.model_dump(mode="json", by_alias=True),
    }
    return json.dumps(payload, indent=2)


def aggregate(documents: Iterable[Any]) -> list[Invoice]:
    """Build the aggregate view across invoice documents.

    Documents whose content cannot be parsed are skipped with a warning.

    Args:
        documents: Stored documents (anything with ``id`` and ``content``)

    Returns:
        All valid invoices, in document order then stored order
    """
    invoices: list[Invoice] = []
    for document in documents:
        if not document.content:
            continue
        try:
            decoded = parse_content(document.content)
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping document {document.id} with undecodable content: {e}")
            continue
        invoices.extend(decoded.invoices(document.id))
    return invoices


def _parse_token_usage(value: Any) -> TokenUsage | None:
    if not isinstance(value, dict):
        return None
    try:
        return TokenUsage.model_validate(value)
    except ValidationError:
        return None


def _entry_to_invoice(entry: Any) -> Invoice | None:
    if not isinstance(entry, dict) or "error" in entry:
        return None
    try:
        return Invoice.model_validate(entry)
    except ValidationError as e:
        logger.warning(f"Skipping invoice entry that failed validation: {e.error_count()} errors")
        return None
