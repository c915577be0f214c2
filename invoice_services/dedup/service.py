"""Duplicate invoice detection.

An invoice is a duplicate of a stored one when vendor name (case-insensitive),
invoice number (exact) and amount (as normalized decimal text) all match.
There is no index: every invoice document is decoded and scanned, most recent
first, and the first match wins.
"""

import json
import logging
import time
from decimal import Decimal, DecimalException
from typing import Any, NamedTuple

from prometheus_client import Counter, Histogram
from pydantic import BaseModel

from invoice_services.documents.codec import parse_content
from invoice_services.documents.schema import Invoice
from invoice_services.storage.base import INVOICE_KIND, DocumentStore

logger = logging.getLogger(__name__)

duplicate_scan_duration_seconds = Histogram(
    "invoice_duplicate_scan_duration_seconds",
    "Duration of a full duplicate scan over invoice documents",
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

duplicate_scan_documents_total = Counter(
    "invoice_duplicate_scan_documents_total",
    "Invoice documents read by duplicate scans",
)


def normalize_amount(value: Any) -> str | None:
    """Render an amount as canonical decimal text (250, 250.0 and "250.00" -> "250").

    Args:
        value: Amount as number or text

    Returns:
        Normalized text, or None if no amount was given
    """
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return format(Decimal(text).normalize(), "f")
    except DecimalException:
        return text


class DuplicateKey(NamedTuple):
    """Derived (vendor, invoice number, amount) matching key."""

    vendor_name: str
    invoice_number: str
    amount: str

    @classmethod
    def from_fields(
        cls, vendor_name: str | None, invoice_number: str | None, amount: Any
    ) -> "DuplicateKey | None":
        """Build a key, or None if any component is missing."""
        normalized = normalize_amount(amount)
        if not vendor_name or not invoice_number or normalized is None:
            return None
        return cls(vendor_name.lower(), invoice_number, normalized)

    @classmethod
    def from_invoice(cls, invoice: Invoice) -> "DuplicateKey | None":
        return cls.from_fields(invoice.vendor_name, invoice.invoice_number, invoice.amount)


class DuplicateMatch(BaseModel):
    """Verdict of a duplicate check."""

    matched: bool
    document_id: str | None = None
    invoice: Invoice | None = None


class ExistingInvoice(BaseModel):
    """Result of looking up a stored invoice by its details."""

    exists: bool
    document_id: str | None = None
    invoice: Invoice | None = None


class DuplicateDetector:
    """Scans stored invoice documents for an invoice with a given key."""

    def __init__(self, store: DocumentStore) -> None:
        """Initialize detector.

        Args:
            store: Document store to scan
        """
        self.store = store

    async def find_duplicate(
        self, vendor_name: str | None, invoice_number: str | None, amount: Any
    ) -> DuplicateMatch:
        """Check whether an invoice with these details is already stored.

        Candidates missing any key component never match.

        Returns:
            DuplicateMatch with the owning document id on a match
        """
        key = DuplicateKey.from_fields(vendor_name, invoice_number, amount)
        if key is None:
            return DuplicateMatch(matched=False)

        found = await self.scan(key)
        if found is None:
            return DuplicateMatch(matched=False)
        document_id, invoice = found
        return DuplicateMatch(matched=True, document_id=document_id, invoice=invoice)

    async def get_existing_by_details(
        self, vendor_name: str | None, invoice_number: str | None, amount: Any
    ) -> ExistingInvoice:
        """Look up the stored invoice matching these details.

        Returns:
            ExistingInvoice with the invoice payload and its document id when found
        """
        key = DuplicateKey.from_fields(vendor_name, invoice_number, amount)
        if key is None:
            return ExistingInvoice(exists=False)

        found = await self.scan(key)
        if found is None:
            return ExistingInvoice(exists=False)
        document_id, invoice = found
        return ExistingInvoice(exists=True, document_id=document_id, invoice=invoice)

    async def scan(self, key: DuplicateKey) -> tuple[str, Invoice] | None:
        """Find the first stored invoice with the given key.

        Storage errors propagate; a document whose content cannot be decoded
        is skipped.

        Args:
            key: Key to match

        Returns:
            (document id, invoice) of the first match, or None
        """
        start = time.time()
        try:
            documents = await self.store.get_all_documents(INVOICE_KIND)
            for document in documents:
                if not document.content:
                    continue
                duplicate_scan_documents_total.inc()
                try:
                    decoded = parse_content(document.content)
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping document {document.id} in duplicate scan: {e}")
                    continue

                for invoice in decoded.invoices(document.id):
                    if DuplicateKey.from_invoice(invoice) == key:
                        logger.info(
                            f"Duplicate of invoice {key.invoice_number} found in document "
                            f"{document.id}"
                        )
                        return document.id, invoice

            logger.debug(f"No duplicate found for invoice {key.invoice_number}")
            return None
        finally:
            duplicate_scan_duration_seconds.observe(time.time() - start)
