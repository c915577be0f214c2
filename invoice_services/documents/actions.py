"""Interactive edit and delete operations on stored invoices.

These are called from the UI side, so they never raise: every outcome is
reported as an :class:`ActionResult`.
"""

import asyncio
import json
import logging

from pydantic import BaseModel

from invoice_services.accounting.usage import calculate_token_usage
from invoice_services.documents.codec import encode, parse_content
from invoice_services.documents.schema import Invoice
from invoice_services.shared.config import Settings
from invoice_services.storage.base import DocumentStore

logger = logging.getLogger(__name__)

MISSING_DOCUMENT_ID = "Invoice has no document id"


class ActionResult(BaseModel):
    """Outcome of an edit or delete."""

    success: bool
    error: str | None = None


def edit_line_item(
    invoice: Invoice,
    index: int,
    quantity: float | None = None,
    unit_price: float | None = None,
    description: str | None = None,
) -> Invoice:
    """Edit one line item and re-derive its amount as quantity x unit price.

    The invoice total is left as it is.

    Args:
        invoice: Invoice to edit
        index: Position of the line item
        quantity: New quantity, if changed
        unit_price: New unit price, if changed
        description: New description, if changed

    Returns:
        New Invoice with the edited line item

    Raises:
        IndexError: If there is no line item at index
        ValueError: If quantity or unit price is negative
    """
    item = invoice.line_items[index]
    if quantity is None:
        quantity = item.quantity or 0
    if unit_price is None:
        unit_price = item.unit_price or 0
    if quantity < 0 or unit_price < 0:
        raise ValueError("Quantity and unit price must not be negative")

    changes = {"quantity": quantity, "unit_price": unit_price, "amount": quantity * unit_price}
    if description is not None:
        changes["description"] = description

    line_items = list(invoice.line_items)
    line_items[index] = item.model_copy(update=changes)
    return invoice.model_copy(update={"line_items": line_items})


class InvoiceActions:
    """Update and delete entry points for stored invoice documents."""

    def __init__(self, store: DocumentStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings

    async def update_invoice(self, document_id: str | None, new_content: str) -> ActionResult:
        """Replace a document's content.

        Args:
            document_id: Document to update
            new_content: New stored content

        Returns:
            ActionResult
        """
        if not document_id:
            return ActionResult(success=False, error=MISSING_DOCUMENT_ID)
        try:
            await self.store.update_document(document_id, content=new_content)
        except Exception as e:
            logger.error(f"Failed to update invoice {document_id}: {e}")
            return ActionResult(success=False, error=str(e))
        return ActionResult(success=True)

    async def save_invoice(self, invoice: Invoice) -> ActionResult:
        """Store an edited invoice in the envelope shape.

        The document's existing token usage is kept.
        """
        if not invoice.document_id:
            return ActionResult(success=False, error=MISSING_DOCUMENT_ID)

        token_usage = calculate_token_usage()
        try:
            document = await self.store.get_document(invoice.document_id)
        except Exception as e:
            logger.error(f"Failed to read invoice {invoice.document_id}: {e}")
            return ActionResult(success=False, error=str(e))

        if document is not None and document.content:
            try:
                token_usage = parse_content(document.content).token_usage or token_usage
            except json.JSONDecodeError:
                logger.warning(f"Stored content of {document.id} is not JSON, resetting usage")

        return await self.update_invoice(invoice.document_id, encode([invoice], token_usage))

    async def delete_invoice(self, document_id: str | None) -> ActionResult:
        """Delete a document and confirm it is gone.

        The store is not assumed to be read-after-delete consistent, so the
        delete only counts as successful when a re-read after a settling
        delay finds nothing.

        Returns:
            ActionResult
        """
        if not document_id:
            return ActionResult(success=False, error=MISSING_DOCUMENT_ID)
        try:
            await self.store.delete_document(document_id)
            await asyncio.sleep(self.settings.delete_verify_delay_seconds)
            remaining = await self.store.get_document(document_id)
        except Exception as e:
            logger.error(f"Failed to delete invoice {document_id}: {e}")
            return ActionResult(success=False, error=str(e))

        if remaining is not None:
            logger.error(f"Document still exists after deletion attempt: {document_id}")
            return ActionResult(success=False, error="Document deletion did not complete")
        return ActionResult(success=True)
