"""CSV export of the aggregate invoice view."""

import csv
import io
from collections.abc import Iterable

from invoice_services.dedup.service import normalize_amount
from invoice_services.documents.schema import Invoice

CSV_COLUMNS = [
    "Vendor Name",
    "Customer Name",
    "Invoice Number",
    "Invoice Date",
    "Due Date",
    "Amount",
]


def invoices_to_csv(invoices: Iterable[Invoice]) -> str:
    """Render invoices as CSV, one row per invoice in the given order.

    Missing fields are written as empty cells. Numeric totals use the same
    normalized text as duplicate matching; a total kept as text is written
    as given.

    Args:
        invoices: Invoices to export

    Returns:
        CSV text with a header row
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for invoice in invoices:
        amount = invoice.amount if isinstance(invoice.amount, str) else normalize_amount(invoice.amount)
        writer.writerow(
            [
                invoice.vendor_name or "",
                invoice.customer_name or "",
                invoice.invoice_number or "",
                invoice.invoice_date or "",
                invoice.due_date or "",
                amount or "",
            ]
        )
    return buffer.getvalue()
