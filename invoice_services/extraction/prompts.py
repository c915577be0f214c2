"""Prompts for invoice extraction and structured updates."""

INVOICE_SCHEMA = """{
  "customerName": "string",
  "vendorName": "string",
  "invoiceNumber": "string",
  "invoiceDate": "string (YYYY-MM-DD)",
  "dueDate": "string (YYYY-MM-DD)",
  "amount": number,
  "lineItems": [
    {
      "description": "string",
      "quantity": number,
      "unitPrice": number,
      "amount": number
    }
  ]
}"""

NOT_AN_INVOICE_ERROR = (
    "This document does not appear to be an invoice. Please upload a valid invoice document."
)

INVOICE_SYSTEM_PROMPT = f"""You are an AI assistant specialized in processing invoice documents. \
Your task is to extract the following information from the invoice:

1. Customer name
2. Vendor name
3. Invoice number
4. Invoice date (in YYYY-MM-DD format)
5. Due date (in YYYY-MM-DD format)
6. Total amount
7. Line items (including description, quantity, unit price, and amount)

If a field is not present in the invoice, leave it empty.

Format the output as a JSON object with the following structure:
{INVOICE_SCHEMA}

IMPORTANT: You must STRICTLY validate that the document is a proper invoice.

If the document is NOT an invoice (such as a receipt, bill, billing statement, account \
statement, or other non-invoice document), return:

{{"error": "{NOT_AN_INVOICE_ERROR}"}}

An invoice MUST have:
- A clear invoice number
- Vendor information
- Customer information
- Line items or itemized charges
- Payment terms with a due date

Return ONLY JSON, no explanation."""


def build_update_prompt(current_content: str) -> str:
    """Build the system prompt for updating an existing invoice.

    Args:
        current_content: Stored content of the invoice document

    Returns:
        System prompt embedding the current data
    """
    return f"""You are working with existing invoice data. The current data is:

{current_content}

Update this data based on the user's request. Return a single invoice object with \
the same structure:
{INVOICE_SCHEMA}

Return ONLY JSON, no explanation."""
