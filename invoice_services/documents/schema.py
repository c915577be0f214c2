"""Invoice data models.

Python attribute names are snake_case; the persisted and streamed JSON keeps the
camelCase keys produced by the extraction prompt (``vendorName``, ``lineItems``...).
Unknown keys are preserved so that re-encoding a stored invoice never drops data.
"""

import logging
import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class WireModel(BaseModel):
    """Base model mapping snake_case attributes to camelCase JSON keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="allow",
    )


class TokenUsage(WireModel):
    """Token usage and estimated cost of one model call.

    Attached to the outermost persisted/streamed payload, not to each invoice
    inside a collection.
    """

    input: int = Field(0, ge=0, description="Prompt tokens")
    output: int = Field(0, ge=0, description="Completion tokens")
    total: int = Field(0, ge=0, description="input + output")
    estimated_cost: float = Field(
        0.0, ge=0, alias="estimated_cost", description="Estimated cost in currency units"
    )


class LineItem(WireModel):
    """Single billed line of an invoice."""

    description: str | None = Field(None, description="What was billed")
    quantity: float | None = Field(None, description="Billed quantity")
    unit_price: float | None = Field(None, description="Price per unit")
    amount: float | None = Field(None, description="Line total")


class Invoice(WireModel):
    """Normalized invoice record extracted from a billing document.

    Every field is optional on read: model output and legacy documents are
    accepted as they are and checked where a field is actually needed
    (duplicate matching, editing). A total that is not a number, such as
    ``"$250.00"``, is kept as text, and line items that cannot be read are
    dropped rather than the invoice.
    """

    customer_name: str | None = Field(None, description="Customer/buyer name")
    vendor_name: str | None = Field(None, description="Vendor/supplier name")
    invoice_number: str | None = Field(None, description="Vendor's invoice identifier")
    invoice_date: str | None = Field(None, description="Issue date (YYYY-MM-DD)")
    due_date: str | None = Field(None, description="Payment due date (YYYY-MM-DD)")
    amount: float | str | None = Field(None, description="Invoice total")
    line_items: list[LineItem] = Field(default_factory=list, description="Billed lines")

    # Identity of the owning stored document; required for edit and delete
    document_id: str | None = Field(None, description="Owning document id")
    token_usage: TokenUsage | None = Field(None, description="Usage of the producing call")

    @field_validator("amount", mode="before")
    @classmethod
    def _read_amount(cls, value: Any) -> Any:
        if value is None or (isinstance(value, (int, float)) and not isinstance(value, bool)):
            return value
        if not isinstance(value, str):
            logger.warning(f"Ignoring invoice amount of type {type(value).__name__}")
            return None
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return text
        return number if math.isfinite(number) else text

    @field_validator("line_items", mode="before")
    @classmethod
    def _read_line_items(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, dict):
            value = [value]
        if not isinstance(value, list):
            logger.warning(f"Ignoring lineItems of type {type(value).__name__}")
            return []

        items = []
        for entry in value:
            try:
                items.append(LineItem.model_validate(entry))
            except ValidationError as e:
                logger.warning(f"Dropping line item that failed validation: {e.error_count()} errors")
        return items

    @field_validator("token_usage", mode="before")
    @classmethod
    def _read_token_usage(cls, value: Any) -> Any:
        if value is None or isinstance(value, TokenUsage):
            return value
        try:
            return TokenUsage.model_validate(value)
        except ValidationError:
            return None

    def to_wire(self) -> dict:
        """Dump to the camelCase JSON-compatible dict used in stored content."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
