"""Invoice processing pipeline.

Turns free invoice text into a stored, deduplicated invoice and publishes the
updated collection to a stream sink. One call to :meth:`InvoicePipeline.process`
walks a linear state machine with early exits::

    RECEIVED -> EXTRACTING -> EXTRACTED
        -> REJECTED                                   (model says: not an invoice)
        -> PROCESSING_ERROR                           (model output not decodable)
        -> DUPLICATE_CHECK_PENDING
            -> DUPLICATE_REPORTED                     (matching invoice already stored)
            -> PERSISTING -> AGGREGATING
                -> AGGREGATION_INCONSISTENCY          (nothing readable after the write)
                -> STREAMING -> COMPLETED

Extraction and storage errors are not caught here; they propagate to the
caller and no partial result is reported.
"""

import json
import logging
import uuid
from enum import Enum
from typing import Any

from prometheus_client import Counter
from pydantic import BaseModel, Field, ValidationError

from invoice_services.accounting.usage import (
    calculate_token_usage,
    display_token_usage,
)
from invoice_services.dedup.registry import InFlightRegistry
from invoice_services.dedup.service import DuplicateDetector, DuplicateKey, normalize_amount
from invoice_services.documents.codec import aggregate, encode
from invoice_services.documents.schema import Invoice, TokenUsage
from invoice_services.extraction.base import ExtractionProvider
from invoice_services.storage.base import INVOICE_KIND, DocumentStore
from invoice_services.streaming.events import (
    COLLECTION_TITLE,
    NullSink,
    StreamSink,
    emit_collection,
    emit_data,
    emit_document,
)

logger = logging.getLogger(__name__)

pipeline_outcomes_total = Counter(
    "invoice_pipeline_outcomes_total",
    "Terminal states reached by invoice pipeline runs",
    ["state"],
)

persistence_failures_total = Counter(
    "invoice_persistence_failures_total",
    "Non-fatal failures of the create-document write",
)

extraction_tokens_total = Counter(
    "invoice_extraction_tokens_total",
    "Tokens consumed by extraction and update calls",
    ["direction"],  # input, output
)

PARSE_FAILURE_MESSAGE = "Failed to parse invoice data. Please check the document format."
RETRIEVAL_FAILURE_MESSAGE = "Error: Failed to retrieve invoices after processing."
COMPLETED_MESSAGE = (
    "The invoice has been processed and is now visible with all other invoices "
    "in the invoice block."
)


class PipelineState(str, Enum):
    """States of a pipeline run."""

    RECEIVED = "received"
    EXTRACTING = "extracting"
    EXTRACTED = "extracted"
    REJECTED = "rejected"
    PROCESSING_ERROR = "processing_error"
    DUPLICATE_CHECK_PENDING = "duplicate_check_pending"
    DUPLICATE_REPORTED = "duplicate_reported"
    PERSISTING = "persisting"
    AGGREGATING = "aggregating"
    AGGREGATION_INCONSISTENCY = "aggregation_inconsistency"
    STREAMING = "streaming"
    COMPLETED = "completed"


class ProcessingResult(BaseModel):
    """Descriptor of a finished pipeline run.

    Attributes:
        id: Display identity (new document id, matched document id, or block id)
        title: Display title
        kind: Document kind, always 'invoice'
        content: Natural-language description of the outcome
        state: Terminal state
        is_duplicate: Whether a stored duplicate was found
        is_error: Whether the run ended in a rejection or failure
        invoice_details: Extracted invoice, when one was decoded
        existing_invoice_id: Document id of the matched duplicate
        token_usage: Usage of the model call
        persisted: Whether the create-document write succeeded
        transitions: States visited, in order
    """

    id: str
    title: str
    kind: str = INVOICE_KIND
    content: str
    state: PipelineState
    is_duplicate: bool = False
    is_error: bool = False
    invoice_details: Invoice | None = None
    existing_invoice_id: str | None = None
    token_usage: TokenUsage | None = None
    persisted: bool = False
    transitions: list[PipelineState] = Field(default_factory=list)


class _Run:
    """Transition log of one run."""

    def __init__(self) -> None:
        self.transitions: list[PipelineState] = []
        self.enter(PipelineState.RECEIVED)

    def enter(self, state: PipelineState) -> None:
        self.transitions.append(state)
        logger.debug(f"Pipeline state -> {state.value}")

    def finish(self, state: PipelineState, **fields: Any) -> ProcessingResult:
        self.enter(state)
        pipeline_outcomes_total.labels(state=state.value).inc()
        result = ProcessingResult(state=state, transitions=list(self.transitions), **fields)
        logger.info(f"Pipeline finished in state {state.value} for {result.id}")
        return result


def _new_id() -> str:
    return str(uuid.uuid4())


def _parse_model_output(text: str) -> dict[str, Any]:
    """Decode model output into a JSON object.

    Raises:
        ValueError: If the text is not a JSON object (JSONDecodeError is a ValueError)
    """
    payload = json.loads(text)
    if not isinstance(payload, dict):
        raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")
    return payload


def _display_amount(amount: float | str | None) -> str:
    """Dollar-prefixed normalized total; a total kept as text is shown as given."""
    if isinstance(amount, str):
        return amount
    return f"${normalize_amount(amount)}"


def _record_usage(usage: TokenUsage) -> None:
    extraction_tokens_total.labels(direction="input").inc(usage.input)
    extraction_tokens_total.labels(direction="output").inc(usage.output)


class InvoicePipeline:
    """Orchestrates extraction, validation, duplicate check, persistence and aggregation."""

    def __init__(
        self,
        extractor: ExtractionProvider,
        store: DocumentStore,
        registry: InFlightRegistry | None = None,
    ) -> None:
        """Initialize pipeline.

        Args:
            extractor: Extraction adapter
            store: Document store
            registry: In-flight key registry; share one instance between
                pipelines that should not persist the same invoice concurrently
        """
        self.extractor = extractor
        self.store = store
        self.detector = DuplicateDetector(store)
        self.registry = registry or InFlightRegistry()

    async def process(
        self,
        invoice_content: str,
        existing_block_id: str | None = None,
        sink: StreamSink | None = None,
    ) -> ProcessingResult:
        """Process one invoice text end to end.

        Args:
            invoice_content: Free-form invoice document text
            existing_block_id: Display id to reuse for rejection/error results
            sink: Stream sink for the aggregate view

        Returns:
            ProcessingResult describing the terminal state
        """
        sink = sink or NullSink()
        run = _Run()

        run.enter(PipelineState.EXTRACTING)
        extraction = await self.extractor.extract(invoice_content)
        _record_usage(extraction.token_usage)
        run.enter(PipelineState.EXTRACTED)

        try:
            payload = _parse_model_output(extraction.text)
        except ValueError as e:
            logger.warning(f"Extraction output from {extraction.provider} is not JSON: {e}")
            return self._processing_error(run, existing_block_id, extraction.token_usage)

        if "error" in payload:
            return run.finish(
                PipelineState.REJECTED,
                id=existing_block_id or _new_id(),
                title="Invalid Invoice",
                content=str(payload["error"]),
                is_error=True,
                token_usage=extraction.token_usage,
            )

        try:
            invoice = Invoice.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Extraction output failed validation: {e.error_count()} errors")
            return self._processing_error(run, existing_block_id, extraction.token_usage)

        key = DuplicateKey.from_invoice(invoice)
        async with self.registry.claim(key):
            run.enter(PipelineState.DUPLICATE_CHECK_PENDING)
            match = await self.detector.find_duplicate(
                invoice.vendor_name, invoice.invoice_number, invoice.amount
            )
            if match.matched:
                return run.finish(
                    PipelineState.DUPLICATE_REPORTED,
                    id=match.document_id,
                    title="Duplicate Invoice",
                    content=(
                        f"Duplicate invoice detected: {invoice.invoice_number} "
                        f"from {invoice.vendor_name} for {_display_amount(invoice.amount)}"
                    ),
                    is_duplicate=True,
                    invoice_details=invoice,
                    existing_invoice_id=match.document_id,
                    token_usage=extraction.token_usage,
                )

            run.enter(PipelineState.PERSISTING)
            document_id = _new_id()
            invoice = invoice.model_copy(update={"document_id": document_id})
            persisted = await self._persist(document_id, invoice, extraction.token_usage)

        run.enter(PipelineState.AGGREGATING)
        documents = await self.store.get_all_documents(INVOICE_KIND)
        invoices = aggregate(documents)
        if not invoices:
            return run.finish(
                PipelineState.AGGREGATION_INCONSISTENCY,
                id=document_id,
                title=f"Invoice: {invoice.vendor_name} - {invoice.invoice_number}",
                content=RETRIEVAL_FAILURE_MESSAGE,
                is_error=True,
                invoice_details=invoice,
                token_usage=extraction.token_usage,
                persisted=persisted,
            )

        run.enter(PipelineState.STREAMING)
        await emit_collection(
            sink, document_id, encode(invoices, display_token_usage(extraction.token_usage))
        )

        return run.finish(
            PipelineState.COMPLETED,
            id=document_id,
            title=COLLECTION_TITLE,
            content=COMPLETED_MESSAGE,
            invoice_details=invoice,
            token_usage=extraction.token_usage,
            persisted=persisted,
        )

    async def _persist(self, document_id: str, invoice: Invoice, token_usage: TokenUsage) -> bool:
        """Write the new document; failure is logged and reported, not raised."""
        try:
            await self.store.create_document(
                id=document_id,
                kind=INVOICE_KIND,
                title=f"Invoice: {invoice.vendor_name} - {invoice.invoice_number}",
                content=encode([invoice], token_usage),
            )
        except Exception as e:
            persistence_failures_total.inc()
            logger.warning(f"Create-document write failed for {document_id}, continuing: {e}")
            return False
        return True

    def _processing_error(
        self, run: _Run, existing_block_id: str | None, token_usage: TokenUsage
    ) -> ProcessingResult:
        return run.finish(
            PipelineState.PROCESSING_ERROR,
            id=existing_block_id or _new_id(),
            title="Invoice Processing Error",
            content=PARSE_FAILURE_MESSAGE,
            is_error=True,
            token_usage=token_usage,
        )

    async def display_existing(
        self, invoice_id: str | None = None, sink: StreamSink | None = None
    ) -> ProcessingResult:
        """Stream an already-stored invoice document, or the whole collection.

        Args:
            invoice_id: Document id to show; None shows every stored invoice
            sink: Stream sink

        Returns:
            ProcessingResult; ``is_error`` when nothing could be shown
        """
        sink = sink or NullSink()
        run = _Run()
        documents = await self.store.get_all_documents(INVOICE_KIND)

        if not documents:
            return self._display_error(run, invoice_id, "No invoices found in the system.")

        if invoice_id:
            document = next((d for d in documents if d.id == invoice_id), None)
            if document is None or not document.content:
                return self._display_error(run, invoice_id, "Could not find the requested invoice.")

            run.enter(PipelineState.STREAMING)
            await emit_document(sink, document.id, document.title, document.content)
            return run.finish(
                PipelineState.COMPLETED,
                id=document.id,
                title=document.title,
                content="The invoice data is now displayed in the invoice block.",
            )

        invoices = aggregate(documents)
        if not invoices:
            return self._display_error(run, None, "No valid invoices found in the system.")

        recent = documents[0]
        run.enter(PipelineState.STREAMING)
        await emit_collection(
            sink, recent.id, encode(invoices, display_token_usage(calculate_token_usage()))
        )
        return run.finish(
            PipelineState.COMPLETED,
            id=recent.id,
            title="Invoice Collection",
            content="The invoice data is now displayed in the invoice block.",
        )

    async def display_by_details(
        self,
        vendor_name: str | None,
        invoice_number: str | None,
        amount: Any,
        sink: StreamSink | None = None,
    ) -> ProcessingResult:
        """Show the stored invoice matching these details instead of creating a new one."""
        existing = await self.detector.get_existing_by_details(vendor_name, invoice_number, amount)
        if not existing.exists:
            return self._display_error(_Run(), None, "No matching invoice found.")
        return await self.display_existing(existing.document_id, sink)

    def _display_error(self, run: _Run, display_id: str | None, message: str) -> ProcessingResult:
        return run.finish(
            PipelineState.PROCESSING_ERROR,
            id=display_id or _new_id(),
            title="Invoice Collection",
            content=message,
            is_error=True,
        )

    async def update_document(
        self, document_id: str, description: str, sink: StreamSink | None = None
    ) -> ProcessingResult:
        """Regenerate a stored invoice from a change description.

        Args:
            document_id: Document to update
            description: Requested change in natural language
            sink: Stream sink

        Returns:
            ProcessingResult with the updated invoice
        """
        sink = sink or NullSink()
        run = _Run()

        document = await self.store.get_document(document_id)
        if document is None:
            return self._display_error(run, document_id, "Could not find the requested invoice.")

        run.enter(PipelineState.EXTRACTING)
        extraction = await self.extractor.update(document.content or "", description)
        _record_usage(extraction.token_usage)
        run.enter(PipelineState.EXTRACTED)

        try:
            payload = _parse_model_output(extraction.text)
            if "error" in payload:
                raise ValueError(f"Model declined the update: {payload['error']}")
            invoice = Invoice.model_validate(payload)
        except (ValueError, ValidationError) as e:
            logger.warning(f"Update output for {document_id} could not be used: {e}")
            return self._processing_error(run, document_id, extraction.token_usage)

        if not invoice.document_id:
            invoice = invoice.model_copy(update={"document_id": document_id})

        run.enter(PipelineState.PERSISTING)
        content = encode([invoice], extraction.token_usage)
        await self.store.update_document(document_id, content=content)

        run.enter(PipelineState.STREAMING)
        await emit_data(sink, content)
        return run.finish(
            PipelineState.COMPLETED,
            id=document_id,
            title=document.title,
            content="The invoice has been updated.",
            invoice_details=invoice,
            token_usage=extraction.token_usage,
            persisted=True,
        )
