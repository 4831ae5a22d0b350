"""Document upload, background extraction and import review."""

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from uuid import UUID, uuid4

from ledgerscan.config import settings
from ledgerscan.db.sqlite import Database
from ledgerscan.models import (
    ConfirmImportAction,
    ConfirmImportRequest,
    Document,
    DocumentStatus,
    ExtractedTransactionCandidate,
    LedgerTransaction,
    TransactionSource,
)
from ledgerscan.parsers.pipeline import extract_candidates
from ledgerscan.parsers.text_sources import ALLOWED_MIMES, extract_text
from ledgerscan.parsers.validation import validate_file_contents
from ledgerscan.parsers.vocabulary import ExtractionVocabulary
from ledgerscan.services.context import build_user_context
from ledgerscan.services.dedup import compute_file_hash, mark_duplicates
from ledgerscan.services.jobs import DocumentJobQueue

logger = logging.getLogger(__name__)

MIN_USEFUL_TEXT_CHARS = 10
NO_TRANSACTIONS_MESSAGE = (
    "No transactions extracted. The file may be unreadable or contain no transaction rows."
)
FILE_NOT_FOUND_MESSAGE = "Document or file not found"


class DocumentError(Exception):
    """Base class for document workflow errors."""

    pass


class UnsupportedFileTypeError(DocumentError):
    """Upload rejected because its MIME type is not accepted."""

    pass


class DocumentNotFoundError(DocumentError):
    pass


class InvalidDocumentStateError(DocumentError):
    """Operation not allowed in the document's current status."""

    pass


class InvalidImportSelectionError(DocumentError):
    pass


def _safe_file_name(filename: str) -> str:
    name = Path(filename or "upload").name.strip()
    return name or "upload"


def _to_ledger_rows(
    candidates: list[ExtractedTransactionCandidate],
    household_id: str,
    account_id: str,
    document_id: UUID,
) -> list[LedgerTransaction]:
    return [
        LedgerTransaction(
            household_id=household_id,
            account_id=account_id,
            date=c.date,
            description=c.description,
            amount=c.amount,
            category_slug=c.category_slug,
            total_amount=c.total_amount,
            installment_current=c.installment_current,
            installment_total=c.installment_total,
            source=TransactionSource.UPLOAD,
            document_id=document_id,
        )
        for c in candidates
    ]


class DocumentWorkflow:
    """
    Drives a document through its lifecycle.

    PENDING -> PROCESSING -> FAILED | PENDING_REVIEW | COMPLETED, and
    PENDING_REVIEW -> COMPLETED through confirm_import. Status changes are
    compare-and-set in the store, so a transition happens at most once.
    """

    def __init__(
        self,
        database: Database,
        job_queue: DocumentJobQueue | None = None,
        text_source: Callable[[Path, str], str] = extract_text,
        vocabulary: ExtractionVocabulary | None = None,
        upload_dir: Path | None = None,
    ):
        self.db = database
        self.jobs = job_queue or DocumentJobQueue()
        self.text_source = text_source
        self.vocabulary = vocabulary
        self.upload_dir = Path(upload_dir or settings.uploads_path)

    # ==================== UPLOAD ====================

    async def create_from_upload(
        self,
        household_id: str,
        account_id: str,
        filename: str,
        mime_type: str,
        contents: bytes,
    ) -> Document:
        """
        Store an uploaded file, record it as PENDING and schedule extraction.

        Raises:
            UnsupportedFileTypeError: If the MIME type is not accepted
            ValidationError: If the file is empty
        """
        mime = (mime_type or "").lower()
        if mime not in ALLOWED_MIMES:
            raise UnsupportedFileTypeError(
                f"File type {mime_type or 'unknown'} is not supported. "
                "Allowed: JPEG, PNG, WebP, PDF, CSV, Excel, Word."
            )
        validate_file_contents(contents)

        file_name = _safe_file_name(filename)
        household_dir = self.upload_dir / household_id
        household_dir.mkdir(parents=True, exist_ok=True)
        storage_path = household_dir / f"{int(time.time() * 1000)}-{file_name}"
        await asyncio.to_thread(storage_path.write_bytes, contents)

        document = Document(
            id=uuid4(),
            household_id=household_id,
            account_id=account_id,
            file_name=file_name,
            mime_type=mime,
            storage_path=str(storage_path),
            file_size=len(contents),
        )
        self.db.create_document(document)
        logger.info(f"Stored {file_name} ({len(contents)} bytes) as document {document.id}")

        self.jobs.submit(
            str(document.id),
            lambda: self.process_document(household_id, document.id),
            filename=file_name,
            file_hash=compute_file_hash(contents),
        )
        return document

    # ==================== BACKGROUND EXTRACTION ====================

    async def process_document(self, household_id: str, document_id: UUID | str) -> None:
        """
        Run extraction for a PENDING document.

        Never raises: any failure ends in FAILED with the error text.
        Documents in any other status are left untouched.
        """
        document = self.db.get_document(household_id, document_id)
        if document is None:
            logger.warning(f"Document {document_id} vanished before processing")
            return
        if document.status != DocumentStatus.PENDING:
            logger.info(f"Document {document_id} is {document.status.value}, skipping extraction")
            return
        if not self.db.transition_document(
            household_id, document_id, DocumentStatus.PENDING, DocumentStatus.PROCESSING
        ):
            logger.info(f"Document {document_id} was claimed by another run")
            return

        try:
            await self._extract(document)
        except Exception as e:
            logger.exception(f"Processing failed for document {document_id}")
            self.db.transition_document(
                household_id,
                document_id,
                DocumentStatus.PROCESSING,
                DocumentStatus.FAILED,
                error_message=str(e) or e.__class__.__name__,
                processed_at=datetime.now(),
            )

    async def _extract(self, document: Document) -> None:
        path = Path(document.storage_path)
        if not path.is_file():
            raise DocumentError(FILE_NOT_FOUND_MESSAGE)

        text = await asyncio.to_thread(self.text_source, path, document.mime_type)
        text = text or ""
        self.db.update_document(
            document.household_id,
            document.id,
            ocr_text=text[: settings.max_stored_text_chars],
        )
        if len(text.strip()) < MIN_USEFUL_TEXT_CHARS:
            logger.warning(f"Document {document.id} produced only {len(text.strip())} chars of text")

        user_context = await asyncio.to_thread(build_user_context, self.db, document.household_id)
        candidates = await extract_candidates(text, user_context, self.vocabulary)
        if not candidates:
            logger.warning(f"No transactions extracted from document {document.id}")

        candidates = await mark_duplicates(candidates, self.db, document.household_id, document.account_id)

        if any(c.is_duplicate for c in candidates):
            moved = self.db.transition_document(
                document.household_id,
                document.id,
                DocumentStatus.PROCESSING,
                DocumentStatus.PENDING_REVIEW,
                extracted_json=candidates,
                processed_at=datetime.now(),
            )
            final = DocumentStatus.PENDING_REVIEW
        else:
            moved = self.db.transition_document(
                document.household_id,
                document.id,
                DocumentStatus.PROCESSING,
                DocumentStatus.COMPLETED,
                transactions=_to_ledger_rows(
                    candidates, document.household_id, document.account_id, document.id
                ),
                extracted_json=candidates,
                error_message=None if candidates else NO_TRANSACTIONS_MESSAGE,
                processed_at=datetime.now(),
            )
            final = DocumentStatus.COMPLETED

        if moved:
            logger.info(f"Document {document.id} -> {final.value} with {len(candidates)} candidate(s)")
        else:
            logger.warning(f"Document {document.id} left PROCESSING before results were saved")

    # ==================== QUERIES ====================

    def get_status(self, household_id: str, document_id: UUID | str) -> Document:
        """
        Raises:
            DocumentNotFoundError: If the document does not exist in this household
        """
        document = self.db.get_document(household_id, document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return document

    def list_documents(self, household_id: str, limit: int = 100) -> list[Document]:
        return self.db.list_documents(household_id, limit=limit)

    # ==================== REVIEW ====================

    async def confirm_import(
        self,
        household_id: str,
        document_id: UUID | str,
        request: ConfirmImportRequest,
    ) -> Document:
        """
        Import a chosen subset of a reviewed document's candidates.

        Explicit indices take precedence over the action. The subset may be
        empty; the document still becomes COMPLETED.

        Raises:
            DocumentNotFoundError: Unknown document
            InvalidDocumentStateError: Document is not awaiting review
            InvalidImportSelectionError: An index is out of range
        """
        async with self.jobs.lock(str(document_id)):
            document = self.get_status(household_id, document_id)
            if document.status != DocumentStatus.PENDING_REVIEW:
                raise InvalidDocumentStateError(
                    f"Document is {document.status.value}, expected {DocumentStatus.PENDING_REVIEW.value}"
                )

            selected = self._select_candidates(document.extracted_json or [], request)
            rows = _to_ledger_rows(selected, household_id, request.account_id, document.id)

            if not self.db.transition_document(
                household_id,
                document.id,
                DocumentStatus.PENDING_REVIEW,
                DocumentStatus.COMPLETED,
                transactions=rows,
            ):
                raise InvalidDocumentStateError("Document was already imported")

            logger.info(f"Imported {len(rows)} transaction(s) from document {document.id}")
            return self.get_status(household_id, document.id)

    @staticmethod
    def _select_candidates(
        candidates: list[ExtractedTransactionCandidate],
        request: ConfirmImportRequest,
    ) -> list[ExtractedTransactionCandidate]:
        if request.indices is not None:
            invalid = [i for i in request.indices if not 0 <= i < len(candidates)]
            if invalid:
                raise InvalidImportSelectionError(
                    f"Indices out of range for {len(candidates)} candidate(s): {invalid}"
                )
            # Repeated indices import once, in document order
            return [candidates[i] for i in sorted(set(request.indices))]

        if request.action == ConfirmImportAction.ADD_ALL:
            return list(candidates)
        if request.action == ConfirmImportAction.SKIP_DUPLICATES:
            return [c for c in candidates if not c.is_duplicate]
        return []
