"""Data models for ledgerscan."""

from datetime import datetime
from enum import Enum
from typing import Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class DocumentStatus(str, Enum):
    """Lifecycle of an uploaded document."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    FAILED = "FAILED"
    PENDING_REVIEW = "PENDING_REVIEW"
    COMPLETED = "COMPLETED"


class TransactionSource(str, Enum):
    """Where a ledger row came from."""

    UPLOAD = "upload"
    MANUAL = "manual"


class ConfirmImportAction(str, Enum):
    """Import decisions available for a document awaiting review."""

    ADD_ALL = "add_all"
    SKIP_DUPLICATES = "skip_duplicates"
    ADD_NONE = "add_none"


class CamelModel(BaseModel):
    """Base for models exchanged with the review UI in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExistingTransactionRef(CamelModel):
    """Compact reference to a ledger row that a candidate duplicates."""

    id: str
    date: str
    amount: float
    description: str


class ExtractedTransactionCandidate(CamelModel):
    """One validated row produced by the extraction pipeline."""

    date: str  # YYYY-MM-DD
    description: str
    amount: float  # Positive = money in, negative = money out
    category_slug: str = "other"
    total_amount: float | None = None  # Full price for installment purchases
    installment_current: int | None = None
    installment_total: int | None = None
    is_duplicate: bool | None = None
    existing_transaction: ExistingTransactionRef | None = None


class LedgerTransaction(BaseModel):
    """A transaction stored in the ledger."""

    id: UUID = Field(default_factory=uuid4)
    household_id: str
    account_id: str
    date: str
    description: str
    amount: float
    category_slug: str | None = None
    total_amount: float | None = None
    installment_current: int | None = None
    installment_total: int | None = None
    source: TransactionSource = TransactionSource.MANUAL
    document_id: UUID | None = None
    created_at: datetime = Field(default_factory=datetime.now)


class CategoryRule(BaseModel):
    """A learned "description contains X -> category Y" rule."""

    id: UUID = Field(default_factory=uuid4)
    household_id: str
    pattern: str
    category_slug: str


class Document(BaseModel):
    """An uploaded financial document and its extraction state."""

    id: UUID = Field(default_factory=uuid4)
    household_id: str
    account_id: str
    file_name: str
    mime_type: str
    storage_path: str
    file_size: int = 0
    ocr_text: str | None = None
    status: DocumentStatus = DocumentStatus.PENDING
    error_message: str | None = None
    extracted_json: list[ExtractedTransactionCandidate] | None = None
    uploaded_at: datetime = Field(default_factory=datetime.now)
    processed_at: datetime | None = None

    @property
    def duplicate_count(self) -> int:
        if not self.extracted_json:
            return 0
        return sum(1 for c in self.extracted_json if c.is_duplicate)


class ConfirmImportRequest(BaseModel):
    """Import decision for a document in PENDING_REVIEW."""

    account_id: str
    action: ConfirmImportAction | None = None
    indices: list[int] | None = None  # Positions into the persisted candidate list

    @model_validator(mode="after")
    def _require_decision(self) -> "ConfirmImportRequest":
        if self.action is None and self.indices is None:
            raise ValueError("Either action or indices must be provided")
        return self


class DocumentResponse(BaseModel):
    """Document as returned by the API."""

    id: UUID
    file_name: str
    mime_type: str
    status: DocumentStatus
    error_message: str | None = None
    extracted: list[dict] | None = None
    duplicate_count: int = 0
    uploaded_at: datetime
    processed_at: datetime | None = None

    @classmethod
    def from_document(cls, doc: Document) -> "DocumentResponse":
        return cls(
            id=doc.id,
            file_name=doc.file_name,
            mime_type=doc.mime_type,
            status=doc.status,
            error_message=doc.error_message,
            extracted=(
                [c.model_dump(by_alias=True, exclude_none=True) for c in doc.extracted_json]
                if doc.extracted_json is not None
                else None
            ),
            duplicate_count=doc.duplicate_count,
            uploaded_at=doc.uploaded_at,
            processed_at=doc.processed_at,
        )


class SettingsUpdate(BaseModel):
    """Settings update request."""

    llm_provider: Literal["openai", "ollama", "none"] | None = None
    openai_api_key: str | None = None
    ollama_host: str | None = None


class SettingsResponse(BaseModel):
    """Current settings response."""

    llm_provider: str
    ollama_host: str
    has_openai_key: bool
