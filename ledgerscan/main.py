"""FastAPI application for ledgerscan."""

import logging
from functools import lru_cache
from uuid import UUID

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from ledgerscan.config import settings
from ledgerscan.db.sqlite import get_database
from ledgerscan.models import (
    ConfirmImportRequest,
    DocumentResponse,
    SettingsResponse,
    SettingsUpdate,
)
from ledgerscan.parsers.llm_client import is_llm_configured
from ledgerscan.parsers.validation import ValidationError
from ledgerscan.services.documents import (
    DocumentNotFoundError,
    DocumentWorkflow,
    InvalidDocumentStateError,
    InvalidImportSelectionError,
    UnsupportedFileTypeError,
)
from ledgerscan.services.jobs import DocumentJobQueue

logger = logging.getLogger(__name__)

app = FastAPI(
    title="ledgerscan",
    description="Statement upload and transaction extraction with review before import",
    version="0.1.0",
)

# CORS for the review UI
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_workflow() -> DocumentWorkflow:
    """Process-wide workflow sharing one job queue."""
    return DocumentWorkflow(get_database(), DocumentJobQueue())


@app.on_event("startup")
async def startup():
    """Initialize on startup."""
    settings.ensure_directories()
    settings.log_config()


@app.get("/health")
async def health_check(workflow: DocumentWorkflow = Depends(get_workflow)):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "transaction_count": workflow.db.get_transaction_count(),
        "llm_configured": is_llm_configured(),
    }


@app.post("/documents", response_model=DocumentResponse, status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    account_id: str = Form(...),
    household_id: str = Header(..., alias="X-Household-Id"),
    workflow: DocumentWorkflow = Depends(get_workflow),
):
    """Upload a statement (image, CSV, Excel, Word or PDF) for extraction."""
    if not file.filename:
        raise HTTPException(status_code=400, detail="No filename provided")

    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=400, detail="Empty file")

    try:
        document = await workflow.create_from_upload(
            household_id, account_id, file.filename, file.content_type or "", contents
        )
    except (UnsupportedFileTypeError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return DocumentResponse.from_document(document)


@app.get("/documents", response_model=list[DocumentResponse])
async def list_documents(
    limit: int = 100,
    household_id: str = Header(..., alias="X-Household-Id"),
    workflow: DocumentWorkflow = Depends(get_workflow),
):
    """Most recent documents for the household."""
    return [DocumentResponse.from_document(d) for d in workflow.list_documents(household_id, limit=limit)]


@app.get("/documents/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: UUID,
    household_id: str = Header(..., alias="X-Household-Id"),
    workflow: DocumentWorkflow = Depends(get_workflow),
):
    """Status and extracted candidates of one document."""
    try:
        document = workflow.get_status(household_id, document_id)
    except DocumentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return DocumentResponse.from_document(document)


@app.post("/documents/{document_id}/confirm-import", response_model=DocumentResponse)
async def confirm_import(
    document_id: UUID,
    request: ConfirmImportRequest,
    household_id: str = Header(..., alias="X-Household-Id"),
    workflow: DocumentWorkflow = Depends(get_workflow),
):
    """Import all, none, the non-duplicates, or chosen rows of a reviewed document."""
    try:
        document = await workflow.confirm_import(household_id, document_id, request)
    except DocumentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidDocumentStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidImportSelectionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return DocumentResponse.from_document(document)


@app.get("/processing-status")
async def get_processing_status(workflow: DocumentWorkflow = Depends(get_workflow)):
    """Get status of background processing jobs."""
    jobs = workflow.jobs.get_all_jobs()
    return {"jobs": jobs, "has_active": any(j["status"] == "processing" for j in jobs)}


@app.get("/settings", response_model=SettingsResponse)
async def get_settings():
    """Get current settings."""
    return SettingsResponse(
        llm_provider=settings.llm_provider,
        ollama_host=settings.ollama_host,
        has_openai_key=bool(settings.openai_api_key),
    )


@app.put("/settings")
async def update_settings(update: SettingsUpdate):
    """Update settings (runtime only, doesn't persist to .env)."""
    if update.llm_provider:
        settings.llm_provider = update.llm_provider
    if update.openai_api_key:
        settings.openai_api_key = update.openai_api_key
    if update.ollama_host:
        settings.ollama_host = update.ollama_host
    logger.info(f"Settings updated: provider={settings.llm_provider}")
    return {"status": "updated"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ledgerscan.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.dev_mode,
    )
