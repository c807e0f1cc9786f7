from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, UploadFile

from finance_copilot.api.dependencies import get_ingestion, get_user_scope
from finance_copilot.api.schemas import UploadResponse
from finance_copilot.errors import ValidationError
from finance_copilot.services.ingestion import IngestionService

router = APIRouter()


@router.post("/api/upload")
async def upload_statement(
    scope: Annotated[str, Depends(get_user_scope)],
    ingestion: Annotated[IngestionService, Depends(get_ingestion)],
    file: Annotated[UploadFile, File()],
    clear_existing: Annotated[bool, Form()] = False,
) -> UploadResponse:
    raw = await file.read()
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ValidationError("Uploaded file is not UTF-8 text", details=str(e)) from e

    outcome = await ingestion.ingest(scope, text, clear_existing=clear_existing)
    return UploadResponse(
        message=f"Successfully processed {outcome.processed} transactions",
        processed=outcome.processed,
        skipped=outcome.skipped,
        errors=outcome.errors,
        categorization_stats=outcome.methods,
    )
