import asyncio
from typing import Annotated, Any

from fastapi import APIRouter, Depends

from finance_copilot.api.dependencies import get_recategorization, get_service, get_user_scope
from finance_copilot.api.schemas import RecategorizeRequest
from finance_copilot.manager import CategorizerService
from finance_copilot.models import CATEGORIES
from finance_copilot.services.categorization import RecategorizationPipeline, RecategorizeOutcome

router = APIRouter()


@router.post("/api/recategorize")
async def recategorize(
    req: RecategorizeRequest,
    scope: Annotated[str, Depends(get_user_scope)],
    pipeline: Annotated[RecategorizationPipeline, Depends(get_recategorization)],
) -> RecategorizeOutcome:
    return await pipeline.apply_async(
        scope,
        transaction_ids=req.transaction_ids,
        recategorize_all=req.recategorize_all,
        only_other=req.only_other,
    )


@router.get("/api/recategorize/preview")
async def preview_categorization(
    scope: Annotated[str, Depends(get_user_scope)],
    service: Annotated[CategorizerService, Depends(get_service)],
    description: str | None = None,
) -> dict[str, Any]:
    if not description:
        return {"categories": list(CATEGORIES)}

    result = await asyncio.to_thread(service.categorize, description)
    return {"description": description, **result.model_dump()}
