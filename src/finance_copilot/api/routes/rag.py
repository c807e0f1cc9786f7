import asyncio
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request

from finance_copilot.api.dependencies import get_rag_optional, get_user_scope
from finance_copilot.errors import ExternalServiceError
from finance_copilot.logger import get_logger
from finance_copilot.services.rag import BootstrapResult, RAGService

logger = get_logger(__name__)

router = APIRouter()


@router.post("/api/rag/bootstrap")
async def bootstrap_retrieval(
    scope: Annotated[str, Depends(get_user_scope)],
    rag: Annotated[RAGService | None, Depends(get_rag_optional)],
) -> BootstrapResult:
    if rag is None:
        raise ExternalServiceError("Retrieval is not configured", details="Set OPENAI_API_KEY")
    result = await asyncio.to_thread(rag.bootstrap_user, scope)
    logger.info(
        "[INDEX] Bootstrap indexed %s transactions and %s examples.",
        result.transactions_indexed,
        result.examples_added,
    )
    return result


@router.get("/api/rag/status")
async def retrieval_status(
    request: Request,
    scope: Annotated[str, Depends(get_user_scope)],
    rag: Annotated[RAGService | None, Depends(get_rag_optional)],
) -> dict[str, Any]:
    indexing = getattr(request.app.state, "indexing", None)
    documents = await asyncio.to_thread(rag.store.count, scope) if rag else 0
    return {
        "enabled": rag is not None,
        "documents": documents,
        "indexing": indexing.get_status() if indexing else None,
    }
