from collections.abc import Generator

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from finance_copilot.agent.finance_agent import FinanceAgent
from finance_copilot.core import settings
from finance_copilot.db.database import session_scope
from finance_copilot.errors import UnauthorizedError
from finance_copilot.manager import CategorizerService
from finance_copilot.services.categorization import RecategorizationPipeline
from finance_copilot.services.ingestion import IngestionService
from finance_copilot.services.rag import RAGService
from finance_copilot.services.text_to_sql import TextToSQL


def get_user_scope(request: Request) -> str:
    # Identity comes from the authenticating proxy's header only, never from the request body.
    user_id = (request.headers.get(settings.get_user_header()) or "").strip()
    if not user_id:
        raise UnauthorizedError("Unauthorized")
    return user_id


def get_db(request: Request) -> Generator[Session, None, None]:
    factory = getattr(request.app.state, "session_factory", None)
    if not factory:
        raise HTTPException(status_code=500, detail="Database not initialized")
    yield from session_scope(factory)


def get_service(request: Request) -> CategorizerService:
    service = getattr(request.app.state, "service", None)
    if not service:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return service


def get_ingestion(request: Request) -> IngestionService:
    ingestion = getattr(request.app.state, "ingestion", None)
    if not ingestion:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return ingestion


def get_recategorization(request: Request) -> RecategorizationPipeline:
    pipeline = getattr(request.app.state, "recategorization", None)
    if not pipeline:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return pipeline


def get_agent_optional(request: Request) -> FinanceAgent | None:
    return getattr(request.app.state, "agent", None)


def get_text_to_sql_optional(request: Request) -> TextToSQL | None:
    return getattr(request.app.state, "text_to_sql", None)


def get_rag_optional(request: Request) -> RAGService | None:
    return getattr(request.app.state, "rag", None)
