from typing import Annotated, Any

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from finance_copilot.api.dependencies import get_db, get_ingestion, get_user_scope
from finance_copilot.api.schemas import RuleCreate, RuleCreateResponse
from finance_copilot.db.rules import RuleStore
from finance_copilot.db.transactions import TransactionRepository
from finance_copilot.errors import NotFoundError
from finance_copilot.logger import get_logger
from finance_copilot.services.ingestion import IngestionService

logger = get_logger(__name__)

router = APIRouter()


@router.get("/api/categories")
def list_rules(
    scope: Annotated[str, Depends(get_user_scope)],
    session: Annotated[Session, Depends(get_db)],
) -> dict[str, Any]:
    return {"rules": RuleStore(session).list_rules()}


@router.post("/api/categories")
def create_rule(
    payload: RuleCreate,
    scope: Annotated[str, Depends(get_user_scope)],
    session: Annotated[Session, Depends(get_db)],
    ingestion: Annotated[IngestionService, Depends(get_ingestion)],
) -> RuleCreateResponse:
    rule = RuleStore(session).insert_rule(payload.pattern, payload.category)
    # Rules are global; only the caller's transactions are recategorized.
    changed = TransactionRepository(session).recategorize_matching(scope, rule.pattern, rule.category)
    logger.info("[RULES] Rule '%s' -> %s applied to %s transactions.", rule.pattern, rule.category, len(changed))
    ingestion.schedule_reindex(scope, changed)
    return RuleCreateResponse(rule=rule, updated_transactions=len(changed))


@router.delete("/api/categories")
def delete_rule(
    id: int,
    scope: Annotated[str, Depends(get_user_scope)],
    session: Annotated[Session, Depends(get_db)],
) -> dict[str, Any]:
    if not RuleStore(session).delete_rule(id):
        raise NotFoundError(f"Rule {id} not found")
    return {"success": True, "deleted": True}
