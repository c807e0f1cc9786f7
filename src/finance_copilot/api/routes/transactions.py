from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from finance_copilot.api.dependencies import get_db, get_ingestion, get_rag_optional, get_service, get_user_scope
from finance_copilot.api.schemas import TransactionList, TransactionUpdate, TransactionUpdateResponse
from finance_copilot.db.transactions import TransactionRepository
from finance_copilot.errors import FinanceCopilotError, NotFoundError, ValidationError
from finance_copilot.logger import get_logger
from finance_copilot.manager import CategorizerService
from finance_copilot.services.ingestion import IngestionService
from finance_copilot.services.rag import RAGService

logger = get_logger(__name__)

router = APIRouter()


@router.get("/api/transactions")
def list_transactions(
    scope: Annotated[str, Depends(get_user_scope)],
    session: Annotated[Session, Depends(get_db)],
    limit: Annotated[int, Query(ge=0, le=1000)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
    category: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    search: str | None = None,
    sort_by: str = "date",
    sort_order: str = "DESC",
) -> TransactionList:
    repo = TransactionRepository(session)
    transactions, total = repo.list_transactions(
        scope,
        limit=limit,
        offset=offset,
        category=category,
        start_date=start_date,
        end_date=end_date,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return TransactionList(
        transactions=transactions,
        total=total,
        limit=limit,
        offset=offset,
        categories=repo.distinct_categories(scope),
    )


@router.patch("/api/transactions")
def update_transaction(
    payload: TransactionUpdate,
    scope: Annotated[str, Depends(get_user_scope)],
    session: Annotated[Session, Depends(get_db)],
    service: Annotated[CategorizerService, Depends(get_service)],
    ingestion: Annotated[IngestionService, Depends(get_ingestion)],
) -> TransactionUpdateResponse:
    updated = TransactionRepository(session).update(
        scope,
        payload.id,
        category=payload.category,
        description=payload.description,
    )
    ingestion.schedule_reindex(scope, [updated.id])

    rule_created = False
    rule_pattern = None
    if payload.category is not None and payload.learn_from_correction:
        try:
            learned = service.learn_from_correction(updated.description, payload.category, create_rule=True)
        except FinanceCopilotError as e:
            logger.error("[RULES] Failed to learn from correction of %s: %s", payload.id, e.message)
        else:
            rule_created = learned.rule_created
            rule_pattern = learned.pattern

    return TransactionUpdateResponse(
        message="Updated 1 transaction",
        transaction=updated,
        rule_created=rule_created,
        rule_pattern=rule_pattern,
    )


@router.delete("/api/transactions")
def delete_transactions(
    scope: Annotated[str, Depends(get_user_scope)],
    session: Annotated[Session, Depends(get_db)],
    rag: Annotated[RAGService | None, Depends(get_rag_optional)],
    id: int | None = None,
    delete_all: bool = False,
) -> dict[str, Any]:
    repo = TransactionRepository(session)
    if id is not None:
        if not repo.delete(scope, id):
            raise NotFoundError(f"Transaction {id} not found")
        if rag:
            rag.store.delete(scope, "transaction", str(id))
        return {"success": True, "message": "Deleted 1 transaction", "deleted": 1}
    if delete_all:
        count = repo.clear(scope)
        if rag:
            rag.store.delete_user_documents(scope, doc_type="transaction")
        return {"success": True, "message": f"All {count} transactions deleted", "deleted": count}
    raise ValidationError("No id or delete_all parameter provided")
