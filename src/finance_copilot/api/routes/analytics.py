from typing import Annotated, Any

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from finance_copilot.api.dependencies import get_db, get_user_scope
from finance_copilot.db.transactions import TransactionRepository

router = APIRouter()

ANALYTICS_MONTHS = 12
RECENT_TRANSACTIONS = 20
TOP_MERCHANTS = 10


@router.get("/api/analytics")
def get_analytics(
    scope: Annotated[str, Depends(get_user_scope)],
    session: Annotated[Session, Depends(get_db)],
) -> dict[str, Any]:
    repo = TransactionRepository(session)
    return {
        "category_data": repo.category_breakdown(scope),
        "monthly_data": repo.monthly_trends(scope, months=ANALYTICS_MONTHS),
        "recent_transactions": repo.recent(scope, limit=RECENT_TRANSACTIONS),
        "summary": repo.summary(scope),
        "top_merchants": repo.top_merchants(scope, limit=TOP_MERCHANTS),
    }
