import asyncio
from collections.abc import Callable, Sequence
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from finance_copilot.db.transactions import TransactionRepository
from finance_copilot.errors import ValidationError
from finance_copilot.logger import get_logger
from finance_copilot.manager import CategorizerService
from finance_copilot.models import Method

logger = get_logger(__name__)

MAX_REPORTED_CHANGES = 50


class CategoryChange(BaseModel):
    id: int
    description: str
    old_category: str | None = None
    new_category: str
    method: Method


class RecategorizeOutcome(BaseModel):
    updated: int
    message: str
    details: list[CategoryChange] = Field(default_factory=list)


class RecategorizationPipeline:
    """Re-runs categorization over stored transactions, either as a preview or for real."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        categorizer: CategorizerService,
        on_change: Callable[[str, list[int]], Any] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.categorizer = categorizer
        # Called with the ids written by apply().
        self.on_change = on_change

    def plan(
        self,
        scope: str,
        *,
        transaction_ids: Sequence[int] | None = None,
        recategorize_all: bool = False,
        only_other: bool = False,
    ) -> list[CategoryChange]:
        """Proposed category for every selected transaction. Nothing is written."""
        if not recategorize_all and transaction_ids is None:
            raise ValidationError("Provide transaction_ids or set recategorize_all")

        with self.session_factory() as session:
            transactions = TransactionRepository(session).all_for_user(
                scope,
                ids=None if recategorize_all else list(transaction_ids or []),
                only_other=only_other,
            )
        if not transactions:
            return []

        results = self.categorizer.batch_categorize([tx.description for tx in transactions])
        return [
            CategoryChange(
                id=tx.id,
                description=tx.description,
                old_category=tx.category,
                new_category=result.category,
                method=result.method,
            )
            for tx, result in zip(transactions, results)
        ]

    def apply(
        self,
        scope: str,
        *,
        transaction_ids: Sequence[int] | None = None,
        recategorize_all: bool = False,
        only_other: bool = False,
    ) -> RecategorizeOutcome:
        changes = self.plan(
            scope,
            transaction_ids=transaction_ids,
            recategorize_all=recategorize_all,
            only_other=only_other,
        )
        if not changes:
            return RecategorizeOutcome(updated=0, message="No transactions to recategorize")

        with self.session_factory() as session:
            updated = TransactionRepository(session).set_categories(
                scope, {change.id: change.new_category for change in changes}
            )
        logger.info("[CATEGORIZE] Recategorized %s transactions.", updated)
        if self.on_change is not None and updated:
            self.on_change(scope, [change.id for change in changes])
        return RecategorizeOutcome(
            updated=updated,
            message=f"Recategorized {updated} transaction(s)",
            details=changes[:MAX_REPORTED_CHANGES],
        )

    async def apply_async(self, scope: str, **options: Any) -> RecategorizeOutcome:
        return await asyncio.to_thread(self.apply, scope, **options)
