from collections.abc import Iterable, Sequence
from typing import Any

from sqlalchemy import and_, case, delete, func, select
from sqlalchemy.orm import Session

from finance_copilot.db.models import TransactionRecord
from finance_copilot.errors import NotFoundError, ValidationError
from finance_copilot.logger import get_logger
from finance_copilot.models import Transaction, is_valid_category, transaction_type_for

logger = get_logger(__name__)

SORT_COLUMNS = {
    "date": TransactionRecord.date,
    "amount": TransactionRecord.amount,
    "description": TransactionRecord.description,
    "category": TransactionRecord.category,
    "id": TransactionRecord.id,
}

_MONTH = func.substr(TransactionRecord.date, 1, 7)
_EXPENSES = func.abs(func.sum(case((TransactionRecord.amount < 0, TransactionRecord.amount), else_=0)))
_INCOME = func.sum(case((TransactionRecord.amount > 0, TransactionRecord.amount), else_=0))


def to_transaction(record: TransactionRecord) -> Transaction:
    return Transaction(
        id=record.id,
        user_id=record.user_id,
        date=record.date,
        description=record.description,
        amount=record.amount,
        category=record.category,
        account=record.account,
        transaction_type=record.transaction_type,
    )


def _money(value: Any) -> float:
    return round(float(value or 0), 2)


class TransactionRepository:
    """Persistence for transactions. Every method is scoped to one user."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _scoped(self, scope: str, *conditions: Any) -> Any:
        return and_(TransactionRecord.user_id == scope, *conditions)

    # --- writes ----------------------------------------------------------

    def insert_many(self, scope: str, rows: Iterable[dict[str, Any]]) -> list[Transaction]:
        records = []
        for row in rows:
            amount = float(row["amount"])
            records.append(TransactionRecord(
                user_id=scope,
                date=str(row["date"]),
                description=row["description"],
                amount=amount,
                category=row.get("category"),
                account=row.get("account"),
                transaction_type=transaction_type_for(amount),
            ))
        if not records:
            return []
        self.session.add_all(records)
        self.session.commit()
        return [to_transaction(record) for record in records]

    def update(
        self,
        scope: str,
        transaction_id: int,
        *,
        category: str | None = None,
        description: str | None = None,
    ) -> Transaction:
        if category is None and description is None:
            raise ValidationError("No updates provided")
        if category is not None and not is_valid_category(category):
            raise ValidationError(f"Unknown category '{category}'")

        record = self._get_record(scope, transaction_id)
        if category is not None:
            record.category = category
        if description is not None:
            record.description = description
        self.session.commit()
        return to_transaction(record)

    def set_categories(self, scope: str, updates: dict[int, str]) -> int:
        if not updates:
            return 0
        records = self.session.scalars(
            select(TransactionRecord).where(self._scoped(scope, TransactionRecord.id.in_(list(updates))))
        )
        changed = 0
        for record in records:
            record.category = updates[record.id]
            changed += 1
        self.session.commit()
        return changed

    def recategorize_matching(self, scope: str, pattern: str, category: str) -> list[int]:
        """Assign ``category`` to the user's transactions whose description contains ``pattern``.

        Returns the ids whose category actually changed.
        """
        records = self.session.scalars(
            select(TransactionRecord).where(
                self._scoped(scope, func.upper(TransactionRecord.description).contains(pattern.upper()))
            )
        )
        changed: list[int] = []
        for record in records:
            if record.category != category:
                record.category = category
                changed.append(record.id)
        self.session.commit()
        return changed

    def delete(self, scope: str, transaction_id: int) -> bool:
        result = self.session.execute(
            delete(TransactionRecord).where(self._scoped(scope, TransactionRecord.id == transaction_id))
        )
        self.session.commit()
        return result.rowcount > 0

    def clear(self, scope: str) -> int:
        result = self.session.execute(delete(TransactionRecord).where(self._scoped(scope)))
        self.session.commit()
        logger.info("[TRANSACTIONS] Cleared %s transactions for user.", result.rowcount)
        return result.rowcount

    # --- reads -----------------------------------------------------------

    def _get_record(self, scope: str, transaction_id: int) -> TransactionRecord:
        record = self.session.scalar(
            select(TransactionRecord).where(self._scoped(scope, TransactionRecord.id == transaction_id))
        )
        if record is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return record

    def get(self, scope: str, transaction_id: int) -> Transaction:
        return to_transaction(self._get_record(scope, transaction_id))

    def count(self, scope: str) -> int:
        return self.session.scalar(select(func.count()).select_from(TransactionRecord).where(self._scoped(scope))) or 0

    def list_transactions(
        self,
        scope: str,
        *,
        limit: int = 100,
        offset: int = 0,
        category: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
        search: str | None = None,
        sort_by: str = "date",
        sort_order: str = "DESC",
    ) -> tuple[list[Transaction], int]:
        conditions = []
        if category:
            conditions.append(TransactionRecord.category == category)
        if start_date:
            conditions.append(TransactionRecord.date >= start_date)
        if end_date:
            conditions.append(TransactionRecord.date <= end_date)
        if search:
            conditions.append(TransactionRecord.description.ilike(f"%{search}%"))
        where = self._scoped(scope, *conditions)

        # Unknown sort columns fall back to date; the value never reaches SQL text.
        column = SORT_COLUMNS.get(sort_by, TransactionRecord.date)
        ordering = column.asc() if (sort_order or "").upper() == "ASC" else column.desc()

        total = self.session.scalar(select(func.count()).select_from(TransactionRecord).where(where)) or 0
        records = self.session.scalars(
            select(TransactionRecord)
            .where(where)
            .order_by(ordering, TransactionRecord.id.desc())
            .limit(max(limit, 0))
            .offset(max(offset, 0))
        )
        return [to_transaction(record) for record in records], total

    def all_for_user(
        self,
        scope: str,
        *,
        ids: Sequence[int] | None = None,
        only_other: bool = False,
    ) -> list[Transaction]:
        conditions = []
        if ids is not None:
            conditions.append(TransactionRecord.id.in_(list(ids)))
        if only_other:
            conditions.append(
                (TransactionRecord.category == "Other") | TransactionRecord.category.is_(None)
            )
        records = self.session.scalars(
            select(TransactionRecord).where(self._scoped(scope, *conditions)).order_by(TransactionRecord.id)
        )
        return [to_transaction(record) for record in records]

    def search(
        self,
        scope: str,
        term: str | None = None,
        category: str | None = None,
        limit: int = 20,
    ) -> list[Transaction]:
        conditions = []
        if term:
            conditions.append(func.lower(TransactionRecord.description).contains(term.lower()))
        if category:
            conditions.append(func.lower(TransactionRecord.category) == category.lower())
        records = self.session.scalars(
            select(TransactionRecord)
            .where(self._scoped(scope, *conditions))
            .order_by(TransactionRecord.date.desc(), TransactionRecord.id.desc())
            .limit(limit)
        )
        return [to_transaction(record) for record in records]

    def recent(self, scope: str, limit: int = 20) -> list[Transaction]:
        return self.search(scope, limit=limit)

    def distinct_categories(self, scope: str) -> list[str]:
        rows = self.session.scalars(
            select(TransactionRecord.category)
            .where(self._scoped(scope, TransactionRecord.category.is_not(None)))
            .distinct()
            .order_by(TransactionRecord.category)
        )
        return list(rows)

    def user_ids(self) -> list[str]:
        rows = self.session.scalars(
            select(TransactionRecord.user_id)
            .where(TransactionRecord.user_id != "")
            .distinct()
            .order_by(TransactionRecord.user_id)
        )
        return list(rows)

    # --- analytics -------------------------------------------------------

    def _date_conditions(self, start: str | None, end: str | None) -> list[Any]:
        conditions = []
        if start:
            conditions.append(TransactionRecord.date >= start)
        if end:
            conditions.append(TransactionRecord.date < end)
        return conditions

    def summary(self, scope: str, start: str | None = None, end: str | None = None) -> dict[str, Any]:
        avg_expense = func.avg(
            case((TransactionRecord.amount < 0, func.abs(TransactionRecord.amount)), else_=None)
        )
        row = self.session.execute(
            select(
                func.count().label("total_transactions"),
                _EXPENSES.label("total_expenses"),
                _INCOME.label("total_income"),
                func.sum(TransactionRecord.amount).label("net_savings"),
                avg_expense.label("avg_expense"),
                func.min(TransactionRecord.date).label("earliest_date"),
                func.max(TransactionRecord.date).label("latest_date"),
            ).where(self._scoped(scope, *self._date_conditions(start, end)))
        ).one()
        return {
            "total_transactions": row.total_transactions or 0,
            "total_expenses": _money(row.total_expenses),
            "total_income": _money(row.total_income),
            "net_savings": _money(row.net_savings),
            "avg_expense": _money(row.avg_expense),
            "earliest_date": row.earliest_date,
            "latest_date": row.latest_date,
        }

    def category_breakdown(self, scope: str) -> list[dict[str, Any]]:
        rows = self.session.execute(
            select(
                TransactionRecord.category,
                func.count().label("transaction_count"),
                _EXPENSES.label("total_spent"),
                _INCOME.label("total_earned"),
            )
            .where(self._scoped(scope))
            .group_by(TransactionRecord.category)
            .order_by(_EXPENSES.desc())
        )
        return [
            {
                "category": row.category,
                "transaction_count": row.transaction_count,
                "total_spent": _money(row.total_spent),
                "total_earned": _money(row.total_earned),
            }
            for row in rows
        ]

    def category_counts(self, scope: str) -> list[dict[str, Any]]:
        rows = self.session.execute(
            select(
                TransactionRecord.category,
                func.count().label("transaction_count"),
                _EXPENSES.label("total_spent"),
            )
            .where(self._scoped(scope, TransactionRecord.category.is_not(None)))
            .group_by(TransactionRecord.category)
            .order_by(func.count().desc(), TransactionRecord.category)
        )
        return [
            {"category": row.category, "count": row.transaction_count, "total_spent": _money(row.total_spent)}
            for row in rows
        ]

    def spending_by_category(
        self,
        scope: str,
        start: str | None = None,
        end: str | None = None,
        limit: int = 5,
    ) -> list[dict[str, Any]]:
        total = func.abs(func.sum(TransactionRecord.amount))
        rows = self.session.execute(
            select(TransactionRecord.category, total.label("total"), func.count().label("transaction_count"))
            .where(self._scoped(scope, TransactionRecord.amount < 0, *self._date_conditions(start, end)))
            .group_by(TransactionRecord.category)
            .order_by(total.desc())
            .limit(limit)
        )
        return [{"category": row.category, "total": _money(row.total), "count": row.transaction_count} for row in rows]

    def monthly_trends(self, scope: str, months: int = 12, since: str | None = None) -> list[dict[str, Any]]:
        """Per-month totals, oldest month first."""
        conditions = [TransactionRecord.date >= since] if since else []
        rows = self.session.execute(
            select(
                _MONTH.label("month"),
                _EXPENSES.label("expenses"),
                _INCOME.label("income"),
                func.count().label("transaction_count"),
            )
            .where(self._scoped(scope, *conditions))
            .group_by(_MONTH)
            .order_by(_MONTH.desc())
            .limit(months)
        )
        trends = [
            {
                "month": row.month,
                "expenses": _money(row.expenses),
                "income": _money(row.income),
                "transaction_count": row.transaction_count,
            }
            for row in rows
        ]
        trends.reverse()
        return trends

    def period_totals(
        self,
        scope: str,
        start: str | None,
        end: str | None,
        category: str | None = None,
    ) -> dict[str, Any]:
        conditions = self._date_conditions(start, end)
        if category:
            conditions.append(func.lower(TransactionRecord.category) == category.lower())
        row = self.session.execute(
            select(_EXPENSES.label("expenses"), _INCOME.label("income"), func.count().label("transaction_count"))
            .where(self._scoped(scope, *conditions))
        ).one()
        return {"expenses": _money(row.expenses), "income": _money(row.income), "count": row.transaction_count or 0}

    def top_merchants(self, scope: str, limit: int = 10) -> list[dict[str, Any]]:
        total = func.abs(func.sum(TransactionRecord.amount))
        rows = self.session.execute(
            select(
                TransactionRecord.description,
                TransactionRecord.category,
                func.count().label("transaction_count"),
                total.label("total_amount"),
            )
            .where(self._scoped(scope, TransactionRecord.amount < 0))
            .group_by(TransactionRecord.description, TransactionRecord.category)
            .order_by(total.desc())
            .limit(limit)
        )
        return [
            {
                "description": row.description,
                "category": row.category,
                "transaction_count": row.transaction_count,
                "total_amount": _money(row.total_amount),
            }
            for row in rows
        ]
