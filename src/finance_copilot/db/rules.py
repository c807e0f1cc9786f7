from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from finance_copilot.db.models import CategoryRuleRecord
from finance_copilot.errors import ConflictError, ValidationError
from finance_copilot.logger import get_logger
from finance_copilot.models import CategoryRule, is_valid_category

logger = get_logger(__name__)

DEFAULT_RULES: tuple[tuple[str, str], ...] = (
    ("STARBUCKS", "Coffee"),
    ("COFFEE", "Coffee"),
    ("DUNKIN", "Coffee"),
    ("PEET", "Coffee"),
    ("WHOLE FOODS", "Groceries"),
    ("SAFEWAY", "Groceries"),
    ("TRADER JOE", "Groceries"),
    ("KROGER", "Groceries"),
    ("WALMART", "Groceries"),
    ("TARGET", "Shopping"),
    ("AMAZON", "Shopping"),
    ("UBER", "Transportation"),
    ("LYFT", "Transportation"),
    ("SHELL", "Gas"),
    ("CHEVRON", "Gas"),
    ("EXXON", "Gas"),
    ("BP ", "Gas"),
    ("NETFLIX", "Entertainment"),
    ("SPOTIFY", "Entertainment"),
    ("HULU", "Entertainment"),
    ("DISNEY", "Entertainment"),
    ("RESTAURANT", "Dining"),
    ("PIZZA", "Dining"),
    ("MCDONALD", "Dining"),
    ("CHIPOTLE", "Dining"),
    ("SUBWAY", "Dining"),
    ("VENMO", "Transfer"),
    ("PAYPAL", "Transfer"),
    ("ZELLE", "Transfer"),
    ("ATM", "Cash Withdrawal"),
    ("PHARMACY", "Healthcare"),
    ("CVS", "Healthcare"),
    ("WALGREENS", "Healthcare"),
    ("GYM", "Fitness"),
    ("FITNESS", "Fitness"),
)


def _to_rule(record: CategoryRuleRecord) -> CategoryRule:
    return CategoryRule(id=record.id, pattern=record.pattern, category=record.category)


def first_matching_rule(rules: Iterable[CategoryRule], merchant: str) -> CategoryRule | None:
    """First rule, in the given order, whose pattern occurs in ``merchant`` (case-insensitive)."""
    upper = merchant.upper()
    return next((rule for rule in rules if rule.pattern in upper), None)


class RuleStore:
    """
    Global merchant-pattern rules.

    Match order is longest pattern first, ties broken by pattern ascending,
    so ``STARBUCKS RESERVE`` beats ``STARBUCKS`` regardless of insertion order.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_rules(self) -> list[CategoryRule]:
        stmt = select(CategoryRuleRecord).order_by(
            func.length(CategoryRuleRecord.pattern).desc(),
            CategoryRuleRecord.pattern.asc(),
        )
        return [_to_rule(record) for record in self.session.scalars(stmt)]

    def insert_rule(self, pattern: str, category: str) -> CategoryRule:
        # Trailing spaces are significant ("BP " must not match "BPX").
        normalized = (pattern or "").upper()
        if not normalized.strip():
            raise ValidationError("Pattern must not be empty")
        if not is_valid_category(category):
            raise ValidationError(f"Unknown category '{category}'")

        existing = self.session.scalar(
            select(CategoryRuleRecord).where(CategoryRuleRecord.pattern == normalized)
        )
        if existing is not None:
            raise ConflictError(
                f"Rule for pattern '{normalized}' already exists",
                details=existing.category,
            )

        record = CategoryRuleRecord(pattern=normalized, category=category)
        self.session.add(record)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(f"Rule for pattern '{normalized}' already exists") from exc
        self.session.refresh(record)
        logger.info("[RULES] Created rule '%s' -> %s", normalized, category)
        return _to_rule(record)

    def delete_rule(self, rule_id: int) -> bool:
        record = self.session.get(CategoryRuleRecord, rule_id)
        if record is None:
            return False
        self.session.delete(record)
        self.session.commit()
        logger.info("[RULES] Deleted rule %s ('%s')", rule_id, record.pattern)
        return True

    def match(self, merchant: str) -> CategoryRule | None:
        return first_matching_rule(self.list_rules(), merchant)

    def seed_defaults(self) -> int:
        existing = set(self.session.scalars(select(CategoryRuleRecord.pattern)))
        inserted = 0
        for pattern, category in DEFAULT_RULES:
            if pattern in existing:
                continue
            self.session.add(CategoryRuleRecord(pattern=pattern, category=category))
            inserted += 1
        self.session.commit()
        logger.info("[RULES] Seeded %s default rules (%s already present).", inserted, len(DEFAULT_RULES) - inserted)
        return inserted
