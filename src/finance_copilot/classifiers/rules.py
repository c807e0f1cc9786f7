from collections.abc import Callable, Sequence
from typing import Any

from sqlalchemy.orm import Session

from finance_copilot.db.rules import RuleStore, first_matching_rule
from finance_copilot.models import CategorizationResult, CategoryRule

from .base import Classifier


class RuleClassifier(Classifier):
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def load_rules(self) -> list[CategoryRule]:
        with self.session_factory() as session:
            return RuleStore(session).list_rules()

    def classify(
        self,
        merchant: str,
        description: str,
        *,
        rules: Sequence[CategoryRule] | None = None,
        **context: Any,
    ) -> CategorizationResult | None:
        # Batch callers pass a snapshot so rules are read once, not once per row.
        if rules is None:
            with self.session_factory() as session:
                rule = RuleStore(session).match(merchant)
        else:
            rule = first_matching_rule(rules, merchant)
        if rule is None:
            return None
        return CategorizationResult(
            category=rule.category,
            confidence="high",
            method="rule",
            normalized_merchant=merchant,
        )

    def learn(self, merchant: str, category: str) -> CategoryRule:
        with self.session_factory() as session:
            return RuleStore(session).insert_rule(merchant, category)
