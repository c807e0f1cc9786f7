from typing import Any

from finance_copilot.categorization.patterns import DEFAULT_PATTERN_TABLE, PatternTable
from finance_copilot.logger import get_logger
from finance_copilot.models import CategorizationResult

from .base import Classifier

logger = get_logger(__name__)

SQUARE_PREFIXES = ("SQ *", "SQU*")
TOAST_PREFIXES = ("TST*", "TOAST*")


class PatternClassifier(Classifier):
    def __init__(self, table: PatternTable = DEFAULT_PATTERN_TABLE) -> None:
        self.table = table

    def classify(self, merchant: str, description: str, **context: Any) -> CategorizationResult | None:
        category = self.table.match(merchant)
        if category is None:
            return None
        return CategorizationResult(
            category=category,
            confidence="high",
            method="pattern",
            normalized_merchant=merchant,
        )


class ProcessorHeuristicClassifier(Classifier):
    """
    Hints taken from the payment processor prefix on the raw description.

    Toast only runs restaurant point-of-sale terminals. Square serves every
    kind of merchant, so a Square prefix is left for the AI step.
    """

    def classify(self, merchant: str, description: str, **context: Any) -> CategorizationResult | None:
        raw = (description or "").upper().lstrip()
        if raw.startswith(TOAST_PREFIXES):
            return CategorizationResult(
                category="Dining",
                confidence="medium",
                method="pattern",
                normalized_merchant=merchant,
            )
        if raw.startswith(SQUARE_PREFIXES):
            logger.debug("[CATEGORIZE] Square merchant '%s' deferred to AI.", merchant)
        return None
