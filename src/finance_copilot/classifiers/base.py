from abc import ABC, abstractmethod
from typing import Any

from finance_copilot.models import CategorizationResult


class Classifier(ABC):
    @abstractmethod
    def classify(self, merchant: str, description: str, **context: Any) -> CategorizationResult | None:
        """Attempt to categorize a normalized merchant; None means "not mine, try the next one"."""
        pass

    def learn(self, merchant: str, category: str) -> Any:
        """Learn from a corrected merchant-category pair. Most classifiers are static."""
        return None
