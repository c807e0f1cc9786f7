import os
from collections.abc import Callable, Sequence

from sqlalchemy.orm import Session

from finance_copilot.categorization.normalizer import normalize_merchant
from finance_copilot.categorization.patterns import DEFAULT_PATTERN_TABLE, PatternTable
from finance_copilot.classifiers.base import Classifier
from finance_copilot.classifiers.llm import LLMClassifier, ai_result, fallback_result
from finance_copilot.classifiers.patterns import PatternClassifier, ProcessorHeuristicClassifier
from finance_copilot.classifiers.rules import RuleClassifier
from finance_copilot.core import settings
from finance_copilot.errors import ConflictError, ExternalServiceError
from finance_copilot.logger import get_logger
from finance_copilot.models import CategorizationResult, CategoryRule, LearningResult

logger = get_logger(__name__)

MIN_RULE_PATTERN_LENGTH = 3
MAX_RULE_PATTERN_LENGTH = 50


class CategorizerService:
    def __init__(self,
                 session_factory: Callable[[], Session],
                 patterns: PatternTable = DEFAULT_PATTERN_TABLE,
                 llm: LLMClassifier | None = None,
                 batch_size: int | None = None):

        # 1. User-taught and seeded rules (highest priority)
        self.rules = RuleClassifier(session_factory)
        # 2. Built-in merchant patterns
        self.patterns = PatternClassifier(patterns)
        # 3. Payment processor hints
        self.heuristics = ProcessorHeuristicClassifier()

        self.classifiers: list[Classifier] = [self.rules, self.patterns, self.heuristics]

        # 4. LLM Classifier (Fallback)
        # Only enabled if API key is present
        if llm is None and os.getenv("OPENAI_API_KEY"):
            llm = LLMClassifier(
                api_key=os.getenv("OPENAI_API_KEY"),
                model=settings.get_openai_model(),
                base_url=os.getenv("OPENAI_BASE_URL"),
            )
            logger.info(
                "[AI] LLM classifier enabled: model=%s, base_url=%s",
                llm.model,
                os.getenv("OPENAI_BASE_URL") or "default",
            )
        elif llm is None:
            logger.warning("[AI] OPENAI_API_KEY not found. Unmatched merchants will fall back to Other.")
        self.llm = llm

        self.batch_size = min(batch_size or settings.get_ai_batch_size(), settings.MAX_AI_BATCH_SIZE)

    def categorize_local(
        self,
        description: str,
        *,
        rules: Sequence[CategoryRule] | None = None,
    ) -> CategorizationResult | None:
        merchant = normalize_merchant(description)
        for classifier in self.classifiers:
            result = classifier.classify(merchant, description, rules=rules)
            if result:
                logger.debug(
                    "[CATEGORIZE] %s matched '%s' -> %s",
                    classifier.__class__.__name__,
                    merchant,
                    result.category,
                )
                return result
        return None

    def categorize(self, description: str) -> CategorizationResult:
        local = self.categorize_local(description)
        if local:
            return local

        merchant = normalize_merchant(description)
        if not self.llm:
            return fallback_result(merchant)
        return self.llm.classify(merchant, description)

    def batch_categorize(self, descriptions: Sequence[str]) -> list[CategorizationResult]:
        """
        Categorize many descriptions, output aligned with input.

        Local classifiers run first; the remainder goes to the AI in batches of
        ``batch_size`` with one call per batch. A failed batch degrades only its
        own items to the fallback result.
        """
        rules = self.rules.load_rules()
        results: list[CategorizationResult | None] = []
        pending: list[tuple[int, str]] = []

        for index, description in enumerate(descriptions):
            local = self.categorize_local(description, rules=rules)
            results.append(local)
            if local is None:
                pending.append((index, normalize_merchant(description)))

        unmatched = len(pending)
        if pending and not self.llm:
            for index, merchant in pending:
                results[index] = fallback_result(merchant)
            pending = []

        for start in range(0, len(pending), self.batch_size):
            batch = pending[start:start + self.batch_size]
            merchants = [merchant for _, merchant in batch]
            try:
                categories = self.llm.classify_batch(merchants)
            except ExternalServiceError as e:
                logger.error(
                    "[AI] Batch of %s merchants failed, using fallback: %s (%s)",
                    len(batch),
                    e.message,
                    e.details or "no details",
                )
                for index, merchant in batch:
                    results[index] = fallback_result(merchant)
                continue
            for (index, merchant), category in zip(batch, categories):
                results[index] = ai_result(category, merchant)

        logger.info(
            "[CATEGORIZE] Batch of %s: %s local, %s via AI or fallback.",
            len(descriptions),
            len(descriptions) - unmatched,
            unmatched,
        )
        return [result for result in results if result is not None]

    def learn_from_correction(
        self,
        description: str,
        corrected_category: str,
        create_rule: bool = False,
    ) -> LearningResult:
        """
        Turn a user correction into a rule for the normalized merchant.

        Patterns shorter than 3 or longer than 50 characters are skipped. An
        existing rule for the same pattern is reported back, not overwritten.
        """
        if not create_rule:
            return LearningResult(rule_created=False)

        pattern = normalize_merchant(description)
        if not MIN_RULE_PATTERN_LENGTH <= len(pattern) <= MAX_RULE_PATTERN_LENGTH:
            logger.info("[RULES] Skipping rule for '%s' (length %s).", pattern, len(pattern))
            return LearningResult(rule_created=False)

        try:
            self.rules.learn(pattern, corrected_category)
        except ConflictError:
            logger.info("[RULES] Rule for '%s' already exists.", pattern)
            return LearningResult(rule_created=False, pattern=pattern)
        return LearningResult(rule_created=True, pattern=pattern)
