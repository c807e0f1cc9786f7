import json
import os
import re
from collections.abc import Sequence
from typing import Any

from openai import OpenAI, OpenAIError

from finance_copilot.core import settings
from finance_copilot.errors import ExternalServiceError
from finance_copilot.logger import get_logger
from finance_copilot.models import (
    CATEGORIES,
    FALLBACK_CATEGORY,
    CategorizationResult,
    coerce_category,
    is_valid_category,
)

from .base import Classifier

logger = get_logger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

SINGLE_SYSTEM_PROMPT = f"""You are a financial transaction categorizer. Given a merchant/payee name, determine the most appropriate category.

Available categories: {", ".join(CATEGORIES)}

Rules:
- Respond with ONLY the category name, nothing else
- If unsure, choose the closest match
- For ambiguous merchants, consider what they're most commonly known for
- "Other" should only be used as a last resort"""

BATCH_SYSTEM_PROMPT = f"""You are a financial transaction categorizer. Categorize each merchant/payee.

Available categories: {", ".join(CATEGORIES)}

Respond with a JSON array of category names, one per input merchant, in the same order.
Example: ["Dining", "Shopping", "Coffee"]"""


def fallback_result(merchant: str) -> CategorizationResult:
    return CategorizationResult(
        category=FALLBACK_CATEGORY,
        confidence="low",
        method="fallback",
        normalized_merchant=merchant,
        suggest_rule=True,
    )


def ai_result(category: str, merchant: str) -> CategorizationResult:
    return CategorizationResult(
        category=category,
        confidence="low" if category == FALLBACK_CATEGORY else "medium",
        method="ai",
        normalized_merchant=merchant,
        suggest_rule=True,
    )


def strip_code_fences(text: str) -> str:
    return _CODE_FENCE.sub("", text.strip()).strip()


class LLMClassifier(Classifier):
    def __init__(self, api_key: str | None = None, model: str | None = None, base_url: str | None = None):
        self.client = OpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            base_url=base_url or os.getenv("OPENAI_BASE_URL") or None
        )
        self.model = model or settings.get_openai_model()

    def _complete(self, messages: list[dict[str, str]], max_tokens: int) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=0,
            max_tokens=max_tokens,
        )
        text = self._extract_output_text(response)
        return text or ""

    def classify(self, merchant: str, description: str, **context: Any) -> CategorizationResult:
        try:
            reply = self._complete(
                [
                    {"role": "system", "content": SINGLE_SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": f'Categorize this transaction: "{description}"\n'
                                   f'Normalized merchant: "{merchant}"',
                    },
                ],
                max_tokens=20,
            )
        except OpenAIError as e:
            logger.error("[AI] Categorization failed for '%s': %s", merchant, e)
            return fallback_result(merchant)

        category = coerce_category(reply)
        if reply and category == FALLBACK_CATEGORY and reply.strip() != FALLBACK_CATEGORY:
            logger.debug("[AI] Reply '%s' is not a known category, using Other.", reply.strip()[:40])
        return ai_result(category, merchant)

    def classify_batch(self, merchants: Sequence[str]) -> list[str]:
        """
        Categorize up to one batch of merchants with a single completion call.

        Returns one category per merchant in input order. Unknown names become
        ``Other``; an unparseable reply or a reply of the wrong length raises
        ``ExternalServiceError`` so the caller can degrade the whole batch.
        """
        if not merchants:
            return []
        listing = "\n".join(f"{index}. {merchant}" for index, merchant in enumerate(merchants, start=1))
        try:
            reply = self._complete(
                [
                    {"role": "system", "content": BATCH_SYSTEM_PROMPT},
                    {"role": "user", "content": f"Categorize these merchants:\n{listing}"},
                ],
                max_tokens=max(200, 12 * len(merchants)),
            )
        except OpenAIError as e:
            raise ExternalServiceError("Batch categorization request failed", details=str(e)) from e

        try:
            parsed = json.loads(strip_code_fences(reply) or "[]")
        except json.JSONDecodeError as e:
            raise ExternalServiceError("Batch categorization reply was not JSON", details=reply[:200]) from e
        if not isinstance(parsed, list) or len(parsed) != len(merchants):
            raise ExternalServiceError(
                "Batch categorization reply did not match the input",
                details=f"expected {len(merchants)} items",
            )
        return [item if isinstance(item, str) and is_valid_category(item) else FALLBACK_CATEGORY for item in parsed]

    @staticmethod
    def _extract_output_text(response: object) -> str | None:
        choices = getattr(response, "choices", None)
        if not choices:
            return None
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        if isinstance(content, str):
            return content
        return None
