import os
from collections.abc import Sequence

import numpy as np
from openai import OpenAI, OpenAIError

from finance_copilot.core import settings
from finance_copilot.errors import ExternalServiceError, ValidationError
from finance_copilot.logger import get_logger
from finance_copilot.models import Transaction, transaction_type_for

logger = get_logger(__name__)

EMBEDDING_DIMENSIONS = 1536
MAX_INPUTS_PER_REQUEST = 2048


class EmbeddingClient:
    def __init__(self, api_key: str | None = None, model: str | None = None, base_url: str | None = None):
        self.client = OpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            base_url=base_url or os.getenv("OPENAI_BASE_URL") or None
        )
        self.model = model or settings.get_embedding_model()

    def _request(self, inputs: list[str]) -> list[list[float]]:
        try:
            response = self.client.embeddings.create(model=self.model, input=inputs)
        except OpenAIError as e:
            raise ExternalServiceError("Embedding request failed", details=str(e)) from e
        data = sorted(response.data, key=lambda item: item.index)
        if len(data) != len(inputs):
            raise ExternalServiceError(
                "Embedding response size mismatch",
                details=f"sent {len(inputs)}, received {len(data)}",
            )
        return [list(item.embedding) for item in data]

    def embed(self, text: str) -> list[float]:
        cleaned = (text or "").strip()
        if not cleaned:
            raise ValidationError("Cannot embed empty text")
        return self._request([cleaned])[0]

    def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed texts in input order, chunked to the provider's per-request limit."""
        cleaned = [(text or "").strip() for text in texts]
        if any(not text for text in cleaned):
            raise ValidationError("Cannot embed empty text")

        vectors: list[list[float]] = []
        for start in range(0, len(cleaned), MAX_INPUTS_PER_REQUEST):
            chunk = cleaned[start:start + MAX_INPUTS_PER_REQUEST]
            vectors.extend(self._request(chunk))
            logger.debug("[INDEX] Embedded %s texts (%s/%s).", len(chunk), len(vectors), len(cleaned))
        return vectors


def to_blob(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype="<f4").tobytes()


def from_blob(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype="<f4")


def format_transaction_for_embedding(transaction: Transaction) -> str:
    kind = transaction.transaction_type or transaction_type_for(transaction.amount)
    category = transaction.category or "Uncategorized"
    return (
        f"{kind} of ${abs(transaction.amount):.2f} on {transaction.date}: "
        f"{transaction.description} (category: {category})"
    )


def format_query_for_embedding(query: str) -> str:
    return query.strip().lower()
