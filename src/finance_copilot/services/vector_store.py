from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from sqlalchemy import and_, delete, func, select
from sqlalchemy.orm import Session

from finance_copilot.db.models import VectorDocumentRecord
from finance_copilot.errors import ExternalServiceError, FinanceCopilotError
from finance_copilot.logger import get_logger
from finance_copilot.models import DocumentType, SearchResult, VectorDocument
from finance_copilot.services.embeddings import EmbeddingClient, from_blob, to_blob

logger = get_logger(__name__)

DEFAULT_TOP_K = 10
DEFAULT_MIN_SCORE = 0.5


@dataclass(frozen=True)
class IndexRequest:
    scope: str
    doc_type: DocumentType
    source_id: str
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


def _to_document(record: VectorDocumentRecord, vector: np.ndarray) -> VectorDocument:
    return VectorDocument(
        id=record.id,
        user_id=record.user_id,
        doc_type=record.doc_type,
        source_id=record.source_id,
        text=record.text,
        embedding=vector.tolist(),
        metadata=record.metadata_json or {},
    )


class VectorStore:
    """
    Embedding-backed document store kept in the relational database.

    Vectors are stored as float32 bytes and scored with cosine similarity in
    numpy over the caller's own documents; there is no database-side index.
    """

    def __init__(self, session_factory: Callable[[], Session], embedder: EmbeddingClient | None) -> None:
        self.session_factory = session_factory
        self.embedder = embedder

    def _require_embedder(self) -> EmbeddingClient:
        if self.embedder is None:
            raise ExternalServiceError("Embeddings are not configured (OPENAI_API_KEY missing)")
        return self.embedder

    def _upsert(self, session: Session, request: IndexRequest, vector: Sequence[float]) -> None:
        key = and_(
            VectorDocumentRecord.user_id == request.scope,
            VectorDocumentRecord.doc_type == request.doc_type,
            VectorDocumentRecord.source_id == str(request.source_id),
        )
        record = session.scalar(select(VectorDocumentRecord).where(key))
        if record is None:
            record = VectorDocumentRecord(
                user_id=request.scope,
                doc_type=request.doc_type,
                source_id=str(request.source_id),
            )
            session.add(record)
        record.text = request.text
        record.embedding = to_blob(vector)
        record.metadata_json = dict(request.metadata)
        record.created_at = func.now()
        # Sessions do not autoflush; a repeated key later in the same batch must see this row.
        session.flush()

    def index(
        self,
        scope: str,
        doc_type: DocumentType,
        source_id: str,
        text: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        vector = self._require_embedder().embed(text)
        with self.session_factory() as session:
            self._upsert(session, IndexRequest(scope, doc_type, str(source_id), text, metadata or {}), vector)
            session.commit()

    def index_many(self, requests: Sequence[IndexRequest]) -> int:
        """
        Index many documents with one embedding call.

        If the batch call fails each document is retried on its own; documents
        that still fail are logged and skipped. Returns the number stored.
        """
        if not requests:
            return 0
        embedder = self._require_embedder()

        vectors: list[Sequence[float] | None]
        try:
            vectors = list(embedder.embed_many([request.text for request in requests]))
        except FinanceCopilotError as e:
            logger.warning("[INDEX] Batch embedding failed (%s), retrying per document.", e.message)
            vectors = []
            for request in requests:
                try:
                    vectors.append(embedder.embed(request.text))
                except FinanceCopilotError as item_error:
                    logger.error(
                        "[INDEX] Skipping %s %s: %s",
                        request.doc_type,
                        request.source_id,
                        item_error.message,
                    )
                    vectors.append(None)

        indexed = 0
        with self.session_factory() as session:
            for request, vector in zip(requests, vectors):
                if vector is None:
                    continue
                self._upsert(session, request, vector)
                indexed += 1
            session.commit()
        return indexed

    def search(
        self,
        scope: str,
        query: str,
        top_k: int = DEFAULT_TOP_K,
        doc_types: Sequence[DocumentType] | None = None,
        min_score: float = DEFAULT_MIN_SCORE,
    ) -> list[SearchResult]:
        query_vector = np.asarray(self._require_embedder().embed(query), dtype=np.float32)

        conditions = [VectorDocumentRecord.user_id == scope]
        if doc_types:
            conditions.append(VectorDocumentRecord.doc_type.in_(list(doc_types)))
        with self.session_factory() as session:
            records = list(session.scalars(select(VectorDocumentRecord).where(and_(*conditions))))

        if not records:
            return []

        vectors = [from_blob(record.embedding) for record in records]
        usable = [i for i, vector in enumerate(vectors) if vector.shape == query_vector.shape]
        if len(usable) != len(records):
            logger.warning(
                "[INDEX] Ignoring %s documents with a different embedding size.",
                len(records) - len(usable),
            )
        if not usable:
            return []

        matrix = np.vstack([vectors[i] for i in usable])
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query_vector)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, matrix @ query_vector / norms, 0.0)

        ranked = sorted(zip(usable, scores.tolist()), key=lambda item: item[1], reverse=True)
        return [
            SearchResult(document=_to_document(records[i], vectors[i]), score=score)
            for i, score in ranked
            if score >= min_score
        ][:top_k]

    def delete(self, scope: str, doc_type: DocumentType, source_id: str) -> bool:
        with self.session_factory() as session:
            result = session.execute(
                delete(VectorDocumentRecord).where(
                    VectorDocumentRecord.user_id == scope,
                    VectorDocumentRecord.doc_type == doc_type,
                    VectorDocumentRecord.source_id == str(source_id),
                )
            )
            session.commit()
            return result.rowcount > 0

    def delete_user_documents(self, scope: str, doc_type: DocumentType | None = None) -> int:
        conditions = [VectorDocumentRecord.user_id == scope]
        if doc_type:
            conditions.append(VectorDocumentRecord.doc_type == doc_type)
        with self.session_factory() as session:
            result = session.execute(delete(VectorDocumentRecord).where(and_(*conditions)))
            session.commit()
            return result.rowcount

    def count(self, scope: str, doc_type: DocumentType | None = None) -> int:
        conditions = [VectorDocumentRecord.user_id == scope]
        if doc_type:
            conditions.append(VectorDocumentRecord.doc_type == doc_type)
        with self.session_factory() as session:
            return session.scalar(
                select(func.count()).select_from(VectorDocumentRecord).where(and_(*conditions))
            ) or 0
