import asyncio
from collections import Counter
from collections.abc import Callable, Sequence
from time import perf_counter

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from finance_copilot.db.transactions import TransactionRepository
from finance_copilot.domain.csv_import import parse_statement
from finance_copilot.domain.periods import format_duration
from finance_copilot.errors import ValidationError
from finance_copilot.logger import get_logger
from finance_copilot.manager import CategorizerService
from finance_copilot.models import Transaction
from finance_copilot.services.indexing import IndexingQueue
from finance_copilot.services.rag import RAGService

logger = get_logger(__name__)


class IngestionResult(BaseModel):
    processed: int
    skipped: int
    errors: list[str] = Field(default_factory=list)
    methods: dict[str, int] = Field(
        default_factory=lambda: {"rule": 0, "pattern": 0, "ai": 0, "fallback": 0}
    )


class IngestionService:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        categorizer: CategorizerService,
        rag: RAGService | None = None,
        indexing: IndexingQueue | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.categorizer = categorizer
        self.rag = rag
        self.indexing = indexing

    def import_statement(
        self,
        scope: str,
        text: str,
        clear_existing: bool = False,
    ) -> tuple[IngestionResult, list[Transaction]]:
        if not text or not text.strip():
            raise ValidationError("Uploaded file is empty")

        start = perf_counter()
        parsed = parse_statement(text)
        results = self.categorizer.batch_categorize([row.description for row in parsed.rows])

        with self.session_factory() as session:
            repo = TransactionRepository(session)
            if clear_existing:
                cleared = repo.clear(scope)
                logger.info("[UPLOAD] Cleared %s existing transactions before import.", cleared)
            inserted = repo.insert_many(scope, [
                {
                    "date": row.date.isoformat(),
                    "description": row.description,
                    "amount": row.amount,
                    "category": result.category,
                    "account": row.account,
                }
                for row, result in zip(parsed.rows, results)
            ])

        methods = Counter({"rule": 0, "pattern": 0, "ai": 0, "fallback": 0})
        methods.update(result.method for result in results)
        outcome = IngestionResult(
            processed=len(inserted),
            skipped=len(parsed.skipped),
            errors=parsed.skipped,
            methods=dict(methods),
        )
        logger.info(
            "[UPLOAD] Imported %s transactions (skipped %s) in %s. Methods: %s",
            outcome.processed,
            outcome.skipped,
            format_duration(perf_counter() - start),
            outcome.methods,
        )
        return outcome, inserted

    async def ingest(self, scope: str, text: str, clear_existing: bool = False) -> IngestionResult:
        outcome, inserted = await asyncio.to_thread(self.import_statement, scope, text, clear_existing)
        if inserted:
            self.schedule_indexing(scope, inserted, replace=clear_existing)
        return outcome

    def schedule_indexing(self, scope: str, transactions: list[Transaction], replace: bool = False) -> bool:
        if self.rag is None or self.indexing is None or not self.indexing.running:
            logger.info("[INDEX] Retrieval disabled, skipping indexing of %s transactions.", len(transactions))
            return False

        rag = self.rag

        def run() -> int:
            if replace:
                rag.store.delete_user_documents(scope, doc_type="transaction")
            return rag.index_transactions(scope, transactions)

        self.indexing.submit(f"index {len(transactions)} transactions", run)
        return True


    def schedule_reindex(self, scope: str, transaction_ids: Sequence[int]) -> bool:
        """Refresh the search documents of edited transactions from their stored state."""
        ids = list(dict.fromkeys(transaction_ids))
        if not ids:
            return False
        if self.rag is None or self.indexing is None or not self.indexing.running:
            logger.debug("[INDEX] Retrieval disabled, not re-indexing %s transactions.", len(ids))
            return False

        rag = self.rag
        session_factory = self.session_factory

        def run() -> int:
            with session_factory() as session:
                transactions = TransactionRepository(session).all_for_user(scope, ids=ids)
            return rag.index_transactions(scope, transactions)

        self.indexing.submit(f"re-index {len(ids)} transactions", run)
        return True
