from collections.abc import Callable, Sequence

from pydantic import BaseModel
from sqlalchemy.orm import Session

from finance_copilot.db.transactions import TransactionRepository
from finance_copilot.logger import get_logger
from finance_copilot.models import DocumentType, SearchResult, Transaction
from finance_copilot.services.embeddings import format_query_for_embedding, format_transaction_for_embedding
from finance_copilot.services.vector_store import IndexRequest, VectorStore

logger = get_logger(__name__)

CONTEXT_MIN_SCORE = 0.4
SIMILAR_MIN_SCORE = 0.6
INDEX_CHUNK_SIZE = 100

_TYPE_LABELS: dict[str, str] = {
    "transaction": "Transaction",
    "category_rule": "Category Rule",
    "query_example": "Example",
}


class QueryExample(BaseModel):
    natural_language: str
    sql: str
    explanation: str


class RetrievedContext(BaseModel):
    context: str
    sources: list[SearchResult]


class SimilarTransaction(BaseModel):
    description: str
    category: str
    amount: float
    score: float


class BootstrapResult(BaseModel):
    transactions_indexed: int
    examples_added: int


def default_query_examples() -> list[QueryExample]:
    # User scoping is added by the query executor, so examples never filter on user_id.
    return [
        QueryExample(
            natural_language="How much did I spend on coffee this month?",
            sql="SELECT SUM(ABS(amount)) AS total FROM transactions WHERE category = 'Coffee' "
                "AND date >= date('now', 'start of month')",
            explanation="Sum absolute amount for Coffee category in current month",
        ),
        QueryExample(
            natural_language="What are my top 5 expense categories?",
            sql="SELECT category, SUM(ABS(amount)) AS total FROM transactions WHERE amount < 0 "
                "GROUP BY category ORDER BY total DESC LIMIT 5",
            explanation="Group expenses by category, sum amounts, order by total descending",
        ),
        QueryExample(
            natural_language="Show my spending trend by month",
            sql="SELECT substr(date, 1, 7) AS month, SUM(ABS(amount)) AS total FROM transactions "
                "WHERE amount < 0 GROUP BY month ORDER BY month",
            explanation="Group expenses by month, show trend over time",
        ),
        QueryExample(
            natural_language="What did I spend at restaurants last week?",
            sql="SELECT SUM(ABS(amount)) AS total FROM transactions WHERE category = 'Dining' "
                "AND date >= date('now', '-7 days')",
            explanation="Sum Dining category for last 7 days",
        ),
        QueryExample(
            natural_language="List my largest purchases",
            sql="SELECT date, description, ABS(amount) AS amount, category FROM transactions "
                "WHERE amount < 0 ORDER BY ABS(amount) DESC LIMIT 10",
            explanation="Order expenses by absolute amount descending, limit to 10",
        ),
        QueryExample(
            natural_language="How much income did I receive this year?",
            sql="SELECT SUM(amount) AS total FROM transactions WHERE amount > 0 "
                "AND date >= date('now', 'start of year')",
            explanation="Sum positive amounts (income) for current year",
        ),
        QueryExample(
            natural_language="Compare my spending this month vs last month",
            sql="SELECT 'This Month' AS period, SUM(ABS(amount)) AS total FROM transactions "
                "WHERE amount < 0 AND date >= date('now', 'start of month') "
                "UNION ALL SELECT 'Last Month', SUM(ABS(amount)) FROM transactions "
                "WHERE amount < 0 AND date >= date('now', '-1 month', 'start of month') "
                "AND date < date('now', 'start of month')",
            explanation="Use UNION to compare current month vs previous month spending",
        ),
        QueryExample(
            natural_language="What subscriptions do I have?",
            sql="SELECT description, amount, date FROM transactions WHERE category = 'Subscriptions' "
                "ORDER BY date DESC LIMIT 20",
            explanation="List recent subscription transactions",
        ),
    ]


def transaction_index_request(scope: str, transaction: Transaction) -> IndexRequest:
    return IndexRequest(
        scope=scope,
        doc_type="transaction",
        source_id=str(transaction.id),
        text=format_transaction_for_embedding(transaction),
        metadata={
            "date": transaction.date,
            "amount": transaction.amount,
            "category": transaction.category,
            "transaction_type": transaction.transaction_type,
        },
    )


class RAGService:
    def __init__(self, store: VectorStore, session_factory: Callable[[], Session]) -> None:
        self.store = store
        self.session_factory = session_factory

    def retrieve_context(
        self,
        scope: str,
        query: str,
        top_k: int = 5,
        doc_types: Sequence[DocumentType] = ("transaction", "category_rule", "query_example"),
    ) -> RetrievedContext:
        results = self.store.search(
            scope,
            format_query_for_embedding(query),
            top_k=top_k,
            doc_types=doc_types,
            min_score=CONTEXT_MIN_SCORE,
        )
        lines = [
            f"[{_TYPE_LABELS.get(result.document.doc_type, 'Document')} {position}] {result.document.text}"
            for position, result in enumerate(results, start=1)
        ]
        return RetrievedContext(context="\n".join(lines), sources=results)

    def find_similar_transactions(self, scope: str, description: str, top_k: int = 5) -> list[SimilarTransaction]:
        results = self.store.search(
            scope,
            description,
            top_k=top_k,
            doc_types=["transaction"],
            min_score=SIMILAR_MIN_SCORE,
        )
        return [
            SimilarTransaction(
                description=result.document.text,
                category=result.document.metadata.get("category") or "Unknown",
                amount=result.document.metadata.get("amount") or 0.0,
                score=result.score,
            )
            for result in results
        ]

    def index_transactions(self, scope: str, transactions: Sequence[Transaction]) -> int:
        indexed = 0
        for start in range(0, len(transactions), INDEX_CHUNK_SIZE):
            chunk = transactions[start:start + INDEX_CHUNK_SIZE]
            indexed += self.store.index_many([transaction_index_request(scope, tx) for tx in chunk])
        return indexed

    def index_user_transactions(self, scope: str) -> int:
        with self.session_factory() as session:
            transactions = TransactionRepository(session).all_for_user(scope)
        indexed = self.index_transactions(scope, transactions)
        logger.info("[INDEX] Indexed %s/%s transactions.", indexed, len(transactions))
        return indexed

    def add_query_examples(self, scope: str, examples: Sequence[QueryExample]) -> int:
        requests = [
            IndexRequest(
                scope=scope,
                doc_type="query_example",
                source_id=f"example_{position}",
                text=f'Question: "{example.natural_language}" → SQL: {example.sql}',
                metadata=example.model_dump(),
            )
            for position, example in enumerate(examples)
        ]
        return self.store.index_many(requests)

    def bootstrap_user(self, scope: str) -> BootstrapResult:
        transactions_indexed = self.index_user_transactions(scope)
        examples_added = self.add_query_examples(scope, default_query_examples())
        return BootstrapResult(transactions_indexed=transactions_indexed, examples_added=examples_added)
