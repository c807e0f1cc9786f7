import json
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field
from pydantic import ValidationError as ArgumentError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from finance_copilot.db.transactions import TransactionRepository
from finance_copilot.domain.periods import ComparablePeriod, Timeframe, months_back, resolve_period
from finance_copilot.errors import ExternalServiceError, FinanceCopilotError, ValidationError
from finance_copilot.logger import get_logger
from finance_copilot.manager import CategorizerService
from finance_copilot.models import CATEGORIES, Confidence, Method, Transaction, is_valid_category
from finance_copilot.services.categorization import CategoryChange, RecategorizationPipeline
from finance_copilot.services.query_safety import ScopedQueryExecutor
from finance_copilot.services.rag import RAGService, SimilarTransaction

logger = get_logger(__name__)

MAX_SEARCH_RESULTS = 50
MAX_PREVIEW_CHANGES = 50


# --- results ---------------------------------------------------------------

class ToolSuccess(BaseModel):
    tool: str
    status: Literal["success"] = "success"
    data: Any


class ToolFailure(BaseModel):
    tool: str
    status: Literal["error"] = "error"
    code: str
    message: str


ToolResult = Annotated[ToolSuccess | ToolFailure, Field(discriminator="status")]


# --- parameters ------------------------------------------------------------

class SqlQueryParams(BaseModel):
    query: str = Field(description="The SQL SELECT query to execute")


class NoParams(BaseModel):
    pass


class SummaryParams(BaseModel):
    timeframe: Timeframe = Field("all_time", description="Time period for the summary. Defaults to all_time.")


class MonthlyTrendsParams(BaseModel):
    months: int = Field(6, ge=1, le=120, description="Number of months to include. Defaults to 6.")


class SearchTransactionsParams(BaseModel):
    search_term: str | None = Field(None, description="Text to search for in transaction descriptions")
    category: str | None = Field(None, description="Category to filter by")
    limit: int = Field(20, ge=1, description="Maximum results to return (max 50)")


class ComparePeriodsParams(BaseModel):
    period1: ComparablePeriod = Field(description="First time period to compare")
    period2: ComparablePeriod = Field(description="Second time period to compare")
    category: str | None = Field(None, description="Optional category to filter the comparison")


class RetrieveContextParams(BaseModel):
    query: str = Field(description="The search query or transaction description to find similar items for")
    top_k: int = Field(5, ge=1, le=20, description="Number of results to return (default: 5)")


class DescriptionParams(BaseModel):
    description: str = Field(description="The transaction description")


class PreviewRecategorizationParams(BaseModel):
    transaction_ids: list[int] | None = Field(
        None, description="Transactions to check. Omit to check all of the user's transactions."
    )
    only_other: bool = Field(False, description="Only consider transactions currently categorized as Other")


class LearnRuleParams(BaseModel):
    description: str = Field(description="A transaction description for the merchant")
    category: str = Field(description=f"Category to assign. One of: {', '.join(CATEGORIES)}")


# --- payloads --------------------------------------------------------------

class SqlQueryPayload(BaseModel):
    query: str
    row_count: int
    truncated: bool
    data: list[dict[str, Any]]


class CategoriesPayload(BaseModel):
    categories: list[dict[str, Any]]
    count: int


class SummaryPayload(BaseModel):
    timeframe: Timeframe
    summary: dict[str, Any]
    top_categories: list[dict[str, Any]]


class MonthlyTrendsPayload(BaseModel):
    months: int
    trends: list[dict[str, Any]]


class SearchPayload(BaseModel):
    count: int
    transactions: list[Transaction]


class PeriodTotals(BaseModel):
    name: ComparablePeriod
    expenses: float
    income: float
    count: int


class ComparisonPayload(BaseModel):
    period1: PeriodTotals
    period2: PeriodTotals
    expense_change_percent: float | None
    category: str


class ContextSource(BaseModel):
    type: str
    text: str
    score: float
    source_id: str


class ContextPayload(BaseModel):
    context: str
    source_count: int
    sources: list[ContextSource]
    message: str | None = None


class SimilarPayload(BaseModel):
    suggested_category: str | None
    similar_transactions: list[SimilarTransaction]
    confidence: float


class PreviewPayload(BaseModel):
    description: str
    normalized_merchant: str
    category: str
    confidence: Confidence
    method: Method
    suggest_rule: bool


class RecategorizationPreviewPayload(BaseModel):
    checked: int
    changed: int
    changes: list[CategoryChange]


class LearnRulePayload(BaseModel):
    rule_created: bool
    pattern: str | None


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    params: type[BaseModel]
    handler: Callable[[str, Any], BaseModel]

    def declaration(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.params.model_json_schema(),
            },
        }


SQL_QUERY_DESCRIPTION = """Execute a read-only SQL query against the transactions database (SQLite syntax).

TABLE: transactions
- id: INTEGER PRIMARY KEY
- date: TEXT (format: YYYY-MM-DD)
- description: TEXT (merchant/transaction description)
- amount: REAL (negative for expenses, positive for income)
- category: TEXT (e.g. 'Coffee', 'Groceries', 'Dining', 'Transportation', 'Income', 'Transfer')
- account: TEXT (optional account name)
- transaction_type: TEXT ('expense' or 'income')

TABLE: category_rules
- id: INTEGER PRIMARY KEY
- pattern: TEXT (merchant pattern to match)
- category: TEXT (category to assign)

TIPS:
- Use ABS(amount) when summing expenses to get positive totals
- Use substr(date, 1, 7) for monthly grouping
- Use date('now', 'start of month') for the month start, date('now', '-1 month', 'start of month') for last month
- Category names are case-sensitive
- DO NOT filter on user_id, results are limited to the current user automatically

Only a single SELECT statement is allowed."""


class FinanceToolkit:
    """
    The tools the finance agent can call, bound to the services they wrap.

    ``invoke`` never raises: bad arguments, rejected queries and service
    failures all come back as ``ToolFailure`` so the model can react to them.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        executor: ScopedQueryExecutor,
        categorizer: CategorizerService,
        rag: RAGService | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.executor = executor
        self.categorizer = categorizer
        self.rag = rag
        self.recategorization = RecategorizationPipeline(session_factory, categorizer)
        self.specs: dict[str, ToolSpec] = {
            spec.name: spec
            for spec in (
                ToolSpec("sql_query", SQL_QUERY_DESCRIPTION, SqlQueryParams, self.sql_query),
                ToolSpec(
                    "get_categories",
                    "Get all transaction categories with their transaction counts and total spending. "
                    "Use this to understand what categories exist before querying.",
                    NoParams,
                    self.get_categories,
                ),
                ToolSpec(
                    "get_financial_summary",
                    "Get a financial summary including total expenses, income, savings, and top spending "
                    "categories. Optionally filter by timeframe.",
                    SummaryParams,
                    self.get_financial_summary,
                ),
                ToolSpec(
                    "get_monthly_trends",
                    "Get monthly spending and income trends over time. Useful for visualizing financial patterns.",
                    MonthlyTrendsParams,
                    self.get_monthly_trends,
                ),
                ToolSpec(
                    "search_transactions",
                    "Search for specific transactions by description text or filter by category.",
                    SearchTransactionsParams,
                    self.search_transactions,
                ),
                ToolSpec(
                    "compare_periods",
                    "Compare spending between two time periods, month-over-month or week-over-week.",
                    ComparePeriodsParams,
                    self.compare_periods,
                ),
                ToolSpec(
                    "retrieve_context",
                    "Search for similar transactions, rules and example queries using semantic similarity.",
                    RetrieveContextParams,
                    self.retrieve_context,
                ),
                ToolSpec(
                    "find_similar_transactions",
                    "Find transactions similar to a given description. Useful for predicting categories.",
                    DescriptionParams,
                    self.find_similar_transactions,
                ),
                ToolSpec(
                    "preview_categorization",
                    "Show which category a transaction description would get, without saving anything.",
                    DescriptionParams,
                    self.preview_categorization,
                ),
                ToolSpec(
                    "preview_recategorization",
                    "Re-run categorization over the user's transactions and report which categories would "
                    "change. Nothing is saved.",
                    PreviewRecategorizationParams,
                    self.preview_recategorization,
                ),
                ToolSpec(
                    "learn_rule",
                    "Create a categorization rule for the merchant in a description so future transactions "
                    "from it get the given category.",
                    LearnRuleParams,
                    self.learn_rule,
                ),
            )
        }

    def declarations(self) -> list[dict[str, Any]]:
        return [spec.declaration() for spec in self.specs.values()]

    def invoke(self, scope: str, name: str, arguments: str | dict[str, Any] | None) -> ToolSuccess | ToolFailure:
        spec = self.specs.get(name)
        if spec is None:
            return ToolFailure(tool=name, code="unknown_tool", message=f"Unknown tool '{name}'")

        try:
            raw = json.loads(arguments or "{}") if isinstance(arguments, str) else (arguments or {})
            params = spec.params.model_validate(raw)
        except (json.JSONDecodeError, ArgumentError) as e:
            return ToolFailure(tool=name, code="invalid_arguments", message=str(e))

        try:
            payload = spec.handler(scope, params)
        except FinanceCopilotError as e:
            logger.warning("[AGENT] Tool %s failed: %s", name, e.message)
            return ToolFailure(tool=name, code=e.code, message=e.message)
        except SQLAlchemyError as e:
            logger.warning("[AGENT] Tool %s query failed: %s", name, e)
            return ToolFailure(tool=name, code="query_failed", message=str(getattr(e, "orig", None) or e))
        except Exception as e:
            logger.exception("[AGENT] Tool %s raised unexpectedly.", name)
            return ToolFailure(tool=name, code="internal_error", message=str(e))
        return ToolSuccess(tool=name, data=payload)

    # --- handlers ----------------------------------------------------------

    def sql_query(self, scope: str, params: SqlQueryParams) -> SqlQueryPayload:
        outcome = self.executor.execute(scope, params.query)
        return SqlQueryPayload(
            query=outcome.query,
            row_count=outcome.row_count,
            truncated=outcome.truncated,
            data=outcome.rows,
        )

    def get_categories(self, scope: str, params: NoParams) -> CategoriesPayload:
        with self.session_factory() as session:
            categories = TransactionRepository(session).category_counts(scope)
        return CategoriesPayload(categories=categories, count=len(categories))

    def get_financial_summary(self, scope: str, params: SummaryParams) -> SummaryPayload:
        start, end = resolve_period(params.timeframe)
        with self.session_factory() as session:
            repo = TransactionRepository(session)
            summary = repo.summary(scope, start, end)
            top_categories = repo.spending_by_category(scope, start, end, limit=5)
        return SummaryPayload(timeframe=params.timeframe, summary=summary, top_categories=top_categories)

    def get_monthly_trends(self, scope: str, params: MonthlyTrendsParams) -> MonthlyTrendsPayload:
        with self.session_factory() as session:
            trends = TransactionRepository(session).monthly_trends(
                scope, months=params.months, since=months_back(params.months)
            )
        return MonthlyTrendsPayload(months=params.months, trends=trends)

    def search_transactions(self, scope: str, params: SearchTransactionsParams) -> SearchPayload:
        with self.session_factory() as session:
            transactions = TransactionRepository(session).search(
                scope,
                term=params.search_term,
                category=params.category,
                limit=min(params.limit, MAX_SEARCH_RESULTS),
            )
        return SearchPayload(count=len(transactions), transactions=transactions)

    def compare_periods(self, scope: str, params: ComparePeriodsParams) -> ComparisonPayload:
        with self.session_factory() as session:
            repo = TransactionRepository(session)
            first = repo.period_totals(scope, *resolve_period(params.period1), category=params.category)
            second = repo.period_totals(scope, *resolve_period(params.period2), category=params.category)

        change = None
        if first["expenses"] and second["expenses"]:
            change = round((first["expenses"] - second["expenses"]) / second["expenses"] * 100, 1)
        return ComparisonPayload(
            period1=PeriodTotals(name=params.period1, **first),
            period2=PeriodTotals(name=params.period2, **second),
            expense_change_percent=change,
            category=params.category or "all",
        )

    def _require_rag(self) -> RAGService:
        if self.rag is None:
            raise ExternalServiceError("Retrieval is not configured (OPENAI_API_KEY missing)")
        return self.rag

    def retrieve_context(self, scope: str, params: RetrieveContextParams) -> ContextPayload:
        retrieved = self._require_rag().retrieve_context(scope, params.query, top_k=params.top_k)
        sources = [
            ContextSource(
                type=result.document.doc_type,
                text=result.document.text,
                score=round(result.score, 2),
                source_id=result.document.source_id,
            )
            for result in retrieved.sources
        ]
        return ContextPayload(
            context=retrieved.context,
            source_count=len(sources),
            sources=sources,
            message=None if sources else "No similar transactions found in the vector store.",
        )

    def find_similar_transactions(self, scope: str, params: DescriptionParams) -> SimilarPayload:
        similar = self._require_rag().find_similar_transactions(scope, params.description, top_k=5)
        if not similar:
            return SimilarPayload(suggested_category=None, similar_transactions=[], confidence=0.0)
        suggested, _ = Counter(tx.category for tx in similar).most_common(1)[0]
        return SimilarPayload(
            suggested_category=suggested,
            similar_transactions=similar,
            confidence=similar[0].score,
        )

    def preview_categorization(self, scope: str, params: DescriptionParams) -> PreviewPayload:
        result = self.categorizer.categorize(params.description)
        return PreviewPayload(description=params.description, **result.model_dump())

    def preview_recategorization(
        self,
        scope: str,
        params: PreviewRecategorizationParams,
    ) -> RecategorizationPreviewPayload:
        changes = self.recategorization.plan(
            scope,
            transaction_ids=params.transaction_ids,
            recategorize_all=params.transaction_ids is None,
            only_other=params.only_other,
        )
        changed = [change for change in changes if change.new_category != change.old_category]
        return RecategorizationPreviewPayload(
            checked=len(changes),
            changed=len(changed),
            changes=changed[:MAX_PREVIEW_CHANGES],
        )

    def learn_rule(self, scope: str, params: LearnRuleParams) -> LearnRulePayload:
        if not is_valid_category(params.category):
            raise ValidationError(f"Unknown category '{params.category}'")
        learned = self.categorizer.learn_from_correction(params.description, params.category, create_rule=True)
        return LearnRulePayload(rule_created=learned.rule_created, pattern=learned.pattern)


def result_rows(result: ToolSuccess | ToolFailure) -> list[dict[str, Any]] | None:
    """Tabular rows a tool produced, for charting."""
    if not isinstance(result, ToolSuccess):
        return None
    if isinstance(result.data, SqlQueryPayload):
        return result.data.data
    if isinstance(result.data, MonthlyTrendsPayload):
        return result.data.trends
    return None
