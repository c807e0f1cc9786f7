from datetime import date as Date
from typing import Literal

from pydantic import BaseModel, Field

CATEGORIES: tuple[str, ...] = (
    "Coffee",
    "Groceries",
    "Dining",
    "Transportation",
    "Gas",
    "Entertainment",
    "Shopping",
    "Healthcare",
    "Fitness",
    "Utilities",
    "Insurance",
    "Subscriptions",
    "Travel",
    "Education",
    "Personal Care",
    "Pets",
    "Home",
    "Transfer",
    "Cash Withdrawal",
    "Fees",
    "Income",
    "Other",
)

FALLBACK_CATEGORY = "Other"

Confidence = Literal["high", "medium", "low"]
Method = Literal["rule", "pattern", "ai", "fallback"]
DocumentType = Literal["transaction", "category_rule", "query_example", "schema"]


def is_valid_category(name: str | None) -> bool:
    return name in CATEGORIES


def coerce_category(name: str | None) -> str:
    if name is None:
        return FALLBACK_CATEGORY
    cleaned = name.strip().strip("\"'.").strip()
    return cleaned if cleaned in CATEGORIES else FALLBACK_CATEGORY


def transaction_type_for(amount: float) -> str:
    return "expense" if amount < 0 else "income"


class CategorizationResult(BaseModel):
    category: str
    confidence: Confidence
    method: Method
    normalized_merchant: str
    suggest_rule: bool = False


class LearningResult(BaseModel):
    rule_created: bool
    pattern: str | None = None


class StatementRow(BaseModel):
    """One parsed CSV row ready for categorization."""
    date: Date
    description: str
    amount: float
    account: str | None = None


class Transaction(BaseModel):
    id: int
    user_id: str
    date: str
    description: str
    amount: float
    category: str | None = None
    account: str | None = None
    transaction_type: str | None = None


class CategoryRule(BaseModel):
    id: int
    pattern: str
    category: str


class VectorDocument(BaseModel):
    id: int
    user_id: str
    doc_type: DocumentType
    source_id: str
    text: str
    embedding: list[float] = Field(default_factory=list, repr=False)
    metadata: dict = Field(default_factory=dict)


class SearchResult(BaseModel):
    document: VectorDocument
    score: float


class ChartData(BaseModel):
    type: Literal["pie", "line", "bar"]
    data: list[dict]
    data_key: str = "value"
    name_key: str = "name"
    title: str | None = None
