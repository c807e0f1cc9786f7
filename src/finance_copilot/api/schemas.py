from typing import Any

from pydantic import BaseModel, Field

from finance_copilot.models import CategoryRule, ChartData, Transaction


class UploadResponse(BaseModel):
    success: bool = True
    message: str
    processed: int
    skipped: int
    errors: list[str] = Field(default_factory=list)
    categorization_stats: dict[str, int]


class TransactionList(BaseModel):
    transactions: list[Transaction]
    total: int
    limit: int
    offset: int
    categories: list[str]


class TransactionUpdate(BaseModel):
    id: int
    category: str | None = None
    description: str | None = None
    learn_from_correction: bool = False


class TransactionUpdateResponse(BaseModel):
    success: bool = True
    message: str
    transaction: Transaction
    rule_created: bool = False
    rule_pattern: str | None = None


class RuleCreate(BaseModel):
    pattern: str
    category: str


class RuleCreateResponse(BaseModel):
    success: bool = True
    rule: CategoryRule
    updated_transactions: int


class RecategorizeRequest(BaseModel):
    transaction_ids: list[int] | None = None
    recategorize_all: bool = False
    only_other: bool = False


class QueryRequest(BaseModel):
    query: str = Field(min_length=1)
    use_agent: bool = True


class QueryResponse(BaseModel):
    query: str
    sql: str | None = None
    results: list[dict[str, Any]] = Field(default_factory=list)
    response: str
    result_count: int = 0
    chart_data: ChartData | None = None
    agent_mode: bool
    tools_used: list[str] = Field(default_factory=list)
    tool_calls: list[dict[str, Any]] = Field(default_factory=list)
