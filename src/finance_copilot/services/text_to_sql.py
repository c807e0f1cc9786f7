import json
from datetime import date
from typing import Any

from openai import OpenAI, OpenAIError
from pydantic import BaseModel, Field
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from finance_copilot.classifiers.llm import strip_code_fences
from finance_copilot.core import settings
from finance_copilot.domain.charts import detect_chart_for_question
from finance_copilot.errors import FinanceCopilotError
from finance_copilot.logger import get_logger
from finance_copilot.models import CATEGORIES, ChartData
from finance_copilot.services.query_safety import ScopedQueryExecutor

logger = get_logger(__name__)

HIDDEN_TABLES = frozenset({"vector_documents"})
ANSWER_FALLBACK = (
    "I analyzed the data but had trouble formulating a response. Please try rephrasing your question."
)
ANSWER_PREVIEW_ROWS = 10

ANSWER_SYSTEM_PROMPT = """You are a financial assistant. Given a user's question, the SQL query used, and the results, provide a clear, concise answer in natural language.

Guidelines:
- Be conversational and helpful
- Include specific numbers and insights from the data
- Format currency values with $ symbol
- If comparing time periods, clearly state both values
- Highlight interesting patterns or anomalies
- Keep responses concise (2-4 sentences typically)"""


class TextToSQLResult(BaseModel):
    sql: str = ""
    results: list[dict[str, Any]] = Field(default_factory=list)
    chart: ChartData | None = None
    error: str | None = None


def sql_system_prompt(schema_description: str, today: date | None = None) -> str:
    today = today or date.today()
    return f"""You are a SQL expert assistant. Generate SQLite queries based on user questions.

Database Schema:
{schema_description}

Important Notes:
- The transactions table stores financial transactions
- amount is negative for expenses and positive for income
- date is stored as text in YYYY-MM-DD format
- category is one of: {", ".join(CATEGORIES)}
- transaction_type is either 'expense' or 'income'
- Results are limited to the current user automatically; never filter on user_id
- Today's date is {today.isoformat()}

Rules:
1. Only generate a single SELECT query (no INSERT, UPDATE, DELETE)
2. Return only the SQL query without explanations or markdown formatting
3. Use LIMIT to prevent returning too many rows (default 100)
4. For "this month", use: date >= date('now', 'start of month')
5. For "last month", use: date >= date('now', '-1 month', 'start of month') AND date < date('now', 'start of month')
6. Always use ABS(amount) when summing expenses to show positive values
7. Use ROUND() for monetary values with 2 decimal places
8. When asked about "spending", focus on negative amounts (expenses)
9. Use substr(date, 1, 7) for monthly grouping"""


class TextToSQL:
    """Single-shot question to SQL translation, executed through the scoped executor."""

    def __init__(self, client: OpenAI, executor: ScopedQueryExecutor, model: str | None = None) -> None:
        self.client = client
        self.executor = executor
        self.model = model or settings.get_openai_model()

    def describe_schema(self) -> str:
        inspector = inspect(self.executor.engine)
        blocks = []
        for table in sorted(inspector.get_table_names()):
            if table in HIDDEN_TABLES:
                continue
            columns = ", ".join(f"{column['name']} ({column['type']})" for column in inspector.get_columns(table))
            blocks.append(f"Table: {table}\nColumns: {columns}")
        return "\n\n".join(blocks)

    def generate_sql(self, question: str) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": sql_system_prompt(self.describe_schema())},
                {"role": "user", "content": f'Generate a SQL query to answer this question: "{question}"'},
            ],
            temperature=0,
            max_tokens=500,
        )
        content = response.choices[0].message.content or ""
        return strip_code_fences(content.replace("```sql", "```"))

    def run(self, scope: str, question: str) -> TextToSQLResult:
        sql = ""
        try:
            sql = self.generate_sql(question)
            outcome = self.executor.execute(scope, sql)
        except FinanceCopilotError as e:
            logger.warning("[SQL] Query for '%s' rejected: %s", question[:80], e.message)
            return TextToSQLResult(sql=sql, error=e.message)
        except OpenAIError as e:
            logger.error("[SQL] Query generation failed: %s", e)
            return TextToSQLResult(sql=sql, error=str(e))
        except SQLAlchemyError as e:
            logger.warning("[SQL] Query for '%s' failed: %s", question[:80], e)
            return TextToSQLResult(sql=sql, error=str(getattr(e, "orig", None) or e))

        return TextToSQLResult(
            sql=outcome.query,
            results=outcome.rows,
            chart=detect_chart_for_question(question, outcome.rows),
        )

    def answer(self, question: str, sql: str, rows: list[dict[str, Any]]) -> str:
        preview = json.dumps(rows[:ANSWER_PREVIEW_ROWS], indent=2, default=str)
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": ANSWER_SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": f"User Question: {question}\n\n"
                                   f"SQL Query: {sql}\n\n"
                                   f"Results (showing first {ANSWER_PREVIEW_ROWS} rows):\n{preview}\n\n"
                                   f"Total rows returned: {len(rows)}\n\n"
                                   "Please provide a natural language answer to the user's question "
                                   "based on these results.",
                    },
                ],
                temperature=0.7,
                max_tokens=300,
            )
        except OpenAIError as e:
            logger.error("[SQL] Answer generation failed: %s", e)
            return ANSWER_FALLBACK
        content = response.choices[0].message.content
        return content.strip() if content and content.strip() else "Unable to generate response"
