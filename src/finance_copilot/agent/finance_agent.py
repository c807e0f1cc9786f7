import os
from typing import Any, Literal

from openai import OpenAI, OpenAIError
from pydantic import BaseModel, Field

from finance_copilot.agent.tools import FinanceToolkit, SqlQueryPayload, ToolFailure, ToolSuccess, result_rows
from finance_copilot.core import settings
from finance_copilot.domain.charts import build_chart
from finance_copilot.errors import ExternalServiceError
from finance_copilot.logger import get_logger
from finance_copilot.models import ChartData

logger = get_logger(__name__)

FALLBACK_RESPONSE = "I apologize, but I couldn't process your request. Please try again."

SYSTEM_PROMPT = """You are a helpful personal finance assistant that helps users understand and analyze their transaction data.

You have access to a database containing the user's financial transactions. Your job is to:
1. Understand the user's question about their finances
2. Use the appropriate tools to gather data
3. Analyze the results and provide clear, actionable insights
4. Help users review categories and improve categorization accuracy

IMPORTANT GUIDELINES:
- Always be specific with numbers and use proper currency formatting ($X.XX)
- When comparing periods, calculate percentage changes
- If data is insufficient, explain what's missing
- Be conversational but concise
- For spending questions, use ABS() on amounts since expenses are negative

TOOL SELECTION STRATEGY:
- For "how much did I spend" questions use sql_query or get_financial_summary
- For "what categories" questions use get_categories first
- For "compare" or "trend" questions use compare_periods or get_monthly_trends
- For finding specific transactions use search_transactions
- For complex custom queries use sql_query
- For "fix categories" questions use preview_recategorization and explain the proposed changes
- For "what category is..." use preview_categorization
- For finding similar transactions use find_similar_transactions
- When the user asks to always categorize a merchant a certain way use learn_rule

CATEGORIZATION SYSTEM:
1. Rule-based: matches from learned patterns (from user corrections)
2. Pattern-based: built-in patterns for common merchants
3. AI-powered fallback for unrecognized merchants

When you have enough information to answer, provide a clear, helpful response."""

Step = Literal["plan", "act", "respond"]


class ToolCallRecord(BaseModel):
    name: str
    arguments: str
    status: Literal["success", "error"]
    code: str | None = None


class AgentResult(BaseModel):
    response: str
    tools_used: list[str] = Field(default_factory=list)
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    executed_sql: str | None = None
    query_results: list[dict[str, Any]] = Field(default_factory=list)
    chart: ChartData | None = None
    iterations: int = 0


class FinanceAgent:
    """
    Tool-calling loop over the chat completions API.

    PLAN asks the model for the next step. Tool calls move to ACT, where every
    requested tool runs and its tagged result is appended to the conversation
    before planning again. A reply without tool calls is the final answer
    (RESPOND). After ``max_iterations`` planning rounds the loop stops with
    the fallback response.
    """

    def __init__(
        self,
        toolkit: FinanceToolkit,
        client: OpenAI | None = None,
        model: str | None = None,
        max_iterations: int | None = None,
    ) -> None:
        self.toolkit = toolkit
        self.client = client or OpenAI(
            api_key=os.getenv("OPENAI_API_KEY"),
            base_url=os.getenv("OPENAI_BASE_URL") or None,
        )
        self.model = model or settings.get_openai_model()
        self.max_iterations = max_iterations or settings.get_agent_max_iterations()

    def run(self, scope: str, question: str) -> AgentResult:
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": question},
        ]
        result = AgentResult(response=FALLBACK_RESPONSE)
        step: Step = "plan"

        while result.iterations < self.max_iterations:
            result.iterations += 1
            message = self._plan(messages)
            tool_calls = getattr(message, "tool_calls", None) or []
            step = "act" if tool_calls else "respond"
            logger.debug("[AGENT] Iteration %s: %s (%s tool calls)", result.iterations, step, len(tool_calls))

            if step == "respond":
                content = (getattr(message, "content", None) or "").strip()
                result.response = content or FALLBACK_RESPONSE
                result.chart = build_chart(result.query_results)
                break

            messages.append({
                "role": "assistant",
                "content": getattr(message, "content", None),
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.function.name, "arguments": call.function.arguments},
                    }
                    for call in tool_calls
                ],
            })
            for call in tool_calls:
                outcome = self._act(scope, call.function.name, call.function.arguments, result)
                messages.append({
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": outcome.model_dump_json(),
                })

        if step != "respond":
            logger.warning(
                "[AGENT] No final answer after %s iterations (tools: %s).",
                result.iterations,
                ", ".join(result.tools_used) or "none",
            )
        else:
            logger.info(
                "[AGENT] Answered in %s iterations using %s.",
                result.iterations,
                ", ".join(result.tools_used) or "no tools",
            )
        return result

    def _plan(self, messages: list[dict[str, Any]]) -> Any:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                tools=self.toolkit.declarations(),
                tool_choice="auto",
                temperature=0,
            )
        except OpenAIError as e:
            raise ExternalServiceError("Chat model request failed", details=str(e)) from e

        choices = getattr(response, "choices", None)
        if not choices:
            raise ExternalServiceError("Chat model returned no choices")
        return choices[0].message

    def _act(self, scope: str, name: str, arguments: str, result: AgentResult) -> ToolSuccess | ToolFailure:
        outcome = self.toolkit.invoke(scope, name, arguments)
        if name not in result.tools_used:
            result.tools_used.append(name)
        result.tool_calls.append(ToolCallRecord(
            name=name,
            arguments=arguments or "{}",
            status=outcome.status,
            code=outcome.code if isinstance(outcome, ToolFailure) else None,
        ))
        if isinstance(outcome, ToolFailure):
            logger.info("[AGENT] Tool %s returned %s: %s", name, outcome.code, outcome.message)
            return outcome

        if isinstance(outcome.data, SqlQueryPayload):
            result.executed_sql = outcome.data.query
        rows = result_rows(outcome)
        if rows is not None:
            result.query_results = rows
        return outcome
