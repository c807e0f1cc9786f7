import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends

from finance_copilot.agent.finance_agent import FinanceAgent
from finance_copilot.api.dependencies import get_agent_optional, get_text_to_sql_optional, get_user_scope
from finance_copilot.api.schemas import QueryRequest, QueryResponse
from finance_copilot.errors import ExternalServiceError, FinanceCopilotError
from finance_copilot.services.text_to_sql import TextToSQL

router = APIRouter()


@router.post("/api/query")
async def run_query(
    req: QueryRequest,
    scope: Annotated[str, Depends(get_user_scope)],
    agent: Annotated[FinanceAgent | None, Depends(get_agent_optional)],
    text_to_sql: Annotated[TextToSQL | None, Depends(get_text_to_sql_optional)],
) -> QueryResponse:
    if req.use_agent:
        if agent is None:
            raise ExternalServiceError("OpenAI API key not configured", details="Set OPENAI_API_KEY")
        result = await asyncio.to_thread(agent.run, scope, req.query)
        return QueryResponse(
            query=req.query,
            sql=result.executed_sql,
            results=result.query_results,
            response=result.response,
            result_count=len(result.query_results),
            chart_data=result.chart,
            agent_mode=True,
            tools_used=result.tools_used,
            tool_calls=[call.model_dump() for call in result.tool_calls],
        )

    if text_to_sql is None:
        raise ExternalServiceError("OpenAI API key not configured", details="Set OPENAI_API_KEY")
    generated = await asyncio.to_thread(text_to_sql.run, scope, req.query)
    if generated.error:
        raise FinanceCopilotError("Failed to process query", details=generated.error)

    answer = await asyncio.to_thread(text_to_sql.answer, req.query, generated.sql, generated.results)
    return QueryResponse(
        query=req.query,
        sql=generated.sql,
        results=generated.results,
        response=answer,
        result_count=len(generated.results),
        chart_data=generated.chart,
        agent_mode=False,
    )
