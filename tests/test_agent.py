import json
from unittest.mock import MagicMock

import pytest
from openai import OpenAIError
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from finance_copilot.agent.finance_agent import FALLBACK_RESPONSE, FinanceAgent
from finance_copilot.agent.tools import FinanceToolkit
from finance_copilot.errors import ExternalServiceError
from finance_copilot.manager import CategorizerService
from finance_copilot.services.query_safety import ScopedQueryExecutor


def tool_call(call_id: str, name: str, arguments: str | dict) -> MagicMock:
    call = MagicMock()
    call.id = call_id
    call.function.name = name
    call.function.arguments = arguments if isinstance(arguments, str) else json.dumps(arguments)
    return call


def completion(content: str | None = None, tool_calls: list | None = None) -> MagicMock:
    message = MagicMock()
    message.content = content
    message.tool_calls = tool_calls
    response = MagicMock()
    response.choices = [MagicMock(message=message)]
    return response


@pytest.fixture
def toolkit(engine: Engine, session_factory: sessionmaker[Session], add_transactions) -> FinanceToolkit:
    add_transactions(
        "alice",
        ("2024-01-10", "STARBUCKS", -5.0, "Coffee"),
        ("2024-01-11", "ZORBLAT", -30.0, "Other"),
    )
    add_transactions("bob", ("2024-01-12", "QUUX", -99.0, "Shopping"))
    categorizer = CategorizerService(session_factory, llm=MagicMock())
    return FinanceToolkit(session_factory, ScopedQueryExecutor(engine), categorizer)


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


def test_agent_runs_tool_then_answers(toolkit: FinanceToolkit, client: MagicMock) -> None:
    sql = "SELECT category, SUM(ABS(amount)) AS total FROM transactions GROUP BY category ORDER BY total DESC"
    client.chat.completions.create.side_effect = [
        completion(tool_calls=[tool_call("call_1", "sql_query", {"query": sql})]),
        completion(content="  You spent $30.00 on Other and $5.00 on Coffee.  "),
    ]
    agent = FinanceAgent(toolkit, client=client, model="gpt-4o-mini")

    result = agent.run("alice", "Where does my money go?")

    assert result.response == "You spent $30.00 on Other and $5.00 on Coffee."
    assert result.iterations == 2
    assert result.tools_used == ["sql_query"]
    assert result.tool_calls[0].status == "success"
    assert "WHERE user_id = 'alice'" in result.executed_sql
    assert result.query_results == [{"category": "Other", "total": 30.0}, {"category": "Coffee", "total": 5.0}]
    assert result.chart.type == "pie"

    messages = client.chat.completions.create.call_args.kwargs["messages"]
    assert messages[-2]["role"] == "assistant"
    assert messages[-2]["tool_calls"][0]["function"]["name"] == "sql_query"
    assert messages[-1]["role"] == "tool"
    assert messages[-1]["tool_call_id"] == "call_1"
    assert json.loads(messages[-1]["content"])["status"] == "success"

    first_call = client.chat.completions.create.call_args_list[0].kwargs
    assert first_call["tool_choice"] == "auto"
    assert len(first_call["tools"]) == 11


def test_tool_failures_are_reported_to_the_model(toolkit: FinanceToolkit, client: MagicMock) -> None:
    client.chat.completions.create.side_effect = [
        completion(tool_calls=[
            tool_call("call_1", "sql_query", {"query": "DELETE FROM transactions"}),
            tool_call("call_2", "search_transactions", "{not json"),
            tool_call("call_3", "launch_rockets", {}),
        ]),
        completion(content="I can only read your data."),
    ]
    agent = FinanceAgent(toolkit, client=client, model="gpt-4o-mini")

    result = agent.run("alice", "Delete everything")

    assert result.response == "I can only read your data."
    assert [(call.name, call.code) for call in result.tool_calls] == [
        ("sql_query", "unsafe_query"),
        ("search_transactions", "invalid_arguments"),
        ("launch_rockets", "unknown_tool"),
    ]
    assert all(call.status == "error" for call in result.tool_calls)
    assert result.executed_sql is None
    assert result.chart is None

    messages = client.chat.completions.create.call_args.kwargs["messages"]
    payload = json.loads(messages[-3]["content"])
    assert payload == {
        "tool": "sql_query",
        "status": "error",
        "code": "unsafe_query",
        "message": "Only SELECT queries are allowed",
    }


def test_agent_stops_at_iteration_cap(toolkit: FinanceToolkit, client: MagicMock) -> None:
    client.chat.completions.create.return_value = completion(
        tool_calls=[tool_call("call_1", "get_categories", {})],
    )
    agent = FinanceAgent(toolkit, client=client, model="gpt-4o-mini", max_iterations=3)

    result = agent.run("alice", "Loop forever")

    assert result.response == FALLBACK_RESPONSE
    assert result.iterations == 3
    assert client.chat.completions.create.call_count == 3
    assert result.tools_used == ["get_categories"]
    assert len(result.tool_calls) == 3


def test_empty_answer_uses_fallback(toolkit: FinanceToolkit, client: MagicMock) -> None:
    client.chat.completions.create.return_value = completion(content="   ", tool_calls=[])
    result = FinanceAgent(toolkit, client=client, model="gpt-4o-mini").run("alice", "Hi")
    assert result.response == FALLBACK_RESPONSE
    assert result.iterations == 1


def test_model_errors_raise(toolkit: FinanceToolkit, client: MagicMock) -> None:
    client.chat.completions.create.side_effect = OpenAIError("quota exceeded")
    with pytest.raises(ExternalServiceError):
        FinanceAgent(toolkit, client=client, model="gpt-4o-mini").run("alice", "Hi")
