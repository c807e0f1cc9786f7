import datetime as dt
import re
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from pydantic import BaseModel
from sqlalchemy import Engine

from finance_copilot.core import settings
from finance_copilot.errors import UnsafeQueryError
from finance_copilot.logger import get_logger

logger = get_logger(__name__)

DEFAULT_SCOPED_TABLES: dict[str, str] = {
    "transactions": "user_id",
    "vector_documents": "user_id",
}

# REPLACE is left out on purpose: it is also a scalar string function.
FORBIDDEN_KEYWORDS = frozenset({
    "INSERT", "UPDATE", "DELETE", "DROP", "ALTER", "CREATE", "TRUNCATE",
    "ATTACH", "DETACH", "PRAGMA", "GRANT", "REVOKE", "VACUUM", "MERGE",
    "CALL", "EXEC", "EXECUTE", "COPY", "LOCK", "REINDEX", "INTO",
    "COMMIT", "ROLLBACK", "SAVEPOINT",
})
FORBIDDEN_FUNCTIONS = frozenset({
    "LOAD_EXTENSION", "PG_READ_FILE", "PG_READ_BINARY_FILE", "PG_LS_DIR",
    "PG_SLEEP", "SET_CONFIG", "DBLINK", "LO_IMPORT", "LO_EXPORT",
})

_FROM_TERMINATORS = frozenset({
    "WHERE", "GROUP", "HAVING", "ORDER", "LIMIT", "OFFSET", "WINDOW", "FETCH",
})
_WHERE_TERMINATORS = _FROM_TERMINATORS - {"WHERE"}
_SET_OPERATORS = frozenset({"UNION", "INTERSECT", "EXCEPT"})
_TABLE_INTRODUCERS = frozenset({"FROM", "JOIN"})
_NOT_AN_ALIAS = frozenset({
    "JOIN", "INNER", "LEFT", "RIGHT", "FULL", "OUTER", "CROSS", "NATURAL",
    "ON", "USING", "LATERAL", "INDEXED", "NOT", "AS",
}) | _FROM_TERMINATORS | _SET_OPERATORS

_QUOTED_IDENTIFIERS = {
    # SQLite also accepts MySQL backticks and MS Access brackets.
    "sqlite": (r'"(?:[^"]|"")*"|`[^`]*`|\[[^\]]*\]', r"/\*|'|\"|`|\["),
    "postgresql": (r'"(?:[^"]|"")*"', r"/\*|'|\""),
}


def _token_pattern(qident: str, unterminated: str) -> re.Pattern[str]:
    return re.compile(
        rf"""
        (?P<comment>--[^\n]*|/\*.*?\*/)
        |(?P<string>'(?:[^']|'')*')
        |(?P<qident>{qident})
        |(?P<word>[A-Za-z_][A-Za-z0-9_]*)
        |(?P<number>\d+(?:\.\d*)?(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?)
        |(?P<space>\s+)
        |(?P<unterminated>{unterminated})
        |(?P<punct>.)
        """,
        re.VERBOSE | re.DOTALL,
    )


_TOKEN_PATTERNS = {
    dialect: _token_pattern(qident, unterminated)
    for dialect, (qident, unterminated) in _QUOTED_IDENTIFIERS.items()
}


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    start: int
    end: int

    @property
    def upper(self) -> str:
        return self.text.upper() if self.kind == "word" else ""

    @property
    def is_name(self) -> bool:
        return self.kind in {"word", "qident"}

    @property
    def name(self) -> str:
        if self.kind == "qident":
            inner = self.text[1:-1]
            return (inner.replace('""', '"') if self.text[0] == '"' else inner).lower()
        return self.text.lower()


def tokenize(sql: str, dialect: str = "sqlite") -> list[Token]:
    """
    Split SQL into significant tokens; comments and whitespace are dropped.

    Only the quoting rules of the listed dialects are modelled. Constructs the
    server would read differently from this tokenizer (nested block comments,
    dollar quoting, prefixed literals such as ``E'...'``) are refused.
    """
    pattern = _TOKEN_PATTERNS.get(dialect)
    if pattern is None:
        raise UnsafeQueryError(f"Scoped queries are not supported on the {dialect} backend")

    tokens: list[Token] = []
    for match in pattern.finditer(sql):
        kind = match.lastgroup
        text = match.group()
        if kind == "space":
            continue
        if kind == "comment":
            if text.startswith("/*") and "/*" in text[2:]:
                raise UnsafeQueryError("Nested comments are not allowed")
            continue
        if kind == "unterminated":
            raise UnsafeQueryError("Unterminated literal or comment in query")
        if kind == "punct" and text == "$":
            raise UnsafeQueryError("Dollar quoting and parameters are not allowed")
        if kind == "string" and tokens and tokens[-1].kind == "word" and tokens[-1].end == match.start():
            raise UnsafeQueryError("Prefixed string literals are not allowed")
        tokens.append(Token(kind, text, match.start(), match.end()))
    return tokens


def _paren_depths(tokens: list[Token]) -> list[int]:
    # An opening paren and its matching close share the outer depth.
    depths = []
    level = 0
    for token in tokens:
        if token.text == ")" and token.kind == "punct":
            level -= 1
            if level < 0:
                raise UnsafeQueryError("Unbalanced parentheses in query")
        depths.append(level)
        if token.text == "(" and token.kind == "punct":
            level += 1
    if level != 0:
        raise UnsafeQueryError("Unbalanced parentheses in query")
    return depths


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class QueryOutcome(BaseModel):
    query: str
    rows: list[dict[str, Any]]
    row_count: int
    truncated: bool = False


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (dt.date, dt.datetime)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"<{len(bytes(value))} bytes>"
    return value


class ScopedQueryExecutor:
    """
    Runs model-written SELECT statements against the store, confined to one user.

    Every SELECT block that reads a user-owned table gets an equality
    predicate on that table's owner column. An existing WHERE condition is
    parenthesised behind the predicate so ``OR`` cannot widen the result.
    """

    def __init__(
        self,
        engine: Engine,
        scoped_tables: Mapping[str, str] | None = None,
        row_limit: int | None = None,
    ) -> None:
        self.engine = engine
        self.dialect = engine.dialect.name
        tables = DEFAULT_SCOPED_TABLES if scoped_tables is None else scoped_tables
        self.scoped_tables = {name.lower(): column for name, column in tables.items()}
        self.row_limit = row_limit or settings.get_query_row_limit()

    def validate(self, sql: str) -> list[Token]:
        tokens = tokenize(sql or "", self.dialect)
        if not tokens or tokens[0].upper != "SELECT":
            raise UnsafeQueryError("Only SELECT queries are allowed")

        for index, token in enumerate(tokens):
            if token.kind == "punct" and token.text == ";" and index != len(tokens) - 1:
                raise UnsafeQueryError("Multiple statements are not allowed")
            if token.upper in FORBIDDEN_KEYWORDS:
                raise UnsafeQueryError(f"Keyword {token.upper} is not allowed")
            if token.upper in FORBIDDEN_FUNCTIONS:
                raise UnsafeQueryError(f"Function {token.text} is not allowed")
        return tokens

    def rewrite(self, scope: str, sql: str) -> str:
        tokens = self.validate(sql)
        depths = _paren_depths(tokens)
        insertions: list[tuple[int, str]] = []
        claimed: set[int] = set()

        for index, token in enumerate(tokens):
            if token.upper == "SELECT":
                insertions.extend(self._scope_block(scope, tokens, depths, index, claimed))

        for index, token in enumerate(tokens):
            if index in claimed or not token.is_name or token.name not in self.scoped_tables:
                continue
            previous = tokens[index - 1] if index > 0 else None
            following = tokens[index + 1] if index + 1 < len(tokens) else None
            if previous is not None and previous.upper == "AS":
                continue
            if following is not None and following.text == "." and following.kind == "punct":
                continue
            raise UnsafeQueryError(
                f"Table '{token.text}' is referenced in a way that cannot be scoped",
            )

        rewritten = sql
        for position, text in sorted(insertions, key=lambda item: item[0], reverse=True):
            rewritten = rewritten[:position] + text + rewritten[position:]
        return rewritten.strip().rstrip(";").rstrip()

    def _block_end(self, tokens: list[Token], depths: list[int], start: int) -> int:
        depth = depths[start]
        for index in range(start + 1, len(tokens)):
            token = tokens[index]
            if depths[index] < depth:
                return index
            if depths[index] == depth and (
                token.upper in _SET_OPERATORS or (token.kind == "punct" and token.text == ";")
            ):
                return index
        return len(tokens)

    def _find_from(self, tokens: list[Token], depths: list[int], start: int, end: int) -> int | None:
        depth = depths[start]
        for index in range(start + 1, end):
            if depths[index] != depth or tokens[index].upper != "FROM":
                continue
            # "a IS [NOT] DISTINCT FROM b" is a comparison, not a FROM clause.
            if tokens[index - 1].upper == "DISTINCT" and tokens[index - 2].upper in {"IS", "NOT"}:
                continue
            return index
        return None

    def _scope_block(
        self,
        scope: str,
        tokens: list[Token],
        depths: list[int],
        start: int,
        claimed: set[int],
    ) -> list[tuple[int, str]]:
        depth = depths[start]
        end = self._block_end(tokens, depths, start)
        from_index = self._find_from(tokens, depths, start, end)
        if from_index is None:
            return []

        clause_end = end
        for index in range(from_index + 1, end):
            if depths[index] == depth and tokens[index].upper in _FROM_TERMINATORS:
                clause_end = index
                break

        level = [i for i in range(from_index + 1, clause_end) if depths[i] == depth]
        multi_source = any(tokens[i].upper == "JOIN" or tokens[i].text == "," for i in level)

        predicates = []
        for position, index in enumerate(level):
            token = tokens[index]
            if not token.is_name or token.name not in self.scoped_tables:
                continue
            previous = tokens[index - 1]
            if not (previous.upper in _TABLE_INTRODUCERS or (previous.kind == "punct" and previous.text == ",")):
                continue
            if depths[index - 1] != depth:
                continue
            following = tokens[level[position + 1]] if position + 1 < len(level) else None
            if following is not None and following.text == ".":
                continue

            alias = None
            if following is not None and following.upper == "AS":
                candidate = tokens[level[position + 2]] if position + 2 < len(level) else None
                if candidate is None or not candidate.is_name:
                    raise UnsafeQueryError(f"Missing alias after AS for '{token.text}'")
                alias = candidate.text
            elif following is not None and following.is_name and following.upper not in _NOT_AN_ALIAS:
                alias = following.text

            column = self.scoped_tables[token.name]
            qualifier = alias or (token.text if multi_source else None)
            target = f"{qualifier}.{column}" if qualifier else column
            predicates.append(f"{target} = {quote_literal(scope)}")
            claimed.add(index)

        if not predicates:
            return []
        predicate = " AND ".join(predicates)

        if clause_end < end and tokens[clause_end].upper == "WHERE":
            body_end = end
            for index in range(clause_end + 1, end):
                if depths[index] == depth and tokens[index].upper in _WHERE_TERMINATORS:
                    body_end = index
                    break
            if body_end == clause_end + 1:
                raise UnsafeQueryError("Empty WHERE clause")
            return [
                (tokens[clause_end + 1].start, f"{predicate} AND ("),
                (tokens[body_end - 1].end, ")"),
            ]

        if clause_end == from_index + 1:
            raise UnsafeQueryError("Empty FROM clause")
        return [(tokens[clause_end - 1].end, f" WHERE {predicate}")]

    def execute(self, scope: str, sql: str) -> QueryOutcome:
        rewritten = self.rewrite(scope, sql)
        logger.info("[SQL] Executing scoped query: %s", rewritten[:500])

        # Read through a transaction that is rolled back when the connection closes.
        with self.engine.connect() as connection:
            result = connection.execution_options(no_parameters=True).exec_driver_sql(rewritten)
            if not result.returns_rows:
                return QueryOutcome(query=rewritten, rows=[], row_count=0)
            mapped = result.mappings()
            rows = [{key: _plain(value) for key, value in row.items()} for row in mapped.fetchmany(self.row_limit)]
            remaining = sum(1 for _ in mapped)

        row_count = len(rows) + remaining
        return QueryOutcome(
            query=rewritten,
            rows=rows,
            row_count=row_count,
            truncated=remaining > 0,
        )
