from collections.abc import Sequence
from typing import Any

from finance_copilot.models import ChartData

PIE_LIMIT = 10
BAR_MAX_ROWS = 5
BAR_MAX_COLUMNS = 4
LEGACY_PIE_MAX_ROWS = 15
LEGACY_BAR_MAX_ROWS = 20


def _number(value: Any) -> float:
    try:
        return abs(float(value))
    except (TypeError, ValueError):
        return 0.0


def _first_key(row: dict[str, Any], keys: Sequence[str]) -> str | None:
    return next((key for key in keys if key in row), None)


def build_chart(rows: Sequence[dict[str, Any]]) -> ChartData | None:
    """
    Pick a chart for tool results by looking at the first row's columns.

    Category-like rows become a pie of the first ten, month or date rows a
    line, and a handful of narrow rows with a numeric column a bar chart.
    Values are shown as magnitudes.
    """
    if not rows:
        return None
    first = rows[0]

    label_key = _first_key(first, ("category", "name"))
    value_key = _first_key(first, ("total", "value", "count"))
    if label_key and value_key:
        return ChartData(
            type="pie",
            data=[
                {
                    "name": row.get("category") or row.get("name") or "Unknown",
                    "value": _number(row.get(value_key)),
                }
                for row in rows[:PIE_LIMIT]
            ],
        )

    time_key = _first_key(first, ("month", "date"))
    if time_key:
        value_key = _first_key(first, ("expenses", "total")) or "amount"
        data = []
        for row in rows:
            point: dict[str, Any] = {"name": str(row.get(time_key)), "value": _number(row.get(value_key))}
            if "income" in row:
                point["income"] = float(row.get("income") or 0)
            data.append(point)
        return ChartData(type="line", data=data)

    if len(rows) <= BAR_MAX_ROWS and len(first) <= BAR_MAX_COLUMNS:
        numeric_key = next(
            (key for key, value in first.items() if isinstance(value, (int, float)) and not isinstance(value, bool)),
            None,
        )
        if numeric_key:
            return ChartData(
                type="bar",
                data=[
                    {"name": f"Item {position}", "value": _number(row.get(numeric_key))}
                    for position, row in enumerate(rows, start=1)
                ],
            )
    return None


def _column_like(columns: Sequence[str], fragments: Sequence[str]) -> str | None:
    return next((column for column in columns if any(f in column for f in fragments)), None)


def detect_chart_for_question(question: str, rows: Sequence[dict[str, Any]]) -> ChartData | None:
    """Chart hint for direct text-to-SQL answers, driven by the wording of the question."""
    if not rows:
        return None

    wording = question.lower()
    columns = list(rows[0].keys())
    fallback_name = columns[0]
    fallback_value = columns[1] if len(columns) > 1 else columns[0]

    if any(word in wording for word in ("month", "trend", "over time")):
        date_key = _column_like(columns, ("month", "date", "week"))
        if date_key:
            value_key = _column_like(columns, ("total", "amount", "sum", "expense", "income")) or fallback_value
            return ChartData(
                type="line",
                data=list(rows),
                data_key=value_key,
                name_key=date_key,
                title="Trend Over Time",
            )

    if any(word in wording for word in ("category", "breakdown", "by type")):
        category_key = _column_like(columns, ("category", "type"))
        if category_key and len(rows) <= LEGACY_PIE_MAX_ROWS:
            value_key = _column_like(columns, ("total", "amount", "sum", "count")) or fallback_value
            return ChartData(
                type="pie",
                data=list(rows),
                data_key=value_key,
                name_key=category_key,
                title="Breakdown by Category",
            )

    if any(word in wording for word in ("top", "compare", "most", "highest", "ranking")):
        if 1 < len(rows) <= LEGACY_BAR_MAX_ROWS:
            label_key = _column_like(columns, ("category", "description", "merchant", "name")) or fallback_name
            value_key = _column_like(columns, ("total", "amount", "sum", "count")) or fallback_value
            return ChartData(
                type="bar",
                data=list(rows),
                data_key=value_key,
                name_key=label_key,
                title="Comparison",
            )
    return None
