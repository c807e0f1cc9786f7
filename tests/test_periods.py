from datetime import date

import pytest

from finance_copilot.domain.periods import format_duration, months_back, resolve_period

# A Wednesday
TODAY = date(2024, 1, 17)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("this_month", ("2024-01-01", "2024-02-01")),
        ("last_month", ("2023-12-01", "2024-01-01")),
        ("this_year", ("2024-01-01", "2025-01-01")),
        ("last_30_days", ("2023-12-18", "2024-01-18")),
        ("this_week", ("2024-01-15", "2024-01-22")),
        ("last_week", ("2024-01-08", "2024-01-15")),
        ("all_time", (None, None)),
        ("fortnight", (None, None)),
    ],
)
def test_resolve_period(name: str, expected: tuple) -> None:
    assert resolve_period(name, TODAY) == expected


def test_months_back_crosses_year() -> None:
    assert months_back(1, TODAY) == "2024-01-01"
    assert months_back(3, TODAY) == "2023-11-01"
    assert months_back(0, TODAY) == "2024-01-01"


def test_format_duration() -> None:
    assert format_duration(0) == "0 ms"
    assert format_duration(0.25) == "250.0 ms"
    assert format_duration(2.5) == "2.50 s"
    assert format_duration(90) == "1.50 min"
