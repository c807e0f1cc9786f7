from datetime import date

import pytest

from finance_copilot.domain.csv_import import parse_amount, parse_date, parse_statement

TODAY = date(2024, 6, 15)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2024-03-05", date(2024, 3, 5)),
        ("03/05/2024", date(2024, 3, 5)),
        ("03/05/24", date(2024, 3, 5)),
        ("05-Mar-2024", date(2024, 3, 5)),
        ("Mar 05, 2024", date(2024, 3, 5)),
        ("2024-03-05T10:00:00Z", date(2024, 3, 5)),
        ("not a date", TODAY),
    ],
)
def test_parse_date(raw: str, expected: date) -> None:
    assert parse_date(raw, TODAY) == expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("$1,234.56", 1234.56),
        ("-42.10", -42.10),
        ("(15.00)", -15.0),
        ("abc", 0.0),
        (None, 0.0),
        (7, 7.0),
        ("NaN", 0.0),
        ("-inf", 0.0),
        ("1e999", 0.0),
        (float("nan"), 0.0),
    ],
)
def test_parse_amount(raw, expected: float) -> None:
    assert parse_amount(raw) == pytest.approx(expected)


def test_parse_statement_with_bom_and_aliases() -> None:
    text = (
        "\ufeffTransaction Date,Merchant,Amount,Account\n"
        "2024-03-01,STARBUCKS #12,-4.50,Checking\n"
        "03/02/2024,PAYROLL ACME,\"2,500.00\",\n"
    )
    parsed = parse_statement(text, TODAY)

    assert parsed.skipped == []
    assert [row.description for row in parsed.rows] == ["STARBUCKS #12", "PAYROLL ACME"]
    assert parsed.rows[0].date == date(2024, 3, 1)
    assert parsed.rows[0].amount == pytest.approx(-4.5)
    assert parsed.rows[0].account == "Checking"
    assert parsed.rows[1].amount == pytest.approx(2500.0)
    assert parsed.rows[1].account == "Default"


def test_debit_and_credit_columns() -> None:
    text = (
        "Date,Description,Debit,Credit\n"
        "2024-03-01,ZORBLAT,12.00,\n"
        "2024-03-02,REFUND QUUX,,8.25\n"
    )
    parsed = parse_statement(text, TODAY)
    assert [row.amount for row in parsed.rows] == [pytest.approx(-12.0), pytest.approx(8.25)]


def test_rows_missing_fields_are_reported() -> None:
    text = (
        "Date,Description,Amount\n"
        "2024-03-01,ZORBLAT,-1.00\n"
        ",QUUX,-2.00\n"
        ",,\n"
        "2024-03-04,,-3.00\n"
    )
    parsed = parse_statement(text, TODAY)
    assert [row.description for row in parsed.rows] == ["ZORBLAT"]
    assert parsed.skipped == [
        "Skipping row 3: missing date or description",
        "Skipping row 5: missing date or description",
    ]


def test_non_finite_amount_cell_is_stored_as_zero() -> None:
    parsed = parse_statement("Date,Description,Amount\n2024-03-01,ZORBLAT,NaN\n", TODAY)
    assert [row.amount for row in parsed.rows] == [0.0]
