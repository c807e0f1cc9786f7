import csv
import io
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from finance_copilot.logger import get_logger
from finance_copilot.models import StatementRow

logger = get_logger(__name__)

DATE_COLUMNS = ("Date", "date", "DATE", "Transaction Date", "Posting Date")
DESCRIPTION_COLUMNS = ("Description", "description", "DESCRIPTION", "Merchant", "merchant", "Name")
AMOUNT_COLUMNS = ("Amount", "amount", "AMOUNT")
ACCOUNT_COLUMNS = ("Account", "account")
DEFAULT_ACCOUNT = "Default"

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%Y/%m/%d",
    "%d-%b-%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
)


@dataclass
class ParsedStatement:
    rows: list[StatementRow] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def _first_value(row: dict[str, Any], columns: tuple[str, ...]) -> str:
    for column in columns:
        value = row.get(column)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def parse_date(value: str, today: date | None = None) -> date:
    """Parse common statement date formats; anything unreadable becomes today."""
    cleaned = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00")).date()
    except ValueError:
        logger.debug("[UPLOAD] Unreadable date '%s', using today.", cleaned)
        return today or date.today()


def parse_amount(value: str | float | int | None) -> float:
    """Statement amount as a float; anything unreadable or non-finite is 0."""
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0
    cleaned = (value or "").replace("$", "").replace(",", "").strip()
    negative = cleaned.startswith("(") and cleaned.endswith(")")
    if negative:
        cleaned = cleaned[1:-1].strip()
    try:
        amount = float(cleaned)
    except ValueError:
        return 0.0
    if not math.isfinite(amount):
        logger.debug("[UPLOAD] Non-finite amount '%s', using 0.", cleaned)
        return 0.0
    return -abs(amount) if negative else amount


def _row_amount(row: dict[str, Any]) -> float:
    raw = _first_value(row, AMOUNT_COLUMNS)
    if raw:
        return parse_amount(raw)
    # Split debit/credit layouts: debits leave the account.
    debit = _first_value(row, ("Debit", "debit"))
    if debit:
        return -abs(parse_amount(debit))
    credit = _first_value(row, ("Credit", "credit"))
    if credit:
        return abs(parse_amount(credit))
    return 0.0


def parse_statement(text: str, today: date | None = None) -> ParsedStatement:
    """
    Parse a bank statement CSV with a header row.

    Column names are matched against the usual bank export headers. Rows
    without a date or description are skipped and reported by line number.
    """
    parsed = ParsedStatement()
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    for row in reader:
        if not any((value or "").strip() for value in row.values() if isinstance(value, str)):
            continue
        raw_date = _first_value(row, DATE_COLUMNS)
        description = _first_value(row, DESCRIPTION_COLUMNS)
        if not raw_date or not description:
            parsed.skipped.append(f"Skipping row {reader.line_num}: missing date or description")
            continue
        parsed.rows.append(StatementRow(
            date=parse_date(raw_date, today),
            description=description,
            amount=_row_amount(row),
            account=_first_value(row, ACCOUNT_COLUMNS) or DEFAULT_ACCOUNT,
        ))
    return parsed
