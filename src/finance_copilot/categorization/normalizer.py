import re

# Processor marks that precede the real merchant name on card statements.
MERCHANT_PREFIXES: tuple[str, ...] = (
    "SQ *", "SQU*", "SQ*",
    "TST*", "TOAST*",
    "PP*", "PAYPAL *",
    "AMZN ", "AMAZON.COM*", "AMZ*",
    "GOOGLE *", "GOOGLE*",
    "APPLE.COM/", "APPLE *",
    "SP ", "SP*",
    "CKE*", "CHK*",
    "POS ",
    "DEBIT ",
    "PURCHASE ",
    "ACH ",
    "CHECKCARD ",
    "RECURRING ",
)

MERCHANT_SUFFIXES: tuple[re.Pattern[str], ...] = (
    re.compile(r"\s+(?:LLC|INC|CORP|CO|LTD)\.?$"),
    # Store number and whatever location text trails it.
    re.compile(r"\s+#\s*\d+\b.*$"),
    re.compile(r"\s+\d{3,}$"),
    # State + ZIP
    re.compile(r"\s+[A-Z]{2}\s+\d{5}(?:-\d{4})?$"),
    # MM/DD or MM/DD/YY(YY)
    re.compile(r"\s+\d{2}/\d{2}(?:/\d{2,4})?$"),
)

_WHITESPACE = re.compile(r"\s+")
_TRAILING_TRANSACTION_ID = re.compile(r"\s+\d{4,}$")
_TRAILING_CITY_STATE = re.compile(r"\s+[A-Z]{2,}\s+[A-Z]{2}$")


def _strip_prefixes(value: str) -> str:
    for prefix in MERCHANT_PREFIXES:
        if value.startswith(prefix):
            value = value[len(prefix):].strip()
    return value


def _normalize_once(value: str) -> str:
    normalized = _WHITESPACE.sub(" ", value.upper()).strip()
    normalized = _strip_prefixes(normalized)
    for suffix in MERCHANT_SUFFIXES:
        normalized = suffix.sub("", normalized).strip()
    normalized = _WHITESPACE.sub(" ", normalized).strip()
    normalized = _TRAILING_TRANSACTION_ID.sub("", normalized).strip()
    normalized = _TRAILING_CITY_STATE.sub("", normalized).strip()
    return normalized


def normalize_merchant(description: str) -> str:
    """
    Reduce a raw statement description to a canonical merchant string.

    ``SQ *JOE'S COFFEE #4521 SAN FRANCISCO CA`` becomes ``JOE'S COFFEE``.
    Passes repeat until the value stops changing, so the result is a fixed
    point and normalizing twice gives the same string.
    """
    current = description or ""
    while True:
        normalized = _normalize_once(current)
        if normalized == current:
            return normalized
        current = normalized
