import pytest

from finance_copilot.categorization.normalizer import normalize_merchant


def test_square_prefix_store_number_and_location_are_removed() -> None:
    assert normalize_merchant("SQ *JOE'S COFFEE #4521 SAN FRANCISCO CA") == "JOE'S COFFEE"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("starbucks store 12345", "STARBUCKS STORE"),
        ("TST* BLUE PLATE", "BLUE PLATE"),
        ("POS DEBIT ACME HARDWARE INC", "ACME HARDWARE"),
        ("", ""),
    ],
)
def test_normalize_examples(raw: str, expected: str) -> None:
    assert normalize_merchant(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        "SQ *JOE'S COFFEE #4521 SAN FRANCISCO CA",
        "POS DEBIT PURCHASE SAFEWAY 1234 OAKLAND CA",
        "AMZN Mktp US*2K4LP0 AMZN.COM/BILL WA",
        "Uber   Trip 06/14",
    ],
)
def test_normalize_is_a_fixed_point(raw: str) -> None:
    once = normalize_merchant(raw)
    assert normalize_merchant(once) == once
