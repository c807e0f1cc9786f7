import pytest

from finance_copilot.categorization.patterns import DEFAULT_PATTERN_TABLE, PatternTable
from finance_copilot.classifiers.patterns import PatternClassifier, ProcessorHeuristicClassifier


def test_default_table_matches_known_merchants() -> None:
    assert DEFAULT_PATTERN_TABLE.match("STARBUCKS RESERVE") == "Coffee"
    assert DEFAULT_PATTERN_TABLE.match("whole foods") == "Groceries"
    assert DEFAULT_PATTERN_TABLE.match("UNITED AIRLINES") == "Travel"
    assert DEFAULT_PATTERN_TABLE.match("ZORBLAT") is None


def test_first_declared_category_wins() -> None:
    table = PatternTable.from_mapping({"Coffee": ["bean"], "Groceries": ["BEAN MARKET"]})
    assert table.match("BEAN MARKET") == "Coffee"
    assert len(table) == 2


def test_unknown_category_is_rejected() -> None:
    with pytest.raises(ValueError):
        PatternTable.from_mapping({"Snacks": ["CHIPS"]})


def test_pattern_classifier_returns_high_confidence() -> None:
    result = PatternClassifier().classify("NETFLIX", "NETFLIX.COM")
    assert result is not None
    assert result.category == "Entertainment"
    assert result.confidence == "high"
    assert result.method == "pattern"
    assert result.normalized_merchant == "NETFLIX"


def test_toast_prefix_means_dining() -> None:
    result = ProcessorHeuristicClassifier().classify("ZORBLAT", "TST* ZORBLAT")
    assert result is not None
    assert result.category == "Dining"
    assert result.confidence == "medium"
    assert result.method == "pattern"


def test_square_prefix_is_left_for_ai() -> None:
    assert ProcessorHeuristicClassifier().classify("ZORBLAT", "SQ *ZORBLAT") is None
    assert ProcessorHeuristicClassifier().classify("ZORBLAT", "ZORBLAT") is None
