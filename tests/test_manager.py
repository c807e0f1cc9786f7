from unittest.mock import MagicMock

import pytest
from sqlalchemy.orm import Session, sessionmaker

from finance_copilot.classifiers.llm import ai_result
from finance_copilot.db.rules import RuleStore
from finance_copilot.errors import ExternalServiceError
from finance_copilot.manager import CategorizerService


@pytest.fixture
def mock_llm() -> MagicMock:
    llm = MagicMock()
    llm.classify.side_effect = lambda merchant, description: ai_result("Shopping", merchant)
    return llm


@pytest.fixture
def service(session_factory: sessionmaker[Session], mock_llm: MagicMock) -> CategorizerService:
    return CategorizerService(session_factory, llm=mock_llm, batch_size=2)


def add_rule(session_factory: sessionmaker[Session], pattern: str, category: str) -> None:
    with session_factory() as session:
        RuleStore(session).insert_rule(pattern, category)


def test_rule_takes_priority_over_patterns(
    service: CategorizerService,
    session_factory: sessionmaker[Session],
    mock_llm: MagicMock,
) -> None:
    # Without a rule the built-in pattern applies
    res = service.categorize("STARBUCKS #123 SEATTLE WA")
    assert res.category == "Coffee"
    assert res.method == "pattern"

    add_rule(session_factory, "STARBUCKS", "Dining")
    res = service.categorize("STARBUCKS #123 SEATTLE WA")
    assert res.category == "Dining"
    assert res.method == "rule"
    assert res.confidence == "high"
    assert res.normalized_merchant == "STARBUCKS"
    mock_llm.classify.assert_not_called()


def test_toast_merchant_is_dining_without_ai(service: CategorizerService, mock_llm: MagicMock) -> None:
    res = service.categorize("TST* ZORBLAT")
    assert res.category == "Dining"
    assert res.confidence == "medium"
    mock_llm.classify.assert_not_called()


def test_square_merchant_goes_to_ai(service: CategorizerService, mock_llm: MagicMock) -> None:
    res = service.categorize("SQ *ZORBLAT")
    assert res.category == "Shopping"
    assert res.method == "ai"
    assert res.suggest_rule is True
    mock_llm.classify.assert_called_once_with("ZORBLAT", "SQ *ZORBLAT")


def test_fallback_when_ai_disabled(session_factory: sessionmaker[Session], monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    service = CategorizerService(session_factory)
    assert service.llm is None

    res = service.categorize("ZORBLAT 00991")
    assert res.category == "Other"
    assert res.confidence == "low"
    assert res.method == "fallback"
    assert res.normalized_merchant == "ZORBLAT"


def test_batch_is_aligned_and_failed_batch_degrades(service: CategorizerService, mock_llm: MagicMock) -> None:
    mock_llm.classify_batch.side_effect = [
        ["Pets", "Home"],
        ExternalServiceError("AI unavailable"),
    ]

    results = service.batch_categorize(["ZORBLAT", "STARBUCKS", "QUUX", "FLORP"])

    assert [r.category for r in results] == ["Pets", "Coffee", "Home", "Other"]
    assert [r.method for r in results] == ["ai", "pattern", "ai", "fallback"]
    assert mock_llm.classify_batch.call_count == 2
    mock_llm.classify_batch.assert_any_call(["ZORBLAT", "QUUX"])
    mock_llm.classify_batch.assert_any_call(["FLORP"])


def test_batch_without_ai_uses_fallback(session_factory: sessionmaker[Session], monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    service = CategorizerService(session_factory)
    results = service.batch_categorize(["ZORBLAT", "NETFLIX.COM"])
    assert [r.category for r in results] == ["Other", "Entertainment"]


@pytest.mark.parametrize(
    "description, created",
    [
        ("AB", False),
        ("ABC", True),
        ("Q" * 50, True),
        ("Q" * 51, False),
    ],
)
def test_learning_pattern_length_bounds(service: CategorizerService, description: str, created: bool) -> None:
    res = service.learn_from_correction(description, "Pets", create_rule=True)
    assert res.rule_created is created


def test_learning_creates_rule_for_normalized_merchant(
    service: CategorizerService,
    session_factory: sessionmaker[Session],
) -> None:
    res = service.learn_from_correction("SQ *ZORBLAT #88 AUSTIN TX", "Pets", create_rule=True)
    assert res.rule_created is True
    assert res.pattern == "ZORBLAT"
    assert service.categorize("ZORBLAT 4411").category == "Pets"

    again = service.learn_from_correction("ZORBLAT", "Home", create_rule=True)
    assert again.rule_created is False
    assert again.pattern == "ZORBLAT"
    with session_factory() as session:
        assert RuleStore(session).match("ZORBLAT").category == "Pets"


def test_learning_is_opt_in(service: CategorizerService) -> None:
    res = service.learn_from_correction("ZORBLAT", "Pets")
    assert res.rule_created is False
    assert res.pattern is None


def test_processor_prefixed_coffee_shop_resolves_locally(service: CategorizerService, mock_llm: MagicMock) -> None:
    res = service.categorize("SQ *JOE'S COFFEE #4521 SAN FRANCISCO CA")
    assert res.category == "Coffee"
    assert res.confidence == "high"
    assert res.method == "pattern"
    assert res.normalized_merchant == "JOE'S COFFEE"
    mock_llm.classify.assert_not_called()


def test_batch_and_single_categorization_agree(service: CategorizerService, mock_llm: MagicMock) -> None:
    answers = {"ZORBLAT": "Pets", "QUUX": "Home", "FLORP": "Travel"}
    mock_llm.classify.side_effect = lambda merchant, description: ai_result(answers[merchant], merchant)
    mock_llm.classify_batch.side_effect = lambda merchants: [answers[m] for m in merchants]
    descriptions = ["ZORBLAT", "SQ *QUUX", "STARBUCKS #9", "FLORP 12345", "TST* BLIP", "ZORBLAT"]

    single = [service.categorize(d) for d in descriptions]
    batch = service.batch_categorize(descriptions)

    assert [r.category for r in batch] == [r.category for r in single]
    assert [r.method for r in batch] == [r.method for r in single]
    assert [r.category for r in batch] == ["Pets", "Home", "Coffee", "Travel", "Dining", "Pets"]
