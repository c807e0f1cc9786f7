import pytest
from sqlalchemy.orm import Session, sessionmaker

from finance_copilot.db.transactions import TransactionRepository
from finance_copilot.errors import NotFoundError, ValidationError


@pytest.fixture
def seeded(add_transactions):
    alice = add_transactions(
        "alice",
        ("2024-01-10", "STARBUCKS", -5.0, "Coffee"),
        ("2024-01-20", "PAYROLL ACME", 2000.0, "Income"),
        ("2024-02-03", "STARBUCKS", -7.0, "Coffee"),
        ("2024-02-14", "ZORBLAT", -30.0, "Other"),
    )
    bob = add_transactions("bob", ("2024-02-01", "QUUX", -99.0, "Shopping"))
    return alice, bob


@pytest.fixture
def repo(session_factory: sessionmaker[Session]):
    with session_factory() as session:
        yield TransactionRepository(session)


def test_insert_sets_type_from_amount(seeded) -> None:
    alice, _ = seeded
    assert [tx.transaction_type for tx in alice] == ["expense", "income", "expense", "expense"]
    assert all(tx.user_id == "alice" for tx in alice)


def test_other_users_rows_are_not_found(repo: TransactionRepository, seeded) -> None:
    _, bob = seeded
    with pytest.raises(NotFoundError):
        repo.get("alice", bob[0].id)
    with pytest.raises(NotFoundError):
        repo.update("alice", bob[0].id, category="Pets")
    assert repo.delete("alice", bob[0].id) is False
    assert repo.count("bob") == 1


def test_update_validates_category(repo: TransactionRepository, seeded) -> None:
    alice, _ = seeded
    with pytest.raises(ValidationError):
        repo.update("alice", alice[0].id, category="Snacks")
    with pytest.raises(ValidationError):
        repo.update("alice", alice[0].id)
    updated = repo.update("alice", alice[0].id, category="Dining", description="STARBUCKS LUNCH")
    assert updated.category == "Dining"
    assert updated.description == "STARBUCKS LUNCH"


def test_list_filters_sorts_and_counts(repo: TransactionRepository, seeded) -> None:
    rows, total = repo.list_transactions("alice", category="Coffee", sort_by="amount", sort_order="asc")
    assert total == 2
    assert [tx.amount for tx in rows] == [-7.0, -5.0]

    rows, total = repo.list_transactions("alice", limit=1, sort_by="nonsense; DROP TABLE transactions")
    assert total == 4
    assert rows[0].date == "2024-02-14"

    rows, _ = repo.list_transactions("alice", search="star", start_date="2024-02-01")
    assert [tx.date for tx in rows] == ["2024-02-03"]


def test_recategorize_matching_only_changes_caller(repo: TransactionRepository, seeded, add_transactions) -> None:
    add_transactions("bob", ("2024-02-02", "STARBUCKS", -3.0, "Coffee"))
    assert len(repo.recategorize_matching("alice", "starbucks", "Dining")) == 2
    assert repo.recategorize_matching("alice", "starbucks", "Dining") == []
    assert repo.search("bob", term="starbucks")[0].category == "Coffee"


def test_summary_and_period_totals(repo: TransactionRepository, seeded) -> None:
    summary = repo.summary("alice")
    assert summary == {
        "total_transactions": 4,
        "total_expenses": 42.0,
        "total_income": 2000.0,
        "net_savings": 1958.0,
        "avg_expense": 14.0,
        "earliest_date": "2024-01-10",
        "latest_date": "2024-02-14",
    }
    assert repo.period_totals("alice", "2024-02-01", "2024-03-01") == {"expenses": 37.0, "income": 0.0, "count": 2}
    assert repo.period_totals("alice", "2024-01-01", "2024-02-01", category="coffee") == {
        "expenses": 5.0, "income": 0.0, "count": 1,
    }


def test_category_rollups(repo: TransactionRepository, seeded) -> None:
    assert repo.spending_by_category("alice", limit=5) == [
        {"category": "Other", "total": 30.0, "count": 1},
        {"category": "Coffee", "total": 12.0, "count": 2},
    ]
    counts = repo.category_counts("alice")
    assert counts[0] == {"category": "Coffee", "count": 2, "total_spent": 12.0}
    assert repo.distinct_categories("alice") == ["Coffee", "Income", "Other"]


def test_monthly_trends_oldest_first(repo: TransactionRepository, seeded) -> None:
    trends = repo.monthly_trends("alice", months=12)
    assert [t["month"] for t in trends] == ["2024-01", "2024-02"]
    assert trends[0]["income"] == 2000.0
    assert trends[1]["expenses"] == 37.0

    assert [t["month"] for t in repo.monthly_trends("alice", months=1)] == ["2024-02"]


def test_clear_and_user_ids(repo: TransactionRepository, seeded) -> None:
    assert repo.user_ids() == ["alice", "bob"]
    assert repo.clear("alice") == 4
    assert repo.count("alice") == 0
    assert repo.user_ids() == ["bob"]
