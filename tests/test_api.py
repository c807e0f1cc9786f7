from collections.abc import Generator
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from finance_copilot.app import app
from finance_copilot.models import CATEGORIES

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}

STATEMENT = (
    b"Date,Description,Amount\n"
    b"2024-03-01,STARBUCKS #1234 SEATTLE WA,-5.75\n"
    b"2024-03-02,ZORBLAT,-19.99\n"
    b",QUUX,-1.00\n"
    b"2024-03-03,NETFLIX.COM,-15.49\n"
)


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> Generator[TestClient, None, None]:
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("USER_HEADER", raising=False)
    with TestClient(app) as test_client:
        yield test_client


def upload(client: TestClient, headers: dict[str, str] = ALICE, **data: str):
    return client.post(
        "/api/upload",
        headers=headers,
        files={"file": ("statement.csv", STATEMENT, "text/csv")},
        data=data,
    )


def transaction_id(client: TestClient, description: str) -> int:
    listing = client.get("/api/transactions", headers=ALICE, params={"search": description}).json()
    return listing["transactions"][0]["id"]


def test_requests_without_identity_are_rejected(client: TestClient) -> None:
    response = client.get("/api/transactions")
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized", "details": None}

    response = client.get("/api/transactions", headers={"X-User-Id": "   "})
    assert response.status_code == 401


def test_identity_header_is_configurable(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("USER_HEADER", "X-Forwarded-User")
    assert client.get("/api/transactions", headers=ALICE).status_code == 401
    assert client.get("/api/transactions", headers={"X-Forwarded-User": "alice"}).status_code == 200


def test_upload_categorizes_and_scopes(client: TestClient) -> None:
    response = upload(client)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["message"] == "Successfully processed 3 transactions"
    assert data["processed"] == 3
    assert data["skipped"] == 1
    assert data["errors"] == ["Skipping row 4: missing date or description"]
    assert data["categorization_stats"] == {"rule": 0, "pattern": 2, "ai": 0, "fallback": 1}

    listing = client.get("/api/transactions", headers=ALICE).json()
    assert listing["total"] == 3
    assert [tx["category"] for tx in listing["transactions"]] == ["Entertainment", "Other", "Coffee"]
    assert listing["categories"] == ["Coffee", "Entertainment", "Other"]

    assert client.get("/api/transactions", headers=BOB).json()["total"] == 0


def test_upload_clear_existing(client: TestClient) -> None:
    upload(client)
    upload(client, headers=BOB)
    response = upload(client, clear_existing="true")
    assert response.status_code == 200
    assert client.get("/api/transactions", headers=ALICE).json()["total"] == 3
    assert client.get("/api/transactions", headers=BOB).json()["total"] == 3


def test_upload_rejects_non_utf8(client: TestClient) -> None:
    response = client.post(
        "/api/upload",
        headers=ALICE,
        files={"file": ("statement.csv", b"\xff\xfe\x00bad", "text/csv")},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Uploaded file is not UTF-8 text"


def test_correction_can_create_rule(client: TestClient) -> None:
    upload(client)
    tx_id = transaction_id(client, "ZORBLAT")

    response = client.patch(
        "/api/transactions",
        headers=ALICE,
        json={"id": tx_id, "category": "Pets", "learn_from_correction": True},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["transaction"]["category"] == "Pets"
    assert data["rule_created"] is True
    assert data["rule_pattern"] == "ZORBLAT"
    rules = client.get("/api/categories", headers=ALICE).json()["rules"]
    assert {"pattern": "ZORBLAT", "category": "Pets"} in [
        {"pattern": rule["pattern"], "category": rule["category"]} for rule in rules
    ]


def test_updating_another_users_transaction_is_not_found(client: TestClient) -> None:
    upload(client)
    tx_id = transaction_id(client, "ZORBLAT")
    response = client.patch("/api/transactions", headers=BOB, json={"id": tx_id, "category": "Pets"})
    assert response.status_code == 404


def test_invalid_category_update(client: TestClient) -> None:
    upload(client)
    tx_id = transaction_id(client, "ZORBLAT")
    response = client.patch("/api/transactions", headers=ALICE, json={"id": tx_id, "category": "Snacks"})
    assert response.status_code == 400


def test_rule_creation_conflict_and_recategorization(client: TestClient) -> None:
    upload(client)

    first = client.post("/api/categories", headers=ALICE, json={"pattern": "starbucks", "category": "Coffee"})
    assert first.json()["updated_transactions"] == 0

    conflict = client.post("/api/categories", headers=ALICE, json={"pattern": "starbucks", "category": "Dining"})
    assert conflict.status_code == 409
    assert conflict.json()["details"] == "Coffee"

    created = client.post("/api/categories", headers=ALICE, json={"pattern": "zorblat", "category": "Pets"})
    assert created.status_code == 200
    body = created.json()
    assert body["rule"]["pattern"] == "ZORBLAT"
    assert body["updated_transactions"] == 1

    rule_id = body["rule"]["id"]
    assert client.delete("/api/categories", headers=ALICE, params={"id": rule_id}).json() == {
        "success": True,
        "deleted": True,
    }
    assert client.delete("/api/categories", headers=ALICE, params={"id": rule_id}).status_code == 404


def test_delete_transactions(client: TestClient) -> None:
    upload(client)
    tx_id = transaction_id(client, "ZORBLAT")

    assert client.delete("/api/transactions", headers=BOB, params={"id": tx_id}).status_code == 404
    assert client.delete("/api/transactions", headers=ALICE).status_code == 400

    response = client.delete("/api/transactions", headers=ALICE, params={"id": tx_id})
    assert response.json()["deleted"] == 1

    response = client.delete("/api/transactions", headers=ALICE, params={"delete_all": "true"})
    assert response.json() == {"success": True, "message": "All 2 transactions deleted", "deleted": 2}


def test_recategorize_and_preview(client: TestClient) -> None:
    upload(client)

    preview = client.get("/api/recategorize/preview", headers=ALICE)
    assert preview.json() == {"categories": list(CATEGORIES)}

    preview = client.get("/api/recategorize/preview", headers=ALICE, params={"description": "TST* ZORBLAT"})
    assert preview.json()["category"] == "Dining"
    assert preview.json()["method"] == "pattern"

    missing = client.post("/api/recategorize", headers=ALICE, json={})
    assert missing.status_code == 400

    response = client.post("/api/recategorize", headers=ALICE, json={"recategorize_all": True, "only_other": True})
    assert response.status_code == 200
    assert response.json()["updated"] == 1


def test_query_requires_ai(client: TestClient) -> None:
    response = client.post("/api/query", headers=ALICE, json={"query": "How much on coffee?"})
    assert response.status_code == 502

    response = client.post("/api/query", headers=ALICE, json={"query": "How much?", "use_agent": False})
    assert response.status_code == 502

    response = client.post("/api/query", headers=ALICE, json={"query": ""})
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request"


def test_analytics_and_retrieval_status(client: TestClient) -> None:
    upload(client)

    analytics = client.get("/api/analytics", headers=ALICE).json()
    assert analytics["summary"]["total_transactions"] == 3
    assert analytics["summary"]["total_expenses"] == 41.23
    assert [month["month"] for month in analytics["monthly_data"]] == ["2024-03"]
    assert len(analytics["recent_transactions"]) == 3
    assert analytics["top_merchants"][0]["description"] == "ZORBLAT"

    status = client.get("/api/rag/status", headers=ALICE).json()
    assert status["enabled"] is False
    assert status["documents"] == 0
    assert status["indexing"]["running"] is True

    assert client.post("/api/rag/bootstrap", headers=ALICE).status_code == 502


def test_category_changes_refresh_search_documents(client: TestClient) -> None:
    upload(client)
    tx_id = transaction_id(client, "ZORBLAT")
    state = client.app.state
    state.ingestion.rag = rag = MagicMock()
    rag.index_transactions.return_value = 1

    def indexed() -> list[list[tuple[int, str]]]:
        client.portal.call(state.indexing.join)
        batches = [
            [(tx.id, tx.category) for tx in call.args[1]]
            for call in rag.index_transactions.call_args_list
        ]
        rag.index_transactions.reset_mock()
        return batches

    client.patch("/api/transactions", headers=ALICE, json={"id": tx_id, "category": "Pets"})
    assert indexed() == [[(tx_id, "Pets")]]

    client.post("/api/categories", headers=ALICE, json={"pattern": "zorblat", "category": "Travel"})
    assert indexed() == [[(tx_id, "Travel")]]

    client.post("/api/recategorize", headers=ALICE, json={"transaction_ids": [tx_id]})
    assert indexed() == [[(tx_id, "Travel")]]


def test_worked_example_uses_the_pattern_table(client: TestClient) -> None:
    assert client.get("/api/categories", headers=ALICE).json()["rules"] == []

    preview = client.get(
        "/api/recategorize/preview",
        headers=ALICE,
        params={"description": "SQ *JOE'S COFFEE #4521 SAN FRANCISCO CA"},
    ).json()
    assert preview["category"] == "Coffee"
    assert preview["confidence"] == "high"
    assert preview["method"] == "pattern"
    assert preview["normalized_merchant"] == "JOE'S COFFEE"
