"""
HTTP tests for the settlements router.

The database dependency is overridden with the in-memory test engine and
tokens are issued with the service's own JWT handler.
"""
import pytest
from decimal import Decimal
from fastapi.testclient import TestClient

from app.db.database import get_db
from app.main import app
from app.services.auth.jwt_handler import create_access_token
from app.services.settlement_service import SettlementEngine, get_settlement_engine


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    engine = SettlementEngine()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settlement_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth(user_id):
    return {"access-token": create_access_token(user_id)}


def equal_payload(total="90.00", user_ids=("alice", "bob", "carol"), title="Dinner"):
    return {
        "title": title,
        "split": {
            "split_type": "equal",
            "total_amount": total,
            "participants": [{"user_id": user_id} for user_id in user_ids],
        },
    }


def create(client, payload=None, user_id="alice"):
    response = client.post("/settlements", json=payload or equal_payload(), headers=auth(user_id))
    assert response.status_code == 201, response.text
    return response.json()


def transaction_id_for(created, payer_id):
    return next(tx["id"] for tx in created["transactions"] if tx["payer_id"] == payer_id)


@pytest.mark.integration
class TestCreateEndpoint:

    def test_create_equal_settlement(self, client):
        created = create(client, equal_payload(total="100.00"))

        assert created["settlement"]["status"] == "pending"
        assert created["settlement"]["creator_id"] == "alice"
        assert [Decimal(tx["amount_owed"]) for tx in created["transactions"]] == [
            Decimal("33.34"), Decimal("33.33"), Decimal("33.33")
        ]

    def test_create_percentage_settlement(self, client):
        payload = {
            "title": "Trip",
            "split": {
                "split_type": "percentage",
                "total_amount": "200",
                "participants": [
                    {"user_id": "alice", "percentage": "25"},
                    {"user_id": "bob", "percentage": "75"},
                ],
            },
        }
        created = create(client, payload)

        assert [Decimal(tx["amount_owed"]) for tx in created["transactions"]] == [
            Decimal("50.00"), Decimal("150.00")
        ]

    def test_validation_error_maps_to_400(self, client):
        payload = {
            "title": "Trip",
            "split": {
                "split_type": "percentage",
                "total_amount": "200",
                "participants": [
                    {"user_id": "alice", "percentage": "49.5"},
                    {"user_id": "bob", "percentage": "50"},
                ],
            },
        }
        response = client.post("/settlements", json=payload, headers=auth("alice"))

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "ValidationError"
        assert "Percentages must sum to 100" in body["detail"]
        assert body["context"]["total_percentage"] == "99.5"

    def test_missing_split_field_rejected(self, client):
        payload = {"title": "Trip", "split": {"split_type": "custom", "total_amount": "10",
                                              "participants": [{"user_id": "alice"}]}}
        response = client.post("/settlements", json=payload, headers=auth("alice"))
        assert response.status_code == 422

    def test_invalid_token(self, client):
        response = client.post("/settlements", json=equal_payload(), headers={"access-token": "garbage"})
        assert response.status_code == 401

    def test_bearer_prefix_accepted(self, client):
        headers = {"access-token": f"Bearer {create_access_token('alice')}"}
        response = client.post("/settlements", json=equal_payload(), headers=headers)
        assert response.status_code == 201


@pytest.mark.integration
class TestPaymentEndpoints:

    def test_record_payment(self, client):
        created = create(client)
        tx_id = transaction_id_for(created, "bob")

        response = client.post(
            f"/settlements/transactions/{tx_id}/payments",
            json={"amount": "10.00", "method": "cash", "reference": "r-1"},
            headers=auth("bob")
        )

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["status"] == "partial"
        assert Decimal(body["amount_remaining"]) == Decimal("20.00")

        history = client.get(f"/settlements/transactions/{tx_id}/payments", headers=auth("bob"))
        assert history.status_code == 200
        assert [Decimal(p["amount"]) for p in history.json()] == [Decimal("10.00")]
        assert history.json()[0]["method"] == "cash"

    def test_overpayment_maps_to_400(self, client):
        created = create(client)
        tx_id = transaction_id_for(created, "bob")

        response = client.post(
            f"/settlements/transactions/{tx_id}/payments",
            json={"amount": "31.00"},
            headers=auth("bob")
        )

        assert response.status_code == 400
        assert response.json()["context"]["amount_remaining"] == "30.00"

    def test_unknown_transaction(self, client):
        response = client.post(
            "/settlements/transactions/missing/payments",
            json={"amount": "1.00"},
            headers=auth("bob")
        )
        assert response.status_code == 404

    def test_settlement_completes(self, client):
        created = create(client, equal_payload(total="20.00", user_ids=("bob",)))
        tx_id = created["transactions"][0]["id"]

        client.post(f"/settlements/transactions/{tx_id}/payments", json={"amount": "20"}, headers=auth("bob"))
        detail = client.get(f"/settlements/{created['settlement']['id']}", headers=auth("alice")).json()

        assert detail["status"] == "completed"
        assert detail["breakdown"] == {"total": 1, "pending": 0, "partial": 0, "completed": 1}
        assert detail["has_overdue"] is False


@pytest.mark.integration
class TestCancelEndpoint:

    def test_cancel_flow(self, client):
        settlement_id = create(client)["settlement"]["id"]

        forbidden = client.post(f"/settlements/{settlement_id}/cancel", headers=auth("bob"))
        assert forbidden.status_code == 403

        cancelled = client.post(f"/settlements/{settlement_id}/cancel", headers=auth("alice"))
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"

        again = client.post(f"/settlements/{settlement_id}/cancel", headers=auth("alice"))
        assert again.status_code == 409
        assert again.json()["context"]["current_status"] == "cancelled"

    def test_unknown_settlement(self, client):
        response = client.get("/settlements/missing", headers=auth("alice"))
        assert response.status_code == 404


@pytest.mark.integration
class TestQueryEndpoints:

    def test_calculate_preview_with_adjustments(self, client):
        payload = {
            "split": {
                "split_type": "equal",
                "total_amount": "100.00",
                "participants": [{"user_id": "alice"}, {"user_id": "bob"}],
            },
            "adjustments": {"tax": "10", "tip": "10"},
        }
        response = client.post("/settlements/calculate", json=payload, headers=auth("alice"))

        assert response.status_code == 200, response.text
        body = response.json()
        assert Decimal(body["total_amount"]) == Decimal("120.00")
        assert [Decimal(p["amount"]) for p in body["participants"]] == [Decimal("60.00"), Decimal("60.00")]

    def test_calculate_itemized_preview(self, client):
        payload = {
            "split": {
                "split_type": "itemized",
                "participants": [{"user_id": "alice"}, {"user_id": "bob"}],
                "items": [{"user_id": "alice", "amount": "8.00"}],
                "shared_items": [{"amount": "4.00"}],
            },
        }
        response = client.post("/settlements/calculate", json=payload, headers=auth("alice"))

        assert response.status_code == 200, response.text
        assert [Decimal(p["amount"]) for p in response.json()["participants"]] == [
            Decimal("10.00"), Decimal("2.00")
        ]

    def test_list_summary_and_optimize(self, client):
        create(client, equal_payload(total="30.00", user_ids=("bob",)), user_id="alice")
        create(client, equal_payload(total="30.00", user_ids=("alice",)), user_id="carol")

        listed = client.get("/settlements", params={"status": "pending"}, headers=auth("alice"))
        assert listed.status_code == 200
        assert len(listed.json()) == 2

        summary = client.get("/settlements/summary", headers=auth("alice")).json()
        assert summary["position"] == "settled"
        assert Decimal(summary["total_owed_to_user"]) == Decimal("30.00")

        optimized = client.get("/settlements/optimize", headers=auth("alice")).json()
        assert optimized["raw_count"] == 2
        assert optimized["optimized_count"] == 1
        assert optimized["transactions"][0]["from_user_id"] == "bob"
        assert optimized["transactions"][0]["to_user_id"] == "carol"

    def test_list_invalid_status(self, client):
        response = client.get("/settlements", params={"status": "archived"}, headers=auth("alice"))
        assert response.status_code == 400
