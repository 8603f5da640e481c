"""Tests for the Flask app."""

from datetime import date

import pytest

import main
from billing_engine import BillingEngine, InMemoryBillingGateway

INTAKE = {
    "identity_number": "12345678",
    "name": "Rosa",
    "last_name": "Quispe",
    "installation_id": 11,
    "anchor_date": "2025-01-31",
    "plan_price": 100,
}


@pytest.fixture
def engine(monkeypatch):
    engine = BillingEngine(InMemoryBillingGateway(), clock=lambda: date(2025, 1, 20))
    monkeypatch.setattr(main, "engine", engine)
    return engine


@pytest.fixture
def client(engine):
    main.app.config["TESTING"] = True
    return main.app.test_client()


@pytest.fixture
def account_id(client):
    response = client.post("/intake", json=INTAKE)
    return response.get_json()["account"]["id"]


class TestFlaskApp:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"

    def test_api_info(self, client):
        body = client.get("/api").get_json()
        assert body["status"] == "ok"
        assert "create_payment" in body["endpoints"]

    def test_intake_creates_account(self, client):
        response = client.post("/intake", json=INTAKE)

        assert response.status_code == 201
        body = response.get_json()
        assert body["adopted"] is False
        assert body["billing_config"]["anchor_date"] == "2025-01-31"

    def test_duplicate_identity_is_conflict(self, client, account_id):
        response = client.post("/intake", json=dict(INTAKE, installation_id=12))

        assert response.status_code == 409
        body = response.get_json()
        assert body["code"] == "IDENTITY_ALREADY_REGISTERED"
        assert body["account_id"] == account_id
        assert body["status"] == "conflict"

    def test_adopt_resolution(self, client, account_id):
        response = client.post("/intake", json=dict(INTAKE, installation_id=12, resolution="adopt"))

        assert response.status_code == 201
        body = response.get_json()
        assert body["adopted"] is True
        assert body["billing_config"] is None

    def test_lookup(self, client, account_id):
        body = client.get("/intake/lookup/12345678").get_json()
        assert body["found"] is True
        assert body["account"]["id"] == account_id

    def test_adopt_plan(self, client, account_id):
        body = client.get("/intake/adopt/12345678").get_json()

        assert body["next_step"] == "installation"
        assert body["prefill"]["account_id"] == account_id
        assert body["creates_billing_config"] is False

    def test_adopt_unknown_identity(self, client):
        response = client.get("/intake/adopt/87654321")
        assert response.status_code == 400

    def test_lookup_invalid_identity(self, client):
        response = client.get("/intake/lookup/123")
        assert response.status_code == 400
        assert response.get_json()["field"] == "identity_number"

    def test_next_due_date_and_schedule(self, client, account_id):
        assert client.get(f"/accounts/{account_id}/next-due-date").get_json()["due_date"] == "2025-01-31"

        body = client.get(f"/accounts/{account_id}/schedule?periods=2").get_json()
        assert body["due_dates"] == ["2025-01-31", "2025-02-28"]

    def test_schedule_rejects_non_integer_periods(self, client, account_id):
        response = client.get(f"/accounts/{account_id}/schedule?periods=abc")

        assert response.status_code == 400
        assert "periods" in response.get_json()["error"]

    def test_unknown_account(self, client):
        response = client.get("/accounts/999/next-due-date")
        assert response.status_code == 404
        assert response.get_json()["code"] == "ACCOUNT_NOT_FOUND"

    def test_create_payment(self, client, account_id):
        response = client.post("/payments", json={
            "account_id": account_id,
            "payment_date": "2025-01-20",
            "method": "YAPE",
            "reference": "OP-1",
        })

        assert response.status_code == 201
        body = response.get_json()
        assert body["payment"]["status"] == "PAYMENT_DAILY"
        assert body["calculations"]["amount"]["value"] == 100.0

    def test_commitment_flow(self, client, engine, account_id):
        created = client.post("/payments", json={"account_id": account_id, "engagement_date": "2025-02-05"})
        payment_id = created.get_json()["payment"]["id"]

        blocked = client.post("/payments", json={"account_id": account_id, "payment_date": "2025-01-20"})
        assert blocked.status_code == 409
        assert blocked.get_json()["code"] == "COMMITMENT_ALREADY_OPEN"

        engine.clock = lambda: date(2025, 2, 3)
        settlement = {"payment_date": "2025-02-03", "method": "CASH", "reference": "R-1"}
        regularized = client.post(f"/payments/{payment_id}/regularize", json=settlement)
        assert regularized.status_code == 200
        assert regularized.get_json()["payment"]["status"] == "LATE_PAYMENT"

        again = client.post(f"/payments/{payment_id}/regularize", json=settlement)
        assert again.status_code == 409
        assert again.get_json()["code"] == "ALREADY_REGULARIZED"

    def test_update_payment(self, client, account_id):
        created = client.post("/payments", json={"account_id": account_id})
        payment_id = created.get_json()["payment"]["id"]

        response = client.patch(f"/payments/{payment_id}", json={"reconnection": True})
        assert response.status_code == 200
        assert response.get_json()["payment"]["amount"] == 110.0

    def test_update_unknown_payment(self, client):
        response = client.patch("/payments/999", json={"reconnection": True})
        assert response.status_code == 404

    def test_missing_body(self, client):
        response = client.post("/payments", data="not json", content_type="application/json")
        assert response.status_code == 400
        assert response.get_json()["status"] == "validation_failed"

    def test_advance_payment(self, client):
        created = client.post("/intake", json=dict(INTAKE, advance_payment=True)).get_json()
        assert created["advance_payment_pending"] is True

        account_id = created["account"]["id"]
        response = client.post(
            f"/intake/{account_id}/advance-payment", json={"method": "CASH", "reference": "A-1"}
        )
        assert response.status_code == 201
        assert response.get_json()["payment"]["advance_payment"] is True

    def test_reconcile(self, client, account_id):
        body = client.post("/reconcile").get_json()
        assert body == {"checked": 1, "reconciled": 0}

    def test_unexpected_error_is_generic(self, client, engine, monkeypatch):
        def explode():
            raise RuntimeError("database password is hunter2")

        monkeypatch.setattr(engine, "reconcile_from_dict", explode)
        response = client.post("/reconcile")

        assert response.status_code == 500
        assert "hunter2" not in response.get_json()["error"]
