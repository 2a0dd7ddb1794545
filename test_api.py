"""API tests through FastAPI's TestClient against in-memory services."""

import base64

import pytest
from fastapi.testclient import TestClient

from api.server import create_app
from conftest import inspection_rows, statement_rows

OPS = {"X-User-Id": "ops-1"}
WAREHOUSE = {"X-User-Id": "wh-1"}


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


def create_confirmed_order(client):
    response = client.post(
        "/order-sheets",
        json={"customer_name": "한우마트", "items": [{"product_name": "소고기", "qty_kg": 25, "unit_price": 20000}]},
        headers=OPS,
    )
    assert response.status_code == 201
    sheet_id = response.json()["id"]

    sent = client.post(
        f"/order-sheets/{sheet_id}/transitions", json={"from_status": "DRAFT", "to_status": "SENT"}, headers=OPS
    ).json()
    token = sent["invite_token"]
    assert token

    submitted = client.post(
        f"/order-sheets/{sheet_id}/transitions",
        json={"from_status": "SENT", "to_status": "SUBMITTED"},
        headers={"X-User-Id": "cust-1", "X-Invite-Token": token},
    )
    assert submitted.status_code == 200

    confirmed = client.post(
        f"/order-sheets/{sheet_id}/transitions",
        json={"from_status": "SUBMITTED", "to_status": "CONFIRMED"},
        headers=OPS,
    ).json()
    assert confirmed["order_sheet"]["status"] == "CONFIRMED"
    return sheet_id, confirmed["sales_order_id"]


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["services"]["storage"] == "InMemoryRepository"

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert set(response.json()) >= {"transitions", "reconciliations", "gates", "timings"}


class TestErrors:

    def test_missing_identity(self, client):
        response = client.post("/order-sheets", json={"customer_name": "한우마트"})
        assert response.status_code == 403
        assert response.json()["error"] == "UNAUTHORIZED"

    def test_not_found(self, client):
        response = client.get("/order-sheets/os_missing", headers=OPS)
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_illegal_transition(self, client):
        sheet_id = client.post("/order-sheets", json={"customer_name": "한우마트"}, headers=OPS).json()["id"]
        response = client.post(
            f"/order-sheets/{sheet_id}/transitions",
            json={"from_status": "DRAFT", "to_status": "CLOSED"},
            headers=OPS,
        )
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_TRANSITION"

    def test_stale_state(self, client):
        sheet_id, _ = create_confirmed_order(client)
        response = client.post(
            f"/order-sheets/{sheet_id}/transitions",
            json={"from_status": "SUBMITTED", "to_status": "CONFIRMED"},
            headers=OPS,
        )
        assert response.status_code == 409
        assert response.json()["details"]["actual"] == "CONFIRMED"

    def test_missing_revision_reason(self, client):
        sheet_id = client.post("/order-sheets", json={"customer_name": "한우마트"}, headers=OPS).json()["id"]
        token = client.post(
            f"/order-sheets/{sheet_id}/transitions", json={"from_status": "DRAFT", "to_status": "SENT"}, headers=OPS
        ).json()["invite_token"]
        client.post(
            f"/order-sheets/{sheet_id}/transitions",
            json={"from_status": "SENT", "to_status": "SUBMITTED"},
            headers={"X-User-Id": "cust-1", "X-Invite-Token": token},
        )
        response = client.post(
            f"/order-sheets/{sheet_id}/transitions",
            json={"from_status": "SUBMITTED", "to_status": "REVISION"},
            headers=OPS,
        )
        assert response.status_code == 400


class TestFulfillmentFlow:

    def test_order_to_delivery(self, client):
        sheet_id, sales_order_id = create_confirmed_order(client)
        assert client.get(f"/order-sheets/{sheet_id}/sales-order", headers=OPS).json()["id"] == sales_order_id

        statement = client.post(
            f"/sales-orders/{sales_order_id}/documents",
            json={"doc_type": "TRANSACTION_STATEMENT", "rows": statement_rows(("소고기", 25, 500000, "L001"))},
            headers=OPS,
        )
        assert statement.status_code == 201
        assert statement.json()["lines"] == 1
        client.post(
            f"/sales-orders/{sales_order_id}/documents",
            json={"doc_type": "INSPECTION_REPORT", "rows": inspection_rows(("B1", "소고기", 25.02, 500000, "L001"))},
            headers=WAREHOUSE,
        )
        assert len(client.get(f"/sales-orders/{sales_order_id}/documents", headers=OPS).json()) == 2

        report = client.post(f"/sales-orders/{sales_order_id}/reconciliation", headers=OPS).json()
        assert report["all_matched"] is True

        shipment = client.post(
            f"/sales-orders/{sales_order_id}/shipments", json={"company": "한빛물류"}, headers=OPS
        ).json()
        shipment_id = shipment["id"]
        assert shipment["status"] == "PREPARING"
        assert client.get(f"/shipments/{shipment_id}/gate", headers=OPS).json()["gate_status"] == "READY"

        session = client.post(f"/shipments/{shipment_id}/gate", headers=WAREHOUSE).json()
        session_id = session["session_id"]
        for item in session["missing_items"]:
            client.post(f"/gate-sessions/{session_id}/items", json={"item": item, "value": True}, headers=WAREHOUSE)

        incomplete = client.post(f"/gate-sessions/{session_id}/complete", headers=WAREHOUSE)
        assert incomplete.status_code == 422

        signed = client.post(
            f"/gate-sessions/{session_id}/signature",
            json={"data_base64": base64.b64encode(b"png-bytes").decode("ascii")},
            headers=WAREHOUSE,
        ).json()
        assert signed["has_signature"] is True
        assert signed["missing_items"] == []

        completed = client.post(f"/gate-sessions/{session_id}/complete", headers=WAREHOUSE)
        assert completed.status_code == 200
        body = completed.json()
        assert body["shipment"]["status"] == "DELIVERED"
        assert body["order_sheet_closed"] is True
        assert client.get(f"/order-sheets/{sheet_id}", headers=OPS).json()["status"] == "CLOSED"

        gate = client.get(f"/shipments/{shipment_id}/gate", headers=OPS).json()
        assert gate["gate_status"] == "COMPLETED"
        assert len(gate["records"]) == 1

    def test_gate_not_ready_before_reconciliation(self, client):
        _, sales_order_id = create_confirmed_order(client)
        shipment_id = client.post(f"/sales-orders/{sales_order_id}/shipments", headers=OPS).json()["id"]

        response = client.post(f"/shipments/{shipment_id}/gate", headers=WAREHOUSE)
        assert response.status_code == 409

    def test_abandon_gate(self, client, services, matched_sales_order):
        shipment = services.lifecycle.create_shipment(matched_sales_order.id, services.identity.resolve("ops-1"))
        session_id = client.post(f"/shipments/{shipment.id}/gate", headers=WAREHOUSE).json()["session_id"]

        assert client.delete(f"/gate-sessions/{session_id}", headers=WAREHOUSE).status_code == 204
        assert client.get(f"/gate-sessions/{session_id}", headers=WAREHOUSE).status_code == 404

    def test_session_progress_requires_gate_role(self, client, services, matched_sales_order):
        shipment = services.lifecycle.create_shipment(matched_sales_order.id, services.identity.resolve("ops-1"))
        session_id = client.post(f"/shipments/{shipment.id}/gate", headers=WAREHOUSE).json()["session_id"]

        for headers in (OPS, {"X-User-Id": "cust-1"}):
            response = client.get(f"/gate-sessions/{session_id}", headers=headers)
            assert response.status_code == 403
            assert response.json()["error"] == "UNAUTHORIZED"
        assert client.get(f"/gate-sessions/{session_id}", headers=WAREHOUSE).json()["session_id"] == session_id

    def test_invalid_signature_encoding(self, client, services, matched_sales_order):
        shipment = services.lifecycle.create_shipment(matched_sales_order.id, services.identity.resolve("ops-1"))
        session_id = client.post(f"/shipments/{shipment.id}/gate", headers=WAREHOUSE).json()["session_id"]

        response = client.post(
            f"/gate-sessions/{session_id}/signature", json={"data_base64": "not base64!"}, headers=WAREHOUSE
        )
        assert response.status_code == 400

    def test_dispatch_and_transit(self, client):
        _, sales_order_id = create_confirmed_order(client)
        shipment_id = client.post(f"/sales-orders/{sales_order_id}/shipments", headers=OPS).json()["id"]

        updated = client.put(
            f"/shipments/{shipment_id}/dispatch", json={"driver_name": "김기사"}, headers=OPS
        ).json()
        assert updated["is_modified"] is True

        moved = client.post(f"/shipments/{shipment_id}/transit", headers=WAREHOUSE).json()
        assert moved["status"] == "IN_TRANSIT"
