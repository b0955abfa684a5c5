"""
Tests for the REST endpoints.
"""

import pytest
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient

from three_way_match.api import app, get_store
from three_way_match.errors import ReceiptAlreadyLinked


TENANT_HEADERS = {"X-Tenant-Id": "1", "X-User-Id": "99"}


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_match_endpoint(client, seed):
    _, _, invoice = seed()

    response = client.post("/match", json={"invoice_id": invoice.id}, headers=TENANT_HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["summary"]["status"] == "MATCH_OK"
    assert body["summary"]["fully_matched"] is True
    assert body["exceptions"] == []
    assert body["match_result"]["invoice_id"] == invoice.id


def test_eligibility_only(client, seed):
    _, _, invoice = seed()

    response = client.post(
        "/match",
        json={"invoice_id": invoice.id, "check_payment_eligibility_only": True},
        headers=TENANT_HEADERS,
    )

    assert response.status_code == 200
    assert response.json()["eligible"] is False
    assert response.json()["requires_approval"] is True


def test_missing_tenant_is_rejected(client, seed):
    _, _, invoice = seed()

    response = client.post("/match", json={"invoice_id": invoice.id})

    assert response.status_code == 401


def test_unknown_invoice_is_404(client):
    response = client.post("/match", json={"invoice_id": 4242}, headers=TENANT_HEADERS)

    assert response.status_code == 404
    assert "4242" in response.json()["error"]


def test_receipt_conflict_is_409(client):
    with patch(
        "three_way_match.api.process_match_request",
        new=AsyncMock(side_effect=ReceiptAlreadyLinked(receipt_id=7, invoice_id=5)),
    ):
        response = client.post("/match", json={"invoice_id": 5}, headers=TENANT_HEADERS)

    assert response.status_code == 409
    assert "re-run" in response.json()["error"]


def test_list_and_get_results(client, seed):
    _, _, invoice = seed(with_order=False)
    client.post("/match", json={"invoice_id": invoice.id}, headers=TENANT_HEADERS)

    listing = client.get("/match-results", params={"status": "DISCREPANCY"}, headers=TENANT_HEADERS)
    single = client.get(f"/match-results/{invoice.id}", headers=TENANT_HEADERS)
    other_tenant = client.get(f"/match-results/{invoice.id}", headers={"X-Tenant-Id": "2"})

    assert listing.status_code == 200
    assert listing.json()["total"] == 1
    assert listing.json()["items"][0]["exception_count"] == 1
    assert single.status_code == 200
    assert single.json()["exceptions"][0]["kind"] == "NO_ORDER"
    assert other_tenant.status_code == 404


def test_page_size_is_bounded(client):
    response = client.get("/match-results", params={"page_size": 10000}, headers=TENANT_HEADERS)

    assert response.status_code == 422


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
