from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import ADMIN_EMAIL, make_container
from spark_ledger.api.app import create_app


@pytest.fixture
def client(tmp_path):
    container = make_container(tmp_path, SIGNUP_POINTS=10, UPLOAD_COST=5)
    with TestClient(create_app(container)) as test_client:
        yield test_client


def _headers(user_id: str) -> dict:
    return {"X-User-Id": user_id}


def _sign_in(client, user_id: str, email: str | None = None) -> dict:
    response = client.post(
        "/points/accounts",
        json={"username": user_id, "email": email},
        headers=_headers(user_id),
    )
    assert response.status_code == 200
    return response.json()


def test_missing_user_header_is_rejected(client):
    response = client.get("/points/balance")
    assert response.status_code == 401


def test_sign_in_and_balance(client):
    account = _sign_in(client, "user-1")
    assert account["balance"] == 10

    response = client.get("/points/balance", headers=_headers("user-1"))
    assert response.json() == {"account_id": "user-1", "balance": 10}

    history = client.get("/points/transactions", headers=_headers("user-1")).json()
    assert history["total"] == 1
    assert history["items"][0]["description"] == "Signup bonus"


def test_upload_project_charges_points(client):
    _sign_in(client, "user-1")

    response = client.post(
        "/points/projects",
        data={"title": "Solar dryer", "expedite_days": "1"},
        files={"file": ("pitch.pdf", b"%PDF-1.4", "application/pdf")},
        headers=_headers("user-1"),
    )
    assert response.status_code == 201
    receipt = response.json()
    assert receipt["amount_charged"] == 7
    assert receipt["new_balance"] == 3

    projects = client.get("/points/projects", headers=_headers("user-1")).json()
    assert [p["title"] for p in projects] == ["Solar dryer"]

    notifications = client.get("/points/notifications", headers=_headers("user-1")).json()
    assert [n["title"] for n in notifications] == ["Project Uploaded"]
    assert "You have 3 Spark Points left" in notifications[0]["message"]


def test_insufficient_points_maps_to_402(client):
    _sign_in(client, "user-1")

    response = client.post(
        "/points/projects",
        data={"title": "Big plan", "expedite_days": "10"},
        files={"file": ("plan.txt", b"plan", "text/plain")},
        headers=_headers("user-1"),
    )
    assert response.status_code == 402
    body = response.json()
    assert body["code"] == "INSUFFICIENT_FUNDS"
    assert body["required"] == 25
    assert body["available"] == 10


def test_admin_routes_require_admin(client):
    _sign_in(client, "user-1")

    response = client.post(
        "/points/admin/adjust",
        json={"account_id": "user-1", "amount": 100, "reason": "Please"},
        headers=_headers("user-1"),
    )
    assert response.status_code == 403
    assert response.json()["code"] == "UNAUTHORIZED"


def test_top_up_flow(client):
    _sign_in(client, "admin-1", email=ADMIN_EMAIL)
    _sign_in(client, "user-1")

    quote = client.get("/points/top-up/quote", params={"amount": 250}).json()
    assert quote == {"amount": 250, "spark_points": 257}

    response = client.post(
        "/points/payments",
        json={"amount": 250, "payment_reference": "UPI-42"},
        headers=_headers("user-1"),
    )
    assert response.status_code == 201
    payment_id = response.json()["id"]

    pending = client.get(
        "/points/admin/payments", params={"status": "unverified"}, headers=_headers("admin-1")
    ).json()
    assert [p["id"] for p in pending] == [payment_id]

    response = client.post(
        f"/points/admin/payments/{payment_id}/verify", headers=_headers("admin-1")
    )
    assert response.status_code == 200
    assert response.json()["verification_status"] == "verified"

    balance = client.get("/points/balance", headers=_headers("user-1")).json()
    assert balance["balance"] == 267

    response = client.post(
        f"/points/admin/payments/{payment_id}/reject",
        json={"reason": "Too late"},
        headers=_headers("admin-1"),
    )
    assert response.status_code == 409


def test_reject_without_reason_is_bad_request(client):
    _sign_in(client, "admin-1", email=ADMIN_EMAIL)
    _sign_in(client, "user-1")
    payment_id = client.post(
        "/points/payments",
        json={"amount": 100, "payment_reference": "UPI-1"},
        headers=_headers("user-1"),
    ).json()["id"]

    response = client.post(
        f"/points/admin/payments/{payment_id}/reject",
        json={"reason": " "},
        headers=_headers("admin-1"),
    )
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_REQUEST"


def test_offer_admin_and_purchase(client):
    _sign_in(client, "admin-1", email=ADMIN_EMAIL)
    _sign_in(client, "user-1")

    response = client.post(
        "/points/admin/offers",
        json={"name": "Pitch review", "point_cost": 8, "discount_percentage": 25},
        headers=_headers("admin-1"),
    )
    assert response.status_code == 201
    offer_id = response.json()["id"]

    offers = client.get("/points/offers").json()
    assert [o["id"] for o in offers] == [offer_id]

    response = client.post(
        f"/points/offers/{offer_id}/purchase", json={"units": 1}, headers=_headers("user-1")
    )
    assert response.status_code == 200
    assert response.json()["amount_charged"] == 6

    response = client.patch(
        f"/points/admin/offers/{offer_id}",
        json={"is_active": False},
        headers=_headers("admin-1"),
    )
    assert response.status_code == 200
    assert client.get("/points/offers").json() == []

    response = client.post(
        f"/points/offers/{offer_id}/purchase", json={}, headers=_headers("user-1")
    )
    assert response.status_code == 409

    response = client.delete(f"/points/admin/offers/{offer_id}", headers=_headers("admin-1"))
    assert response.status_code == 204


def test_notifications_can_be_marked_read(client):
    _sign_in(client, "user-1")
    client.post(
        "/points/payments",
        json={"amount": 100, "payment_reference": "UPI-1"},
        headers=_headers("user-1"),
    )

    unread = client.get(
        "/points/notifications", params={"unread_only": True}, headers=_headers("user-1")
    ).json()
    assert len(unread) == 1

    response = client.post(
        f"/points/notifications/{unread[0]['id']}/read", headers=_headers("user-1")
    )
    assert response.status_code == 204

    unread = client.get(
        "/points/notifications", params={"unread_only": True}, headers=_headers("user-1")
    ).json()
    assert unread == []

    response = client.post("/points/notifications/missing/read", headers=_headers("user-2"))
    assert response.status_code == 404


def test_reconcile_own_account(client):
    _sign_in(client, "user-1")

    report = client.get("/points/reconcile", headers=_headers("user-1")).json()
    assert report["consistent"] is True
    assert report["stored_balance"] == 10


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_offer_window_with_utc_suffix(client):
    _sign_in(client, "admin-1", email=ADMIN_EMAIL)
    _sign_in(client, "user-1")

    response = client.post(
        "/points/admin/offers",
        json={
            "name": "Launch offer",
            "point_cost": 4,
            "start_date": "2020-01-01T00:00:00Z",
            "end_date": "2999-12-31T23:59:59Z",
        },
        headers=_headers("admin-1"),
    )
    assert response.status_code == 201
    offer_id = response.json()["id"]

    offers = client.get("/points/offers").json()
    assert [o["id"] for o in offers] == [offer_id]

    response = client.post(
        f"/points/offers/{offer_id}/purchase", json={}, headers=_headers("user-1")
    )
    assert response.status_code == 200
    assert response.json()["new_balance"] == 6
