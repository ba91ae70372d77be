from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from creditgate.balance import BalanceProjector
from creditgate.config import settings
from creditgate.credits import CreditService
from creditgate.deps import get_credit_service, get_projector, get_referral_service
from creditgate.main import app
from creditgate.referrals import ReferralService

ADMIN = {"X-Admin-Secret": "test-admin-secret"}


def as_user(user_id: str) -> dict:
    return {"X-User-Id": user_id}


@pytest.fixture
def client(session_factory, monkeypatch):
    credits = CreditService(session_factory, daily_cap=5, starter_credits=0)
    app.dependency_overrides[get_credit_service] = lambda: credits
    app.dependency_overrides[get_projector] = lambda: BalanceProjector(session_factory)
    app.dependency_overrides[get_referral_service] = lambda: ReferralService(
        credits, referrer_bonus=50, referred_bonus=25
    )
    monkeypatch.setattr(settings, "admin_secret", ADMIN["X-Admin-Secret"])

    # no context manager: skip startup hooks bound to the default database
    yield TestClient(app)

    app.dependency_overrides.clear()


def _grant(client, user_id, amount, **extra):
    return client.post(
        "/admin/credits/grant",
        json={"user_id": user_id, "amount": amount, "reason": "test", **extra},
        headers=ADMIN,
    )


def test_healthz(client):
    res = client.get("/healthz")
    assert res.status_code == 200
    assert res.json()["ok"] is True
    assert "X-Request-Id" in res.headers


def test_reserve_finalize_flow(client):
    assert _grant(client, "alice", 10).json()["new_balance"] == 10

    res = client.post(
        "/credits/reserve",
        json={"request_id": "r1", "action": "image.gen", "cost": 2},
        headers=as_user("alice"),
    )
    assert res.status_code == 200
    assert res.json()["available"] == 8

    res = client.post(
        "/credits/finalize",
        json={"request_id": "r1", "disposition": "commit"},
        headers=as_user("alice"),
    )
    assert res.status_code == 200 and res.json()["status"] == "committed"

    res = client.post(
        "/credits/finalize",
        json={"request_id": "r1", "disposition": "refund"},
        headers=as_user("alice"),
    )
    assert res.status_code == 409
    assert res.json()["error"] == "INVALID_FINALIZE_STATUS"

    body = client.get("/credits/balance", headers=as_user("alice")).json()
    assert body == {"user_id": "alice", "balance": 8, "available": 8, "reserved": 0}


def test_reserve_generates_request_id(client):
    _grant(client, "alice", 10)
    res = client.post("/credits/reserve", json={"cost": 1}, headers=as_user("alice"))
    assert res.status_code == 200
    assert res.json()["request_id"]


def test_business_errors_are_distinguishable(client):
    _grant(client, "bob", 2)

    res = client.post("/credits/reserve", json={"cost": 3}, headers=as_user("bob"))
    assert res.status_code == 402
    assert res.json()["error"] == "INSUFFICIENT_CREDITS"
    assert res.json()["ok"] is False

    _grant(client, "bob", 100)
    for i in range(5):
        assert client.post(
            "/credits/reserve", json={"request_id": f"b{i}", "cost": 1}, headers=as_user("bob")
        ).status_code == 200
    res = client.post("/credits/reserve", json={"request_id": "b5", "cost": 1}, headers=as_user("bob"))
    assert res.status_code == 429
    assert res.json()["error"] == "DAILY_CAP_EXCEEDED"


def test_finalize_someone_elses_request(client):
    _grant(client, "alice", 10)
    client.post("/credits/reserve", json={"request_id": "mine", "cost": 1}, headers=as_user("alice"))

    res = client.post(
        "/credits/finalize",
        json={"request_id": "mine", "disposition": "refund"},
        headers=as_user("mallory"),
    )
    assert res.status_code == 404
    assert res.json()["error"] == "UNKNOWN_REQUEST"


def test_missing_identity(client):
    assert client.post("/credits/reserve", json={"cost": 1}).status_code == 401


def test_admin_routes_require_secret(client):
    res = client.post(
        "/admin/credits/grant",
        json={"user_id": "alice", "amount": 5, "reason": "x"},
        headers={"X-Admin-Secret": "wrong"},
    )
    assert res.status_code == 401
    assert client.post("/admin/credits/sweep").status_code == 401
    assert client.post("/admin/credits/sweep", headers=ADMIN).json() == {"ok": True, "refunded": 0}


def test_invalid_amount_maps_to_400(client):
    res = _grant(client, "alice", 0)
    assert res.status_code == 400
    assert res.json()["error"] == "INVALID_AMOUNT"


def test_referral_routes(client):
    res = client.post("/referrals", json={"referrer_user_id": "ref"}, headers=as_user("newbie"))
    assert res.json()["awarded"] is True
    res = client.post("/referrals", json={"referrer_user_id": "ref"}, headers=as_user("newbie"))
    assert res.json()["awarded"] is False

    stats = client.get("/referrals/stats", headers=as_user("ref")).json()
    assert stats == {"referred_count": 1, "credits_from_referrals": 50}

    res = client.post("/referrals", json={"referrer_user_id": "x"}, headers=as_user("x"))
    assert res.status_code == 400 and res.json()["error"] == "SELF_REFERRAL"


def test_history(client):
    _grant(client, "alice", 10)
    client.post("/credits/reserve", json={"request_id": "h1", "cost": 1}, headers=as_user("alice"))

    body = client.get("/credits/history?page_size=1", headers=as_user("alice")).json()
    assert body["total_count"] == 2
    assert body["page_size"] == 1
    assert len(body["entries"]) == 1


def test_unknown_disposition_maps_to_400(client):
    _grant(client, "alice", 10)
    client.post("/credits/reserve", json={"request_id": "d1", "cost": 1}, headers=as_user("alice"))

    res = client.post(
        "/credits/finalize",
        json={"request_id": "d1", "disposition": "settle"},
        headers=as_user("alice"),
    )
    assert res.status_code == 400
    assert res.json()["ok"] is False
    assert res.json()["error"] == "INVALID_DISPOSITION"


def test_malformed_body_is_rejected_before_the_service(client):
    res = client.post("/credits/reserve", json={"cost": "lots"}, headers=as_user("alice"))
    assert res.status_code == 422
    res = client.post("/credits/reserve", json={"cost": 0}, headers=as_user("alice"))
    assert res.status_code == 400 and res.json()["error"] == "INVALID_AMOUNT"
