import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

import bump_exchange.auth.security as security
from bump_exchange.deps import build_services
from bump_exchange.main import create_app
from bump_exchange.services.geolocation import IpGeolocator


@pytest.fixture
def client(monkeypatch, store, profiles):
    monkeypatch.setattr(security, "JWT_SECRET", "test-secret")
    services = build_services(store, profiles=profiles.get, geolocator=IpGeolocator(store))
    return TestClient(create_app(services))


def _auth(user_id):
    return {"Authorization": f"Bearer {security.create_access_token(user_id)}"}


def _fields(profile):
    return sorted(e["field_type"] for e in profile["contact_entries"])


def test_bump_exchange_between_personal_and_work(client):
    first = client.post("/exchange/hit", json={"session_id": "s1", "magnitude": 3.4, "sharing_category": "Personal"}, headers=_auth("u1"))
    assert first.status_code == 200
    assert first.json() == {"success": True, "matched": False, "message": "Waiting for match"}

    second = client.post(
        "/exchange/hit",
        json={"session_id": "s2", "magnitude": 2.9, "sharing_category": "Work", "client_timestamp": 1700000000000, "hit_number": 1},
        headers=_auth("u2"),
    )
    body = second.json()
    assert body["success"] is True and body["matched"] is True and body["role"] == "A"
    token = body["token"]

    status = client.get("/exchange/status/s1", headers=_auth("u1")).json()
    assert status == {"success": True, "has_match": True, "token": token, "role": "B"}
    assert client.get("/exchange/status/s1", headers=_auth("u1")).json() == status

    seen_by_u1 = client.get(f"/exchange/pair/{token}", headers=_auth("u1")).json()
    assert seen_by_u1["profile"]["user_id"] == "u2"
    assert _fields(seen_by_u1["profile"]) == ["bio", "email", "name"]

    seen_by_u2 = client.get(f"/exchange/pair/{token}", headers=_auth("u2")).json()
    assert seen_by_u2["profile"]["user_id"] == "u1"
    assert _fields(seen_by_u2["profile"]) == ["bio", "instagram", "name", "phone"]

    accepted = client.post(f"/exchange/pair/{token}", json={"accept": True}, headers=_auth("u1")).json()
    assert accepted["success"] is True and accepted["profile"]["user_id"] == "u2"
    outsider = client.post(f"/exchange/pair/{token}", json={"accept": True}, headers=_auth("u3"))
    assert outsider.status_code == 403
    assert outsider.json()["code"] == "FORBIDDEN"


def test_qr_flow_with_preview(client):
    token = client.post("/exchange/initiate", json={"session_id": "qr1", "sharing_category": "Work"}, headers=_auth("u1")).json()["token"]

    own = client.get(f"/exchange/pair/{token}", headers=_auth("u1"))
    assert own.status_code == 404
    assert own.json()["code"] == "WAITING_FOR_SCAN"

    preview = client.get(f"/exchange/preview/{token}")
    assert preview.status_code == 200
    assert preview.json()["sharing_category"] == "Work"
    assert {e["field_type"]: e["value"] for e in preview.json()["profile"]["contact_entries"]}["email"] == ""

    assert client.get("/exchange/status/qr1", headers=_auth("u1")).json() == {
        "success": True,
        "has_match": False,
        "scan_status": "pending_auth",
    }

    scanned = client.get(f"/exchange/pair/{token}", params={"sharing_category": "Personal"}, headers=_auth("u2"))
    assert scanned.status_code == 200
    assert scanned.json()["profile"]["user_id"] == "u1"

    status = client.get("/exchange/status/qr1", headers=_auth("u1")).json()
    assert status["has_match"] is True and status["role"] == "A" and status["scan_status"] == "completed"

    late = client.get(f"/exchange/preview/{token}")
    assert late.status_code == 409
    assert late.json() == {"success": False, "message": "This QR code was already scanned by someone else", "code": "ALREADY_SCANNED"}


def test_auth_and_validation_errors(client):
    unauth = client.post("/exchange/hit", json={"session_id": "s1", "magnitude": 3})
    assert unauth.status_code == 401
    assert unauth.json()["success"] is False
    assert unauth.json()["code"] == "UNAUTHORIZED"
    assert "trace_id" in unauth.json()

    bad = client.get("/exchange/status/s1", headers={"Authorization": "Bearer nonsense"})
    assert bad.status_code == 401

    for payload in (
        {"magnitude": 3},
        {"session_id": "   ", "magnitude": 3},
        {"session_id": "s1", "magnitude": "hard"},
        {"session_id": "s1", "magnitude": 3, "sharing_category": "Family"},
    ):
        resp = client.post("/exchange/hit", json=payload, headers=_auth("u1"))
        assert resp.status_code == 400, payload
        assert resp.json()["code"] == "VALIDATION_ERROR"

    assert client.get("/exchange/pair/abc", params={"sharing_category": "Nope"}, headers=_auth("u1")).status_code == 400
    assert client.post("/exchange/hit", json={"session_id": "s1", "magnitude": 3}, headers=_auth("ghost")).status_code == 404
    assert client.get("/exchange/pair/unknown-token", headers=_auth("u1")).status_code == 404


def test_non_finite_numbers_are_rejected(client, store):
    for body in (
        '{"session_id": "s1", "magnitude": 3, "client_timestamp": Infinity}',
        '{"session_id": "s1", "magnitude": NaN}',
        '{"session_id": "s1", "magnitude": -Infinity}',
    ):
        resp = client.post(
            "/exchange/hit",
            content=body,
            headers={**_auth("u1"), "Content-Type": "application/json"},
        )
        assert resp.status_code == 400, body
        assert resp.json()["code"] == "VALIDATION_ERROR"
    assert store.pending_sessions() == []


def test_preview_is_rate_limited(client):
    import bump_exchange.routes.exchange as exchange_routes

    codes = [client.get("/exchange/preview/missing").status_code for _ in range(exchange_routes.RL_EXCHANGE_PREVIEW_LIMIT)]
    assert set(codes) == {404}
    blocked = client.get("/exchange/preview/missing")
    assert blocked.status_code == 429
    assert blocked.json()["code"] == "RATE_LIMITED"
    assert 1 <= int(blocked.headers["Retry-After"]) <= exchange_routes.RL_WINDOW_SECONDS

    # each bearer token has its own budget
    u1, u2 = _auth("u1"), _auth("u2")
    for _ in range(exchange_routes.RL_EXCHANGE_PREVIEW_LIMIT):
        assert client.get("/exchange/preview/missing", headers=u1).status_code == 404
    assert client.get("/exchange/preview/missing", headers=u1).status_code == 429
    assert client.get("/exchange/preview/missing", headers=u2).status_code == 404


def test_health_reports_store(client):
    assert client.get("/health").json() == {"status": "ok", "store": "ok"}
