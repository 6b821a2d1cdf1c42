import os
import sqlite3
import sys
from datetime import date, datetime, time, timedelta, timezone
from uuid import uuid4

from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from app import auth as auth_module
from app.main import app
from app.services.booking_store import booking_store

client = TestClient(app)

ALL_WEEK = {day: [{"start": "00:00", "end": "24:00"}] for day in ("mon", "tue", "wed", "thu", "fri", "sat", "sun")}


def _login(user_id: str, role: str) -> dict:
    response = client.post("/auth/login", json={"user_id": user_id, "role": role, "password": "slotmarket-demo"})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def _future_day(days: int = 3) -> date:
    return (datetime.now(timezone.utc) + timedelta(days=days)).date()


def _at(day: date, hour: int) -> str:
    return datetime.combine(day, time(hour, 0), tzinfo=timezone.utc).isoformat()


def _vendor_with_service(**service_fields):
    vendor_id = f"vendor_{uuid4().hex[:8]}"
    headers = _login(vendor_id, "vendor")
    settings = client.put(
        f"/availability/vendors/{vendor_id}/settings",
        json={
            "actor_user_id": vendor_id,
            "default_working_hours": ALL_WEEK,
            "timezone": "UTC",
            "min_booking_notice_hours": 1,
            "max_booking_advance_days": 30,
        },
        headers=headers,
    )
    assert settings.status_code == 200
    body = {"vendor_id": vendor_id, "title": "House cleaning", "price": 40, "price_unit": "hour"}
    body.update(service_fields)
    service = client.post("/catalog/services", json=body, headers=headers)
    assert service.status_code == 200
    return vendor_id, headers, service.json()


def test_health_ok():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_ready_reports_push_disabled():
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.json()["push_enabled"] is False


def test_auth_login_and_me_carry_role():
    headers = _login("user_2", "vendor")

    me = client.get("/auth/me", headers=headers)
    assert me.status_code == 200
    assert me.json() == {"user_id": "user_2", "role": "vendor"}

    wrong = client.post("/auth/login", json={"user_id": "user_2", "password": "nope"})
    assert wrong.status_code == 401
    assert client.get("/auth/me").status_code == 401


def test_settings_default_and_validation():
    response = client.get("/availability/vendors/vendor_never_configured/settings")
    assert response.status_code == 200
    assert response.json()["min_booking_notice_hours"] == 24

    vendor_id = f"vendor_{uuid4().hex[:8]}"
    bad = client.put(
        f"/availability/vendors/{vendor_id}/settings",
        json={"actor_user_id": vendor_id, "default_working_hours": {"mon": [{"start": "12:00", "end": "09:00"}]}},
        headers=_login(vendor_id, "vendor"),
    )
    assert bad.status_code == 400
    assert bad.headers["X-Error-Code"] == "validation_error"


def test_token_must_match_actor_and_role():
    vendor_id, _, service = _vendor_with_service()
    customer_id = f"customer_{uuid4().hex[:8]}"

    as_vendor_role = client.post(
        "/bookings",
        json={
            "customer_id": customer_id,
            "service_id": service["id"],
            "start_time": _at(_future_day(), 10),
            "end_time": _at(_future_day(), 11),
        },
        headers=_login(customer_id, "vendor"),
    )
    assert as_vendor_role.status_code == 403

    impersonation = client.put(
        f"/availability/vendors/{vendor_id}/settings",
        json={"actor_user_id": vendor_id, "default_working_hours": {}},
        headers=_login("someone_else", "vendor"),
    )
    assert impersonation.status_code == 403


def test_blocks_crud_and_slots():
    vendor_id, headers, service = _vendor_with_service()
    day = _future_day()

    slots = client.get(f"/catalog/services/{service['id']}/slots", params={"date": day.isoformat(), "duration": 60})
    assert slots.status_code == 200
    assert len(slots.json()) == 24

    block = client.post(
        f"/availability/vendors/{vendor_id}/blocks",
        json={"actor_user_id": vendor_id, "start_time": _at(day, 10), "end_time": _at(day, 12), "reason": "dentist"},
        headers=headers,
    )
    assert block.status_code == 200
    block_id = block.json()["id"]

    slots = client.get(f"/catalog/services/{service['id']}/slots", params={"date": day.isoformat(), "duration": 60})
    assert len(slots.json()) == 22

    listed = client.get(
        f"/availability/vendors/{vendor_id}/blocks",
        params={"range_start": _at(day, 0), "range_end": _at(day, 23), "actor_user_id": vendor_id},
        headers=headers,
    )
    assert listed.status_code == 200
    assert [b["id"] for b in listed.json()] == [block_id]

    patched = client.patch(
        f"/availability/blocks/{block_id}",
        json={"actor_user_id": vendor_id, "end_time": _at(day, 11)},
        headers=headers,
    )
    assert patched.status_code == 200
    assert patched.json()["reason"] == "dentist"

    foreign = client.delete(f"/availability/blocks/{block_id}", params={"vendor_id": "vendor_other"})
    assert foreign.status_code == 403

    deleted = client.delete(f"/availability/blocks/{block_id}", params={"vendor_id": vendor_id}, headers=headers)
    assert deleted.status_code == 200
    missing = client.delete(f"/availability/blocks/{block_id}", params={"vendor_id": vendor_id}, headers=headers)
    assert missing.status_code == 404
    assert missing.headers["X-Error-Code"] == "not_found"


def test_price_quote_endpoint():
    _, _, service = _vendor_with_service(price=50)
    day = _future_day()

    response = client.post(
        "/bookings/price",
        json={"service_id": service["id"], "start_time": _at(day, 9), "end_time": f"{day.isoformat()}T11:30:00+00:00"},
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["duration_units"] == 3
    assert payload["subtotal"] == 150
    assert payload["total"] == 165


def test_booking_errors_map_to_status_codes():
    vendor_id, vendor_headers, service = _vendor_with_service()
    day = _future_day()
    customers = [f"customer_{uuid4().hex[:8]}" for _ in range(2)]
    booking_ids = []
    for customer_id in customers:
        created = client.post(
            "/bookings",
            json={
                "customer_id": customer_id,
                "service_id": service["id"],
                "start_time": _at(day, 14),
                "end_time": _at(day, 15),
            },
            headers=_login(customer_id, "customer"),
        )
        assert created.status_code == 200
        booking_ids.append(created.json()["id"])

    accepted = client.post(
        f"/bookings/{booking_ids[0]}/accept", json={"actor_user_id": vendor_id}, headers=vendor_headers
    )
    assert accepted.status_code == 200

    conflict = client.post(
        f"/bookings/{booking_ids[1]}/accept", json={"actor_user_id": vendor_id}, headers=vendor_headers
    )
    assert conflict.status_code == 409
    assert conflict.headers["X-Error-Code"] == "conflict"

    invalid = client.post(
        f"/bookings/{booking_ids[0]}/reject", json={"actor_user_id": vendor_id}, headers=vendor_headers
    )
    assert invalid.status_code == 422
    assert invalid.headers["X-Error-Code"] == "invalid_state_transition"

    missing = client.post("/bookings/bk_missing/accept", json={"actor_user_id": vendor_id}, headers=vendor_headers)
    assert missing.status_code == 404

    stranger = client.get(f"/bookings/{booking_ids[0]}", params={"actor_user_id": "stranger"})
    assert stranger.status_code == 403

    too_soon = client.post(
        "/bookings",
        json={
            "customer_id": customers[0],
            "service_id": service["id"],
            "start_time": datetime.now(timezone.utc).isoformat(),
            "end_time": (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat(),
        },
    )
    assert too_soon.status_code == 400


def test_expired_alternative_returns_gone():
    vendor_id, vendor_headers, service = _vendor_with_service()
    customer_id = f"customer_{uuid4().hex[:8]}"
    day = _future_day()
    created = client.post(
        "/bookings",
        json={"customer_id": customer_id, "service_id": service["id"], "start_time": _at(day, 8), "end_time": _at(day, 9)},
    )
    booking_id = created.json()["id"]

    proposed = client.post(
        f"/bookings/{booking_id}/propose-alternative",
        json={"actor_user_id": vendor_id, "alternative_start_time": _at(day, 9), "alternative_end_time": _at(day, 10)},
        headers=vendor_headers,
    )
    assert proposed.status_code == 200
    # Backdate the deadline as if the customer waited too long.
    with sqlite3.connect(booking_store.db_path) as conn:
        conn.execute(
            "UPDATE bookings SET alternative_expires_at = ? WHERE id = ?",
            ((datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat(timespec="microseconds"), booking_id),
        )

    gone = client.post(f"/bookings/{booking_id}/accept-alternative", json={"actor_user_id": customer_id})
    assert gone.status_code == 410
    assert gone.headers["X-Error-Code"] == "expired"

    sweep = client.post("/bookings/maintenance/expire-alternatives")
    assert sweep.status_code == 200
    assert booking_id in sweep.json()["expired_booking_ids"]
    again = client.post("/bookings/maintenance/expire-alternatives")
    assert booking_id not in again.json()["expired_booking_ids"]


def test_expiry_sweep_requires_maintenance_token_when_configured(monkeypatch):
    path = "/bookings/maintenance/expire-alternatives"
    monkeypatch.setattr(auth_module, "MAINTENANCE_TOKEN", "sweep-secret")

    assert client.post(path).status_code == 401
    assert client.post(path, headers={"X-Maintenance-Token": "guess"}).status_code == 403
    allowed = client.post(path, headers={"X-Maintenance-Token": "sweep-secret"})
    assert allowed.status_code == 200
    assert allowed.json()["count"] == len(allowed.json()["expired_booking_ids"])

    monkeypatch.setattr(auth_module, "MAINTENANCE_TOKEN", "")
    monkeypatch.setattr(auth_module, "AUTH_REQUIRED", True)
    assert client.post(path).status_code == 403


def test_notifications_register_and_mark_read():
    user_id = f"user_{uuid4().hex[:8]}"
    headers = _login(user_id, "customer")

    registered = client.post(
        "/notifications/register-device",
        json={"user_id": user_id, "device_token": "token-123", "platform": "web"},
        headers=headers,
    )
    assert registered.status_code == 200

    listed = client.get("/notifications", params={"user_id": user_id}, headers=headers)
    assert listed.status_code == 200
    assert listed.json() == []

    missing = client.post("/notifications/ntf_missing/read", params={"user_id": user_id}, headers=headers)
    assert missing.status_code == 404
