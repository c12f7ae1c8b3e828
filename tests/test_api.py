# tests/test_api.py
from http import HTTPStatus

import pytest
from sqlalchemy.exc import OperationalError

from slotbook.api import dependencies
from slotbook.config.settings import Settings
from slotbook.core.middleware import redact_path
from slotbook.services.booking import rate_limiter
from slotbook.services.booking.rate_limiter import InMemoryRateLimiter

CRON_HEADERS = {"Authorization": "Bearer test-cron-secret"}


def _booking_payload(**overrides) -> dict:
    payload = {
        "eventTypeSlug": "intro-call",
        "startTime": "2026-03-02T10:00:00Z",
        "timezone": "UTC",
        "name": "Ada Lovelace",
        "email": "ada@example.com",
        "phone": "+1 555 010 0199",
        "notes": "Looking forward to it",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def bookable(make_member, make_event_type):
    make_member()
    return make_event_type()


def _create(client, **overrides):
    response = client.post("/api/v1/bookings", json=_booking_payload(**overrides))
    assert response.status_code == HTTPStatus.CREATED, response.text
    return response.json()


def test_availability_lists_slots_without_member_ids(client, bookable):
    response = client.get(
        "/api/v1/availability",
        params={"eventType": "intro-call", "date": "2026-03-02", "timezone": "UTC"},
    )
    assert response.status_code == HTTPStatus.OK

    data = response.json()
    assert data["date"] == "2026-03-02"
    assert data["slots"][0] == {"start": "2026-03-02T09:00:00Z", "end": "2026-03-02T09:30:00Z"}
    assert data["slots"][-1]["start"] == "2026-03-02T16:30:00Z"


def test_availability_rejects_bad_timezone_with_envelope(client, bookable):
    response = client.get(
        "/api/v1/availability",
        params={"eventType": "intro-call", "date": "2026-03-02", "timezone": "Not/AZone"},
    )
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.json() == {"error": "Invalid timezone. Please select a valid timezone.",
                               "code": "validation_error"}


def test_missing_query_parameter_uses_same_envelope(client):
    response = client.get("/api/v1/availability", params={"date": "2026-03-02", "timezone": "UTC"})
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.json()["code"] == "validation_error"


def test_create_booking_returns_manage_token(client, bookable):
    data = _create(client)

    booking = data["booking"]
    assert data["calendarSynced"] is True
    assert "warnings" not in data
    assert booking["status"] == "confirmed"
    assert booking["startTime"] == "2026-03-02T10:00:00Z"
    assert booking["inviteeEmail"] == "ada@example.com"
    assert booking["eventType"]["slug"] == "intro-call"
    assert len(booking["manageToken"]) >= 43


def test_create_booking_with_calendar_failure_reports_warning(client, adapter, bookable):
    adapter.fail_writes = True

    data = _create(client)

    assert data["calendarSynced"] is False
    assert data["warnings"]
    assert data["booking"]["status"] == "confirmed"


def test_create_booking_validation_errors(client, bookable):
    response = client.post("/api/v1/bookings", json=_booking_payload(email="not-an-email"))
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.json()["code"] == "validation_error"

    response = client.post("/api/v1/bookings", json=_booking_payload(startTime="2026-03-02T10:00:00"))
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert "timezone offset" in response.json()["error"]


def test_stale_slot_is_a_conflict(client, bookable):
    _create(client)

    response = client.post("/api/v1/bookings", json=_booking_payload(email="late@example.com"))
    assert response.status_code == HTTPStatus.CONFLICT
    assert response.json()["code"] == "slot_unavailable"


def test_unknown_event_type_is_not_found(client):
    response = client.post("/api/v1/bookings", json=_booking_payload(eventTypeSlug="nope"))
    assert response.status_code == HTTPStatus.NOT_FOUND
    assert response.json() == {"error": "Event type not found", "code": "not_found"}


def test_booking_rate_limit_per_origin(client, monkeypatch):
    monkeypatch.setattr(rate_limiter, "_limiter", InMemoryRateLimiter(max_requests=2, window_seconds=3600))
    headers = {"X-Forwarded-For": "203.0.113.9, 10.0.0.1"}

    for _ in range(2):
        response = client.post("/api/v1/bookings", json=_booking_payload(eventTypeSlug="nope"), headers=headers)
        assert response.status_code == HTTPStatus.NOT_FOUND

    blocked = client.post("/api/v1/bookings", json=_booking_payload(eventTypeSlug="nope"), headers=headers)
    assert blocked.status_code == HTTPStatus.TOO_MANY_REQUESTS
    assert blocked.json()["code"] == "rate_limited"
    assert int(blocked.headers["Retry-After"]) > 0

    other = client.post("/api/v1/bookings", json=_booking_payload(eventTypeSlug="nope"),
                        headers={"X-Forwarded-For": "198.51.100.4"})
    assert other.status_code == HTTPStatus.NOT_FOUND


def test_manage_view_cancel_and_cancel_again(client, adapter, notifier, bookable):
    token = _create(client)["booking"]["manageToken"]

    view = client.get(f"/api/v1/manage/{token}")
    assert view.status_code == HTTPStatus.OK
    assert view.json()["booking"]["inviteeName"] == "Ada Lovelace"
    assert "manageToken" not in view.json()["booking"]

    cancelled = client.post(f"/api/v1/manage/{token}/cancel")
    assert cancelled.status_code == HTTPStatus.OK
    assert cancelled.json() == {"success": True, "calendarSynced": True}

    again = client.post(f"/api/v1/manage/{token}/cancel")
    assert again.status_code == HTTPStatus.BAD_REQUEST
    assert again.json()["code"] == "validation_error"
    assert len(adapter.deleted) == 1
    assert notifier.kinds() == ["created", "cancelled"]


def test_manage_unknown_token(client):
    response = client.get("/api/v1/manage/unknown-token-value")
    assert response.status_code == HTTPStatus.NOT_FOUND


def test_database_failure_on_read_uses_error_envelope(client, service, monkeypatch):
    def unavailable(token):
        raise OperationalError("SELECT bookings", {}, Exception("server closed the connection"))

    monkeypatch.setattr(service.repository, "get_booking_by_token", unavailable)

    response = client.get("/api/v1/manage/some-token-value")
    assert response.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
    assert response.json()["code"] == "internal_error"
    assert "server closed" not in response.text


def test_reschedule_through_api(client, bookable):
    created = _create(client)["booking"]
    token = created["manageToken"]

    response = client.post(
        f"/api/v1/manage/{token}/reschedule",
        json={"startTime": "2026-03-02T14:00:00+00:00", "timezone": "UTC"},
    )
    assert response.status_code == HTTPStatus.OK
    data = response.json()
    assert data["booking"]["id"] == created["id"]
    assert data["booking"]["startTime"] == "2026-03-02T14:00:00Z"
    assert data["calendarSynced"] is True


def test_cron_requires_secret(client):
    assert client.get("/api/v1/cron/upcoming-bookings").status_code == HTTPStatus.UNAUTHORIZED
    wrong = client.get("/api/v1/cron/upcoming-bookings", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == HTTPStatus.UNAUTHORIZED


def test_cron_rejects_everyone_without_configured_secret(client, monkeypatch):
    monkeypatch.setattr(dependencies, "get_settings", lambda: Settings(CRON_SECRET=None))
    response = client.get("/api/v1/cron/upcoming-bookings", headers=CRON_HEADERS)
    assert response.status_code == HTTPStatus.UNAUTHORIZED


def test_cron_lists_upcoming_bookings(client, bookable):
    created = _create(client)["booking"]

    response = client.get(
        "/api/v1/cron/upcoming-bookings",
        params={"windowStartMinutes": 0, "windowEndMinutes": 1440},
        headers=CRON_HEADERS,
    )
    assert response.status_code == HTTPStatus.OK
    data = response.json()
    assert [b["id"] for b in data["bookings"]] == [created["id"]]
    assert data["bookings"][0]["inviteeEmail"] == "ada@example.com"
    assert data["windowStart"] == "2026-03-01T12:00:00Z"


def test_cron_window_is_validated(client):
    response = client.get(
        "/api/v1/cron/upcoming-bookings",
        params={"windowStartMinutes": 100, "windowEndMinutes": 50},
        headers=CRON_HEADERS,
    )
    assert response.status_code == HTTPStatus.BAD_REQUEST


def test_health_endpoints(client):
    response = client.get("/health")
    assert response.status_code == HTTPStatus.OK
    assert response.json()["status"] == "healthy"

    detailed = client.get("/health/detailed").json()
    assert detailed["database"] == "healthy"
    assert detailed["redis"] == "not_configured"
    assert detailed["overall"] == "healthy"


def test_correlation_id_is_echoed(client):
    response = client.get("/health", headers={"X-Correlation-ID": "req-123"})
    assert response.headers["X-Correlation-ID"] == "req-123"


def test_manage_tokens_are_redacted_from_logged_paths():
    assert redact_path("/api/v1/manage/abc123-secret/cancel") == "/api/v1/manage/<token>/cancel"
    assert redact_path("/api/v1/bookings") == "/api/v1/bookings"
