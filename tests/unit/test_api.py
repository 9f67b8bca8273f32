"""End-to-end API tests against the in-memory repositories."""

import pytest
from fastapi import status
from sqlalchemy.exc import OperationalError

from tests.helpers.factories import KEYHOLDER, OUTSIDER, SUBMISSIVE, auth_headers

SUB = auth_headers(SUBMISSIVE)
KH = auth_headers(KEYHOLDER)


def pair(client) -> dict:
    """Create a relationship through the invite endpoints."""
    invite = client.post("/v1/invites", json={"expiration_hours": 2}, headers=SUB)
    assert invite.status_code == status.HTTP_201_CREATED
    response = client.post("/v1/invites/accept", json={"code": invite.json()["code"]}, headers=KH)
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()


@pytest.mark.unit
class TestHealthEndpoints:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "healthy"
        assert response.json()["service"] == "keyholder-tracker"

    def test_ready_reports_database_failure(self, client, monkeypatch):
        from keyholder_tracker import main

        class BrokenSession:
            def execute(self, statement):
                raise OperationalError("SELECT 1", {}, Exception("database is locked"))

            def close(self):
                pass

        monkeypatch.setattr(main, "SessionLocal", BrokenSession)

        response = client.get("/ready")

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json()["checks"]["database"] is False


@pytest.mark.unit
class TestInviteAndRelationshipEndpoints:
    """Test pairing and relationship management over HTTP."""

    def test_pairing_flow(self, client):
        relationship = pair(client)

        assert relationship["status"] == "active"
        assert relationship["submissive_id"] == SUBMISSIVE
        assert relationship["permissions"]["keyholder_can_edit"]["settings"] is False

        listed = client.get("/v1/relationships", headers=KH).json()["relationships"]
        assert [r["id"] for r in listed] == [relationship["id"]]
        assert client.get("/v1/invites", headers=SUB).json()["invite_codes"] == []

    def test_invite_limit(self, client):
        for _ in range(3):
            client.post("/v1/invites", json={}, headers=SUB)

        response = client.post("/v1/invites", json={}, headers=SUB)

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.json()["code"] == "limit_exceeded"

    def test_revoke_invite(self, client):
        invite = client.post("/v1/invites", json={}, headers=SUB).json()

        assert client.delete(f"/v1/invites/{invite['id']}", headers=KH).status_code == 403
        response = client.delete(f"/v1/invites/{invite['id']}", headers=SUB)
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["is_revoked"] is True

    def test_malformed_code(self, client):
        response = client.post("/v1/invites/accept", json={"code": "abc"}, headers=KH)
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_outsider_cannot_read_relationship(self, client):
        relationship = pair(client)
        response = client.get(
            f"/v1/relationships/{relationship['id']}", headers=auth_headers(OUTSIDER)
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_pause_resume_end(self, client):
        rid = pair(client)["id"]

        assert client.post(f"/v1/relationships/{rid}/pause", headers=SUB).json()["status"] == "paused"
        assert client.post(f"/v1/relationships/{rid}/resume", headers=KH).json()["status"] == "active"
        assert client.post(f"/v1/relationships/{rid}/end", headers=KH).json()["status"] == "ended"

        response = client.post(f"/v1/relationships/{rid}/resume", headers=KH)
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["code"] == "invalid_transition"

    def test_permissions_update(self, client):
        rid = pair(client)["id"]

        response = client.put(
            f"/v1/relationships/{rid}/permissions",
            json={"keyholder_can_edit": {"settings": True}},
            headers=KH,
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["permissions"]["keyholder_can_edit"]["settings"] is True

        response = client.put(
            f"/v1/relationships/{rid}/permissions", json={"emergency_unlock": False}, headers=SUB
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN

        response = client.put(
            f"/v1/relationships/{rid}/permissions", json={"bogus": True}, headers=KH
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_chastity_settings_and_goals(self, client):
        rid = pair(client)["id"]

        data = client.get(f"/v1/relationships/{rid}/chastity", headers=KH).json()
        assert data["current_session"]["is_active"] is False

        response = client.put(
            f"/v1/relationships/{rid}/chastity/settings",
            json={"require_reason_for_end": True},
            headers=SUB,
        )
        assert response.json()["settings"]["require_reason_for_end"] is True

        response = client.put(
            f"/v1/relationships/{rid}/chastity/goals",
            json={"keyholder": {"minimum_duration": 3600}},
            headers=KH,
        )
        assert response.json()["goals"]["keyholder"]["minimum_duration"] == 3600

    def test_stats(self, client):
        pair(client)
        stats = client.get("/v1/relationships/stats", headers=SUB).json()
        assert stats["as_submissive"]["active_relationships"] == 1

    def test_search_and_history(self, client):
        relationship = pair(client)

        found = client.post(
            "/v1/relationships/search?page_size=5",
            json={"status": ["active"], "role": "submissive"},
            headers=SUB,
        )
        assert found.status_code == status.HTTP_200_OK
        assert [r["id"] for r in found.json()["relationships"]] == [relationship["id"]]
        assert found.json()["has_more"] is False

        as_keyholder = client.post(
            "/v1/relationships/search", json={"role": "keyholder"}, headers=SUB
        )
        assert as_keyholder.json()["relationships"] == []

        client.post(f"/v1/relationships/{relationship['id']}/end", headers=SUB)
        history = client.get("/v1/relationships/history", headers=KH).json()
        assert [r["id"] for r in history["relationships"]] == [relationship["id"]]

    def test_search_rejects_bad_input(self, client):
        pair(client)

        naive = client.post(
            "/v1/relationships/search", json={"start_date": "2024-01-01T00:00:00"}, headers=SUB
        )
        unknown_cursor = client.post("/v1/relationships/search?cursor=nope", headers=SUB)

        assert naive.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert unknown_cursor.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_recent_activity(self, client):
        relationship = pair(client)

        activity = client.get("/v1/relationships/activity?limit=5", headers=KH)

        assert activity.status_code == status.HTTP_200_OK
        assert [r["id"] for r in activity.json()["recent_relationships"]] == [relationship["id"]]
        assert activity.json()["recent_requests"] == []


@pytest.mark.unit
class TestRequestEndpoints:
    def test_request_accept_flow(self, client):
        sent = client.post(
            "/v1/relationship-requests",
            json={"to_user_id": KEYHOLDER, "from_role": "submissive", "message": "hi"},
            headers=SUB,
        )
        assert sent.status_code == status.HTTP_201_CREATED
        request_id = sent.json()["id"]

        pending = client.get("/v1/relationship-requests/pending", headers=KH).json()["requests"]
        assert [r["id"] for r in pending] == [request_id]

        accepted = client.post(f"/v1/relationship-requests/{request_id}/accept", headers=KH)
        assert accepted.status_code == status.HTTP_201_CREATED
        assert accepted.json()["keyholder_id"] == KEYHOLDER

    def test_reject(self, client):
        request_id = client.post(
            "/v1/relationship-requests",
            json={"to_user_id": KEYHOLDER, "from_role": "submissive"},
            headers=SUB,
        ).json()["id"]

        response = client.post(f"/v1/relationship-requests/{request_id}/reject", headers=KH)

        assert response.json()["status"] == "rejected"
        again = client.post(f"/v1/relationship-requests/{request_id}/reject", headers=KH)
        assert again.status_code == status.HTTP_409_CONFLICT

    def test_search_requests_by_direction(self, client):
        request_id = client.post(
            "/v1/relationship-requests",
            json={"to_user_id": KEYHOLDER, "from_role": "submissive"},
            headers=SUB,
        ).json()["id"]

        sent = client.get("/v1/relationships/requests?direction=sent", headers=SUB).json()
        kh_sent = client.get("/v1/relationships/requests?direction=sent", headers=KH).json()
        pending = client.get(
            "/v1/relationships/requests?direction=received&status=pending", headers=KH
        ).json()

        assert [r["id"] for r in sent["requests"]] == [request_id]
        assert kh_sent["requests"] == []
        assert [r["id"] for r in pending["requests"]] == [request_id]

        bad = client.get("/v1/relationships/requests?direction=sideways", headers=SUB)
        assert bad.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


@pytest.mark.unit
class TestSessionEndpoints:
    """Test the session lifecycle over HTTP."""

    def test_session_lifecycle(self, client, clock):
        rid = pair(client)["id"]
        base = f"/v1/relationships/{rid}/sessions"

        started = client.post(base, json={"goal_duration": 3600}, headers=SUB)
        assert started.status_code == status.HTTP_201_CREATED
        sid = started.json()["id"]

        assert client.post(base, headers=KH).status_code == status.HTTP_409_CONFLICT

        clock.advance(minutes=30)
        paused = client.post(f"{base}/{sid}/pause", json={"reason": "break"}, headers=SUB)
        assert paused.status_code == status.HTTP_200_OK
        clock.advance(minutes=10)
        client.post(f"{base}/{sid}/resume", headers=SUB)
        clock.advance(minutes=40)

        ended = client.post(f"{base}/{sid}/end", headers=SUB).json()
        assert ended["duration"] == 80 * 60
        assert ended["effective_duration"] == 70 * 60
        assert ended["goal_met"] is True

        history = client.get(base, headers=KH).json()["sessions"]
        assert [s["id"] for s in history] == [sid]

    def test_keyholder_cannot_pause(self, client):
        rid = pair(client)["id"]
        base = f"/v1/relationships/{rid}/sessions"
        sid = client.post(base, headers=SUB).json()["id"]

        response = client.post(f"{base}/{sid}/pause", headers=KH)

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_emergency_unlock_requires_reason(self, client):
        rid = pair(client)["id"]
        base = f"/v1/relationships/{rid}/sessions"
        sid = client.post(base, headers=SUB).json()["id"]

        missing = client.post(f"{base}/{sid}/emergency-unlock", json={}, headers=SUB)
        assert missing.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

        response = client.post(
            f"{base}/{sid}/emergency-unlock", json={"reason": "medical"}, headers=SUB
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["end_time"] is not None


@pytest.mark.unit
class TestTaskEndpoints:
    """Test the task workflow over HTTP."""

    def test_task_workflow(self, client, sink):
        rid = pair(client)["id"]
        base = f"/v1/relationships/{rid}/tasks"

        created = client.post(base, json={"text": "Write 500 words"}, headers=KH)
        assert created.status_code == status.HTTP_201_CREATED
        tid = created.json()["id"]

        submitted = client.post(
            f"{base}/{tid}/status", json={"status": "submitted", "note": "done"}, headers=SUB
        )
        assert submitted.json()["submissive_note"] == "done"

        wrong = client.post(f"{base}/{tid}/status", json={"status": "approved"}, headers=SUB)
        assert wrong.status_code == status.HTTP_403_FORBIDDEN

        approved = client.post(f"{base}/{tid}/status", json={"status": "approved"}, headers=KH)
        assert approved.json()["status"] == "approved"

        tasks = client.get(base, headers=SUB).json()["tasks"]
        assert tasks[0]["status"] == "approved"
        assert [n.kind.value for n in sink.notifications] == [
            "task_assigned",
            "task_submitted",
            "task_approved",
        ]

    def test_check_deadlines(self, client, clock):
        rid = pair(client)["id"]
        base = f"/v1/relationships/{rid}/tasks"
        due = (clock.now().replace(microsecond=0)).isoformat()
        client.post(base, json={"text": "Late", "due_date": due}, headers=KH)

        first = client.post(f"{base}/check-deadlines", headers=SUB).json()["notifications"]
        second = client.post(f"{base}/check-deadlines", headers=SUB).json()["notifications"]

        assert [n["kind"] for n in first] == ["deadline_passed"]
        assert second == []

    def test_due_date_needs_timezone(self, client):
        rid = pair(client)["id"]
        response = client.post(
            f"/v1/relationships/{rid}/tasks",
            json={"text": "Late", "due_date": "2026-01-05T12:00:00"},
            headers=KH,
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_outsider_cannot_list_tasks(self, client):
        rid = pair(client)["id"]
        response = client.get(f"/v1/relationships/{rid}/tasks", headers=auth_headers(OUTSIDER))
        assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.unit
class TestEventEndpoints:
    """Test the audit log and history endpoints."""

    def test_log_and_list_private_events(self, client, clock):
        rid = pair(client)["id"]
        clock.advance(minutes=1)

        created = client.post(
            f"/v1/relationships/{rid}/events",
            json={"type": "diary", "is_private": True, "details": {"notes": "secret"}},
            headers=SUB,
        )
        assert created.status_code == status.HTTP_201_CREATED
        event_id = created.json()["id"]

        own = client.get(f"/v1/relationships/{rid}/events", headers=SUB).json()["events"]
        other = client.get(f"/v1/relationships/{rid}/events", headers=KH).json()["events"]
        assert event_id in [e["id"] for e in own]
        assert event_id not in [e["id"] for e in other]

    def test_search(self, client):
        rid = pair(client)["id"]
        client.post(
            f"/v1/relationships/{rid}/events",
            json={"type": "check_in", "tags": ["gym"], "details": {"duration": 60}},
            headers=KH,
        )

        response = client.post(
            f"/v1/relationships/{rid}/events/search", json={"tags": ["gym"]}, headers=SUB
        )

        entries = response.json()["entries"]
        assert len(entries) == 1
        assert entries[0]["duration"] == 60

    def test_search_date_range_needs_timezone(self, client):
        """Test that a date range without a UTC offset is a 422, not a server error."""
        rid = pair(client)["id"]
        url = f"/v1/relationships/{rid}/events/search"

        naive = client.post(
            url,
            json={"date_range": {"start": "2020-01-01T00:00:00", "end": "2099-01-01T00:00:00"}},
            headers=SUB,
        )
        assert naive.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert naive.json()["code"] == "validation_error"

        aware = client.post(
            url,
            json={"date_range": {"start": "2020-01-01T00:00:00Z", "end": "2099-01-01T00:00:00Z"}},
            headers=SUB,
        )
        assert aware.status_code == status.HTTP_200_OK

    def test_keyholder_view_is_submissive_only(self, client, clock):
        rid = pair(client)["id"]
        base = f"/v1/relationships/{rid}/sessions"
        sid = client.post(base, headers=SUB).json()["id"]
        clock.advance(hours=2)
        client.post(f"{base}/{sid}/end", headers=SUB)

        url = f"/v1/relationships/{rid}/history/keyholder-view"
        assert client.post(url, json={}, headers=KH).status_code == status.HTTP_403_FORBIDDEN

        view = client.post(url, json={"sharing": {"share_duration": False}}, headers=SUB).json()
        assert view["summary_stats"]["total_sessions"] == 1
        assert view["allowed_sessions"][0]["duration"] is None
