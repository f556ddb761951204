"""
Tests for the HTTP surface.

These tests verify:
1. AUTH: Admin and product-manager routes reject other callers
2. USAGE: Invalid events answer 400 and stay in the error log
3. RELEASES: Illegal transitions answer 400; features are assigned, moved
   and removed with their planning history recorded
4. PIXEL: The read-tracking GIF is idempotent and validates its id
"""

from uuid import uuid4

import pytest

from feature_tracker.api.notifications import TRACKING_PIXEL
from feature_tracker.models import NotificationEventType
from feature_tracker.services.notifications import NotificationService


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
async def seeded_product(session_factory, make_product):
    async with session_factory() as session:
        await make_product(session)
        await session.commit()


@pytest.fixture
async def notification_id(session_factory, clock):
    async with session_factory() as session:
        notification = await NotificationService(session, clock).notify(
            recipient="bob",
            actor="alice",
            event_type=NotificationEventType.FEATURE_UPDATED,
            details={"feature_code": "IDEA-1"},
        )
        await session.commit()
        return notification.id


# =============================================================================
# TEST: APPLICATION
# =============================================================================


class TestApplication:
    async def test_health_check(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


# =============================================================================
# TEST: AUTHORIZATION
# =============================================================================


class TestAuthorization:
    async def test_admin_requires_token(self, client):
        response = await client.get("/api/admin/health")

        assert response.status_code == 401

    async def test_admin_rejects_regular_user(self, client, auth_headers):
        response = await client.get("/api/admin/health", headers=auth_headers("alice"))

        assert response.status_code == 403

    async def test_admin_rejects_bad_token(self, client):
        response = await client.get(
            "/api/admin/health", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401

    async def test_admin_health(self, client, auth_headers):
        response = await client.get("/api/admin/health", headers=auth_headers("root", "ADMIN"))

        assert response.status_code == 200
        body = response.json()
        assert body["total_events"] == 0
        assert body["success_rate"] == 0.0
        assert body["data_gaps"] == []

    async def test_segments_require_product_manager(self, client, auth_headers):
        response = await client.get("/api/usage/segments", headers=auth_headers("alice"))

        assert response.status_code == 403

    async def test_catalog_reads_are_public(self, client, seeded_product):
        response = await client.get("/api/products/intellij")

        assert response.status_code == 200
        assert response.json()["prefix"] == "IDEA"

    async def test_catalog_writes_require_token(self, client):
        response = await client.post(
            "/api/products", json={"code": "pycharm", "prefix": "PY", "name": "PyCharm"}
        )

        assert response.status_code == 401


# =============================================================================
# TEST: USAGE
# =============================================================================


class TestUsageApi:
    """Tests for POST /usage."""

    async def test_duplicate_returns_stored_event(self, client, auth_headers):
        payload = {"action_type": "FEATURE_VIEWED", "feature_code": "IDEA-1", "product_code": "intellij"}

        first = await client.post("/api/usage", json=payload, headers=auth_headers("alice"))
        second = await client.post("/api/usage", json=payload, headers=auth_headers("alice"))

        assert first.status_code == 201
        assert second.status_code == 201
        assert first.json()["id"] == second.json()["id"]
        assert first.json()["user_id"] == "alice"

    async def test_invalid_event_is_logged(self, client, auth_headers):
        response = await client.post(
            "/api/usage", json={"action_type": "FEATURE_LIKED"}, headers=auth_headers("alice")
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert "FEATURE_LIKED" in body["message"]
        assert isinstance(body["error_log_id"], int)

        entry = await client.get(
            f"/api/admin/errors/{body['error_log_id']}", headers=auth_headers("root", "ADMIN")
        )
        assert entry.status_code == 200
        assert entry.json()["error_type"] == "VALIDATION_ERROR"
        assert entry.json()["resolved"] is False

    async def test_reprocess_dry_run(self, client, auth_headers):
        logged = await client.post(
            "/api/usage", json={"action_type": "FEATURE_LIKED"}, headers=auth_headers("alice")
        )
        error_log_id = logged.json()["error_log_id"]

        response = await client.post(
            "/api/admin/reprocess",
            json={"error_log_ids": [error_log_id], "dry_run": True},
            headers=auth_headers("root", "ADMIN"),
        )

        assert response.status_code == 200
        assert response.json()["total_processed"] == 1
        assert response.json()["failed_count"] == 1
        assert response.json()["errors"][0]["error_log_id"] == error_log_id

    async def test_reprocess_requires_selection(self, client, auth_headers):
        response = await client.post(
            "/api/admin/reprocess", json={}, headers=auth_headers("root", "ADMIN")
        )

        assert response.status_code == 400

    async def test_segments(self, client, auth_headers):
        response = await client.get(
            "/api/usage/segments", headers=auth_headers("pm", "PRODUCT_MANAGER")
        )

        assert response.status_code == 200
        assert [s["segment_key"] for s in response.json()] == [
            "mobile",
            "desktop",
            "power-users",
            "new-users",
        ]

    async def test_segments_malformed_tags(self, client, auth_headers):
        response = await client.get(
            "/api/usage/segments",
            params={"tags": "{device"},
            headers=auth_headers("pm", "PRODUCT_MANAGER"),
        )

        assert response.status_code == 400

    async def test_adoption_unknown_feature(self, client, auth_headers):
        response = await client.get(
            "/api/usage/adoption-rate/IDEA-404", headers=auth_headers("alice")
        )

        assert response.status_code == 404

    async def test_trends_require_token(self, client):
        response = await client.get("/api/usage/trends")

        assert response.status_code == 401

    async def test_trends(self, client, auth_headers):
        payload = {"action_type": "FEATURE_VIEWED", "feature_code": "IDEA-1", "product_code": "intellij"}
        await client.post("/api/usage", json=payload, headers=auth_headers("alice"))

        response = await client.get(
            "/api/usage/trends",
            params={"period_type": "week", "feature_code": "IDEA-1"},
            headers=auth_headers("alice"),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["entity_type"] == "FEATURE"
        assert body["period_type"] == "WEEK"
        assert body["trends"][0]["period"] == "2026-W10"
        assert body["summary"]["trend_direction"] == "STABLE"

    @pytest.mark.parametrize(
        "params",
        [
            {"period_type": "YEAR"},
            {"start_date": "2026-03-02T00:00:00Z", "end_date": "2026-03-01T00:00:00Z"},
        ],
    )
    async def test_trends_bad_request(self, client, auth_headers, params):
        response = await client.get(
            "/api/usage/trends", params=params, headers=auth_headers("alice")
        )

        assert response.status_code == 400


# =============================================================================
# TEST: RELEASES
# =============================================================================


class TestReleaseApi:
    async def test_release_lifecycle(self, client, auth_headers, seeded_product):
        created = await client.post(
            "/api/releases",
            json={"product_code": "intellij", "code": "2026.1"},
            headers=auth_headers("alice"),
        )
        assert created.status_code == 201
        assert created.json()["code"] == "IDEA-2026.1"
        assert created.json()["status"] == "DRAFT"

        rejected = await client.put(
            "/api/releases/IDEA-2026.1", json={"status": "RELEASED"}, headers=auth_headers("alice")
        )
        assert rejected.status_code == 400
        assert "DRAFT -> RELEASED" in rejected.json()["detail"]

        planned = await client.put(
            "/api/releases/IDEA-2026.1", json={"status": "PLANNED"}, headers=auth_headers("alice")
        )
        assert planned.status_code == 200
        assert planned.json()["status"] == "PLANNED"

        dashboard = await client.get("/api/releases/IDEA-2026.1/dashboard")
        assert dashboard.status_code == 200
        assert dashboard.json()["overview"]["total_features"] == 0

    async def test_unknown_release(self, client):
        response = await client.get("/api/releases/IDEA-404")

        assert response.status_code == 404


# =============================================================================
# TEST: RELEASE FEATURES AND PLANNING HISTORY
# =============================================================================


class TestReleaseFeatureApi:
    """Tests for /releases/{code}/features and the history endpoints."""

    @pytest.fixture
    async def planned_release(self, session_factory, make_product, make_release, make_feature):
        async with session_factory() as session:
            product = await make_product(session)
            await make_release(session, product, "IDEA-2026.1")
            await make_release(session, product, "IDEA-2026.2")
            await make_feature(session, product, "IDEA-10")
            await session.commit()

    async def test_assign_move_remove(self, client, auth_headers, planned_release):
        assigned = await client.post(
            "/api/releases/IDEA-2026.1/features",
            json={"feature_code": "IDEA-10", "feature_owner": "bob"},
            headers=auth_headers("alice"),
        )
        assert assigned.status_code == 201
        assert assigned.json()["release_code"] == "IDEA-2026.1"
        assert assigned.json()["planning_status"] == "NOT_STARTED"

        again = await client.post(
            "/api/releases/IDEA-2026.2/features",
            json={"feature_code": "IDEA-10"},
            headers=auth_headers("alice"),
        )
        assert again.status_code == 409

        planning = await client.patch(
            "/api/releases/IDEA-2026.1/features/IDEA-10/planning",
            json={"planning_status": "IN_PROGRESS"},
            headers=auth_headers("alice"),
        )
        assert planning.status_code == 200
        assert planning.json()["planning_status"] == "IN_PROGRESS"

        moved = await client.post(
            "/api/releases/IDEA-2026.2/features/IDEA-10/move",
            json={"rationale": "Scope cut"},
            headers=auth_headers("alice"),
        )
        assert moved.status_code == 200
        assert moved.json()["release_code"] == "IDEA-2026.2"
        assert moved.json()["notes"] == "Moved from IDEA-2026.1: Scope cut"

        removed = await client.delete(
            "/api/releases/IDEA-2026.2/features/IDEA-10", headers=auth_headers("alice")
        )
        assert removed.status_code == 200
        assert removed.json()["release_code"] is None

        history = await client.get(
            "/api/features/IDEA-10/history",
            params={"sort": "changed_at,asc", "page_size": 100},
            headers=auth_headers("alice"),
        )
        assert history.status_code == 200
        moves = [e for e in history.json()["items"] if e["change_type"] == "MOVED"]
        assert [(e["old_value"], e["new_value"]) for e in moves] == [
            (None, "IDEA-2026.1"),
            ("IDEA-2026.1", "IDEA-2026.2"),
            ("IDEA-2026.2", None),
        ]

    async def test_remove_from_wrong_release(self, client, auth_headers, planned_release):
        response = await client.delete(
            "/api/releases/IDEA-2026.1/features/IDEA-10", headers=auth_headers("alice")
        )

        assert response.status_code == 404

    async def test_history_requires_token(self, client):
        response = await client.get("/api/planning-history")

        assert response.status_code == 401

    async def test_release_history_unknown_release(self, client, auth_headers):
        response = await client.get("/api/releases/IDEA-404/history", headers=auth_headers("alice"))

        assert response.status_code == 404

    async def test_query_history(self, client, auth_headers, planned_release):
        await client.put(
            "/api/releases/IDEA-2026.1", json={"status": "PLANNED"}, headers=auth_headers("bob")
        )

        response = await client.get(
            "/api/planning-history",
            params={"entity_type": "RELEASE", "changed_by": "bob"},
            headers=auth_headers("alice"),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["items"][0]["entity_code"] == "IDEA-2026.1"
        assert body["items"][0]["change_type"] == "STATUS_CHANGED"


# =============================================================================
# TEST: NOTIFICATIONS
# =============================================================================


class TestTrackingPixelApi:
    """Tests for GET /notifications/{id}/read."""

    async def test_pixel_marks_read(self, client, auth_headers, notification_id):
        first = await client.get(f"/api/notifications/{notification_id}/read")
        second = await client.get(f"/api/notifications/{notification_id}/read")

        for response in (first, second):
            assert response.status_code == 200
            assert response.headers["content-type"] == "image/gif"
            assert "no-store" in response.headers["cache-control"]
            assert response.content == TRACKING_PIXEL

        inbox = await client.get("/api/notifications", headers=auth_headers("bob"))
        assert inbox.json()["items"][0]["read"] is True

    async def test_malformed_id(self, client):
        response = await client.get("/api/notifications/not-a-uuid/read")

        assert response.status_code == 400

    async def test_unknown_id(self, client):
        response = await client.get(f"/api/notifications/{uuid4()}/read")

        assert response.status_code == 404


# =============================================================================
# TEST: EMAIL FAILURES
# =============================================================================


class TestEmailFailuresApi:
    async def test_invalid_date(self, client, auth_headers):
        response = await client.get(
            "/api/admin/email-failures",
            params={"date": "2026-13-01"},
            headers=auth_headers("root", "ADMIN"),
        )

        assert response.status_code == 400

    async def test_empty_day(self, client, auth_headers):
        response = await client.get(
            "/api/admin/email-failures",
            params={"date": "2026-03-02"},
            headers=auth_headers("root", "ADMIN"),
        )

        assert response.status_code == 200
        assert response.json()["total"] == 0
