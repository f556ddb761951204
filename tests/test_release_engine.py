"""
Tests for the Release Engine - Verifying Lifecycle Guarantees.

These tests verify:
1. CREATE: Releases start in DRAFT with a product-prefixed code
2. TRANSITIONS: Only state-machine moves are accepted, rejections change nothing
3. PARENTS: No self-parenting, no dangling parent references
4. CASCADE: One notification per stakeholder, never to the actor
"""

import pytest
from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from feature_tracker.models import (
    Feature,
    Notification,
    NotificationEventType,
    Release,
    ReleaseStatus,
)
from feature_tracker.services.exceptions import ConflictError, ProductNotFoundError, ReleaseNotFoundError
from feature_tracker.services.release_engine import (
    CreateReleaseInput,
    InvalidParentError,
    InvalidTransitionError,
    ReleaseEngine,
    ReleaseStateMachine,
    UpdateReleaseInput,
)


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
async def product(session: AsyncSession, make_product):
    return await make_product(session)


@pytest.fixture
def engine(session: AsyncSession, clock) -> ReleaseEngine:
    return ReleaseEngine(session, clock)


async def count_notifications(session: AsyncSession) -> int:
    result = await session.execute(select(func.count()).select_from(Notification))
    return result.scalar_one()


# =============================================================================
# TEST: STATE MACHINE
# =============================================================================


class TestReleaseStateMachine:
    """Tests for the transition table."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (ReleaseStatus.DRAFT, ReleaseStatus.PLANNED),
            (ReleaseStatus.PLANNED, ReleaseStatus.IN_PROGRESS),
            (ReleaseStatus.IN_PROGRESS, ReleaseStatus.RELEASED),
            (ReleaseStatus.IN_PROGRESS, ReleaseStatus.DELAYED),
            (ReleaseStatus.IN_PROGRESS, ReleaseStatus.CANCELLED),
            (ReleaseStatus.DELAYED, ReleaseStatus.IN_PROGRESS),
            (ReleaseStatus.DELAYED, ReleaseStatus.RELEASED),
            (ReleaseStatus.RELEASED, ReleaseStatus.COMPLETED),
        ],
    )
    def test_allowed_transitions(self, current, target):
        assert ReleaseStateMachine().can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (ReleaseStatus.DRAFT, ReleaseStatus.RELEASED),
            (ReleaseStatus.PLANNED, ReleaseStatus.DRAFT),
            (ReleaseStatus.RELEASED, ReleaseStatus.IN_PROGRESS),
            (ReleaseStatus.COMPLETED, ReleaseStatus.IN_PROGRESS),
            (ReleaseStatus.CANCELLED, ReleaseStatus.PLANNED),
        ],
    )
    def test_rejected_transitions(self, current, target):
        machine = ReleaseStateMachine()

        assert not machine.can_transition(current, target)
        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.validate(current, target)
        assert current.value in str(exc_info.value)
        assert target.value in str(exc_info.value)

    def test_same_status_is_not_a_cascade(self):
        machine = ReleaseStateMachine()

        assert machine.can_transition(ReleaseStatus.RELEASED, ReleaseStatus.RELEASED)
        assert not machine.triggers_cascade(ReleaseStatus.RELEASED, ReleaseStatus.RELEASED)

    def test_cascade_targets(self):
        machine = ReleaseStateMachine()

        assert machine.triggers_cascade(ReleaseStatus.IN_PROGRESS, ReleaseStatus.DELAYED)
        assert machine.triggers_cascade(ReleaseStatus.RELEASED, ReleaseStatus.COMPLETED)
        assert not machine.triggers_cascade(ReleaseStatus.DRAFT, ReleaseStatus.PLANNED)


# =============================================================================
# TEST: CREATE RELEASE
# =============================================================================


class TestCreateRelease:
    """Tests for POST /releases - Create Logic."""

    async def test_create_release_starts_in_draft(self, engine, product):
        release = await engine.create_release(
            CreateReleaseInput(product_code="intellij", code="2026.1"), actor="alice"
        )

        assert release.code == "IDEA-2026.1"
        assert release.status == ReleaseStatus.DRAFT
        assert release.created_by == "alice"

    async def test_create_release_keeps_existing_prefix(self, engine, product):
        release = await engine.create_release(
            CreateReleaseInput(product_code="intellij", code="IDEA-2026.2"), actor="alice"
        )

        assert release.code == "IDEA-2026.2"

    async def test_create_release_duplicate_code(self, engine, product):
        await engine.create_release(
            CreateReleaseInput(product_code="intellij", code="2026.1"), actor="alice"
        )

        with pytest.raises(ConflictError):
            await engine.create_release(
                CreateReleaseInput(product_code="intellij", code="2026.1"), actor="alice"
            )

    async def test_create_release_unknown_product(self, engine):
        with pytest.raises(ProductNotFoundError):
            await engine.create_release(
                CreateReleaseInput(product_code="missing", code="1.0"), actor="alice"
            )

    async def test_create_release_with_parent(self, engine, product):
        parent = await engine.create_release(
            CreateReleaseInput(product_code="intellij", code="2026"), actor="alice"
        )
        child = await engine.create_release(
            CreateReleaseInput(product_code="intellij", code="2026.1", parent_code=parent.code),
            actor="alice",
        )

        assert child.parent_id == parent.id
        children = await engine.list_children(parent.code)
        assert [c.code for c in children] == ["IDEA-2026.1"]

    async def test_create_release_missing_parent(self, engine, product):
        with pytest.raises(InvalidParentError):
            await engine.create_release(
                CreateReleaseInput(product_code="intellij", code="2026.1", parent_code="IDEA-0"),
                actor="alice",
            )

    async def test_create_release_cannot_parent_itself(self, engine, session, product):
        with pytest.raises(InvalidParentError) as exc_info:
            await engine.create_release(
                CreateReleaseInput(product_code="intellij", code="2026.1", parent_code="IDEA-2026.1"),
                actor="alice",
            )

        assert "its own parent" in str(exc_info.value)
        assert (await session.execute(select(func.count()).select_from(Release))).scalar_one() == 0

    async def test_create_release_stamps_clock_time(self, engine, clock, product):
        clock.advance(days=3)

        release = await engine.create_release(
            CreateReleaseInput(product_code="intellij", code="2026.1"), actor="alice"
        )

        assert release.created_at == clock.now()


# =============================================================================
# TEST: UPDATE RELEASE
# =============================================================================


class TestUpdateRelease:
    """Tests for PUT /releases/{code} - Status Transitions."""

    async def test_valid_transition(self, engine, session, product, make_release):
        await make_release(session, product, "IDEA-1", status=ReleaseStatus.DRAFT)

        result = await engine.update_release(
            "IDEA-1", UpdateReleaseInput(status=ReleaseStatus.PLANNED), actor="alice"
        )

        assert result.release.status == ReleaseStatus.PLANNED
        assert result.previous_status == ReleaseStatus.DRAFT
        assert result.status_changed is True
        assert result.release.updated_by == "alice"
        assert result.notifications == []

    async def test_rejected_transition_leaves_release_untouched(
        self, engine, session, product, make_release
    ):
        await make_release(session, product, "IDEA-1", status=ReleaseStatus.DRAFT)

        with pytest.raises(InvalidTransitionError):
            await engine.update_release(
                "IDEA-1",
                UpdateReleaseInput(description="changed", status=ReleaseStatus.RELEASED),
                actor="alice",
            )

        release = await engine.get_release("IDEA-1")
        assert release.status == ReleaseStatus.DRAFT
        assert release.description is None
        assert await count_notifications(session) == 0

    async def test_self_parent_rejected_before_status_change(
        self, engine, session, product, make_release
    ):
        await make_release(session, product, "IDEA-1", status=ReleaseStatus.DRAFT)

        with pytest.raises(InvalidParentError):
            await engine.update_release(
                "IDEA-1",
                UpdateReleaseInput(status=ReleaseStatus.PLANNED, parent_code="IDEA-1"),
                actor="alice",
            )

        release = await engine.get_release("IDEA-1")
        assert release.status == ReleaseStatus.DRAFT

    async def test_released_stamps_release_date(
        self, engine, session, clock, product, make_release
    ):
        await make_release(session, product, "IDEA-1", status=ReleaseStatus.IN_PROGRESS)

        result = await engine.update_release(
            "IDEA-1", UpdateReleaseInput(status=ReleaseStatus.RELEASED), actor="alice"
        )

        assert result.release.released_at == clock.now()

    async def test_explicit_release_date_wins(
        self, engine, session, clock, product, make_release
    ):
        await make_release(session, product, "IDEA-1", status=ReleaseStatus.IN_PROGRESS)
        planned = clock.now() - timedelta(days=1)

        result = await engine.update_release(
            "IDEA-1",
            UpdateReleaseInput(status=ReleaseStatus.RELEASED, released_at=planned),
            actor="alice",
        )

        assert result.release.released_at == planned

    async def test_delayed_can_resume(self, engine, session, product, make_release):
        await make_release(session, product, "IDEA-1", status=ReleaseStatus.DELAYED)

        result = await engine.update_release(
            "IDEA-1", UpdateReleaseInput(status=ReleaseStatus.IN_PROGRESS), actor="alice"
        )

        assert result.release.status == ReleaseStatus.IN_PROGRESS

    async def test_unknown_release(self, engine):
        with pytest.raises(ReleaseNotFoundError):
            await engine.update_release(
                "IDEA-404", UpdateReleaseInput(status=ReleaseStatus.PLANNED), actor="alice"
            )


# =============================================================================
# TEST: CASCADE NOTIFICATIONS
# =============================================================================


class TestCascadeNotifications:
    """Tests for stakeholder fan-out on status changes."""

    @pytest.fixture
    async def release(self, session, product, make_release, make_feature):
        release = await make_release(session, product, "IDEA-1", status=ReleaseStatus.IN_PROGRESS)
        await make_feature(session, product, "IDEA-10", release, created_by="alice", assigned_to="bob")
        await make_feature(session, product, "IDEA-11", release, created_by="carol", assigned_to="dave")
        await make_feature(session, product, "IDEA-12", release, created_by="erin", assigned_to="alice")
        await make_feature(session, product, "IDEA-13", release, created_by="frank")
        await make_feature(session, product, "IDEA-14", release, created_by="bob", assigned_to="carol")
        return release

    async def test_one_notification_per_stakeholder(self, engine, session, release):
        result = await engine.update_release(
            "IDEA-1", UpdateReleaseInput(status=ReleaseStatus.RELEASED), actor="alice"
        )

        recipients = [n.recipient_user_id for n in result.notifications]
        assert recipients == ["bob", "carol", "dave", "erin", "frank"]
        assert await count_notifications(session) == 5

    async def test_notification_content(self, engine, session, release):
        result = await engine.update_release(
            "IDEA-1",
            UpdateReleaseInput(description="Slipped a week", status=ReleaseStatus.DELAYED),
            actor="alice",
        )

        notification = result.notifications[0]
        assert notification.event_type == NotificationEventType.RELEASE_UPDATED
        assert notification.read is False
        assert notification.link == "/releases/IDEA-1"
        assert notification.event_details == {
            "release_code": "IDEA-1",
            "old_status": "IN_PROGRESS",
            "new_status": "DELAYED",
            "description": "Slipped a week",
            "actor": "alice",
        }

    async def test_actor_only_stakeholder_gets_nothing(
        self, engine, session, product, make_release, make_feature
    ):
        release = await make_release(session, product, "IDEA-2", status=ReleaseStatus.IN_PROGRESS)
        await make_feature(session, product, "IDEA-20", release, created_by="alice", assigned_to="alice")

        result = await engine.update_release(
            "IDEA-2", UpdateReleaseInput(status=ReleaseStatus.CANCELLED), actor="alice"
        )

        assert result.notifications == []
        assert await count_notifications(session) == 0

    async def test_non_cascading_transition_is_silent(self, engine, session, release):
        result = await engine.update_release(
            "IDEA-1", UpdateReleaseInput(status=ReleaseStatus.DELAYED), actor="alice"
        )
        assert len(result.notifications) == 5

        resumed = await engine.update_release(
            "IDEA-1", UpdateReleaseInput(status=ReleaseStatus.IN_PROGRESS), actor="alice"
        )

        assert resumed.notifications == []
        assert await count_notifications(session) == 5

    async def test_same_status_update_is_silent(self, engine, session, product, make_release, make_feature):
        release = await make_release(session, product, "IDEA-3", status=ReleaseStatus.RELEASED)
        await make_feature(session, product, "IDEA-30", release, created_by="bob")

        result = await engine.update_release(
            "IDEA-3", UpdateReleaseInput(status=ReleaseStatus.RELEASED), actor="alice"
        )

        assert result.status_changed is False
        assert result.notifications == []


# =============================================================================
# TEST: DELETE RELEASE
# =============================================================================


class TestDeleteRelease:
    """Tests for DELETE /releases/{code}."""

    async def test_delete_detaches_children_and_features(
        self, engine, session, product, make_release, make_feature
    ):
        parent = await make_release(session, product, "IDEA-1")
        child = await make_release(session, product, "IDEA-1.1")
        child.parent = parent
        feature = await make_feature(session, product, "IDEA-10", parent)
        await session.flush()

        await engine.delete_release("IDEA-1", actor="alice")

        remaining = await session.execute(select(Release.code))
        assert remaining.scalars().all() == ["IDEA-1.1"]

        child_parent = await session.execute(
            select(Release.parent_id).where(Release.id == child.id)
        )
        assert child_parent.scalar_one() is None

        with pytest.raises(ReleaseNotFoundError):
            await engine.get_release("IDEA-1")

        feature_release = await session.execute(
            select(Feature.release_id).where(Feature.id == feature.id)
        )
        assert feature_release.scalar_one() is None
