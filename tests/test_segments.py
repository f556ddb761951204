"""
Tests for Segment Analytics and Adoption Rate.

These tests verify:
1. SEGMENTS: Predefined and custom segments select events by context tags
2. TAGS: Malformed tag filters are rejected
3. ADOPTION: Windowed usage after release, weighted into one score
"""

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from feature_tracker.models import ActionType, ReleaseStatus, UsageEvent
from feature_tracker.services.adoption import AdoptionRateService, growth, window_rate
from feature_tracker.services.exceptions import FeatureNotFoundError, ValidationError
from feature_tracker.services.segments import (
    PREDEFINED_SEGMENTS,
    SegmentAnalyticsEngine,
    parse_tags,
)


# =============================================================================
# FIXTURES
# =============================================================================


def usage_event(
    user_id: str,
    feature_code: str | None,
    timestamp,
    context: dict | None = None,
    action_type: ActionType = ActionType.FEATURE_VIEWED,
) -> UsageEvent:
    """Build a stored usage event directly, bypassing dedup."""
    return UsageEvent(
        user_id=user_id,
        action_type=action_type,
        feature_code=feature_code,
        context=context,
        timestamp=timestamp,
        event_hash=f"{user_id}:{feature_code}"[:16],
        dedup_bucket=int(timestamp.timestamp()),
    )


@pytest.fixture
async def segment_events(session: AsyncSession, clock):
    now = clock.now()
    session.add_all([
        usage_event("alice", "IDEA-1", now, {"device": "mobile", "userType": "power"}),
        usage_event("alice", "IDEA-2", now - timedelta(minutes=1), {"device": "mobile"}),
        usage_event("bob", "IDEA-1", now - timedelta(minutes=2), {"device": "mobile"}),
        usage_event(
            "bob", None, now - timedelta(minutes=3), {"device": "mobile"}, ActionType.SEARCH
        ),
        usage_event("carol", "IDEA-3", now - timedelta(days=2), {"device": "desktop", "userType": "new"}),
        usage_event("dave", "IDEA-3", now, None),
    ])
    await session.flush()


# =============================================================================
# TEST: SEGMENTS
# =============================================================================


class TestSegmentAnalytics:
    """Tests for GET /usage/segments."""

    async def test_predefined_segment(self, session, segment_events):
        results = await SegmentAnalyticsEngine(session).analyze(["mobile"])

        assert len(results) == 1
        mobile = results[0]
        assert mobile.segment_key == "mobile"
        assert mobile.segment_name == "Mobile Users"
        assert mobile.criteria == {"device": "mobile"}
        assert mobile.total_usage == 4
        assert mobile.unique_users == 2
        assert [(f.feature_code, f.usage_count) for f in mobile.top_features] == [
            ("IDEA-1", 2),
            ("IDEA-2", 1),
        ]
        assert mobile.usage_by_action_type == {"FEATURE_VIEWED": 3, "SEARCH": 1}

    async def test_all_predefined_segments_by_default(self, session, segment_events):
        results = await SegmentAnalyticsEngine(session).analyze()

        assert [r.segment_key for r in results] == list(PREDEFINED_SEGMENTS)
        totals = {r.segment_key: r.total_usage for r in results}
        assert totals == {"mobile": 4, "desktop": 1, "power-users": 1, "new-users": 1}

    async def test_unknown_segment_is_zero(self, session, segment_events):
        results = await SegmentAnalyticsEngine(session).analyze(["tablet"])

        assert results[0].segment_key == "tablet"
        assert results[0].total_usage == 0
        assert results[0].top_features == []

    async def test_empty_segment_skips_breakdowns(self, session):
        results = await SegmentAnalyticsEngine(session).analyze(["desktop"])

        assert results[0].total_usage == 0
        assert results[0].usage_by_action_type == {}

    async def test_date_range(self, session, clock, segment_events):
        results = await SegmentAnalyticsEngine(session).analyze(
            ["desktop"], start=clock.now() - timedelta(days=1), end=clock.now()
        )

        assert results[0].total_usage == 0

    async def test_custom_tags_take_precedence(self, session, segment_events):
        results = await SegmentAnalyticsEngine(session).analyze(
            ["desktop"], tags={"device": "mobile", "userType": "power", "segmentName": "Mobile pros"}
        )

        assert len(results) == 1
        custom = results[0]
        assert custom.segment_key == "custom"
        assert custom.segment_name == "Mobile pros"
        assert custom.criteria == {"device": "mobile", "userType": "power"}
        assert custom.total_usage == 1

    async def test_custom_segment_default_name(self, session, segment_events):
        results = await SegmentAnalyticsEngine(session).analyze(tags={"device": "desktop"})

        assert results[0].segment_name == "Custom Segment"

    async def test_start_after_end(self, session, clock):
        with pytest.raises(ValidationError):
            await SegmentAnalyticsEngine(session).analyze(
                start=clock.now(), end=clock.now() - timedelta(days=1)
            )


class TestParseTags:
    def test_valid_tags(self):
        assert parse_tags('{"device": "mobile"}') == {"device": "mobile"}

    @pytest.mark.parametrize("raw", ["{device", "[]", "{}", '{"count": 3}'])
    def test_malformed_tags(self, raw):
        with pytest.raises(ValidationError) as exc_info:
            parse_tags(raw)
        assert "Malformed tags" in str(exc_info.value)


# =============================================================================
# TEST: ADOPTION RATE
# =============================================================================


class TestAdoptionRate:
    """Tests for GET /usage/adoption-rate/{feature_code}."""

    @pytest.fixture
    async def released_feature(self, session, clock, make_product, make_release, make_feature):
        product = await make_product(session)
        released_at = clock.now() - timedelta(days=100)
        release = await make_release(
            session, product, "IDEA-1", status=ReleaseStatus.RELEASED, released_at=released_at
        )
        await make_feature(session, product, "IDEA-10", release)

        session.add_all([
            # First week: 2 users, 7 events
            *[usage_event("alice", "IDEA-10", released_at + timedelta(days=d)) for d in range(5)],
            usage_event("bob", "IDEA-10", released_at + timedelta(days=1)),
            usage_event("bob", "IDEA-10", released_at + timedelta(days=2)),
            # Later in the first month: a third user
            usage_event("carol", "IDEA-10", released_at + timedelta(days=20)),
            # Before release, never counted
            usage_event("dave", "IDEA-10", released_at - timedelta(days=1)),
        ])
        await session.flush()
        return released_at

    async def test_windows(self, session, released_feature):
        adoption = await AdoptionRateService(session).calculate("IDEA-10")

        assert adoption.release_date == released_feature
        assert sorted(adoption.adoption_windows) == [7, 30, 90]

        week = adoption.adoption_windows[7]
        assert (week.unique_users, week.total_usage) == (2, 7)
        assert week.adoption_rate == pytest.approx(7 / 2 / 7 * 100)
        assert week.growth_rate == 0.0

        month = adoption.adoption_windows[30]
        assert (month.unique_users, month.total_usage) == (3, 8)
        assert month.growth_rate == pytest.approx(50.0)

        assert adoption.total_unique_users == 3
        assert adoption.adoption_growth_rate == pytest.approx(50.0)

    async def test_overall_score_is_weighted(self, session, released_feature):
        adoption = await AdoptionRateService(session).calculate("IDEA-10")
        windows = adoption.adoption_windows

        expected = (
            windows[7].adoption_rate * 0.5
            + windows[30].adoption_rate * 0.3
            + windows[90].adoption_rate * 0.2
        )
        assert adoption.overall_adoption_score == pytest.approx(expected)

    async def test_unknown_feature(self, session):
        with pytest.raises(FeatureNotFoundError):
            await AdoptionRateService(session).calculate("IDEA-404")

    async def test_feature_without_release(self, session, make_product, make_feature):
        product = await make_product(session)
        await make_feature(session, product, "IDEA-20")

        with pytest.raises(ValidationError) as exc_info:
            await AdoptionRateService(session).calculate("IDEA-20")
        assert "no associated release" in str(exc_info.value)

    async def test_release_without_date(self, session, make_product, make_release, make_feature):
        product = await make_product(session)
        release = await make_release(session, product, "IDEA-2")
        await make_feature(session, product, "IDEA-21", release)

        with pytest.raises(ValidationError) as exc_info:
            await AdoptionRateService(session).calculate("IDEA-21")
        assert "no release date" in str(exc_info.value)

    def test_helpers(self):
        assert growth(0, 5) == 0.0
        assert growth(4, 2) == -50.0
        assert window_rate(0, 10, 7) == 0.0
        assert window_rate(1, 100, 7) == 100.0
