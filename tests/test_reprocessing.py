"""
Tests for error-log Reprocessing.

These tests verify:
1. DRY RUN: Entries are validated but nothing is written
2. REPLAY: Valid entries become usage events and are marked resolved
3. SELECTION: Explicit ids win over the date range; missing ids are failures
4. FAILURES: Broken payloads are reported and leave the entry unresolved
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from feature_tracker.models import ErrorLog, ErrorType, UsageEvent
from feature_tracker.services.error_log import ErrorLogService
from feature_tracker.services.exceptions import ValidationError
from feature_tracker.services.reprocessing import (
    PayloadError,
    ReprocessingEngine,
    ReprocessRequest,
)


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def engine(session: AsyncSession, clock) -> ReprocessingEngine:
    return ReprocessingEngine(session, clock)


@pytest.fixture
async def entries(session: AsyncSession, clock) -> dict[str, ErrorLog]:
    """A replayable entry, an invalid one and an already resolved one."""
    log = ErrorLogService(session, clock)
    replayable = await log.log_error(
        ErrorType.DATABASE_ERROR,
        "connection reset",
        {"action_type": "FEATURE_VIEWED", "feature_code": "IDEA-1", "product_code": "intellij"},
        user_id="alice",
    )
    invalid = await log.log_error(
        ErrorType.VALIDATION_ERROR,
        "Invalid action type: FEATURE_LIKED",
        {"action_type": "FEATURE_LIKED"},
        user_id="bob",
    )
    resolved = await log.log_error(
        ErrorType.PROCESSING_ERROR,
        "timeout",
        {"action_type": "SEARCH"},
        user_id="carol",
    )
    await log.mark_resolved(resolved)
    return {"replayable": replayable, "invalid": invalid, "resolved": resolved}


async def count_events(session: AsyncSession) -> int:
    result = await session.execute(select(func.count()).select_from(UsageEvent))
    return result.scalar_one()


# =============================================================================
# TEST: REPROCESS
# =============================================================================


class TestReprocess:
    """Tests for POST /admin/reprocess."""

    async def test_dry_run_writes_nothing(self, engine, session, entries):
        result = await engine.reprocess(ReprocessRequest(
            error_log_ids=[entries["replayable"].id, entries["invalid"].id],
            dry_run=True,
        ))

        assert result.total_processed == 2
        assert result.success_count == 1
        assert result.failed_count == 1
        assert await count_events(session) == 0
        assert entries["replayable"].resolved is False

    async def test_replay_records_event_and_resolves(self, engine, session, entries):
        result = await engine.reprocess(ReprocessRequest(error_log_ids=[entries["replayable"].id]))

        assert result.success_count == 1
        assert result.errors == []
        assert entries["replayable"].resolved is True

        stored = (await session.execute(select(UsageEvent))).scalar_one()
        assert stored.user_id == "alice"
        assert stored.feature_code == "IDEA-1"

    async def test_invalid_payload_is_reported(self, engine, entries):
        result = await engine.reprocess(ReprocessRequest(error_log_ids=[entries["invalid"].id]))

        assert result.failed_count == 1
        assert result.errors[0].error_log_id == entries["invalid"].id
        assert "FEATURE_LIKED" in result.errors[0].message
        assert entries["invalid"].resolved is False

    async def test_missing_id_is_a_failure(self, engine, entries):
        result = await engine.reprocess(
            ReprocessRequest(error_log_ids=[entries["replayable"].id, 9999])
        )

        assert result.total_processed == 2
        assert result.success_count == 1
        assert result.failed_count == 1
        assert result.errors[0].error_log_id == 9999
        assert result.errors[0].message == "Error log not found with id: 9999"

    async def test_duplicate_ids_processed_once(self, engine, entries):
        replayable = entries["replayable"].id

        result = await engine.reprocess(ReprocessRequest(error_log_ids=[replayable, replayable]))

        assert result.total_processed == 1

    async def test_explicit_ids_include_resolved_entries(self, engine, entries):
        result = await engine.reprocess(ReprocessRequest(error_log_ids=[entries["resolved"].id]))

        assert result.success_count == 1

    async def test_date_range_skips_resolved(self, engine, clock, entries):
        result = await engine.reprocess(ReprocessRequest(
            start=clock.now() - timedelta(hours=1),
            end=clock.now() + timedelta(hours=1),
        ))

        assert result.total_processed == 2
        assert result.success_count == 1
        assert [e.error_log_id for e in result.errors] == [entries["invalid"].id]

    async def test_ids_win_over_date_range(self, engine, clock, entries):
        result = await engine.reprocess(ReprocessRequest(
            error_log_ids=[entries["invalid"].id],
            start=clock.now() - timedelta(hours=1),
            end=clock.now() + timedelta(hours=1),
        ))

        assert result.total_processed == 1
        assert result.success_count == 0

    async def test_selection_required(self, engine):
        with pytest.raises(ValidationError):
            await engine.reprocess(ReprocessRequest())

    async def test_start_after_end(self, engine, clock):
        with pytest.raises(ValidationError):
            await engine.reprocess(ReprocessRequest(
                start=clock.now(), end=clock.now() - timedelta(days=1)
            ))

    async def test_replayed_event_is_deduplicated(self, engine, session, entries):
        await engine.reprocess(ReprocessRequest(error_log_ids=[entries["replayable"].id]))
        await engine.reprocess(ReprocessRequest(error_log_ids=[entries["replayable"].id]))

        assert await count_events(session) == 1


class TestParsePayload:
    @pytest.mark.parametrize("raw", [None, "", "{not json", "[1, 2]"])
    def test_broken_payloads(self, raw):
        with pytest.raises(PayloadError):
            ReprocessingEngine.parse_payload(raw)

    def test_valid_payload(self):
        input = ReprocessingEngine.parse_payload('{"action_type": "SEARCH", "context": {"q": "x"}}')

        assert input.action_type == "SEARCH"
        assert input.context == {"q": "x"}
