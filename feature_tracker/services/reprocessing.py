"""
Reprocessing Engine: replays failed usage events from the error log.

Entries are selected either by explicit id (resolved or not) or by a date
range (unresolved only). Each payload is validated again and, outside dry
run, recorded through the same dedup path as live ingestion before the
entry is marked resolved. Per-entry failures never abort the batch.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, ensure_utc, system_clock
from ..models import ErrorLog
from .error_log import ErrorLogService
from .exceptions import ValidationError
from .usage_events import (
    DEFAULT_CONFIG,
    UsageConfig,
    UsageEventInput,
    UsageEventService,
)

logger = logging.getLogger(__name__)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class ReprocessRequest:
    error_log_ids: list[int] | None = None
    start: datetime | None = None
    end: datetime | None = None
    dry_run: bool = False


@dataclass
class ReprocessFailure:
    error_log_id: int
    message: str


@dataclass
class ReprocessResult:
    total_processed: int = 0
    success_count: int = 0
    failed_count: int = 0
    errors: list[ReprocessFailure] = field(default_factory=list)

    def fail(self, error_log_id: int, message: str) -> None:
        self.failed_count += 1
        self.errors.append(ReprocessFailure(error_log_id=error_log_id, message=message))


class PayloadError(Exception):
    """Stored payload cannot be turned back into a usage event."""
    pass


# =============================================================================
# ENGINE
# =============================================================================


class ReprocessingEngine:
    def __init__(
        self,
        session: AsyncSession,
        clock: Clock = system_clock,
        usage_config: UsageConfig = DEFAULT_CONFIG,
    ):
        self._session = session
        self._clock = clock
        self._error_log = ErrorLogService(session, clock)
        self._usage = UsageEventService(session, clock, usage_config)

    async def reprocess(self, request: ReprocessRequest) -> ReprocessResult:
        """
        Replay the selected error-log entries.

        Flow:
        1. Select entries by id when ids are given, else by date range
        2. For each entry, parse and validate its stored payload
        3. Unless dry run, record the event and mark the entry resolved
        4. Collect failures per entry, leaving those entries untouched
        """
        result = ReprocessResult()

        if request.error_log_ids:
            found = await self._error_log.get_by_ids(request.error_log_ids)
            entries: list[ErrorLog] = []
            for error_id in dict.fromkeys(request.error_log_ids):
                entry = found.get(error_id)
                if entry is None:
                    result.total_processed += 1
                    result.fail(error_id, f"Error log not found with id: {error_id}")
                    continue
                entries.append(entry)
        elif request.start and request.end:
            start, end = ensure_utc(request.start), ensure_utc(request.end)
            if start > end:
                raise ValidationError("Start date must be before end date")
            entries = list(await self._error_log.list_unresolved_between(start, end))
        else:
            raise ValidationError("Either error_log_ids or date_range is required")

        for entry in entries:
            result.total_processed += 1
            try:
                await self._reprocess_entry(entry, request.dry_run)
            except (PayloadError, ValidationError) as e:
                logger.warning(f"Reprocessing of error log {entry.id} failed: {e}")
                result.fail(entry.id, str(e))
                continue
            result.success_count += 1

        logger.info(
            f"Reprocessed {result.total_processed} error log entries "
            f"({result.success_count} succeeded, {result.failed_count} failed"
            f"{', dry run' if request.dry_run else ''})"
        )
        return result

    async def _reprocess_entry(self, entry: ErrorLog, dry_run: bool) -> None:
        input = self.parse_payload(entry.event_payload)
        validated = self._usage.validate(entry.user_id or "", input)
        if dry_run:
            return

        await self._usage.record(validated)
        await self._error_log.mark_resolved(entry)

    @staticmethod
    def parse_payload(raw: str | None) -> UsageEventInput:
        if not raw:
            raise PayloadError("Error log entry has no event payload")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise PayloadError(f"Event payload is not valid JSON: {e.msg}")
        if not isinstance(data, dict):
            raise PayloadError("Event payload is not a JSON object")
        return UsageEventInput.from_payload(data)
