"""
Usage Events: ingestion with content-hash deduplication, plus usage queries.

Ingestion flow:
1. Validate the payload (unknown action types are rejected and logged)
2. Fingerprint the event with EventHasher
3. DeduplicationGuard looks for the same (user, hash) inside the trailing window
4. Insert inside a SAVEPOINT; a unique-constraint conflict means a concurrent
   request stored the same event first, which counts as deduplicated

Duplicates are reported as success and return the already-stored record.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..core.security import hash_content
from ..models import ActionType, ErrorType, UsageEvent
from .error_log import ErrorLogService
from .exceptions import ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class UsageConfig:
    """Configuration for usage-event ingestion."""

    # Identical events from one user inside this window collapse to one record
    dedup_window: timedelta = timedelta(minutes=5)

    # Length of the stored event fingerprint
    hash_length: int = 16

    @classmethod
    def from_settings(cls, settings) -> "UsageConfig":
        return cls(dedup_window=timedelta(seconds=settings.dedup_window_seconds))


DEFAULT_CONFIG = UsageConfig()


# =============================================================================
# EXCEPTIONS
# =============================================================================


class InvalidUsageEventError(ValidationError):
    """Usage event payload failed validation."""

    def __init__(self, message: str, error_log_id: int | None = None):
        super().__init__(message)
        self.error_log_id = error_log_id


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class UsageEventInput:
    """Raw usage event as submitted by a client or stored in the error log."""
    action_type: str | None
    feature_code: str | None = None
    product_code: str | None = None
    release_code: str | None = None
    context: dict[str, Any] | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    def to_payload(self) -> dict:
        return {
            "action_type": self.action_type,
            "feature_code": self.feature_code,
            "product_code": self.product_code,
            "release_code": self.release_code,
            "context": self.context,
        }

    @classmethod
    def from_payload(cls, data: dict) -> "UsageEventInput":
        return cls(
            action_type=data.get("action_type"),
            feature_code=data.get("feature_code"),
            product_code=data.get("product_code"),
            release_code=data.get("release_code"),
            context=data.get("context"),
        )


@dataclass
class ValidatedUsageEvent:
    """A usage event that passed validation and is ready to record."""
    user_id: str
    action_type: ActionType
    feature_code: str | None
    product_code: str | None
    release_code: str | None
    context: dict[str, Any] | None
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class IngestResult:
    event: UsageEvent
    deduplicated: bool


@dataclass
class UsageStats:
    total_usage: int
    unique_users: int
    unique_features: int
    usage_by_action_type: dict[str, int] = field(default_factory=dict)


@dataclass
class FeatureUsageCount:
    feature_code: str
    usage_count: int
    unique_users: int


# =============================================================================
# HASHING AND DEDUPLICATION
# =============================================================================


class EventHasher:
    """Deterministic fingerprint of a usage event's semantic fields."""

    def __init__(self, length: int = DEFAULT_CONFIG.hash_length):
        self._length = length

    def compute(
        self,
        user_id: str,
        action_type: ActionType,
        feature_code: str | None,
        product_code: str | None,
    ) -> str:
        # JSON array keeps field boundaries and None distinct from "null"
        raw = json.dumps([user_id, feature_code, product_code, action_type.value])
        return hash_content(raw)[: self._length]


class DeduplicationGuard:
    """Decides whether an event repeats one stored inside the trailing window.

    The window is inclusive at ``now - dedup_window``: an event exactly that
    old still counts as a duplicate, anything older does not.
    """

    def __init__(self, session: AsyncSession, config: UsageConfig = DEFAULT_CONFIG):
        self._session = session
        self._config = config

    def bucket_for(self, timestamp: datetime) -> int:
        """Index of the fixed window containing ``timestamp``.

        Two events in the same bucket are always less than one window apart,
        so the (user, hash, bucket) unique constraint can only reject events
        the trailing-window check would also reject.
        """
        window_seconds = int(self._config.dedup_window.total_seconds())
        return int(timestamp.timestamp()) // window_seconds

    async def find_duplicate(
        self,
        user_id: str,
        event_hash: str,
        now: datetime,
    ) -> UsageEvent | None:
        window_start = now - self._config.dedup_window
        result = await self._session.execute(
            select(UsageEvent)
            .where(
                UsageEvent.user_id == user_id,
                UsageEvent.event_hash == event_hash,
                UsageEvent.timestamp >= window_start,
            )
            .order_by(UsageEvent.timestamp.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_in_bucket(
        self,
        user_id: str,
        event_hash: str,
        bucket: int,
    ) -> UsageEvent | None:
        result = await self._session.execute(
            select(UsageEvent).where(
                UsageEvent.user_id == user_id,
                UsageEvent.event_hash == event_hash,
                UsageEvent.dedup_bucket == bucket,
            )
        )
        return result.scalar_one_or_none()


# =============================================================================
# USAGE EVENT SERVICE
# =============================================================================


class UsageEventService:
    """Ingests usage events and answers usage queries."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock = system_clock,
        config: UsageConfig = DEFAULT_CONFIG,
        guard: DeduplicationGuard | None = None,
    ):
        self._session = session
        self._clock = clock
        self._config = config
        self._hasher = EventHasher(config.hash_length)
        self._guard = guard or DeduplicationGuard(session, config)
        self._error_log = ErrorLogService(session, clock)

    # =========================================================================
    # INGESTION
    # =========================================================================

    def validate(self, user_id: str, input: UsageEventInput) -> ValidatedUsageEvent:
        """Check a raw event and resolve its action type.

        Raises InvalidUsageEventError without touching the database.
        """
        if not user_id:
            raise InvalidUsageEventError("User id is required")
        if not input.action_type:
            raise InvalidUsageEventError("Action type is required")
        try:
            action_type = ActionType(input.action_type)
        except ValueError:
            raise InvalidUsageEventError(f"Invalid action type: {input.action_type}")
        if input.context is not None and not isinstance(input.context, dict):
            raise InvalidUsageEventError("Context must be an object")

        return ValidatedUsageEvent(
            user_id=user_id,
            action_type=action_type,
            feature_code=input.feature_code,
            product_code=input.product_code,
            release_code=input.release_code,
            context=input.context,
            ip_address=input.ip_address,
            user_agent=input.user_agent,
        )

    async def ingest(self, user_id: str, input: UsageEventInput) -> IngestResult:
        """
        Validate and record a live usage event.

        Flow:
        1. Validate; on failure write a VALIDATION_ERROR entry to the error log
           (same transaction) and re-raise with the entry id attached
        2. Record through the dedup path
        """
        try:
            validated = self.validate(user_id, input)
        except InvalidUsageEventError as e:
            entry = await self._error_log.log_error(
                error_type=ErrorType.VALIDATION_ERROR,
                message=str(e),
                payload=input.to_payload(),
                user_id=user_id,
                exc=e,
            )
            e.error_log_id = entry.id
            raise

        return await self.record(validated)

    async def record(self, event: ValidatedUsageEvent) -> IngestResult:
        """Store a validated event unless it duplicates one in the window."""
        now = self._clock.now()
        event_hash = self._hasher.compute(
            event.user_id, event.action_type, event.feature_code, event.product_code
        )

        existing = await self._guard.find_duplicate(event.user_id, event_hash, now)
        if existing:
            logger.debug(
                f"Duplicate usage event {event_hash} for user {event.user_id} skipped"
            )
            return IngestResult(event=existing, deduplicated=True)

        bucket = self._guard.bucket_for(now)
        usage_event = UsageEvent(
            user_id=event.user_id,
            action_type=event.action_type,
            feature_code=event.feature_code,
            product_code=event.product_code,
            release_code=event.release_code,
            context=event.context,
            timestamp=now,
            event_hash=event_hash,
            dedup_bucket=bucket,
            ip_address=event.ip_address,
            user_agent=event.user_agent,
        )
        try:
            async with self._session.begin_nested():
                self._session.add(usage_event)
        except IntegrityError:
            # Lost the race against an identical concurrent insert
            existing = await self._guard.find_in_bucket(event.user_id, event_hash, bucket)
            if existing is None:
                raise
            logger.info(
                f"Concurrent duplicate usage event {event_hash} for user {event.user_id}"
            )
            return IngestResult(event=existing, deduplicated=True)

        return IngestResult(event=usage_event, deduplicated=False)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def _filters(
        self,
        user_id: str | None = None,
        feature_code: str | None = None,
        product_code: str | None = None,
        action_type: ActionType | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list:
        filters = []
        if user_id:
            filters.append(UsageEvent.user_id == user_id)
        if feature_code:
            filters.append(UsageEvent.feature_code == feature_code)
        if product_code:
            filters.append(UsageEvent.product_code == product_code)
        if action_type:
            filters.append(UsageEvent.action_type == action_type)
        if start:
            filters.append(UsageEvent.timestamp >= start)
        if end:
            filters.append(UsageEvent.timestamp <= end)
        return filters

    async def get_stats(
        self,
        feature_code: str | None = None,
        product_code: str | None = None,
        action_type: ActionType | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> UsageStats:
        filters = self._filters(
            feature_code=feature_code,
            product_code=product_code,
            action_type=action_type,
            start=start,
            end=end,
        )

        totals = await self._session.execute(
            select(
                func.count(UsageEvent.id),
                func.count(func.distinct(UsageEvent.user_id)),
                func.count(func.distinct(UsageEvent.feature_code)),
            ).where(*filters)
        )
        total_usage, unique_users, unique_features = totals.one()

        by_action = await self._session.execute(
            select(UsageEvent.action_type, func.count().label("count"))
            .where(*filters)
            .group_by(UsageEvent.action_type)
        )

        return UsageStats(
            total_usage=total_usage,
            unique_users=unique_users,
            unique_features=unique_features,
            usage_by_action_type={
                row.action_type.value: row.count for row in by_action.all()
            },
        )

    async def list_events(
        self,
        user_id: str | None = None,
        feature_code: str | None = None,
        product_code: str | None = None,
        action_type: ActionType | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[UsageEvent], int]:
        filters = self._filters(
            user_id, feature_code, product_code, action_type, start, end
        )

        count_result = await self._session.execute(
            select(func.count()).select_from(UsageEvent).where(*filters)
        )
        total = count_result.scalar_one()

        result = await self._session.execute(
            select(UsageEvent)
            .where(*filters)
            .order_by(UsageEvent.timestamp.desc())
            .limit(limit)
            .offset(offset)
        )
        return result.scalars().all(), total

    async def top_features(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 10,
    ) -> list[FeatureUsageCount]:
        usage_count = func.count(UsageEvent.id).label("usage_count")
        result = await self._session.execute(
            select(
                UsageEvent.feature_code,
                usage_count,
                func.count(func.distinct(UsageEvent.user_id)).label("unique_users"),
            )
            .where(
                UsageEvent.feature_code.isnot(None),
                *self._filters(start=start, end=end),
            )
            .group_by(UsageEvent.feature_code)
            .order_by(usage_count.desc(), UsageEvent.feature_code.asc())
            .limit(limit)
        )
        return [
            FeatureUsageCount(
                feature_code=row.feature_code,
                usage_count=row.usage_count,
                unique_users=row.unique_users,
            )
            for row in result.all()
        ]
