"""
Health Metrics: system-wide ingestion health over a time range.

Success and error rates compare stored usage events against error-log
entries in the same range. Data gaps are fixed-size windows whose event
count falls below an activity threshold.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, ensure_utc, system_clock
from ..models import ErrorLog, UsageEvent
from .exceptions import ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class HealthMetricsConfig:
    """Configuration for health metric aggregation."""

    # Range used when the caller gives no start date
    default_range: timedelta = timedelta(days=7)

    # Size of the windows scanned for low activity
    gap_window: timedelta = timedelta(hours=2)

    # A window with fewer events than this is reported as a gap
    gap_min_events: int = 10

    @classmethod
    def from_settings(cls, settings) -> "HealthMetricsConfig":
        return cls(
            gap_window=timedelta(hours=settings.health_gap_window_hours),
            gap_min_events=settings.health_gap_min_events,
        )


DEFAULT_CONFIG = HealthMetricsConfig()


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class DataGap:
    start: datetime
    end: datetime
    event_count: int
    reason: str


@dataclass
class HealthMetrics:
    start_date: datetime
    end_date: datetime
    total_events: int
    failed_events: int
    success_rate: float
    error_rate: float
    errors_by_type: dict[str, int] = field(default_factory=dict)
    data_gaps: list[DataGap] = field(default_factory=list)
    last_event_timestamp: datetime | None = None


# =============================================================================
# AGGREGATOR
# =============================================================================


class HealthMetricsAggregator:
    def __init__(
        self,
        session: AsyncSession,
        clock: Clock = system_clock,
        config: HealthMetricsConfig = DEFAULT_CONFIG,
    ):
        self._session = session
        self._clock = clock
        self._config = config

    def resolve_range(
        self,
        start: datetime | None,
        end: datetime | None,
    ) -> tuple[datetime, datetime]:
        end = ensure_utc(end) or self._clock.now()
        start = ensure_utc(start) or end - self._config.default_range
        if start > end:
            raise ValidationError("Start date must be before end date")
        return start, end

    async def get_health_metrics(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> HealthMetrics:
        """
        Compute health metrics for [start, end].

        Flow:
        1. Default the range to the trailing seven days
        2. Count usage events and error-log entries in range
        3. Derive success and error rates (both 0 when there are no events)
        4. Group errors by type
        5. Bucket event timestamps into windows and report sparse ones
        """
        start, end = self.resolve_range(start, end)

        usage_result = await self._session.execute(
            select(func.count(UsageEvent.id), func.max(UsageEvent.timestamp)).where(
                UsageEvent.timestamp >= start,
                UsageEvent.timestamp <= end,
            )
        )
        total_events, last_event_timestamp = usage_result.one()

        errors_result = await self._session.execute(
            select(ErrorLog.error_type, func.count().label("count"))
            .where(ErrorLog.timestamp >= start, ErrorLog.timestamp <= end)
            .group_by(ErrorLog.error_type)
        )
        errors_by_type = {
            row.error_type.value: row.count for row in errors_result.all()
        }
        failed_events = sum(errors_by_type.values())

        success_rate, error_rate = self.compute_rates(total_events, failed_events)

        data_gaps: list[DataGap] = []
        if total_events:
            data_gaps = await self._find_data_gaps(start, end)

        return HealthMetrics(
            start_date=start,
            end_date=end,
            total_events=total_events,
            failed_events=failed_events,
            success_rate=success_rate,
            error_rate=error_rate,
            errors_by_type=errors_by_type,
            data_gaps=data_gaps,
            last_event_timestamp=last_event_timestamp,
        )

    @staticmethod
    def compute_rates(total_events: int, failed_events: int) -> tuple[float, float]:
        if total_events == 0:
            return 0.0, 0.0
        success = (total_events - failed_events) / total_events * 100
        success = round(min(100.0, max(0.0, success)), 2)
        return success, round(100.0 - success, 2)

    async def _find_data_gaps(self, start: datetime, end: datetime) -> list[DataGap]:
        result = await self._session.execute(
            select(UsageEvent.timestamp).where(
                UsageEvent.timestamp >= start,
                UsageEvent.timestamp <= end,
            )
        )
        window_seconds = self._config.gap_window.total_seconds()
        counts: dict[int, int] = {}
        for timestamp in result.scalars().all():
            index = int((timestamp - start).total_seconds() // window_seconds)
            counts[index] = counts.get(index, 0) + 1

        gaps = []
        index = 0
        window_start = start
        while window_start < end:
            window_end = min(window_start + self._config.gap_window, end)
            event_count = counts.get(index, 0)
            if window_end == end:
                # The closing window also owns events stamped exactly at ``end``
                event_count += sum(c for i, c in counts.items() if i > index)
            if event_count < self._config.gap_min_events:
                gaps.append(DataGap(
                    start=window_start,
                    end=window_end,
                    event_count=event_count,
                    reason=f"Low activity: {event_count} events",
                ))
            index += 1
            window_start = window_end
        return gaps
