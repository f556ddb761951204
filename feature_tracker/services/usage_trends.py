"""
Usage Trends: usage counts per day, ISO week or calendar month.

Each period carries its usage count, distinct users and growth against the
chronologically previous period. Periods are returned newest first. Events
are bucketed in Python so the same code runs on PostgreSQL and SQLite.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import ensure_utc
from ..models import ActionType, UsageEvent
from .exceptions import ValidationError

logger = logging.getLogger(__name__)

# Growth rate (percent) beyond which a period counts as rising or falling
SIGNIFICANT_CHANGE = 5.0


class PeriodType(str, Enum):
    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"


class TrendDirection(str, Enum):
    INCREASING = "INCREASING"
    DECREASING = "DECREASING"
    STABLE = "STABLE"


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class UsageTrend:
    period: str
    period_type: PeriodType
    period_start: datetime
    period_end: datetime
    usage_count: int
    unique_user_count: int
    growth_rate: float = 0.0


@dataclass
class TrendSummary:
    total_usage: int = 0
    average_usage_per_period: float = 0.0
    overall_growth_rate: float = 0.0
    trend_direction: TrendDirection = TrendDirection.STABLE


@dataclass
class TrendData:
    entity_code: str
    entity_type: str
    period_type: PeriodType
    trends: list[UsageTrend] = field(default_factory=list)
    summary: TrendSummary = field(default_factory=TrendSummary)


def growth_rate(current: int, previous: int) -> float:
    """Percent change from ``previous``; 0 when there is no base to compare."""
    if previous <= 0:
        return 0.0
    return round((current - previous) / previous * 100, 2)


def parse_period_type(value: str) -> PeriodType:
    try:
        return PeriodType(value.upper())
    except ValueError:
        raise ValidationError(
            f"Invalid period type: {value}. Must be one of DAY, WEEK, MONTH"
        )


# =============================================================================
# CALCULATORS
# =============================================================================


class TrendCalculator(ABC):
    """Buckets event timestamps into periods of one length."""

    period_type: PeriodType

    @abstractmethod
    def period_start(self, moment: datetime) -> datetime:
        pass

    @abstractmethod
    def next_period_start(self, start: datetime) -> datetime:
        pass

    @abstractmethod
    def label(self, start: datetime) -> str:
        pass

    def calculate(self, rows: Iterable[tuple[datetime, str]]) -> list[UsageTrend]:
        """Turn ``(timestamp, user_id)`` rows into trends, newest period first."""
        counts: dict[datetime, int] = {}
        users: dict[datetime, set[str]] = {}
        for timestamp, user_id in rows:
            start = self.period_start(ensure_utc(timestamp))
            counts[start] = counts.get(start, 0) + 1
            users.setdefault(start, set()).add(user_id)

        trends = []
        previous = None
        for start in sorted(counts):
            trend = UsageTrend(
                period=self.label(start),
                period_type=self.period_type,
                period_start=start,
                period_end=self.next_period_start(start) - timedelta(microseconds=1),
                usage_count=counts[start],
                unique_user_count=len(users[start]),
            )
            if previous is not None:
                trend.growth_rate = growth_rate(trend.usage_count, previous.usage_count)
            trends.append(trend)
            previous = trend

        trends.reverse()
        return trends


class DailyTrendCalculator(TrendCalculator):
    period_type = PeriodType.DAY

    def period_start(self, moment: datetime) -> datetime:
        return moment.replace(hour=0, minute=0, second=0, microsecond=0)

    def next_period_start(self, start: datetime) -> datetime:
        return start + timedelta(days=1)

    def label(self, start: datetime) -> str:
        return start.strftime("%Y-%m-%d")


class WeeklyTrendCalculator(TrendCalculator):
    """ISO weeks, Monday to Sunday, labelled ``YYYY-Www``."""

    period_type = PeriodType.WEEK

    def period_start(self, moment: datetime) -> datetime:
        day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
        return day - timedelta(days=day.weekday())

    def next_period_start(self, start: datetime) -> datetime:
        return start + timedelta(weeks=1)

    def label(self, start: datetime) -> str:
        year, week, _ = start.isocalendar()
        return f"{year}-W{week:02d}"


class MonthlyTrendCalculator(TrendCalculator):
    period_type = PeriodType.MONTH

    def period_start(self, moment: datetime) -> datetime:
        return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    def next_period_start(self, start: datetime) -> datetime:
        if start.month == 12:
            return start.replace(year=start.year + 1, month=1)
        return start.replace(month=start.month + 1)

    def label(self, start: datetime) -> str:
        return start.strftime("%Y-%m")


CALCULATORS: dict[PeriodType, TrendCalculator] = {
    calculator.period_type: calculator
    for calculator in (
        DailyTrendCalculator(),
        WeeklyTrendCalculator(),
        MonthlyTrendCalculator(),
    )
}


def summarize(trends: list[UsageTrend]) -> TrendSummary:
    """
    Aggregate newest-first trends.

    Overall growth compares the oldest period with the newest. Direction
    follows whichever of rising or falling periods is in the majority.
    """
    if not trends:
        return TrendSummary()

    total = sum(t.usage_count for t in trends)
    summary = TrendSummary(
        total_usage=total,
        average_usage_per_period=round(total / len(trends), 2),
        overall_growth_rate=growth_rate(trends[0].usage_count, trends[-1].usage_count),
    )
    if len(trends) < 2:
        return summary

    rising = sum(1 for t in trends if t.growth_rate > SIGNIFICANT_CHANGE)
    falling = sum(1 for t in trends if t.growth_rate < -SIGNIFICANT_CHANGE)
    if rising > falling:
        summary.trend_direction = TrendDirection.INCREASING
    elif falling > rising:
        summary.trend_direction = TrendDirection.DECREASING
    return summary


# =============================================================================
# SERVICE
# =============================================================================


class UsageTrendsService:
    """Usage trends for a feature, a product or all usage."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def calculate_trends(
        self,
        period_type: PeriodType,
        feature_code: str | None = None,
        product_code: str | None = None,
        action_type: ActionType | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> TrendData:
        start, end = ensure_utc(start), ensure_utc(end)
        if start and end and start > end:
            raise ValidationError("Start date must be before end date")

        query = select(UsageEvent.timestamp, UsageEvent.user_id)
        if feature_code:
            query = query.where(UsageEvent.feature_code == feature_code)
        if product_code:
            query = query.where(UsageEvent.product_code == product_code)
        if action_type:
            query = query.where(UsageEvent.action_type == action_type)
        if start:
            query = query.where(UsageEvent.timestamp >= start)
        if end:
            query = query.where(UsageEvent.timestamp <= end)

        result = await self._session.execute(query)
        trends = CALCULATORS[period_type].calculate(result.all())

        if feature_code:
            entity_code, entity_type = feature_code, "FEATURE"
        elif product_code:
            entity_code, entity_type = product_code, "PRODUCT"
        else:
            entity_code, entity_type = "overall", "OVERALL"

        logger.debug(
            f"Calculated {len(trends)} {period_type.value} periods for {entity_type} {entity_code}"
        )
        return TrendData(
            entity_code=entity_code,
            entity_type=entity_type,
            period_type=period_type,
            trends=trends,
            summary=summarize(trends),
        )
