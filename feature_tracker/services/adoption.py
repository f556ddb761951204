"""
Adoption Rate: how quickly users pick up a feature after its release.

Usage is measured in fixed windows starting at the release's released_at.
A window's rate normalizes usage per user per day, where one use per user
per day counts as full adoption.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models import Feature, UsageEvent
from .exceptions import FeatureNotFoundError, ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================


# Window length in days -> weight in the overall score
WINDOW_WEIGHTS: dict[int, float] = {
    7: 0.5,
    30: 0.3,
    90: 0.2,
}


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class AdoptionWindow:
    window_days: int
    unique_users: int
    total_usage: int
    adoption_rate: float
    growth_rate: float = 0.0


@dataclass
class AdoptionRate:
    feature_code: str
    release_date: datetime
    adoption_windows: dict[int, AdoptionWindow] = field(default_factory=dict)
    overall_adoption_score: float = 0.0
    total_unique_users: int = 0
    adoption_growth_rate: float = 0.0


def growth(previous: int, current: int) -> float:
    if previous <= 0:
        return 0.0
    return (current - previous) / previous * 100


def window_rate(unique_users: int, total_usage: int, window_days: int) -> float:
    if unique_users == 0:
        return 0.0
    return min(100.0, total_usage / unique_users / window_days * 100)


# =============================================================================
# SERVICE
# =============================================================================


class AdoptionRateService:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def calculate(self, feature_code: str) -> AdoptionRate:
        """
        Compute windowed adoption metrics for a released feature.

        Flow:
        1. Resolve the feature and its release date (must be released)
        2. Count usage and unique users inside each window after release
        3. Growth per window compares unique users with the previous window
        4. Score is the weighted mean of window rates
        """
        result = await self._session.execute(
            select(Feature)
            .options(selectinload(Feature.release))
            .where(Feature.code == feature_code)
        )
        feature = result.scalar_one_or_none()
        if not feature:
            raise FeatureNotFoundError(f"Feature not found with code: {feature_code}")
        if feature.release is None:
            raise ValidationError(f"Feature {feature_code} has no associated release")

        released_at = feature.release.released_at
        if released_at is None:
            raise ValidationError(
                f"Release {feature.release.code} has no release date. "
                "Cannot calculate adoption rate."
            )

        windows: dict[int, AdoptionWindow] = {}
        previous: AdoptionWindow | None = None
        for days in sorted(WINDOW_WEIGHTS):
            total_usage, unique_users = await self._count_usage(
                feature_code, released_at, released_at + timedelta(days=days)
            )
            window = AdoptionWindow(
                window_days=days,
                unique_users=unique_users,
                total_usage=total_usage,
                adoption_rate=window_rate(unique_users, total_usage, days),
                growth_rate=growth(previous.unique_users, unique_users) if previous else 0.0,
            )
            windows[days] = window
            previous = window

        _, total_unique_users = await self._count_usage(feature_code, released_at)

        score = sum(windows[d].adoption_rate * w for d, w in WINDOW_WEIGHTS.items())
        score /= sum(WINDOW_WEIGHTS.values())

        first, last = min(windows), max(windows)
        adoption = AdoptionRate(
            feature_code=feature_code,
            release_date=released_at,
            adoption_windows=windows,
            overall_adoption_score=score,
            total_unique_users=total_unique_users,
            adoption_growth_rate=growth(windows[first].unique_users, windows[last].unique_users),
        )
        logger.info(
            f"Adoption for {feature_code}: score={score:.2f}, "
            f"users={total_unique_users}, growth={adoption.adoption_growth_rate:.2f}%"
        )
        return adoption

    async def _count_usage(
        self,
        feature_code: str,
        start: datetime,
        end: datetime | None = None,
    ) -> tuple[int, int]:
        filters = [UsageEvent.feature_code == feature_code, UsageEvent.timestamp >= start]
        if end:
            filters.append(UsageEvent.timestamp < end)
        result = await self._session.execute(
            select(
                func.count(UsageEvent.id),
                func.count(func.distinct(UsageEvent.user_id)),
            ).where(*filters)
        )
        total_usage, unique_users = result.one()
        return total_usage, unique_users
