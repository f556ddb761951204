"""
Release Dashboard and Release Metrics aggregation.

Both aggregators read the features of one release in a single query and
derive every figure from that snapshot:
- Dashboard: status overview, health indicators, timeline, breakdowns
- Metrics: completion rate, velocity, blocked time, owner workload

Feature status buckets: RELEASED = completed, IN_PROGRESS = in progress,
ON_HOLD = blocked, NEW = pending.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..models import Feature, FeatureStatus, Release, ReleaseStatus
from .exceptions import ReleaseNotFoundError


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class DashboardConfig:
    """Thresholds for release health indicators."""

    # Blocked-feature ratios above these raise the risk level
    risk_medium_ratio: float = 0.1
    risk_high_ratio: float = 0.3
    risk_critical_ratio: float = 0.5

    # Overdue-feature ratio above this makes the timeline CRITICAL
    timeline_critical_ratio: float = 0.5

    # Expected release duration when features carry no planning dates
    estimate_horizon: timedelta = timedelta(days=90)


DEFAULT_CONFIG = DashboardConfig()


class TimelineAdherence(str, Enum):
    ON_SCHEDULE = "ON_SCHEDULE"
    DELAYED = "DELAYED"
    CRITICAL = "CRITICAL"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class Overview:
    total_features: int
    completed_features: int
    in_progress_features: int
    blocked_features: int
    pending_features: int
    completion_percentage: float


@dataclass
class HealthIndicators:
    timeline_adherence: TimelineAdherence
    risk_level: RiskLevel
    blocked_features: int


@dataclass
class Timeline:
    start_date: datetime | None
    planned_end_date: datetime | None
    estimated_end_date: datetime | None
    actual_end_date: datetime | None


@dataclass
class FeatureBreakdown:
    by_status: dict[str, int]
    by_owner: dict[str, int]


@dataclass
class ReleaseDashboard:
    release_code: str
    description: str | None
    status: ReleaseStatus
    overview: Overview
    health_indicators: HealthIndicators
    timeline: Timeline
    feature_breakdown: FeatureBreakdown


@dataclass
class Velocity:
    features_per_week: float
    average_cycle_time: float


@dataclass
class BlockedTime:
    total_blocked_days: int
    average_blocked_duration: float


@dataclass
class OwnerWorkload:
    owner: str
    assigned_features: int
    completed_features: int
    in_progress_features: int
    blocked_features: int
    utilization_rate: float


@dataclass
class WorkloadDistribution:
    by_owner: list[OwnerWorkload] = field(default_factory=list)


@dataclass
class ReleaseMetrics:
    release_code: str
    status: ReleaseStatus
    completion_rate: float
    velocity: Velocity
    blocked_time: BlockedTime
    workload_distribution: WorkloadDistribution


# =============================================================================
# SHARED HELPERS
# =============================================================================


def count_status(features: Sequence[Feature], status: FeatureStatus) -> int:
    return sum(1 for f in features if f.status == status)


def completion_rate(features: Sequence[Feature]) -> float:
    if not features:
        return 0.0
    return count_status(features, FeatureStatus.RELEASED) / len(features) * 100


async def load_release_features(
    session: AsyncSession,
    release_code: str,
) -> tuple[Release, Sequence[Feature]]:
    result = await session.execute(select(Release).where(Release.code == release_code))
    release = result.scalar_one_or_none()
    if not release:
        raise ReleaseNotFoundError(f"Release not found with code: {release_code}")

    features_result = await session.execute(
        select(Feature).where(Feature.release_id == release.id).order_by(Feature.code)
    )
    return release, features_result.scalars().all()


# =============================================================================
# DASHBOARD AGGREGATOR
# =============================================================================


class DashboardAggregator:
    def __init__(
        self,
        session: AsyncSession,
        clock: Clock = system_clock,
        config: DashboardConfig = DEFAULT_CONFIG,
    ):
        self._session = session
        self._clock = clock
        self._config = config

    async def get_release_dashboard(self, release_code: str) -> ReleaseDashboard:
        release, features = await load_release_features(self._session, release_code)
        now = self._clock.now()

        return ReleaseDashboard(
            release_code=release.code,
            description=release.description,
            status=release.status,
            overview=self.build_overview(features),
            health_indicators=self.build_health_indicators(release, features, now),
            timeline=self.build_timeline(release, features),
            feature_breakdown=self.build_feature_breakdown(features),
        )

    def build_overview(self, features: Sequence[Feature]) -> Overview:
        return Overview(
            total_features=len(features),
            completed_features=count_status(features, FeatureStatus.RELEASED),
            in_progress_features=count_status(features, FeatureStatus.IN_PROGRESS),
            blocked_features=count_status(features, FeatureStatus.ON_HOLD),
            pending_features=count_status(features, FeatureStatus.NEW),
            completion_percentage=completion_rate(features),
        )

    def build_health_indicators(
        self,
        release: Release,
        features: Sequence[Feature],
        now: datetime,
    ) -> HealthIndicators:
        blocked = count_status(features, FeatureStatus.ON_HOLD)
        return HealthIndicators(
            timeline_adherence=self.timeline_adherence(release, features, now),
            risk_level=self.risk_level(blocked, len(features)),
            blocked_features=blocked,
        )

    def risk_level(self, blocked: int, total: int) -> RiskLevel:
        ratio = blocked / total if total else 0.0
        if ratio > self._config.risk_critical_ratio:
            return RiskLevel.CRITICAL
        if ratio > self._config.risk_high_ratio:
            return RiskLevel.HIGH
        if ratio > self._config.risk_medium_ratio:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def timeline_adherence(
        self,
        release: Release,
        features: Sequence[Feature],
        now: datetime,
    ) -> TimelineAdherence:
        overdue = sum(
            1
            for f in features
            if f.status != FeatureStatus.RELEASED
            and f.planned_completion_date is not None
            and f.planned_completion_date < now
        )
        if features and overdue / len(features) > self._config.timeline_critical_ratio:
            return TimelineAdherence.CRITICAL
        if overdue or release.status == ReleaseStatus.DELAYED:
            return TimelineAdherence.DELAYED
        if (
            release.released_at is not None
            and now - release.created_at > self._config.estimate_horizon
        ):
            return TimelineAdherence.DELAYED
        return TimelineAdherence.ON_SCHEDULE

    def build_timeline(self, release: Release, features: Sequence[Feature]) -> Timeline:
        planned_dates = [
            f.planned_completion_date for f in features if f.planned_completion_date
        ]
        expected_dates = [
            f.actual_completion_date or f.planned_completion_date
            for f in features
            if f.actual_completion_date or f.planned_completion_date
        ]

        planned_end = max(planned_dates) if planned_dates else release.released_at
        if expected_dates:
            estimated_end = max(expected_dates)
        elif release.created_at:
            estimated_end = release.created_at + self._config.estimate_horizon
        else:
            estimated_end = None
        actual_end = (
            release.released_at
            if release.status in (ReleaseStatus.RELEASED, ReleaseStatus.COMPLETED)
            else None
        )

        return Timeline(
            start_date=release.created_at,
            planned_end_date=planned_end,
            estimated_end_date=estimated_end,
            actual_end_date=actual_end,
        )

    def build_feature_breakdown(self, features: Sequence[Feature]) -> FeatureBreakdown:
        by_status: dict[str, int] = {}
        by_owner: dict[str, int] = {}
        for feature in features:
            by_status[feature.status.value] = by_status.get(feature.status.value, 0) + 1
            if feature.assigned_to:
                by_owner[feature.assigned_to] = by_owner.get(feature.assigned_to, 0) + 1
        return FeatureBreakdown(by_status=by_status, by_owner=by_owner)


# =============================================================================
# RELEASE METRICS AGGREGATOR
# =============================================================================


class ReleaseMetricsAggregator:
    def __init__(self, session: AsyncSession, clock: Clock = system_clock):
        self._session = session
        self._clock = clock

    async def get_release_metrics(self, release_code: str) -> ReleaseMetrics:
        release, features = await load_release_features(self._session, release_code)
        now = self._clock.now()

        return ReleaseMetrics(
            release_code=release.code,
            status=release.status,
            completion_rate=completion_rate(features),
            velocity=self.velocity(release, features, now),
            blocked_time=self.blocked_time(features, now),
            workload_distribution=self.workload_distribution(features),
        )

    def velocity(
        self,
        release: Release,
        features: Sequence[Feature],
        now: datetime,
    ) -> Velocity:
        completed = [f for f in features if f.status == FeatureStatus.RELEASED]
        if not completed:
            return Velocity(features_per_week=0.0, average_cycle_time=0.0)

        days_since_start = (now - release.created_at).days
        weeks = max(1.0, days_since_start / 7)

        cycle_days = [
            ((f.actual_completion_date or f.updated_at or f.created_at) - f.created_at).days
            for f in completed
        ]
        return Velocity(
            features_per_week=len(completed) / weeks,
            average_cycle_time=sum(cycle_days) / len(cycle_days),
        )

    def blocked_time(self, features: Sequence[Feature], now: datetime) -> BlockedTime:
        blocked = [f for f in features if f.status == FeatureStatus.ON_HOLD]
        if not blocked:
            return BlockedTime(total_blocked_days=0, average_blocked_duration=0.0)

        total_days = sum(
            (now - (f.updated_at or f.created_at)).days for f in blocked
        )
        return BlockedTime(
            total_blocked_days=total_days,
            average_blocked_duration=total_days / len(blocked),
        )

    def workload_distribution(self, features: Sequence[Feature]) -> WorkloadDistribution:
        by_owner: dict[str, list[Feature]] = {}
        for feature in features:
            if feature.assigned_to:
                by_owner.setdefault(feature.assigned_to, []).append(feature)

        workloads = []
        for owner in sorted(by_owner):
            owned = by_owner[owner]
            assigned = len(owned)
            blocked = count_status(owned, FeatureStatus.ON_HOLD)
            workloads.append(OwnerWorkload(
                owner=owner,
                assigned_features=assigned,
                completed_features=count_status(owned, FeatureStatus.RELEASED),
                in_progress_features=count_status(owned, FeatureStatus.IN_PROGRESS),
                blocked_features=blocked,
                utilization_rate=round((assigned - blocked) / assigned * 100, 2),
            ))
        return WorkloadDistribution(by_owner=workloads)
