"""
Release API Routes: lifecycle management plus per-release analytics.

1. CRUD over releases, including parent/child links
2. PUT /releases/{code} drives the status state machine and its
   notification fan-out
3. GET /releases/{code}/dashboard and /metrics expose release health
4. /releases/{code}/features assigns, moves and removes planned features
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from ..core import ClockDep, CurrentUserDep, SessionDep
from ..models import ReleaseStatus
from ..schemas import (
    FeatureMoveRequest,
    FeaturePlanningUpdate,
    FeatureResponse,
    ReleaseCreate,
    ReleaseFeatureAssign,
    ReleaseResponse,
    ReleaseUpdate,
    TrackerBaseModel,
)
from ..services.catalog import AssignFeatureInput
from ..services.dashboard import (
    DashboardAggregator,
    ReleaseMetricsAggregator,
    RiskLevel,
    TimelineAdherence,
)
from ..services.exceptions import TrackerError
from ..services.release_engine import (
    CreateReleaseInput,
    ReleaseEngine,
    UpdateReleaseInput,
)
from .errors import to_http_exception
from .features import FeatureServiceDep

router = APIRouter(prefix="/releases", tags=["releases"])


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================


class OverviewResponse(TrackerBaseModel):
    total_features: int
    completed_features: int
    in_progress_features: int
    blocked_features: int
    pending_features: int
    completion_percentage: float


class HealthIndicatorsResponse(TrackerBaseModel):
    timeline_adherence: TimelineAdherence
    risk_level: RiskLevel
    blocked_features: int


class TimelineResponse(TrackerBaseModel):
    start_date: datetime | None = None
    planned_end_date: datetime | None = None
    estimated_end_date: datetime | None = None
    actual_end_date: datetime | None = None


class FeatureBreakdownResponse(TrackerBaseModel):
    by_status: dict[str, int]
    by_owner: dict[str, int]


class ReleaseDashboardResponse(TrackerBaseModel):
    release_code: str
    description: str | None = None
    status: ReleaseStatus
    overview: OverviewResponse
    health_indicators: HealthIndicatorsResponse
    timeline: TimelineResponse
    feature_breakdown: FeatureBreakdownResponse


class VelocityResponse(TrackerBaseModel):
    features_per_week: float
    average_cycle_time: float


class BlockedTimeResponse(TrackerBaseModel):
    total_blocked_days: int
    average_blocked_duration: float


class OwnerWorkloadResponse(TrackerBaseModel):
    owner: str
    assigned_features: int
    completed_features: int
    in_progress_features: int
    blocked_features: int
    utilization_rate: float


class WorkloadDistributionResponse(TrackerBaseModel):
    by_owner: list[OwnerWorkloadResponse]


class ReleaseMetricsResponse(TrackerBaseModel):
    release_code: str
    status: ReleaseStatus
    completion_rate: float
    velocity: VelocityResponse
    blocked_time: BlockedTimeResponse
    workload_distribution: WorkloadDistributionResponse


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_release_engine(session: SessionDep, clock: ClockDep) -> ReleaseEngine:
    return ReleaseEngine(session, clock)


def get_dashboard_aggregator(session: SessionDep, clock: ClockDep) -> DashboardAggregator:
    return DashboardAggregator(session, clock)


def get_metrics_aggregator(session: SessionDep, clock: ClockDep) -> ReleaseMetricsAggregator:
    return ReleaseMetricsAggregator(session, clock)


ReleaseEngineDep = Annotated[ReleaseEngine, Depends(get_release_engine)]
DashboardDep = Annotated[DashboardAggregator, Depends(get_dashboard_aggregator)]
MetricsDep = Annotated[ReleaseMetricsAggregator, Depends(get_metrics_aggregator)]


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.get("", response_model=list[ReleaseResponse], summary="List releases")
async def list_releases(
    engine: ReleaseEngineDep,
    product_code: str | None = Query(default=None, description="Filter by product"),
):
    releases = await engine.list_releases(product_code)
    return [ReleaseResponse.from_model(r) for r in releases]


@router.get("/{code}", response_model=ReleaseResponse, summary="Get a release")
async def get_release(code: str, engine: ReleaseEngineDep):
    try:
        release = await engine.get_release(code)
    except TrackerError as e:
        raise to_http_exception(e)
    return ReleaseResponse.from_model(release)


@router.post(
    "",
    response_model=ReleaseResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a release",
    description="""
    Create a release in DRAFT status.

    The code is prefixed with the product prefix unless it already is.
    A parent release must exist and cannot be the release itself.
    """,
)
async def create_release(
    request: ReleaseCreate,
    current_user: CurrentUserDep,
    engine: ReleaseEngineDep,
):
    try:
        release = await engine.create_release(
            CreateReleaseInput(
                product_code=request.product_code,
                code=request.code,
                description=request.description,
                parent_code=request.parent_code,
                released_at=request.released_at,
            ),
            actor=current_user.username,
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return ReleaseResponse.from_model(release)


@router.put(
    "/{code}",
    response_model=ReleaseResponse,
    summary="Update a release",
    description="""
    Update description, status, release date and parent.

    Status changes must follow the release state machine; an illegal
    transition is rejected with 400 and nothing is modified. Moving to
    RELEASED, DELAYED, CANCELLED or COMPLETED notifies every creator and
    assignee of the release's features except the caller.
    """,
)
async def update_release(
    code: str,
    request: ReleaseUpdate,
    current_user: CurrentUserDep,
    engine: ReleaseEngineDep,
):
    try:
        result = await engine.update_release(
            code,
            UpdateReleaseInput(
                description=request.description,
                status=request.status,
                released_at=request.released_at,
                parent_code=request.parent_code,
            ),
            actor=current_user.username,
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return ReleaseResponse.from_model(result.release)


@router.delete(
    "/{code}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a release",
)
async def delete_release(
    code: str,
    current_user: CurrentUserDep,
    engine: ReleaseEngineDep,
):
    try:
        await engine.delete_release(code, actor=current_user.username)
    except TrackerError as e:
        raise to_http_exception(e)


@router.get(
    "/{code}/children",
    response_model=list[ReleaseResponse],
    summary="List child releases",
)
async def list_children(code: str, engine: ReleaseEngineDep):
    try:
        children = await engine.list_children(code)
    except TrackerError as e:
        raise to_http_exception(e)
    return [ReleaseResponse.from_model(r) for r in children]


@router.get(
    "/{code}/features",
    response_model=list[FeatureResponse],
    summary="List features planned for a release",
)
async def list_release_features(code: str, engine: ReleaseEngineDep):
    try:
        features = await engine.list_features(code)
    except TrackerError as e:
        raise to_http_exception(e)
    return [FeatureResponse.from_model(f) for f in features]


@router.post(
    "/{code}/features",
    response_model=FeatureResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Assign a feature to a release",
    description="""
    Plan an unassigned feature into this release. Its planning status
    starts at NOT_STARTED. A feature already in a release is rejected with
    409; use the move endpoint instead.
    """,
)
async def assign_feature(
    code: str,
    request: ReleaseFeatureAssign,
    current_user: CurrentUserDep,
    service: FeatureServiceDep,
):
    try:
        feature = await service.assign_to_release(
            code,
            AssignFeatureInput(
                feature_code=request.feature_code,
                planned_completion_date=request.planned_completion_date,
                feature_owner=request.feature_owner,
                notes=request.notes,
            ),
            actor=current_user.username,
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return FeatureResponse.from_model(feature)


@router.patch(
    "/{code}/features/{feature_code}/planning",
    response_model=FeatureResponse,
    summary="Update planning of a feature in a release",
)
async def update_release_feature_planning(
    code: str,
    feature_code: str,
    request: FeaturePlanningUpdate,
    current_user: CurrentUserDep,
    service: FeatureServiceDep,
):
    try:
        feature = await service.update_release_planning(
            code,
            feature_code,
            request.model_dump(exclude_unset=True),
            actor=current_user.username,
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return FeatureResponse.from_model(feature)


@router.post(
    "/{code}/features/{feature_code}/move",
    response_model=FeatureResponse,
    summary="Move a feature into this release",
    description="""
    Move a feature from its current release (or from no release) into
    `code`. Planning restarts at NOT_STARTED and the rationale is kept in
    the feature notes and its planning history.
    """,
)
async def move_feature(
    code: str,
    feature_code: str,
    request: FeatureMoveRequest,
    current_user: CurrentUserDep,
    service: FeatureServiceDep,
):
    try:
        feature = await service.move_to_release(
            feature_code,
            code,
            actor=current_user.username,
            rationale=request.rationale,
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return FeatureResponse.from_model(feature)


@router.delete(
    "/{code}/features/{feature_code}",
    response_model=FeatureResponse,
    summary="Remove a feature from a release",
)
async def remove_feature(
    code: str,
    feature_code: str,
    current_user: CurrentUserDep,
    service: FeatureServiceDep,
    rationale: str | None = Query(default=None),
):
    try:
        feature = await service.remove_from_release(
            code,
            feature_code,
            actor=current_user.username,
            rationale=rationale,
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return FeatureResponse.from_model(feature)


@router.get(
    "/{code}/dashboard",
    response_model=ReleaseDashboardResponse,
    summary="Release dashboard",
)
async def get_release_dashboard(code: str, aggregator: DashboardDep):
    try:
        dashboard = await aggregator.get_release_dashboard(code)
    except TrackerError as e:
        raise to_http_exception(e)
    return ReleaseDashboardResponse.model_validate(dashboard)


@router.get(
    "/{code}/metrics",
    response_model=ReleaseMetricsResponse,
    summary="Release metrics",
)
async def get_release_metrics(code: str, aggregator: MetricsDep):
    try:
        metrics = await aggregator.get_release_metrics(code)
    except TrackerError as e:
        raise to_http_exception(e)
    return ReleaseMetricsResponse.model_validate(metrics)
