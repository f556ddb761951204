"""
Usage API Routes: event ingestion and usage analytics.

1. POST /usage - Record a usage event (deduplicated inside a 5 minute window)
2. GET /usage/stats, /usage/events, /usage/top-features - Usage queries
3. GET /usage/adoption-rate/{feature_code} - Post-release adoption
4. GET /usage/trends - Usage per day, week or month
5. GET /usage/segments - Segment analytics (ADMIN or PRODUCT_MANAGER)
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..core import ClockDep, CurrentUserDep, ProductManagerDep, SessionDep, get_settings
from ..models import ActionType
from ..schemas import (
    ErrorResponse,
    PaginatedResponse,
    PaginationParams,
    UsageEventCreate,
    UsageEventResponse,
)
from ..services.adoption import AdoptionRateService
from ..services.exceptions import TrackerError
from ..services.segments import SegmentAnalyticsEngine, parse_tags
from ..services.usage_trends import (
    PeriodType,
    TrendDirection,
    UsageTrendsService,
    parse_period_type,
)
from ..services.usage_events import (
    InvalidUsageEventError,
    UsageConfig,
    UsageEventInput,
    UsageEventService,
)
from .errors import to_http_exception

router = APIRouter(prefix="/usage", tags=["usage"])


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================


class UsageStatsResponse(BaseModel):
    total_usage: int
    unique_users: int
    unique_features: int
    usage_by_action_type: dict[str, int]


class FeatureUsageResponse(BaseModel):
    feature_code: str
    usage_count: int
    unique_users: int


class AdoptionWindowResponse(BaseModel):
    window_days: int
    unique_users: int
    total_usage: int
    adoption_rate: float
    growth_rate: float


class AdoptionRateResponse(BaseModel):
    feature_code: str
    release_date: datetime
    adoption_windows: dict[int, AdoptionWindowResponse]
    overall_adoption_score: float
    total_unique_users: int
    adoption_growth_rate: float


class UsageTrendResponse(BaseModel):
    period: str
    period_type: PeriodType
    period_start: datetime
    period_end: datetime
    usage_count: int
    unique_user_count: int
    growth_rate: float


class TrendSummaryResponse(BaseModel):
    total_usage: int
    average_usage_per_period: float
    overall_growth_rate: float
    trend_direction: TrendDirection


class UsageTrendsResponse(BaseModel):
    entity_code: str
    entity_type: str
    period_type: PeriodType
    trends: list[UsageTrendResponse]
    summary: TrendSummaryResponse


class SegmentFeatureResponse(BaseModel):
    feature_code: str
    usage_count: int


class SegmentAnalyticsResponse(BaseModel):
    segment_key: str
    segment_name: str
    criteria: dict[str, str]
    total_usage: int
    unique_users: int
    top_features: list[SegmentFeatureResponse]
    usage_by_action_type: dict[str, int]


class SegmentDefinitionResponse(BaseModel):
    key: str
    name: str
    description: str
    criteria: dict[str, str]


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_usage_service(session: SessionDep, clock: ClockDep) -> UsageEventService:
    return UsageEventService(session, clock, UsageConfig.from_settings(get_settings()))


def get_adoption_service(session: SessionDep) -> AdoptionRateService:
    return AdoptionRateService(session)


def get_segment_engine(session: SessionDep) -> SegmentAnalyticsEngine:
    return SegmentAnalyticsEngine(session)


def get_trends_service(session: SessionDep) -> UsageTrendsService:
    return UsageTrendsService(session)


UsageServiceDep = Annotated[UsageEventService, Depends(get_usage_service)]
AdoptionServiceDep = Annotated[AdoptionRateService, Depends(get_adoption_service)]
SegmentEngineDep = Annotated[SegmentAnalyticsEngine, Depends(get_segment_engine)]
TrendsServiceDep = Annotated[UsageTrendsService, Depends(get_trends_service)]


# =============================================================================
# INGESTION
# =============================================================================


@router.post(
    "",
    response_model=UsageEventResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
    summary="Record a usage event",
    description="""
    Record a usage event for the calling user.

    An identical event (same user, action, feature and product) recorded
    within the last five minutes is not stored again; the existing event
    is returned instead.

    An invalid event is answered with 400 and kept in the error log so it
    can be reprocessed later.
    """,
)
async def record_usage(
    request: UsageEventCreate,
    http_request: Request,
    current_user: CurrentUserDep,
    service: UsageServiceDep,
):
    input = UsageEventInput(
        action_type=request.action_type,
        feature_code=request.feature_code,
        product_code=request.product_code,
        release_code=request.release_code,
        context=request.context,
        ip_address=http_request.client.host if http_request.client else None,
        user_agent=http_request.headers.get("user-agent"),
    )
    try:
        result = await service.ingest(current_user.username, input)
    except InvalidUsageEventError as e:
        # Returned rather than raised so the error-log entry is committed
        body = ErrorResponse(
            error="validation_error",
            message=str(e),
            error_log_id=e.error_log_id,
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=body.model_dump(mode="json"),
        )

    return UsageEventResponse.model_validate(result.event)


# =============================================================================
# QUERIES
# =============================================================================


@router.get("/stats", response_model=UsageStatsResponse, summary="Usage statistics")
async def get_usage_stats(
    current_user: CurrentUserDep,
    service: UsageServiceDep,
    feature_code: str | None = Query(default=None),
    product_code: str | None = Query(default=None),
    action_type: ActionType | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
):
    stats = await service.get_stats(
        feature_code=feature_code,
        product_code=product_code,
        action_type=action_type,
        start=start_date,
        end=end_date,
    )
    return UsageStatsResponse(
        total_usage=stats.total_usage,
        unique_users=stats.unique_users,
        unique_features=stats.unique_features,
        usage_by_action_type=stats.usage_by_action_type,
    )


@router.get("/events", response_model=PaginatedResponse, summary="List usage events")
async def list_usage_events(
    current_user: CurrentUserDep,
    service: UsageServiceDep,
    pagination: Annotated[PaginationParams, Depends()],
    user_id: str | None = Query(default=None),
    feature_code: str | None = Query(default=None),
    product_code: str | None = Query(default=None),
    action_type: ActionType | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
):
    events, total = await service.list_events(
        user_id=user_id,
        feature_code=feature_code,
        product_code=product_code,
        action_type=action_type,
        start=start_date,
        end=end_date,
        limit=pagination.page_size,
        offset=pagination.offset,
    )
    return PaginatedResponse.create(
        items=[UsageEventResponse.model_validate(e) for e in events],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


@router.get(
    "/top-features",
    response_model=list[FeatureUsageResponse],
    summary="Most used features",
)
async def get_top_features(
    current_user: CurrentUserDep,
    service: UsageServiceDep,
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    limit: int = Query(default=10, ge=1, le=100),
):
    top = await service.top_features(start=start_date, end=end_date, limit=limit)
    return [
        FeatureUsageResponse(
            feature_code=t.feature_code,
            usage_count=t.usage_count,
            unique_users=t.unique_users,
        )
        for t in top
    ]


@router.get(
    "/adoption-rate/{feature_code}",
    response_model=AdoptionRateResponse,
    summary="Feature adoption after release",
)
async def get_adoption_rate(
    feature_code: str,
    current_user: CurrentUserDep,
    service: AdoptionServiceDep,
):
    try:
        adoption = await service.calculate(feature_code)
    except TrackerError as e:
        raise to_http_exception(e)
    return AdoptionRateResponse.model_validate(adoption, from_attributes=True)


@router.get(
    "/trends",
    response_model=UsageTrendsResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Usage trends",
    description="""
    Usage counts grouped by `period_type` (DAY, WEEK or MONTH), newest
    period first. Each period reports distinct users and growth against the
    period before it.

    With `feature_code` the trend is for that feature, otherwise with
    `product_code` for that product, otherwise for all usage.
    """,
)
async def get_usage_trends(
    current_user: CurrentUserDep,
    service: TrendsServiceDep,
    period_type: str = Query(default="DAY"),
    feature_code: str | None = Query(default=None),
    product_code: str | None = Query(default=None),
    action_type: ActionType | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
):
    try:
        trends = await service.calculate_trends(
            parse_period_type(period_type),
            feature_code=feature_code,
            product_code=product_code,
            action_type=action_type,
            start=start_date,
            end=end_date,
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return UsageTrendsResponse.model_validate(trends, from_attributes=True)


# =============================================================================
# SEGMENTS
# =============================================================================


@router.get(
    "/segments",
    response_model=list[SegmentAnalyticsResponse],
    summary="Segment analytics",
    description="""
    Usage aggregates per user segment.

    - `tags`: JSON object of context criteria describing a custom segment;
      when given, only the custom segment is analyzed
    - `segments`: comma-separated predefined segment keys (default: all)

    **Requires ADMIN or PRODUCT_MANAGER role.**
    """,
)
async def get_segment_analytics(
    current_user: ProductManagerDep,
    engine: SegmentEngineDep,
    segments: str | None = Query(default=None, description="e.g. mobile,desktop"),
    tags: str | None = Query(default=None, description='e.g. {"device": "tablet"}'),
    segment_name: str | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
):
    try:
        parsed_tags = parse_tags(tags) if tags else None
        keys = [s.strip() for s in segments.split(",") if s.strip()] if segments else None
        results = await engine.analyze(
            segment_keys=keys,
            tags=parsed_tags,
            segment_name=segment_name,
            start=start_date,
            end=end_date,
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return [
        SegmentAnalyticsResponse.model_validate(r, from_attributes=True)
        for r in results
    ]


@router.get(
    "/segments/predefined",
    response_model=list[SegmentDefinitionResponse],
    summary="Predefined segments",
)
async def list_predefined_segments(current_user: ProductManagerDep):
    return [
        SegmentDefinitionResponse(
            key=s.key,
            name=s.name,
            description=s.description,
            criteria=s.criteria,
        )
        for s in SegmentAnalyticsEngine.predefined_segments()
    ]
