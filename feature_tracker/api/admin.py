"""
Admin API Routes: ingestion health, error log review and replay, and email
delivery diagnostics.

Every endpoint requires the ADMIN role (401 unauthenticated, 403 otherwise).
"""

from datetime import date, datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..core import AdminDep, ClockDep, SessionDep, get_settings
from ..models import ErrorType
from ..schemas import (
    EmailDeliveryFailureResponse,
    ErrorLogResponse,
    PaginatedResponse,
    PaginationParams,
)
from ..services.email_failures import EmailDeliveryFailureService
from ..services.error_log import ErrorLogService
from ..services.exceptions import TrackerError
from ..services.health_metrics import HealthMetricsAggregator, HealthMetricsConfig
from ..services.reprocessing import ReprocessingEngine, ReprocessRequest
from ..services.usage_events import UsageConfig
from .errors import to_http_exception

router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# REQUEST/RESPONSE SCHEMAS
# =============================================================================


class DataGapResponse(BaseModel):
    start: datetime
    end: datetime
    event_count: int
    reason: str


class HealthMetricsResponse(BaseModel):
    start_date: datetime
    end_date: datetime
    total_events: int
    failed_events: int
    success_rate: float
    error_rate: float
    errors_by_type: dict[str, int]
    data_gaps: list[DataGapResponse]
    last_event_timestamp: datetime | None = None


class DateRange(BaseModel):
    start: datetime
    end: datetime


class ReprocessRequestBody(BaseModel):
    """Select error-log entries by id or by date range (ids win)."""
    error_log_ids: list[int] | None = Field(default=None)
    date_range: DateRange | None = None
    dry_run: bool = False


class ReprocessFailureResponse(BaseModel):
    error_log_id: int
    message: str


class ReprocessResponse(BaseModel):
    total_processed: int
    success_count: int
    failed_count: int
    errors: list[ReprocessFailureResponse]


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_health_aggregator(session: SessionDep, clock: ClockDep) -> HealthMetricsAggregator:
    return HealthMetricsAggregator(
        session, clock, HealthMetricsConfig.from_settings(get_settings())
    )


def get_error_log_service(session: SessionDep, clock: ClockDep) -> ErrorLogService:
    return ErrorLogService(session, clock)


def get_reprocessing_engine(session: SessionDep, clock: ClockDep) -> ReprocessingEngine:
    return ReprocessingEngine(session, clock, UsageConfig.from_settings(get_settings()))


def get_email_failure_service(
    session: SessionDep,
    clock: ClockDep,
) -> EmailDeliveryFailureService:
    return EmailDeliveryFailureService(session, clock)


HealthAggregatorDep = Annotated[HealthMetricsAggregator, Depends(get_health_aggregator)]
ErrorLogServiceDep = Annotated[ErrorLogService, Depends(get_error_log_service)]
ReprocessingEngineDep = Annotated[ReprocessingEngine, Depends(get_reprocessing_engine)]
EmailFailureServiceDep = Annotated[
    EmailDeliveryFailureService, Depends(get_email_failure_service)
]


# =============================================================================
# HEALTH
# =============================================================================


@router.get(
    "/health",
    response_model=HealthMetricsResponse,
    summary="Usage ingestion health",
    description="""
    Success and error rates, errors by type and low-activity windows for
    the given range (default: the last seven days).
    """,
)
async def get_health_metrics(
    current_user: AdminDep,
    aggregator: HealthAggregatorDep,
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
):
    try:
        metrics = await aggregator.get_health_metrics(start_date, end_date)
    except TrackerError as e:
        raise to_http_exception(e)
    return HealthMetricsResponse.model_validate(metrics, from_attributes=True)


# =============================================================================
# ERROR LOG
# =============================================================================


@router.get("/errors", response_model=PaginatedResponse, summary="List error log entries")
async def list_errors(
    current_user: AdminDep,
    service: ErrorLogServiceDep,
    pagination: Annotated[PaginationParams, Depends()],
    error_type: ErrorType | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
):
    entries, total = await service.list_errors(
        error_type=error_type,
        start=start_date,
        end=end_date,
        limit=pagination.page_size,
        offset=pagination.offset,
    )
    return PaginatedResponse.create(
        items=[ErrorLogResponse.model_validate(e) for e in entries],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


@router.get("/errors/{error_id}", response_model=ErrorLogResponse, summary="Get an error log entry")
async def get_error(
    error_id: int,
    current_user: AdminDep,
    service: ErrorLogServiceDep,
):
    try:
        entry = await service.get_error(error_id)
    except TrackerError as e:
        raise to_http_exception(e)
    return ErrorLogResponse.model_validate(entry)


@router.post(
    "/reprocess",
    response_model=ReprocessResponse,
    summary="Replay failed usage events",
    description="""
    Re-validate and record usage events stored in the error log.

    - `error_log_ids`: explicit entries (attempted even if already resolved)
    - `date_range`: unresolved entries logged inside the range
    - `dry_run`: validate only, write nothing

    Per-entry failures are reported in `errors` and leave the entry unresolved.
    """,
)
async def reprocess_errors(
    request: ReprocessRequestBody,
    current_user: AdminDep,
    engine: ReprocessingEngineDep,
):
    try:
        result = await engine.reprocess(
            ReprocessRequest(
                error_log_ids=request.error_log_ids,
                start=request.date_range.start if request.date_range else None,
                end=request.date_range.end if request.date_range else None,
                dry_run=request.dry_run,
            )
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return ReprocessResponse.model_validate(result, from_attributes=True)


# =============================================================================
# EMAIL DELIVERY FAILURES
# =============================================================================


@router.get(
    "/email-failures",
    response_model=PaginatedResponse,
    summary="List email delivery failures",
)
async def list_email_failures(
    current_user: AdminDep,
    service: EmailFailureServiceDep,
    pagination: Annotated[PaginationParams, Depends()],
    date_filter: str | None = Query(
        default=None,
        alias="date",
        description="UTC day in YYYY-MM-DD format",
    ),
):
    day = None
    if date_filter:
        try:
            day = date.fromisoformat(date_filter)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid date format: {date_filter}. Expected YYYY-MM-DD",
            )

    failures, total = await service.list_failures(
        day=day,
        limit=pagination.page_size,
        offset=pagination.offset,
    )
    return PaginatedResponse.create(
        items=[EmailDeliveryFailureResponse.model_validate(f) for f in failures],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


@router.get(
    "/email-failures/notification/{notification_id}",
    response_model=list[EmailDeliveryFailureResponse],
    summary="Email delivery failures for a notification",
)
async def list_email_failures_for_notification(
    notification_id: UUID,
    current_user: AdminDep,
    service: EmailFailureServiceDep,
):
    failures = await service.list_by_notification(notification_id)
    return [EmailDeliveryFailureResponse.model_validate(f) for f in failures]


@router.get(
    "/email-failures/{failure_id}",
    response_model=EmailDeliveryFailureResponse,
    summary="Get an email delivery failure",
)
async def get_email_failure(
    failure_id: UUID,
    current_user: AdminDep,
    service: EmailFailureServiceDep,
):
    try:
        failure = await service.get_failure(failure_id)
    except TrackerError as e:
        raise to_http_exception(e)
    return EmailDeliveryFailureResponse.model_validate(failure)
