"""
Planning History API Routes: who changed which release or feature, and when.

- GET /planning-history - Filtered history across all entities
- GET /releases/{code}/history - History of one release
- GET /features/{code}/history - History of one feature

`sort` takes `<field>,<asc|desc>` with field one of changed_at,
entity_type, entity_code, change_type or changed_by.
"""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from ..core import ClockDep, CurrentUserDep, SessionDep
from ..models import ChangeType, HistoryEntityType
from ..schemas import PaginatedResponse, PaginationParams, TrackerBaseModel
from ..services.exceptions import TrackerError
from ..services.planning_history import DEFAULT_SORT, HistoryFilter, PlanningHistoryService
from .errors import to_http_exception

router = APIRouter(tags=["planning-history"])


class PlanningHistoryResponse(TrackerBaseModel):
    id: int
    entity_type: HistoryEntityType
    entity_id: UUID
    entity_code: str
    change_type: ChangeType
    field_name: str | None = None
    old_value: str | None = None
    new_value: str | None = None
    rationale: str | None = None
    changed_by: str
    changed_at: datetime


def get_history_service(session: SessionDep, clock: ClockDep) -> PlanningHistoryService:
    return PlanningHistoryService(session, clock)


HistoryServiceDep = Annotated[PlanningHistoryService, Depends(get_history_service)]
PaginationDep = Annotated[PaginationParams, Depends()]


def _page(entries, total: int, pagination: PaginationParams) -> PaginatedResponse:
    return PaginatedResponse.create(
        items=[PlanningHistoryResponse.model_validate(e) for e in entries],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


@router.get(
    "/planning-history",
    response_model=PaginatedResponse,
    summary="Query planning history",
)
async def query_planning_history(
    current_user: CurrentUserDep,
    service: HistoryServiceDep,
    pagination: PaginationDep,
    entity_type: HistoryEntityType | None = Query(default=None),
    entity_code: str | None = Query(default=None),
    changed_by: str | None = Query(default=None),
    change_type: ChangeType | None = Query(default=None),
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
    sort: str = Query(default=DEFAULT_SORT),
):
    entries, total = await service.query(
        HistoryFilter(
            entity_type=entity_type,
            entity_code=entity_code,
            changed_by=changed_by,
            change_type=change_type,
            date_from=date_from,
            date_to=date_to,
        ),
        sort=sort,
        limit=pagination.page_size,
        offset=pagination.offset,
    )
    return _page(entries, total, pagination)


@router.get(
    "/releases/{code}/history",
    response_model=PaginatedResponse,
    summary="Release planning history",
)
async def get_release_history(
    code: str,
    current_user: CurrentUserDep,
    service: HistoryServiceDep,
    pagination: PaginationDep,
    sort: str = Query(default=DEFAULT_SORT),
):
    try:
        entries, total = await service.for_release(
            code, sort=sort, limit=pagination.page_size, offset=pagination.offset
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return _page(entries, total, pagination)


@router.get(
    "/features/{code}/history",
    response_model=PaginatedResponse,
    summary="Feature planning history",
)
async def get_feature_history(
    code: str,
    current_user: CurrentUserDep,
    service: HistoryServiceDep,
    pagination: PaginationDep,
    sort: str = Query(default=DEFAULT_SORT),
):
    try:
        entries, total = await service.for_feature(
            code, sort=sort, limit=pagination.page_size, offset=pagination.offset
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return _page(entries, total, pagination)
