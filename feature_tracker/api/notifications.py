"""
Notification API routes.

The inbox endpoints act on the caller's own notifications. The read
tracking pixel is public: it is embedded in notification emails and always
answers with the same transparent GIF.
"""

import base64
import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..core import ClockDep, CurrentUserDep, SessionDep
from ..schemas import NotificationResponse, PaginatedResponse, PaginationParams
from ..services.exceptions import TrackerError
from ..services.notifications import NotificationService
from .errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])

# 1x1 transparent GIF
TRACKING_PIXEL = base64.b64decode(
    "R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7"
)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def get_notification_service(session: SessionDep, clock: ClockDep) -> NotificationService:
    return NotificationService(session, clock)


NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]


@router.get("", response_model=PaginatedResponse, summary="List my notifications")
async def list_notifications(
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
    pagination: Annotated[PaginationParams, Depends()],
):
    notifications, total = await service.list_for_user(
        current_user.username,
        limit=pagination.page_size,
        offset=pagination.offset,
    )
    return PaginatedResponse.create(
        items=[NotificationResponse.model_validate(n) for n in notifications],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


@router.put(
    "/{notification_id}/read",
    response_model=NotificationResponse,
    summary="Mark a notification as read",
)
async def mark_notification_read(
    notification_id: UUID,
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
):
    try:
        notification = await service.mark_read(notification_id, current_user.username)
    except TrackerError as e:
        raise to_http_exception(e)
    return NotificationResponse.model_validate(notification)


@router.put(
    "/{notification_id}/unread",
    response_model=NotificationResponse,
    summary="Mark a notification as unread",
)
async def mark_notification_unread(
    notification_id: UUID,
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
):
    try:
        notification = await service.mark_unread(notification_id, current_user.username)
    except TrackerError as e:
        raise to_http_exception(e)
    return NotificationResponse.model_validate(notification)


@router.get(
    "/{notification_id}/read",
    response_class=Response,
    responses={200: {"content": {"image/gif": {}}}},
    summary="Email read-tracking pixel",
    description="""
    Marks the notification as read the first time it is fetched and
    returns a 1x1 transparent GIF. Repeated fetches change nothing.
    """,
)
async def track_notification_read(notification_id: str, service: NotificationServiceDep):
    try:
        parsed_id = UUID(notification_id)
    except ValueError:
        logger.warning(f"Malformed notification id in tracking pixel: {notification_id}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid notification id: {notification_id}",
        )

    try:
        await service.track_read(parsed_id)
    except TrackerError as e:
        raise to_http_exception(e)

    return Response(
        content=TRACKING_PIXEL,
        media_type="image/gif",
        headers=NO_CACHE_HEADERS,
    )
