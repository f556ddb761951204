"""Pydantic schemas for usage events, notifications and the error log."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from ..models import ActionType, DeliveryStatus, ErrorType, NotificationEventType
from .base import TrackerBaseModel


class UsageEventCreate(BaseModel):
    """Incoming usage event.

    ``action_type`` stays a plain string so unknown values reach the
    service, which records them in the error log.
    """

    action_type: str | None = None
    feature_code: str | None = None
    product_code: str | None = None
    release_code: str | None = None
    context: dict[str, Any] | None = None


class UsageEventResponse(TrackerBaseModel):
    id: UUID
    user_id: str
    action_type: ActionType
    feature_code: str | None = None
    product_code: str | None = None
    release_code: str | None = None
    context: dict[str, Any] | None = None
    timestamp: datetime


class NotificationResponse(TrackerBaseModel):
    id: UUID
    recipient_user_id: str
    event_type: NotificationEventType
    event_details: dict[str, Any]
    link: str | None = None
    read: bool
    read_at: datetime | None = None
    delivery_status: DeliveryStatus
    created_at: datetime


class ErrorLogResponse(TrackerBaseModel):
    id: int
    timestamp: datetime
    error_type: ErrorType
    error_message: str
    stack_trace: str | None = None
    event_payload: str | None = None
    user_id: str | None = None
    resolved: bool


class EmailDeliveryFailureResponse(TrackerBaseModel):
    id: UUID
    notification_id: UUID | None = None
    recipient_email: str
    event_type: str
    error_message: str | None = None
    failed_at: datetime
