"""
Email Delivery Failures: diagnostics for notification emails that could not
be sent, recorded by notifiers and listed for admin review.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..models import EmailDeliveryFailure
from .exceptions import NotFoundError

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 4000


class EmailDeliveryFailureNotFoundError(NotFoundError):
    """Email delivery failure record does not exist."""
    pass


def normalize_error_message(message: str | None) -> str:
    if not message or not message.strip():
        return "Unknown error"
    return message[:MAX_ERROR_MESSAGE_LENGTH]


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """UTC [start, end) of a calendar day."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class EmailDeliveryFailureService:
    def __init__(self, session: AsyncSession, clock: Clock = system_clock):
        self._session = session
        self._clock = clock

    async def record_failure(
        self,
        recipient_email: str,
        event_type: str,
        error_message: str | None,
        notification_id: UUID | None = None,
    ) -> EmailDeliveryFailure | None:
        """
        Record a failed delivery inside a SAVEPOINT.

        A failure to store the record is logged and never propagates, so the
        notification flow that reported it carries on.
        """
        failure = EmailDeliveryFailure(
            notification_id=notification_id,
            recipient_email=recipient_email,
            event_type=event_type,
            error_message=normalize_error_message(error_message),
            failed_at=self._clock.now(),
        )
        try:
            async with self._session.begin_nested():
                self._session.add(failure)
        except SQLAlchemyError as e:
            logger.warning(
                f"Failed to record email delivery failure for notification "
                f"{notification_id} to {recipient_email}: {e}"
            )
            return None

        logger.debug(
            f"Recorded email delivery failure for notification {notification_id} "
            f"to {recipient_email}"
        )
        return failure

    async def list_failures(
        self,
        day: date | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[EmailDeliveryFailure], int]:
        """List failures newest first, optionally limited to one UTC day."""
        filters = []
        if day:
            start, end = day_bounds(day)
            filters.extend([
                EmailDeliveryFailure.failed_at >= start,
                EmailDeliveryFailure.failed_at < end,
            ])

        count_result = await self._session.execute(
            select(func.count()).select_from(EmailDeliveryFailure).where(*filters)
        )
        total = count_result.scalar_one()

        result = await self._session.execute(
            select(EmailDeliveryFailure)
            .where(*filters)
            .order_by(EmailDeliveryFailure.failed_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return result.scalars().all(), total

    async def get_failure(self, failure_id: UUID) -> EmailDeliveryFailure:
        failure = await self._session.get(EmailDeliveryFailure, failure_id)
        if not failure:
            raise EmailDeliveryFailureNotFoundError(
                f"Email delivery failure not found with id: {failure_id}"
            )
        return failure

    async def list_by_notification(
        self,
        notification_id: UUID,
    ) -> Sequence[EmailDeliveryFailure]:
        result = await self._session.execute(
            select(EmailDeliveryFailure)
            .where(EmailDeliveryFailure.notification_id == notification_id)
            .order_by(EmailDeliveryFailure.failed_at.desc())
        )
        return result.scalars().all()
