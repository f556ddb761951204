"""
Notifications: cascade fan-out for release transitions and per-user inbox.

Fan-out rules:
- Recipients are everyone who created or is assigned to a feature of the release
- Each recipient gets exactly one notification per transition
- The actor who made the change never notifies themselves
"""

import logging
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..models import (
    DeliveryStatus,
    Feature,
    Notification,
    NotificationEventType,
    Release,
    ReleaseStatus,
)
from .exceptions import NotFoundError

logger = logging.getLogger(__name__)


class NotificationNotFoundError(NotFoundError):
    """Notification does not exist or belongs to another user."""
    pass


class NotificationFanoutEngine:
    """Emits one RELEASE_UPDATED notification per stakeholder of a release."""

    def __init__(self, session: AsyncSession, clock: Clock = system_clock):
        self._session = session
        self._clock = clock

    async def collect_recipients(self, release: Release, actor: str) -> set[str]:
        result = await self._session.execute(
            select(Feature.created_by, Feature.assigned_to).where(
                Feature.release_id == release.id
            )
        )
        return {
            identity
            for row in result.all()
            for identity in row
            if identity
        } - {actor}

    async def fan_out_release_update(
        self,
        release: Release,
        previous_status: ReleaseStatus,
        new_status: ReleaseStatus,
        actor: str,
    ) -> list[Notification]:
        """
        Notify the stakeholders of a release about a status transition.

        Flow:
        1. Gather creators and assignees of the release's features as a set
        2. Drop the actor
        3. Insert one notification per remaining identity in a single flush
        """
        recipients = await self.collect_recipients(release, actor)
        if not recipients:
            logger.info(f"No recipients for release {release.code} status change")
            return []

        details = {
            "release_code": release.code,
            "old_status": previous_status.value,
            "new_status": new_status.value,
            "description": release.description,
            "actor": actor,
        }
        now = self._clock.now()
        notifications = [
            Notification(
                recipient_user_id=recipient,
                event_type=NotificationEventType.RELEASE_UPDATED,
                event_details=dict(details),
                link=f"/releases/{release.code}",
                read=False,
                delivery_status=DeliveryStatus.PENDING,
                created_at=now,
            )
            for recipient in sorted(recipients)
        ]
        self._session.add_all(notifications)
        await self._session.flush()

        logger.info(
            f"Release {release.code} {previous_status.value} -> {new_status.value}: "
            f"notified {len(notifications)} recipients"
        )
        return notifications


class NotificationService:
    """Per-user notification inbox and read tracking."""

    def __init__(self, session: AsyncSession, clock: Clock = system_clock):
        self._session = session
        self._clock = clock

    async def notify(
        self,
        recipient: str | None,
        actor: str,
        event_type: NotificationEventType,
        details: dict[str, Any],
        link: str | None = None,
    ) -> Notification | None:
        """Create a single notification unless the recipient is the actor."""
        if not recipient or recipient == actor:
            return None

        notification = Notification(
            recipient_user_id=recipient,
            event_type=event_type,
            event_details=details,
            link=link,
            read=False,
            delivery_status=DeliveryStatus.PENDING,
            created_at=self._clock.now(),
        )
        self._session.add(notification)
        await self._session.flush()
        return notification

    async def list_for_user(
        self,
        username: str,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[Notification], int]:
        count_result = await self._session.execute(
            select(func.count())
            .select_from(Notification)
            .where(Notification.recipient_user_id == username)
        )
        total = count_result.scalar_one()

        result = await self._session.execute(
            select(Notification)
            .where(Notification.recipient_user_id == username)
            .order_by(Notification.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return result.scalars().all(), total

    async def get_notification(self, notification_id: UUID) -> Notification:
        notification = await self._session.get(Notification, notification_id)
        if not notification:
            raise NotificationNotFoundError(
                f"Notification not found with id: {notification_id}"
            )
        return notification

    async def _get_for_user(self, notification_id: UUID, username: str) -> Notification:
        notification = await self.get_notification(notification_id)
        if notification.recipient_user_id != username:
            raise NotificationNotFoundError(
                f"Notification not found with id: {notification_id}"
            )
        return notification

    async def mark_read(self, notification_id: UUID, username: str) -> Notification:
        notification = await self._get_for_user(notification_id, username)
        self._set_read(notification, self._clock.now())
        await self._session.flush()
        return notification

    async def mark_unread(self, notification_id: UUID, username: str) -> Notification:
        notification = await self._get_for_user(notification_id, username)
        notification.read = False
        notification.read_at = None
        await self._session.flush()
        return notification

    async def track_read(self, notification_id: UUID) -> Notification:
        """Record a read coming from an email tracking pixel.

        Only the first call changes anything; later calls leave read_at alone.
        """
        notification = await self.get_notification(notification_id)
        if not notification.read:
            self._set_read(notification, self._clock.now())
            await self._session.flush()
            logger.info(f"Notification {notification_id} read via tracking pixel")
        return notification

    @staticmethod
    def _set_read(notification: Notification, when: datetime) -> None:
        if not notification.read:
            notification.read = True
            notification.read_at = when
