"""
Error Log Service: persistence and lookup of failed usage-event ingestions.

Entries are written in the caller's transaction, listed for admin review,
and flipped to resolved by the reprocessing engine. An entry never goes
back from resolved to unresolved.
"""

import json
import logging
import traceback
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..models import ErrorLog, ErrorType
from .exceptions import NotFoundError

logger = logging.getLogger(__name__)


class ErrorLogNotFoundError(NotFoundError):
    """Error log entry does not exist."""
    pass


class ErrorLogService:
    """Write and query the usage-event error log."""

    def __init__(self, session: AsyncSession, clock: Clock = system_clock):
        self._session = session
        self._clock = clock

    async def log_error(
        self,
        error_type: ErrorType,
        message: str,
        payload: dict[str, Any] | None = None,
        user_id: str | None = None,
        exc: BaseException | None = None,
    ) -> ErrorLog:
        """Record a failure together with the payload needed to replay it."""
        entry = ErrorLog(
            timestamp=self._clock.now(),
            error_type=error_type,
            error_message=message,
            stack_trace="".join(traceback.format_exception(exc)) if exc else None,
            event_payload=json.dumps(payload, default=str) if payload is not None else None,
            user_id=user_id,
            resolved=False,
        )
        self._session.add(entry)
        await self._session.flush()

        logger.warning(
            f"Logged {error_type.value} for user {user_id}: {message} (entry {entry.id})"
        )
        return entry

    async def get_error(self, error_id: int) -> ErrorLog:
        entry = await self._session.get(ErrorLog, error_id)
        if not entry:
            raise ErrorLogNotFoundError(f"Error log not found with id: {error_id}")
        return entry

    async def list_errors(
        self,
        error_type: ErrorType | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[ErrorLog], int]:
        """List entries newest first, with the total matching count."""
        filters = []
        if error_type:
            filters.append(ErrorLog.error_type == error_type)
        if start:
            filters.append(ErrorLog.timestamp >= start)
        if end:
            filters.append(ErrorLog.timestamp <= end)

        count_result = await self._session.execute(
            select(func.count()).select_from(ErrorLog).where(*filters)
        )
        total = count_result.scalar_one()

        result = await self._session.execute(
            select(ErrorLog)
            .where(*filters)
            .order_by(ErrorLog.timestamp.desc(), ErrorLog.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return result.scalars().all(), total

    async def get_by_ids(self, error_ids: Sequence[int]) -> dict[int, ErrorLog]:
        if not error_ids:
            return {}
        result = await self._session.execute(
            select(ErrorLog).where(ErrorLog.id.in_(list(error_ids)))
        )
        return {entry.id: entry for entry in result.scalars().all()}

    async def list_unresolved_between(
        self,
        start: datetime,
        end: datetime,
    ) -> Sequence[ErrorLog]:
        result = await self._session.execute(
            select(ErrorLog)
            .where(
                ErrorLog.resolved.is_(False),
                ErrorLog.timestamp >= start,
                ErrorLog.timestamp <= end,
            )
            .order_by(ErrorLog.timestamp.asc(), ErrorLog.id.asc())
        )
        return result.scalars().all()

    async def mark_resolved(self, entry: ErrorLog) -> None:
        if not entry.resolved:
            entry.resolved = True
            await self._session.flush()
