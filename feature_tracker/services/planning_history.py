"""
Planning history: an append-only record of release and feature changes.

Every create, field change and delete of a release or feature writes one
row per changed field. Rows reference the entity by id and code without a
foreign key, so history stays readable after the entity is deleted.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..models import (
    ChangeType,
    Feature,
    HistoryEntityType,
    PlanningHistory,
    Release,
)
from .exceptions import FeatureNotFoundError, ReleaseNotFoundError

logger = logging.getLogger(__name__)

MAX_VALUE_LENGTH = 1000

DEFAULT_SORT = "changed_at,desc"

SORT_COLUMNS = {
    "changed_at": PlanningHistory.changed_at,
    "entity_type": PlanningHistory.entity_type,
    "entity_code": PlanningHistory.entity_code,
    "change_type": PlanningHistory.change_type,
    "changed_by": PlanningHistory.changed_by,
}

# Field name -> change type recorded when the field differs
FEATURE_TRACKED_FIELDS: dict[str, ChangeType] = {
    "title": ChangeType.UPDATED,
    "description": ChangeType.UPDATED,
    "status": ChangeType.STATUS_CHANGED,
    "assigned_to": ChangeType.ASSIGNED,
    "release": ChangeType.MOVED,
    "planned_completion_date": ChangeType.UPDATED,
    "actual_completion_date": ChangeType.UPDATED,
    "planning_status": ChangeType.UPDATED,
    "feature_owner": ChangeType.UPDATED,
    "blockage_reason": ChangeType.UPDATED,
    "notes": ChangeType.UPDATED,
}

RELEASE_TRACKED_FIELDS: dict[str, ChangeType] = {
    "description": ChangeType.UPDATED,
    "status": ChangeType.STATUS_CHANGED,
    "released_at": ChangeType.UPDATED,
    "parent": ChangeType.UPDATED,
}


def format_value(value: Any) -> str | None:
    """Render a field value as stored text, cut to MAX_VALUE_LENGTH."""
    if value is None:
        return None
    if isinstance(value, Enum):
        text = value.value
    elif isinstance(value, datetime):
        text = value.isoformat()
    else:
        text = str(value)
    return text[:MAX_VALUE_LENGTH]


def feature_snapshot(feature: Feature) -> dict[str, str | None]:
    """Tracked feature fields as text; the feature's release must be loaded."""
    values = {
        name: format_value(getattr(feature, name))
        for name in FEATURE_TRACKED_FIELDS
        if name != "release"
    }
    values["release"] = feature.release.code if feature.release else None
    return values


def release_snapshot(release: Release) -> dict[str, str | None]:
    """Tracked release fields as text; the release's parent must be loaded."""
    return {
        "description": format_value(release.description),
        "status": format_value(release.status),
        "released_at": format_value(release.released_at),
        "parent": release.parent.code if release.parent else None,
    }


@dataclass
class HistoryFilter:
    entity_type: HistoryEntityType | None = None
    entity_code: str | None = None
    changed_by: str | None = None
    change_type: ChangeType | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


class PlanningHistoryService:
    """Records and queries planning history rows."""

    def __init__(self, session: AsyncSession, clock: Clock = system_clock):
        self._session = session
        self._clock = clock

    async def record_change(
        self,
        entity_type: HistoryEntityType,
        entity_id: UUID,
        entity_code: str,
        change_type: ChangeType,
        changed_by: str,
        field_name: str | None = None,
        old_value: Any = None,
        new_value: Any = None,
        rationale: str | None = None,
    ) -> PlanningHistory:
        entry = PlanningHistory(
            entity_type=entity_type,
            entity_id=entity_id,
            entity_code=entity_code,
            change_type=change_type,
            field_name=field_name,
            old_value=format_value(old_value),
            new_value=format_value(new_value),
            rationale=rationale,
            changed_by=changed_by,
            changed_at=self._clock.now(),
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def record_diff(
        self,
        entity_type: HistoryEntityType,
        entity_id: UUID,
        entity_code: str,
        before: dict[str, str | None],
        after: dict[str, str | None],
        changed_by: str,
        rationale: str | None = None,
    ) -> list[PlanningHistory]:
        """Write one row per field whose snapshot value changed."""
        tracked = (
            FEATURE_TRACKED_FIELDS
            if entity_type == HistoryEntityType.FEATURE
            else RELEASE_TRACKED_FIELDS
        )
        entries = []
        for name, change_type in tracked.items():
            if before.get(name) == after.get(name):
                continue
            entries.append(
                await self.record_change(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    entity_code=entity_code,
                    change_type=change_type,
                    changed_by=changed_by,
                    field_name=name,
                    old_value=before.get(name),
                    new_value=after.get(name),
                    rationale=rationale,
                )
            )
        if entries:
            logger.debug(
                f"Recorded {len(entries)} history entries for "
                f"{entity_type.value} {entity_code}"
            )
        return entries

    async def query(
        self,
        filters: HistoryFilter,
        sort: str = DEFAULT_SORT,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[PlanningHistory], int]:
        """
        Filtered, sorted and paginated history.

        ``sort`` is ``"<field>,<asc|desc>"``; unknown fields sort by
        changed_at and any direction other than asc sorts descending.
        """
        conditions = []
        if filters.entity_type:
            conditions.append(PlanningHistory.entity_type == filters.entity_type)
        if filters.entity_code:
            conditions.append(PlanningHistory.entity_code == filters.entity_code)
        if filters.changed_by:
            conditions.append(PlanningHistory.changed_by == filters.changed_by)
        if filters.change_type:
            conditions.append(PlanningHistory.change_type == filters.change_type)
        if filters.date_from:
            conditions.append(PlanningHistory.changed_at >= filters.date_from)
        if filters.date_to:
            conditions.append(PlanningHistory.changed_at <= filters.date_to)

        total_result = await self._session.execute(
            select(func.count()).select_from(PlanningHistory).where(*conditions)
        )
        total = total_result.scalar_one()

        result = await self._session.execute(
            select(PlanningHistory)
            .where(*conditions)
            .order_by(*_order_by(sort))
            .limit(limit)
            .offset(offset)
        )
        return result.scalars().all(), total

    async def for_release(
        self,
        code: str,
        sort: str = DEFAULT_SORT,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[PlanningHistory], int]:
        result = await self._session.execute(select(Release.id).where(Release.code == code))
        if result.scalar_one_or_none() is None:
            raise ReleaseNotFoundError(f"Release not found with code: {code}")
        return await self.query(
            HistoryFilter(entity_type=HistoryEntityType.RELEASE, entity_code=code),
            sort=sort,
            limit=limit,
            offset=offset,
        )

    async def for_feature(
        self,
        code: str,
        sort: str = DEFAULT_SORT,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[PlanningHistory], int]:
        result = await self._session.execute(select(Feature.id).where(Feature.code == code))
        if result.scalar_one_or_none() is None:
            raise FeatureNotFoundError(f"Feature not found with code: {code}")
        return await self.query(
            HistoryFilter(entity_type=HistoryEntityType.FEATURE, entity_code=code),
            sort=sort,
            limit=limit,
            offset=offset,
        )


def _order_by(sort: str) -> list:
    field, _, direction = (sort or DEFAULT_SORT).partition(",")
    column = SORT_COLUMNS.get(field.strip(), PlanningHistory.changed_at)
    if direction.strip().lower() == "asc":
        return [column.asc(), PlanningHistory.id.asc()]
    return [column.desc(), PlanningHistory.id.desc()]
