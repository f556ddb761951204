"""
Segment Analytics: usage aggregates for groups of events selected by their
context tags.

A segment is a set of ``context[key] == value`` criteria. Four segments are
predefined; callers may also describe a custom one. Every aggregate is a
grouped SQL query over JSON-path filters.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import ensure_utc
from ..models import UsageEvent
from .exceptions import ValidationError

logger = logging.getLogger(__name__)

TOP_FEATURES_LIMIT = 10
DEFAULT_CUSTOM_SEGMENT_NAME = "Custom Segment"
SEGMENT_NAME_TAG = "segmentName"


@dataclass(frozen=True)
class SegmentDefinition:
    key: str
    name: str
    description: str
    criteria: dict[str, str]


PREDEFINED_SEGMENTS: dict[str, SegmentDefinition] = {
    segment.key: segment
    for segment in (
        SegmentDefinition("mobile", "Mobile Users", "Users on mobile devices", {"device": "mobile"}),
        SegmentDefinition("desktop", "Desktop Users", "Users on desktop devices", {"device": "desktop"}),
        SegmentDefinition("power-users", "Power Users", "Highly engaged users", {"userType": "power"}),
        SegmentDefinition("new-users", "New Users", "Recently onboarded users", {"userType": "new"}),
    )
}


@dataclass
class FeatureCount:
    feature_code: str
    usage_count: int


@dataclass
class SegmentAnalytics:
    segment_key: str
    segment_name: str
    criteria: dict[str, str]
    total_usage: int = 0
    unique_users: int = 0
    top_features: list[FeatureCount] = field(default_factory=list)
    usage_by_action_type: dict[str, int] = field(default_factory=dict)


def parse_tags(raw: str) -> dict[str, str]:
    """Parse a custom-segment tag filter given as a JSON object of strings."""
    try:
        tags = json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError("Malformed tags: not valid JSON")
    if not isinstance(tags, dict) or not tags:
        raise ValidationError("Malformed tags: expected a non-empty JSON object")
    if not all(isinstance(k, str) and isinstance(v, str) for k, v in tags.items()):
        raise ValidationError("Malformed tags: keys and values must be strings")
    return tags


class SegmentAnalyticsEngine:
    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def predefined_segments() -> list[SegmentDefinition]:
        return list(PREDEFINED_SEGMENTS.values())

    async def analyze(
        self,
        segment_keys: list[str] | None = None,
        tags: dict[str, str] | None = None,
        segment_name: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[SegmentAnalytics]:
        """
        Analyze the requested segments.

        Custom tags take precedence and yield a single custom segment, named
        by its ``segmentName`` tag when present.
        Otherwise the listed predefined segments are analyzed (all four when
        none are listed). Unknown segment keys yield zero-valued results.
        """
        start, end = ensure_utc(start), ensure_utc(end)
        if start and end and start > end:
            raise ValidationError("Start date must be before end date")

        if tags:
            criteria = dict(tags)
            name = criteria.pop(SEGMENT_NAME_TAG, None) or segment_name or DEFAULT_CUSTOM_SEGMENT_NAME
            custom = SegmentDefinition("custom", name, "Custom segment", criteria)
            return [await self.analyze_segment(custom, start, end)]

        keys = segment_keys or list(PREDEFINED_SEGMENTS)
        results = []
        for key in keys:
            segment = PREDEFINED_SEGMENTS.get(key)
            if segment is None:
                logger.info(f"Unknown segment requested: {key}")
                results.append(SegmentAnalytics(segment_key=key, segment_name=key, criteria={}))
                continue
            results.append(await self.analyze_segment(segment, start, end))
        return results

    async def analyze_segment(
        self,
        segment: SegmentDefinition,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> SegmentAnalytics:
        filters = [
            UsageEvent.context[key].as_string() == value
            for key, value in segment.criteria.items()
        ]
        if start:
            filters.append(UsageEvent.timestamp >= start)
        if end:
            filters.append(UsageEvent.timestamp <= end)

        totals = await self._session.execute(
            select(
                func.count(UsageEvent.id),
                func.count(func.distinct(UsageEvent.user_id)),
            ).where(*filters)
        )
        total_usage, unique_users = totals.one()

        result = SegmentAnalytics(
            segment_key=segment.key,
            segment_name=segment.name,
            criteria=dict(segment.criteria),
            total_usage=total_usage,
            unique_users=unique_users,
        )
        if not total_usage:
            return result

        usage_count = func.count(UsageEvent.id).label("usage_count")
        top = await self._session.execute(
            select(UsageEvent.feature_code, usage_count)
            .where(UsageEvent.feature_code.isnot(None), *filters)
            .group_by(UsageEvent.feature_code)
            .order_by(usage_count.desc(), UsageEvent.feature_code.asc())
            .limit(TOP_FEATURES_LIMIT)
        )
        result.top_features = [
            FeatureCount(feature_code=row.feature_code, usage_count=row.usage_count)
            for row in top.all()
        ]

        by_action = await self._session.execute(
            select(UsageEvent.action_type, func.count().label("count"))
            .where(*filters)
            .group_by(UsageEvent.action_type)
        )
        result.usage_by_action_type = {
            row.action_type.value: row.count for row in by_action.all()
        }
        return result
