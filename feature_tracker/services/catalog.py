"""
Catalog services: products, features and feature dependencies.

Feature changes notify the feature's assignee (never the actor making the
change) through NotificationService.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.clock import Clock, system_clock
from ..models import (
    ChangeType,
    DependencyType,
    Feature,
    FeatureDependency,
    FeaturePlanningStatus,
    FeatureStatus,
    HistoryEntityType,
    NotificationEventType,
    Product,
    Release,
)
from .exceptions import (
    ConflictError,
    FeatureNotFoundError,
    NotFoundError,
    ProductNotFoundError,
    ReleaseNotFoundError,
    ValidationError,
)
from .notifications import NotificationService
from .planning_history import PlanningHistoryService, feature_snapshot

logger = logging.getLogger(__name__)

FEATURE_OWNER_MAX_LENGTH = 255

PLANNING_FIELDS = (
    "planned_completion_date",
    "actual_completion_date",
    "planning_status",
    "feature_owner",
    "blockage_reason",
    "notes",
)


class DependencyNotFoundError(NotFoundError):
    """No dependency exists between the two features."""
    pass


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class CreateProductInput:
    code: str
    prefix: str
    name: str
    description: str | None = None


@dataclass
class CreateFeatureInput:
    product_code: str
    title: str
    code: str | None = None
    description: str | None = None
    release_code: str | None = None
    assigned_to: str | None = None


@dataclass
class UpdateFeatureInput:
    title: str
    description: str | None = None
    status: FeatureStatus = FeatureStatus.NEW
    release_code: str | None = None
    assigned_to: str | None = None


@dataclass
class AssignFeatureInput:
    feature_code: str
    planned_completion_date: datetime | None = None
    feature_owner: str | None = None
    notes: str | None = None


@dataclass
class DependencyInput:
    depends_on_feature_code: str
    dependency_type: DependencyType
    notes: str | None = None


@dataclass
class DependencyView:
    feature_code: str
    depends_on_feature_code: str
    depends_on_feature_title: str
    dependency_type: DependencyType
    notes: str | None
    created_at: datetime


# =============================================================================
# PRODUCT SERVICE
# =============================================================================


class ProductService:
    def __init__(self, session: AsyncSession, clock: Clock = system_clock):
        self._session = session
        self._clock = clock

    async def create_product(self, input: CreateProductInput, actor: str) -> Product:
        if await self.find_product(input.code):
            raise ConflictError(f"Product with code {input.code} already exists")

        product = Product(
            code=input.code,
            prefix=input.prefix,
            name=input.name,
            description=input.description,
            created_by=actor,
            created_at=self._clock.now(),
        )
        self._session.add(product)
        await self._session.flush()
        logger.info(f"Product {input.code} created by {actor}")
        return product

    async def find_product(self, code: str) -> Product | None:
        result = await self._session.execute(select(Product).where(Product.code == code))
        return result.scalar_one_or_none()

    async def get_product(self, code: str) -> Product:
        product = await self.find_product(code)
        if not product:
            raise ProductNotFoundError(f"Product not found with code: {code}")
        return product

    async def list_products(self) -> Sequence[Product]:
        result = await self._session.execute(select(Product).order_by(Product.code.asc()))
        return result.scalars().all()


# =============================================================================
# FEATURE SERVICE
# =============================================================================


class FeatureService:
    """CRUD and planning updates for features."""

    def __init__(self, session: AsyncSession, clock: Clock = system_clock):
        self._session = session
        self._clock = clock
        self._products = ProductService(session, clock)
        self._notifications = NotificationService(session, clock)
        self._history = PlanningHistoryService(session, clock)

    async def get_feature(self, code: str) -> Feature:
        result = await self._session.execute(
            select(Feature)
            .options(selectinload(Feature.product), selectinload(Feature.release))
            .where(Feature.code == code)
        )
        feature = result.scalar_one_or_none()
        if not feature:
            raise FeatureNotFoundError(f"Feature not found with code: {code}")
        return feature

    async def list_features(
        self,
        product_code: str | None = None,
        release_code: str | None = None,
    ) -> Sequence[Feature]:
        query = (
            select(Feature)
            .options(selectinload(Feature.product), selectinload(Feature.release))
            .order_by(Feature.code.asc())
        )
        if product_code:
            query = query.join(Product, Feature.product_id == Product.id).where(
                Product.code == product_code
            )
        if release_code:
            query = query.join(Release, Feature.release_id == Release.id).where(
                Release.code == release_code
            )
        result = await self._session.execute(query)
        return result.scalars().all()

    async def create_feature(self, input: CreateFeatureInput, actor: str) -> Feature:
        """
        Create a feature under a product, optionally inside a release.

        Flow:
        1. Resolve product and release
        2. Use the given code or allocate the next ``<prefix>-<n>`` code
        3. Insert and notify the assignee
        """
        product = await self._products.get_product(input.product_code)
        release = await self._resolve_release(input.release_code)

        code = input.code or await self._next_feature_code(product)
        if await self._find_feature(code):
            raise ConflictError(f"Feature with code {code} already exists")

        feature = Feature(
            code=code,
            title=input.title,
            description=input.description,
            status=FeatureStatus.NEW,
            product=product,
            release=release,
            created_by=actor,
            assigned_to=input.assigned_to,
            created_at=self._clock.now(),
        )
        self._session.add(feature)
        await self._session.flush()
        await self._history.record_change(
            HistoryEntityType.FEATURE, feature.id, code, ChangeType.CREATED, actor
        )

        await self._notifications.notify(
            recipient=feature.assigned_to,
            actor=actor,
            event_type=NotificationEventType.FEATURE_CREATED,
            details={"feature_code": code, "title": feature.title, "actor": actor},
            link=f"/features/{code}",
        )
        logger.info(f"Feature {code} created by {actor}")
        return feature

    async def update_feature(
        self,
        code: str,
        input: UpdateFeatureInput,
        actor: str,
    ) -> Feature:
        feature = await self.get_feature(code)
        release = await self._resolve_release(input.release_code)

        before = feature_snapshot(feature)
        feature.title = input.title
        feature.description = input.description
        feature.status = input.status
        feature.release = release
        feature.assigned_to = input.assigned_to
        await self._touch(feature, before, actor)

        await self._notifications.notify(
            recipient=feature.assigned_to,
            actor=actor,
            event_type=NotificationEventType.FEATURE_UPDATED,
            details={
                "feature_code": code,
                "title": feature.title,
                "status": feature.status.value,
                "actor": actor,
            },
            link=f"/features/{code}",
        )
        return feature

    async def update_planning(
        self,
        code: str,
        changes: dict[str, Any],
        actor: str,
    ) -> Feature:
        """Apply a partial planning update; keys absent from ``changes`` stay as they are."""
        unknown = set(changes) - set(PLANNING_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown planning fields: {', '.join(sorted(unknown))}")

        owner = changes.get("feature_owner")
        if owner is not None and len(owner) > FEATURE_OWNER_MAX_LENGTH:
            raise ValidationError(
                f"Feature owner must be at most {FEATURE_OWNER_MAX_LENGTH} characters"
            )

        planning_status = changes.get("planning_status")
        if planning_status is not None and not isinstance(planning_status, FeaturePlanningStatus):
            try:
                changes["planning_status"] = FeaturePlanningStatus(planning_status)
            except ValueError:
                raise ValidationError(f"Invalid planning status: {planning_status}")

        feature = await self.get_feature(code)
        before = feature_snapshot(feature)
        for name, value in changes.items():
            setattr(feature, name, value)
        await self._touch(feature, before, actor)
        return feature

    async def delete_feature(self, code: str, actor: str) -> None:
        feature = await self.get_feature(code)

        await self._session.execute(
            delete(FeatureDependency).where(
                or_(
                    FeatureDependency.feature_id == feature.id,
                    FeatureDependency.depends_on_feature_id == feature.id,
                )
            )
        )
        await self._notifications.notify(
            recipient=feature.assigned_to,
            actor=actor,
            event_type=NotificationEventType.FEATURE_DELETED,
            details={"feature_code": code, "title": feature.title, "actor": actor},
        )
        await self._history.record_change(
            HistoryEntityType.FEATURE, feature.id, code, ChangeType.DELETED, actor
        )
        await self._session.delete(feature)
        await self._session.flush()
        logger.info(f"Feature {code} deleted by {actor}")

    # =========================================================================
    # RELEASE ASSIGNMENT
    # =========================================================================

    async def assign_to_release(
        self,
        release_code: str,
        input: AssignFeatureInput,
        actor: str,
    ) -> Feature:
        """Put an unassigned feature into a release with planning status NOT_STARTED."""
        release = await self._resolve_release(release_code)
        feature = await self.get_feature(input.feature_code)
        if feature.release is not None:
            raise ConflictError(
                f"Feature {feature.code} is already assigned to release {feature.release.code}"
            )
        if input.feature_owner and len(input.feature_owner) > FEATURE_OWNER_MAX_LENGTH:
            raise ValidationError(
                f"Feature owner must be at most {FEATURE_OWNER_MAX_LENGTH} characters"
            )

        before = feature_snapshot(feature)
        feature.release = release
        feature.planning_status = FeaturePlanningStatus.NOT_STARTED
        feature.planned_completion_date = input.planned_completion_date
        feature.feature_owner = input.feature_owner
        feature.notes = input.notes
        await self._touch(feature, before, actor)
        logger.info(f"Feature {feature.code} assigned to release {release_code} by {actor}")
        return feature

    async def update_release_planning(
        self,
        release_code: str,
        feature_code: str,
        changes: dict[str, Any],
        actor: str,
    ) -> Feature:
        """Planning update for a feature that must belong to ``release_code``."""
        await self._get_feature_in_release(release_code, feature_code)
        return await self.update_planning(feature_code, changes, actor)

    async def move_to_release(
        self,
        feature_code: str,
        target_release_code: str,
        actor: str,
        rationale: str | None = None,
    ) -> Feature:
        """
        Move a feature into another release.

        Planning restarts: status goes back to NOT_STARTED, the planned date
        and blockage are cleared and the notes record where it came from.
        """
        target = await self._resolve_release(target_release_code)
        feature = await self.get_feature(feature_code)
        source_code = feature.release.code if feature.release else None
        if source_code == target.code:
            raise ConflictError(
                f"Feature {feature_code} is already in release {target.code}"
            )

        before = feature_snapshot(feature)
        feature.release = target
        feature.planning_status = FeaturePlanningStatus.NOT_STARTED
        feature.planned_completion_date = None
        feature.blockage_reason = None
        feature.notes = f"Moved from {source_code or 'unassigned'}"
        if rationale:
            feature.notes += f": {rationale}"
        await self._touch(feature, before, actor, rationale=rationale)
        logger.info(
            f"Feature {feature_code} moved {source_code or 'unassigned'} -> {target.code} by {actor}"
        )
        return feature

    async def remove_from_release(
        self,
        release_code: str,
        feature_code: str,
        actor: str,
        rationale: str | None = None,
    ) -> Feature:
        """Take a feature out of its release and clear its planning fields."""
        feature = await self._get_feature_in_release(release_code, feature_code)

        before = feature_snapshot(feature)
        feature.release = None
        for name in PLANNING_FIELDS:
            if name != "actual_completion_date":
                setattr(feature, name, None)
        await self._touch(feature, before, actor, rationale=rationale)
        logger.info(f"Feature {feature_code} removed from release {release_code} by {actor}")
        return feature

    async def _touch(
        self,
        feature: Feature,
        before: dict[str, str | None],
        actor: str,
        rationale: str | None = None,
    ) -> None:
        feature.updated_by = actor
        feature.updated_at = self._clock.now()
        await self._session.flush()
        await self._history.record_diff(
            HistoryEntityType.FEATURE,
            feature.id,
            feature.code,
            before,
            feature_snapshot(feature),
            changed_by=actor,
            rationale=rationale,
        )

    async def _get_feature_in_release(self, release_code: str, feature_code: str) -> Feature:
        await self._resolve_release(release_code)
        feature = await self.get_feature(feature_code)
        if feature.release is None or feature.release.code != release_code:
            raise FeatureNotFoundError(
                f"Feature {feature_code} is not assigned to release {release_code}"
            )
        return feature

    async def _find_feature(self, code: str) -> Feature | None:
        result = await self._session.execute(select(Feature).where(Feature.code == code))
        return result.scalar_one_or_none()

    async def _next_feature_code(self, product: Product) -> str:
        result = await self._session.execute(
            select(func.count()).select_from(Feature).where(Feature.product_id == product.id)
        )
        number = result.scalar_one() + 1
        while await self._find_feature(f"{product.prefix}-{number}"):
            number += 1
        return f"{product.prefix}-{number}"

    async def _resolve_release(self, release_code: str | None) -> Release | None:
        if not release_code:
            return None
        result = await self._session.execute(
            select(Release).where(Release.code == release_code)
        )
        release = result.scalar_one_or_none()
        if not release:
            raise ReleaseNotFoundError(f"Release not found with code: {release_code}")
        return release


# =============================================================================
# FEATURE DEPENDENCY SERVICE
# =============================================================================


class FeatureDependencyService:
    """Directed dependencies between features, unique per pair."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_dependencies(self, feature_code: str) -> list[DependencyView]:
        feature = await self._get_feature_or_raise(feature_code)
        result = await self._session.execute(
            select(FeatureDependency, Feature)
            .join(Feature, FeatureDependency.depends_on_feature_id == Feature.id)
            .where(FeatureDependency.feature_id == feature.id)
            .order_by(Feature.code.asc())
        )
        return [
            self._to_view(feature, dependency, depends_on)
            for dependency, depends_on in result.all()
        ]

    async def add_dependency(
        self,
        feature_code: str,
        input: DependencyInput,
    ) -> DependencyView:
        feature = await self._get_feature_or_raise(feature_code)
        depends_on = await self._get_feature_or_raise(input.depends_on_feature_code)
        if feature.id == depends_on.id:
            raise ValidationError("Feature cannot depend on itself")

        if await self._find_dependency(feature, depends_on):
            raise ConflictError(
                f"Dependency {feature_code} -> {input.depends_on_feature_code} already exists"
            )

        dependency = FeatureDependency(
            feature_id=feature.id,
            depends_on_feature_id=depends_on.id,
            dependency_type=input.dependency_type,
            notes=input.notes,
        )
        try:
            async with self._session.begin_nested():
                self._session.add(dependency)
        except IntegrityError:
            raise ConflictError(
                f"Dependency {feature_code} -> {input.depends_on_feature_code} already exists"
            )
        return self._to_view(feature, dependency, depends_on)

    async def update_dependency(
        self,
        feature_code: str,
        input: DependencyInput,
    ) -> DependencyView:
        """Replace type and notes; omitted notes are cleared."""
        feature = await self._get_feature_or_raise(feature_code)
        depends_on = await self._get_feature_or_raise(input.depends_on_feature_code)
        dependency = await self._get_dependency_or_raise(feature, depends_on)

        dependency.dependency_type = input.dependency_type
        dependency.notes = input.notes
        await self._session.flush()
        return self._to_view(feature, dependency, depends_on)

    async def remove_dependency(self, feature_code: str, depends_on_code: str) -> None:
        feature = await self._get_feature_or_raise(feature_code)
        depends_on = await self._get_feature_or_raise(depends_on_code)
        dependency = await self._get_dependency_or_raise(feature, depends_on)
        await self._session.delete(dependency)
        await self._session.flush()

    async def _get_feature_or_raise(self, code: str) -> Feature:
        result = await self._session.execute(select(Feature).where(Feature.code == code))
        feature = result.scalar_one_or_none()
        if not feature:
            raise FeatureNotFoundError(f"Feature not found with code: {code}")
        return feature

    async def _find_dependency(
        self,
        feature: Feature,
        depends_on: Feature,
    ) -> FeatureDependency | None:
        result = await self._session.execute(
            select(FeatureDependency).where(
                FeatureDependency.feature_id == feature.id,
                FeatureDependency.depends_on_feature_id == depends_on.id,
            )
        )
        return result.scalar_one_or_none()

    async def _get_dependency_or_raise(
        self,
        feature: Feature,
        depends_on: Feature,
    ) -> FeatureDependency:
        dependency = await self._find_dependency(feature, depends_on)
        if not dependency:
            raise DependencyNotFoundError(
                f"Dependency not found: {feature.code} -> {depends_on.code}"
            )
        return dependency

    @staticmethod
    def _to_view(
        feature: Feature,
        dependency: FeatureDependency,
        depends_on: Feature,
    ) -> DependencyView:
        return DependencyView(
            feature_code=feature.code,
            depends_on_feature_code=depends_on.code,
            depends_on_feature_title=depends_on.title,
            dependency_type=dependency.dependency_type,
            notes=dependency.notes,
            created_at=dependency.created_at,
        )
