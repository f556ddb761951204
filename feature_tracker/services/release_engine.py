"""
Release Engine: release lifecycle and status transitions.

This module implements:
- The release status state machine (which transitions are legal)
- Parent/child release links (no self-parenting, parent must exist)
- Cascade notifications when a release reaches a terminal-ish status

Every update validates fully before mutating, so a rejected transition
leaves the release untouched.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.clock import Clock, system_clock
from ..models import (
    ChangeType,
    Feature,
    HistoryEntityType,
    Notification,
    Product,
    Release,
    ReleaseStatus,
)
from .exceptions import (
    ConflictError,
    ProductNotFoundError,
    ReleaseNotFoundError,
    ValidationError,
)
from .notifications import NotificationFanoutEngine
from .planning_history import PlanningHistoryService, release_snapshot

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================


class InvalidTransitionError(ValidationError):
    """Requested status change is not allowed from the current status."""

    def __init__(self, current: ReleaseStatus, target: ReleaseStatus):
        super().__init__(
            f"Invalid release status transition: {current.value} -> {target.value}"
        )
        self.current = current
        self.target = target


class InvalidParentError(ValidationError):
    """Parent release reference is not acceptable."""
    pass


# =============================================================================
# STATE MACHINE
# =============================================================================


class ReleaseStateMachine:
    """Legal release status transitions and which of them cascade."""

    TRANSITIONS: dict[ReleaseStatus, frozenset[ReleaseStatus]] = {
        ReleaseStatus.DRAFT: frozenset({ReleaseStatus.PLANNED}),
        ReleaseStatus.PLANNED: frozenset({ReleaseStatus.IN_PROGRESS}),
        ReleaseStatus.IN_PROGRESS: frozenset({
            ReleaseStatus.RELEASED,
            ReleaseStatus.DELAYED,
            ReleaseStatus.CANCELLED,
        }),
        ReleaseStatus.DELAYED: frozenset({
            ReleaseStatus.IN_PROGRESS,
            ReleaseStatus.RELEASED,
            ReleaseStatus.CANCELLED,
        }),
        ReleaseStatus.RELEASED: frozenset({ReleaseStatus.COMPLETED}),
        ReleaseStatus.COMPLETED: frozenset(),
        ReleaseStatus.CANCELLED: frozenset(),
    }

    CASCADE_TARGETS: frozenset[ReleaseStatus] = frozenset({
        ReleaseStatus.RELEASED,
        ReleaseStatus.DELAYED,
        ReleaseStatus.CANCELLED,
        ReleaseStatus.COMPLETED,
    })

    def allowed_targets(self, current: ReleaseStatus) -> frozenset[ReleaseStatus]:
        return self.TRANSITIONS.get(current, frozenset())

    def can_transition(self, current: ReleaseStatus, target: ReleaseStatus) -> bool:
        # Re-submitting the current status is a no-op, not a transition
        return current == target or target in self.allowed_targets(current)

    def validate(self, current: ReleaseStatus, target: ReleaseStatus) -> None:
        if not self.can_transition(current, target):
            raise InvalidTransitionError(current, target)

    def triggers_cascade(self, current: ReleaseStatus, target: ReleaseStatus) -> bool:
        return current != target and target in self.CASCADE_TARGETS


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class CreateReleaseInput:
    """Input for creating a release."""
    product_code: str
    code: str
    description: str | None = None
    parent_code: str | None = None
    released_at: datetime | None = None


@dataclass
class UpdateReleaseInput:
    """Input for updating a release.

    ``status=None`` keeps the current status. ``parent_code=None`` clears
    the parent.
    """
    description: str | None = None
    status: ReleaseStatus | None = None
    released_at: datetime | None = None
    parent_code: str | None = None


@dataclass
class ReleaseUpdateResult:
    release: Release
    previous_status: ReleaseStatus
    notifications: list[Notification] = field(default_factory=list)

    @property
    def status_changed(self) -> bool:
        return self.previous_status != self.release.status


# =============================================================================
# RELEASE ENGINE
# =============================================================================


class ReleaseEngine:
    """
    Core engine for release management.

    Guarantees:
    1. Status only moves along ReleaseStateMachine.TRANSITIONS
    2. A release is never its own parent and never points at a missing one
    3. Status update and its notifications share one transaction
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock = system_clock,
        state_machine: ReleaseStateMachine | None = None,
    ):
        self._session = session
        self._clock = clock
        self._state_machine = state_machine or ReleaseStateMachine()
        self._fanout = NotificationFanoutEngine(session, clock)
        self._history = PlanningHistoryService(session, clock)

    # =========================================================================
    # CREATE RELEASE
    # =========================================================================

    async def create_release(self, input: CreateReleaseInput, actor: str) -> Release:
        """
        Create a release in DRAFT status.

        Flow:
        1. Resolve the product (404 if missing)
        2. Prefix the code with the product prefix unless already prefixed
        3. Reject duplicate codes
        4. Resolve and check the parent
        5. Insert
        """
        product = await self._get_product_or_raise(input.product_code)

        code = input.code
        prefix = f"{product.prefix}-"
        if not code.startswith(prefix):
            code = prefix + code

        if await self._find_release(code):
            raise ConflictError(f"Release with code {code} already exists")

        parent = await self._resolve_parent(input.parent_code, code)

        release = Release(
            code=code,
            product=product,
            description=input.description,
            status=ReleaseStatus.DRAFT,
            parent=parent,
            released_at=input.released_at,
            created_by=actor,
            created_at=self._clock.now(),
        )
        self._session.add(release)
        await self._session.flush()

        await self._history.record_change(
            HistoryEntityType.RELEASE, release.id, code, ChangeType.CREATED, actor
        )
        logger.info(f"Release {code} created by {actor}")
        return release

    # =========================================================================
    # UPDATE RELEASE
    # =========================================================================

    async def update_release(
        self,
        code: str,
        input: UpdateReleaseInput,
        actor: str,
    ) -> ReleaseUpdateResult:
        """
        Update description, status, release date and parent.

        Flow:
        1. Load the release (404 if missing)
        2. Check the parent reference
        3. Check the status transition
        4. Apply all changes
        5. Fan out notifications for cascade-triggering transitions

        Steps 2 and 3 raise before anything is modified.
        """
        release = await self._get_release_or_raise(code)
        previous_status = release.status
        target_status = input.status or previous_status

        parent = await self._resolve_parent(input.parent_code, release.code)

        try:
            self._state_machine.validate(previous_status, target_status)
        except InvalidTransitionError:
            logger.warning(
                f"Rejected transition {previous_status.value} -> {target_status.value} "
                f"for release {code} by {actor}"
            )
            raise

        before = release_snapshot(release)
        release.description = input.description
        release.parent = parent
        release.status = target_status
        release.updated_by = actor
        if input.released_at is not None:
            release.released_at = input.released_at
        elif target_status == ReleaseStatus.RELEASED and release.released_at is None:
            release.released_at = self._clock.now()
        release.updated_at = self._clock.now()
        await self._session.flush()
        await self._history.record_diff(
            HistoryEntityType.RELEASE,
            release.id,
            release.code,
            before,
            release_snapshot(release),
            changed_by=actor,
        )

        result = ReleaseUpdateResult(release=release, previous_status=previous_status)

        if self._state_machine.triggers_cascade(previous_status, target_status):
            result.notifications = await self._fanout.fan_out_release_update(
                release=release,
                previous_status=previous_status,
                new_status=target_status,
                actor=actor,
            )

        if result.status_changed:
            logger.info(
                f"Release {code} moved {previous_status.value} -> {target_status.value} by {actor}"
            )
        return result

    # =========================================================================
    # DELETE RELEASE
    # =========================================================================

    async def delete_release(self, code: str, actor: str) -> None:
        """Delete a release, detaching its child releases and its features."""
        release = await self._get_release_or_raise(code)
        await self._history.record_change(
            HistoryEntityType.RELEASE, release.id, release.code, ChangeType.DELETED, actor
        )

        await self._session.execute(
            update(Release)
            .where(Release.parent_id == release.id)
            .values(parent_id=None)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(
            update(Feature)
            .where(Feature.release_id == release.id)
            .values(release_id=None)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(
            delete(Release)
            .where(Release.id == release.id)
            .execution_options(synchronize_session=False)
        )
        self._session.expunge(release)
        logger.info(f"Release {code} deleted by {actor}")

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_release(self, code: str) -> Release:
        return await self._get_release_or_raise(code)

    async def list_releases(self, product_code: str | None = None) -> Sequence[Release]:
        query = (
            select(Release)
            .options(selectinload(Release.product), selectinload(Release.parent))
            .order_by(Release.created_at.desc(), Release.code.asc())
        )
        if product_code:
            query = query.join(Product, Release.product_id == Product.id).where(
                Product.code == product_code
            )
        result = await self._session.execute(query)
        return result.scalars().all()

    async def list_children(self, code: str) -> Sequence[Release]:
        release = await self._get_release_or_raise(code)
        result = await self._session.execute(
            select(Release)
            .options(selectinload(Release.product), selectinload(Release.parent))
            .where(Release.parent_id == release.id)
            .order_by(Release.code.asc())
        )
        return result.scalars().all()

    async def list_features(self, code: str) -> Sequence[Feature]:
        release = await self._get_release_or_raise(code)
        result = await self._session.execute(
            select(Feature)
            .options(selectinload(Feature.product), selectinload(Feature.release))
            .where(Feature.release_id == release.id)
            .order_by(Feature.code.asc())
        )
        return result.scalars().all()

    # =========================================================================
    # PRIVATE HELPERS
    # =========================================================================

    async def _find_release(self, code: str) -> Release | None:
        result = await self._session.execute(
            select(Release)
            .options(selectinload(Release.product), selectinload(Release.parent))
            .where(Release.code == code)
        )
        return result.scalar_one_or_none()

    async def _get_release_or_raise(self, code: str) -> Release:
        release = await self._find_release(code)
        if not release:
            raise ReleaseNotFoundError(f"Release not found with code: {code}")
        return release

    async def _get_product_or_raise(self, product_code: str) -> Product:
        result = await self._session.execute(
            select(Product).where(Product.code == product_code)
        )
        product = result.scalar_one_or_none()
        if not product:
            raise ProductNotFoundError(f"Product not found with code: {product_code}")
        return product

    async def _resolve_parent(self, parent_code: str | None, own_code: str) -> Release | None:
        if not parent_code:
            return None
        if parent_code == own_code:
            raise InvalidParentError("Release cannot be its own parent")
        parent = await self._find_release(parent_code)
        if not parent:
            raise InvalidParentError(f"Parent release not found with code: {parent_code}")
        return parent
