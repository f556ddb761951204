"""SQLAlchemy ORM Models for Feature Tracker."""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDMixin, utc_now


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# =============================================================================
# ENUMS
# =============================================================================


class ReleaseStatus(str, PyEnum):
    DRAFT = "DRAFT"
    PLANNED = "PLANNED"
    IN_PROGRESS = "IN_PROGRESS"
    RELEASED = "RELEASED"
    COMPLETED = "COMPLETED"
    DELAYED = "DELAYED"
    CANCELLED = "CANCELLED"


class FeatureStatus(str, PyEnum):
    NEW = "NEW"
    IN_PROGRESS = "IN_PROGRESS"
    ON_HOLD = "ON_HOLD"
    RELEASED = "RELEASED"


class FeaturePlanningStatus(str, PyEnum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    BLOCKED = "BLOCKED"


class DependencyType(str, PyEnum):
    HARD = "HARD"
    SOFT = "SOFT"
    OPTIONAL = "OPTIONAL"


class ActionType(str, PyEnum):
    FEATURE_VIEWED = "FEATURE_VIEWED"
    FEATURE_CREATED = "FEATURE_CREATED"
    FEATURE_UPDATED = "FEATURE_UPDATED"
    FEATURE_DELETED = "FEATURE_DELETED"
    PRODUCT_VIEWED = "PRODUCT_VIEWED"
    RELEASE_VIEWED = "RELEASE_VIEWED"
    SEARCH = "SEARCH"


class ErrorType(str, PyEnum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    PERMISSION_ERROR = "PERMISSION_ERROR"


class NotificationEventType(str, PyEnum):
    FEATURE_CREATED = "FEATURE_CREATED"
    FEATURE_UPDATED = "FEATURE_UPDATED"
    FEATURE_DELETED = "FEATURE_DELETED"
    RELEASE_UPDATED = "RELEASE_UPDATED"


class DeliveryStatus(str, PyEnum):
    PENDING = "PENDING"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


class HistoryEntityType(str, PyEnum):
    RELEASE = "RELEASE"
    FEATURE = "FEATURE"


class ChangeType(str, PyEnum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"
    STATUS_CHANGED = "STATUS_CHANGED"
    ASSIGNED = "ASSIGNED"
    MOVED = "MOVED"


# =============================================================================
# CATALOG MODELS
# =============================================================================


class Product(Base, UUIDMixin, TimestampMixin):
    """A product that owns releases and features."""

    __tablename__ = "products"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    prefix: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)

    releases: Mapped[list["Release"]] = relationship(back_populates="product")
    features: Mapped[list["Feature"]] = relationship(back_populates="product")


class Release(Base, UUIDMixin, TimestampMixin):
    """A product release; may hang under a parent release."""

    __tablename__ = "releases"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("products.id"), nullable=False
    )
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[ReleaseStatus] = mapped_column(
        _enum(ReleaseStatus, "release_status"),
        default=ReleaseStatus.DRAFT,
        nullable=False,
    )
    parent_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("releases.id", ondelete="SET NULL"), nullable=True
    )
    released_at: Mapped[datetime | None] = mapped_column()
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(255))

    # Relationships
    product: Mapped["Product"] = relationship(back_populates="releases")
    parent: Mapped["Release | None"] = relationship(
        remote_side="Release.id", back_populates="children"
    )
    children: Mapped[list["Release"]] = relationship(
        back_populates="parent", passive_deletes=True
    )
    features: Mapped[list["Feature"]] = relationship(back_populates="release")

    __table_args__ = (
        Index("idx_releases_product", "product_id"),
        Index("idx_releases_parent", "parent_id"),
    )


class Feature(Base, UUIDMixin, TimestampMixin):
    """A unit of product work, optionally scheduled into a release."""

    __tablename__ = "features"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[FeatureStatus] = mapped_column(
        _enum(FeatureStatus, "feature_status"),
        default=FeatureStatus.NEW,
        nullable=False,
    )
    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("products.id"), nullable=False
    )
    release_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("releases.id", ondelete="SET NULL"), nullable=True
    )
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    assigned_to: Mapped[str | None] = mapped_column(String(255))
    updated_by: Mapped[str | None] = mapped_column(String(255))

    # Planning
    planned_completion_date: Mapped[datetime | None] = mapped_column()
    actual_completion_date: Mapped[datetime | None] = mapped_column()
    planning_status: Mapped[FeaturePlanningStatus | None] = mapped_column(
        _enum(FeaturePlanningStatus, "feature_planning_status"),
        nullable=True,
    )
    feature_owner: Mapped[str | None] = mapped_column(String(255))
    blockage_reason: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)

    # Relationships
    product: Mapped["Product"] = relationship(back_populates="features")
    release: Mapped["Release | None"] = relationship(back_populates="features")

    __table_args__ = (
        Index("idx_features_product", "product_id"),
        Index("idx_features_release", "release_id"),
    )


class FeatureDependency(Base, UUIDMixin):
    """A directed dependency between two features."""

    __tablename__ = "feature_dependencies"

    feature_id: Mapped[UUID] = mapped_column(
        ForeignKey("features.id", ondelete="CASCADE"), nullable=False
    )
    depends_on_feature_id: Mapped[UUID] = mapped_column(
        ForeignKey("features.id", ondelete="CASCADE"), nullable=False
    )
    dependency_type: Mapped[DependencyType] = mapped_column(
        _enum(DependencyType, "dependency_type"), nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    feature: Mapped["Feature"] = relationship(foreign_keys=[feature_id])
    depends_on_feature: Mapped["Feature"] = relationship(
        foreign_keys=[depends_on_feature_id]
    )

    __table_args__ = (
        UniqueConstraint(
            "feature_id",
            "depends_on_feature_id",
            name="uq_feature_dependencies_pair",
        ),
    )


# =============================================================================
# TELEMETRY MODELS
# =============================================================================


class UsageEvent(Base, UUIDMixin):
    """A single feature usage event. Never mutated after insert."""

    __tablename__ = "usage_events"

    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action_type: Mapped[ActionType] = mapped_column(
        _enum(ActionType, "action_type"), nullable=False
    )
    feature_code: Mapped[str | None] = mapped_column(String(50))
    product_code: Mapped[str | None] = mapped_column(String(50))
    release_code: Mapped[str | None] = mapped_column(String(50))
    context: Mapped[dict[str, Any] | None] = mapped_column()
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    event_hash: Mapped[str] = mapped_column(String(16), nullable=False)
    dedup_bucket: Mapped[int] = mapped_column(BigInteger, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "event_hash",
            "dedup_bucket",
            name="uq_usage_events_dedup",
        ),
        Index("idx_usage_events_user_hash", "user_id", "event_hash", "timestamp"),
        Index("idx_usage_events_timestamp", "timestamp"),
        Index("idx_usage_events_feature", "feature_code", "timestamp"),
    )


class ErrorLog(Base):
    """A failed usage-event ingestion, kept for admin review and replay."""

    __tablename__ = "error_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    error_type: Mapped[ErrorType] = mapped_column(
        _enum(ErrorType, "error_type"), nullable=False
    )
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    stack_trace: Mapped[str | None] = mapped_column(Text)
    event_payload: Mapped[str | None] = mapped_column(
        Text, comment="Original event payload as JSON text"
    )
    user_id: Mapped[str | None] = mapped_column(String(255))
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    __table_args__ = (
        Index("idx_error_log_timestamp", "timestamp"),
        Index("idx_error_log_type", "error_type"),
    )


# =============================================================================
# NOTIFICATION MODELS
# =============================================================================


class Notification(Base, UUIDMixin):
    """An in-app notification addressed to one user."""

    __tablename__ = "notifications"

    recipient_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[NotificationEventType] = mapped_column(
        _enum(NotificationEventType, "notification_event_type"), nullable=False
    )
    event_details: Mapped[dict[str, Any]] = mapped_column(default=dict)
    link: Mapped[str | None] = mapped_column(String(500))
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column()
    delivery_status: Mapped[DeliveryStatus] = mapped_column(
        _enum(DeliveryStatus, "delivery_status"),
        default=DeliveryStatus.PENDING,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    __table_args__ = (
        Index("idx_notifications_recipient", "recipient_user_id", "created_at"),
    )


class EmailDeliveryFailure(Base, UUIDMixin):
    """Audit trail of notification emails that could not be delivered."""

    __tablename__ = "email_delivery_failures"

    notification_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("notifications.id", ondelete="SET NULL"), nullable=True
    )
    recipient_email: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    error_message: Mapped[str | None] = mapped_column(String(4000))
    failed_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    __table_args__ = (
        Index("idx_email_failures_failed_at", "failed_at"),
        Index("idx_email_failures_notification", "notification_id"),
    )


# =============================================================================
# PLANNING HISTORY MODELS
# =============================================================================


class PlanningHistory(Base):
    """
    One recorded change to a release or feature.

    entity_id carries no foreign key so history outlives the entity.
    """

    __tablename__ = "planning_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[HistoryEntityType] = mapped_column(
        _enum(HistoryEntityType, "history_entity_type"), nullable=False
    )
    entity_id: Mapped[UUID] = mapped_column(nullable=False)
    entity_code: Mapped[str] = mapped_column(String(50), nullable=False)
    change_type: Mapped[ChangeType] = mapped_column(
        _enum(ChangeType, "change_type"), nullable=False
    )
    field_name: Mapped[str | None] = mapped_column(String(100))
    old_value: Mapped[str | None] = mapped_column(Text)
    new_value: Mapped[str | None] = mapped_column(Text)
    rationale: Mapped[str | None] = mapped_column(Text)
    changed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(nullable=False)

    __table_args__ = (
        Index("idx_planning_history_entity", "entity_type", "entity_code", "changed_at"),
        Index("idx_planning_history_changed_at", "changed_at"),
    )
