"""SQLAlchemy models for Feature Tracker."""

from .base import Base, TimestampMixin, UTCDateTime, UUIDMixin, utc_now
from .models import (
    # Enums
    ActionType,
    ChangeType,
    DeliveryStatus,
    DependencyType,
    ErrorType,
    FeaturePlanningStatus,
    FeatureStatus,
    HistoryEntityType,
    NotificationEventType,
    ReleaseStatus,
    # Catalog models
    Feature,
    FeatureDependency,
    Product,
    Release,
    # Telemetry models
    ErrorLog,
    UsageEvent,
    # Notification models
    EmailDeliveryFailure,
    Notification,
    # Planning history
    PlanningHistory,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "UTCDateTime",
    "utc_now",
    # Enums
    "ReleaseStatus",
    "FeatureStatus",
    "FeaturePlanningStatus",
    "DependencyType",
    "ActionType",
    "ErrorType",
    "NotificationEventType",
    "DeliveryStatus",
    "HistoryEntityType",
    "ChangeType",
    # Catalog
    "Product",
    "Release",
    "Feature",
    "FeatureDependency",
    # Telemetry
    "UsageEvent",
    "ErrorLog",
    # Notifications
    "Notification",
    "EmailDeliveryFailure",
    # Planning history
    "PlanningHistory",
]
