"""Business logic services for Feature Tracker."""

from .adoption import AdoptionRate, AdoptionRateService, AdoptionWindow
from .catalog import (
    AssignFeatureInput,
    CreateFeatureInput,
    CreateProductInput,
    DependencyInput,
    DependencyNotFoundError,
    DependencyView,
    FeatureDependencyService,
    FeatureService,
    ProductService,
    UpdateFeatureInput,
)
from .dashboard import (
    DashboardAggregator,
    ReleaseDashboard,
    ReleaseMetrics,
    ReleaseMetricsAggregator,
    RiskLevel,
    TimelineAdherence,
)
from .email_failures import EmailDeliveryFailureNotFoundError, EmailDeliveryFailureService
from .error_log import ErrorLogNotFoundError, ErrorLogService
from .exceptions import (
    ConflictError,
    FeatureNotFoundError,
    NotFoundError,
    ProductNotFoundError,
    ReleaseNotFoundError,
    TrackerError,
    ValidationError,
)
from .health_metrics import DataGap, HealthMetrics, HealthMetricsAggregator
from .notifications import (
    NotificationFanoutEngine,
    NotificationNotFoundError,
    NotificationService,
)
from .planning_history import HistoryFilter, PlanningHistoryService
from .release_engine import (
    CreateReleaseInput,
    InvalidParentError,
    InvalidTransitionError,
    ReleaseEngine,
    ReleaseStateMachine,
    ReleaseUpdateResult,
    UpdateReleaseInput,
)
from .reprocessing import ReprocessingEngine, ReprocessRequest, ReprocessResult
from .segments import PREDEFINED_SEGMENTS, SegmentAnalytics, SegmentAnalyticsEngine
from .usage_trends import (
    PeriodType,
    TrendData,
    TrendDirection,
    UsageTrend,
    UsageTrendsService,
)
from .usage_events import (
    DeduplicationGuard,
    EventHasher,
    IngestResult,
    InvalidUsageEventError,
    UsageEventInput,
    UsageEventService,
)

__all__ = [
    # Errors
    "TrackerError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "ProductNotFoundError",
    "ReleaseNotFoundError",
    "FeatureNotFoundError",
    # Releases
    "ReleaseEngine",
    "ReleaseStateMachine",
    "InvalidTransitionError",
    "InvalidParentError",
    "CreateReleaseInput",
    "UpdateReleaseInput",
    "ReleaseUpdateResult",
    # Catalog
    "ProductService",
    "FeatureService",
    "FeatureDependencyService",
    "DependencyNotFoundError",
    "CreateProductInput",
    "CreateFeatureInput",
    "UpdateFeatureInput",
    "AssignFeatureInput",
    "DependencyInput",
    "DependencyView",
    # Notifications
    "NotificationFanoutEngine",
    "NotificationService",
    "NotificationNotFoundError",
    "EmailDeliveryFailureService",
    "EmailDeliveryFailureNotFoundError",
    # Usage
    "UsageEventService",
    "UsageEventInput",
    "IngestResult",
    "InvalidUsageEventError",
    "EventHasher",
    "DeduplicationGuard",
    "AdoptionRateService",
    "AdoptionRate",
    "AdoptionWindow",
    "SegmentAnalyticsEngine",
    "SegmentAnalytics",
    "PREDEFINED_SEGMENTS",
    "UsageTrendsService",
    "TrendData",
    "UsageTrend",
    "PeriodType",
    "TrendDirection",
    # Analytics
    "DashboardAggregator",
    "ReleaseDashboard",
    "ReleaseMetricsAggregator",
    "ReleaseMetrics",
    "RiskLevel",
    "TimelineAdherence",
    "HealthMetricsAggregator",
    "HealthMetrics",
    "DataGap",
    # Error log
    "ErrorLogService",
    "ErrorLogNotFoundError",
    "ReprocessingEngine",
    "ReprocessRequest",
    "ReprocessResult",
    # Planning history
    "PlanningHistoryService",
    "HistoryFilter",
]
