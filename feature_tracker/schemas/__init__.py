"""Pydantic schemas for API request/response validation."""

from .base import (
    ErrorResponse,
    PaginatedResponse,
    PaginationParams,
    TrackerBaseModel,
)
from .catalog import (
    DependencyCreate,
    DependencyResponse,
    DependencyUpdate,
    FeatureCreate,
    FeatureMoveRequest,
    FeaturePlanningUpdate,
    FeatureResponse,
    FeatureUpdate,
    ProductCreate,
    ProductResponse,
    ReleaseCreate,
    ReleaseFeatureAssign,
    ReleaseResponse,
    ReleaseUpdate,
)
from .telemetry import (
    EmailDeliveryFailureResponse,
    ErrorLogResponse,
    NotificationResponse,
    UsageEventCreate,
    UsageEventResponse,
)

__all__ = [
    # Base
    "TrackerBaseModel",
    "PaginationParams",
    "PaginatedResponse",
    "ErrorResponse",
    # Catalog
    "ProductCreate",
    "ProductResponse",
    "ReleaseCreate",
    "ReleaseUpdate",
    "ReleaseResponse",
    "FeatureCreate",
    "FeatureUpdate",
    "FeaturePlanningUpdate",
    "FeatureResponse",
    "ReleaseFeatureAssign",
    "FeatureMoveRequest",
    "DependencyCreate",
    "DependencyUpdate",
    "DependencyResponse",
    # Telemetry
    "UsageEventCreate",
    "UsageEventResponse",
    "NotificationResponse",
    "ErrorLogResponse",
    "EmailDeliveryFailureResponse",
]
