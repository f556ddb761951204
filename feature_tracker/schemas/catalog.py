"""Pydantic schemas for products, releases and features."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from ..models import (
    DependencyType,
    Feature,
    FeaturePlanningStatus,
    FeatureStatus,
    Release,
    ReleaseStatus,
)
from .base import TrackerBaseModel


# =============================================================================
# PRODUCT SCHEMAS
# =============================================================================


class ProductCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    prefix: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None


class ProductResponse(TrackerBaseModel):
    id: UUID
    code: str
    prefix: str
    name: str
    description: str | None = None
    created_by: str
    created_at: datetime


# =============================================================================
# RELEASE SCHEMAS
# =============================================================================


class ReleaseCreate(BaseModel):
    product_code: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1, max_length=50)
    description: str | None = None
    parent_code: str | None = None
    released_at: datetime | None = None


class ReleaseUpdate(BaseModel):
    """Full replacement of the mutable release fields.

    An omitted ``parent_code`` clears the parent; an omitted ``status``
    keeps the current one.
    """

    description: str | None = None
    status: ReleaseStatus | None = None
    released_at: datetime | None = None
    parent_code: str | None = None


class ReleaseResponse(TrackerBaseModel):
    id: UUID
    code: str
    product_code: str
    description: str | None = None
    status: ReleaseStatus
    parent_code: str | None = None
    released_at: datetime | None = None
    created_by: str
    created_at: datetime
    updated_by: str | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, release: Release) -> "ReleaseResponse":
        return cls(
            id=release.id,
            code=release.code,
            product_code=release.product.code,
            description=release.description,
            status=release.status,
            parent_code=release.parent.code if release.parent else None,
            released_at=release.released_at,
            created_by=release.created_by,
            created_at=release.created_at,
            updated_by=release.updated_by,
            updated_at=release.updated_at,
        )


# =============================================================================
# FEATURE SCHEMAS
# =============================================================================


class FeatureCreate(BaseModel):
    product_code: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=500)
    code: str | None = Field(default=None, max_length=50)
    description: str | None = None
    release_code: str | None = None
    assigned_to: str | None = Field(default=None, max_length=255)


class FeatureUpdate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: str | None = None
    status: FeatureStatus = FeatureStatus.NEW
    release_code: str | None = None
    assigned_to: str | None = Field(default=None, max_length=255)


class FeaturePlanningUpdate(BaseModel):
    """Partial planning update; only fields present in the body change."""

    planned_completion_date: datetime | None = None
    actual_completion_date: datetime | None = None
    planning_status: str | None = None
    feature_owner: str | None = None
    blockage_reason: str | None = None
    notes: str | None = None


class ReleaseFeatureAssign(BaseModel):
    feature_code: str = Field(..., min_length=1)
    planned_completion_date: datetime | None = None
    feature_owner: str | None = Field(default=None, max_length=255)
    notes: str | None = None


class FeatureMoveRequest(BaseModel):
    rationale: str | None = None


class FeatureResponse(TrackerBaseModel):
    id: UUID
    code: str
    title: str
    description: str | None = None
    status: FeatureStatus
    product_code: str
    release_code: str | None = None
    created_by: str
    assigned_to: str | None = None
    created_at: datetime
    updated_by: str | None = None
    updated_at: datetime | None = None
    planned_completion_date: datetime | None = None
    actual_completion_date: datetime | None = None
    planning_status: FeaturePlanningStatus | None = None
    feature_owner: str | None = None
    blockage_reason: str | None = None
    notes: str | None = None

    @classmethod
    def from_model(cls, feature: Feature) -> "FeatureResponse":
        return cls(
            id=feature.id,
            code=feature.code,
            title=feature.title,
            description=feature.description,
            status=feature.status,
            product_code=feature.product.code,
            release_code=feature.release.code if feature.release else None,
            created_by=feature.created_by,
            assigned_to=feature.assigned_to,
            created_at=feature.created_at,
            updated_by=feature.updated_by,
            updated_at=feature.updated_at,
            planned_completion_date=feature.planned_completion_date,
            actual_completion_date=feature.actual_completion_date,
            planning_status=feature.planning_status,
            feature_owner=feature.feature_owner,
            blockage_reason=feature.blockage_reason,
            notes=feature.notes,
        )


class DependencyCreate(BaseModel):
    depends_on_feature_code: str = Field(..., min_length=1)
    dependency_type: DependencyType
    notes: str | None = None


class DependencyUpdate(BaseModel):
    dependency_type: DependencyType
    notes: str | None = None


class DependencyResponse(TrackerBaseModel):
    feature_code: str
    depends_on_feature_code: str
    depends_on_feature_title: str
    dependency_type: DependencyType
    notes: str | None = None
    created_at: datetime
