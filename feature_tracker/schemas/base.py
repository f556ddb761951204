"""Shared schema building blocks: ORM-backed responses, paging and errors."""

from math import ceil
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TrackerBaseModel(BaseModel):
    """Response models are built straight from ORM rows and DTO dataclasses."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
    )


# =============================================================================
# PAGINATION
# =============================================================================


class PaginationParams(BaseModel):
    """`?page=&page_size=` query parameters shared by every list endpoint."""

    page: int = Field(default=1, ge=1, description="1-based page index")
    page_size: int = Field(default=20, ge=1, le=100, description="Rows per page, at most 100")

    @property
    def offset(self) -> int:
        return self.page_size * (self.page - 1)


class PaginatedResponse(TrackerBaseModel):
    """One page of rows plus the totals a client needs to page further."""

    items: list[Any]
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def create(cls, items: list[Any], total: int, page: int, page_size: int) -> "PaginatedResponse":
        return cls(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=ceil(total / page_size) if page_size else 0,
        )


# =============================================================================
# ERRORS
# =============================================================================


class ErrorResponse(TrackerBaseModel):
    """
    Body returned for rejected requests.

    `error_log_id` is set when the rejected payload was kept in the error
    log and can be replayed through /admin/reprocess.
    """

    error: str
    message: str
    details: list[dict[str, Any]] = []
    error_log_id: int | None = None
