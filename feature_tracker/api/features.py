"""Feature API routes: CRUD, planning updates and dependencies."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from ..core import ClockDep, CurrentUserDep, SessionDep
from ..schemas import (
    DependencyCreate,
    DependencyResponse,
    DependencyUpdate,
    FeatureCreate,
    FeaturePlanningUpdate,
    FeatureResponse,
    FeatureUpdate,
)
from ..services.catalog import (
    CreateFeatureInput,
    DependencyInput,
    FeatureDependencyService,
    FeatureService,
    UpdateFeatureInput,
)
from ..services.exceptions import TrackerError
from .errors import to_http_exception

router = APIRouter(prefix="/features", tags=["features"])


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_feature_service(session: SessionDep, clock: ClockDep) -> FeatureService:
    return FeatureService(session, clock)


def get_dependency_service(session: SessionDep) -> FeatureDependencyService:
    return FeatureDependencyService(session)


FeatureServiceDep = Annotated[FeatureService, Depends(get_feature_service)]
DependencyServiceDep = Annotated[FeatureDependencyService, Depends(get_dependency_service)]


# =============================================================================
# FEATURE ENDPOINTS
# =============================================================================


@router.get("", response_model=list[FeatureResponse], summary="List features")
async def list_features(
    service: FeatureServiceDep,
    product_code: str | None = Query(default=None),
    release_code: str | None = Query(default=None),
):
    features = await service.list_features(product_code, release_code)
    return [FeatureResponse.from_model(f) for f in features]


@router.get("/{code}", response_model=FeatureResponse, summary="Get a feature")
async def get_feature(code: str, service: FeatureServiceDep):
    try:
        feature = await service.get_feature(code)
    except TrackerError as e:
        raise to_http_exception(e)
    return FeatureResponse.from_model(feature)


@router.post(
    "",
    response_model=FeatureResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a feature",
)
async def create_feature(
    request: FeatureCreate,
    current_user: CurrentUserDep,
    service: FeatureServiceDep,
):
    try:
        feature = await service.create_feature(
            CreateFeatureInput(
                product_code=request.product_code,
                title=request.title,
                code=request.code,
                description=request.description,
                release_code=request.release_code,
                assigned_to=request.assigned_to,
            ),
            actor=current_user.username,
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return FeatureResponse.from_model(feature)


@router.put("/{code}", response_model=FeatureResponse, summary="Update a feature")
async def update_feature(
    code: str,
    request: FeatureUpdate,
    current_user: CurrentUserDep,
    service: FeatureServiceDep,
):
    try:
        feature = await service.update_feature(
            code,
            UpdateFeatureInput(
                title=request.title,
                description=request.description,
                status=request.status,
                release_code=request.release_code,
                assigned_to=request.assigned_to,
            ),
            actor=current_user.username,
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return FeatureResponse.from_model(feature)


@router.delete(
    "/{code}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a feature",
)
async def delete_feature(
    code: str,
    current_user: CurrentUserDep,
    service: FeatureServiceDep,
):
    try:
        await service.delete_feature(code, actor=current_user.username)
    except TrackerError as e:
        raise to_http_exception(e)


@router.patch(
    "/{code}/planning",
    response_model=FeatureResponse,
    summary="Update feature planning",
    description="""
    Partially update planning fields. Only fields present in the request
    body are changed; an explicit null clears a field.
    """,
)
async def update_feature_planning(
    code: str,
    request: FeaturePlanningUpdate,
    current_user: CurrentUserDep,
    service: FeatureServiceDep,
):
    try:
        feature = await service.update_planning(
            code,
            request.model_dump(exclude_unset=True),
            actor=current_user.username,
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return FeatureResponse.from_model(feature)


# =============================================================================
# DEPENDENCY ENDPOINTS
# =============================================================================


@router.get(
    "/{code}/dependencies",
    response_model=list[DependencyResponse],
    summary="List feature dependencies",
)
async def list_dependencies(code: str, service: DependencyServiceDep):
    try:
        views = await service.list_dependencies(code)
    except TrackerError as e:
        raise to_http_exception(e)
    return [DependencyResponse.model_validate(v) for v in views]


@router.post(
    "/{code}/dependencies",
    response_model=DependencyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a feature dependency",
)
async def add_dependency(
    code: str,
    request: DependencyCreate,
    current_user: CurrentUserDep,
    service: DependencyServiceDep,
):
    try:
        view = await service.add_dependency(
            code,
            DependencyInput(
                depends_on_feature_code=request.depends_on_feature_code,
                dependency_type=request.dependency_type,
                notes=request.notes,
            ),
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return DependencyResponse.model_validate(view)


@router.put(
    "/{code}/dependencies/{depends_on_code}",
    response_model=DependencyResponse,
    summary="Update a feature dependency",
)
async def update_dependency(
    code: str,
    depends_on_code: str,
    request: DependencyUpdate,
    current_user: CurrentUserDep,
    service: DependencyServiceDep,
):
    try:
        view = await service.update_dependency(
            code,
            DependencyInput(
                depends_on_feature_code=depends_on_code,
                dependency_type=request.dependency_type,
                notes=request.notes,
            ),
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return DependencyResponse.model_validate(view)


@router.delete(
    "/{code}/dependencies/{depends_on_code}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a feature dependency",
)
async def remove_dependency(
    code: str,
    depends_on_code: str,
    current_user: CurrentUserDep,
    service: DependencyServiceDep,
):
    try:
        await service.remove_dependency(code, depends_on_code)
    except TrackerError as e:
        raise to_http_exception(e)
