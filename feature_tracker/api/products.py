"""Product API routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from ..core import ClockDep, CurrentUserDep, SessionDep
from ..schemas import ProductCreate, ProductResponse
from ..services.catalog import CreateProductInput, ProductService
from ..services.exceptions import TrackerError
from .errors import to_http_exception

router = APIRouter(prefix="/products", tags=["products"])


def get_product_service(session: SessionDep, clock: ClockDep) -> ProductService:
    return ProductService(session, clock)


ProductServiceDep = Annotated[ProductService, Depends(get_product_service)]


@router.get("", response_model=list[ProductResponse], summary="List products")
async def list_products(service: ProductServiceDep):
    products = await service.list_products()
    return [ProductResponse.model_validate(p) for p in products]


@router.get("/{code}", response_model=ProductResponse, summary="Get a product")
async def get_product(code: str, service: ProductServiceDep):
    try:
        product = await service.get_product(code)
    except TrackerError as e:
        raise to_http_exception(e)
    return ProductResponse.model_validate(product)


@router.post(
    "",
    response_model=ProductResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a product",
)
async def create_product(
    request: ProductCreate,
    current_user: CurrentUserDep,
    service: ProductServiceDep,
):
    try:
        product = await service.create_product(
            CreateProductInput(
                code=request.code,
                prefix=request.prefix,
                name=request.name,
                description=request.description,
            ),
            actor=current_user.username,
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return ProductResponse.model_validate(product)
