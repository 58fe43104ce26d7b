"""HTTP routes for products and brands."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from ..catalog import CatalogRepository
from ..dependencies import get_catalog_repository
from ..errors import Conflict, NotFound
from ..models import Product
from ..schemas import BrandResponse, ProductCreate, ProductResponse, ProductUpdate
from ..services import from_cents, to_cents

router = APIRouter(tags=["products"])


def _serialize_product(product: Product) -> dict[str, object]:
    return {
        "sku": product.sku,
        "name": product.name,
        "brand": product.brand,
        "price": from_cents(product.price_cents),
        "avg_cost": from_cents(product.avg_cost_cents),
        "stock": product.stock,
    }


@router.get("/products", response_model=list[ProductResponse])
async def list_products(
    brand: str | None = Query(default=None),
    in_stock: bool | None = Query(default=None),
    repository: CatalogRepository = Depends(get_catalog_repository),
) -> list[ProductResponse]:
    products = await repository.list_products(
        brand=brand.strip() if brand and brand.strip() else None,
        in_stock=in_stock,
    )
    return [ProductResponse.model_validate(_serialize_product(product)) for product in products]


@router.get("/products/{sku}", response_model=ProductResponse)
async def get_product(
    sku: str,
    repository: CatalogRepository = Depends(get_catalog_repository),
) -> ProductResponse:
    product = await repository.get_product(sku.strip().upper())
    if product is None:
        raise NotFound("Product not found", sku=sku).to_http()
    return ProductResponse.model_validate(_serialize_product(product))


@router.post("/products", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    payload: ProductCreate,
    repository: CatalogRepository = Depends(get_catalog_repository),
) -> ProductResponse:
    if await repository.get_product(payload.sku) is not None:
        raise Conflict("SKU already exists", sku=payload.sku).to_http()
    product = await repository.create_product(
        sku=payload.sku,
        name=payload.name,
        brand=payload.brand,
        price_cents=to_cents(payload.price),
        stock=payload.stock,
    )
    return ProductResponse.model_validate(_serialize_product(product))


@router.put("/products/{sku}", response_model=ProductResponse)
async def update_product(
    sku: str,
    payload: ProductUpdate,
    repository: CatalogRepository = Depends(get_catalog_repository),
) -> ProductResponse:
    product = await repository.get_product(sku.strip().upper())
    if product is None:
        raise NotFound("Product not found", sku=sku).to_http()
    if payload.name is not None:
        product.name = payload.name
    if "brand" in payload.model_fields_set:
        product.brand = payload.brand
    if payload.price is not None:
        product.price_cents = to_cents(payload.price)
    if payload.stock is not None:
        product.stock = payload.stock
    await repository.flush()
    return ProductResponse.model_validate(_serialize_product(product))


@router.get("/brands", response_model=list[BrandResponse], tags=["brands"])
async def list_brands(
    repository: CatalogRepository = Depends(get_catalog_repository),
) -> list[BrandResponse]:
    return [BrandResponse.model_validate(brand) for brand in await repository.list_brands()]
