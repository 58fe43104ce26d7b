"""HTTP routes for customer records."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from ..catalog import CatalogRepository
from ..dependencies import get_catalog_repository
from ..errors import NotFound, ValidationError
from ..schemas import CustomerCreate, CustomerListResponse, CustomerResponse, CustomerUpdate

router = APIRouter(prefix="/customers", tags=["customers"])


@router.get("", response_model=CustomerListResponse)
async def list_customers(
    search: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    repository: CatalogRepository = Depends(get_catalog_repository),
) -> CustomerListResponse:
    customers, total = await repository.list_customers(
        search=search.strip() if search and search.strip() else None,
        limit=limit,
        offset=offset,
    )
    return CustomerListResponse(
        items=[CustomerResponse.model_validate(customer) for customer in customers],
        total=total,
    )


@router.get("/{customer_id}", response_model=CustomerResponse)
async def get_customer(
    customer_id: int,
    repository: CatalogRepository = Depends(get_catalog_repository),
) -> CustomerResponse:
    customer = await repository.get_customer(customer_id)
    if customer is None:
        raise NotFound("Customer not found", customer_id=customer_id).to_http()
    return CustomerResponse.model_validate(customer)


@router.post("", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
async def create_customer(
    payload: CustomerCreate,
    repository: CatalogRepository = Depends(get_catalog_repository),
) -> CustomerResponse:
    missing = [name for name in ("name", "email") if getattr(payload, name) is None]
    if missing:
        raise ValidationError("Missing required fields", fields=missing).to_http()
    customer = await repository.create_customer(**payload.model_dump())
    return CustomerResponse.model_validate(customer)


@router.put("/{customer_id}", response_model=CustomerResponse)
async def update_customer(
    customer_id: int,
    payload: CustomerUpdate,
    repository: CatalogRepository = Depends(get_catalog_repository),
) -> CustomerResponse:
    customer = await repository.get_customer(customer_id)
    if customer is None:
        raise NotFound("Customer not found", customer_id=customer_id).to_http()
    changes = payload.model_dump(exclude_unset=True)
    for required in ("name", "email"):
        if required in changes and changes[required] is None:
            raise ValidationError(f"{required} cannot be blank", fields=[required]).to_http()
    for field, value in changes.items():
        setattr(customer, field, value)
    await repository.flush()
    return CustomerResponse.model_validate(customer)
