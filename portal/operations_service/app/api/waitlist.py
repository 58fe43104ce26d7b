"""HTTP routes for the product waitlist."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from ..catalog import CatalogRepository
from ..dependencies import get_catalog_repository
from ..errors import NotFound, ValidationError
from ..models import WaitlistEntry
from ..schemas import WaitlistCreate, WaitlistResponse, WaitlistUpdate

router = APIRouter(prefix="/waitlist", tags=["waitlist"])


def _serialize_entry(entry: WaitlistEntry) -> dict[str, object]:
    return {
        "waitlist_id": entry.waitlist_id,
        "customer_id": entry.customer_id,
        "customer_name": entry.customer.name,
        "sku": entry.sku,
        "product_name": entry.product.name,
        "stock": entry.product.stock,
        "salesperson": entry.salesperson,
        "status": entry.status,
        "notes": entry.notes,
        "waitlisted": entry.waitlisted,
    }


async def _load_entry(repository: CatalogRepository, waitlist_id: int) -> WaitlistEntry:
    entry = await repository.get_waitlist_entry(waitlist_id)
    if entry is None:
        raise NotFound("Waitlist entry not found", waitlist_id=waitlist_id).to_http()
    return entry


@router.get("", response_model=list[WaitlistResponse])
async def list_waitlist(
    repository: CatalogRepository = Depends(get_catalog_repository),
) -> list[WaitlistResponse]:
    return [WaitlistResponse.model_validate(_serialize_entry(entry)) for entry in await repository.list_waitlist()]


@router.get("/{waitlist_id}", response_model=WaitlistResponse)
async def get_waitlist_entry(
    waitlist_id: int,
    repository: CatalogRepository = Depends(get_catalog_repository),
) -> WaitlistResponse:
    return WaitlistResponse.model_validate(_serialize_entry(await _load_entry(repository, waitlist_id)))


@router.post("", response_model=WaitlistResponse, status_code=status.HTTP_201_CREATED)
async def create_waitlist_entry(
    payload: WaitlistCreate,
    repository: CatalogRepository = Depends(get_catalog_repository),
) -> WaitlistResponse:
    missing = [name for name in ("customer_id", "sku") if getattr(payload, name) is None]
    if missing:
        raise ValidationError("Missing required fields", fields=missing).to_http()
    sku = payload.sku.upper()
    if await repository.get_customer(payload.customer_id) is None:
        raise NotFound("Customer not found", customer_id=payload.customer_id).to_http()
    if await repository.get_product(sku) is None:
        raise NotFound("Product not found", sku=sku).to_http()
    entry = await repository.create_waitlist_entry(
        customer_id=payload.customer_id,
        sku=sku,
        salesperson=payload.salesperson,
        status=payload.status or "Active",
        notes=payload.notes,
    )
    return WaitlistResponse.model_validate(_serialize_entry(await _load_entry(repository, entry.waitlist_id)))


@router.put("/{waitlist_id}", response_model=WaitlistResponse)
async def update_waitlist_entry(
    waitlist_id: int,
    payload: WaitlistUpdate,
    repository: CatalogRepository = Depends(get_catalog_repository),
) -> WaitlistResponse:
    entry = await _load_entry(repository, waitlist_id)
    changes = payload.model_dump(exclude_unset=True)
    if "status" in changes and changes["status"] is None:
        raise ValidationError("status cannot be blank", fields=["status"]).to_http()
    for field, value in changes.items():
        setattr(entry, field, value)
    await repository.flush()
    return WaitlistResponse.model_validate(_serialize_entry(await _load_entry(repository, waitlist_id)))


@router.delete("/{waitlist_id}")
async def delete_waitlist_entry(
    waitlist_id: int,
    repository: CatalogRepository = Depends(get_catalog_repository),
) -> Response:
    entry = await _load_entry(repository, waitlist_id)
    await repository.delete(entry)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
