"""Collection (inbound logistics) HTTP endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from ..accounts import require_access
from ..dependencies import get_caller, get_logistics_repository
from ..errors import DomainError
from ..logistics import CollectionService, LogisticsRepository
from ..models import Collection, CollectionStatus, User
from ..schemas import (
    CollectionCreate,
    CollectionPatch,
    CollectionResponse,
    InventoryApplyResponse,
    RemovalistResponse,
)
from ..services import from_cents

router = APIRouter(prefix="/collections", tags=["collections"])


async def _serialize_collection(collection: Collection, repository: LogisticsRepository) -> dict[str, object]:
    names = await repository.product_names({item.product_sku for item in collection.items})
    return {
        "collection_id": collection.collection_id,
        "name": collection.name,
        "phone": collection.phone,
        "email": collection.email,
        "suburb": collection.suburb,
        "state": collection.state,
        "description": collection.description,
        "removalist_id": collection.removalist_id,
        "removalist_name": collection.removalist.name if collection.removalist is not None else None,
        "collection_date": collection.collection_date,
        "notes": collection.notes,
        "status": collection.status,
        "est_extraction": from_cents(collection.est_extraction_cents),
        "act_extraction": from_cents(collection.act_extraction_cents),
        "inventory_applied_at": collection.inventory_applied_at,
        "created_at": collection.created_at,
        "items": [
            {
                "collection_items_id": item.collection_items_id,
                "product_sku": item.product_sku,
                "product_name": names.get(item.product_sku),
                "quantity": item.quantity,
                "purchase_price": from_cents(item.purchase_price_cents),
                "custom_description": item.custom_description,
            }
            for item in collection.items
        ],
    }


@router.get("/removalists", response_model=list[RemovalistResponse])
async def list_removalists(
    repository: LogisticsRepository = Depends(get_logistics_repository),
) -> list[RemovalistResponse]:
    return [RemovalistResponse.model_validate(row) for row in await repository.list_removalists()]


@router.get("", response_model=list[CollectionResponse])
async def list_collections(
    status_filter: CollectionStatus | None = Query(default=None, alias="status"),
    repository: LogisticsRepository = Depends(get_logistics_repository),
) -> list[CollectionResponse]:
    collections = await repository.list_collections(
        status=status_filter.value if status_filter is not None else None
    )
    return [
        CollectionResponse.model_validate(await _serialize_collection(collection, repository))
        for collection in collections
    ]


@router.get("/{collection_id}", response_model=CollectionResponse)
async def get_collection(
    collection_id: int,
    repository: LogisticsRepository = Depends(get_logistics_repository),
) -> CollectionResponse:
    try:
        collection = await CollectionService(repository).get(collection_id)
    except DomainError as exc:
        raise exc.to_http() from exc
    return CollectionResponse.model_validate(await _serialize_collection(collection, repository))


@router.post("", response_model=CollectionResponse, status_code=status.HTTP_201_CREATED)
async def create_collection(
    payload: CollectionCreate,
    repository: LogisticsRepository = Depends(get_logistics_repository),
) -> CollectionResponse:
    try:
        collection = await CollectionService(repository).create(payload)
    except DomainError as exc:
        raise exc.to_http() from exc
    return CollectionResponse.model_validate(await _serialize_collection(collection, repository))


@router.put("/{collection_id}", response_model=CollectionResponse)
async def update_collection(
    collection_id: int,
    payload: CollectionPatch,
    repository: LogisticsRepository = Depends(get_logistics_repository),
) -> CollectionResponse:
    try:
        collection = await CollectionService(repository).update(collection_id, payload)
    except DomainError as exc:
        raise exc.to_http() from exc
    return CollectionResponse.model_validate(await _serialize_collection(collection, repository))


@router.delete("/{collection_id}")
async def delete_collection(
    collection_id: int,
    repository: LogisticsRepository = Depends(get_logistics_repository),
) -> Response:
    try:
        await CollectionService(repository).delete(collection_id)
    except DomainError as exc:
        raise exc.to_http() from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{collection_id}/apply-inventory", response_model=InventoryApplyResponse)
async def apply_collection_inventory(
    collection_id: int,
    caller: User | None = Depends(get_caller),
    repository: LogisticsRepository = Depends(get_logistics_repository),
) -> InventoryApplyResponse:
    try:
        require_access(caller, "superadmin")
        result = await CollectionService(repository).apply_inventory(collection_id)
    except DomainError as exc:
        raise exc.to_http() from exc
    return InventoryApplyResponse(
        collection_id=result.collection_id,
        applied=result.applied,
        message=result.message,
        lines=[
            {
                "sku": line.sku,
                "quantity": line.quantity,
                "stock_before": line.stock_before,
                "stock_after": line.stock_after,
                "avg_cost": from_cents(line.avg_cost_cents),
            }
            for line in result.lines
        ],
    )


@router.post("/{collection_id}/reset-inventory-apply", response_model=CollectionResponse)
async def reset_collection_inventory_apply(
    collection_id: int,
    caller: User | None = Depends(get_caller),
    repository: LogisticsRepository = Depends(get_logistics_repository),
) -> CollectionResponse:
    try:
        require_access(caller, "superadmin")
        collection = await CollectionService(repository).reset_inventory_apply(collection_id)
    except DomainError as exc:
        raise exc.to_http() from exc
    return CollectionResponse.model_validate(await _serialize_collection(collection, repository))
