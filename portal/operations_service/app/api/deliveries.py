"""Delivery HTTP endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel

from ..dependencies import get_actor_id, get_logistics_repository
from ..errors import DomainError, NotFound
from ..logistics import DeliveryService, LogisticsRepository
from ..models import DeliveryStatus
from ..schemas import (
    DeliveryCreate,
    DeliveryListResponse,
    DeliveryPatch,
    DeliveryResponse,
    RemovalistResponse,
)
from ..services import from_cents

router = APIRouter(prefix="/delivery", tags=["deliveries"])


class DeliveryUpdateResponse(BaseModel):
    message: str
    delivery: DeliveryResponse


def _serialize_delivery(delivery) -> dict[str, object]:
    return {
        "delivery_id": delivery.delivery_id,
        "invoice_id": delivery.invoice_id,
        "customer_id": delivery.customer_id,
        "customer_name": delivery.customer.name,
        "delivery_suburb": delivery.delivery_suburb,
        "delivery_state": delivery.delivery_state,
        "delivery_charged": from_cents(delivery.delivery_charged_cents),
        "delivery_quoted": from_cents(delivery.delivery_quoted_cents),
        "removalist_id": delivery.removalist_id,
        "removalist_name": delivery.removalist.name if delivery.removalist is not None else None,
        "delivery_date": delivery.delivery_date,
        "delivery_status": delivery.delivery_status,
        "notes": delivery.notes,
        "workorder_id": delivery.workorder_id,
        "date_created": delivery.date_created,
    }


@router.get("", response_model=None)
async def read_deliveries(
    delivery_id: int | None = Query(default=None, alias="id", ge=1),
    include_removalists: bool = False,
    status_filter: DeliveryStatus | None = Query(default=None, alias="status"),
    workorder_id: int | None = Query(default=None, ge=1),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    repository: LogisticsRepository = Depends(get_logistics_repository),
) -> DeliveryResponse | DeliveryListResponse | list[RemovalistResponse]:
    if include_removalists:
        return [RemovalistResponse.model_validate(row) for row in await repository.list_removalists()]
    if delivery_id is not None:
        delivery = await repository.get_delivery(delivery_id)
        if delivery is None:
            raise NotFound(f"Delivery {delivery_id} not found", delivery_id=delivery_id).to_http()
        return DeliveryResponse.model_validate(_serialize_delivery(delivery))
    deliveries, total = await repository.list_deliveries(
        status=status_filter.value if status_filter is not None else None,
        workorder_id=workorder_id,
        limit=limit,
        offset=offset,
    )
    return DeliveryListResponse(
        items=[DeliveryResponse.model_validate(_serialize_delivery(row)) for row in deliveries],
        total=total,
    )


@router.post("", response_model=DeliveryResponse, status_code=status.HTTP_201_CREATED)
async def create_delivery(
    payload: DeliveryCreate,
    actor_id: str | None = Depends(get_actor_id),
    repository: LogisticsRepository = Depends(get_logistics_repository),
) -> DeliveryResponse:
    try:
        delivery = await DeliveryService(repository).create(payload, actor_id=actor_id)
    except DomainError as exc:
        raise exc.to_http() from exc
    return DeliveryResponse.model_validate(_serialize_delivery(delivery))


@router.put("", response_model=DeliveryUpdateResponse)
async def update_delivery(
    payload: DeliveryPatch,
    delivery_id: int = Query(alias="id", ge=1),
    actor_id: str | None = Depends(get_actor_id),
    repository: LogisticsRepository = Depends(get_logistics_repository),
) -> DeliveryUpdateResponse:
    try:
        delivery, changed = await DeliveryService(repository).update(delivery_id, payload, actor_id=actor_id)
    except DomainError as exc:
        raise exc.to_http() from exc
    return DeliveryUpdateResponse(
        message="Updated" if changed else "No changes",
        delivery=DeliveryResponse.model_validate(_serialize_delivery(delivery)),
    )


@router.delete("")
async def delete_delivery(
    delivery_id: int = Query(alias="id", ge=1),
    repository: LogisticsRepository = Depends(get_logistics_repository),
) -> Response:
    try:
        await DeliveryService(repository).delete(delivery_id)
    except DomainError as exc:
        raise exc.to_http() from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
