"""Work order HTTP endpoints."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query, Response, status

from ..accounts import PRIVILEGED_ACCESS, has_access
from ..dependencies import get_actor_id, get_caller, get_workorder_engine
from ..errors import DomainError
from ..models import User, WorkorderStatus
from ..schemas import (
    TechnicianResponse,
    WorkorderCreate,
    WorkorderCreated,
    WorkorderListResponse,
    WorkorderPatch,
    WorkorderSummary,
    WorkorderView,
)
from ..services import WorkorderEngine

router = APIRouter(prefix="/workorder", tags=["workorders"])


@router.get("", response_model=None)
async def read_workorders(
    workorder_id: int | None = Query(default=None, alias="id", ge=1),
    technicians: bool = False,
    status_filter: WorkorderStatus | None = Query(default=None, alias="status"),
    state: str | None = None,
    salesperson: str | None = None,
    payment: Literal["paid", "due"] | None = None,
    technician: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    engine: WorkorderEngine = Depends(get_workorder_engine),
) -> WorkorderView | WorkorderListResponse | list[TechnicianResponse]:
    try:
        if workorder_id is not None:
            return WorkorderView.model_validate(await engine.get(workorder_id))
        if technicians:
            return [TechnicianResponse.model_validate(row) for row in await engine.technicians()]
        rows, total = await engine.list_workorders(
            status=status_filter,
            state=state,
            salesperson=salesperson,
            payment=payment,
            technician=technician,
            limit=limit,
            offset=offset,
        )
    except DomainError as exc:
        raise exc.to_http() from exc
    return WorkorderListResponse(items=[WorkorderSummary.model_validate(row) for row in rows], total=total)


@router.post("", response_model=WorkorderCreated, status_code=status.HTTP_201_CREATED)
async def create_workorder(
    payload: WorkorderCreate,
    actor_id: str | None = Depends(get_actor_id),
    caller: User | None = Depends(get_caller),
    engine: WorkorderEngine = Depends(get_workorder_engine),
) -> WorkorderCreated:
    try:
        workorder_id = await engine.create(
            payload,
            actor_id=actor_id,
            privileged=has_access(caller, *PRIVILEGED_ACCESS),
        )
    except DomainError as exc:
        raise exc.to_http() from exc
    return WorkorderCreated(workorder_id=workorder_id)


@router.put("", response_model=WorkorderView)
async def update_workorder(
    payload: WorkorderPatch,
    workorder_id: int = Query(alias="id", ge=1),
    actor_id: str | None = Depends(get_actor_id),
    caller: User | None = Depends(get_caller),
    engine: WorkorderEngine = Depends(get_workorder_engine),
) -> WorkorderView:
    try:
        view = await engine.update(
            workorder_id,
            payload,
            actor_id=actor_id,
            privileged=has_access(caller, *PRIVILEGED_ACCESS),
        )
    except DomainError as exc:
        raise exc.to_http() from exc
    return WorkorderView.model_validate(view)


@router.delete("")
async def delete_workorder(
    workorder_id: int = Query(alias="id", ge=1),
    engine: WorkorderEngine = Depends(get_workorder_engine),
) -> Response:
    try:
        await engine.delete(workorder_id)
    except DomainError as exc:
        raise exc.to_http() from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
