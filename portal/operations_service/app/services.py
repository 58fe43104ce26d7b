"""Work order lifecycle engine.

Every public operation runs in exactly one transaction opened from the
injected session factory. Stock movements, item and work order writes, the
cascaded delivery and every audit row either commit together or not at all.
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portal.common import unit_of_work

from .audit import AuditLogger, EventType, normalize_actor_id
from .errors import Forbidden, NotFound, ServerError, ValidationError, classify_error
from .inventory import InventoryAdjuster, is_custom_line
from .metrics import (
    DELIVERY_AUTO_CREATED_TOTAL,
    WORKORDER_COMPLETED_TOTAL,
    WORKORDER_CREATED_TOTAL,
    WORKORDER_FAILURES_TOTAL,
)
from .models import DeliveryStatus, ItemStatus, Workorder, WorkorderItem, WorkorderStatus
from .repository import PaymentFilter, WorkorderRepository
from .schemas import WorkorderCreate, WorkorderItemCreate, WorkorderItemPatch, WorkorderPatch

_LOGGER = logging.getLogger(__name__)

_REQUIRED_ON_CREATE = (
    "invoice_id",
    "customer_id",
    "salesperson",
    "delivery_state",
    "lead_time",
    "outstanding_balance",
)
_LEAD_TIME_WEEKS = re.compile(r"\d+")
_CENT = Decimal("0.01")


def to_cents(amount: Decimal) -> int:
    return int((amount * Decimal("100")).to_integral_value(rounding=ROUND_HALF_UP))


def to_cents_or_none(amount: Decimal | None) -> int | None:
    return None if amount is None else to_cents(amount)


def from_cents(cents: int | None) -> Decimal | None:
    if cents is None:
        return None
    return (Decimal(cents) / Decimal("100")).quantize(_CENT)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_lead_time_weeks(label: str | None) -> int | None:
    """Return the first integer in a lead time label such as ``"6 weeks"``."""

    if not label:
        return None
    match = _LEAD_TIME_WEEKS.search(label)
    if match is None:
        return None
    weeks = int(match.group(0))
    return weeks if weeks > 0 else None


def estimate_completion(label: str | None, today: date) -> date | None:
    weeks = parse_lead_time_weeks(label)
    if weeks is None:
        return None
    return today + timedelta(days=weeks * 7)


def normalize_technician_id(value: str | None) -> str:
    """Technician codes share the actor format but can never fall back to a default."""

    cleaned = (value or "").strip()
    if not cleaned:
        msg = "technician_id is required and cannot be cleared"
        raise ValidationError(msg, field="technician_id")
    code = normalize_actor_id(cleaned)
    if code == "NA" and cleaned.upper() != "NA":
        msg = f"technician_id {value!r} is not a valid code"
        raise ValidationError(msg, field="technician_id")
    return code


def all_items_completed(items: Iterable[WorkorderItem]) -> bool:
    live = [item for item in items if item.status != ItemStatus.CANCELED.value]
    return bool(live) and all(item.status == ItemStatus.COMPLETED.value for item in live)


def _items_text(items: Iterable[WorkorderItem], names: dict[str, str]) -> str:
    parts = [
        f"{item.quantity} × {names.get(item.product_id, item.product_id)}"
        for item in items
        if item.status != ItemStatus.CANCELED.value
    ]
    return ", ".join(parts) or "-"


class WorkorderEngine:
    """Create, mutate and delete work orders together with their stock effects."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        business_timezone: str = "Australia/Melbourne",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.zone = ZoneInfo(business_timezone)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return ensure_utc(self._clock())

    def today(self) -> date:
        return self.now().astimezone(self.zone).date()

    @asynccontextmanager
    async def _transaction(self, operation: str, workorder_id: int | None = None) -> AsyncIterator[AsyncSession]:
        try:
            async with unit_of_work(self.session_factory) as session:
                yield session
        except Exception as exc:
            error = classify_error(exc)
            WORKORDER_FAILURES_TOTAL.labels(operation=operation, kind=error.kind).inc()
            if isinstance(error, ServerError):
                _LOGGER.exception("Workorder %s failed (workorder_id=%s)", operation, workorder_id)
            if error is exc:
                raise
            raise error from exc

    # Reads

    async def get(self, workorder_id: int) -> dict[str, Any]:
        async with self._transaction("get", workorder_id) as session:
            return await self.load_workorder_view(session, workorder_id)

    async def list_workorders(
        self,
        *,
        status: WorkorderStatus | None = None,
        state: str | None = None,
        salesperson: str | None = None,
        payment: PaymentFilter | None = None,
        technician: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        async with self._transaction("list") as session:
            repository = WorkorderRepository(session)
            workorders, total = await repository.list_workorders(
                status=status.value if status is not None else None,
                state=state,
                salesperson=salesperson,
                payment=payment,
                technician=normalize_actor_id(technician) if technician else None,
                limit=limit,
                offset=offset,
            )
            names = await repository.product_names(
                item.product_id for workorder in workorders for item in workorder.items
            )
            return [self._summary(workorder, names) for workorder in workorders], total

    async def technicians(self) -> list[dict[str, str]]:
        async with self._transaction("technicians") as session:
            users = await WorkorderRepository(session).list_users_with_access("technician")
            return [{"id": user.id, "name": user.name} for user in users]

    async def load_workorder_view(self, session: AsyncSession, workorder_id: int) -> dict[str, Any]:
        """Build the full read model; shared by ``get`` and the mutating operations."""

        repository = WorkorderRepository(session)
        workorder = await repository.get_workorder(workorder_id)
        if workorder is None:
            raise NotFound(f"Workorder {workorder_id} not found", workorder_id=workorder_id)
        activity = await repository.list_activity(workorder_id)
        names = await repository.product_names(
            [item.product_id for item in workorder.items] + [sku for _, sku in activity if sku]
        )
        customer = workorder.customer
        return {
            "workorder_id": workorder.workorder_id,
            "invoice_id": workorder.invoice_id,
            "customer_id": workorder.customer_id,
            "customer_name": customer.name,
            "customer_email": customer.email,
            "customer_phone": customer.phone,
            "salesperson": workorder.salesperson,
            "delivery_suburb": workorder.delivery_suburb,
            "delivery_state": workorder.delivery_state,
            "delivery_charged": from_cents(workorder.delivery_charged_cents),
            "lead_time": workorder.lead_time,
            "estimated_completion": workorder.estimated_completion,
            "notes": workorder.notes,
            "status": workorder.status,
            "outstanding_balance": from_cents(workorder.outstanding_balance_cents),
            "important_flag": workorder.important_flag,
            "date_created": self._local(workorder.date_created),
            "items": [
                {
                    "workorder_items_id": item.workorder_items_id,
                    "product_id": item.product_id,
                    "product_name": names.get(item.product_id, item.product_id),
                    "quantity": item.quantity,
                    "condition": item.condition,
                    "technician_id": item.technician_id,
                    "status": item.status,
                    "in_workshop": self._local(item.in_workshop),
                    "workshop_duration": item.workshop_duration,
                    "item_sn": item.item_sn,
                    "selling_price": from_cents(item.selling_price_cents),
                }
                for item in workorder.items
                if item.status != ItemStatus.CANCELED.value
            ],
            "activity": [
                {
                    "id": log.id,
                    "ts": self._local(log.created_at),
                    "event_type": log.event_type,
                    "user_id": log.user_id,
                    "workorder_items_id": log.workorder_items_id,
                    "product_name": names.get(sku, sku) if sku else None,
                    "item_status": log.item_status,
                }
                for log, sku in activity
            ],
        }

    # Writes

    async def create(
        self,
        payload: WorkorderCreate,
        *,
        actor_id: str | None = None,
        privileged: bool = False,
    ) -> int:
        missing = [name for name in _REQUIRED_ON_CREATE if getattr(payload, name) is None]
        if missing:
            WORKORDER_FAILURES_TOTAL.labels(operation="create", kind=ValidationError.kind).inc()
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)
        actor = normalize_actor_id(actor_id or payload.user_id or payload.salesperson)
        estimated = payload.estimated_completion or estimate_completion(payload.lead_time, self.today())

        async with self._transaction("create") as session:
            repository = WorkorderRepository(session)
            if not await repository.customer_exists(payload.customer_id):
                raise NotFound(f"Customer {payload.customer_id} not found", customer_id=payload.customer_id)
            workorder = await repository.create_workorder(
                invoice_id=payload.invoice_id,
                customer_id=payload.customer_id,
                salesperson=payload.salesperson,
                delivery_suburb=payload.delivery_suburb,
                delivery_state=payload.delivery_state,
                delivery_charged_cents=to_cents_or_none(payload.delivery_charged),
                lead_time=payload.lead_time,
                estimated_completion=estimated,
                notes=payload.notes,
                status=WorkorderStatus.WORK_ORDERED.value,
                outstanding_balance_cents=to_cents(payload.outstanding_balance),
                important_flag=payload.important_flag,
            )
            adjuster = InventoryAdjuster(session)
            for line in payload.items:
                await self._add_item(repository, adjuster, workorder, line, privileged=privileged)
            await AuditLogger(session).record(workorder.workorder_id, EventType.WORKORDER_CREATED, actor)
            workorder_id = workorder.workorder_id

        WORKORDER_CREATED_TOTAL.inc()
        _LOGGER.info(
            "Created workorder %s for invoice %s with %s item(s)",
            workorder_id,
            payload.invoice_id,
            len(payload.items),
        )
        return workorder_id

    async def update(
        self,
        workorder_id: int,
        patch: WorkorderPatch,
        *,
        actor_id: str | None = None,
        privileged: bool = False,
    ) -> dict[str, Any]:
        actor = normalize_actor_id(actor_id or patch.user_id)
        supplied = patch.model_fields_set

        async with self._transaction("update", workorder_id) as session:
            repository = WorkorderRepository(session)
            adjuster = InventoryAdjuster(session)
            audit = AuditLogger(session)

            workorder = await repository.lock_workorder(workorder_id)
            if workorder is None:
                raise NotFound(f"Workorder {workorder_id} not found", workorder_id=workorder_id)
            items = {item.workorder_items_id: item for item in await repository.lock_items(workorder_id)}
            loaded_status = workorder.status
            completed_before = all_items_completed(items.values())

            requested_status: WorkorderStatus | None = None
            if "status" in supplied:
                try:
                    requested_status = WorkorderStatus(patch.status)
                except ValueError as exc:
                    raise ValidationError(f"Invalid workorder status {patch.status!r}", field="status") from exc

            await self._apply_scalars(workorder, patch, supplied, audit, actor)

            for item_patch in patch.items:
                item = items.get(item_patch.workorder_items_id)
                if item is None:
                    raise NotFound(
                        f"Item {item_patch.workorder_items_id} not found on workorder {workorder_id}",
                        workorder_items_id=item_patch.workorder_items_id,
                    )
                await self._apply_item_patch(item, item_patch, adjuster, audit, actor, privileged=privileged)

            for line in patch.add_items:
                item = await self._add_item(repository, adjuster, workorder, line, privileged=privileged)
                items[item.workorder_items_id] = item
                await audit.record(
                    workorder_id, EventType.ITEM_ADDED, actor, item_id=item.workorder_items_id, item_status=item.status
                )

            for item_id in patch.delete_item_ids:
                item = items.get(item_id)
                if item is None:
                    raise NotFound(
                        f"Item {item_id} not found on workorder {workorder_id}", workorder_items_id=item_id
                    )
                if item.status == ItemStatus.CANCELED.value:
                    continue
                await audit.record(
                    workorder_id, EventType.ITEM_REMOVED, actor, item_id=item_id, item_status=item.status
                )
                await self._restock(adjuster, item)
                item.status = ItemStatus.CANCELED.value

            completed_after = all_items_completed(items.values())
            if completed_after and workorder.status != WorkorderStatus.COMPLETED.value:
                await self._set_status(workorder, WorkorderStatus.COMPLETED, audit, actor)
                await audit.record(workorder_id, EventType.WORKORDER_COMPLETED, actor)
                WORKORDER_COMPLETED_TOTAL.labels(trigger="items").inc()

            # Items created Completed make the order all-done before any patch.
            entered_completed = (
                loaded_status != WorkorderStatus.COMPLETED.value
                and (
                    workorder.status == WorkorderStatus.COMPLETED.value
                    or requested_status is WorkorderStatus.COMPLETED
                )
            )
            if (completed_after and not completed_before) or entered_completed:
                await self._spawn_delivery(repository, workorder, audit, actor)

            if (
                requested_status is not None
                and requested_status.value != loaded_status
                and requested_status.value != workorder.status
            ):
                await self._set_status(workorder, requested_status, audit, actor)
                if requested_status is WorkorderStatus.COMPLETED:
                    WORKORDER_COMPLETED_TOTAL.labels(trigger="explicit").inc()

            await session.flush()
            return await self.load_workorder_view(session, workorder_id)

    async def delete(self, workorder_id: int) -> None:
        async with self._transaction("delete", workorder_id) as session:
            repository = WorkorderRepository(session)
            workorder = await repository.lock_workorder(workorder_id)
            if workorder is None:
                raise NotFound(f"Workorder {workorder_id} not found", workorder_id=workorder_id)
            adjuster = InventoryAdjuster(session)
            for item in await repository.lock_items(workorder_id):
                if item.status != ItemStatus.CANCELED.value:
                    await self._restock(adjuster, item)
            await repository.delete_workorder(workorder)
        _LOGGER.info("Deleted workorder %s", workorder_id)

    # Steps

    async def _apply_scalars(
        self,
        workorder: Workorder,
        patch: WorkorderPatch,
        supplied: set[str],
        audit: AuditLogger,
        actor: str,
    ) -> None:
        workorder_id = workorder.workorder_id
        if "notes" in supplied and (patch.notes or "") != (workorder.notes or ""):
            workorder.notes = patch.notes
            await audit.record(workorder_id, EventType.NOTE_ADDED, actor)
        if "delivery_charged" in supplied:
            workorder.delivery_charged_cents = to_cents_or_none(patch.delivery_charged)
        if "outstanding_balance" in supplied:
            if patch.outstanding_balance is None:
                raise ValidationError("outstanding_balance cannot be cleared", field="outstanding_balance")
            balance = to_cents(patch.outstanding_balance)
            if balance != workorder.outstanding_balance_cents:
                workorder.outstanding_balance_cents = balance
                await audit.record(workorder_id, EventType.PAYMENT_UPDATED, actor)
        if "estimated_completion" in supplied:
            workorder.estimated_completion = patch.estimated_completion
        if "important_flag" in supplied:
            if patch.important_flag is None:
                raise ValidationError("important_flag must be true or false", field="important_flag")
            if patch.important_flag != workorder.important_flag:
                workorder.important_flag = patch.important_flag
                await audit.record(workorder_id, EventType.WORKORDER_FLAG_CHANGED, actor)

    async def _apply_item_patch(
        self,
        item: WorkorderItem,
        item_patch: WorkorderItemPatch,
        adjuster: InventoryAdjuster,
        audit: AuditLogger,
        actor: str,
        *,
        privileged: bool,
    ) -> None:
        supplied = item_patch.model_fields_set
        if "technician_id" in supplied:
            technician = normalize_technician_id(item_patch.technician_id)
            if technician != item.technician_id:
                item.technician_id = technician
        if "selling_price" in supplied:
            if not privileged:
                raise Forbidden("selling_price can only be changed by an administrator", field="selling_price")
            item.selling_price_cents = to_cents_or_none(item_patch.selling_price)
        if "item_sn" in supplied:
            item.item_sn = (item_patch.item_sn or "").strip() or None
        if "workshop_duration" in supplied:
            item.workshop_duration = item_patch.workshop_duration
        if "status" not in supplied:
            return
        if item_patch.status is None:
            raise ValidationError("Item status cannot be cleared", field="status")

        previous = ItemStatus(item.status)
        current = ItemStatus(item_patch.status)
        if previous is current:
            return
        if current is ItemStatus.CANCELED:
            await self._restock(adjuster, item)
        elif previous is ItemStatus.CANCELED:
            await self._debit(adjuster, item)
        item.status = current.value

        now = self.now()
        if current is ItemStatus.IN_WORKSHOP and item.in_workshop is None:
            item.in_workshop = now
        elif current is ItemStatus.NOT_IN_WORKSHOP:
            item.in_workshop = None
        elif current is ItemStatus.COMPLETED and item.in_workshop is not None and "workshop_duration" not in supplied:
            elapsed = now - ensure_utc(item.in_workshop)
            item.workshop_duration = round(elapsed.total_seconds() / 3600, 2)

        await audit.record(
            item.workorder_id,
            EventType.ITEM_STATUS_CHANGED,
            actor,
            item_id=item.workorder_items_id,
            item_status=current.value,
        )

    async def _add_item(
        self,
        repository: WorkorderRepository,
        adjuster: InventoryAdjuster,
        workorder: Workorder,
        line: WorkorderItemCreate,
        *,
        privileged: bool,
    ) -> WorkorderItem:
        technician = normalize_technician_id(line.technician_id)
        status = ItemStatus(line.status) if line.status is not None else ItemStatus.NOT_IN_WORKSHOP
        if status is ItemStatus.CANCELED:
            raise ValidationError("Items cannot be added in the Canceled status", field="status")
        if line.selling_price is not None and not privileged:
            raise Forbidden("selling_price can only be set by an administrator", field="selling_price")
        sku = line.product_id.strip().upper()
        if not is_custom_line(sku):
            await adjuster.adjust_stock(sku, -line.quantity)
        return await repository.add_item(
            workorder,
            product_id=sku,
            quantity=line.quantity,
            condition=line.condition,
            technician_id=technician,
            status=status.value,
            in_workshop=self.now() if status is ItemStatus.IN_WORKSHOP else None,
            item_sn=line.item_sn,
            selling_price_cents=to_cents_or_none(line.selling_price),
        )

    async def _restock(self, adjuster: InventoryAdjuster, item: WorkorderItem) -> None:
        if not is_custom_line(item.product_id):
            await adjuster.adjust_stock(item.product_id, item.quantity)

    async def _debit(self, adjuster: InventoryAdjuster, item: WorkorderItem) -> None:
        if not is_custom_line(item.product_id):
            await adjuster.adjust_stock(item.product_id, -item.quantity)

    async def _set_status(
        self,
        workorder: Workorder,
        status: WorkorderStatus,
        audit: AuditLogger,
        actor: str,
    ) -> None:
        workorder.status = status.value
        await audit.record(
            workorder.workorder_id, EventType.WORKORDER_STATUS_CHANGED, actor, item_status=status.value
        )
        _LOGGER.info("Workorder %s moved to %s", workorder.workorder_id, status.value)

    async def _spawn_delivery(
        self,
        repository: WorkorderRepository,
        workorder: Workorder,
        audit: AuditLogger,
        actor: str,
    ) -> None:
        stamp = f"Auto-created from Workorder #{workorder.workorder_id} on {self.today():%d/%m/%Y}"
        notes = f"{workorder.notes}\n\n{stamp}" if workorder.notes else stamp
        delivery = await repository.create_delivery(
            invoice_id=workorder.invoice_id,
            customer_id=workorder.customer_id,
            delivery_suburb=workorder.delivery_suburb,
            delivery_state=workorder.delivery_state,
            delivery_charged_cents=workorder.delivery_charged_cents,
            delivery_status=DeliveryStatus.TO_BE_BOOKED.value,
            notes=notes,
            workorder_id=workorder.workorder_id,
        )
        await audit.record(workorder.workorder_id, EventType.DELIVERY_ORDER_CREATED, actor)
        DELIVERY_AUTO_CREATED_TOTAL.inc()
        _LOGGER.info("Delivery %s created for completed workorder %s", delivery.delivery_id, workorder.workorder_id)

    # Presentation helpers

    def _local(self, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return ensure_utc(value).astimezone(self.zone)

    def _summary(self, workorder: Workorder, names: dict[str, str]) -> dict[str, Any]:
        live = [item for item in workorder.items if item.status != ItemStatus.CANCELED.value]
        return {
            "workorder_id": workorder.workorder_id,
            "invoice_id": workorder.invoice_id,
            "customer_id": workorder.customer_id,
            "customer_name": workorder.customer.name,
            "salesperson": workorder.salesperson,
            "delivery_suburb": workorder.delivery_suburb,
            "delivery_state": workorder.delivery_state,
            "status": workorder.status,
            "outstanding_balance": from_cents(workorder.outstanding_balance_cents),
            "important_flag": workorder.important_flag,
            "estimated_completion": workorder.estimated_completion,
            "date_created": self._local(workorder.date_created),
            "item_count": len(live),
            "completed_count": sum(1 for item in live if item.status == ItemStatus.COMPLETED.value),
            "items_text": _items_text(live, names),
        }
