"""Deliveries, collections (inbound logistics) and the carriers serving them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy import Select, and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .audit import AuditLogger, EventType
from .errors import Conflict, NotFound, ValidationError
from .inventory import InventoryAdjuster, is_custom_line
from .models import (
    CUSTOM_LINE_SKU,
    Collection,
    CollectionItem,
    CollectionStatus,
    Customer,
    Delivery,
    DeliveryStatus,
    Product,
    Removalist,
    Workorder,
)
from .schemas import (
    CollectionCreate,
    CollectionItemInput,
    CollectionPatch,
    DeliveryCreate,
    DeliveryPatch,
)
from .services import to_cents_or_none

_LOGGER = logging.getLogger(__name__)

_DELIVERY_MONEY_FIELDS = {"delivery_charged": "delivery_charged_cents", "delivery_quoted": "delivery_quoted_cents"}
_COLLECTION_MONEY_FIELDS = {"est_extraction": "est_extraction_cents", "act_extraction": "act_extraction_cents"}
_DELIVERY_REQUIRED = ("invoice_id", "customer_id", "delivery_state")
_STATUS_EVENTS = {
    DeliveryStatus.BOOKED.value: EventType.DELIVERY_BOOKED,
    DeliveryStatus.COMPLETED.value: EventType.ORDER_DISPATCHED,
}


class LogisticsRepository:
    """Persistence utilities for deliveries, collections and removalists."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_removalists(self) -> list[Removalist]:
        result = await self.session.execute(select(Removalist).order_by(Removalist.name))
        return list(result.scalars())

    async def get_removalist(self, removalist_id: int) -> Removalist | None:
        return await self.session.get(Removalist, removalist_id)

    async def customer_exists(self, customer_id: int) -> bool:
        return await self.session.get(Customer, customer_id) is not None

    async def workorder_exists(self, workorder_id: int) -> bool:
        result = await self.session.execute(
            select(Workorder.workorder_id).where(Workorder.workorder_id == workorder_id)
        )
        return result.scalar_one_or_none() is not None

    async def outstanding_balances(self, workorder_ids: set[int]) -> dict[int, int]:
        if not workorder_ids:
            return {}
        result = await self.session.execute(
            select(Workorder.workorder_id, Workorder.outstanding_balance_cents).where(
                Workorder.workorder_id.in_(workorder_ids)
            )
        )
        return {workorder_id: balance for workorder_id, balance in result.all()}

    async def list_deliveries(
        self,
        *,
        status: str | None,
        workorder_id: int | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Delivery], int]:
        filters = []
        if status is not None:
            filters.append(Delivery.delivery_status == status)
        if workorder_id is not None:
            filters.append(Delivery.workorder_id == workorder_id)

        base: Select[tuple[Delivery]] = select(Delivery).order_by(
            Delivery.date_created.desc(), Delivery.delivery_id.desc()
        )
        count: Select[tuple[int]] = select(func.count(Delivery.delivery_id))
        if filters:
            clause = and_(*filters)
            base = base.where(clause)
            count = count.where(clause)

        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(base.offset(offset).limit(limit))
        return list(result.unique().scalars()), total

    async def get_delivery(self, delivery_id: int) -> Delivery | None:
        result = await self.session.execute(
            select(Delivery)
            .where(Delivery.delivery_id == delivery_id)
            .execution_options(populate_existing=True)
        )
        return result.unique().scalar_one_or_none()

    async def add(self, instance: Delivery | Collection) -> None:
        self.session.add(instance)
        await self.session.flush()

    async def delete(self, instance: Delivery | Collection) -> None:
        await self.session.delete(instance)
        await self.session.flush()

    async def list_collections(self, *, status: str | None) -> list[Collection]:
        stmt = select(Collection).order_by(Collection.created_at.desc(), Collection.collection_id.desc())
        if status is not None:
            stmt = stmt.where(Collection.status == status)
        result = await self.session.execute(stmt)
        return list(result.unique().scalars())

    async def get_collection(self, collection_id: int, *, lock: bool = False) -> Collection | None:
        stmt = (
            select(Collection)
            .where(Collection.collection_id == collection_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            stmt = stmt.with_for_update(of=Collection)
        result = await self.session.execute(stmt)
        return result.unique().scalar_one_or_none()

    async def product_names(self, skus: set[str]) -> dict[str, str]:
        if not skus:
            return {}
        result = await self.session.execute(select(Product.sku, Product.name).where(Product.sku.in_(skus)))
        return {sku: name for sku, name in result.all()}


def _check_booking(status: str, when: date | None, removalist_id: int | None, *, noun: str) -> None:
    if when is None or removalist_id is None:
        msg = f"{noun} with status {status!r} needs a date and a removalist"
        raise ValidationError(msg, field="status")


class DeliveryService:
    """Direct delivery bookkeeping, logged against the originating work order when there is one."""

    def __init__(self, repository: LogisticsRepository) -> None:
        self.repository = repository
        self.audit = AuditLogger(repository.session)

    async def create(self, payload: DeliveryCreate, *, actor_id: str | None = None) -> Delivery:
        missing = [name for name in _DELIVERY_REQUIRED if getattr(payload, name) is None]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)
        if payload.delivery_status is DeliveryStatus.BOOKED:
            _check_booking(payload.delivery_status.value, payload.delivery_date, payload.removalist_id, noun="Delivery")
        await self._check_references(payload.customer_id, payload.removalist_id)

        delivery = Delivery(
            invoice_id=payload.invoice_id,
            customer_id=payload.customer_id,
            delivery_suburb=payload.delivery_suburb,
            delivery_state=payload.delivery_state,
            delivery_charged_cents=to_cents_or_none(payload.delivery_charged),
            delivery_quoted_cents=to_cents_or_none(payload.delivery_quoted),
            removalist_id=payload.removalist_id,
            delivery_date=payload.delivery_date,
            delivery_status=payload.delivery_status.value,
            notes=payload.notes,
            workorder_id=payload.workorder_id,
        )
        await self.repository.add(delivery)
        event = (
            EventType.DELIVERY_BOOKED
            if payload.delivery_status is DeliveryStatus.BOOKED
            else EventType.DELIVERY_CREATED
        )
        await self._log(delivery, event, actor_id or payload.user_id)
        return await self._reload(delivery.delivery_id)

    async def update(
        self,
        delivery_id: int,
        patch: DeliveryPatch,
        *,
        actor_id: str | None = None,
    ) -> tuple[Delivery, bool]:
        delivery = await self.repository.get_delivery(delivery_id)
        if delivery is None:
            raise NotFound(f"Delivery {delivery_id} not found", delivery_id=delivery_id)
        supplied = patch.model_fields_set - {"user_id"}
        if not supplied:
            return delivery, False

        for name in (*_DELIVERY_REQUIRED, "delivery_status"):
            if name in supplied and getattr(patch, name) is None:
                raise ValidationError(f"{name} cannot be cleared", field=name)
        await self._check_references(
            patch.customer_id if "customer_id" in supplied else None,
            patch.removalist_id if "removalist_id" in supplied else None,
        )
        previous_status = delivery.delivery_status
        for name in supplied:
            value = getattr(patch, name)
            if name in _DELIVERY_MONEY_FIELDS:
                setattr(delivery, _DELIVERY_MONEY_FIELDS[name], to_cents_or_none(value))
            elif name == "delivery_status":
                delivery.delivery_status = DeliveryStatus(value).value
            else:
                setattr(delivery, name, value)

        if delivery.delivery_status == DeliveryStatus.BOOKED.value:
            _check_booking(delivery.delivery_status, delivery.delivery_date, delivery.removalist_id, noun="Delivery")
        await self.repository.session.flush()

        event = _STATUS_EVENTS.get(delivery.delivery_status)
        if delivery.delivery_status != previous_status and event is not None:
            await self._log(delivery, event, actor_id or patch.user_id)
        return await self._reload(delivery_id), True

    async def delete(self, delivery_id: int) -> None:
        delivery = await self.repository.get_delivery(delivery_id)
        if delivery is None:
            raise NotFound(f"Delivery {delivery_id} not found", delivery_id=delivery_id)
        await self.repository.delete(delivery)

    async def _check_references(self, customer_id: int | None, removalist_id: int | None) -> None:
        if customer_id is not None and not await self.repository.customer_exists(customer_id):
            raise NotFound(f"Customer {customer_id} not found", customer_id=customer_id)
        if removalist_id is not None and await self.repository.get_removalist(removalist_id) is None:
            raise NotFound(f"Removalist {removalist_id} not found", removalist_id=removalist_id)

    async def _log(self, delivery: Delivery, event: EventType, actor_id: str | None) -> None:
        # The back-link may outlive its work order.
        if delivery.workorder_id is None or not await self.repository.workorder_exists(delivery.workorder_id):
            return
        await self.audit.record(delivery.workorder_id, event, actor_id)

    async def _reload(self, delivery_id: int) -> Delivery:
        delivery = await self.repository.get_delivery(delivery_id)
        if delivery is None:  # pragma: no cover - row was written in this transaction
            raise NotFound(f"Delivery {delivery_id} not found", delivery_id=delivery_id)
        return delivery


@dataclass
class AppliedLine:
    sku: str
    quantity: int
    stock_before: int
    stock_after: int
    avg_cost_cents: int | None


@dataclass
class InventoryApplication:
    collection_id: int
    applied: bool
    message: str
    lines: list[AppliedLine] = field(default_factory=list)


def running_average(current: Decimal | None, unit_price: Decimal, units: int) -> Decimal | None:
    """Fold ``units`` purchases at ``unit_price`` into an iterative pairwise mean."""

    value = current
    for _ in range(units):
        value = unit_price if value is None else (value + unit_price) / 2
    return value


class CollectionService:
    """Collection bookkeeping and the one-shot transfer of collected goods into stock."""

    def __init__(self, repository: LogisticsRepository) -> None:
        self.repository = repository

    async def get(self, collection_id: int) -> Collection:
        collection = await self.repository.get_collection(collection_id)
        if collection is None:
            raise NotFound(f"Collection {collection_id} not found", collection_id=collection_id)
        return collection

    async def create(self, payload: CollectionCreate) -> Collection:
        if payload.name is None:
            raise ValidationError("Missing required fields: name", fields=["name"])
        if payload.status is CollectionStatus.COMPLETED:
            _check_booking(payload.status.value, payload.collection_date, payload.removalist_id, noun="Collection")
        await self._check_removalist(payload.removalist_id)

        collection = Collection(
            name=payload.name,
            phone=payload.phone,
            email=payload.email,
            suburb=payload.suburb,
            state=payload.state,
            description=payload.description,
            removalist_id=payload.removalist_id,
            collection_date=payload.collection_date,
            notes=payload.notes,
            status=payload.status.value,
            est_extraction_cents=to_cents_or_none(payload.est_extraction),
            act_extraction_cents=to_cents_or_none(payload.act_extraction),
            items=await self._build_items(payload.items),
        )
        await self.repository.add(collection)
        return await self.get(collection.collection_id)

    async def update(self, collection_id: int, patch: CollectionPatch) -> Collection:
        collection = await self.repository.get_collection(collection_id, lock=True)
        if collection is None:
            raise NotFound(f"Collection {collection_id} not found", collection_id=collection_id)
        supplied = patch.model_fields_set
        if "name" in supplied and not (patch.name or "").strip():
            raise ValidationError("name cannot be cleared", field="name")
        if "removalist_id" in supplied:
            await self._check_removalist(patch.removalist_id)

        for name in supplied - {"items"}:
            value = getattr(patch, name)
            if name in _COLLECTION_MONEY_FIELDS:
                setattr(collection, _COLLECTION_MONEY_FIELDS[name], to_cents_or_none(value))
            elif name == "status":
                if value is None:
                    raise ValidationError("status cannot be cleared", field="status")
                collection.status = CollectionStatus(value).value
            else:
                setattr(collection, name, value)
        if "items" in supplied and patch.items is not None:
            if collection.inventory_applied_at is not None:
                raise Conflict("Items cannot change after inventory was applied", collection_id=collection_id)
            collection.items = await self._build_items(patch.items)

        if collection.status == CollectionStatus.COMPLETED.value:
            _check_booking(collection.status, collection.collection_date, collection.removalist_id, noun="Collection")
        await self.repository.session.flush()
        return await self.get(collection_id)

    async def delete(self, collection_id: int) -> None:
        collection = await self.get(collection_id)
        await self.repository.delete(collection)

    async def apply_inventory(self, collection_id: int) -> InventoryApplication:
        collection = await self.repository.get_collection(collection_id, lock=True)
        if collection is None:
            raise NotFound(f"Collection {collection_id} not found", collection_id=collection_id)
        if collection.status != CollectionStatus.COMPLETED.value:
            raise ValidationError("Inventory can only be applied to a completed collection", field="status")
        if collection.inventory_applied_at is not None:
            return InventoryApplication(collection_id, applied=False, message="Inventory already applied")

        catalog_items = [item for item in collection.items if not is_custom_line(item.product_sku)]
        units = sum(item.quantity for item in catalog_items)
        difference = Decimal((collection.act_extraction_cents or 0) - (collection.est_extraction_cents or 0))
        per_unit = difference / units if units else Decimal("0")

        adjuster = InventoryAdjuster(self.repository.session)
        lines: list[AppliedLine] = []
        for item in catalog_items:
            adjustment = await adjuster.adjust_stock(item.product_sku, item.quantity)
            product = await adjuster.lock_product(item.product_sku)
            unit_price = Decimal(item.purchase_price_cents or 0) + per_unit
            current = Decimal(product.avg_cost_cents) if product.avg_cost_cents is not None else None
            average = running_average(current, unit_price, item.quantity)
            if average is not None:
                product.avg_cost_cents = int(average.to_integral_value(rounding=ROUND_HALF_UP))
            lines.append(
                AppliedLine(
                    sku=item.product_sku,
                    quantity=item.quantity,
                    stock_before=adjustment.before,
                    stock_after=adjustment.after,
                    avg_cost_cents=product.avg_cost_cents,
                )
            )

        collection.inventory_applied_at = datetime.now(timezone.utc)
        await self.repository.session.flush()
        _LOGGER.info("Applied collection %s to inventory across %s line(s)", collection_id, len(lines))
        return InventoryApplication(collection_id, applied=True, message="Inventory applied", lines=lines)

    async def reset_inventory_apply(self, collection_id: int) -> Collection:
        collection = await self.repository.get_collection(collection_id, lock=True)
        if collection is None:
            raise NotFound(f"Collection {collection_id} not found", collection_id=collection_id)
        collection.inventory_applied_at = None
        await self.repository.session.flush()
        _LOGGER.warning("Inventory-applied marker cleared for collection %s", collection_id)
        return collection

    async def _check_removalist(self, removalist_id: int | None) -> None:
        if removalist_id is not None and await self.repository.get_removalist(removalist_id) is None:
            raise NotFound(f"Removalist {removalist_id} not found", removalist_id=removalist_id)

    async def _build_items(self, lines: list[CollectionItemInput]) -> list[CollectionItem]:
        items = []
        for line in lines:
            sku = (line.product_sku or CUSTOM_LINE_SKU).upper()
            if is_custom_line(sku):
                if line.custom_description is None:
                    raise ValidationError("Custom collection items need a description", field="custom_description")
            elif not await self.repository.product_names({sku}):
                raise NotFound(f"Product {sku} not found", sku=sku)
            items.append(
                CollectionItem(
                    product_sku=sku,
                    quantity=line.quantity,
                    purchase_price_cents=to_cents_or_none(line.purchase_price),
                    custom_description=line.custom_description,
                )
            )
        return items
