"""Data access helpers for work orders."""

from __future__ import annotations

from typing import Any, Iterable, Literal, Sequence

from sqlalchemy import Select, and_, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    Customer,
    Delivery,
    ItemStatus,
    Product,
    User,
    Workorder,
    WorkorderItem,
    WorkorderLog,
)

PaymentFilter = Literal["paid", "due"]


def lock_workorder_stmt(workorder_id: int) -> Select[tuple[Workorder]]:
    return (
        select(Workorder)
        .where(Workorder.workorder_id == workorder_id)
        .with_for_update(of=Workorder)
        .execution_options(populate_existing=True)
    )


def lock_items_stmt(workorder_id: int) -> Select[tuple[WorkorderItem]]:
    return (
        select(WorkorderItem)
        .where(WorkorderItem.workorder_id == workorder_id)
        .order_by(WorkorderItem.workorder_items_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


class WorkorderRepository:
    """Persistence utilities for work orders, their items and activity."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def customer_exists(self, customer_id: int) -> bool:
        result = await self.session.execute(
            select(Customer.customer_id).where(Customer.customer_id == customer_id)
        )
        return result.scalar_one_or_none() is not None

    async def get_workorder(self, workorder_id: int) -> Workorder | None:
        result = await self.session.execute(
            select(Workorder)
            .where(Workorder.workorder_id == workorder_id)
            .execution_options(populate_existing=True)
        )
        return result.unique().scalar_one_or_none()

    async def lock_workorder(self, workorder_id: int) -> Workorder | None:
        result = await self.session.execute(lock_workorder_stmt(workorder_id))
        return result.unique().scalar_one_or_none()

    async def lock_items(self, workorder_id: int) -> list[WorkorderItem]:
        result = await self.session.execute(lock_items_stmt(workorder_id))
        return list(result.scalars())

    async def create_workorder(self, **fields: Any) -> Workorder:
        workorder = Workorder(items=[], **fields)
        self.session.add(workorder)
        await self.session.flush()
        await self.session.refresh(workorder, attribute_names=["date_created"])
        return workorder

    async def add_item(self, workorder: Workorder, **fields: Any) -> WorkorderItem:
        item = WorkorderItem(**fields)
        workorder.items.append(item)
        await self.session.flush()
        return item

    async def delete_workorder(self, workorder: Workorder) -> None:
        await self.session.delete(workorder)
        await self.session.flush()

    async def create_delivery(self, **fields: Any) -> Delivery:
        delivery = Delivery(**fields)
        self.session.add(delivery)
        await self.session.flush()
        return delivery

    async def product_names(self, skus: Iterable[str]) -> dict[str, str]:
        wanted = {sku for sku in skus if sku}
        if not wanted:
            return {}
        result = await self.session.execute(select(Product.sku, Product.name).where(Product.sku.in_(wanted)))
        return {sku: name for sku, name in result.all()}

    async def list_activity(self, workorder_id: int) -> Sequence[tuple[WorkorderLog, str | None]]:
        result = await self.session.execute(
            select(WorkorderLog, WorkorderItem.product_id)
            .outerjoin(
                WorkorderItem,
                WorkorderItem.workorder_items_id == WorkorderLog.workorder_items_id,
            )
            .where(WorkorderLog.workorder_id == workorder_id)
            .order_by(WorkorderLog.created_at.desc(), WorkorderLog.id.desc())
        )
        return [(log, product_id) for log, product_id in result.all()]

    async def list_workorders(
        self,
        *,
        status: str | None,
        state: str | None,
        salesperson: str | None,
        payment: PaymentFilter | None,
        technician: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Workorder], int]:
        filters = []
        if status is not None:
            filters.append(Workorder.status == status)
        if state is not None:
            filters.append(Workorder.delivery_state == state)
        if salesperson is not None:
            filters.append(Workorder.salesperson == salesperson)
        if payment == "paid":
            filters.append(Workorder.outstanding_balance_cents == 0)
        elif payment == "due":
            filters.append(Workorder.outstanding_balance_cents > 0)
        if technician is not None:
            filters.append(
                exists().where(
                    WorkorderItem.workorder_id == Workorder.workorder_id,
                    WorkorderItem.technician_id == technician,
                    WorkorderItem.status != ItemStatus.CANCELED.value,
                )
            )

        base: Select[tuple[Workorder]] = select(Workorder).order_by(
            Workorder.date_created.desc(), Workorder.workorder_id.desc()
        )
        count: Select[tuple[int]] = select(func.count(Workorder.workorder_id))

        if filters:
            clause = and_(*filters)
            base = base.where(clause)
            count = count.where(clause)

        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(base.offset(offset).limit(limit))
        return list(result.unique().scalars()), total

    async def list_users_with_access(self, access: str) -> list[User]:
        result = await self.session.execute(
            select(User).where(func.lower(User.access) == access.lower()).order_by(User.name)
        )
        return list(result.scalars())
