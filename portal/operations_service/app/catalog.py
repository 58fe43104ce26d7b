"""Single-table catalog records: customers, products, brands and the waitlist."""

from __future__ import annotations

from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Brand, Customer, Product, WaitlistEntry

WAITLIST_OPEN_STATUSES = ("Active", "Notified")


class CatalogRepository:
    """Persistence utilities for catalog records."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_customers(self, *, search: str | None, limit: int, offset: int) -> tuple[list[Customer], int]:
        filters = []
        if search is not None:
            pattern = f"%{search.lower()}%"
            filters.append(or_(func.lower(Customer.name).like(pattern), func.lower(Customer.email).like(pattern)))

        base: Select[tuple[Customer]] = select(Customer).order_by(Customer.name, Customer.customer_id)
        count: Select[tuple[int]] = select(func.count(Customer.customer_id))
        if filters:
            clause = and_(*filters)
            base = base.where(clause)
            count = count.where(clause)

        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(base.offset(offset).limit(limit))
        return list(result.scalars()), total

    async def get_customer(self, customer_id: int) -> Customer | None:
        return await self.session.get(Customer, customer_id)

    async def create_customer(self, **fields: object) -> Customer:
        customer = Customer(**fields)
        self.session.add(customer)
        await self.session.flush()
        return customer

    async def list_products(self, *, brand: str | None, in_stock: bool | None) -> list[Product]:
        stmt = select(Product).order_by(Product.name, Product.sku)
        if brand is not None:
            stmt = stmt.where(Product.brand == brand)
        if in_stock is True:
            stmt = stmt.where(Product.stock > 0)
        elif in_stock is False:
            stmt = stmt.where(Product.stock == 0)
        result = await self.session.execute(stmt)
        return list(result.scalars())

    async def get_product(self, sku: str) -> Product | None:
        return await self.session.get(Product, sku)

    async def create_product(self, **fields: object) -> Product:
        product = Product(**fields)
        self.session.add(product)
        await self.session.flush()
        return product

    async def list_brands(self) -> list[Brand]:
        result = await self.session.execute(select(Brand).order_by(Brand.brand_name))
        return list(result.scalars())

    async def list_waitlist(self) -> list[WaitlistEntry]:
        result = await self.session.execute(
            select(WaitlistEntry)
            .join(WaitlistEntry.product)
            .where(WaitlistEntry.status.in_(WAITLIST_OPEN_STATUSES))
            .order_by(Product.stock.desc(), WaitlistEntry.waitlisted.asc(), WaitlistEntry.waitlist_id.asc())
        )
        return list(result.unique().scalars())

    async def get_waitlist_entry(self, waitlist_id: int) -> WaitlistEntry | None:
        result = await self.session.execute(
            select(WaitlistEntry)
            .where(WaitlistEntry.waitlist_id == waitlist_id)
            .execution_options(populate_existing=True)
        )
        return result.unique().scalar_one_or_none()

    async def create_waitlist_entry(self, **fields: object) -> WaitlistEntry:
        entry = WaitlistEntry(**fields)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def flush(self) -> None:
        await self.session.flush()

    async def delete(self, instance: Customer | Product | WaitlistEntry) -> None:
        await self.session.delete(instance)
        await self.session.flush()
