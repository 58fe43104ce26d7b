"""Row-locked stock adjustments for catalog products."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import InsufficientStock, InvalidStockMath, ProductNotFound
from .metrics import STOCK_ADJUSTMENTS_TOTAL, STOCK_REJECTIONS_TOTAL, direction_for
from .models import CUSTOM_LINE_SKU, Product

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockAdjustment:
    sku: str
    before: int
    after: int


def is_custom_line(sku: str | None) -> bool:
    return (sku or "").strip().upper() == CUSTOM_LINE_SKU


def lock_product_stmt(sku: str) -> Select[tuple[Product]]:
    # populate_existing: the locked read must overwrite any stale identity-map copy.
    return (
        select(Product)
        .where(Product.sku == sku)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


def _whole_units(delta: int | Decimal | float) -> int:
    try:
        value = Decimal(str(delta))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidStockMath(f"Stock delta {delta!r} is not numeric") from exc
    if not value.is_finite():
        raise InvalidStockMath(f"Stock delta {delta!r} is not a finite number")
    if value != value.to_integral_value():
        raise InvalidStockMath(f"Stock delta {delta!r} is not a whole number of units")
    return int(value)


class InventoryAdjuster:
    """Apply signed stock deltas under a row lock held by the caller's transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def lock_product(self, sku: str) -> Product:
        result = await self.session.execute(lock_product_stmt(sku))
        product = result.scalar_one_or_none()
        if product is None:
            raise ProductNotFound(sku)
        return product

    async def adjust_stock(self, sku: str, delta: int | Decimal | float) -> StockAdjustment:
        units = _whole_units(delta)
        product = await self.lock_product(sku)
        current = product.stock
        proposed = current + units
        if units < 0 and proposed < 0:
            STOCK_REJECTIONS_TOTAL.inc()
            _LOGGER.warning("Rejected debit of %s for %s with %s on hand", -units, sku, current)
            raise InsufficientStock(sku, current=current, requested=-units)
        product.stock = proposed
        await self.session.flush()
        STOCK_ADJUSTMENTS_TOTAL.labels(direction=direction_for(units)).inc()
        return StockAdjustment(sku=sku, before=current, after=proposed)
