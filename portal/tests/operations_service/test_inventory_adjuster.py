import asyncio
from decimal import Decimal

import pytest
from prometheus_client import REGISTRY
from sqlalchemy.dialects import postgresql

from portal.common import create_engine, dispose_engines, get_session_factory, unit_of_work
from portal.operations_service.app.errors import InsufficientStock, InvalidStockMath, ProductNotFound
from portal.operations_service.app.inventory import InventoryAdjuster, is_custom_line, lock_product_stmt
from portal.operations_service.app.models import Base, Product
from portal.operations_service.app.repository import lock_items_stmt, lock_workorder_stmt


def _run(coro):
    return asyncio.run(coro)


class _MetricTracker:
    def __init__(self, name: str, labels: dict[str, str] | None = None) -> None:
        self.name = name
        self.labels = labels or {}
        baseline = REGISTRY.get_sample_value(name, self.labels)
        self._baseline = baseline if baseline is not None else 0.0

    def delta(self) -> float:
        current = REGISTRY.get_sample_value(self.name, self.labels)
        value = current if current is not None else 0.0
        return value - self._baseline


async def _prepare(tmp_path):
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'inventory.db'}"
    engine = create_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = get_session_factory(database_url)
    async with session_factory() as session:
        session.add(Product(sku="A", name="Armchair", stock=3))
        await session.commit()
    return session_factory


async def _stock(session_factory, sku: str) -> int:
    async with session_factory() as session:
        product = await session.get(Product, sku)
        return product.stock


def test_lock_statements_request_row_locks() -> None:
    dialect = postgresql.dialect()
    assert "FOR UPDATE" in str(lock_product_stmt("A").compile(dialect=dialect))
    assert "FOR UPDATE OF workorder" in str(lock_workorder_stmt(1).compile(dialect=dialect))
    assert "FOR UPDATE" in str(lock_items_stmt(1).compile(dialect=dialect))


def test_custom_line_sentinel() -> None:
    assert is_custom_line("OTHER")
    assert is_custom_line(" other ")
    assert not is_custom_line("A")
    assert not is_custom_line(None)


def test_adjust_stock_applies_signed_deltas(tmp_path) -> None:
    restock_tracker = _MetricTracker("portal_stock_adjustments_total", {"direction": "restock"})
    debit_tracker = _MetricTracker("portal_stock_adjustments_total", {"direction": "debit"})

    async def body() -> None:
        session_factory = await _prepare(tmp_path)
        async with unit_of_work(session_factory) as session:
            adjuster = InventoryAdjuster(session)
            debit = await adjuster.adjust_stock("A", -3)
            assert (debit.before, debit.after) == (3, 0)
            restock = await adjuster.adjust_stock("A", Decimal("2"))
            assert (restock.before, restock.after) == (0, 2)
        assert await _stock(session_factory, "A") == 2

    _run(body())
    _run(dispose_engines())
    assert restock_tracker.delta() == 1
    assert debit_tracker.delta() == 1


def test_adjust_stock_rejects_oversell_and_bad_math(tmp_path) -> None:
    rejection_tracker = _MetricTracker("portal_stock_rejections_total")

    async def body() -> None:
        session_factory = await _prepare(tmp_path)
        async with session_factory() as session:
            adjuster = InventoryAdjuster(session)
            with pytest.raises(InsufficientStock) as excinfo:
                await adjuster.adjust_stock("A", -4)
            assert excinfo.value.to_detail() == {
                "kind": "InsufficientStock",
                "message": "Insufficient stock for A: 3 on hand, 4 requested",
                "sku": "A",
                "current": 3,
                "requested": 4,
            }
            for bad in (float("nan"), float("inf"), Decimal("1.5"), "three"):
                with pytest.raises(InvalidStockMath):
                    await adjuster.adjust_stock("A", bad)
            with pytest.raises(ProductNotFound):
                await adjuster.adjust_stock("ZZ", 1)
        assert await _stock(session_factory, "A") == 3

    _run(body())
    _run(dispose_engines())
    assert rejection_tracker.delta() == 1
