import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from portal.common import create_engine, dispose_engines, get_session_factory
from portal.operations_service.app.errors import InsufficientStock, NotFound, ValidationError
from portal.operations_service.app.models import Base, Customer, Delivery, Product, Workorder, WorkorderLog
from portal.operations_service.app.schemas import (
    WorkorderCreate,
    WorkorderItemCreate,
    WorkorderItemPatch,
    WorkorderPatch,
)
from portal.operations_service.app.services import (
    WorkorderEngine,
    estimate_completion,
    normalize_technician_id,
    parse_lead_time_weeks,
)


def _run(coro):
    return asyncio.run(coro)


class _Clock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


async def _prepare_engine(tmp_path, clock: _Clock | None = None) -> WorkorderEngine:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}"
    engine = create_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = get_session_factory(database_url)
    async with session_factory() as session:
        session.add_all(
            [
                Customer(customer_id=1, name="Grace Hopper", email="grace@example.com"),
                Product(sku="A", name="Armchair", stock=10),
                Product(sku="B", name="Bookcase", stock=5),
                Product(sku="C", name="Cabinet", stock=4),
            ]
        )
        await session.commit()
    return WorkorderEngine(session_factory, business_timezone="Australia/Melbourne", clock=clock)


def _create_payload(items: list[dict], **overrides) -> WorkorderCreate:
    fields = {
        "invoice_id": "INV-7",
        "customer_id": 1,
        "salesperson": "Sam",
        "delivery_state": "VIC",
        "lead_time": "6 weeks",
        "outstanding_balance": "0",
        "items": [WorkorderItemCreate(**item) for item in items],
    }
    fields.update(overrides)
    return WorkorderCreate(**fields)


async def _stocks(engine: WorkorderEngine) -> dict[str, int]:
    async with engine.session_factory() as session:
        result = await session.execute(select(Product.sku, Product.stock))
        return dict(result.all())


async def _log_count(engine: WorkorderEngine, event_type: str | None = None) -> int:
    stmt = select(func.count(WorkorderLog.id))
    if event_type is not None:
        stmt = stmt.where(WorkorderLog.event_type == event_type)
    async with engine.session_factory() as session:
        return (await session.execute(stmt)).scalar_one()


async def _delivery_count(engine: WorkorderEngine) -> int:
    async with engine.session_factory() as session:
        return (await session.execute(select(func.count(Delivery.delivery_id)))).scalar_one()


def test_lead_time_parsing() -> None:
    assert parse_lead_time_weeks("6 weeks") == 6
    assert parse_lead_time_weeks("approx 10-12 weeks") == 10
    assert parse_lead_time_weeks("0 weeks") is None
    assert parse_lead_time_weeks("ASAP") is None
    assert parse_lead_time_weeks(None) is None
    assert estimate_completion("2 weeks", date(2024, 2, 20)) == date(2024, 3, 5)
    assert estimate_completion("TBC", date(2024, 2, 20)) is None


def test_technician_codes_are_normalized() -> None:
    assert normalize_technician_id(" tk ") == "TK"
    assert normalize_technician_id("j") == "J_"
    with pytest.raises(ValidationError):
        normalize_technician_id("")
    with pytest.raises(ValidationError):
        normalize_technician_id(None)
    with pytest.raises(ValidationError):
        normalize_technician_id("??")


def test_create_is_atomic_when_a_later_item_is_invalid(tmp_path) -> None:
    async def body() -> None:
        engine = await _prepare_engine(tmp_path)
        before = await _stocks(engine)
        payload = _create_payload(
            [
                {"product_id": "A", "quantity": 1, "technician_id": "TK"},
                {"product_id": "B", "quantity": 1, "technician_id": "TK"},
                {"product_id": "C", "quantity": 1},
                {"product_id": "A", "quantity": 1, "technician_id": "TK"},
                {"product_id": "B", "quantity": 1, "technician_id": "TK"},
            ]
        )
        with pytest.raises(ValidationError):
            await engine.create(payload, actor_id="TK")

        assert await _stocks(engine) == before
        assert await _log_count(engine) == 0
        rows, total = await engine.list_workorders()
        assert rows == []
        assert total == 0

    _run(body())
    _run(dispose_engines())


def test_create_derives_estimated_completion_from_clock(tmp_path) -> None:
    clock = _Clock(datetime(2024, 3, 1, 2, 0, tzinfo=timezone.utc))

    async def body() -> None:
        engine = await _prepare_engine(tmp_path, clock)
        derived = await engine.create(_create_payload([]))
        explicit = await engine.create(_create_payload([], estimated_completion=date(2024, 5, 1)))
        unparsed = await engine.create(_create_payload([], lead_time="TBC"))

        assert (await engine.get(derived))["estimated_completion"] == date(2024, 4, 12)
        assert (await engine.get(explicit))["estimated_completion"] == date(2024, 5, 1)
        assert (await engine.get(unparsed))["estimated_completion"] is None

    _run(body())
    _run(dispose_engines())


def test_scalar_changes_are_logged_only_when_values_change(tmp_path) -> None:
    async def body() -> None:
        engine = await _prepare_engine(tmp_path)
        workorder_id = await engine.create(_create_payload([], notes="first"), actor_id="TK")

        patch = WorkorderPatch(
            notes="second",
            outstanding_balance="120.50",
            important_flag=True,
            delivery_charged="45",
            user_id="js",
        )
        view = await engine.update(workorder_id, patch)
        assert view["notes"] == "second"
        assert str(view["outstanding_balance"]) == "120.50"
        assert view["important_flag"] is True

        for event_type in ("NOTE_ADDED", "PAYMENT_UPDATED", "WORKORDER_FLAG_CHANGED"):
            entries = [entry for entry in view["activity"] if entry["event_type"] == event_type]
            assert len(entries) == 1
            assert entries[0]["user_id"] == "JS"

        await engine.update(workorder_id, patch)
        assert await _log_count(engine, "NOTE_ADDED") == 1
        assert await _log_count(engine, "PAYMENT_UPDATED") == 1
        assert await _log_count(engine, "WORKORDER_FLAG_CHANGED") == 1

        with pytest.raises(ValidationError):
            await engine.update(workorder_id, WorkorderPatch(outstanding_balance=None))

        cleared = await engine.update(workorder_id, WorkorderPatch(estimated_completion=None))
        assert cleared["estimated_completion"] is None

    _run(body())
    _run(dispose_engines())


def test_failed_update_writes_no_logs_and_keeps_stock(tmp_path) -> None:
    async def body() -> None:
        engine = await _prepare_engine(tmp_path)
        workorder_id = await engine.create(
            _create_payload([{"product_id": "A", "quantity": 2, "technician_id": "TK"}]),
        )
        view = await engine.get(workorder_id)
        item_id = view["items"][0]["workorder_items_id"]
        logs_before = await _log_count(engine)
        stocks_before = await _stocks(engine)

        patch = WorkorderPatch(
            notes="will roll back",
            items=[WorkorderItemPatch(workorder_items_id=item_id, status="Canceled")],
            add_items=[WorkorderItemCreate(product_id="B", quantity=9, technician_id="TK")],
        )
        with pytest.raises(InsufficientStock) as excinfo:
            await engine.update(workorder_id, patch)
        assert excinfo.value.sku == "B"
        assert excinfo.value.current == 5

        assert await _log_count(engine) == logs_before
        assert await _stocks(engine) == stocks_before
        view = await engine.get(workorder_id)
        assert view["notes"] is None
        assert view["items"][0]["status"] == "Not in Workshop"

        with pytest.raises(NotFound):
            await engine.update(
                workorder_id,
                WorkorderPatch(items=[WorkorderItemPatch(workorder_items_id=item_id + 100, status="Completed")]),
            )

    _run(body())
    _run(dispose_engines())


def test_cancel_restore_symmetry_for_every_status(tmp_path) -> None:
    async def body() -> None:
        engine = await _prepare_engine(tmp_path)
        workorder_id = await engine.create(
            _create_payload([{"product_id": "C", "quantity": 3, "technician_id": "TK"}]),
        )
        item_id = (await engine.get(workorder_id))["items"][0]["workorder_items_id"]
        baseline = (await _stocks(engine))["C"]
        assert baseline == 1

        for status in ("In Workshop", "Not in Workshop", "In Workshop"):
            await engine.update(
                workorder_id,
                WorkorderPatch(items=[WorkorderItemPatch(workorder_items_id=item_id, status="Canceled")]),
            )
            assert (await _stocks(engine))["C"] == 4
            await engine.update(
                workorder_id,
                WorkorderPatch(items=[WorkorderItemPatch(workorder_items_id=item_id, status=status)]),
            )
            assert (await _stocks(engine))["C"] == baseline

        assert await _log_count(engine, "ITEM_STATUS_CHANGED") == 6

    _run(body())
    _run(dispose_engines())


def test_reactivating_canceled_item_needs_stock_again(tmp_path) -> None:
    async def body() -> None:
        engine = await _prepare_engine(tmp_path)
        workorder_id = await engine.create(
            _create_payload([{"product_id": "C", "quantity": 3, "technician_id": "TK"}]),
        )
        item_id = (await engine.get(workorder_id))["items"][0]["workorder_items_id"]
        await engine.update(
            workorder_id,
            WorkorderPatch(items=[WorkorderItemPatch(workorder_items_id=item_id, status="Canceled")]),
        )
        assert (await _stocks(engine))["C"] == 4

        await engine.create(
            _create_payload([{"product_id": "C", "quantity": 4, "technician_id": "JS"}], invoice_id="INV-8"),
        )
        assert (await _stocks(engine))["C"] == 0
        logs_before = await _log_count(engine)

        with pytest.raises(InsufficientStock) as excinfo:
            await engine.update(
                workorder_id,
                WorkorderPatch(items=[WorkorderItemPatch(workorder_items_id=item_id, status="Completed")]),
            )
        assert (excinfo.value.sku, excinfo.value.current, excinfo.value.requested) == ("C", 0, 3)
        assert (await _stocks(engine))["C"] == 0
        assert await _log_count(engine) == logs_before
        view = await engine.get(workorder_id)
        assert view["items"] == []
        assert view["status"] == "Work Ordered"

    _run(body())
    _run(dispose_engines())


def test_order_created_with_completed_items_gets_one_delivery(tmp_path) -> None:
    async def body() -> None:
        engine = await _prepare_engine(tmp_path)
        workorder_id = await engine.create(
            _create_payload([{"product_id": "A", "quantity": 1, "technician_id": "TK", "status": "Completed"}]),
        )
        assert (await engine.get(workorder_id))["status"] == "Work Ordered"
        assert await _delivery_count(engine) == 0

        view = await engine.update(workorder_id, WorkorderPatch(notes="ready"))
        assert view["status"] == "Completed"
        assert await _log_count(engine, "WORKORDER_COMPLETED") == 1
        assert await _delivery_count(engine) == 1
        assert await _log_count(engine, "DELIVERY_ORDER_CREATED") == 1

        view = await engine.update(workorder_id, WorkorderPatch(status="Completed"))
        assert view["status"] == "Completed"
        assert await _delivery_count(engine) == 1

    _run(body())
    _run(dispose_engines())


def test_workshop_duration_is_measured_on_completion(tmp_path) -> None:
    clock = _Clock(datetime(2024, 6, 3, 23, 30, tzinfo=timezone.utc))

    async def body() -> None:
        engine = await _prepare_engine(tmp_path, clock)
        workorder_id = await engine.create(
            _create_payload(
                [
                    {"product_id": "A", "quantity": 1, "technician_id": "TK", "status": "In Workshop"},
                    {"product_id": "B", "quantity": 1, "technician_id": "TK"},
                ]
            ),
        )
        items = (await engine.get(workorder_id))["items"]
        in_shop, waiting = items[0]["workorder_items_id"], items[1]["workorder_items_id"]
        assert items[0]["in_workshop"] is not None
        assert items[0]["in_workshop"].utcoffset() == timedelta(hours=10)

        clock.advance(minutes=90)
        view = await engine.update(
            workorder_id,
            WorkorderPatch(items=[WorkorderItemPatch(workorder_items_id=in_shop, status="Completed")]),
        )
        finished = next(item for item in view["items"] if item["workorder_items_id"] == in_shop)
        assert finished["workshop_duration"] == 1.5
        assert view["status"] == "Work Ordered"

        view = await engine.update(
            workorder_id,
            WorkorderPatch(items=[WorkorderItemPatch(workorder_items_id=waiting, status="Canceled")]),
        )
        assert view["status"] == "Completed"
        assert await _delivery_count(engine) == 1
        assert await _log_count(engine, "WORKORDER_COMPLETED") == 1

        view = await engine.update(
            workorder_id,
            WorkorderPatch(items=[WorkorderItemPatch(workorder_items_id=waiting, status="Not in Workshop")]),
        )
        assert view["status"] == "Completed"
        view = await engine.update(
            workorder_id,
            WorkorderPatch(items=[WorkorderItemPatch(workorder_items_id=waiting, status="Completed")]),
        )
        assert await _delivery_count(engine) == 2

    _run(body())
    _run(dispose_engines())


def test_delete_restocks_live_items_and_removes_logs(tmp_path) -> None:
    async def body() -> None:
        engine = await _prepare_engine(tmp_path)
        workorder_id = await engine.create(
            _create_payload(
                [
                    {"product_id": "A", "quantity": 4, "technician_id": "TK"},
                    {"product_id": "OTHER", "quantity": 2, "technician_id": "TK"},
                ]
            ),
        )
        assert (await _stocks(engine))["A"] == 6
        await engine.delete(workorder_id)
        assert (await _stocks(engine))["A"] == 10
        assert await _log_count(engine) == 0
        with pytest.raises(NotFound):
            await engine.get(workorder_id)
        with pytest.raises(NotFound):
            await engine.delete(workorder_id)

    _run(body())
    _run(dispose_engines())


def test_log_collection_is_write_only() -> None:
    # Logs go away through the ON DELETE CASCADE foreign key, never through a load.
    relationship = Workorder.logs.property
    assert relationship.lazy == "write_only"
    assert relationship.passive_deletes is True
