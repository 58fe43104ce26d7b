import asyncio
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from portal.common import ServiceSettings, create_engine, dispose_engines, get_session_factory
from portal.operations_service.app.logistics import running_average
from portal.operations_service.app.main import create_app
from portal.operations_service.app.models import Base, Product, Removalist


def _run(coro):
    return asyncio.run(coro)


async def _prepare_app(tmp_path) -> FastAPI:
    db_file = tmp_path / "collections.db"
    database_url = f"sqlite+aiosqlite:///{db_file}"

    engine = create_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = get_session_factory(database_url)
    async with session_factory() as session:
        session.add_all(
            [
                Product(sku="A", name="Armchair", stock=10, avg_cost_cents=6000),
                Product(sku="B", name="Bookcase", stock=0),
                Removalist(removalist_id=1, name="Swift Movers"),
            ]
        )
        await session.commit()

    settings = ServiceSettings(
        app_name="Collections Test",
        enable_metrics=False,
        enable_tracing=False,
        database_url=database_url,
        password_hash_rounds=4,
    )
    return create_app(settings)


def _collection_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "name": "Estate pickup",
        "suburb": "Brunswick",
        "state": "VIC",
        "status": "Completed",
        "collection_date": "2024-05-10",
        "removalist_id": 1,
        "est_extraction": "100.00",
        "act_extraction": "160.00",
        "items": [
            {"product_sku": "a", "quantity": 2, "purchase_price": "50.00"},
            {"product_sku": "B", "quantity": 1, "purchase_price": "20.00"},
            {"product_sku": "OTHER", "quantity": 1, "custom_description": "Vintage lamp"},
        ],
    }
    payload.update(overrides)
    return payload


async def _token(client: AsyncClient, user_id: str, access: str) -> str:
    email = f"{user_id.lower()}@example.com"
    registered = await client.post(
        "/auth/register",
        json={"id": user_id, "name": user_id, "email": email, "password": "pw-123", "access": access},
    )
    assert registered.status_code == 201
    login = await client.post("/auth/login", json={"email": email, "password": "pw-123"})
    assert login.status_code == 200
    return login.json()["token"]


async def _stock(client: AsyncClient, sku: str) -> dict[str, Any]:
    return (await client.get(f"/products/{sku}")).json()


def test_running_average_folds_each_unit() -> None:
    assert running_average(None, Decimal("10"), 1) == Decimal("10")
    assert running_average(Decimal("60"), Decimal("80"), 2) == Decimal("75")
    assert running_average(None, Decimal("10"), 0) is None


def test_collection_crud_and_validation(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                nameless = await client.post("/collections", json=_collection_payload(name=""))
                assert nameless.status_code == 400

                unbooked = await client.post("/collections", json=_collection_payload(removalist_id=None))
                assert unbooked.status_code == 400

                undescribed = await client.post(
                    "/collections",
                    json=_collection_payload(items=[{"product_sku": "OTHER", "quantity": 1}]),
                )
                assert undescribed.status_code == 400

                unknown = await client.post(
                    "/collections",
                    json=_collection_payload(items=[{"product_sku": "ZZ", "quantity": 1}]),
                )
                assert unknown.status_code == 404

                created = await client.post("/collections", json=_collection_payload(status="To Be Booked"))
                assert created.status_code == 201
                collection = created.json()
                assert collection["removalist_name"] == "Swift Movers"
                assert [item["product_sku"] for item in collection["items"]] == ["A", "B", "OTHER"]
                assert collection["items"][0]["product_name"] == "Armchair"
                assert collection["items"][2]["product_name"] is None
                collection_id = collection["collection_id"]

                updated = await client.put(
                    f"/collections/{collection_id}",
                    json={"status": "Confirmed", "notes": "Call ahead", "items": [{"product_sku": "B", "quantity": 3}]},
                )
                assert updated.status_code == 200
                assert updated.json()["status"] == "Confirmed"
                assert [item["quantity"] for item in updated.json()["items"]] == [3]

                confirmed = (await client.get("/collections", params={"status": "Confirmed"})).json()
                assert [row["collection_id"] for row in confirmed] == [collection_id]

                carriers = (await client.get("/collections/removalists")).json()
                assert [row["name"] for row in carriers] == ["Swift Movers"]

                deleted = await client.delete(f"/collections/{collection_id}")
                assert deleted.status_code == 204
                missing = await client.get(f"/collections/{collection_id}")
                assert missing.status_code == 404

    _run(body())
    _run(dispose_engines())


def test_apply_inventory_restocks_and_averages_cost(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                created = await client.post("/collections", json=_collection_payload())
                collection_id = created.json()["collection_id"]

                anonymous = await client.post(f"/collections/{collection_id}/apply-inventory")
                assert anonymous.status_code == 401

                staff_token = await _token(client, "ST", "staff")
                forbidden = await client.post(
                    f"/collections/{collection_id}/apply-inventory",
                    headers={"Authorization": f"Bearer {staff_token}"},
                )
                assert forbidden.status_code == 403

                headers = {"Authorization": f"Bearer {await _token(client, 'SU', 'superadmin')}"}
                applied = await client.post(f"/collections/{collection_id}/apply-inventory", headers=headers)
                assert applied.status_code == 200
                result = applied.json()
                assert result["applied"] is True
                lines = {line["sku"]: line for line in result["lines"]}
                assert set(lines) == {"A", "B"}
                # (160 - 100) / 3 units adds 20.00 to each unit price.
                assert lines["A"]["stock_before"] == 10
                assert lines["A"]["stock_after"] == 12
                assert lines["A"]["avg_cost"] == "67.50"
                assert lines["B"]["avg_cost"] == "40.00"

                assert (await _stock(client, "A"))["stock"] == 12
                assert (await _stock(client, "B"))["avg_cost"] == "40.00"

                repeat = await client.post(f"/collections/{collection_id}/apply-inventory", headers=headers)
                assert repeat.status_code == 200
                assert repeat.json()["applied"] is False
                assert (await _stock(client, "A"))["stock"] == 12

                locked_items = await client.put(
                    f"/collections/{collection_id}", json={"items": [{"product_sku": "B", "quantity": 1}]}
                )
                assert locked_items.status_code == 409

                reset = await client.post(f"/collections/{collection_id}/reset-inventory-apply", headers=headers)
                assert reset.status_code == 200
                assert reset.json()["inventory_applied_at"] is None

                again = await client.post(f"/collections/{collection_id}/apply-inventory", headers=headers)
                assert again.json()["applied"] is True
                assert (await _stock(client, "A"))["stock"] == 14

                pending = await client.post("/collections", json=_collection_payload(status="Confirmed"))
                not_done = await client.post(
                    f"/collections/{pending.json()['collection_id']}/apply-inventory", headers=headers
                )
                assert not_done.status_code == 400

    _run(body())
    _run(dispose_engines())


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield
