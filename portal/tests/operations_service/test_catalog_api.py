import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from portal.common import ServiceSettings, create_engine, dispose_engines, get_session_factory
from portal.operations_service.app.main import create_app
from portal.operations_service.app.models import Base, Brand


def _run(coro):
    return asyncio.run(coro)


async def _prepare_app(tmp_path) -> FastAPI:
    db_file = tmp_path / "catalog.db"
    database_url = f"sqlite+aiosqlite:///{db_file}"

    engine = create_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = get_session_factory(database_url)
    async with session_factory() as session:
        session.add_all([Brand(brand_name="Nordic"), Brand(brand_name="Heritage")])
        await session.commit()

    settings = ServiceSettings(
        app_name="Catalog Test",
        enable_metrics=False,
        enable_tracing=False,
        database_url=database_url,
    )
    return create_app(settings)


def test_customer_lifecycle(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                missing = await client.post("/customers", json={"name": "No Email"})
                assert missing.status_code == 400
                assert missing.json()["detail"]["fields"] == ["email"]

                created = await client.post(
                    "/customers",
                    json={"name": " Ada Lovelace ", "email": "ada@example.com", "phone": "0400 000 000"},
                )
                assert created.status_code == 201
                customer = created.json()
                assert customer["name"] == "Ada Lovelace"
                await client.post("/customers", json={"name": "Charles Babbage", "email": "cb@example.com"})

                search = (await client.get("/customers", params={"search": "ADA"})).json()
                assert search["total"] == 1
                assert search["items"][0]["customer_id"] == customer["customer_id"]

                everyone = (await client.get("/customers")).json()
                assert [row["name"] for row in everyone["items"]] == ["Ada Lovelace", "Charles Babbage"]

                updated = await client.put(
                    f"/customers/{customer['customer_id']}", json={"address": "1 Analytical Way", "phone": ""}
                )
                assert updated.status_code == 200
                assert updated.json()["address"] == "1 Analytical Way"
                assert updated.json()["phone"] is None

                blank_name = await client.put(f"/customers/{customer['customer_id']}", json={"name": "  "})
                assert blank_name.status_code == 400

                unknown = await client.get("/customers/999")
                assert unknown.status_code == 404

    _run(body())
    _run(dispose_engines())


def test_products_and_brands(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                created = await client.post(
                    "/products",
                    json={"sku": "ch-01", "name": "Chesterfield", "brand": "Heritage", "price": "1299.99", "stock": 2},
                )
                assert created.status_code == 201
                assert created.json()["sku"] == "CH-01"
                assert created.json()["price"] == "1299.99"
                assert created.json()["avg_cost"] is None

                duplicate = await client.post("/products", json={"sku": "CH-01", "name": "Again"})
                assert duplicate.status_code == 409

                await client.post("/products", json={"sku": "ST-01", "name": "Stool", "brand": "Nordic"})

                in_stock = (await client.get("/products", params={"in_stock": True})).json()
                assert [row["sku"] for row in in_stock] == ["CH-01"]
                nordic = (await client.get("/products", params={"brand": "Nordic"})).json()
                assert [row["sku"] for row in nordic] == ["ST-01"]

                updated = await client.put("/products/ch-01", json={"price": "999", "stock": 0})
                assert updated.status_code == 200
                assert updated.json()["price"] == "999.00"
                assert updated.json()["stock"] == 0

                negative = await client.put("/products/CH-01", json={"stock": -1})
                assert negative.status_code == 400

                missing = await client.get("/products/NOPE")
                assert missing.status_code == 404

                brands = (await client.get("/brands")).json()
                assert [row["brand_name"] for row in brands] == ["Heritage", "Nordic"]

    _run(body())
    _run(dispose_engines())


def test_waitlist_ordering_and_updates(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                customer = (
                    await client.post("/customers", json={"name": "Ada", "email": "ada@example.com"})
                ).json()
                await client.post("/products", json={"sku": "EMPTY", "name": "Sold out sofa", "stock": 0})
                await client.post("/products", json={"sku": "FULL", "name": "Stocked sofa", "stock": 4})

                missing = await client.post("/waitlist", json={"customer_id": customer["customer_id"]})
                assert missing.status_code == 400

                unknown = await client.post(
                    "/waitlist", json={"customer_id": customer["customer_id"], "sku": "GHOST"}
                )
                assert unknown.status_code == 404

                first = await client.post(
                    "/waitlist", json={"customer_id": customer["customer_id"], "sku": "empty", "salesperson": "Sam"}
                )
                assert first.status_code == 201
                assert first.json()["status"] == "Active"
                assert first.json()["product_name"] == "Sold out sofa"
                second = await client.post("/waitlist", json={"customer_id": customer["customer_id"], "sku": "FULL"})
                assert second.status_code == 201

                listing = (await client.get("/waitlist")).json()
                assert [row["sku"] for row in listing] == ["FULL", "EMPTY"]
                assert listing[0]["customer_name"] == "Ada"
                assert listing[0]["stock"] == 4

                fulfilled = await client.put(
                    f"/waitlist/{second.json()['waitlist_id']}", json={"status": "Fulfilled", "notes": "Picked up"}
                )
                assert fulfilled.status_code == 200
                assert fulfilled.json()["notes"] == "Picked up"
                listing = (await client.get("/waitlist")).json()
                assert [row["sku"] for row in listing] == ["EMPTY"]

                single = await client.get(f"/waitlist/{second.json()['waitlist_id']}")
                assert single.json()["status"] == "Fulfilled"

                deleted = await client.delete(f"/waitlist/{first.json()['waitlist_id']}")
                assert deleted.status_code == 204
                assert (await client.get("/waitlist")).json() == []
                gone = await client.get(f"/waitlist/{first.json()['waitlist_id']}")
                assert gone.status_code == 404

    _run(body())
    _run(dispose_engines())


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield
