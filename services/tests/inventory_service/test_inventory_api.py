import asyncio
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from services.common import ServiceSettings, create_engine, dispose_engines
from services.inventory_service.app.main import create_app
from services.inventory_service.app.models import Base


class _Catalog:
    async def product_exists(self, product_id: int) -> bool:
        return product_id < 100

    async def variant_exists(self, variant_id: int) -> bool:
        return variant_id < 1000


def _run(coro):
    return asyncio.run(coro)


async def _prepare_app(tmp_path) -> FastAPI:
    db_file = tmp_path / "inventory.db"
    database_url = f"sqlite+aiosqlite:///{db_file}"

    engine = create_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    settings = ServiceSettings(
        app_name="Inventory Service Test",
        enable_metrics=False,
        enable_tracing=False,
        database_url=database_url,
        reservation_sweep_enabled=False,
    )
    return create_app(settings, catalog=_Catalog())


def _inventory_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "productId": 1,
        "quantity": 100,
        "minStockLevel": 5,
        "reorderPoint": 10,
    }
    payload.update(overrides)
    return payload


def test_create_and_get_inventory(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                create_resp = await client.post("/inventory", json=_inventory_payload())
                assert create_resp.status_code == 201
                created = create_resp.json()
                assert created["availableQuantity"] == created["quantity"] - created["reservedQuantity"]
                assert created["isLowStock"] is False
                item_id = created["id"]

                get_resp = await client.get(f"/inventory/{item_id}")
                assert get_resp.status_code == 200
                assert get_resp.json()["id"] == item_id

                by_product = await client.get("/inventory/products/1")
                assert by_product.status_code == 200
                assert by_product.json()["id"] == item_id

                missing = await client.get("/inventory/products/1", params={"variantId": 4})
                assert missing.status_code == 404

                history = await client.get(f"/inventory/{item_id}/movements")
                assert history.status_code == 200
                assert history.json()["items"][0]["referenceType"] == "setup"

    _run(body())
    _run(dispose_engines())


def test_create_conflicts_and_validation(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                assert (await client.post("/inventory", json=_inventory_payload())).status_code == 201

                conflict = await client.post("/inventory", json=_inventory_payload())
                assert conflict.status_code == 409

                unknown = await client.post("/inventory", json=_inventory_payload(productId=500))
                assert unknown.status_code == 404

                negative = await client.post("/inventory", json=_inventory_payload(quantity=-1))
                assert negative.status_code == 422

                levels = await client.post(
                    "/inventory", json=_inventory_payload(productId=2, minStockLevel=10, maxStockLevel=5)
                )
                assert levels.status_code == 422

    _run(body())
    _run(dispose_engines())


def test_list_and_summary(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await client.post("/inventory", json=_inventory_payload(productId=1, quantity=0))
                await client.post("/inventory", json=_inventory_payload(productId=2, quantity=8))
                await client.post("/inventory", json=_inventory_payload(productId=2, productVariantId=9, quantity=50))

                list_resp = await client.get("/inventory", params={"productId": 2})
                assert list_resp.status_code == 200
                listed = list_resp.json()
                assert listed["total"] == 2
                assert listed["totalPages"] == 1

                low = await client.get("/inventory", params={"lowStock": "true"})
                assert low.json()["total"] == 2
                out = await client.get("/inventory", params={"outOfStock": "true"})
                assert [item["productId"] for item in out.json()["items"]] == [1]

                paged = await client.get("/inventory", params={"limit": 2, "page": 2})
                assert len(paged.json()["items"]) == 1
                assert paged.json()["totalPages"] == 2

                summary = await client.get("/inventory/summary")
                assert summary.status_code == 200
                assert summary.json() == {
                    "totalProducts": 2,
                    "totalVariants": 1,
                    "totalQuantity": 58,
                    "totalReserved": 0,
                    "totalAvailable": 58,
                    "lowStockItems": 1,
                    "outOfStockItems": 1,
                    "averageStockLevel": 29.0,
                }

    _run(body())
    _run(dispose_engines())


def test_movements_and_bulk(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await client.post("/inventory", json=_inventory_payload(quantity=20))

                shipped = await client.post(
                    "/inventory/movements",
                    json={"productId": 1, "movementType": "out", "quantity": 5, "referenceType": "order", "reference": "88"},
                )
                assert shipped.status_code == 201
                movement = shipped.json()
                assert (movement["previousQuantity"], movement["newQuantity"]) == (20, 15)

                oversell = await client.post(
                    "/inventory/movements", json={"productId": 1, "movementType": "out", "quantity": 30}
                )
                assert oversell.status_code == 409

                bookkeeping = await client.post(
                    "/inventory/movements", json={"productId": 1, "movementType": "reserve", "quantity": 1}
                )
                assert bookkeeping.status_code == 422

                bad_order = await client.post(
                    "/inventory/movements",
                    json={"productId": 1, "movementType": "out", "quantity": 1, "referenceType": "order"},
                )
                assert bad_order.status_code == 422

                fetched = await client.get(f"/inventory/movements/{movement['id']}")
                assert fetched.json()["reference"] == "88"
                assert (await client.get("/inventory/movements/999")).status_code == 404

                bulk = await client.post(
                    "/inventory/movements/bulk",
                    json={
                        "updates": [
                            {"productId": 1, "movementType": "in", "quantity": 10, "referenceType": "restock"},
                            {"productId": 42, "movementType": "in", "quantity": 1},
                        ]
                    },
                )
                assert bulk.status_code == 200
                assert bulk.json()["updatedItems"] == 1
                assert bulk.json()["success"] is False
                assert bulk.json()["failedItems"][0]["productId"] == 42

                listed = await client.get("/inventory/movements", params={"productId": 1, "movementType": "in"})
                assert listed.json()["total"] == 2

    _run(body())
    _run(dispose_engines())


def test_reservation_lifecycle(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                created = (await client.post("/inventory", json=_inventory_payload())).json()
                item_id = created["id"]

                reserve = await client.post(
                    "/inventory/reservations", json={"orderId": 500, "productId": 1, "quantity": 95}
                )
                assert reserve.status_code == 201
                reservation = reserve.json()

                record = (await client.get(f"/inventory/{item_id}")).json()
                assert (record["reservedQuantity"], record["availableQuantity"]) == (95, 5)
                assert record["isLowStock"] is True

                alerts = (await client.get("/inventory/alerts", params={"resolved": "false"})).json()
                assert [alert["alertType"] for alert in alerts] == ["low_stock"]

                too_many = await client.post(
                    "/inventory/reservations", json={"orderId": 501, "productId": 1, "quantity": 6}
                )
                assert too_many.status_code == 409

                blocked = await client.delete(f"/inventory/{item_id}")
                assert blocked.status_code == 409

                held = await client.get("/inventory/reservations/orders/500")
                assert [entry["id"] for entry in held.json()] == [reservation["id"]]

                released = await client.delete(f"/inventory/reservations/{reservation['id']}")
                assert released.status_code == 200
                again = await client.delete(f"/inventory/reservations/{reservation['id']}")
                assert again.status_code == 404

                record = (await client.get(f"/inventory/{item_id}")).json()
                assert (record["reservedQuantity"], record["availableQuantity"]) == (0, 100)
                assert (await client.get("/inventory/alerts", params={"resolved": "false"})).json() == []

                await client.post("/inventory/reservations", json={"orderId": 600, "productId": 1, "quantity": 30})
                fulfilled = await client.post("/inventory/reservations/orders/600/fulfill")
                assert fulfilled.status_code == 200
                assert fulfilled.json()["movements"][0]["movementType"] == "out"

                await client.post("/inventory/reservations", json={"orderId": 700, "productId": 1, "quantity": 1})
                by_order = await client.post("/inventory/reservations/orders/700/release")
                assert len(by_order.json()) == 1
                assert (await client.post("/inventory/reservations/orders/700/release")).status_code == 404

                sweep = await client.post("/inventory/reservations/sweep")
                assert sweep.json() == {"released": [], "failed": [], "skipped": 0}

                record = (await client.get(f"/inventory/{item_id}")).json()
                assert (record["quantity"], record["reservedQuantity"]) == (70, 0)

                deleted = await client.delete(f"/inventory/{item_id}")
                assert deleted.status_code == 204
                assert (await client.delete(f"/inventory/{item_id}")).status_code == 404

    _run(body())
    _run(dispose_engines())


def test_update_and_alert_resolution(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                item_id = (await client.post("/inventory", json=_inventory_payload(quantity=50))).json()["id"]

                updated = await client.patch(f"/inventory/{item_id}", json={"quantity": 0, "updatedBy": 3})
                assert updated.status_code == 200
                assert updated.json()["isOutOfStock"] is True

                broken = await client.patch(f"/inventory/{item_id}", json={"reservedQuantity": 4})
                assert broken.status_code == 500

                (alert,) = (await client.get("/inventory/alerts", params={"alertType": "out_of_stock"})).json()
                resolved = await client.post(f"/inventory/alerts/{alert['id']}/resolve")
                assert resolved.status_code == 200
                assert resolved.json()["isResolved"] is True
                assert (await client.post(f"/inventory/alerts/{alert['id']}/resolve")).status_code == 409

                evaluated = await client.post("/inventory/alerts/evaluate", params={"productId": 1})
                assert evaluated.status_code == 200
                assert [entry["alertType"] for entry in evaluated.json()["openAlerts"]] == ["out_of_stock"]

                everything = await client.post("/inventory/alerts/evaluate")
                assert everything.json()["evaluated"] == 1

                variant_only = await client.get("/inventory/alerts", params={"productVariantId": 3})
                assert variant_only.status_code == 400
                evaluate_variant_only = await client.post("/inventory/alerts/evaluate", params={"productVariantId": 3})
                assert evaluate_variant_only.status_code == 400

                assert (await client.patch("/inventory/999", json={"reorderPoint": 1})).status_code == 404

    _run(body())
    _run(dispose_engines())


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield
