from types import SimpleNamespace

import pytest

from services.common import create_schema, dispose_engines, get_session_factory
from services.inventory_service.app.alerts import AlertEngine, alert_condition
from services.inventory_service.app.catalog import PermissiveCatalog
from services.inventory_service.app.domain import (
    AlertType,
    InventoryKey,
    MovementType,
    OrderRef,
    RecordUpdate,
    RestockRef,
    Thresholds,
)
from services.inventory_service.app.errors import AlreadyResolved, NotFound
from services.inventory_service.app.ledger import MovementLedger
from services.inventory_service.app.models import Base, InventoryRecord
from services.inventory_service.app.store import RecordStore
from services.inventory_service.app.transactions import StockTransactions

KEY = InventoryKey(1)


async def _components(tmp_path, *, wire_alerts: bool = True) -> SimpleNamespace:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'alerts.db'}"
    await create_schema(database_url, Base.metadata)
    transactions = StockTransactions(get_session_factory(database_url))
    alerts = AlertEngine(transactions)
    hooked = alerts if wire_alerts else None
    return SimpleNamespace(
        alerts=alerts,
        store=RecordStore(transactions, PermissiveCatalog(), hooked),
        ledger=MovementLedger(transactions, hooked),
    )


def test_alert_condition_thresholds() -> None:
    def record(available: int, reorder_point: int) -> InventoryRecord:
        return InventoryRecord(available_quantity=available, reorder_point=reorder_point)

    assert alert_condition(record(0, 5)) == (AlertType.OUT_OF_STOCK, 0)
    assert alert_condition(record(5, 5)) == (AlertType.LOW_STOCK, 5)
    assert alert_condition(record(6, 5)) is None
    assert alert_condition(record(0, 0)) == (AlertType.OUT_OF_STOCK, 0)


@pytest.mark.asyncio
async def test_evaluate_is_idempotent(tmp_path) -> None:
    parts = await _components(tmp_path, wire_alerts=False)
    try:
        await parts.store.create(KEY, 3, Thresholds(reorder_point=5))
        first = await parts.alerts.evaluate(KEY)
        second = await parts.alerts.evaluate(KEY)
        assert len(first) == 1
        assert [alert.id for alert in second] == [first[0].id]
        assert len(await parts.alerts.list_alerts(key=KEY)) == 1
    finally:
        await dispose_engines()


@pytest.mark.asyncio
async def test_alert_type_tracks_stock_level(tmp_path) -> None:
    parts = await _components(tmp_path)
    try:
        await parts.store.create(KEY, 8, Thresholds(reorder_point=5))
        assert await parts.alerts.list_alerts(resolved=False) == []

        await parts.ledger.record_movement(KEY, MovementType.OUT, 4, OrderRef(1))
        open_alerts = await parts.alerts.list_alerts(resolved=False, key=KEY)
        assert [alert.alert_type for alert in open_alerts] == ["low_stock"]

        await parts.ledger.record_movement(KEY, MovementType.OUT, 4, OrderRef(2))
        open_alerts = await parts.alerts.list_alerts(resolved=False, key=KEY)
        assert [alert.alert_type for alert in open_alerts] == ["out_of_stock"]
        assert [alert.alert_type for alert in await parts.alerts.list_alerts(resolved=True)] == ["low_stock"]

        await parts.ledger.record_movement(KEY, MovementType.IN, 20, RestockRef())
        assert await parts.alerts.list_alerts(resolved=False, key=KEY) == []

        out_of_stock = await parts.alerts.list_alerts(alert_types=[AlertType.OUT_OF_STOCK])
        assert len(out_of_stock) == 1
        assert out_of_stock[0].is_resolved
    finally:
        await dispose_engines()


@pytest.mark.asyncio
async def test_resolve_alert(tmp_path) -> None:
    parts = await _components(tmp_path)
    try:
        await parts.store.create(KEY, 0)
        (alert,) = await parts.alerts.list_alerts(resolved=False)

        resolved = await parts.alerts.resolve(alert.id)
        assert resolved.is_resolved
        assert resolved.resolved_at is not None
        with pytest.raises(AlreadyResolved):
            await parts.alerts.resolve(alert.id)
        with pytest.raises(NotFound):
            await parts.alerts.resolve(alert.id + 100)

        # Still out of stock, so the next evaluation opens a fresh alert.
        reopened = await parts.alerts.evaluate(KEY)
        assert [new.id for new in reopened] != [alert.id]
        assert reopened[0].alert_type == "out_of_stock"
    finally:
        await dispose_engines()


@pytest.mark.asyncio
async def test_evaluate_all_covers_every_record(tmp_path) -> None:
    parts = await _components(tmp_path, wire_alerts=False)
    try:
        await parts.store.create(KEY, 0)
        await parts.store.create(InventoryKey(2, 3), 2, Thresholds(reorder_point=2))
        await parts.store.create(InventoryKey(3), 50, Thresholds(reorder_point=2))

        assert await parts.alerts.evaluate_all() == 3
        open_alerts = await parts.alerts.list_alerts(resolved=False)
        assert sorted((alert.product_id, alert.alert_type) for alert in open_alerts) == [
            (1, "out_of_stock"),
            (2, "low_stock"),
        ]

        with pytest.raises(NotFound):
            await parts.alerts.evaluate(InventoryKey(9))
    finally:
        await dispose_engines()


@pytest.mark.asyncio
async def test_manual_quantity_update_reevaluates(tmp_path) -> None:
    parts = await _components(tmp_path)
    try:
        await parts.store.create(KEY, 10, Thresholds(reorder_point=3))
        await parts.store.update(KEY, RecordUpdate(quantity=2, updated_by=4))
        open_alerts = await parts.alerts.list_alerts(resolved=False, key=KEY)
        assert [alert.alert_type for alert in open_alerts] == ["low_stock"]
    finally:
        await dispose_engines()


@pytest.mark.asyncio
async def test_deleting_a_record_closes_its_alerts(tmp_path) -> None:
    parts = await _components(tmp_path)
    try:
        await parts.store.create(KEY, 0)
        await parts.store.create(InventoryKey(2), 0)
        assert len(await parts.alerts.list_alerts(resolved=False)) == 2

        await parts.store.delete(KEY)

        assert await parts.alerts.list_alerts(resolved=False, key=KEY) == []
        (closed,) = await parts.alerts.list_alerts(key=KEY)
        assert closed.is_resolved
        assert closed.resolved_at is not None
        assert [alert.product_id for alert in await parts.alerts.list_alerts(resolved=False)] == [2]
        assert await parts.alerts.evaluate_all() == 1
    finally:
        await dispose_engines()
