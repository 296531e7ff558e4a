import asyncio
from datetime import timedelta, timezone
from types import SimpleNamespace

import pytest
from prometheus_client import REGISTRY

from services.common import create_schema, dispose_engines, get_session_factory
from services.inventory_service.app.alerts import AlertEngine
from services.inventory_service.app.catalog import PermissiveCatalog
from services.inventory_service.app.domain import InventoryKey, MovementFilter, MovementType, Page
from services.inventory_service.app.ledger import MovementLedger, utcnow
from services.inventory_service.app.models import Base
from services.inventory_service.app.reservations import ReservationManager
from services.inventory_service.app.store import RecordStore
from services.inventory_service.app.sweeper import ReservationSweeper
from services.inventory_service.app.transactions import StockTransactions

KEY = InventoryKey(1)
OTHER = InventoryKey(2)


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


class _FailingOnKey(ReservationManager):
    """Fails every release touching ``broken_key`` inside its transaction."""

    def __init__(self, *args, broken_key: InventoryKey, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.broken_key = broken_key

    async def _record_for(self, repository, reservation):
        if reservation.key == self.broken_key:
            raise RuntimeError("disk full")
        return await super()._record_for(repository, reservation)


async def _components(tmp_path) -> SimpleNamespace:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'sweep.db'}"
    await create_schema(database_url, Base.metadata)
    transactions = StockTransactions(get_session_factory(database_url))
    alerts = AlertEngine(transactions)
    catalog = PermissiveCatalog()
    return SimpleNamespace(
        transactions=transactions,
        alerts=alerts,
        catalog=catalog,
        store=RecordStore(transactions, catalog, alerts),
        ledger=MovementLedger(transactions, alerts),
        reservations=ReservationManager(transactions, catalog, alerts),
    )


@pytest.mark.asyncio
async def test_sweep_releases_only_expired_reservations(tmp_path) -> None:
    parts = await _components(tmp_path)
    expired_releases = _MetricTracker("inventory_reservation_releases_total", {"reason": "expired"})
    try:
        await parts.store.create(KEY, 10)
        short = await parts.reservations.reserve(1, KEY, 3, ttl=timedelta(seconds=30))
        long = await parts.reservations.reserve(2, KEY, 2, ttl=timedelta(hours=2))

        nothing = await parts.reservations.sweep_expired()
        assert nothing.released == []

        report = await parts.reservations.sweep_expired(utcnow() + timedelta(minutes=5))
        assert report.released == [short.id]
        assert report.failed == []
        assert expired_releases.delta() == 1

        record = await parts.store.get(KEY)
        assert (record.quantity, record.reserved_quantity, record.available_quantity) == (10, 2, 8)
        assert [reservation.id for reservation in await parts.reservations.list_for_order(2)] == [long.id]

        releases, _ = await parts.ledger.list_movements(
            MovementFilter(key=KEY, movement_type=MovementType.RELEASE), Page()
        )
        assert [(entry.reason, entry.reference_type) for entry in releases] == [("expired", "sweep")]
    finally:
        await dispose_engines()


@pytest.mark.asyncio
async def test_one_failure_does_not_block_the_batch(tmp_path) -> None:
    parts = await _components(tmp_path)
    failures = _MetricTracker("inventory_sweep_failures_total")
    try:
        await parts.store.create(KEY, 10)
        await parts.store.create(OTHER, 10)
        broken = await parts.reservations.reserve(1, KEY, 4, ttl=timedelta(seconds=1))
        healthy = await parts.reservations.reserve(2, OTHER, 5, ttl=timedelta(seconds=1))
        later = utcnow() + timedelta(minutes=1)

        flaky = _FailingOnKey(parts.transactions, parts.catalog, parts.alerts, broken_key=KEY)
        report = await flaky.sweep_expired(later)
        assert report.released == [healthy.id]
        assert [(failure.reservation_id, failure.error) for failure in report.failed] == [(broken.id, "disk full")]
        assert failures.delta() == 1

        held = await parts.store.get(KEY)
        assert (held.reserved_quantity, held.available_quantity) == (4, 6)
        assert (await parts.store.get(OTHER)).reserved_quantity == 0

        retry = await parts.reservations.sweep_expired(later)
        assert retry.released == [broken.id]
        assert (await parts.store.get(KEY)).reserved_quantity == 0
    finally:
        await dispose_engines()


@pytest.mark.asyncio
async def test_repeated_failures_do_not_starve_later_reservations(tmp_path) -> None:
    parts = await _components(tmp_path)
    try:
        await parts.store.create(KEY, 10)
        await parts.store.create(OTHER, 10)
        stuck = await parts.reservations.reserve(1, KEY, 1, ttl=timedelta(seconds=1))
        waiting = await parts.reservations.reserve(2, OTHER, 1, ttl=timedelta(seconds=2))
        later = utcnow() + timedelta(minutes=1)

        flaky = _FailingOnKey(parts.transactions, parts.catalog, parts.alerts, broken_key=KEY)
        first = await flaky.sweep_expired(later, batch_size=1)
        assert [failure.reservation_id for failure in first.failed] == [stuck.id]

        second = await flaky.sweep_expired(later, batch_size=1)
        assert second.released == [waiting.id]
        assert second.failed == []

        third = await flaky.sweep_expired(later, batch_size=1)
        assert [failure.reservation_id for failure in third.failed] == [stuck.id]
    finally:
        await dispose_engines()


@pytest.mark.asyncio
async def test_sweep_cutoff_honours_utc_offsets(tmp_path) -> None:
    parts = await _components(tmp_path)
    try:
        await parts.store.create(KEY, 10)
        short = await parts.reservations.reserve(1, KEY, 3, ttl=timedelta(seconds=30))

        # Five minutes from now, written at UTC-05:00.
        cutoff = (utcnow() + timedelta(minutes=5)).astimezone(timezone(timedelta(hours=-5)))
        report = await parts.reservations.sweep_expired(cutoff)
        assert report.released == [short.id]

        early = (utcnow() - timedelta(minutes=5)).astimezone(timezone(timedelta(hours=9)))
        await parts.reservations.reserve(2, KEY, 1, ttl=timedelta(seconds=30))
        assert (await parts.reservations.sweep_expired(early)).released == []
    finally:
        await dispose_engines()

@pytest.mark.asyncio
async def test_sweep_respects_batch_size(tmp_path) -> None:
    parts = await _components(tmp_path)
    try:
        await parts.store.create(KEY, 10)
        for order_id in range(1, 4):
            await parts.reservations.reserve(order_id, KEY, 1, ttl=timedelta(seconds=1))
        later = utcnow() + timedelta(minutes=1)

        first = await parts.reservations.sweep_expired(later, batch_size=2)
        second = await parts.reservations.sweep_expired(later, batch_size=2)
        assert len(first.released) == 2
        assert len(second.released) == 1
        assert (await parts.store.get(KEY)).reserved_quantity == 0
    finally:
        await dispose_engines()


@pytest.mark.asyncio
async def test_sweeper_run_once_sweeps_and_evaluates(tmp_path) -> None:
    parts = await _components(tmp_path)
    try:
        await parts.store.create(KEY, 0)
        sweeper = ReservationSweeper(parts.reservations, parts.alerts, interval_seconds=60)
        report = await sweeper.run_once()
        assert report.released == []
        open_alerts = await parts.alerts.list_alerts(resolved=False, key=KEY)
        assert [alert.alert_type for alert in open_alerts] == ["out_of_stock"]
    finally:
        await dispose_engines()


@pytest.mark.asyncio
async def test_sweeper_background_task_starts_and_stops(tmp_path) -> None:
    parts = await _components(tmp_path)
    calls: list[int] = []

    class _CountingManager:
        async def sweep_expired(self, now=None, *, batch_size=None, timeout=None):
            calls.append(batch_size)
            return await parts.reservations.sweep_expired(now, batch_size=batch_size)

    try:
        sweeper = ReservationSweeper(_CountingManager(), None, interval_seconds=0.01, batch_size=7)
        sweeper.start()
        assert sweeper.running
        for _ in range(100):
            if len(calls) >= 2:
                break
            await asyncio.sleep(0.01)
        await sweeper.stop()
        assert not sweeper.running
        assert len(calls) >= 2
        assert set(calls) == {7}
    finally:
        await dispose_engines()
