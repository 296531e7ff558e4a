"""Background task that expires stale reservations and re-checks alerts."""

from __future__ import annotations

import asyncio
import logging

from services.common import background_span

from .alerts import AlertEngine
from .reservations import ReservationManager, SweepReport

_LOGGER = logging.getLogger(__name__)


class ReservationSweeper:
    def __init__(
        self,
        reservations: ReservationManager,
        alerts: AlertEngine | None = None,
        *,
        interval_seconds: float = 30.0,
        batch_size: int = 100,
    ) -> None:
        self.reservations = reservations
        self.alerts = alerts
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self._stopping = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="inventory-reservation-sweeper")
        _LOGGER.info("Reservation sweeper started (every %.1fs)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        _LOGGER.info("Reservation sweeper stopped")

    async def run_once(self) -> SweepReport:
        with background_span("inventory.reservation_sweep", batch_size=self.batch_size):
            report = await self.reservations.sweep_expired(batch_size=self.batch_size)
            if self.alerts is not None:
                await self.alerts.evaluate_all()
        return report

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception:
                # The next tick retries whatever this one could not finish.
                _LOGGER.exception("Reservation sweep failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), self.interval_seconds)
            except asyncio.TimeoutError:
                continue
