"""Low-stock and out-of-stock alerting."""

from __future__ import annotations

import logging

from .domain import AlertType, InventoryKey
from .errors import AlreadyResolved, InventoryError, NotFound
from .ledger import utcnow
from .metrics import INVENTORY_ALERTS_OPENED_TOTAL, INVENTORY_ALERTS_RESOLVED_TOTAL
from .models import InventoryAlert, InventoryRecord
from .transactions import StockTransactions

_LOGGER = logging.getLogger(__name__)


def alert_condition(record: InventoryRecord) -> tuple[AlertType, int] | None:
    """Return the alert type (and its threshold) that ``record`` currently warrants."""

    if record.available_quantity == 0:
        return AlertType.OUT_OF_STOCK, 0
    if record.available_quantity <= record.reorder_point:
        return AlertType.LOW_STOCK, record.reorder_point
    return None


class AlertEngine:
    """Keeps at most one open alert per key and type in line with current stock."""

    def __init__(self, transactions: StockTransactions) -> None:
        self.transactions = transactions

    async def evaluate(self, key: InventoryKey) -> list[InventoryAlert]:
        """Open, keep, or resolve alerts for ``key``; returns the alerts left open."""

        async with self.transactions.locked(key) as repository:
            record = await repository.get_record(key, for_update=True)
            if record is None:
                raise NotFound(f"inventory not found for {key}")
            condition = alert_condition(record)
            wanted = condition[0].value if condition is not None else None

            still_open: list[InventoryAlert] = []
            now = utcnow()
            for alert in await repository.list_open_alerts(key):
                if alert.alert_type == wanted and not still_open:
                    still_open.append(alert)
                    continue
                await repository.mark_alert_resolved(alert, resolved_at=now)
                INVENTORY_ALERTS_RESOLVED_TOTAL.labels(resolution="superseded").inc()
                _LOGGER.info("Resolved %s alert %s for %s", alert.alert_type, alert.id, key)

            if condition is not None and not still_open:
                alert_type, threshold = condition
                alert = await repository.add_alert(
                    key,
                    alert_type=alert_type,
                    current_quantity=record.available_quantity,
                    threshold_quantity=threshold,
                )
                INVENTORY_ALERTS_OPENED_TOTAL.labels(alert_type=alert_type.value).inc()
                _LOGGER.warning(
                    "Opened %s alert for %s: available=%s threshold=%s",
                    alert_type.value,
                    key,
                    record.available_quantity,
                    threshold,
                )
                still_open.append(alert)
            return still_open

    async def evaluate_all(self) -> int:
        """Evaluate every record, one key at a time; returns how many were evaluated."""

        async with self.transactions.session() as repository:
            keys = await repository.list_keys()
        evaluated = 0
        for key in keys:
            try:
                await self.evaluate(key)
            except InventoryError as exc:
                # Deleted between listing and evaluation.
                _LOGGER.info("Skipped alert evaluation for %s: %s", key, exc)
                continue
            evaluated += 1
        return evaluated

    async def resolve(self, alert_id: int) -> InventoryAlert:
        async with self.transactions.session() as repository:
            alert = await repository.get_alert(alert_id)
        if alert is None:
            raise NotFound(f"inventory alert {alert_id} not found")

        async with self.transactions.locked(alert.key) as repository:
            alert = await repository.get_alert(alert_id, for_update=True)
            if alert is None:
                raise NotFound(f"inventory alert {alert_id} not found")
            if alert.is_resolved:
                raise AlreadyResolved(f"inventory alert {alert_id} is already resolved")
            await repository.mark_alert_resolved(alert, resolved_at=utcnow())
        INVENTORY_ALERTS_RESOLVED_TOTAL.labels(resolution="manual").inc()
        return alert

    async def list_alerts(
        self,
        *,
        resolved: bool | None = None,
        key: InventoryKey | None = None,
        alert_types: list[AlertType] | None = None,
    ) -> list[InventoryAlert]:
        async with self.transactions.session() as repository:
            return await repository.list_alerts(resolved=resolved, key=key, alert_types=alert_types)
