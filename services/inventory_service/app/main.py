from contextlib import asynccontextmanager
from datetime import timedelta

import httpx
from fastapi import FastAPI

from services.common import (
    DEFAULT_APP_NAME,
    ServiceSettings,
    build_app,
    configure_logging,
    dispose_engines,
    flush_traces,
    get_session_factory,
    resolve_database_url,
)

from .alerts import AlertEngine
from .api.health import router as health_router
from .api.inventory import router as inventory_router
from .bulk import BulkCoordinator
from .catalog import CatalogClient, HttpCatalogClient, PermissiveCatalog
from .ledger import MovementLedger
from .reservations import ReservationManager
from .store import RecordStore
from .sweeper import ReservationSweeper
from .transactions import StockTransactions

SERVICE_NAME = "Inventory Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./inventory_service.db"

_STATE_ATTRIBUTES = (
    "session_factory",
    "record_store",
    "movement_ledger",
    "reservation_manager",
    "alert_engine",
    "bulk_coordinator",
    "reservation_sweeper",
)


def create_app(settings: ServiceSettings | None = None, *, catalog: CatalogClient | None = None) -> FastAPI:
    """Create the Inventory Service FastAPI application.

    ``catalog`` overrides the catalog client; otherwise one is built from
    ``catalog_service_url`` (or every product is accepted when it is unset).
    """

    resolved_settings = settings or ServiceSettings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    session_factory = get_session_factory(database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        http_catalog: HttpCatalogClient | None = None
        sweeper: ReservationSweeper | None = None
        try:
            catalog_client = catalog
            if catalog_client is None and resolved_settings.catalog_service_url:
                http_catalog = HttpCatalogClient(
                    client=httpx.AsyncClient(timeout=resolved_settings.catalog_timeout_seconds),
                    base_url=resolved_settings.catalog_service_url,
                )
                catalog_client = http_catalog
            if catalog_client is None:
                catalog_client = PermissiveCatalog()

            transactions = StockTransactions(
                session_factory, default_timeout=resolved_settings.operation_timeout_seconds
            )
            alerts = AlertEngine(transactions)
            ledger = MovementLedger(transactions, alerts)
            reservations = ReservationManager(
                transactions,
                catalog_client,
                alerts,
                default_ttl=timedelta(seconds=resolved_settings.reservation_ttl_seconds),
                sweep_batch_size=resolved_settings.reservation_sweep_batch_size,
            )
            sweeper = ReservationSweeper(
                reservations,
                alerts,
                interval_seconds=resolved_settings.reservation_sweep_interval_seconds,
                batch_size=resolved_settings.reservation_sweep_batch_size,
            )

            app.state.session_factory = session_factory
            app.state.record_store = RecordStore(transactions, catalog_client, alerts)
            app.state.movement_ledger = ledger
            app.state.reservation_manager = reservations
            app.state.alert_engine = alerts
            app.state.bulk_coordinator = BulkCoordinator(ledger)
            app.state.reservation_sweeper = sweeper
            if resolved_settings.reservation_sweep_enabled:
                sweeper.start()
            yield
        finally:
            for name in _STATE_ATTRIBUTES:
                setattr(app.state, name, None)
            if sweeper is not None:
                await sweeper.stop()
            if http_catalog is not None:
                await http_catalog.close()
            await dispose_engines()
            flush_traces()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(inventory_router)
    return app


app = create_app()
