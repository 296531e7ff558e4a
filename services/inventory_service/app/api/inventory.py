"""Inventory HTTP endpoints."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from ..alerts import AlertEngine
from ..bulk import BulkCoordinator, BulkItem
from ..dependencies import get_alerts, get_bulk, get_ledger, get_reservations, get_store
from ..domain import (
    AlertType,
    InventoryKey,
    MovementFilter,
    MovementType,
    Page,
    RecordFilter,
    RecordUpdate,
    Thresholds,
)
from ..errors import InventoryError
from ..ledger import MovementLedger
from ..reservations import ReservationManager
from ..schemas import (
    AlertEvaluationResponse,
    AlertResponse,
    BulkFailureResponse,
    BulkMovementRequest,
    BulkMovementResponse,
    FulfillmentResponse,
    InventoryCreate,
    InventoryListResponse,
    InventoryResponse,
    InventorySummaryResponse,
    InventoryUpdate,
    MovementCreate,
    MovementListResponse,
    MovementResponse,
    ReservationCreate,
    ReservationResponse,
    SweepFailureResponse,
    SweepResponse,
)
from ..store import RecordStore

router = APIRouter(prefix="/inventory", tags=["inventory"])


def _http_error(exc: InventoryError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=str(exc))


def _alert_key(product_id: int | None, product_variant_id: int | None) -> InventoryKey | None:
    if product_id is None:
        if product_variant_id is not None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="productVariantId requires productId",
            )
        return None
    return InventoryKey(product_id, product_variant_id)


def _serialize_datetime(value):
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _serialize_record(record) -> dict[str, object]:
    return {
        "id": record.id,
        "productId": record.product_id,
        "productVariantId": record.product_variant_id,
        "quantity": record.quantity,
        "reservedQuantity": record.reserved_quantity,
        "availableQuantity": record.available_quantity,
        "minStockLevel": record.min_stock_level,
        "maxStockLevel": record.max_stock_level,
        "reorderPoint": record.reorder_point,
        "isLowStock": record.available_quantity <= record.reorder_point,
        "isOutOfStock": record.available_quantity == 0,
        "lastRestocked": _serialize_datetime(record.last_restocked),
        "createdAt": _serialize_datetime(record.created_at),
        "updatedAt": _serialize_datetime(record.updated_at),
    }


def _serialize_movement(movement) -> dict[str, object]:
    return {
        "id": movement.id,
        "productId": movement.product_id,
        "productVariantId": movement.product_variant_id,
        "movementType": movement.movement_type,
        "quantity": movement.quantity,
        "previousQuantity": movement.previous_quantity,
        "newQuantity": movement.new_quantity,
        "previousReserved": movement.previous_reserved,
        "newReserved": movement.new_reserved,
        "reference": movement.reference,
        "referenceType": movement.reference_type,
        "reason": movement.reason,
        "notes": movement.notes,
        "createdBy": movement.created_by,
        "createdAt": _serialize_datetime(movement.created_at),
    }


def _serialize_reservation(reservation) -> dict[str, object]:
    return {
        "id": reservation.id,
        "orderId": reservation.order_id,
        "productId": reservation.product_id,
        "productVariantId": reservation.product_variant_id,
        "quantity": reservation.quantity,
        "expiresAt": _serialize_datetime(reservation.expires_at),
        "createdAt": _serialize_datetime(reservation.created_at),
    }


def _serialize_alert(alert) -> dict[str, object]:
    return {
        "id": alert.id,
        "productId": alert.product_id,
        "productVariantId": alert.product_variant_id,
        "alertType": alert.alert_type,
        "currentQuantity": alert.current_quantity,
        "thresholdQuantity": alert.threshold_quantity,
        "isResolved": alert.is_resolved,
        "resolvedAt": _serialize_datetime(alert.resolved_at),
        "createdAt": _serialize_datetime(alert.created_at),
    }


# Records -----------------------------------------------------------------------------------


@router.post("", response_model=InventoryResponse, status_code=status.HTTP_201_CREATED)
async def create_inventory(payload: InventoryCreate, store: RecordStore = Depends(get_store)) -> InventoryResponse:
    thresholds = Thresholds(
        min_stock_level=payload.min_stock_level,
        max_stock_level=payload.max_stock_level,
        reorder_point=payload.reorder_point,
    )
    try:
        record = await store.create(payload.key, payload.quantity, thresholds)
    except InventoryError as exc:
        raise _http_error(exc) from exc
    return InventoryResponse.model_validate(_serialize_record(record))


@router.get("", response_model=InventoryListResponse)
async def list_inventory(
    product_id: int | None = Query(default=None, alias="productId"),
    product_variant_id: int | None = Query(default=None, alias="productVariantId"),
    low_stock: bool = Query(default=False, alias="lowStock"),
    out_of_stock: bool = Query(default=False, alias="outOfStock"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    store: RecordStore = Depends(get_store),
) -> InventoryListResponse:
    filters = RecordFilter(
        product_id=product_id,
        variant_id=product_variant_id,
        low_stock=low_stock,
        out_of_stock=out_of_stock,
    )
    paging = Page(page=page, limit=limit)
    records, total = await store.list(filters, paging)
    return InventoryListResponse(
        items=[InventoryResponse.model_validate(_serialize_record(record)) for record in records],
        total=total,
        page=page,
        limit=limit,
        total_pages=paging.total_pages(total),
    )


@router.get("/summary", response_model=InventorySummaryResponse)
async def inventory_summary(store: RecordStore = Depends(get_store)) -> InventorySummaryResponse:
    summary = await store.summary()
    return InventorySummaryResponse(
        total_products=summary.total_products,
        total_variants=summary.total_variants,
        total_quantity=summary.total_quantity,
        total_reserved=summary.total_reserved,
        total_available=summary.total_available,
        low_stock_items=summary.low_stock_items,
        out_of_stock_items=summary.out_of_stock_items,
        average_stock_level=summary.average_stock_level,
    )


@router.get("/products/{product_id}", response_model=InventoryResponse)
async def get_inventory_by_product(
    product_id: int,
    variant_id: int | None = Query(default=None, alias="variantId"),
    store: RecordStore = Depends(get_store),
) -> InventoryResponse:
    try:
        record = await store.get(InventoryKey(product_id, variant_id))
    except InventoryError as exc:
        raise _http_error(exc) from exc
    return InventoryResponse.model_validate(_serialize_record(record))


# Movements ---------------------------------------------------------------------------------


@router.post("/movements", response_model=MovementResponse, status_code=status.HTTP_201_CREATED)
async def record_movement(
    payload: MovementCreate, ledger: MovementLedger = Depends(get_ledger)
) -> MovementResponse:
    try:
        movement = await ledger.record_movement(
            payload.key,
            payload.movement_type,
            payload.quantity,
            payload.provenance(),
            reason=payload.reason,
            notes=payload.notes,
        )
    except InventoryError as exc:
        raise _http_error(exc) from exc
    return MovementResponse.model_validate(_serialize_movement(movement))


@router.post("/movements/bulk", response_model=BulkMovementResponse)
async def bulk_record_movements(
    payload: BulkMovementRequest, bulk: BulkCoordinator = Depends(get_bulk)
) -> BulkMovementResponse:
    items = [
        BulkItem(
            key=update.key,
            movement_type=update.movement_type,
            quantity=update.quantity,
            provenance=update.provenance(),
            reason=update.reason,
            notes=update.notes,
        )
        for update in payload.updates
    ]
    result = await bulk.bulk_apply(items)
    return BulkMovementResponse(
        updated_items=result.updated_items,
        failed_items=[
            BulkFailureResponse(
                product_id=failure.key.product_id,
                product_variant_id=failure.key.variant_id,
                error=failure.error,
            )
            for failure in result.failed_items
        ],
        success=result.success,
    )


@router.get("/movements", response_model=MovementListResponse)
async def list_movements(
    product_id: int | None = Query(default=None, alias="productId"),
    product_variant_id: int | None = Query(default=None, alias="productVariantId"),
    movement_type: MovementType | None = Query(default=None, alias="movementType"),
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    ledger: MovementLedger = Depends(get_ledger),
) -> MovementListResponse:
    filters = MovementFilter(
        product_id=product_id,
        variant_id=product_variant_id,
        movement_type=movement_type,
        start=start_date,
        end=end_date,
    )
    paging = Page(page=page, limit=limit)
    movements, total = await ledger.list_movements(filters, paging)
    return MovementListResponse(
        items=[MovementResponse.model_validate(_serialize_movement(movement)) for movement in movements],
        total=total,
        page=page,
        limit=limit,
        total_pages=paging.total_pages(total),
    )


@router.get("/movements/{movement_id}", response_model=MovementResponse)
async def get_movement(movement_id: int, ledger: MovementLedger = Depends(get_ledger)) -> MovementResponse:
    try:
        movement = await ledger.get_movement(movement_id)
    except InventoryError as exc:
        raise _http_error(exc) from exc
    return MovementResponse.model_validate(_serialize_movement(movement))


# Reservations ------------------------------------------------------------------------------


@router.post("/reservations", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def reserve_stock(
    payload: ReservationCreate, reservations: ReservationManager = Depends(get_reservations)
) -> ReservationResponse:
    ttl = timedelta(seconds=payload.ttl_seconds) if payload.ttl_seconds is not None else None
    try:
        reservation = await reservations.reserve(payload.order_id, payload.key, payload.quantity, ttl)
    except InventoryError as exc:
        raise _http_error(exc) from exc
    return ReservationResponse.model_validate(_serialize_reservation(reservation))


@router.post("/reservations/sweep", response_model=SweepResponse)
async def sweep_reservations(reservations: ReservationManager = Depends(get_reservations)) -> SweepResponse:
    report = await reservations.sweep_expired()
    return SweepResponse(
        released=report.released,
        failed=[
            SweepFailureResponse(
                reservation_id=failure.reservation_id,
                product_id=failure.key.product_id,
                product_variant_id=failure.key.variant_id,
                error=failure.error,
            )
            for failure in report.failed
        ],
        skipped=report.skipped,
    )


@router.get("/reservations/orders/{order_id}", response_model=list[ReservationResponse])
async def list_order_reservations(
    order_id: int, reservations: ReservationManager = Depends(get_reservations)
) -> list[ReservationResponse]:
    held = await reservations.list_for_order(order_id)
    return [ReservationResponse.model_validate(_serialize_reservation(reservation)) for reservation in held]


@router.post("/reservations/orders/{order_id}/release", response_model=list[ReservationResponse])
async def release_order_reservations(
    order_id: int, reservations: ReservationManager = Depends(get_reservations)
) -> list[ReservationResponse]:
    try:
        released = await reservations.release_by_order(order_id)
    except InventoryError as exc:
        raise _http_error(exc) from exc
    return [ReservationResponse.model_validate(_serialize_reservation(reservation)) for reservation in released]


@router.post("/reservations/orders/{order_id}/fulfill", response_model=FulfillmentResponse)
async def fulfill_order_reservations(
    order_id: int, reservations: ReservationManager = Depends(get_reservations)
) -> FulfillmentResponse:
    try:
        movements = await reservations.fulfill_order(order_id)
    except InventoryError as exc:
        raise _http_error(exc) from exc
    return FulfillmentResponse(
        order_id=order_id,
        movements=[MovementResponse.model_validate(_serialize_movement(movement)) for movement in movements],
    )


@router.delete("/reservations/{reservation_id}", response_model=ReservationResponse)
async def release_reservation(
    reservation_id: int, reservations: ReservationManager = Depends(get_reservations)
) -> ReservationResponse:
    try:
        reservation = await reservations.release(reservation_id)
    except InventoryError as exc:
        raise _http_error(exc) from exc
    return ReservationResponse.model_validate(_serialize_reservation(reservation))


# Alerts ------------------------------------------------------------------------------------


@router.get("/alerts", response_model=list[AlertResponse])
async def list_alerts(
    resolved: bool | None = Query(default=None),
    product_id: int | None = Query(default=None, alias="productId"),
    product_variant_id: int | None = Query(default=None, alias="productVariantId"),
    alert_type: list[AlertType] | None = Query(default=None, alias="alertType"),
    alerts: AlertEngine = Depends(get_alerts),
) -> list[AlertResponse]:
    key = _alert_key(product_id, product_variant_id)
    found = await alerts.list_alerts(resolved=resolved, key=key, alert_types=alert_type)
    return [AlertResponse.model_validate(_serialize_alert(alert)) for alert in found]


@router.post("/alerts/evaluate", response_model=AlertEvaluationResponse)
async def evaluate_alerts(
    product_id: int | None = Query(default=None, alias="productId"),
    product_variant_id: int | None = Query(default=None, alias="productVariantId"),
    alerts: AlertEngine = Depends(get_alerts),
) -> AlertEvaluationResponse:
    key = _alert_key(product_id, product_variant_id)
    if key is None:
        evaluated = await alerts.evaluate_all()
        return AlertEvaluationResponse(evaluated=evaluated)
    try:
        still_open = await alerts.evaluate(key)
    except InventoryError as exc:
        raise _http_error(exc) from exc
    return AlertEvaluationResponse(
        evaluated=1,
        open_alerts=[AlertResponse.model_validate(_serialize_alert(alert)) for alert in still_open],
    )


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(alert_id: int, alerts: AlertEngine = Depends(get_alerts)) -> AlertResponse:
    try:
        alert = await alerts.resolve(alert_id)
    except InventoryError as exc:
        raise _http_error(exc) from exc
    return AlertResponse.model_validate(_serialize_alert(alert))


# Records by id -----------------------------------------------------------------------------


@router.get("/{item_id}", response_model=InventoryResponse)
async def get_inventory(item_id: int, store: RecordStore = Depends(get_store)) -> InventoryResponse:
    try:
        record = await store.get_by_id(item_id)
    except InventoryError as exc:
        raise _http_error(exc) from exc
    return InventoryResponse.model_validate(_serialize_record(record))


@router.patch("/{item_id}", response_model=InventoryResponse)
async def update_inventory(
    item_id: int,
    payload: InventoryUpdate,
    store: RecordStore = Depends(get_store),
) -> InventoryResponse:
    changes = RecordUpdate(
        min_stock_level=payload.min_stock_level,
        max_stock_level=payload.max_stock_level,
        reorder_point=payload.reorder_point,
        quantity=payload.quantity,
        reserved_quantity=payload.reserved_quantity,
        available_quantity=payload.available_quantity,
        updated_by=payload.updated_by,
    )
    try:
        record = await store.get_by_id(item_id)
        updated = await store.update(record.key, changes)
    except InventoryError as exc:
        raise _http_error(exc) from exc
    return InventoryResponse.model_validate(_serialize_record(updated))


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_inventory(item_id: int, store: RecordStore = Depends(get_store)) -> Response:
    try:
        record = await store.get_by_id(item_id)
        await store.delete(record.key)
    except InventoryError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{item_id}/movements", response_model=MovementListResponse)
async def list_inventory_movements(
    item_id: int,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    store: RecordStore = Depends(get_store),
    ledger: MovementLedger = Depends(get_ledger),
) -> MovementListResponse:
    try:
        record = await store.get_by_id(item_id)
    except InventoryError as exc:
        raise _http_error(exc) from exc
    paging = Page(page=page, limit=limit)
    movements, total = await ledger.list_movements(MovementFilter(key=record.key), paging)
    return MovementListResponse(
        items=[MovementResponse.model_validate(_serialize_movement(movement)) for movement in movements],
        total=total,
        page=page,
        limit=limit,
        total_pages=paging.total_pages(total),
    )
