"""Error taxonomy for inventory operations."""

from __future__ import annotations

from fastapi import status


class InventoryError(Exception):
    """Base class for failures the inventory core reports to its callers."""

    status_code: int = status.HTTP_400_BAD_REQUEST


class InvalidRequest(InventoryError):
    """Arguments the core refuses outright (non-positive quantity, wrong movement type)."""


class NotFound(InventoryError):
    """Record, reservation, movement, alert or catalog entity is absent."""

    status_code = status.HTTP_404_NOT_FOUND


class AlreadyExists(InventoryError):
    """A record already exists for the key."""

    status_code = status.HTTP_409_CONFLICT


class InsufficientStock(InventoryError):
    """A movement or reservation asks for more than is there."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, *, requested: int, available: int) -> None:
        super().__init__(f"insufficient stock: requested {requested}, available {available}")
        self.requested = requested
        self.available = available


class InvariantViolation(InventoryError):
    """The write would break ``available == quantity - reserved`` or go negative.

    Always a caller bug or a corruption signal; the write is aborted.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class HasOpenReservations(InventoryError):
    """The record cannot be deleted while reservations reference it."""

    status_code = status.HTTP_409_CONFLICT


class AlreadyResolved(InventoryError):
    status_code = status.HTTP_409_CONFLICT


class DeadlineExceeded(InventoryError):
    """The operation ran past its deadline and was rolled back."""

    status_code = status.HTTP_504_GATEWAY_TIMEOUT


class CatalogUnavailable(InventoryError):
    """The catalog could not answer an existence check."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
