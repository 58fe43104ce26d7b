"""Domain error taxonomy and its mapping onto HTTP responses."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status
from sqlalchemy.exc import DBAPIError, IntegrityError


class DomainError(Exception):
    """Base class for errors that carry a kind, a caller-safe message and a status."""

    kind = "ServerError"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_detail(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, **self.extra}

    def to_http(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_detail())


class ValidationError(DomainError):
    kind = "ValidationError"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(DomainError):
    kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND


class ProductNotFound(NotFound):
    kind = "ProductNotFound"

    def __init__(self, sku: str) -> None:
        super().__init__(f"Product {sku} not found", sku=sku)
        self.sku = sku


class InsufficientStock(DomainError):
    kind = "InsufficientStock"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, sku: str, current: int, requested: int) -> None:
        super().__init__(
            f"Insufficient stock for {sku}: {current} on hand, {requested} requested",
            sku=sku,
            current=current,
            requested=requested,
        )
        self.sku = sku
        self.current = current
        self.requested = requested


class InvalidStockMath(DomainError):
    kind = "InvalidStockMath"
    status_code = status.HTTP_400_BAD_REQUEST


class Conflict(DomainError):
    kind = "Conflict"
    status_code = status.HTTP_409_CONFLICT


class Unauthorized(DomainError):
    kind = "Unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(DomainError):
    kind = "Forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class ServerError(DomainError):
    def __init__(self, message: str = "Server error") -> None:
        super().__init__(message)


def classify_error(exc: BaseException) -> DomainError:
    """Map an arbitrary failure onto the domain taxonomy.

    Internal detail never reaches the message of the returned ServerError.
    """

    if isinstance(exc, DomainError):
        return exc
    if isinstance(exc, IntegrityError) and "ck_product_stock_non_negative" in str(exc.orig):
        return InvalidStockMath("Stock arithmetic produced a negative count")
    if isinstance(exc, DBAPIError) and "invalid input syntax" in str(exc.orig).lower():
        return ValidationError("Malformed value supplied")
    return ServerError()
