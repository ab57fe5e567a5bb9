"""
Typed application errors.

Every failure that reaches a client carries an `ErrorKind` and structured
fields instead of ad hoc message/details/hint payloads. Remediation for
deployment problems (missing stored procedures, RLS policies) lives in
`backend/db/migrations/` and never in a response body.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    INSUFFICIENT_STOCK = "insufficient_stock"
    ALLOCATION_INTEGRITY = "allocation_integrity"
    PERSISTENCE = "persistence"
    COMPENSATION_FAILED = "compensation_failed"
    MISSING_DB_FUNCTION = "missing_db_function"
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    AUTH_SERVICE = "auth_service"
    PAYMENT_GATEWAY = "payment_gateway"


HTTP_STATUS = {
    ErrorKind.INSUFFICIENT_STOCK: 409,
    ErrorKind.ALLOCATION_INTEGRITY: 500,
    ErrorKind.PERSISTENCE: 502,
    ErrorKind.COMPENSATION_FAILED: 502,
    ErrorKind.MISSING_DB_FUNCTION: 503,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.AUTH_SERVICE: 502,
    ErrorKind.PAYMENT_GATEWAY: 502,
}


class AppError(Exception):
    kind: ErrorKind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str, kind: Optional[ErrorKind] = None, **fields: Any):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.fields = fields

    @property
    def status_code(self) -> int:
        return HTTP_STATUS.get(self.kind, 500)

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "detail": self.message, **self.fields}


class InsufficientStockError(AppError):
    kind = ErrorKind.INSUFFICIENT_STOCK

    def __init__(
        self,
        product_id: str,
        requested: int,
        available: int,
        product_name: Optional[str] = None,
        raw_available: Any = None,
        warehouse_id: Optional[str] = None,
    ):
        label = product_name or product_id
        where = " in the selected warehouse" if warehouse_id else ""
        msg = f'insufficient stock for "{label}"{where}. requested: {requested}, available: {available}'
        if available == 0 and raw_available:
            msg += f" ({raw_available} units on record, but no lot holds a whole unit)"
        super().__init__(
            msg,
            product_id=product_id,
            product_name=product_name,
            requested=requested,
            available=available,
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class AllocationIntegrityError(AppError):
    kind = ErrorKind.ALLOCATION_INTEGRITY

    def __init__(self, product_id: str, requested: int, unallocated: int, product_name: Optional[str] = None):
        label = product_name or product_id
        super().__init__(
            f'lot allocation for "{label}" left {unallocated} of {requested} units unassigned',
            product_id=product_id,
            requested=requested,
            unallocated=unallocated,
        )


class PersistenceError(AppError):
    kind = ErrorKind.PERSISTENCE


class CompensationFailedError(AppError):
    """
    The compensating delete of an orphaned sale header failed.

    The message is the compensating call's own error, which masks the
    original line-insert failure; the original text is kept in
    `original_error` for logs and callers that want it.
    """

    kind = ErrorKind.COMPENSATION_FAILED

    def __init__(self, message: str, sale_id: str, original_error: str):
        super().__init__(message, sale_id=sale_id, original_error=original_error)
        self.sale_id = sale_id
        self.original_error = original_error


class MissingDbFunctionError(AppError):
    kind = ErrorKind.MISSING_DB_FUNCTION

    def __init__(self, function_name: str):
        super().__init__(
            f"database function '{function_name}' is not installed or is outdated",
            function=function_name,
        )


class NotFoundError(AppError):
    kind = ErrorKind.NOT_FOUND


class InvalidInputError(AppError):
    kind = ErrorKind.INVALID_INPUT


class UnauthenticatedError(AppError):
    kind = ErrorKind.UNAUTHENTICATED


class ForbiddenError(AppError):
    kind = ErrorKind.FORBIDDEN


class AuthServiceError(AppError):
    kind = ErrorKind.AUTH_SERVICE


class PaymentGatewayError(AppError):
    kind = ErrorKind.PAYMENT_GATEWAY
