from __future__ import annotations

from decimal import Decimal


class ErpError(ValueError):
    code = 'ERROR'
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PermissionDenied(ErpError):
    code = 'PERMISSION_DENIED'
    status_code = 403


class ValidationError(ErpError):
    code = 'VALIDATION_ERROR'
    status_code = 400


class InvalidPartner(ValidationError):
    code = 'INVALID_PARTNER'


class NotFound(ErpError):
    code = 'NOT_FOUND'
    status_code = 404


class InsufficientStock(ErpError):
    code = 'INSUFFICIENT_STOCK'
    status_code = 409

    def __init__(self, item_ref, *, requested: Decimal, available: Decimal | None) -> None:
        if available is None:
            message = f'No stock on hand for {item_ref.label}'
        else:
            message = f'Insufficient stock for {item_ref.label}: requested {requested}, available {available}'
        super().__init__(message)
        self.item_ref = item_ref
        self.requested = requested
        self.available = available


class OverpaymentError(ErpError):
    code = 'OVERPAYMENT'
    status_code = 409


class NothingToAllocate(ErpError):
    code = 'NOTHING_TO_ALLOCATE'
    status_code = 409


class DuplicateCode(ErpError):
    code = 'DUPLICATE_CODE'
    status_code = 409


class InvalidState(ErpError):
    code = 'INVALID_STATE'
    status_code = 409


class StorageError(ErpError):
    code = 'STORAGE_ERROR'
    status_code = 503
