from __future__ import annotations


class CustodyError(Exception):
    """Base for every failure the core reports to its callers.

    ``kind`` is the stable name presentation code switches on; ``status_code``
    is what the HTTP layer answers with.
    """

    kind = 'ERROR'
    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFound(CustodyError, ValueError):
    kind = 'NotFound'
    status_code = 404


class InvalidQuantity(CustodyError, ValueError):
    kind = 'InvalidQuantity'
    status_code = 400


class InsufficientStock(CustodyError, ValueError):
    kind = 'InsufficientStock'
    status_code = 409

    def __init__(self, detail: str, *, material_id: int | None = None) -> None:
        super().__init__(detail)
        self.material_id = material_id


class InvalidState(CustodyError, ValueError):
    kind = 'InvalidState'
    status_code = 409


class InvalidOperation(CustodyError, ValueError):
    kind = 'InvalidOperation'
    status_code = 400


class RestoreValidationFailed(CustodyError, ValueError):
    kind = 'RestoreValidationFailed'
    status_code = 400


class AccessDenied(CustodyError, PermissionError):
    kind = 'AccessDenied'
    status_code = 401


class Forbidden(CustodyError, PermissionError):
    kind = 'Forbidden'
    status_code = 403


class InventoryCorruption(CustodyError, RuntimeError):
    """Ledger arithmetic reached a state correct callers can never produce."""

    kind = 'InventoryCorruption'
    status_code = 500
