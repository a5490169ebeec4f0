from __future__ import annotations


class BillServiceError(Exception):
    code = "BILL_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class BillValidationError(BillServiceError, ValueError):
    code = "VALIDATION_ERROR"


class BillNotFoundError(BillServiceError):
    code = "NOT_FOUND"


class BillConflictError(BillServiceError):
    code = "CONFLICT"
