from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette import status
from starlette.exceptions import HTTPException as StarletteHTTPException


class LedgerError(Exception):
    """Base class for anticipated check-out/check-in failures."""

    code = "ledger_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(LedgerError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidStateTransitionError(LedgerError):
    code = "invalid_state_transition"
    status_code = status.HTTP_409_CONFLICT


class AlreadyCheckedOutError(InvalidStateTransitionError):
    code = "already_checked_out"


class AlreadyAvailableError(InvalidStateTransitionError):
    code = "already_available"


class InsufficientQuantityError(InvalidStateTransitionError):
    code = "insufficient_quantity"


class InvalidQuantityError(LedgerError):
    code = "invalid_quantity"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class RangeTooLargeError(LedgerError):
    """A history query would read more day buckets than allowed."""

    code = "range_too_large"
    status_code = status.HTTP_400_BAD_REQUEST


class TransactionConflictError(LedgerError):
    """The atomic tool/staff update kept losing to concurrent writers."""

    code = "transaction_conflict"
    status_code = status.HTTP_409_CONFLICT


class LedgerWriteFailure(LedgerError):
    """A history bucket append failed after the state change committed.

    Instances are collected and logged by the ledger writer; they are never
    raised to callers because the committed tool state is authoritative.
    """

    code = "ledger_write_failure"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, bucket: str, cause: BaseException) -> None:
        super().__init__(f"Failed to append ledger entry to {bucket}: {cause}", details={"bucket": bucket})
        self.bucket = bucket
        self.cause = cause


class StoreError(Exception):
    """Raised by document store adapters when the backend misbehaves."""


class DocumentNotFoundError(StoreError):
    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"No document {collection}/{doc_id}")
        self.collection = collection
        self.doc_id = doc_id


class ErrorEnvelope(JSONResponse):
    def __init__(
        self,
        *,
        status_code: int,
        code: str,
        message: str,
        details: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        payload: dict[str, Any] = {"code": code, "message": message}
        if details is not None:
            payload["details"] = details
        super().__init__(payload, status_code=status_code, headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    message = detail if isinstance(detail, str) else "Error"
    details = detail if isinstance(detail, dict) else None
    return ErrorEnvelope(
        status_code=exc.status_code,
        code="http_error",
        message=message,
        details=details,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc):  # type: ignore[override]
    from fastapi.exceptions import RequestValidationError

    if isinstance(exc, RequestValidationError):
        return ErrorEnvelope(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="validation_error",
            message="Validation failed",
            details={"errors": jsonable_encoder(exc.errors())},
        )
    raise exc


async def ledger_error_handler(request: Request, exc: LedgerError):
    return ErrorEnvelope(
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


async def store_error_handler(request: Request, exc: StoreError):
    return ErrorEnvelope(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        code="store_unavailable",
        message="Document store unavailable",
    )
