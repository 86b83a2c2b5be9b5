# Domain error taxonomy shared by the services and rendered by one FastAPI handler.
# Services raise these instead of HTTPException so they stay callable outside a request.
from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class DomainError(Exception):
    """Base class; subclasses pin the HTTP status used when rendered by the API."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: Any) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(DomainError):
    """Malformed input (bad dates, self-booking, non-positive price). Not retried."""

    status_code = status.HTTP_400_BAD_REQUEST


class PermissionDenied(DomainError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(DomainError):
    """The renter already holds a blocking booking, or a concurrent write won."""

    status_code = status.HTTP_409_CONFLICT


class StateError(DomainError):
    """A precondition on status or workflow flags does not hold ("action not available")."""

    status_code = status.HTTP_400_BAD_REQUEST


class BusyError(DomainError):
    """A coarse lock on the same resource is held by another writer; retry shortly."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class TransientStoreError(DomainError):
    """The backing store failed during a write; state is unknown and the caller may retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


async def _domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    # Same envelope as HTTPException so clients see one error shape
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, _domain_error_handler)
