"""Mapping of the application exception taxonomy to HTTP problem details."""

from typing import Optional

from fastapi import HTTPException, Request, status

from billtracker.core.exceptions import AppError
from billtracker.utils.logging import get_logger
from billtracker.utils.responses import create_error_detail

LOGGER = get_logger(__name__)

STATUS_BY_KIND = {
    "validation_error": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
    "duplicate": status.HTTP_409_CONFLICT,
    "invalid_state_transition": status.HTTP_409_CONFLICT,
    "cancelled": status.HTTP_409_CONFLICT,
    "external_service_error": status.HTTP_502_BAD_GATEWAY,
}

TITLE_BY_STATUS = {
    status.HTTP_400_BAD_REQUEST: "Bad Request",
    status.HTTP_404_NOT_FOUND: "Not Found",
    status.HTTP_409_CONFLICT: "Conflict",
    status.HTTP_502_BAD_GATEWAY: "Bad Gateway",
    status.HTTP_500_INTERNAL_SERVER_ERROR: "Internal Server Error",
}


def status_for_kind(kind: Optional[str]) -> int:
    return STATUS_BY_KIND.get(kind or "", status.HTTP_500_INTERNAL_SERVER_ERROR)


def problem(kind: Optional[str], message: str, request: Optional[Request] = None) -> HTTPException:
    """Build an HTTPException carrying an RFC 7807 error detail."""
    code = status_for_kind(kind)
    detail = create_error_detail(
        title=TITLE_BY_STATUS.get(code, "Error"),
        status=code,
        detail=message,
        request=request,
        kind=kind,
    )
    return HTTPException(status_code=code, detail=detail.model_dump(mode="json"))


def http_error(error: AppError, request: Optional[Request] = None) -> HTTPException:
    """Translate an AppError raised by a service."""
    if status_for_kind(error.kind) >= 500:
        LOGGER.error(
            f"Request failed: {error.message}",
            exc_info=error.original_error is not None,
            extra={"kind": error.kind}
        )
    else:
        LOGGER.warning(f"Request rejected: {error.message}", extra={"kind": error.kind})
    return problem(error.kind, error.message, request)
