from typing import Any

from fastapi import HTTPException, status

from gateway.core.errors import (
    ConflictError,
    ErrorKind,
    GatewayError,
    PersistenceError,
)
from gateway.services.repository import RepositoryUnavailableError

_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_CONTENT,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.EXTERNAL_SYSTEM: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.PERSISTENCE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
}


def to_http_exception(exc: GatewayError) -> HTTPException:
    detail: dict[str, Any] = {"error": exc.kind.value, "message": exc.message}
    status_code = _STATUS_BY_KIND[exc.kind]
    if isinstance(exc, ConflictError):
        detail["reason"] = exc.reason.value
        if exc.job_id is not None:
            detail["job_id"] = exc.job_id
    if isinstance(exc, PersistenceError):
        if exc.divergence is not None:
            detail["divergence"] = exc.divergence.value
        elif isinstance(exc.__cause__, RepositoryUnavailableError):
            # Nothing external changed; the store is just down.
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        if exc.external_job_id is not None:
            detail["job_id"] = exc.external_job_id
    return HTTPException(status_code=status_code, detail=detail)
