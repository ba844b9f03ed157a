# app/classroll/api/utilities/errors.py

import logging
from fastapi import HTTPException, status

from ...services.errors import (
    AuthenticationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PersistenceError,
    ServiceError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def to_http_exception(error: ServiceError) -> HTTPException:
    """Maps a service-layer exception to the HTTP error the routers return."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
            return HTTPException(status_code=status_code, detail=str(error), headers=headers)

    logger.error(f"Unmapped service error: {error!r}")
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
