"""
Mapping of authorization engine errors onto HTTP responses.
"""

import logging

from fastapi import HTTPException, status

from core.rbac.errors import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    RbacError,
    StoreUnavailableError,
    SystemRoleError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (InvalidInputError, 422, "invalid_input"),
    (NotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (SystemRoleError, status.HTTP_409_CONFLICT, "system_role"),
    (ConflictError, status.HTTP_409_CONFLICT, "conflict"),
    (StoreUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE, "store_unavailable"),
)


def to_http_exception(error: RbacError) -> HTTPException:
    """
    Convert an engine error into an HTTPException.

    Examples:
        >>> to_http_exception(NotFoundError("Role x not found")).status_code
        404
    """
    for error_type, status_code, code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail={"error": code, "message": str(error)})

    logger.error(f"Unmapped authorization error: {error!r}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": "internal", "message": "Authorization error"},
    )
