"""Translation of service exceptions into HTTP errors."""

import logging

from fastapi import HTTPException

from partnermap.errors import (
    ConflictError,
    CSVFormatError,
    IllegalStateTransitionError,
    NotFoundError,
    PartnerMapError,
    RegistryUnavailableError,
)

logger = logging.getLogger(__name__)


def http_error(error: PartnerMapError) -> HTTPException:
    """Map a service exception to the HTTP status callers expect."""
    if isinstance(error, RegistryUnavailableError):
        logger.error(f"Registry unavailable: {error}")
        return HTTPException(
            status_code=503,
            detail={"message": str(error), "retriable": True},
        )
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, (IllegalStateTransitionError, ConflictError)):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, CSVFormatError):
        return HTTPException(
            status_code=400,
            detail={"message": str(error), "batch_id": error.batch_id},
        )
    return HTTPException(status_code=400, detail=str(error))
