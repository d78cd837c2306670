"""
Standardized error responses for the attestation server.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from ..services.attestation.base import (
    AttestationError,
    AuthorityError,
    DecodeError,
    InputError,
    PolicyViolation,
)

logger = logging.getLogger(__name__)

# error class -> (status code, log label)
ERROR_REGISTRY = {
    InputError: (400, "input error"),
    DecodeError: (400, "decode error"),
    AuthorityError: (400, "authority error"),
    PolicyViolation: (400, "policy violation"),
}


async def attestation_error_handler(request: Request, exc: AttestationError):
    """Answer every attestation failure with ``{"Error": message}``."""
    status_code, label = next(
        (entry for cls, entry in ERROR_REGISTRY.items() if isinstance(exc, cls)),
        (400, "attestation error"),
    )
    logger.warning(f"Rejected {request.url.path} ({label}): {exc.message}")
    return JSONResponse(status_code=status_code, content={"Error": exc.message})
