"""
FastAPI dependencies for the attestation server.
"""

from fastapi import Request

from .services.attestation import AttestationService


def get_attestation_service(request: Request) -> AttestationService:
    """The service instance owned by the running application."""
    return request.app.state.attestation_service
