"""
Attestation router.

Nonce issuance and token checks for Play Integrity and SafetyNet.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from ..dependencies import get_attestation_service
from ..schemas.attestation import AttestationErrorSchema
from ..services.attestation import AttestationResult, AttestationService, PolicyViolation

router = APIRouter(prefix="/api", tags=["Attestation"])

ERROR_RESPONSES = {400: {"model": AttestationErrorSchema}}


def _claims_or_raise(result: AttestationResult) -> Dict[str, Any]:
    if not result.is_valid:
        raise PolicyViolation(result.error_message)
    return result.claims.to_payload()


@router.get("/playintegrity/nonce", response_class=PlainTextResponse)
def playintegrity_nonce(service: AttestationService = Depends(get_attestation_service)):
    """Issue a nonce, base64url encoded for the Play Integrity request."""
    return service.issue_play_integrity_nonce()


@router.get("/playintegrity/check", responses=ERROR_RESPONSES)
def playintegrity_check(
    token: Optional[str] = Query(None, description="Integrity token received by the client"),
    mode: Optional[str] = Query(None, description="'local' (alias 'server') or 'delegated' (alias 'google', default)"),
    nonce: Optional[str] = Query(None, description="'server' (default) or 'device' to skip the nonce ledger"),
    service: AttestationService = Depends(get_attestation_service),
):
    """
    Decode a Play Integrity token and check its verdicts.

    Returns the decoded claims when every check passes.
    """
    return _claims_or_raise(service.check_play_integrity(token, mode, nonce))


@router.get("/safetynet/nonce", response_class=PlainTextResponse)
def safetynet_nonce(service: AttestationService = Depends(get_attestation_service)):
    """Issue a raw nonce for a SafetyNet attestation request."""
    return service.issue_safetynet_nonce()


@router.get("/safetynet/check", responses=ERROR_RESPONSES)
def safetynet_check(
    token: Optional[str] = Query(None, description="SafetyNet JWS received by the client"),
    nonce: Optional[str] = Query(None, description="'server' (default) or 'device' to skip the nonce ledger"),
    service: AttestationService = Depends(get_attestation_service),
):
    """Decode a SafetyNet token and check its verdicts."""
    return _claims_or_raise(service.check_safetynet(token, nonce))
