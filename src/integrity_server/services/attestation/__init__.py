"""
Device Attestation Service Package

Verifies Android attestation tokens so the backend can trust that a request
comes from an unmodified, licensed app on a genuine device.

Supported token formats:
- Play Integrity (local JWE/JWS decode or delegated to Google's API)
- SafetyNet (legacy JWS)

Features:
- Single-use nonce ledger with replay detection
- Abort-or-log policy gate per failed check
- Audit logging of every decoded token
"""

from .base import (
    AttestationError,
    AttestationResult,
    AttestationResultStatus,
    AttestationValidator,
    AuthorityError,
    DecodeError,
    InputError,
    NonceCheckMode,
    PolicyViolation,
)
from .nonce_ledger import NonceLedger, NonceStatus
from .policy import GateDecision, PolicyGate
from .authority import PlayIntegrityAuthorityClient
from .android_playintegrity import DecodeMode, PlayIntegrityValidator
from .android_safetynet import SafetyNetValidator
from .service import AttestationService

__all__ = [
    # Core interfaces
    "AttestationError",
    "AttestationResult",
    "AttestationResultStatus",
    "AttestationValidator",
    "AttestationService",
    "AuthorityError",
    "DecodeError",
    "InputError",
    "PolicyViolation",
    "NonceCheckMode",
    "DecodeMode",

    # Shared state
    "NonceLedger",
    "NonceStatus",
    "PolicyGate",
    "GateDecision",

    # Token validators
    "PlayIntegrityAuthorityClient",
    "PlayIntegrityValidator",
    "SafetyNetValidator",
]
