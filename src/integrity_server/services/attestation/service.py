"""
Attestation service owning the shared verification state.

Holds the nonce ledger, the audit request counter and the two validators,
and is the single entry point used by the HTTP routers.
"""

import logging
import threading
from typing import Optional

from ...config import AttestationSettings
from .android_playintegrity import DecodeMode, PlayIntegrityValidator
from .android_safetynet import SafetyNetValidator
from .authority import PlayIntegrityAuthorityClient
from .base import AttestationResult, InputError, NonceCheckMode
from .nonce_ledger import NonceLedger, encode_nonce_for_client
from .policy import PolicyGate

logger = logging.getLogger(__name__)


class RequestCounter:
    """Monotonic counter correlating decode log entries."""

    def __init__(self, start: int = 0):
        self._value = start
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            value = self._value
            self._value += 1
            return value


class AttestationService:
    """
    Issues nonces and checks Play Integrity and SafetyNet tokens.

    One instance per application; tests build isolated instances.
    """

    def __init__(self, settings: AttestationSettings,
                 ledger: Optional[NonceLedger] = None,
                 authority: Optional[PlayIntegrityAuthorityClient] = None):
        """
        Initialize attestation service.

        Args:
            settings: Attestation configuration
            ledger: Nonce ledger, a fresh one when omitted
            authority: Delegated decoder, built from the service account when omitted
        """
        self.settings = settings
        self.ledger = ledger or NonceLedger()
        self.gate = PolicyGate(settings.error_level)
        self.counter = RequestCounter()

        if authority is None and settings.google_application_credentials:
            authority = PlayIntegrityAuthorityClient(
                settings.service_account,
                settings.package_name,
                timeout=settings.api_timeout,
            )

        self.play_integrity = PlayIntegrityValidator(settings, self.ledger, self.gate, authority)
        self.safetynet = SafetyNetValidator(settings, self.ledger, self.gate)

        logger.info(f"Attestation service initialized - "
                    f"Error level: {settings.error_level}, "
                    f"Delegated decode: {authority is not None}")

    def issue_play_integrity_nonce(self) -> str:
        """Issue a nonce, encoded for the Play Integrity client library."""
        nonce = self.ledger.issue(self.settings.nonce_length)
        logger.info("Play Integrity Generated Nonce")
        return encode_nonce_for_client(nonce)

    def issue_safetynet_nonce(self) -> str:
        nonce = self.ledger.issue(self.settings.nonce_length)
        logger.info("SafetyNet Generated Nonce")
        return nonce

    def check_play_integrity(self, token: Optional[str], mode: Optional[str] = None,
                             nonce: Optional[str] = None) -> AttestationResult:
        """
        Decode and evaluate a Play Integrity token.

        Args:
            token: The integrity token from the client
            mode: ``local``/``server`` or ``delegated``/``google`` (default)
            nonce: ``server`` (default) or ``device``

        Raises:
            InputError: No token or an unknown decode mode
            DecodeError: The token could not be decoded
            AuthorityError: The remote authority failed
        """
        token = self._require_token(token)
        decode_mode = DecodeMode.parse(mode)
        return self.play_integrity.validate(
            token, NonceCheckMode.parse(nonce), self.counter.next, mode=decode_mode
        )

    def check_safetynet(self, token: Optional[str], nonce: Optional[str] = None) -> AttestationResult:
        """Decode and evaluate a SafetyNet token."""
        token = self._require_token(token)
        return self.safetynet.validate(token, NonceCheckMode.parse(nonce), self.counter.next)

    @staticmethod
    def _require_token(token: Optional[str]) -> str:
        if not token:
            raise InputError("No token was provided")
        return token
