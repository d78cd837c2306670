"""
Android Play Integrity validator for device attestation.

Decodes Play Integrity tokens either locally (JWE decryption followed by
JWS verification with the keys downloaded from the Play Console) or by
delegating to Google's decodeIntegrityToken API, then checks the verdicts
against the configured package, certificates and nonce ledger.
"""

import base64
import binascii
import json
import logging
import time
from enum import Enum
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import serialization
from jose import jwe, jws
from jose.exceptions import JOSEError
from pydantic import ValidationError

from ...config import DIGEST_POLICY_LEGACY_INVERTED, AttestationSettings
from ...schemas.attestation import (
    AccountDetails,
    AppIntegrity,
    DeviceIntegrity,
    PlayIntegrityClaims,
    RequestDetails,
)
from .authority import PlayIntegrityAuthorityClient
from .base import (
    AttestationValidator,
    DecodeError,
    Evaluation,
    InputError,
    NonceCheckMode,
)
from .nonce_ledger import NonceLedger
from .policy import PolicyGate

logger = logging.getLogger(__name__)

PLAY_RECOGNIZED = "PLAY_RECOGNIZED"
LICENSED = "LICENSED"
MEETS_VIRTUAL_INTEGRITY = "MEETS_VIRTUAL_INTEGRITY"
ACCEPTED_DEVICE_VERDICTS = (
    "MEETS_DEVICE_INTEGRITY",
    "MEETS_BASIC_INTEGRITY",
    "MEETS_STRONG_INTEGRITY",
)


class DecodeMode(str, Enum):
    """How a Play Integrity token is turned into claims."""
    LOCAL = "local"
    DELEGATED = "delegated"

    @classmethod
    def parse(cls, value: Optional[str]) -> "DecodeMode":
        aliases = {"server": cls.LOCAL, "google": cls.DELEGATED}
        if value is None:
            return cls.DELEGATED
        if value in aliases:
            return aliases[value]
        try:
            return cls(value)
        except ValueError:
            logger.warning(f"Unknown mode (Play Integrity): unknown mode '{value}' requested")
            raise InputError(f"Unknown mode {value}") from None


class PlayIntegrityValidator(AttestationValidator[PlayIntegrityClaims]):
    """
    Validator for Android Play Integrity tokens.

    Supports local decoding with the app's own key pair and delegated
    decoding through Google's API. Evaluation is identical for both.
    """

    VERIFICATION_ALGORITHMS = ["ES256"]

    def __init__(self, settings: AttestationSettings, ledger: NonceLedger, gate: PolicyGate,
                 authority: Optional[PlayIntegrityAuthorityClient] = None):
        super().__init__(settings, ledger, gate)
        self.authority = authority
        self._decryption_key: Optional[bytes] = None
        self._verification_key: Optional[bytes] = None
        if settings.base64_of_encoded_decryption_key:
            self._decryption_key = base64.b64decode(settings.base64_of_encoded_decryption_key)
        if settings.base64_of_encoded_verification_key:
            self._verification_key = self._load_verification_key(
                settings.base64_of_encoded_verification_key
            )

    def get_validator_type(self) -> str:
        return "playintegrity"

    @staticmethod
    def _load_verification_key(encoded: str) -> bytes:
        """Base64 DER public key from the Play Console, as PEM."""
        try:
            public_key = serialization.load_der_public_key(base64.b64decode(encoded))
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Play Integrity verification key is not a valid public key: {e}") from e
        return public_key.public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def decode(self, token: str, mode: DecodeMode = DecodeMode.DELEGATED) -> PlayIntegrityClaims:
        """
        Decode a Play Integrity token with the requested strategy.

        Raises:
            DecodeError: Local decryption, verification or parsing failed
            AuthorityError: The delegated call failed
        """
        if mode is DecodeMode.LOCAL:
            return self.decode_local(token)
        return self.decode_delegated(token)

    def decode_local(self, token: str) -> PlayIntegrityClaims:
        """Decrypt the JWE envelope, verify the inner JWS and parse the claims."""
        if self._decryption_key is None or self._verification_key is None:
            raise DecodeError("Local Play Integrity decoding is not configured")

        try:
            signed = jwe.decrypt(token, self._decryption_key)
        except (JOSEError, ValueError, TypeError, KeyError) as e:
            self.logger.warning(f"Play Integrity token decryption failed: {e}")
            raise DecodeError("Failed to decrypt Play Integrity token") from e
        if not signed:
            raise DecodeError("Failed to decrypt Play Integrity token")

        try:
            payload = jws.verify(signed, self._verification_key, self.VERIFICATION_ALGORITHMS)
        except (JOSEError, ValueError, TypeError, KeyError) as e:
            self.logger.warning(f"Play Integrity signature verification failed: {e}")
            raise DecodeError("Play Integrity token signature verification failed") from e

        try:
            document = json.loads(payload)
        except (ValueError, TypeError) as e:
            raise DecodeError("Play Integrity token payload is not JSON") from e
        return self._parse_claims(document)

    def decode_delegated(self, token: str) -> PlayIntegrityClaims:
        """Ask the remote authority to decode and verify the token."""
        if self.authority is None:
            raise DecodeError("Delegated Play Integrity decoding is not configured")
        return self._parse_claims(self.authority.decode_integrity_token(token))

    def _parse_claims(self, document: Any) -> PlayIntegrityClaims:
        if not isinstance(document, dict):
            raise DecodeError("Play Integrity token payload is not a JSON object")
        try:
            return PlayIntegrityClaims.model_validate(document)
        except ValidationError as e:
            self.logger.warning(f"Play Integrity payload rejected: {e.error_count()} invalid field(s)")
            raise DecodeError("Play Integrity token payload is malformed") from e

    def evaluate(self, claims: PlayIntegrityClaims, nonce_mode: NonceCheckMode,
                 now_ms: Optional[int] = None) -> Evaluation:
        evaluation = Evaluation(self.gate)
        if now_ms is None:
            now_ms = int(time.time() * 1000)

        if self._evaluate_request_details(evaluation, claims.request_details, nonce_mode, now_ms):
            return evaluation
        if self._evaluate_app_integrity(evaluation, claims.app_integrity):
            return evaluation
        if self._evaluate_device_integrity(evaluation, claims.device_integrity):
            return evaluation
        self._evaluate_account_details(evaluation, claims.account_details)
        return evaluation

    def _evaluate_request_details(self, evaluation: Evaluation,
                                  details: Optional[RequestDetails],
                                  nonce_mode: NonceCheckMode, now_ms: int) -> bool:
        if details is None:
            return evaluation.fail("requestDetails not found in received token")

        failed_before = len(evaluation.failures)
        if self._check_nonce(evaluation, details.nonce, nonce_mode):
            return True
        if details.request_package_name != self.settings.package_name:
            if evaluation.fail("Invalid package name"):
                return True
        if self._check_timestamp(evaluation, details.timestamp_millis, now_ms):
            return True

        if len(evaluation.failures) == failed_before:
            self.logger.info("Attestation: Attested Device has valid requestDetails")
        return False

    def _evaluate_app_integrity(self, evaluation: Evaluation,
                                app_integrity: Optional[AppIntegrity]) -> bool:
        if app_integrity is None:
            return evaluation.fail("appIntegrity not found in received token")

        failed_before = len(evaluation.failures)
        verdict = app_integrity.app_recognition_verdict
        if verdict != PLAY_RECOGNIZED:
            if evaluation.fail(f"appRecognitionVerdict is {verdict}."):
                return True
        if app_integrity.package_name != self.settings.package_name:
            if evaluation.fail("Invalid package name"):
                return True
        if not self._certificate_digests_acceptable(app_integrity.certificate_sha256_digest):
            if evaluation.fail("Invalid certificateSha256Digest"):
                return True

        if len(evaluation.failures) == failed_before:
            self.logger.info("Attestation: Attested Device has valid appIntegrity")
        return False

    def _certificate_digests_acceptable(self, claimed: Optional[tuple]) -> bool:
        """
        Apply the configured certificate digest policy.

        ``require_trusted`` wants at least one claimed digest in the trusted
        set. ``legacy_inverted`` rejects the token as soon as any claimed
        digest is trusted.
        """
        if not claimed:
            return False
        trusted = set(self.settings.valid_certificate_sha256_digest)
        if self.settings.certificate_digest_policy == DIGEST_POLICY_LEGACY_INVERTED:
            return not any(digest in trusted for digest in claimed)
        return any(digest in trusted for digest in claimed)

    def _evaluate_device_integrity(self, evaluation: Evaluation,
                                   device_integrity: Optional[DeviceIntegrity]) -> bool:
        if device_integrity is None:
            return evaluation.fail("deviceIntegrity not found in received token")

        verdicts = device_integrity.device_recognition_verdict
        # emulators are rejected even when a positive tag is present
        if MEETS_VIRTUAL_INTEGRITY in verdicts:
            return evaluation.fail("Emulator got attested")
        if any(verdict in verdicts for verdict in ACCEPTED_DEVICE_VERDICTS):
            self.logger.info(
                f"Attestation: Attested Device has valid deviceRecognitionVerdict: {list(verdicts)}"
            )
            return False
        return evaluation.fail(
            "Attested Device doesn't meet requirements. deviceRecognitionVerdict field is empty"
        )

    def _evaluate_account_details(self, evaluation: Evaluation,
                                  account_details: Optional[AccountDetails]) -> bool:
        if account_details is None:
            return evaluation.fail("accountDetails not found in received token")

        verdict = account_details.app_licensing_verdict
        if verdict != LICENSED:
            return evaluation.fail(f"appLicensingVerdict is {verdict}")
        self.logger.info("Attestation: Attested Device uses a licensed version of the Android App")
        return False

    def get_configuration_status(self) -> Dict[str, Any]:
        """
        Get detailed configuration status.

        Returns:
            Dictionary with configuration status details
        """
        return {
            "validator_type": self.get_validator_type(),
            "local_decode": self._decryption_key is not None and self._verification_key is not None,
            "delegated_decode": self.authority is not None,
            "certificate_digest_policy": self.settings.certificate_digest_policy,
        }
