"""
Android SafetyNet validator for device attestation.

Validates SafetyNet attestation tokens (compact JWS) to ensure requests are
coming from legitimate, unmodified Android devices. This is the legacy
validator for older Android versions.
"""

import base64
import binascii
import logging
import time
from typing import Any, Dict, List, Optional

import jwt
from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.x509.verification import PolicyBuilder, Store, VerificationError
from pydantic import ValidationError

from ...config import AttestationSettings
from ...schemas.attestation import SafetyNetClaims
from .base import AttestationValidator, DecodeError, Evaluation, NonceCheckMode
from .nonce_ledger import NonceLedger
from .policy import PolicyGate

logger = logging.getLogger(__name__)


class SafetyNetValidator(AttestationValidator[SafetyNetClaims]):
    """
    Validator for Android SafetyNet attestation tokens.

    The ``x5c`` header must chain to one of the configured root certificates
    and its leaf must be issued to the attestation host. The JWS signature is
    then checked against that leaf.
    """

    ATTESTATION_HOSTNAME = "attest.android.com"
    SIGNATURE_ALGORITHMS = ["RS256", "ES256"]

    def __init__(self, settings: AttestationSettings, ledger: NonceLedger, gate: PolicyGate):
        super().__init__(settings, ledger, gate)
        self._root_store: Optional[Store] = None
        if settings.safetynet_root_certificates:
            try:
                roots = x509.load_pem_x509_certificates(
                    settings.safetynet_root_certificates.encode("utf-8")
                )
            except ValueError as e:
                raise ValueError(f"SafetyNet root certificates are not valid PEM: {e}") from e
            self._root_store = Store(roots)

    def get_validator_type(self) -> str:
        return "safetynet"

    def decode(self, token: str) -> SafetyNetClaims:
        """
        Decode a SafetyNet JWS into claims.

        Raises:
            DecodeError: The token is malformed or its signature does not verify
        """
        if self.settings.safetynet_verify_signature:
            payload = self._verify_jws_signature(token)
        else:
            try:
                payload = jwt.decode(token, options={"verify_signature": False})
            except jwt.PyJWTError as e:
                self.logger.warning(f"SafetyNet token is malformed: {e}")
                raise DecodeError("SafetyNet token is malformed") from e

        try:
            return SafetyNetClaims.model_validate(payload)
        except ValidationError as e:
            self.logger.warning(f"SafetyNet payload rejected: {e.error_count()} invalid field(s)")
            raise DecodeError("SafetyNet token payload is malformed") from e

    def _verify_jws_signature(self, token: str) -> Dict[str, Any]:
        """
        Verify SafetyNet JWS signature.

        Args:
            token: The SafetyNet attestation token (JWS)

        Returns:
            Verified payload
        """
        if self._root_store is None:
            raise DecodeError("SafetyNet signature verification is not configured")

        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError as e:
            self.logger.warning(f"SafetyNet token is malformed: {e}")
            raise DecodeError("SafetyNet token is malformed") from e

        chain = self._certificate_chain(header)
        certificate = chain[0]
        common_names = certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        if not common_names or common_names[0].value != self.ATTESTATION_HOSTNAME:
            self.logger.warning("SafetyNet signing certificate is not issued to the attestation host")
            raise DecodeError("SafetyNet token signature verification failed")
        self._verify_chain(certificate, chain[1:])

        try:
            return jwt.decode(
                token,
                certificate.public_key(),
                algorithms=self.SIGNATURE_ALGORITHMS,
                options={"verify_aud": False},
            )
        except jwt.PyJWTError as e:
            self.logger.warning(f"SafetyNet token is invalid: {e}")
            raise DecodeError("SafetyNet token signature verification failed") from e

    def _certificate_chain(self, header: Dict[str, Any]) -> List[x509.Certificate]:
        """The ``x5c`` certificates, leaf first."""
        chain = header.get("x5c")
        if not isinstance(chain, list) or not chain:
            raise DecodeError("SafetyNet token carries no signing certificate")
        try:
            return [x509.load_der_x509_certificate(base64.b64decode(entry)) for entry in chain]
        except (binascii.Error, ValueError, TypeError) as e:
            raise DecodeError("SafetyNet signing certificate is malformed") from e

    def _verify_chain(self, leaf: x509.Certificate, intermediates: List[x509.Certificate]):
        """Path-validate the leaf for the attestation host up to a configured root."""
        verifier = (
            PolicyBuilder()
            .store(self._root_store)
            .build_server_verifier(x509.DNSName(self.ATTESTATION_HOSTNAME))
        )
        try:
            verifier.verify(leaf, intermediates)
        except VerificationError as e:
            self.logger.warning(f"SafetyNet certificate chain rejected: {e}")
            raise DecodeError("SafetyNet signing certificate is not trusted") from e

    def evaluate(self, claims: SafetyNetClaims, nonce_mode: NonceCheckMode,
                 now_ms: Optional[int] = None) -> Evaluation:
        evaluation = Evaluation(self.gate)
        if now_ms is None:
            now_ms = int(time.time() * 1000)

        if self._check_nonce(evaluation, claims.nonce, nonce_mode):
            return evaluation
        if self._check_timestamp(evaluation, claims.timestamp_ms, now_ms):
            return evaluation
        if claims.apk_package_name != self.settings.package_name:
            if evaluation.fail("Invalid package name"):
                return evaluation
        if not claims.basic_integrity:
            if evaluation.fail("Device doesn't meet basic integrity"):
                return evaluation

        self.logger.info(f"Attestation: Using {claims.evaluation_type} to evaluate device integrity.")

        if not claims.cts_profile_match:
            self.logger.info("Attestation: (SafetyNet) Evaluation type is BASIC, skipping CTS profile check")
        elif not self._certificate_trusted(claims.apk_certificate_digest_sha256):
            if evaluation.fail("Invalid apk certificate digest"):
                return evaluation

        if evaluation.passed:
            self.logger.info("Attestation: SafetyNet Checks passed")
        return evaluation

    def _certificate_trusted(self, claimed: Optional[tuple]) -> bool:
        if not claimed:
            return False
        trusted = set(self.settings.valid_certificate_sha256_digest)
        return any(digest in trusted for digest in claimed)
