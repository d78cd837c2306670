"""
Base classes and common functionality for attestation validators.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel

from .nonce_ledger import NonceLedger, NonceStatus, decode_token_nonce
from .policy import GateDecision, PolicyGate

logger = logging.getLogger(__name__)

ClaimsT = TypeVar("ClaimsT", bound=BaseModel)


class AttestationError(Exception):
    """Base error carrying a message that is safe to show to the client."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InputError(AttestationError):
    """The request itself is unusable (no token, unknown mode)."""


class DecodeError(AttestationError):
    """The token could not be decrypted, verified or parsed."""


class AuthorityError(AttestationError):
    """The remote attestation authority could not decode the token."""


class PolicyViolation(AttestationError):
    """One or more attestation checks failed."""


class NonceCheckMode(str, Enum):
    """Where the nonce embedded in the token was generated."""
    SERVER = "server"
    DEVICE = "device"

    @classmethod
    def parse(cls, value: Optional[str]) -> "NonceCheckMode":
        # anything but "server" skips the ledger
        return cls.SERVER if (value or cls.SERVER.value) == cls.SERVER.value else cls.DEVICE


class AttestationResultStatus(Enum):
    """Attestation validation result status."""
    VALID = "valid"
    INVALID = "invalid"


@dataclass
class AttestationResult:
    """Outcome of evaluating one decoded token."""

    status: AttestationResultStatus
    validator_type: str
    request_id: int
    claims: Optional[BaseModel] = None
    failures: List[str] = field(default_factory=list)
    aborted: bool = False
    validated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.validated_at is None:
            self.validated_at = datetime.now(timezone.utc)

    @property
    def is_valid(self) -> bool:
        """Check if attestation is valid."""
        return self.status == AttestationResultStatus.VALID

    @property
    def error_message(self) -> Optional[str]:
        """Client-facing reason for an invalid result."""
        if self.is_valid:
            return None
        if self.aborted:
            return self.failures[-1]
        return "Attestation checks failed: " + "; ".join(self.failures)


class Evaluation:
    """
    Running state of one verdict evaluation.

    Every failed check goes through ``fail``, which records the message and
    asks the policy gate whether evaluation may go on.
    """

    def __init__(self, gate: PolicyGate):
        self.gate = gate
        self.failures: List[str] = []
        self.aborted = False

    def fail(self, message: str) -> bool:
        """Record a failed check. Returns True when evaluation must stop."""
        self.failures.append(message)
        if self.gate.gate(message) is GateDecision.ABORT:
            self.aborted = True
        return self.aborted

    @property
    def passed(self) -> bool:
        return not self.failures


class AttestationValidator(ABC, Generic[ClaimsT]):
    """
    Abstract base class for token validators.

    Subclasses decode a token into claims and evaluate the claims against
    the configured policy. The nonce ledger and policy gate are shared with
    the owning service.
    """

    def __init__(self, settings, ledger: NonceLedger, gate: PolicyGate):
        self.settings = settings
        self.ledger = ledger
        self.gate = gate
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    def get_validator_type(self) -> str:
        """Get the validator type identifier."""
        pass

    @abstractmethod
    def decode(self, token: str, **options) -> ClaimsT:
        """
        Turn an opaque token into claims.

        Raises:
            DecodeError: The token is malformed or unverifiable
            AuthorityError: Delegated decoding failed
        """
        pass

    def validate(self, token: str, nonce_mode: NonceCheckMode,
                 next_request_id: Callable[[], int], **decode_options) -> AttestationResult:
        """
        Decode a token and evaluate its claims.

        Args:
            token: The attestation token to validate
            nonce_mode: Whether the nonce must match one issued by this server
            next_request_id: Source of the audit counter, drawn once per decoded token
            **decode_options: Passed through to ``decode``

        Returns:
            AttestationResult with validation status and claims
        """
        self._log_validation_attempt(self._calculate_token_hash(token))
        claims = self.decode(token, **decode_options)
        request_id = next_request_id()
        self._log_decoded(request_id, claims.to_payload())
        evaluation = self.evaluate(claims, nonce_mode)
        return self.build_result(claims, evaluation, request_id)

    @abstractmethod
    def evaluate(self, claims: ClaimsT, nonce_mode: NonceCheckMode,
                 now_ms: Optional[int] = None) -> Evaluation:
        """
        Apply the attestation policy to decoded claims.

        Args:
            claims: Decoded token claims
            nonce_mode: Whether the nonce must match one issued by this server
            now_ms: Evaluation time in epoch milliseconds (defaults to now)

        Returns:
            Evaluation holding the failed checks and abort flag
        """
        pass

    def build_result(self, claims: ClaimsT, evaluation: Evaluation,
                     request_id: int) -> AttestationResult:
        """Turn a finished evaluation into a result and log the summary."""
        status = (AttestationResultStatus.VALID if evaluation.passed
                  else AttestationResultStatus.INVALID)
        result = AttestationResult(
            status=status,
            validator_type=self.get_validator_type(),
            request_id=request_id,
            claims=claims,
            failures=list(evaluation.failures),
            aborted=evaluation.aborted,
        )
        self._log_validation_result(result)
        return result

    def _check_nonce(self, evaluation: Evaluation, encoded_nonce: Optional[str],
                     nonce_mode: NonceCheckMode) -> bool:
        """
        Consume the token nonce from the ledger in server mode.

        Returns True when evaluation must stop.
        """
        if nonce_mode is not NonceCheckMode.SERVER:
            return False
        nonce = decode_token_nonce(encoded_nonce)
        status = self.ledger.check_and_consume(nonce) if nonce else NonceStatus.UNKNOWN
        if status is NonceStatus.ACCEPTED:
            return False
        if status is NonceStatus.UNKNOWN and nonce is None:
            self.logger.warning(f"Unknown Nonce: token nonce {encoded_nonce!r} is not decodable")
        return evaluation.fail("Invalid Nonce")

    def _check_timestamp(self, evaluation: Evaluation, timestamp_ms: Optional[int],
                         now_ms: int) -> bool:
        """Freshness check. Returns True when evaluation must stop."""
        if timestamp_ms is None:
            return evaluation.fail("Request timestamp missing")
        if now_ms - timestamp_ms > self.settings.max_token_age_ms:
            return evaluation.fail("Request too old")
        return False

    def _calculate_token_hash(self, token: str) -> str:
        """Calculate SHA-256 hash of token for logging."""
        return hashlib.sha256(token.encode('utf-8')).hexdigest()

    def _log_validation_attempt(self, token_hash: str):
        """Log validation attempt for audit purposes."""
        self.logger.info(
            f"Validation attempt - Validator: {self.get_validator_type()}, "
            f"Token hash: {token_hash[:8]}..."
        )

    def _log_decoded(self, request_id: int, payload: Dict[str, Any]):
        """Audit entry for a successfully decoded token."""
        self.logger.info(
            f"({self.get_validator_type()}) New Client Request ({request_id}) processed: {payload}"
        )

    def _log_validation_result(self, result: AttestationResult):
        """Log validation result for audit purposes."""
        if result.is_valid:
            self.logger.info(
                f"Validation result - Status: {result.status.value}, "
                f"Validator: {result.validator_type}, "
                f"Request: {result.request_id}"
            )
        else:
            self.logger.warning(
                f"Validation result - Status: {result.status.value}, "
                f"Validator: {result.validator_type}, "
                f"Request: {result.request_id}, "
                f"Aborted: {result.aborted}, "
                f"Failures: {', '.join(result.failures)}"
            )
