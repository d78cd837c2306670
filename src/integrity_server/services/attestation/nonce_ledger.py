"""
In-memory ledger of issued attestation nonces.
"""

import base64
import binascii
import logging
import secrets
import string
import threading
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

NONCE_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
DEFAULT_NONCE_LENGTH = 50


class NonceStatus(Enum):
    """Outcome of presenting a nonce to the ledger."""
    ACCEPTED = "accepted"
    REPLAYED = "replayed"
    UNKNOWN = "unknown"


class NonceLedger:
    """
    Thread-safe record of active and retired nonces.

    A nonce is active from issuance until its first successful check, then
    retired for the lifetime of the process. Retired nonces never become
    active again.
    """

    def __init__(self):
        self._active: set[str] = set()
        self._retired: set[str] = set()
        self._lock = threading.Lock()
        self._stats = {
            "issued": 0,
            "accepted": 0,
            "replayed": 0,
            "unknown": 0
        }

    def issue(self, length: int = DEFAULT_NONCE_LENGTH) -> str:
        """
        Generate and register a new nonce.

        Args:
            length: Number of characters, drawn from ``[A-Za-z0-9]``

        Returns:
            The nonce, now active
        """
        if length <= 0:
            raise ValueError("Nonce length must be positive")
        nonce = "".join(secrets.choice(NONCE_ALPHABET) for _ in range(length))
        with self._lock:
            self._active.add(nonce)
            self._stats["issued"] += 1
        logger.info(f"Generated Nonce: {nonce[:5]}...{nonce[-5:]}")
        return nonce

    def check_and_consume(self, nonce: str) -> NonceStatus:
        """
        Consume an active nonce.

        Exactly one caller can be accepted for a given nonce; later callers
        see ``REPLAYED``. Nonces never issued are ``UNKNOWN``.
        """
        with self._lock:
            if nonce in self._active:
                self._active.discard(nonce)
                self._retired.add(nonce)
                status = NonceStatus.ACCEPTED
            elif nonce in self._retired:
                status = NonceStatus.REPLAYED
            else:
                status = NonceStatus.UNKNOWN
            self._stats[status.value] += 1

        if status is NonceStatus.ACCEPTED:
            logger.info(f"Correct Nonce: correct nonce '{nonce}' received")
        elif status is NonceStatus.REPLAYED:
            logger.warning(f"Reused Nonce: duplicated use of nonce '{nonce}', potential replay attack")
        else:
            logger.warning(f"Unknown Nonce: nonce '{nonce}' was not previously generated on the server")
        return status

    def get_stats(self) -> Dict[str, Any]:
        """
        Get ledger statistics.

        Returns:
            Dictionary with set sizes and outcome counters
        """
        with self._lock:
            return {
                "active": len(self._active),
                "retired": len(self._retired),
                **self._stats
            }


def encode_nonce_for_client(nonce: str) -> str:
    """URL-safe base64 without padding, as the Play Integrity client expects."""
    return base64.urlsafe_b64encode(nonce.encode("utf-8")).decode("ascii").rstrip("=")


def decode_token_nonce(value: Optional[str]) -> Optional[str]:
    """
    Recover the issued nonce from the base64 value carried in a token.

    Accepts URL-safe and standard alphabets with or without padding.
    Returns None when the value is missing or not decodable text.
    """
    if not value:
        return None
    normalized = value.strip().replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    try:
        raw = base64.b64decode(normalized, validate=True)
        return raw.decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
