"""
Abort-or-continue gate applied to every failed attestation check.
"""

import logging
from enum import Enum

from ...config import ERROR_LEVEL_ABORT, ERROR_LEVEL_LOG

logger = logging.getLogger(__name__)


class GateDecision(Enum):
    CONTINUE = "continue"
    ABORT = "abort"


class PolicyGate:
    """
    Decides what happens after a failed check, based on the error level.

    ``error`` stops evaluation at the first failure, ``log`` records the
    failure and lets the remaining checks run. Any other level stops.
    """

    def __init__(self, error_level: str):
        self.error_level = error_level
        if error_level not in (ERROR_LEVEL_ABORT, ERROR_LEVEL_LOG):
            logger.warning(f"Unknown error level '{error_level}', failed checks will abort")

    def gate(self, message: str) -> GateDecision:
        logger.warning(f"Parsing: {message}")
        if self.error_level == ERROR_LEVEL_LOG:
            return GateDecision.CONTINUE
        return GateDecision.ABORT
