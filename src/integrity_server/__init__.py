"""Play Integrity and SafetyNet attestation verification server."""

__version__ = "1.0.0"
