"""
Configuration settings for the Play Integrity attestation server.
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from cryptography import x509
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

ERROR_LEVEL_ABORT = "error"
ERROR_LEVEL_LOG = "log"

DIGEST_POLICY_REQUIRE_TRUSTED = "require_trusted"
DIGEST_POLICY_LEGACY_INVERTED = "legacy_inverted"


class AttestationSettings(BaseSettings):
    """
    Process-wide attestation policy.

    Loaded once at startup from environment variables, with the certificate
    digests and error level optionally coming from a JSON policy file.
    """

    model_config = SettingsConfigDict(env_file=None, case_sensitive=False, populate_by_name=True)

    # Trusted application
    package_name: str = ""
    valid_certificate_sha256_digest: List[str] = Field(default_factory=list)

    # Local decode key material (base64)
    base64_of_encoded_decryption_key: str = ""
    base64_of_encoded_verification_key: str = ""

    # Delegated decode service account (JSON text)
    google_application_credentials: str = ""

    # Policy
    error_level: str = ""
    certificate_digest_policy: str = DIGEST_POLICY_REQUIRE_TRUSTED
    safetynet_verify_signature: bool = True
    # PEM bundle of roots the SafetyNet signing chain must lead to
    safetynet_root_certificates: str = ""
    nonce_length: int = 50
    max_token_age_ms: int = 10000

    # Transport
    api_timeout: int = Field(default=30, validation_alias="ATTESTATION_API_TIMEOUT")
    port: int = 8080

    @property
    def service_account(self) -> Dict[str, Any]:
        """Parsed service account credentials."""
        return json.loads(self.google_application_credentials)

    def validate_config(self) -> list[str]:
        """
        Validate configuration and return list of issues.

        Returns:
            List of configuration issues (empty if valid)
        """
        issues = []

        if not self.package_name:
            issues.append("Environment variable not set: PACKAGE_NAME")
        if not self.google_application_credentials:
            issues.append("Environment variable not set: GOOGLE_APPLICATION_CREDENTIALS")
        else:
            try:
                credentials = self.service_account
            except ValueError:
                issues.append("GOOGLE_APPLICATION_CREDENTIALS is not valid JSON")
            else:
                if not isinstance(credentials, dict) or not all(
                    credentials.get(key) for key in ("client_email", "private_key")
                ):
                    issues.append("GOOGLE_APPLICATION_CREDENTIALS lacks client_email or private_key")
        if not self.base64_of_encoded_decryption_key:
            issues.append("Environment variable not set: BASE64_OF_ENCODED_DECRYPTION_KEY")
        if not self.base64_of_encoded_verification_key:
            issues.append("Environment variable not set: BASE64_OF_ENCODED_VERIFICATION_KEY")

        if not self.valid_certificate_sha256_digest:
            issues.append("Configuration variable not set: validCertificateSha256Digest")
        elif not all(isinstance(d, str) and d for d in self.valid_certificate_sha256_digest):
            issues.append(
                "Configuration variable validCertificateSha256Digest has to be an array of strings"
            )
        if not self.error_level:
            issues.append("Configuration variable not set: errorLevel")
        if self.certificate_digest_policy not in (
            DIGEST_POLICY_REQUIRE_TRUSTED,
            DIGEST_POLICY_LEGACY_INVERTED,
        ):
            issues.append(f"Unknown certificate digest policy: {self.certificate_digest_policy}")
        if self.safetynet_verify_signature:
            if not self.safetynet_root_certificates:
                issues.append("Environment variable not set: SAFETYNET_ROOT_CERTIFICATES")
            else:
                try:
                    x509.load_pem_x509_certificates(self.safetynet_root_certificates.encode("utf-8"))
                except ValueError:
                    issues.append("SAFETYNET_ROOT_CERTIFICATES holds no valid PEM certificate")

        return issues

    def log_config_summary(self):
        """Log configuration summary for debugging."""
        logger.info(f"Attestation config - Package: {self.package_name}, "
                    f"Trusted digests: {len(self.valid_certificate_sha256_digest)}, "
                    f"Error level: {self.error_level}, "
                    f"Digest policy: {self.certificate_digest_policy}, "
                    f"SafetyNet signature check: {self.safetynet_verify_signature}")

    @classmethod
    def from_policy_file(cls, path: Optional[str] = None, **overrides) -> "AttestationSettings":
        """
        Build settings from the environment plus the JSON policy file.

        The policy file uses the keys ``validCertificateSha256Digest`` and
        ``errorLevel``. A missing file is not an error here; missing values
        are reported by ``validate_config``.
        """
        policy_path = Path(path or os.getenv("ATTESTATION_CONFIG_FILE", "config.json"))
        values: Dict[str, Any] = {}
        if policy_path.is_file():
            with policy_path.open(encoding="utf-8") as fh:
                policy = json.load(fh)
            if "validCertificateSha256Digest" in policy:
                values["valid_certificate_sha256_digest"] = policy["validCertificateSha256Digest"]
            if "errorLevel" in policy:
                values["error_level"] = policy["errorLevel"]
            logger.info(f"Loaded attestation policy file {policy_path}")
        values.update(overrides)
        return cls(**values)

    @classmethod
    def load_and_validate(cls, path: Optional[str] = None) -> "AttestationSettings":
        """Load settings and fail fast if anything required is missing."""
        try:
            instance = cls.from_policy_file(path)
        except (ValueError, OSError) as e:
            logger.error(f"Failed to load attestation configuration: {e}")
            sys.exit(1)

        issues = instance.validate_config()
        if issues:
            for issue in issues:
                logger.error(issue)
            sys.exit(1)

        instance.log_config_summary()
        return instance
