"""
Pydantic schemas for decoded attestation claims.

Play Integrity and SafetyNet payloads are validated once when a token is
decoded. Field names follow the authority's camelCase JSON; unknown fields
are kept so the caller gets the full payload back.
"""

from typing import Any, Dict, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class _ClaimModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    def to_payload(self) -> Dict[str, Any]:
        """Claims as the JSON object the authority produced."""
        return self.model_dump(by_alias=True, exclude_unset=True, mode="json")


class RequestDetails(_ClaimModel):
    """Details of the attestation request as seen by the authority."""

    request_package_name: Optional[str] = Field(None, alias="requestPackageName")
    nonce: Optional[str] = Field(None, alias="nonce")
    timestamp_millis: Optional[int] = Field(
        None,
        alias="timestampMillis",
        validation_alias=AliasChoices("timestampMillis", "timestampMs"),
    )


class AppIntegrity(_ClaimModel):
    """App recognition verdict and signing certificate digests."""

    app_recognition_verdict: Optional[str] = Field(None, alias="appRecognitionVerdict")
    package_name: Optional[str] = Field(None, alias="packageName")
    certificate_sha256_digest: Optional[Tuple[str, ...]] = Field(
        None, alias="certificateSha256Digest"
    )
    version_code: Optional[str] = Field(None, alias="versionCode")


class DeviceIntegrity(_ClaimModel):
    """Device recognition tags, zero or more."""

    device_recognition_verdict: Tuple[str, ...] = Field((), alias="deviceRecognitionVerdict")


class AccountDetails(_ClaimModel):
    """Licensing verdict for the requesting account."""

    app_licensing_verdict: Optional[str] = Field(None, alias="appLicensingVerdict")


class PlayIntegrityClaims(_ClaimModel):
    """Decoded Play Integrity token payload."""

    request_details: Optional[RequestDetails] = Field(None, alias="requestDetails")
    app_integrity: Optional[AppIntegrity] = Field(None, alias="appIntegrity")
    device_integrity: Optional[DeviceIntegrity] = Field(None, alias="deviceIntegrity")
    account_details: Optional[AccountDetails] = Field(None, alias="accountDetails")


class SafetyNetClaims(_ClaimModel):
    """Decoded SafetyNet attestation payload."""

    nonce: Optional[str] = Field(None, alias="nonce")
    timestamp_ms: Optional[int] = Field(None, alias="timestampMs")
    apk_package_name: Optional[str] = Field(None, alias="apkPackageName")
    apk_certificate_digest_sha256: Optional[Tuple[str, ...]] = Field(
        None, alias="apkCertificateDigestSha256"
    )
    apk_digest_sha256: Optional[str] = Field(None, alias="apkDigestSha256")
    basic_integrity: Optional[bool] = Field(None, alias="basicIntegrity")
    cts_profile_match: Optional[bool] = Field(None, alias="ctsProfileMatch")
    evaluation_type: Optional[str] = Field(None, alias="evaluationType")
    advice: Optional[str] = Field(None, alias="advice")


class AttestationErrorSchema(BaseModel):
    """Body of a 400 response."""

    Error: str = Field(..., description="Reason the attestation was rejected")
