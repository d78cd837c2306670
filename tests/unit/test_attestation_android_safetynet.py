"""
Unit tests for Android SafetyNet validator.
"""

import base64
import json
import logging

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from factories import (
    PACKAGE_NAME,
    UNTRUSTED_DIGEST,
    build_certificate,
    now_ms,
    safetynet_nonce,
    safetynet_payload,
)
from integrity_server.schemas.attestation import SafetyNetClaims
from integrity_server.services.attestation.android_safetynet import SafetyNetValidator
from integrity_server.services.attestation.base import (
    AttestationResultStatus,
    DecodeError,
    NonceCheckMode,
)
from integrity_server.services.attestation.service import RequestCounter


class TestSafetyNetDecoding:
    """Test cases for SafetyNet JWS decoding."""

    @pytest.fixture
    def validator(self, settings, ledger, abort_gate):
        return SafetyNetValidator(settings, ledger, abort_gate)

    def test_get_validator_type(self, validator):
        """Test validator type identification."""
        assert validator.get_validator_type() == "safetynet"

    def test_decode_verified_token(self, validator, make_safetynet_token):
        token = make_safetynet_token(safetynet_payload(safetynet_nonce("abc")))

        claims = validator.decode(token)

        assert claims.apk_package_name == PACKAGE_NAME
        assert claims.basic_integrity is True
        assert claims.evaluation_type == "BASIC,HARDWARE_BACKED"

    def test_tampered_signature_rejected(self, validator, make_safetynet_token):
        token = make_safetynet_token(safetynet_payload(safetynet_nonce("abc")))
        header, payload, signature = token.split(".")
        forged = base64.urlsafe_b64encode(json.dumps(
            safetynet_payload(safetynet_nonce("abc"), package_name="com.evil.clone")
        ).encode("utf-8")).decode("ascii").rstrip("=")

        with pytest.raises(DecodeError, match="signature verification failed"):
            validator.decode(".".join([header, forged, signature]))

    def test_certificate_key_mismatch_rejected(self, validator, make_safetynet_token,
                                               safetynet_certificate):
        other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        token = make_safetynet_token(
            safetynet_payload(safetynet_nonce("abc")),
            key=other_key, certificate=safetynet_certificate,
        )

        with pytest.raises(DecodeError, match="signature verification failed"):
            validator.decode(token)

    def test_wrong_certificate_host_rejected(self, validator, make_safetynet_token):
        token = make_safetynet_token(
            safetynet_payload(safetynet_nonce("abc")), common_name="attest.example.com"
        )

        with pytest.raises(DecodeError, match="signature verification failed"):
            validator.decode(token)

    def test_self_signed_attestation_host_certificate_rejected(
            self, validator, make_safetynet_token, self_signed_safetynet_certificate):
        """A certificate naming the attestation host is not enough on its own."""
        token = make_safetynet_token(
            safetynet_payload(safetynet_nonce("abc")),
            certificate=self_signed_safetynet_certificate,
        )

        with pytest.raises(DecodeError, match="certificate is not trusted"):
            validator.decode(token)

    def test_certificate_from_other_root_rejected(self, validator, make_safetynet_token, safetynet_key):
        other_root_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        other_root = build_certificate(other_root_key, "Other Root", ca=True)
        leaf = build_certificate(safetynet_key, "attest.android.com", other_root_key, other_root)
        token = make_safetynet_token(
            safetynet_payload(safetynet_nonce("abc")), certificate=leaf, extra_chain=(other_root,)
        )

        with pytest.raises(DecodeError, match="certificate is not trusted"):
            validator.decode(token)

    def test_chain_through_intermediate(self, validator, make_safetynet_token, safetynet_key,
                                        safetynet_root_key, safetynet_root):
        intermediate_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        intermediate = build_certificate(
            intermediate_key, "Test Attestation CA", safetynet_root_key, safetynet_root, ca=True
        )
        leaf = build_certificate(safetynet_key, "attest.android.com", intermediate_key, intermediate)
        token = make_safetynet_token(
            safetynet_payload(safetynet_nonce("abc")), certificate=leaf, extra_chain=(intermediate,)
        )

        assert validator.decode(token).apk_package_name == PACKAGE_NAME

    def test_verification_without_roots_is_not_configured(self, make_settings, ledger, abort_gate,
                                                          make_safetynet_token):
        validator = SafetyNetValidator(make_settings(safetynet_root_certificates=""), ledger, abort_gate)

        with pytest.raises(DecodeError, match="not configured"):
            validator.decode(make_safetynet_token(safetynet_payload(safetynet_nonce("abc"))))

    def test_invalid_root_bundle_rejected_at_startup(self, make_settings, ledger, abort_gate):
        settings = make_settings(safetynet_root_certificates="not a pem bundle")

        with pytest.raises(ValueError, match="root certificates"):
            SafetyNetValidator(settings, ledger, abort_gate)

    def test_missing_certificate_chain_rejected(self, validator, safetynet_key):
        token = jwt.encode(safetynet_payload("abc"), safetynet_key, algorithm="RS256")

        with pytest.raises(DecodeError, match="no signing certificate"):
            validator.decode(token)

    def test_malformed_certificate_rejected(self, validator, safetynet_key):
        token = jwt.encode(
            safetynet_payload("abc"), safetynet_key, algorithm="RS256",
            headers={"x5c": ["bm90IGEgY2VydA=="]},
        )

        with pytest.raises(DecodeError, match="certificate is malformed"):
            validator.decode(token)

    @pytest.mark.parametrize("token", ["garbage", "a.b.c", "", "....."])
    def test_garbage_token_is_decode_error(self, validator, token):
        with pytest.raises(DecodeError):
            validator.decode(token)

    def test_unverified_decode_for_parity(self, make_settings, ledger, abort_gate, safetynet_key):
        """With signature checks disabled, payload is read as-is."""
        settings = make_settings(safetynet_verify_signature=False)
        validator = SafetyNetValidator(settings, ledger, abort_gate)
        token = jwt.encode(safetynet_payload("abc"), safetynet_key, algorithm="RS256")

        assert validator.decode(token).nonce == "abc"

    def test_unverified_decode_garbage(self, make_settings, ledger, abort_gate):
        validator = SafetyNetValidator(make_settings(safetynet_verify_signature=False), ledger, abort_gate)

        with pytest.raises(DecodeError, match="malformed"):
            validator.decode("definitely.not.jws")

    def test_malformed_payload_fields(self, validator, make_safetynet_token):
        payload = safetynet_payload("abc")
        payload["basicIntegrity"] = {"nested": True}

        with pytest.raises(DecodeError, match="payload is malformed"):
            validator.decode(make_safetynet_token(payload))


class TestSafetyNetEvaluation:
    """Test cases for SafetyNet verdict evaluation."""

    @pytest.fixture
    def validator(self, settings, ledger, abort_gate):
        return SafetyNetValidator(settings, ledger, abort_gate)

    @pytest.fixture
    def logging_validator(self, make_settings, ledger, log_gate):
        return SafetyNetValidator(make_settings(error_level="log"), ledger, log_gate)

    @pytest.fixture
    def fresh_nonce(self, ledger):
        return safetynet_nonce(ledger.issue())

    def test_valid_token_passes(self, validator, fresh_nonce):
        claims = SafetyNetClaims.model_validate(safetynet_payload(fresh_nonce))

        assert validator.evaluate(claims, NonceCheckMode.SERVER).passed

    def test_full_validate_round_trip(self, validator, fresh_nonce, make_safetynet_token, caplog):
        token = make_safetynet_token(safetynet_payload(fresh_nonce))
        counter = RequestCounter(start=7)

        with caplog.at_level(logging.INFO):
            result = validator.validate(token, NonceCheckMode.SERVER, counter.next)

        assert result.status == AttestationResultStatus.VALID
        assert result.request_id == 7
        assert "(safetynet) New Client Request (7) processed" in caplog.text
        assert "SafetyNet Checks passed" in caplog.text

    def test_basic_integrity_false_aborts(self, validator, fresh_nonce):
        claims = SafetyNetClaims.model_validate(
            safetynet_payload(fresh_nonce, basic_integrity=False, digests=(UNTRUSTED_DIGEST,))
        )

        evaluation = validator.evaluate(claims, NonceCheckMode.SERVER)

        assert evaluation.failures == ["Device doesn't meet basic integrity"]
        assert evaluation.aborted

    def test_basic_integrity_false_logged_and_remaining_checks_run(self, logging_validator, fresh_nonce):
        claims = SafetyNetClaims.model_validate(
            safetynet_payload(fresh_nonce, basic_integrity=False, digests=(UNTRUSTED_DIGEST,))
        )

        evaluation = logging_validator.evaluate(claims, NonceCheckMode.SERVER)

        assert evaluation.failures == [
            "Device doesn't meet basic integrity",
            "Invalid apk certificate digest",
        ]
        assert not evaluation.passed
        assert not evaluation.aborted

    def test_basic_integrity_checked_once(self, logging_validator, fresh_nonce):
        claims = SafetyNetClaims.model_validate(safetynet_payload(fresh_nonce, basic_integrity=False))

        evaluation = logging_validator.evaluate(claims, NonceCheckMode.SERVER)

        assert evaluation.failures == ["Device doesn't meet basic integrity"]

    def test_missing_basic_integrity_rejected(self, validator, fresh_nonce):
        payload = safetynet_payload(fresh_nonce)
        del payload["basicIntegrity"]

        evaluation = validator.evaluate(SafetyNetClaims.model_validate(payload), NonceCheckMode.SERVER)

        assert evaluation.failures == ["Device doesn't meet basic integrity"]

    def test_no_cts_profile_match_skips_certificate_check(self, validator, fresh_nonce, caplog):
        """Basic evaluation tier passes without a trusted certificate digest."""
        claims = SafetyNetClaims.model_validate(
            safetynet_payload(fresh_nonce, cts_profile_match=False, digests=(UNTRUSTED_DIGEST,))
        )

        with caplog.at_level(logging.INFO):
            evaluation = validator.evaluate(claims, NonceCheckMode.SERVER)

        assert evaluation.passed
        assert "skipping CTS profile check" in caplog.text

    def test_cts_profile_match_requires_trusted_certificate(self, validator, fresh_nonce):
        claims = SafetyNetClaims.model_validate(
            safetynet_payload(fresh_nonce, digests=(UNTRUSTED_DIGEST,))
        )

        evaluation = validator.evaluate(claims, NonceCheckMode.SERVER)

        assert evaluation.failures == ["Invalid apk certificate digest"]

    def test_cts_profile_match_without_digests_rejected(self, validator, fresh_nonce):
        payload = safetynet_payload(fresh_nonce)
        del payload["apkCertificateDigestSha256"]

        evaluation = validator.evaluate(SafetyNetClaims.model_validate(payload), NonceCheckMode.SERVER)

        assert evaluation.failures == ["Invalid apk certificate digest"]

    def test_replayed_nonce_rejected(self, validator, fresh_nonce):
        claims = SafetyNetClaims.model_validate(safetynet_payload(fresh_nonce))
        validator.evaluate(claims, NonceCheckMode.SERVER)

        evaluation = validator.evaluate(claims, NonceCheckMode.SERVER)

        assert evaluation.failures == ["Invalid Nonce"]

    def test_device_nonce_mode_skips_ledger(self, validator):
        claims = SafetyNetClaims.model_validate(safetynet_payload(safetynet_nonce("device-made")))

        assert validator.evaluate(claims, NonceCheckMode.DEVICE).passed

    def test_stale_token_rejected(self, validator, fresh_nonce):
        claims = SafetyNetClaims.model_validate(
            safetynet_payload(fresh_nonce, timestamp_ms=now_ms() - 20000)
        )

        evaluation = validator.evaluate(claims, NonceCheckMode.SERVER)

        assert evaluation.failures == ["Request too old"]

    def test_wrong_package_rejected(self, validator, fresh_nonce):
        claims = SafetyNetClaims.model_validate(
            safetynet_payload(fresh_nonce, package_name="com.evil.clone")
        )

        evaluation = validator.evaluate(claims, NonceCheckMode.SERVER)

        assert evaluation.failures == ["Invalid package name"]

    def test_all_failures_logged_in_order(self, logging_validator):
        claims = SafetyNetClaims.model_validate(safetynet_payload(
            safetynet_nonce("never-issued"),
            timestamp_ms=now_ms() - 20000,
            package_name="com.evil.clone",
            basic_integrity=False,
            digests=(UNTRUSTED_DIGEST,),
        ))

        evaluation = logging_validator.evaluate(claims, NonceCheckMode.SERVER)

        assert evaluation.failures == [
            "Invalid Nonce",
            "Request too old",
            "Invalid package name",
            "Device doesn't meet basic integrity",
            "Invalid apk certificate digest",
        ]
