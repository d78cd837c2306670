"""
Pytest configuration and fixtures for the attestation server tests.

Key material is generated per test session so local decoding and SafetyNet
signature checks run against real cryptography.
"""

import base64
import json

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from jose import jwe, jws

from factories import PACKAGE_NAME, TRUSTED_DIGEST, build_certificate
from integrity_server.config import AttestationSettings
from integrity_server.services.attestation import (
    AttestationService,
    NonceLedger,
    PolicyGate,
)


@pytest.fixture(scope="session")
def decryption_key():
    """Raw AES-256 key used for the JWE envelope."""
    return bytes(range(32))


@pytest.fixture(scope="session")
def signing_key():
    """EC P-256 key pair standing in for Google's token signing key."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def signing_key_pem(signing_key):
    return signing_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def encoded_verification_key(signing_key):
    der = signing_key.public_key().public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64.b64encode(der).decode("ascii")


@pytest.fixture(scope="session")
def service_account_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def service_account(service_account_key):
    private_pem = service_account_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")
    return {
        "type": "service_account",
        "client_email": "verifier@example-project.iam.gserviceaccount.com",
        "private_key_id": "key-1",
        "private_key": private_pem,
        "token_uri": "https://oauth2.googleapis.com/token",
    }


@pytest.fixture(scope="session")
def safetynet_root_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def safetynet_root(safetynet_root_key):
    """Root CA standing in for the one Google's attestation chain ends at."""
    return build_certificate(safetynet_root_key, "Test Attestation Root", ca=True)


@pytest.fixture(scope="session")
def safetynet_root_pem(safetynet_root):
    return safetynet_root.public_bytes(serialization.Encoding.PEM).decode("ascii")


@pytest.fixture(scope="session")
def safetynet_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def issue_safetynet_certificate(safetynet_root_key, safetynet_root):
    """Leaf certificates issued by the test root."""

    def _issue(key, common_name="attest.android.com"):
        return build_certificate(key, common_name, safetynet_root_key, safetynet_root)

    return _issue


@pytest.fixture(scope="session")
def safetynet_certificate(safetynet_key, issue_safetynet_certificate):
    return issue_safetynet_certificate(safetynet_key)


@pytest.fixture(scope="session")
def self_signed_safetynet_certificate(safetynet_key):
    """Carries the attestation host name but chains to nothing trusted."""
    return build_certificate(safetynet_key, "attest.android.com")


@pytest.fixture(scope="session")
def make_safetynet_token(safetynet_key, safetynet_certificate, issue_safetynet_certificate):
    """Build a SafetyNet JWS signed by the given key and certificate."""

    def _make(payload, key=None, certificate=None, common_name=None, extra_chain=()):
        signer = key or safetynet_key
        cert = certificate or safetynet_certificate
        if common_name is not None:
            cert = issue_safetynet_certificate(signer, common_name)
        x5c = [
            base64.b64encode(c.public_bytes(serialization.Encoding.DER)).decode("ascii")
            for c in (cert, *extra_chain)
        ]
        return jwt.encode(payload, signer, algorithm="RS256", headers={"x5c": x5c})

    return _make


@pytest.fixture(scope="session")
def make_play_integrity_token(decryption_key, signing_key_pem):
    """Sign the claims with ES256, then encrypt with A256KW/A256GCM."""

    def _make(payload, key=None):
        signed = jws.sign(payload, signing_key_pem, algorithm="ES256")
        token = jwe.encrypt(signed, key or decryption_key, algorithm="A256KW", encryption="A256GCM")
        return token.decode("ascii") if isinstance(token, bytes) else token

    return _make


@pytest.fixture
def make_settings(decryption_key, encoded_verification_key, service_account, safetynet_root_pem):
    """Settings factory with test key material and overridable fields."""

    def _make(**overrides):
        values = {
            "package_name": PACKAGE_NAME,
            "valid_certificate_sha256_digest": [TRUSTED_DIGEST],
            "base64_of_encoded_decryption_key": base64.b64encode(decryption_key).decode("ascii"),
            "base64_of_encoded_verification_key": encoded_verification_key,
            "google_application_credentials": json.dumps(service_account),
            "safetynet_root_certificates": safetynet_root_pem,
            "error_level": "error",
        }
        values.update(overrides)
        return AttestationSettings(**values)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def ledger():
    return NonceLedger()


@pytest.fixture
def abort_gate():
    return PolicyGate("error")


@pytest.fixture
def log_gate():
    return PolicyGate("log")


@pytest.fixture
def make_service(make_settings):
    """Isolated service per test; authority can be replaced with a mock."""

    def _make(authority=None, **overrides):
        return AttestationService(make_settings(**overrides), authority=authority)

    return _make
