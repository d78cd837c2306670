"""
Client for Google's Play Integrity decodeIntegrityToken API.

Authenticates with a service account through the OAuth2 JWT bearer grant
and returns the authority's already verified token payload.
"""

import logging
import time
from typing import Any, Dict, Optional

import httpx
import jwt

from .base import AuthorityError

logger = logging.getLogger(__name__)


class PlayIntegrityAuthorityClient:
    """
    Delegated decoder backed by the Play Integrity API.

    No retries are made; failures surface as ``AuthorityError`` and the
    caller decides what to do.
    """

    PLAY_INTEGRITY_API_URL = "https://playintegrity.googleapis.com/v1/{package_name}:decodeIntegrityToken"
    DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
    SCOPE = "https://www.googleapis.com/auth/playintegrity"
    ASSERTION_LIFETIME = 3600

    def __init__(self, service_account: Dict[str, Any], package_name: str,
                 timeout: float = 30, transport: Optional[httpx.BaseTransport] = None):
        self.service_account = service_account
        self.package_name = package_name
        self.timeout = timeout
        self._transport = transport
        self._access_token: Optional[str] = None
        self._access_token_expiry = 0.0

    def decode_integrity_token(self, token: str) -> Dict[str, Any]:
        """
        Decode a Play Integrity token on Google's servers.

        Args:
            token: The opaque integrity token from the client

        Returns:
            The ``tokenPayloadExternal`` object

        Raises:
            AuthorityError: On transport failure, non-2xx answer or bad payload
        """
        url = self.PLAY_INTEGRITY_API_URL.format(package_name=self.package_name)

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                access_token = self._get_google_access_token(client)
                response = client.post(
                    url,
                    json={"integrityToken": token},
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as e:
            logger.error(f"Play Integrity API request failed: {e}")
            raise AuthorityError(f"A Google API error occured: {e}") from e

        if response.status_code != 200:
            logger.error(f"Play Integrity API error: {response.status_code} - {response.text}")
            raise AuthorityError(
                f"A Google API error occured: {self._error_message(response)}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise AuthorityError("A Google API error occured: response is not JSON") from e

        payload = body.get("tokenPayloadExternal") if isinstance(body, dict) else None
        if not isinstance(payload, dict):
            raise AuthorityError("A Google API error occured: response carries no token payload")
        return payload

    def _get_google_access_token(self, client: httpx.Client) -> str:
        """
        Exchange a signed service account assertion for an access token.

        Tokens are reused until shortly before they expire.
        """
        if self._access_token and time.time() < self._access_token_expiry - 60:
            return self._access_token

        token_uri = self.service_account.get("token_uri") or self.DEFAULT_TOKEN_URI
        now = int(time.time())
        claims = {
            "iss": self.service_account.get("client_email"),
            "scope": self.SCOPE,
            "aud": token_uri,
            "iat": now,
            "exp": now + self.ASSERTION_LIFETIME,
        }
        headers = {}
        if self.service_account.get("private_key_id"):
            headers["kid"] = self.service_account["private_key_id"]

        try:
            assertion = jwt.encode(
                claims,
                self.service_account.get("private_key"),
                algorithm="RS256",
                headers=headers or None,
            )
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise AuthorityError(f"A Google API error occured: unusable service account key ({e})") from e

        response = client.post(
            token_uri,
            data={
                "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                "assertion": assertion,
            },
        )
        if response.status_code != 200:
            logger.error(f"Google OAuth2 error: {response.status_code} - {response.text}")
            raise AuthorityError(
                f"A Google API error occured: {self._error_message(response)}"
            )

        try:
            body = response.json()
            access_token = body["access_token"]
            expires_in = int(body.get("expires_in", 3600))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise AuthorityError("A Google API error occured: no access token granted") from e
        self._access_token = access_token
        self._access_token_expiry = time.time() + expires_in
        return self._access_token

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return f"HTTP {response.status_code}"
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if isinstance(error, str):
            return body.get("error_description") or error
        return f"HTTP {response.status_code}"
