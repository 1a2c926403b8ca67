"""OAuth2 Client Credentials token exchange as an :class:`httpx.Auth`.

This module provides :class:`ClientCredentialsAuth`, which performs the
non-interactive Client Credentials grant (:rfc:`6749` section 4.4) against
the Tailscale token endpoint and attaches the resulting bearer token to
every request sent through the client it is installed on.

Token acquisition is lazy: constructing the auth performs no I/O and does
not check the credentials. The first request made through the client
triggers the token request (sent through the same client transport), and
the token is cached in memory and refreshed when it gets within 30 seconds
of expiry (half the lifetime for tokens shorter than a minute). Callers wanting to fail fast call :meth:`ClientCredentialsAuth.validate`.

Example::

    auth = ClientCredentialsAuth(client_id, client_secret)
    async with httpx.AsyncClient(auth=auth) as client:
        await auth.validate(client)   # optional eager check
        await client.get(...)         # Authorization: Bearer <token>
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Generator, Optional, Sequence

import httpx

from tsrouter.config import TOKEN_URL
from tsrouter.exceptions import AuthError, ConfigurationError, DecodeError, NetworkError
from tsrouter.output import OutputManager, get_output, redact

_EXPIRY_MARGIN = 30.0
_DEFAULT_EXPIRES_IN = 3600.0


class ClientCredentialsAuth(httpx.Auth):
    """Attach a client-credentials bearer token to outgoing requests.

    Args:
        client_id: OAuth client id.
        client_secret: OAuth client secret. Never printed unredacted.
        token_url: Token endpoint URL.
        scopes: Optional scopes, sent space-separated as ``scope``.
        timeout: Timeout in seconds for the token request.
        output: Diagnostics sink; defaults to the global manager.
    """

    requires_response_body = True

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str = TOKEN_URL,
        scopes: Sequence[str] = (),
        timeout: float = 30.0,
        output: Optional[OutputManager] = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._scopes = list(scopes)
        self._timeout = httpx.Timeout(timeout)
        self._output = output
        self._access_token: str | None = None
        self._token_expiry: float = 0.0
        self._refresh_margin: float = _EXPIRY_MARGIN
        self._lock = asyncio.Lock()

    @property
    def output(self) -> OutputManager:
        return self._output or get_output()

    @property
    def has_valid_token(self) -> bool:
        """Whether a cached token exists and is outside the refresh margin."""
        return self._access_token is not None and time.monotonic() < (
            self._token_expiry - self._refresh_margin
        )

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        if not self.has_valid_token:
            token_response = yield self.build_token_request()
            self.update_token(token_response)
        request.headers["Authorization"] = f"Bearer {self._access_token}"
        yield request

    async def validate(self, client: httpx.AsyncClient) -> None:
        """Fetch a token now instead of on first use.

        Runs the exchange at most once while the cached token stays valid;
        concurrent callers wait for the first one to finish.

        Args:
            client: The client whose transport carries the token request.
                The request is sent without this auth applied.

        Raises:
            ConfigurationError: If the client id or secret is empty.
            AuthError: If the endpoint rejects the credentials.
            DecodeError: If the token response is malformed.
            NetworkError: If the endpoint cannot be reached.
        """
        async with self._lock:
            if self.has_valid_token:
                return
            token_request = self.build_token_request()
            try:
                response = await client.send(token_request, auth=None)
            except httpx.TransportError as exc:
                raise NetworkError(f"Token request to {self._token_url} failed: {exc}") from exc
            self.update_token(response)

    def build_token_request(self) -> httpx.Request:
        """Build the ``grant_type=client_credentials`` token request.

        Raises:
            ConfigurationError: If the client id or secret is empty.
        """
        if not self._client_id:
            raise ConfigurationError("OAuth client id is empty; set TS_CLIENT_ID")
        if not self._client_secret:
            raise ConfigurationError("OAuth client secret is empty; set TS_CLIENT_SECRET")

        data: dict[str, str] = {
            "grant_type": "client_credentials",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
        if self._scopes:
            data["scope"] = " ".join(self._scopes)

        self.output.debug(
            f"Requesting OAuth token from {self._token_url} "
            f"(client_id={self._client_id}, client_secret={redact(self._client_secret)})"
        )
        return httpx.Request(
            "POST",
            self._token_url,
            data=data,
            headers={"Accept": "application/json"},
            extensions={"timeout": self._timeout.as_dict()},
        )

    def update_token(self, response: httpx.Response) -> None:
        """Cache the access token from a token endpoint *response*.

        Raises:
            AuthError: If the endpoint did not answer 200.
            DecodeError: If the body is not JSON or lacks ``access_token``.
        """
        if response.status_code != 200:
            self.output.debug(f"Token endpoint answered {response.status_code}: {response.text}")
            raise AuthError(
                f"Token request failed with status {response.status_code}: {response.text}"
            )

        try:
            token_data: dict[str, Any] = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise DecodeError(f"Token response is not valid JSON: {exc}", body=response.text) from exc

        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            raise DecodeError("Token response missing 'access_token' field", body=response.text)

        self._access_token = str(token_data["access_token"])
        expires_in = token_data.get("expires_in")
        try:
            lifetime = float(expires_in) if expires_in is not None else _DEFAULT_EXPIRES_IN
        except (TypeError, ValueError):
            lifetime = _DEFAULT_EXPIRES_IN
        self._token_expiry = time.monotonic() + lifetime
        # Short-lived tokens refresh at half their lifetime.
        self._refresh_margin = min(_EXPIRY_MARGIN, lifetime / 2)
        self.output.debug(
            f"Obtained OAuth token {redact(self._access_token)} valid for {lifetime:.0f}s"
        )
