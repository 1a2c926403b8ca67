"""Asynchronous Tailscale API client.

This module provides :class:`TailscaleAPI`, a thin wrapper around
:class:`httpx.AsyncClient` bound to the Tailscale API base URL and carrying
a :class:`~tsrouter.auth.ClientCredentialsAuth`. It layers on:

- **Bounded timeouts** -- every request (token exchange included) is
  limited to ``timeout`` seconds.
- **Error mapping** -- transport failures become
  :class:`~tsrouter.exceptions.NetworkError` with the :mod:`httpx`
  exception chained.
- **Debug tracing** -- method, URL, and status of every request go to the
  diagnostics sink at debug verbosity.

Nothing is retried here: every request is sent exactly once.
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

import httpx

from tsrouter.auth.oauth import ClientCredentialsAuth
from tsrouter.config import API_BASE, Settings
from tsrouter.exceptions import APIError, DecodeError, NetworkError
from tsrouter.models import Device
from tsrouter.output import OutputManager, get_output


def tailnet_path(tailnet: str, *segments: str) -> str:
    """Return ``/tailnet/<tailnet>/<segments...>`` with the tailnet name path-escaped."""
    parts = ["tailnet", quote(tailnet, safe=""), *segments]
    return "/" + "/".join(parts)


class TailscaleAPI:
    """Authenticated client for the Tailscale v2 API.

    Must be used as an async context manager so that the underlying
    connection pool is opened and closed around the requests.

    Args:
        auth: Token exchanger attached to every request.
        base_url: API base URL.
        timeout: Per-request timeout in seconds.
        transport: Optional transport override (tests pass an
            :class:`httpx.MockTransport`).
        output: Diagnostics sink; defaults to the global manager.

    Example::

        async with TailscaleAPI(auth) as api:
            await api.validate()
            response = await api.request("POST", tailnet_path("example.com", "keys"), content=body)
    """

    def __init__(
        self,
        auth: ClientCredentialsAuth,
        base_url: str = API_BASE,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        output: Optional[OutputManager] = None,
    ) -> None:
        self._auth = auth
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport
        self._output = output
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        output: Optional[OutputManager] = None,
    ) -> TailscaleAPI:
        """Build a client and its token exchanger from loaded settings.

        Raises:
            ConfigurationError: If a credential reference cannot be resolved.
        """
        client_id, client_secret = settings.oauth_credentials()
        auth = ClientCredentialsAuth(
            client_id,
            client_secret,
            token_url=settings.token_url,
            scopes=settings.oauth_scopes,
            timeout=settings.request_timeout,
            output=output,
        )
        return cls(
            auth,
            base_url=settings.api_base,
            timeout=settings.request_timeout,
            transport=transport,
            output=output,
        )

    @property
    def output(self) -> OutputManager:
        return self._output or get_output()

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> TailscaleAPI:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            auth=self._auth,
            timeout=self._timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #

    async def validate(self) -> None:
        """Exchange the OAuth credentials now rather than on the first request."""
        await self._auth.validate(self._require_client())

    async def request(
        self,
        method: str,
        path: str,
        content: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        """Send one request and return the response with its body fully read.

        Non-2xx statuses are returned, not raised; interpreting them is up
        to the caller.

        Args:
            method: HTTP method.
            path: Path relative to the API base URL.
            content: Optional raw request body.
            headers: Extra request headers.

        Raises:
            NetworkError: On DNS, connect, TLS, or timeout failures, for both
                the token exchange and the request itself.
        """
        client = self._require_client()
        merged_headers: dict[str, str] = {"Accept": "application/json"}
        merged_headers.update(headers or {})

        self.output.debug(f"{method.upper()} {self._base_url}{path}")
        try:
            response = await client.request(
                method.upper(),
                path,
                content=content,
                headers=merged_headers,
            )
        except httpx.TimeoutException as exc:
            raise NetworkError(
                f"{method.upper()} {path} timed out after {self._timeout:g}s: {exc}"
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"{method.upper()} {path} failed: {exc}") from exc

        self.output.debug(f"{method.upper()} {path} -> {response.status_code}")
        return response

    async def list_devices(self, tailnet: str) -> list[Device]:
        """Return the devices of *tailnet*.

        Raises:
            APIError: If the API does not answer 200.
            DecodeError: If the response is not a device list.
        """
        response = await self.request("GET", tailnet_path(tailnet, "devices"))
        if response.status_code != 200:
            raise APIError(
                f"Listing devices failed: HTTP {response.status_code} - {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        try:
            payload: Any = response.json()
            return [Device.model_validate(item) for item in payload.get("devices", [])]
        except (ValueError, AttributeError, TypeError) as exc:
            # ValidationError and JSONDecodeError are both ValueErrors.
            raise DecodeError(f"Failed to decode device list: {exc}", body=response.text) from exc

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("TailscaleAPI is not open -- use it as an async context manager")
        return self._client
