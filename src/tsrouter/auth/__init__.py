"""OAuth2 authentication against the Tailscale API.

The main entry point is :class:`ClientCredentialsAuth`, an
:class:`httpx.Auth` that lazily exchanges OAuth client credentials for a
bearer token and refreshes it before expiry.

Typical usage::

    from tsrouter.auth import ClientCredentialsAuth

    auth = ClientCredentialsAuth(client_id, client_secret)
"""

from tsrouter.auth.oauth import ClientCredentialsAuth

__all__ = ["ClientCredentialsAuth"]
