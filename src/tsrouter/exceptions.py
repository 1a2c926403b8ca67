"""Exception hierarchy for tsrouter.

All exceptions inherit from :class:`TsrouterError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`tsrouter.exit_codes`.
Commands catch ``TsrouterError``, print the message and exit with the
appropriate code, while unexpected exceptions produce a crash log and exit
with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    TsrouterError (exit 1)
    +-- ConfigurationError   (exit 2)
    +-- AuthError            (exit 3)
    +-- APIError             (exit 4)
    |   +-- ProvisioningError
    +-- DecodeError          (exit 5)
    +-- NetworkError         (exit 6)
    +-- MeshError            (exit 7)
    +-- CancelledError       (exit 130)

Nothing in this hierarchy is retried: every error is fatal to the command
that raised it.
"""

from __future__ import annotations

from typing import Optional

from tsrouter.exit_codes import (
    EXIT_API_ERROR,
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_DECODE_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_MESH_ERROR,
)

MAX_DIAGNOSTIC_BODY = 64 * 1024
"""Upper bound (in characters) on response bodies kept for diagnostics."""


class TsrouterError(Exception):
    """Root of every error tsrouter reports to the user.

    The message is what the CLI prints after ``Error:``; ``exit_code``
    comes from the subclass unless given explicitly.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.exit_code = self.exit_code if exit_code is None else exit_code


class ConfigurationError(TsrouterError):
    """Raised for missing or invalid settings (empty tailnet, empty OAuth credentials, bad values)."""

    exit_code = EXIT_INVALID_USAGE


class AuthError(TsrouterError):
    """Raised when the OAuth token endpoint rejects the client credentials."""

    exit_code = EXIT_AUTH_FAILURE


class APIError(TsrouterError):
    """Raised when the Tailscale API answers with an unexpected HTTP status.

    Args:
        message: Human-readable summary.
        status_code: The HTTP status code received.
        body: The raw response body, kept for diagnostics.
    """

    exit_code = EXIT_API_ERROR

    def __init__(self, message: str, status_code: int, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body[:MAX_DIAGNOSTIC_BODY]


class ProvisioningError(APIError):
    """Raised when the key-creation endpoint does not answer HTTP 200."""


class DecodeError(TsrouterError):
    """Raised when a successful response body is not the JSON document we expect.

    The raw ``body`` is kept on the exception, not in the message, and is
    only printed at debug verbosity.
    """

    exit_code = EXIT_DECODE_ERROR

    def __init__(self, message: str, body: str = ""):
        super().__init__(message)
        self.body = body[:MAX_DIAGNOSTIC_BODY]


class NetworkError(TsrouterError):
    """Raised on transport-level failures (DNS, connect, TLS, timeout).

    The underlying :mod:`httpx` exception is chained as ``__cause__``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class MeshError(TsrouterError):
    """Raised when the Tailscale daemon or CLI fails to start, join, or serve."""

    exit_code = EXIT_MESH_ERROR


class CancelledError(TsrouterError):
    """Raised when provisioning is aborted by a cancellation signal or deadline.

    Not to be confused with :class:`asyncio.CancelledError`, which is left to
    propagate untouched when the surrounding task itself is cancelled.
    """

    exit_code = EXIT_CANCELLED
