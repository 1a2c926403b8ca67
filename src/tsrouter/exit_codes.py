"""Process exit codes, one per failure category.

A service manager wrapping ``tsrouter serve`` can tell a bad configuration
(2, do not restart) from a network hiccup (6, retry later) by the exit
status alone. Each :class:`~tsrouter.exceptions.TsrouterError` subclass
carries one of these.

Example::

    $ tsrouter key create; echo $?
    3
"""

EXIT_SUCCESS = 0
"""The command completed."""

EXIT_GENERIC_FAILURE = 1
"""Unexpected failure; a traceback was saved under the data directory."""

EXIT_INVALID_USAGE = 2
"""Invalid arguments or missing/invalid configuration (e.g. no tailnet set)."""

EXIT_AUTH_FAILURE = 3
"""The OAuth token endpoint rejected the client credentials."""

EXIT_API_ERROR = 4
"""The Tailscale API answered with an unexpected HTTP status."""

EXIT_DECODE_ERROR = 5
"""A response from the Tailscale API could not be decoded."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused, TLS)."""

EXIT_MESH_ERROR = 7
"""The Tailscale node could not be started, joined, or served."""

EXIT_CANCELLED = 130
"""The operation was cancelled (Ctrl-C or a caller-supplied cancellation)."""
