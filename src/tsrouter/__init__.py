"""tsrouter -- Expose a local service on an ephemeral Tailscale node.

The tool exchanges Tailscale OAuth client credentials for a bearer token,
uses it to provision a single-use, ephemeral, pre-authorized auth key, joins
the tailnet with that key under a chosen hostname, and serves a local port
over TLS on the new node.

Typical workflow::

    export TS_CLIENT_ID=... TS_CLIENT_SECRET=... TS_TAILNET=example.com
    tsrouter serve --hostname grafana --target-port 3000

Modules:
    app: Typer application and CLI entry point.
    config: Environment / ``.env`` settings and XDG directories.
    auth: OAuth2 client-credentials token exchange.
    client: Async Tailscale API client.
    provision: Auth-key provisioning workflow.
    mesh: Tailnet join and HTTPS serving through the Tailscale binaries.
    models: Pydantic models for API requests and responses.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
