"""The ``tsrouter serve`` command -- provision, join, and proxy.

Runs the whole program flow: provisions a fresh auth key, starts a private
Tailscale node named ``--hostname``, joins the tailnet with the key, and
serves ``localhost:<--target-port>`` over HTTPS on the node until
interrupted.

Example::

    tsrouter serve --hostname grafana --target-port 3000
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Optional

import typer

from tsrouter.commands import exit_with_error
from tsrouter.config import get_instance_dir, load_settings
from tsrouter.exceptions import TsrouterError
from tsrouter.mesh import MeshNode
from tsrouter.output import get_output, info
from tsrouter.provision import provision_from_settings


def serve_command(
    target_port: int = typer.Option(
        ..., "--target-port", min=1, max=65535, help="Local port to forward to."
    ),
    hostname: str = typer.Option(..., "--hostname", help="Desired Tailscale hostname."),
    tag: Optional[list[str]] = typer.Option(
        None, "--tag", help="ACL tag for the node (repeatable). Defaults to TS_TAGS."
    ),
    expiry_days: Optional[int] = typer.Option(
        None, "--expiry-days", min=1, help="Auth key expiry in days. Defaults to TS_KEY_EXPIRY_DAYS."
    ),
) -> None:
    """Expose a local port on a new ephemeral Tailscale node."""
    output = get_output()
    try:
        settings = load_settings()
        state_dir = get_instance_dir(hostname)
        record = asyncio.run(
            provision_from_settings(
                settings,
                tags=tag,
                expiry=timedelta(days=expiry_days) if expiry_days else None,
                output=output,
            )
        )

        with MeshNode(
            hostname,
            state_dir,
            tailscale_bin=settings.tailscale_bin,
            tailscaled_bin=settings.tailscaled_bin,
            output=output,
        ) as node:
            node.join(record.key.get_secret_value())
            info(f"Service available at https://{node.dns_name()} -> localhost:{target_port}")
            node.serve(target_port)
    except TsrouterError as exc:
        exit_with_error(exc)
