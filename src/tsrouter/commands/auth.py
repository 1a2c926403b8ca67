"""Auth commands -- check the OAuth client credentials.

``tsrouter auth check`` exchanges the configured OAuth client credentials
for a token and lists the tailnet's devices with it, which confirms both
that the credentials are valid and that the tailnet name is right.

Example::

    tsrouter auth check
"""

from __future__ import annotations

import asyncio

import typer

from tsrouter.client import TailscaleAPI
from tsrouter.commands import exit_with_error
from tsrouter.config import Settings, load_settings
from tsrouter.exceptions import TsrouterError
from tsrouter.models import Device
from tsrouter.output import get_output, info, print_table, success


auth_app = typer.Typer(no_args_is_help=True)


async def _list_devices(settings: Settings, tailnet: str) -> list[Device]:
    async with TailscaleAPI.from_settings(settings, output=get_output()) as api:
        await api.validate()
        return await api.list_devices(tailnet)


@auth_app.command("check")
def auth_check() -> None:
    """Verify the OAuth credentials and list the tailnet's devices."""
    try:
        settings = load_settings()
        tailnet = settings.require_tailnet()
        devices = asyncio.run(_list_devices(settings, tailnet))
    except TsrouterError as exc:
        exit_with_error(exc)

    success(f"OAuth credentials accepted for tailnet {tailnet}.")
    if not devices:
        info("No devices in this tailnet yet.")
        return

    rows = [
        [
            d.name or d.hostname,
            d.hostname,
            d.os,
            ", ".join(d.addresses),
            ", ".join(d.tags),
            d.last_seen,
        ]
        for d in devices
    ]
    print_table(
        ["NAME", "HOSTNAME", "OS", "ADDRESSES", "TAGS", "LAST SEEN"],
        rows,
        title=f"Devices in {tailnet}",
    )
