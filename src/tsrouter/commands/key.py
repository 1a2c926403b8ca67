"""Key commands -- provision auth keys without joining.

Provides the ``tsrouter key`` sub-command group. ``key create`` runs the
provisioning workflow and prints the issued key record, which is handy
for joining a node by other means or for checking tag/ACL setup.

Typical workflow::

    tsrouter key create --tag tag:ci
    tsrouter --json key create --show-key | jq -r .key
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Optional

import typer

from tsrouter.commands import exit_with_error
from tsrouter.config import load_settings
from tsrouter.exceptions import TsrouterError
from tsrouter.output import format_response, get_output, warning
from tsrouter.provision import provision_from_settings


key_app = typer.Typer(no_args_is_help=True)


@key_app.command("create")
def key_create(
    tag: Optional[list[str]] = typer.Option(
        None, "--tag", help="ACL tag for the key (repeatable). Defaults to TS_TAGS."
    ),
    expiry_days: Optional[int] = typer.Option(
        None, "--expiry-days", min=1, help="Expiry in days. Defaults to TS_KEY_EXPIRY_DAYS."
    ),
    show_key: bool = typer.Option(
        False, "--show-key", help="Print the key itself instead of a redacted form."
    ),
) -> None:
    """Provision a single-use, ephemeral, pre-authorized auth key.

    The key is printed redacted unless ``--show-key`` is given.
    """
    try:
        settings = load_settings()
        record = asyncio.run(
            provision_from_settings(
                settings,
                tags=tag,
                expiry=timedelta(days=expiry_days) if expiry_days else None,
                output=get_output(),
            )
        )
    except TsrouterError as exc:
        exit_with_error(exc)

    if show_key:
        warning("The auth key below is a secret; anyone holding it can join your tailnet.")
    format_response(record.to_display(reveal=show_key))
