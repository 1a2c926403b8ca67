"""Root Typer application and the ``tsrouter`` console-script entry point.

Global flags (``--log-level``, ``--json``, ``--plain``, ``--no-color``) are
handled by :func:`main_callback`, which installs the process-wide
:class:`~tsrouter.output.OutputManager` before any sub-command runs. The
sub-commands live in :mod:`tsrouter.commands` and are attached by
:func:`register_commands`.

:func:`main` adds process-level concerns: SIGINT/SIGTERM end the program
with :data:`~tsrouter.exit_codes.EXIT_CANCELLED` after context managers
(e.g. the Tailscale daemon) have unwound, and an unexpected exception
leaves a traceback file under the data directory instead of a raw stack
dump on the terminal.
"""

from __future__ import annotations

import signal
import sys
import traceback
from datetime import datetime
from types import FrameType
from typing import Optional

import typer

from tsrouter import __version__
from tsrouter.exceptions import TsrouterError
from tsrouter.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE
from tsrouter.output import LogLevel, OutputFormat, OutputManager, error, set_output


app = typer.Typer(
    name="tsrouter",
    help="Expose a local service on an ephemeral Tailscale node.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _show_version(value: bool) -> None:
    if value:
        typer.echo(f"tsrouter {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False, "--version", callback=_show_version, is_eager=True, help="Print the version and exit."
    ),
    log_level: LogLevel = typer.Option(
        LogLevel.ERROR,
        "--log-level",
        case_sensitive=False,
        help="Diagnostics on stderr: error, info, or debug. Debug traces may contain secrets.",
    ),
    json_output: bool = typer.Option(False, "--json", help="Print results as JSON."),
    plain_output: bool = typer.Option(False, "--plain", help="Print results as tab-separated text."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colours and styling."),
) -> None:
    """Install the output manager for the selected log level and format.

    ``--json`` wins over ``--plain``; without either the format follows
    the terminal.
    """
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN
    else:
        fmt = OutputFormat.AUTO
    set_output(OutputManager.for_log_level(log_level, format=fmt, no_color=no_color))


def register_commands() -> None:
    """Attach ``serve``, ``key`` and ``auth`` to :data:`app`."""
    from tsrouter.commands.auth import auth_app
    from tsrouter.commands.key import key_app
    from tsrouter.commands.serve import serve_command

    app.command("serve")(serve_command)
    app.add_typer(key_app, name="key", help="Provision auth keys without joining.")
    app.add_typer(auth_app, name="auth", help="Check the OAuth client credentials.")


def _exit_on_signal(signum: int, frame: Optional[FrameType]) -> None:
    sys.stderr.write(f"\nInterrupted by {signal.Signals(signum).name}.\n")
    sys.exit(EXIT_CANCELLED)


def _save_traceback() -> str:
    """Write the exception being handled to ``<data dir>/logs`` and return the file path."""
    from tsrouter.config import get_data_dir

    log_dir = get_data_dir() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    path = log_dir / f"crash-{datetime.now():%Y%m%d-%H%M%S}.log"
    path.write_text(traceback.format_exc(), encoding="utf-8")
    return str(path)


def main() -> None:
    """Entry point of the ``tsrouter`` console script. Always ends in :class:`SystemExit`."""
    # SIGTERM matters for ``serve`` under a service manager.
    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, _exit_on_signal)

    register_commands()
    try:
        app()
    except TsrouterError as exc:
        error(str(exc))
        sys.exit(exc.exit_code)
    except Exception:
        error(f"Unexpected error; traceback saved to {_save_traceback()}")
        sys.exit(EXIT_GENERIC_FAILURE)
