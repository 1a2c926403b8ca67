"""Built-in tsrouter commands.

Each module exposes either a single command function (:mod:`serve`) or a
Typer sub-application (:mod:`key`, :mod:`auth`) that
:func:`tsrouter.app.main` registers on the root application.
"""

from __future__ import annotations

from typing import NoReturn

import typer

from tsrouter.exceptions import APIError, DecodeError, TsrouterError
from tsrouter.output import debug, error


def exit_with_error(exc: TsrouterError) -> NoReturn:
    """Report *exc* on stderr and exit with its exit code.

    Raw response bodies attached to API and decode errors are only shown
    at debug verbosity, since they may contain secrets.
    """
    error(str(exc))
    if isinstance(exc, (APIError, DecodeError)) and exc.body:
        debug(f"Response body: {exc.body}")
    raise typer.Exit(code=exc.exit_code)
