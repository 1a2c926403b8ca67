"""Tests for the console-script entry point in tsrouter.app."""

from __future__ import annotations

import signal
from pathlib import Path

import pytest

from tsrouter import app as app_module
from tsrouter.exceptions import ConfigurationError
from tsrouter.output import LogLevel, OutputFormat, get_output


@pytest.fixture
def entry_point(monkeypatch: pytest.MonkeyPatch) -> list[int]:
    """Neutralise signal installation and command registration for main()."""
    installed: list[int] = []
    monkeypatch.setattr(signal, "signal", lambda signum, handler: installed.append(signum))
    monkeypatch.setattr(app_module, "register_commands", lambda: None)
    return installed


def test_signals_installed(entry_point: list[int], monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(app_module, "app", lambda: None)
    app_module.main()
    assert entry_point == [signal.SIGINT, signal.SIGTERM]


def test_tsrouter_error_exit_code(
    entry_point: list[int], monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def fail() -> None:
        raise ConfigurationError("TS_TAILNET is not set")

    monkeypatch.setattr(app_module, "app", fail)
    with pytest.raises(SystemExit) as exc_info:
        app_module.main()
    assert exc_info.value.code == 2
    assert "TS_TAILNET is not set" in capsys.readouterr().err


def test_unexpected_error_saves_traceback(
    entry_point: list[int],
    isolated_config: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    def crash() -> None:
        raise ZeroDivisionError("boom")

    monkeypatch.setattr(app_module, "app", crash)
    with pytest.raises(SystemExit) as exc_info:
        app_module.main()
    assert exc_info.value.code == 1

    (log,) = (isolated_config / "data" / "tsrouter" / "logs").glob("crash-*.log")
    assert "ZeroDivisionError: boom" in log.read_text()
    assert str(log) in capsys.readouterr().err.replace("\n", "")


def test_signal_handler_exits_with_cancelled_code() -> None:
    with pytest.raises(SystemExit) as exc_info:
        app_module._exit_on_signal(signal.SIGTERM, None)
    assert exc_info.value.code == 130


def test_callback_installs_output_for_flags() -> None:
    app_module.main_callback(
        version=False, log_level=LogLevel.DEBUG, json_output=True, plain_output=True, no_color=True
    )
    output = get_output()
    assert output.is_verbose is True
    assert output.format == OutputFormat.JSON
