"""Tailnet join and HTTPS serving through the Tailscale binaries.

:class:`MeshNode` runs a private ``tailscaled`` in userspace-networking
mode with its own state directory and control socket, so several
instances (one per hostname) can coexist on one machine without touching
a system-wide Tailscale installation. The node is driven with the
``tailscale`` CLI:

1. :meth:`MeshNode.start` -- launch ``tailscaled`` and wait for its socket.
2. :meth:`MeshNode.join` -- ``tailscale up`` with the provisioned auth key.
   The key is handed over through a 0600 file that is removed right
   after, never through the command line.
3. :meth:`MeshNode.serve` -- ``tailscale serve --https=443`` reverse-proxies
   TLS traffic arriving on the node to the local port, in the foreground
   until interrupted.
4. :meth:`MeshNode.close` -- stop ``tailscaled``. The node is ephemeral, so
   the control plane removes it some time after it goes offline.

Certificate issuance and byte forwarding are entirely Tailscale's business.
"""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import time
from pathlib import Path
from typing import IO, Optional

from tsrouter.exceptions import MeshError
from tsrouter.output import OutputManager, get_output

_SOCKET_NAME = "tailscaled.sock"
_KEY_FILE_NAME = "authkey"
_LOG_FILE_NAME = "tailscaled.log"


class MeshNode:
    """A Tailscale node backed by a private ``tailscaled`` process.

    Use it as a context manager so the daemon is always stopped::

        with MeshNode("grafana", state_dir) as node:
            node.join(record.key.get_secret_value())
            node.serve(3000)

    Args:
        hostname: Hostname the node registers under.
        state_dir: Directory holding the node state, socket, and daemon log.
        tailscale_bin: ``tailscale`` CLI binary (name or path).
        tailscaled_bin: ``tailscaled`` binary (name or path).
        startup_timeout: Seconds to wait for the daemon socket to appear.
        join_timeout: Seconds ``tailscale up`` may take.
        output: Diagnostics sink; defaults to the global manager.
    """

    def __init__(
        self,
        hostname: str,
        state_dir: Path,
        tailscale_bin: str = "tailscale",
        tailscaled_bin: str = "tailscaled",
        startup_timeout: float = 15.0,
        join_timeout: float = 60.0,
        output: Optional[OutputManager] = None,
    ) -> None:
        self.hostname = hostname
        self.state_dir = Path(state_dir)
        self._tailscale_bin = tailscale_bin
        self._tailscaled_bin = tailscaled_bin
        self._startup_timeout = startup_timeout
        self._join_timeout = join_timeout
        self._output = output
        self._daemon: Optional[subprocess.Popen] = None
        self._daemon_log: Optional[IO[bytes]] = None

    @property
    def output(self) -> OutputManager:
        return self._output or get_output()

    @property
    def socket_path(self) -> Path:
        return self.state_dir / _SOCKET_NAME

    # ------------------------------------------------------------------ #
    # Context manager
    # ------------------------------------------------------------------ #

    def __enter__(self) -> MeshNode:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Launch ``tailscaled`` and wait until its control socket exists.

        Raises:
            MeshError: If a binary is missing, the daemon exits early, or
                the socket does not appear within ``startup_timeout``.
        """
        daemon_bin = _which(self._tailscaled_bin)
        _which(self._tailscale_bin)

        self.state_dir.mkdir(parents=True, exist_ok=True)
        if self.socket_path.exists():
            self.socket_path.unlink()

        args = [
            daemon_bin,
            "--tun=userspace-networking",
            f"--statedir={self.state_dir}",
            f"--socket={self.socket_path}",
        ]
        self.output.debug(f"Starting Tailscale node: {' '.join(args)}")
        self._daemon_log = open(self.state_dir / _LOG_FILE_NAME, "ab")
        try:
            self._daemon = subprocess.Popen(
                args,
                stdout=self._daemon_log,
                stderr=subprocess.STDOUT,
            )
        except OSError as exc:
            self._close_log()
            raise MeshError(f"Failed to start {daemon_bin}: {exc}") from exc

        deadline = time.monotonic() + self._startup_timeout
        while not self.socket_path.exists():
            code = self._daemon.poll()
            if code is not None:
                self._daemon = None
                self._close_log()
                raise MeshError(
                    f"tailscaled exited with status {code}; "
                    f"see {self.state_dir / _LOG_FILE_NAME}"
                )
            if time.monotonic() >= deadline:
                self.close()
                raise MeshError(
                    f"tailscaled did not come up within {self._startup_timeout:g}s"
                )
            time.sleep(0.1)

    def close(self) -> None:
        """Stop the daemon, killing it if it does not exit within five seconds."""
        if self._daemon is not None:
            self.output.debug("Stopping Tailscale node")
            self._daemon.terminate()
            try:
                self._daemon.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._daemon.kill()
                self._daemon.wait()
            self._daemon = None
        self._close_log()

    # ------------------------------------------------------------------ #
    # Tailscale CLI operations
    # ------------------------------------------------------------------ #

    def join(self, auth_key: str) -> None:
        """Join the tailnet with *auth_key* under :attr:`hostname`.

        Raises:
            MeshError: If ``tailscale up`` fails or times out.
        """
        if not auth_key:
            raise MeshError("Cannot join the tailnet without an auth key")

        key_file = self.state_dir / _KEY_FILE_NAME
        _write_private(key_file, auth_key)
        try:
            self._run(
                "up",
                f"--auth-key=file:{key_file}",
                f"--hostname={self.hostname}",
                f"--timeout={self._join_timeout:g}s",
                timeout=self._join_timeout + 5,
            )
        finally:
            key_file.unlink(missing_ok=True)
        self.output.debug(f"Joined tailnet as {self.hostname}")

    def dns_name(self) -> str:
        """Return the node's MagicDNS name (e.g. ``grafana.tail1234.ts.net``).

        Falls back to :attr:`hostname` when the status carries no DNS name.

        Raises:
            MeshError: If ``tailscale status`` fails or prints invalid JSON.
        """
        result = self._run("status", "--json", timeout=15)
        try:
            status = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise MeshError(f"Unreadable tailscale status output: {exc}") from exc
        dns_name = (status.get("Self") or {}).get("DNSName", "")
        return dns_name.rstrip(".") or self.hostname

    def serve(self, target_port: int) -> None:
        """Proxy HTTPS on port 443 of the node to ``localhost:<target_port>``.

        Blocks until ``tailscale serve`` exits (normally on Ctrl-C).

        Raises:
            MeshError: If ``tailscale serve`` fails to run or exits with an
                error status.
        """
        args = self._cli_args("serve", "--https=443", f"http://localhost:{target_port}")
        self.output.debug(f"Running: {' '.join(args)}")
        try:
            result = subprocess.run(args)
        except OSError as exc:
            raise MeshError(f"Failed to run tailscale serve: {exc}") from exc
        if result.returncode != 0:
            raise MeshError(f"tailscale serve exited with status {result.returncode}")

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _cli_args(self, *args: str) -> list[str]:
        return [self._tailscale_bin, f"--socket={self.socket_path}", *args]

    def _run(self, *args: str, timeout: float) -> subprocess.CompletedProcess:
        cmd = self._cli_args(*args)
        self.output.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            raise MeshError(f"tailscale {args[0]} timed out after {timeout:g}s") from exc
        except OSError as exc:
            raise MeshError(f"Failed to run tailscale {args[0]}: {exc}") from exc

        if result.returncode != 0:
            detail = result.stderr.strip().splitlines()[-1:] or ["no output"]
            raise MeshError(
                f"tailscale {args[0]} failed with status {result.returncode}: {detail[0]}"
            )
        return result

    def _close_log(self) -> None:
        if self._daemon_log is not None:
            self._daemon_log.close()
            self._daemon_log = None


def _which(binary: str) -> str:
    """Resolve *binary* on ``PATH``, raising :class:`MeshError` when absent."""
    resolved = shutil.which(binary)
    if resolved is None:
        raise MeshError(
            f"'{binary}' not found; install Tailscale or set TS_TAILSCALE_BIN / TS_TAILSCALED_BIN"
        )
    return resolved


def _write_private(path: Path, content: str) -> None:
    """Write *content* to *path* readable by the owner only."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)
