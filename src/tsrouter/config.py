"""Configuration management: environment/.env settings, XDG paths, secret sources.

This module handles everything tsrouter reads from its surroundings:

* **Directories** -- ``$XDG_CONFIG_HOME/tsrouter`` and ``$XDG_DATA_HOME/tsrouter``
  on Linux/BSD, ``~/.tsrouter/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`. Each hostname gets its own node state directory
  (:func:`get_instance_dir`).
* **Settings** -- :class:`Settings` reads ``TS_*`` environment variables
  and ``.env`` files (see :func:`default_env_files`) via pydantic-settings.
* **Secret sources** -- :func:`resolve_credential` lets the OAuth client id
  and secret be given literally, or as ``env:VAR`` / ``file:/path``
  references.

There is no placeholder tailnet: a missing ``TS_TAILNET`` raises
:class:`~tsrouter.exceptions.ConfigurationError` before any request is made.
"""

from __future__ import annotations

import json
import os
import platform
from pathlib import Path
from typing import Annotated, Any, Optional, Sequence

from pydantic import Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from tsrouter.exceptions import ConfigurationError

_APP_NAME = "tsrouter"
_ENV_FILENAME = ".env"

API_BASE = "https://api.tailscale.com/api/v2"
TOKEN_URL = "https://api.tailscale.com/api/v2/oauth/token"


# --- Directories ---


def _is_xdg_platform() -> bool:
    system = platform.system()
    return system == "Linux" or system.endswith("BSD")


def _app_dir(xdg_var: str, xdg_default: str, fallback: str) -> Path:
    """Resolve an application directory.

    XDG platforms use ``$<xdg_var>/tsrouter`` (``~/<xdg_default>/tsrouter``
    when the variable is unset or empty); others use ``~/.tsrouter/<fallback>``.
    """
    if not _is_xdg_platform():
        return Path.home() / f".{_APP_NAME}" / fallback
    base = os.environ.get(xdg_var) or str(Path.home() / xdg_default)
    return Path(base) / _APP_NAME


def get_config_dir(create: bool = True) -> Path:
    """Directory of the per-user ``.env`` file.

    ``$XDG_CONFIG_HOME/tsrouter`` on Linux/BSD, ``~/.tsrouter`` elsewhere.
    """
    path = _app_dir("XDG_CONFIG_HOME", ".config", "")
    if create:
        path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Directory for node state and crash logs, created on demand.

    ``$XDG_DATA_HOME/tsrouter`` on Linux/BSD, ``~/.tsrouter/data`` elsewhere.
    """
    path = _app_dir("XDG_DATA_HOME", ".local/share", "data")
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_instance_dir(hostname: str) -> Path:
    """Return the Tailscale state directory for *hostname*, creating it with mode 0700.

    Raises:
        ConfigurationError: If *hostname* is empty or contains a path separator.
    """
    if not hostname or "/" in hostname or hostname in (".", ".."):
        raise ConfigurationError(f"Invalid hostname: {hostname!r}")
    path = get_data_dir() / "nodes" / hostname
    path.mkdir(parents=True, exist_ok=True)
    path.chmod(0o700)
    return path


# --- Settings ---


def default_env_files() -> tuple[Path, ...]:
    """``.env`` files consulted by :func:`load_settings`, lowest precedence first.

    The per-user file in the config directory comes first, so a ``.env`` in
    the working directory overrides it. Real environment variables override
    both. Missing files are skipped.
    """
    return (
        get_config_dir(create=False) / _ENV_FILENAME,
        Path.cwd() / _ENV_FILENAME,
    )


class Settings(BaseSettings):
    """Runtime settings read from ``TS_*`` environment variables and ``.env`` files.

    ``client_id`` and ``client_secret`` may hold ``env:VAR`` or
    ``file:/path`` references; use :meth:`oauth_credentials` to get the
    resolved values.
    """

    model_config = SettingsConfigDict(
        env_prefix="TS_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    client_id: str = Field(default="", description="OAuth client id")
    client_secret: SecretStr = Field(default=SecretStr(""), description="OAuth client secret")
    tailnet: str = Field(default="", description="Tailnet name, e.g. example.com")
    tags: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["tag:server"],
        description="ACL tags applied to devices joining with the key, comma-separated or a JSON array",
    )
    key_expiry_days: int = Field(default=14, gt=0, description="Auth key expiry window in days")
    oauth_scopes: Annotated[list[str], NoDecode] = Field(
        default_factory=list, description="Optional OAuth scopes, comma-separated or a JSON array"
    )
    api_base: str = Field(default=API_BASE, description="Tailscale API base URL")
    token_url: str = Field(default=TOKEN_URL, description="OAuth token endpoint")
    request_timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")
    tailscale_bin: str = Field(default="tailscale", description="tailscale CLI binary")
    tailscaled_bin: str = Field(default="tailscaled", description="tailscaled daemon binary")

    @field_validator("tags", "oauth_scopes", mode="before")
    @classmethod
    def _split_list(cls, value: Any) -> Any:
        """Accept ``tag:a,tag:b`` as well as ``["tag:a", "tag:b"]``."""
        if not isinstance(value, str):
            return value
        value = value.strip()
        if value.startswith("["):
            return json.loads(value)
        return [item.strip() for item in value.split(",") if item.strip()]

    def oauth_credentials(self) -> tuple[str, str]:
        """Return the resolved ``(client_id, client_secret)`` pair.

        Empty values are returned as-is; the token exchange reports them
        when the token is first needed.

        Raises:
            ConfigurationError: If an ``env:`` or ``file:`` reference cannot
                be resolved.
        """
        client_id = resolve_credential(self.client_id) if self.client_id else ""
        secret = self.client_secret.get_secret_value()
        client_secret = resolve_credential(secret) if secret else ""
        return client_id, client_secret

    def require_tailnet(self) -> str:
        """Return the configured tailnet name.

        Raises:
            ConfigurationError: If ``TS_TAILNET`` is unset or blank.
        """
        tailnet = self.tailnet.strip()
        if not tailnet:
            raise ConfigurationError(
                "TS_TAILNET is not set; export it or add it to a .env file"
            )
        return tailnet


def load_settings(env_files: Optional[Sequence[Path]] = None, **overrides: object) -> Settings:
    """Load :class:`Settings` from the environment and ``.env`` files.

    Args:
        env_files: ``.env`` files to read, lowest precedence first. Defaults
            to :func:`default_env_files`.
        **overrides: Explicit values (e.g. from CLI flags) that take
            precedence over every other source. ``None`` values are ignored.

    Raises:
        ConfigurationError: If a setting fails validation.
    """
    files = tuple(env_files) if env_files is not None else default_env_files()
    explicit = {k: v for k, v in overrides.items() if v is not None}
    try:
        return Settings(_env_file=files, **explicit)  # type: ignore[call-arg]
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid settings: {exc}") from exc


# --- Secret references ---


def resolve_credential(source: str) -> str:
    """Return the value a credential setting refers to.

    ``env:NAME`` reads environment variable ``NAME``, ``file:PATH`` reads
    the file at ``PATH`` (``~`` expanded, surrounding whitespace stripped).
    Any other string is the credential itself.

    Raises:
        ConfigurationError: If the variable is unset or the file is missing
            or unreadable.
    """
    kind, _, ref = source.partition(":")
    if kind == "env":
        try:
            return os.environ[ref]
        except KeyError:
            raise ConfigurationError(f"{source}: environment variable {ref} is not set") from None
    if kind == "file":
        path = Path(ref).expanduser()
        try:
            return path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            raise ConfigurationError(f"{source}: credential file not found") from None
        except OSError as exc:
            raise ConfigurationError(f"{source}: cannot read credential file: {exc}") from exc
    return source
