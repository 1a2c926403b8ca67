"""Tests for tsrouter.config -- XDG paths, settings sources, credential references."""

from __future__ import annotations

import stat
from pathlib import Path

import pytest

from tsrouter.config import (
    API_BASE,
    TOKEN_URL,
    Settings,
    default_env_files,
    get_config_dir,
    get_data_dir,
    get_instance_dir,
    load_settings,
    resolve_credential,
)
from tsrouter.exceptions import ConfigurationError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_env(path: Path, **values: str) -> Path:
    """Write ``KEY=value`` lines to *path*, creating parent dirs."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(f"{k}={v}\n" for k, v in values.items()), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# XDG path resolution
# ---------------------------------------------------------------------------


class TestXDGPaths:
    def test_config_dir_respects_xdg(self, isolated_config: Path) -> None:
        assert get_config_dir() == isolated_config / "config" / "tsrouter"
        assert get_config_dir().is_dir()

    def test_config_dir_not_created_on_request(self, isolated_config: Path) -> None:
        path = get_config_dir(create=False)
        assert not path.exists()

    def test_data_dir_respects_xdg(self, isolated_config: Path) -> None:
        assert get_data_dir() == isolated_config / "data" / "tsrouter"

    def test_fallback_on_non_xdg_platform(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("tsrouter.config._is_xdg_platform", lambda: False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))
        assert get_config_dir() == tmp_path / ".tsrouter"
        assert get_data_dir() == tmp_path / ".tsrouter" / "data"


class TestInstanceDir:
    def test_per_hostname_directory(self, isolated_config: Path) -> None:
        path = get_instance_dir("grafana")
        assert path == isolated_config / "data" / "tsrouter" / "nodes" / "grafana"
        assert stat.S_IMODE(path.stat().st_mode) == 0o700

    def test_distinct_hostnames_do_not_share_state(self, isolated_config: Path) -> None:
        assert get_instance_dir("a") != get_instance_dir("b")

    @pytest.mark.parametrize("hostname", ["", ".", "..", "a/b", "/etc"])
    def test_invalid_hostname(self, isolated_config: Path, hostname: str) -> None:
        with pytest.raises(ConfigurationError):
            get_instance_dir(hostname)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettingsDefaults:
    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)  # type: ignore[call-arg]
        assert settings.client_id == ""
        assert settings.client_secret.get_secret_value() == ""
        assert settings.tags == ["tag:server"]
        assert settings.key_expiry_days == 14
        assert settings.api_base == API_BASE
        assert settings.token_url == TOKEN_URL
        assert settings.request_timeout == 30.0

    def test_secret_not_in_repr(self) -> None:
        settings = Settings(_env_file=None, client_secret="super-secret-value")  # type: ignore[call-arg]
        assert "super-secret-value" not in repr(settings)


class TestLoadSettings:
    def test_reads_environment(self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TS_CLIENT_ID", "abc")
        monkeypatch.setenv("TS_CLIENT_SECRET", "xyz")
        monkeypatch.setenv("TS_TAILNET", "example.com")
        monkeypatch.setenv("TS_TAGS", '["tag:ci", "tag:web"]')
        monkeypatch.setenv("TS_KEY_EXPIRY_DAYS", "3")

        settings = load_settings()

        assert settings.client_id == "abc"
        assert settings.client_secret.get_secret_value() == "xyz"
        assert settings.tailnet == "example.com"
        assert settings.tags == ["tag:ci", "tag:web"]
        assert settings.key_expiry_days == 3

    def test_comma_separated_lists(self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TS_TAGS", "tag:ci, tag:web")
        monkeypatch.setenv("TS_OAUTH_SCOPES", "devices:core,auth_keys")

        settings = load_settings()

        assert settings.tags == ["tag:ci", "tag:web"]
        assert settings.oauth_scopes == ["devices:core", "auth_keys"]

    def test_single_tag(self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TS_TAGS", "tag:ci")
        assert load_settings().tags == ["tag:ci"]

    def test_reads_cwd_env_file(self, isolated_config: Path) -> None:
        _write_env(isolated_config / ".env", TS_CLIENT_ID="from-dotenv", TS_TAILNET="example")
        settings = load_settings()
        assert settings.client_id == "from-dotenv"
        assert settings.tailnet == "example"

    def test_cwd_env_file_overrides_user_env_file(self, isolated_config: Path) -> None:
        _write_env(get_config_dir() / ".env", TS_CLIENT_ID="user", TS_TAILNET="user-tailnet")
        _write_env(isolated_config / ".env", TS_CLIENT_ID="project")
        settings = load_settings()
        assert settings.client_id == "project"
        assert settings.tailnet == "user-tailnet"

    def test_environment_overrides_env_file(self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        _write_env(isolated_config / ".env", TS_CLIENT_ID="from-dotenv")
        monkeypatch.setenv("TS_CLIENT_ID", "from-env")
        assert load_settings().client_id == "from-env"

    def test_explicit_overrides_win_and_none_is_ignored(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TS_TAILNET", "from-env")
        monkeypatch.setenv("TS_CLIENT_ID", "abc")
        settings = load_settings(tailnet="explicit", client_id=None)
        assert settings.tailnet == "explicit"
        assert settings.client_id == "abc"

    def test_missing_env_files_are_skipped(self, isolated_config: Path) -> None:
        settings = load_settings(env_files=[isolated_config / "nope.env"])
        assert settings.tailnet == ""

    def test_invalid_value_raises_configuration_error(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TS_KEY_EXPIRY_DAYS", "zero")
        with pytest.raises(ConfigurationError, match="Invalid settings"):
            load_settings()

    def test_non_positive_expiry_rejected(self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TS_KEY_EXPIRY_DAYS", "0")
        with pytest.raises(ConfigurationError):
            load_settings()

    def test_default_env_files_order(self, isolated_config: Path) -> None:
        user_file, cwd_file = default_env_files()
        assert user_file == isolated_config / "config" / "tsrouter" / ".env"
        assert cwd_file == isolated_config / ".env"


class TestRequireTailnet:
    def test_returns_stripped_name(self) -> None:
        settings = Settings(_env_file=None, tailnet="  example.com ")  # type: ignore[call-arg]
        assert settings.require_tailnet() == "example.com"

    @pytest.mark.parametrize("value", ["", "   "])
    def test_missing_tailnet(self, value: str) -> None:
        settings = Settings(_env_file=None, tailnet=value)  # type: ignore[call-arg]
        with pytest.raises(ConfigurationError, match="TS_TAILNET"):
            settings.require_tailnet()


# ---------------------------------------------------------------------------
# Credential sources
# ---------------------------------------------------------------------------


class TestResolveCredential:
    def test_literal(self) -> None:
        assert resolve_credential("tskey-client-123") == "tskey-client-123"

    def test_env_reference(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MY_SECRET", "s3cr3t")
        assert resolve_credential("env:MY_SECRET") == "s3cr3t"

    def test_missing_env_reference(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MY_SECRET", raising=False)
        with pytest.raises(ConfigurationError, match="MY_SECRET"):
            resolve_credential("env:MY_SECRET")

    def test_file_reference_is_stripped(self, tmp_path: Path) -> None:
        secret_file = tmp_path / "secret"
        secret_file.write_text("s3cr3t\n", encoding="utf-8")
        assert resolve_credential(f"file:{secret_file}") == "s3cr3t"

    def test_missing_file_reference(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            resolve_credential(f"file:{tmp_path / 'missing'}")

    def test_oauth_credentials_resolves_both(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        secret_file = tmp_path / "secret"
        secret_file.write_text("xyz", encoding="utf-8")
        monkeypatch.setenv("CLIENT", "abc")
        settings = Settings(  # type: ignore[call-arg]
            _env_file=None, client_id="env:CLIENT", client_secret=f"file:{secret_file}"
        )
        assert settings.oauth_credentials() == ("abc", "xyz")

    def test_oauth_credentials_empty_passthrough(self) -> None:
        settings = Settings(_env_file=None)  # type: ignore[call-arg]
        assert settings.oauth_credentials() == ("", "")
