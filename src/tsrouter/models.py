"""Pydantic models for Tailscale API requests and responses.

**Request models** -- built locally and serialised as the JSON body of
``POST /tailnet/{tailnet}/keys``:
    :class:`DeviceCreateCapabilities`, :class:`DeviceCapabilities`,
    :class:`KeyCapabilities`, and :class:`AuthKeyRequest`.

**Response models** -- decoded from API responses:
    :class:`AuthKeyRecord` and :class:`Device`.

Field names follow Python conventions; the API's camelCase names are mapped
with aliases. Response models ignore unknown fields so that additions on the
provider side do not break decoding.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from tsrouter.output import redact


# --- Auth key request ---


class DeviceCreateCapabilities(BaseModel):
    """Capabilities granted to devices that join with the key.

    The defaults describe a key for a throwaway node: usable once, removed
    by the provider some time after going offline, and admitted without
    manual approval.
    """

    reusable: bool = False
    ephemeral: bool = True
    preauthorized: bool = True
    tags: list[str] = Field(default_factory=lambda: ["tag:server"])


class DeviceCapabilities(BaseModel):
    create: DeviceCreateCapabilities = Field(default_factory=DeviceCreateCapabilities)


class KeyCapabilities(BaseModel):
    devices: DeviceCapabilities = Field(default_factory=DeviceCapabilities)


class AuthKeyRequest(BaseModel):
    """Body of an auth-key creation request.

    ``expires`` is the absolute expiry the request was derived from. It is
    kept for diagnostics only and is not part of the serialised body;
    ``expiry_seconds`` is what the API receives.

    Example::

        AuthKeyRequest(
            capabilities=KeyCapabilities(),
            expiry_seconds=1209600,
            expires=datetime(2024, 1, 15, tzinfo=timezone.utc),
        ).to_json()
    """

    model_config = ConfigDict(populate_by_name=True)

    capabilities: KeyCapabilities = Field(default_factory=KeyCapabilities)
    expiry_seconds: int = Field(alias="expirySeconds", gt=0)
    expires: datetime = Field(exclude=True)

    def to_json(self) -> str:
        """Return the request body as a JSON string with API field names."""
        return self.model_dump_json(by_alias=True)


# --- Responses ---


class AuthKeyRecord(BaseModel):
    """An auth key issued by the provider.

    ``key`` is a :class:`~pydantic.SecretStr` so that it never shows up in
    ``repr()`` or default serialisation; call ``key.get_secret_value()`` to
    hand it to the tailnet join step.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    key: SecretStr
    created: datetime
    expires: datetime
    ephemeral: bool = False

    def to_display(self, reveal: bool = False) -> dict[str, Any]:
        """Return a printable dict, with the key redacted unless *reveal* is set."""
        secret = self.key.get_secret_value()
        return {
            "id": self.id,
            "key": secret if reveal else redact(secret),
            "created": self.created.isoformat(),
            "expires": self.expires.isoformat(),
            "ephemeral": self.ephemeral,
        }


class Device(BaseModel):
    """A device entry from ``GET /tailnet/{tailnet}/devices``."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = ""
    name: str = ""
    hostname: str = ""
    os: str = ""
    addresses: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    last_seen: str = Field(default="", alias="lastSeen")
