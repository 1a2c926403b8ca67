"""Auth-key provisioning: turn OAuth client credentials into a tailnet join key.

The workflow is a single, strictly ordered request/response sequence:

1. :func:`build_key_request` derives the expiry and ``expirySeconds`` from
   one ``now`` snapshot and describes a non-reusable, ephemeral,
   pre-authorized, tagged key.
2. :func:`provision_auth_key` sends ``POST /tailnet/{tailnet}/keys`` through
   an authenticated :class:`~tsrouter.client.TailscaleAPI` and decodes the
   answer with :func:`parse_auth_key`.
3. :func:`provision_from_settings` wires both steps to the loaded
   :class:`~tsrouter.config.Settings` for the CLI.

Nothing is retried. Every failure raises a
:class:`~tsrouter.exceptions.TsrouterError` subclass and the caller is
expected to abort, since a node cannot join without a key.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Optional, Sequence, TypeVar

import httpx
from pydantic import ValidationError

from tsrouter.client.api import TailscaleAPI, tailnet_path
from tsrouter.config import Settings
from tsrouter.exceptions import (
    MAX_DIAGNOSTIC_BODY,
    CancelledError,
    ConfigurationError,
    DecodeError,
    ProvisioningError,
)
from tsrouter.models import (
    AuthKeyRecord,
    AuthKeyRequest,
    DeviceCapabilities,
    DeviceCreateCapabilities,
    KeyCapabilities,
)
from tsrouter.output import OutputManager, get_output

T = TypeVar("T")

KEY_EXPIRY = timedelta(days=14)
DEFAULT_TAGS: tuple[str, ...] = ("tag:server",)


def build_key_request(
    tags: Sequence[str] = DEFAULT_TAGS,
    expiry: timedelta = KEY_EXPIRY,
    now: Optional[datetime] = None,
) -> AuthKeyRequest:
    """Describe a single-use, ephemeral, pre-authorized key expiring *expiry* from *now*.

    Both ``expires`` and ``expiry_seconds`` come from the same snapshot, so
    ``expires - now`` is exactly ``expiry_seconds``.

    Raises:
        ConfigurationError: If *expiry* is shorter than one second, no tag is
            given, or a tag lacks the ``tag:`` prefix.
    """
    expiry_seconds = int(expiry.total_seconds())
    if expiry_seconds <= 0:
        raise ConfigurationError(f"Key expiry must be positive, got {expiry}")
    # Keys created with OAuth credentials must carry at least one tag.
    if not tags:
        raise ConfigurationError("At least one ACL tag is required for the auth key")
    bad = [t for t in tags if not t.startswith("tag:")]
    if bad:
        raise ConfigurationError(f"ACL tags must start with 'tag:', got: {', '.join(bad)}")

    issued_at = now or datetime.now(timezone.utc)
    create = DeviceCreateCapabilities(
        reusable=False,
        ephemeral=True,
        preauthorized=True,
        tags=list(tags),
    )
    return AuthKeyRequest(
        capabilities=KeyCapabilities(devices=DeviceCapabilities(create=create)),
        expiry_seconds=expiry_seconds,
        expires=issued_at + timedelta(seconds=expiry_seconds),
    )


def parse_auth_key(response: httpx.Response, output: Optional[OutputManager] = None) -> AuthKeyRecord:
    """Decode a key-creation *response* into an :class:`AuthKeyRecord`.

    Raises:
        ProvisioningError: If the status is not 200.
        DecodeError: If the body is not JSON or misses required fields.
    """
    out = output or get_output()
    if response.status_code != 200:
        excerpt = response.text[:MAX_DIAGNOSTIC_BODY]
        out.debug(f"Auth key request failed with status {response.status_code}: {excerpt}")
        raise ProvisioningError(
            f"Failed to generate auth key: HTTP {response.status_code} - {excerpt}",
            status_code=response.status_code,
            body=excerpt,
        )

    body = response.text
    try:
        return AuthKeyRecord.model_validate_json(body)
    except ValidationError as exc:
        out.debug(f"Undecodable auth key response: {body}")
        raise DecodeError(
            f"Failed to decode auth key response: {exc.error_count()} error(s), "
            f"first: {exc.errors()[0]['msg']}",
            body=body,
        ) from exc


async def provision_auth_key(
    api: TailscaleAPI,
    tailnet: str,
    *,
    tags: Sequence[str] = DEFAULT_TAGS,
    expiry: timedelta = KEY_EXPIRY,
    cancel: Optional[asyncio.Event] = None,
    deadline: Optional[float] = None,
    now: Optional[datetime] = None,
    output: Optional[OutputManager] = None,
) -> AuthKeyRecord:
    """Request a new auth key for *tailnet* and return the issued record.

    Args:
        api: An open, authenticated API client.
        tailnet: Tailnet name. Must not be blank.
        tags: ACL tags for devices joining with the key.
        expiry: Key validity window.
        cancel: Setting this event aborts the in-flight request.
        deadline: Upper bound in seconds for the whole operation.
        now: Timestamp the expiry is computed from (defaults to the
            current UTC time).
        output: Diagnostics sink; defaults to the global manager.

    Raises:
        ConfigurationError: If *tailnet* is blank.
        NetworkError: If the API cannot be reached.
        AuthError: If the OAuth credentials are rejected.
        ProvisioningError: If the API does not answer 200.
        DecodeError: If the response cannot be decoded.
        CancelledError: If *cancel* is set or *deadline* passes first.
    """
    out = output or get_output()
    if not tailnet or not tailnet.strip():
        raise ConfigurationError("Tailnet name must not be empty")
    if cancel is not None and cancel.is_set():
        raise CancelledError("Auth key request was cancelled")

    key_request = build_key_request(tags, expiry, now)
    body = key_request.to_json()
    path = tailnet_path(tailnet.strip(), "keys")
    out.debug(f"Sending auth key request to {path}: {body}")

    response = await _run_cancellable(
        api.request("POST", path, content=body, headers={"Content-Type": "application/json"}),
        cancel,
        deadline,
    )

    record = parse_auth_key(response, out)
    out.debug(f"Auth key response: {response.text}")
    out.info(f"Generated auth key {record.id} (expires {record.expires.isoformat()})")
    return record


async def provision_from_settings(
    settings: Settings,
    *,
    tags: Optional[Sequence[str]] = None,
    expiry: Optional[timedelta] = None,
    cancel: Optional[asyncio.Event] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    output: Optional[OutputManager] = None,
) -> AuthKeyRecord:
    """Run the whole workflow from loaded settings: validate the tailnet, exchange the token, provision.

    The OAuth exchange is done eagerly, before the key request, and is
    aborted by *cancel* just like the key request itself.
    """
    out = output or get_output()
    tailnet = settings.require_tailnet()
    if cancel is not None and cancel.is_set():
        raise CancelledError("Auth key request was cancelled")
    async with TailscaleAPI.from_settings(settings, transport=transport, output=out) as api:
        await _run_cancellable(api.validate(), cancel, None, what="OAuth token exchange")
        return await provision_auth_key(
            api,
            tailnet,
            tags=tags if tags else settings.tags,
            expiry=expiry or timedelta(days=settings.key_expiry_days),
            cancel=cancel,
            output=out,
        )


async def _run_cancellable(
    operation: Awaitable[T],
    cancel: Optional[asyncio.Event],
    deadline: Optional[float],
    what: str = "Auth key request",
) -> T:
    """Await *operation*, aborting it when *cancel* is set or *deadline* elapses.

    Cancellation wins over a result that completes in the same step.
    """
    if cancel is None and deadline is None:
        return await operation

    task = asyncio.ensure_future(operation)
    waiters: set[asyncio.Future] = {task}
    cancel_waiter: Optional[asyncio.Future] = None
    if cancel is not None:
        cancel_waiter = asyncio.ensure_future(cancel.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(waiters, timeout=deadline, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            if not waiter.done():
                waiter.cancel()

    cancelled = cancel is not None and cancel.is_set()
    if task in done and not cancelled:
        return task.result()

    # Let the aborted operation unwind before reporting.
    await asyncio.gather(task, return_exceptions=True)
    if cancelled:
        raise CancelledError(f"{what} was cancelled")
    raise CancelledError(f"{what} did not complete within {deadline:g}s")
