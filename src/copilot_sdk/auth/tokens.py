"""Copilot access-token lifecycle.

The :class:`TokenManager` owns the in-memory :class:`CredentialRecord`.  It
decides whether the short-lived Copilot token is still usable, exchanges the
GitHub identity token for a new one when it is not, and persists every
successful exchange through the :class:`CredentialStore`.

At most one exchange runs per manager: concurrent callers of
:meth:`TokenManager.refresh` await the same in-flight task.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable

import httpx

from copilot_sdk.auth.store import CredentialStore
from copilot_sdk.config import SdkConfig
from copilot_sdk.errors import AuthenticationError, CopilotError
from copilot_sdk.events.bus import EventBus, emit
from copilot_sdk.headers import identity_headers
from copilot_sdk.types import CredentialRecord, EventType

_logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class TokenManager:
    """Acquire, validate, refresh and persist the Copilot access token."""

    def __init__(
        self,
        store: CredentialStore,
        http: httpx.AsyncClient,
        config: SdkConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
        bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._http = http
        self._config = config or SdkConfig()
        self._clock = clock
        self._bus = bus
        self._record: CredentialRecord | None = None
        self._inflight: asyncio.Task[CredentialRecord] | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def record(self) -> CredentialRecord | None:
        return self._record

    @property
    def principal(self) -> str | None:
        return self._record.principal if self._record else None

    @property
    def access_token(self) -> str | None:
        return self._record.access_token if self._record else None

    @property
    def token_expiry(self) -> datetime | None:
        if not self._record or self._record.access_token_expiry is None:
            return None
        return datetime.fromtimestamp(self._record.access_token_expiry, tz=timezone.utc)

    def load(self) -> CredentialRecord:
        """Read the record from the store, replacing the in-memory one."""
        self._record = self._store.load()
        _logger.debug("Loaded credential record from %s", self._store.path)
        return self._record

    def is_valid(
        self,
        now: float | None = None,
        skew_seconds: int | None = None,
    ) -> bool:
        """True iff an access token is held and outlives ``now + skew``."""
        record = self._record
        if record is None or not record.has_access_token:
            return False
        if now is None:
            now = self._clock()
        if skew_seconds is None:
            skew_seconds = self._config.refresh_buffer
        return record.access_token_expiry > now + skew_seconds

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def ensure_valid(self) -> CredentialRecord:
        """Return a record whose access token is usable, refreshing if needed."""
        if self._record is None:
            self.load()
        if self.is_valid():
            return self._record
        return await self.refresh()

    async def refresh(self) -> CredentialRecord:
        """Exchange the identity token for a new access token.

        Concurrent calls share one exchange.  The shared task is shielded so a
        cancelled caller does not abort the refresh for the others.
        """
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._exchange())
        task = self._inflight
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._inflight is task:
                self._inflight = None

    async def bootstrap(
        self,
        identity_token: str,
        principal: str | None = None,
    ) -> CredentialRecord:
        """Start a fresh record from a newly granted identity token."""
        self._record = CredentialRecord(
            identity_token=identity_token,
            created_at=utc_now_iso(),
            principal=principal,
        )
        return await self.refresh()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _exchange(self) -> CredentialRecord:
        record = self._record
        if record is None or not record.identity_token:
            raise AuthenticationError(
                "No GitHub token found. Run 'copilot-sdk auth' first."
            )

        url = f"{self._config.endpoints.github_api_url.rstrip('/')}/copilot_internal/v2/token"
        try:
            resp = await self._http.get(
                url, headers=identity_headers(record.identity_token, self._config.client),
            )
        except httpx.HTTPError as exc:
            raise CopilotError(f"Could not reach GitHub to refresh the Copilot token: {exc}") from exc

        if not resp.is_success:
            raise _exchange_error(resp)

        try:
            data = resp.json()
            token = data["token"]
            expires_at = int(data["expires_at"])
            refresh_in = int(data.get("refresh_in", 0))
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthenticationError(
                "Copilot token response was malformed",
                resp.status_code,
                resp.text,
            ) from exc

        record.apply_exchange(token, expires_at, refresh_in)
        self._store.save(record)
        _logger.info(
            "Refreshed Copilot token (expires_at=%d, refresh_in=%ds)",
            expires_at, refresh_in,
        )
        await emit(
            self._bus, EventType.TOKEN_REFRESHED,
            expires_at=expires_at, refresh_in=refresh_in,
        )
        return record


def _exchange_error(resp: httpx.Response) -> AuthenticationError:
    status = resp.status_code
    body = resp.text
    if status in (401, 403):
        return AuthenticationError(
            "GitHub rejected the stored token; it may have expired or been "
            "revoked. Run 'copilot-sdk auth' again.",
            status,
            body,
        )
    if status == 404:
        return AuthenticationError(
            "Copilot subscription not found. Make sure your GitHub account "
            "has an active Copilot subscription.",
            status,
            body,
        )
    return AuthenticationError("Failed to refresh Copilot token", status, body)


async def fetch_principal(
    http: httpx.AsyncClient,
    identity_token: str,
    config: SdkConfig | None = None,
) -> str:
    """Return the GitHub login that owns *identity_token*."""
    config = config or SdkConfig()
    url = f"{config.endpoints.github_api_url.rstrip('/')}/user"
    try:
        resp = await http.get(url, headers=identity_headers(identity_token, config.client))
    except httpx.HTTPError as exc:
        raise CopilotError(f"Failed to get user info: {exc}") from exc
    if not resp.is_success:
        raise AuthenticationError("Failed to get user info", resp.status_code, resp.text)
    try:
        return resp.json()["login"]
    except (ValueError, KeyError, TypeError) as exc:
        raise CopilotError("User info response was malformed", resp.status_code) from exc
