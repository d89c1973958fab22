"""OAuth device-authorization grant against GitHub.

The flow is a small state machine::

    REQUESTED -> POLLING -> GRANTED | EXPIRED | DENIED

``request_device_session`` obtains the codes shown to the user;
``poll_for_grant`` then polls until the user approves, the provider refuses,
or the session deadline passes.  Waiting goes through an injectable
``sleep`` and ``clock`` so tests can run the loop without real delays.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, NoReturn

import httpx

from copilot_sdk.cancellation import CancellationToken, run_cancellable
from copilot_sdk.config import SdkConfig
from copilot_sdk.errors import DeviceFlowError
from copilot_sdk.events.bus import EventBus, emit
from copilot_sdk.headers import device_flow_headers
from copilot_sdk.types import DeviceSession, EventType

_logger = logging.getLogger(__name__)

DEVICE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

# Added to the provider's interval so polls never arrive early
POLL_MARGIN_SECONDS = 1
# Extra wait before the poll that follows a slow_down answer
SLOW_DOWN_BACKOFF_SECONDS = 5

Sleeper = Callable[[float], Awaitable[Any]]
Clock = Callable[[], float]


class DeviceFlowState(enum.Enum):
    REQUESTED = "requested"
    POLLING = "polling"
    GRANTED = "granted"
    EXPIRED = "expired"
    DENIED = "denied"


class PollOutcome(enum.Enum):
    GRANTED = "granted"
    PENDING = "authorization_pending"
    SLOW_DOWN = "slow_down"
    EXPIRED = "expired_token"
    DENIED = "denied"


@dataclass
class PollResult:
    """Classified answer to one poll request."""

    outcome: PollOutcome
    access_token: str | None = None
    error: str | None = None
    description: str | None = None

    @property
    def terminal(self) -> bool:
        return self.outcome not in (PollOutcome.PENDING, PollOutcome.SLOW_DOWN)


def classify_poll_response(data: dict[str, Any]) -> PollResult:
    """Map a token-endpoint JSON body onto a :class:`PollOutcome`."""
    token = data.get("access_token")
    if token:
        return PollResult(PollOutcome.GRANTED, access_token=token)

    error = data.get("error")
    description = data.get("error_description")
    if error == "authorization_pending":
        return PollResult(PollOutcome.PENDING, error=error)
    if error == "slow_down":
        return PollResult(PollOutcome.SLOW_DOWN, error=error)
    if error == "expired_token":
        return PollResult(PollOutcome.EXPIRED, error=error, description=description)
    if error:
        return PollResult(PollOutcome.DENIED, error=error, description=description)
    return PollResult(
        PollOutcome.DENIED,
        description="Unexpected response from the token endpoint",
    )


class DeviceAuthorizer:
    """Drive the device-code -> poll -> identity-token exchange."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        config: SdkConfig | None = None,
        *,
        sleep: Sleeper = asyncio.sleep,
        clock: Clock = time.monotonic,
        bus: EventBus | None = None,
    ) -> None:
        self._http = http
        self._config = config or SdkConfig()
        self._sleep = sleep
        self._clock = clock
        self._bus = bus
        self.state = DeviceFlowState.REQUESTED

    @property
    def _github_url(self) -> str:
        return self._config.endpoints.github_url.rstrip("/")

    # ------------------------------------------------------------------
    # Device code
    # ------------------------------------------------------------------

    async def request_device_session(self, scopes: str | None = None) -> DeviceSession:
        """Ask GitHub for a device code and user code."""
        self.state = DeviceFlowState.REQUESTED
        body = {
            "client_id": self._config.client.client_id,
            "scope": scopes or self._config.scopes,
        }
        try:
            resp = await self._http.post(
                f"{self._github_url}/login/device/code",
                json=body,
                headers=device_flow_headers(),
            )
        except httpx.HTTPError as exc:
            raise DeviceFlowError(f"Failed to get device code: {exc}") from exc

        if not resp.is_success:
            raise DeviceFlowError(
                "Failed to get device code", status=resp.status_code, body=resp.text,
            )
        data = _json_object(resp, "device code")

        try:
            session = DeviceSession(
                device_code=data["device_code"],
                user_code=data["user_code"],
                verification_uri=data["verification_uri"],
                poll_interval_seconds=int(data.get("interval", 5)),
                expires_in_seconds=int(data.get("expires_in", 900)),
                started_at=self._clock(),
            )
        except KeyError as exc:
            raise DeviceFlowError(
                f"Device code response is missing {exc.args[0]!r}",
            ) from exc

        _logger.info(
            "Device session started (interval=%ds, expires_in=%ds)",
            session.poll_interval_seconds, session.expires_in_seconds,
        )
        await emit(
            self._bus, EventType.AUTH_DEVICE_CODE,
            user_code=session.user_code,
            verification_uri=session.verification_uri,
            expires_in=session.expires_in_seconds,
        )
        return session

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def poll_once(self, session: DeviceSession) -> PollResult:
        """Issue a single token request and classify the answer."""
        body = {
            "client_id": self._config.client.client_id,
            "device_code": session.device_code,
            "grant_type": DEVICE_GRANT_TYPE,
        }
        try:
            resp = await self._http.post(
                f"{self._github_url}/login/oauth/access_token",
                json=body,
                headers=device_flow_headers(),
            )
        except httpx.HTTPError as exc:
            raise DeviceFlowError(f"Polling for authorization failed: {exc}") from exc
        return classify_poll_response(_json_object(resp, "access token"))

    async def poll_for_grant(
        self,
        session: DeviceSession,
        cancel: CancellationToken | None = None,
    ) -> str:
        """Poll until the user approves; return the identity token.

        Raises :class:`DeviceFlowError` on expiry or refusal and
        :class:`~copilot_sdk.errors.OperationCancelled` when *cancel* fires.
        """
        self.state = DeviceFlowState.POLLING
        if session.started_at is None:
            session.started_at = self._clock()
        deadline = session.started_at + session.expires_in_seconds
        base_wait = session.poll_interval_seconds + POLL_MARGIN_SECONDS
        wait = base_wait

        while True:
            if self._clock() + wait >= deadline:
                await self._fail(
                    DeviceFlowState.EXPIRED, "expired_token",
                    "Device code expired. Please run auth again.",
                )
            await run_cancellable(self._sleep(wait), cancel)
            result = await run_cancellable(self.poll_once(session), cancel)
            _logger.debug("Device poll outcome: %s", result.outcome.value)

            if result.outcome is PollOutcome.GRANTED:
                self.state = DeviceFlowState.GRANTED
                _logger.info("Device authorization granted")
                await emit(self._bus, EventType.AUTH_GRANTED)
                return result.access_token or ""

            if result.outcome is PollOutcome.PENDING:
                await emit(self._bus, EventType.AUTH_PENDING)
                wait = base_wait
                continue

            if result.outcome is PollOutcome.SLOW_DOWN:
                await emit(self._bus, EventType.AUTH_SLOW_DOWN)
                wait = base_wait + SLOW_DOWN_BACKOFF_SECONDS
                continue

            if result.outcome is PollOutcome.EXPIRED:
                await self._fail(
                    DeviceFlowState.EXPIRED, "expired_token",
                    "Device code expired. Please run auth again.",
                )

            await self._fail(
                DeviceFlowState.DENIED, result.error,
                result.description or result.error or "Authorization denied",
            )

    async def authorize(
        self,
        scopes: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> str:
        """Run the whole flow and return the identity token."""
        session = await run_cancellable(self.request_device_session(scopes), cancel)
        return await self.poll_for_grant(session, cancel)

    async def _fail(
        self, state: DeviceFlowState, reason: str | None, message: str,
    ) -> NoReturn:
        self.state = state
        _logger.info("Device authorization ended: %s", state.value)
        await emit(self._bus, EventType.AUTH_FAILED, reason=reason, message=message)
        raise DeviceFlowError(message, reason=reason)


def _json_object(resp: httpx.Response, what: str) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as exc:
        raise DeviceFlowError(
            f"Invalid {what} response", status=resp.status_code, body=resp.text,
        ) from exc
    if not isinstance(data, dict):
        raise DeviceFlowError(
            f"Invalid {what} response", status=resp.status_code, body=resp.text,
        )
    return data
