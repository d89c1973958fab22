"""Tests for the device-authorization polling state machine."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from copilot_sdk.auth.device import (
    DeviceAuthorizer,
    DeviceFlowState,
    PollOutcome,
    classify_poll_response,
)
from copilot_sdk.cancellation import CancellationToken
from copilot_sdk.errors import DeviceFlowError, OperationCancelled
from copilot_sdk.events.bus import EventBus
from copilot_sdk.types import DeviceSession, EventType

TOKEN_URL = "https://github.com/login/oauth/access_token"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class FakeTime:
    """Deterministic clock advanced by the injected sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _resp(data: dict, status_code: int = 200, url: str = TOKEN_URL) -> httpx.Response:
    return httpx.Response(status_code, json=data, request=httpx.Request("POST", url))


def _pending() -> httpx.Response:
    return _resp({"error": "authorization_pending"})


def _session(interval: int = 1, expires_in: int = 900) -> DeviceSession:
    return DeviceSession(
        device_code="dc_123",
        user_code="ABCD-1234",
        verification_uri="https://github.com/login/device",
        poll_interval_seconds=interval,
        expires_in_seconds=expires_in,
        started_at=0.0,
    )


def _authorizer(responses, fake: FakeTime, bus: EventBus | None = None):
    http = MagicMock(spec=httpx.AsyncClient)
    http.post = AsyncMock(side_effect=responses)
    auth = DeviceAuthorizer(http, sleep=fake.sleep, clock=fake.clock, bus=bus)
    return auth, http


# ---------------------------------------------------------------------------
# classify_poll_response
# ---------------------------------------------------------------------------

class TestClassify:
    @pytest.mark.parametrize("data, outcome", [
        ({"access_token": "gho_x", "token_type": "bearer"}, PollOutcome.GRANTED),
        ({"error": "authorization_pending"}, PollOutcome.PENDING),
        ({"error": "slow_down", "interval": 10}, PollOutcome.SLOW_DOWN),
        ({"error": "expired_token"}, PollOutcome.EXPIRED),
        ({"error": "access_denied"}, PollOutcome.DENIED),
        ({"error": "unsupported_grant_type"}, PollOutcome.DENIED),
        ({}, PollOutcome.DENIED),
    ])
    def test_outcomes(self, data, outcome):
        assert classify_poll_response(data).outcome is outcome

    def test_terminal(self):
        assert not classify_poll_response({"error": "slow_down"}).terminal
        assert classify_poll_response({"access_token": "x"}).terminal


# ---------------------------------------------------------------------------
# poll_for_grant
# ---------------------------------------------------------------------------

class TestPollForGrant:
    @pytest.mark.asyncio
    async def test_slow_down_adds_one_long_backoff(self):
        fake = FakeTime()
        auth, http = _authorizer([
            _pending(),
            _pending(),
            _resp({"error": "slow_down"}),
            _resp({"access_token": "gho_granted"}),
        ], fake)

        token = await auth.poll_for_grant(_session(interval=1))

        assert token == "gho_granted"
        assert http.post.await_count == 4
        # interval + 1 margin, then one wait stretched by the slow_down backoff
        assert fake.sleeps == [2, 2, 2, 7]
        assert auth.state is DeviceFlowState.GRANTED

    @pytest.mark.asyncio
    async def test_backoff_resets_after_slow_down(self):
        fake = FakeTime()
        auth, _ = _authorizer([
            _resp({"error": "slow_down"}),
            _pending(),
            _resp({"access_token": "gho"}),
        ], fake)
        await auth.poll_for_grant(_session(interval=5))
        assert fake.sleeps == [6, 11, 6]

    @pytest.mark.asyncio
    async def test_poll_request_body(self):
        fake = FakeTime()
        auth, http = _authorizer([_resp({"access_token": "gho"})], fake)
        await auth.poll_for_grant(_session())
        url = http.post.call_args.args[0]
        body = http.post.call_args.kwargs["json"]
        assert url == TOKEN_URL
        assert body["device_code"] == "dc_123"
        assert body["grant_type"] == "urn:ietf:params:oauth:grant-type:device_code"

    @pytest.mark.asyncio
    async def test_expired_token_error(self):
        fake = FakeTime()
        auth, _ = _authorizer([_resp({"error": "expired_token"})], fake)
        with pytest.raises(DeviceFlowError) as exc_info:
            await auth.poll_for_grant(_session())
        assert exc_info.value.reason == "expired_token"
        assert auth.state is DeviceFlowState.EXPIRED

    @pytest.mark.asyncio
    async def test_denied_carries_description(self):
        fake = FakeTime()
        auth, _ = _authorizer([
            _resp({"error": "access_denied", "error_description": "The user has denied your application access."}),
        ], fake)
        with pytest.raises(DeviceFlowError, match="denied your application") as exc_info:
            await auth.poll_for_grant(_session())
        assert exc_info.value.reason == "access_denied"
        assert auth.state is DeviceFlowState.DENIED

    @pytest.mark.asyncio
    async def test_session_without_start_is_stamped_on_first_poll(self):
        fake = FakeTime()
        fake.now = 5000.0
        auth, http = _authorizer([_resp({"access_token": "gho"})], fake)
        session = DeviceSession(
            "dc_123", "ABCD-1234", "https://github.com/login/device",
            poll_interval_seconds=5, expires_in_seconds=900,
        )

        assert await auth.poll_for_grant(session) == "gho"
        assert http.post.await_count == 1
        assert session.started_at == 5000.0
        assert session.deadline == 5900.0

    @pytest.mark.asyncio
    async def test_local_deadline_stops_polling(self):
        fake = FakeTime()
        http_responses = [_pending() for _ in range(20)]
        auth, http = _authorizer(http_responses, fake)
        with pytest.raises(DeviceFlowError) as exc_info:
            await auth.poll_for_grant(_session(interval=1, expires_in=10))
        assert exc_info.value.reason == "expired_token"
        assert http.post.await_count == 4
        assert fake.now < 10

    @pytest.mark.asyncio
    async def test_interval_longer_than_lifetime_never_polls(self):
        fake = FakeTime()
        auth, http = _authorizer([], fake)
        with pytest.raises(DeviceFlowError):
            await auth.poll_for_grant(_session(interval=5, expires_in=5))
        http.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_before_start(self):
        fake = FakeTime()
        auth, http = _authorizer([_pending()], fake)
        cancel = CancellationToken()
        cancel.cancel("stop")
        with pytest.raises(OperationCancelled, match="stop"):
            await auth.poll_for_grant(_session(), cancel)
        http.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_during_wait(self):
        http = MagicMock(spec=httpx.AsyncClient)
        http.post = AsyncMock(return_value=_pending())

        async def hang(seconds: float) -> None:
            await asyncio.Event().wait()

        auth = DeviceAuthorizer(http, sleep=hang, clock=lambda: 0.0)
        cancel = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, cancel.cancel, "user abort")
        with pytest.raises(OperationCancelled):
            await auth.poll_for_grant(_session(), cancel)
        http.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_network_error(self):
        fake = FakeTime()
        auth, _ = _authorizer([httpx.ConnectError("down")], fake)
        with pytest.raises(DeviceFlowError, match="Polling"):
            await auth.poll_for_grant(_session())

    @pytest.mark.asyncio
    async def test_events(self):
        fake = FakeTime()
        bus = EventBus()
        seen = []
        bus.subscribe(seen.append)
        auth, _ = _authorizer([
            _pending(),
            _resp({"error": "slow_down"}),
            _resp({"access_token": "gho"}),
        ], fake, bus=bus)
        await auth.poll_for_grant(_session())
        assert [e.type for e in seen] == [
            EventType.AUTH_PENDING,
            EventType.AUTH_SLOW_DOWN,
            EventType.AUTH_GRANTED,
        ]


# ---------------------------------------------------------------------------
# request_device_session / authorize
# ---------------------------------------------------------------------------

class TestRequestDeviceSession:
    @pytest.mark.asyncio
    async def test_parses_session(self):
        fake = FakeTime()
        fake.now = 50.0
        bus = EventBus()
        seen = []
        bus.subscribe(seen.append, EventType.AUTH_DEVICE_CODE)
        auth, http = _authorizer([_resp({
            "device_code": "dc",
            "user_code": "WDJB-MJHT",
            "verification_uri": "https://github.com/login/device",
            "expires_in": 899,
            "interval": 5,
        }, url="https://github.com/login/device/code")], fake, bus=bus)

        session = await auth.request_device_session("read:user")

        assert session.user_code == "WDJB-MJHT"
        assert session.poll_interval_seconds == 5
        assert session.deadline == 50.0 + 899
        body = http.post.call_args.kwargs["json"]
        assert body == {"client_id": "Iv1.b507a08c87ecfe98", "scope": "read:user"}
        assert seen[0].type == EventType.AUTH_DEVICE_CODE
        assert seen[0].data["user_code"] == "WDJB-MJHT"

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        fake = FakeTime()
        auth, _ = _authorizer([_resp({"error": "bad"}, status_code=422)], fake)
        with pytest.raises(DeviceFlowError) as exc_info:
            await auth.request_device_session()
        assert exc_info.value.status == 422

    @pytest.mark.asyncio
    async def test_missing_fields(self):
        fake = FakeTime()
        auth, _ = _authorizer([_resp({"user_code": "X"})], fake)
        with pytest.raises(DeviceFlowError, match="device_code"):
            await auth.request_device_session()

    @pytest.mark.asyncio
    async def test_authorize_runs_whole_flow(self):
        fake = FakeTime()
        auth, http = _authorizer([
            _resp({
                "device_code": "dc",
                "user_code": "U",
                "verification_uri": "https://github.com/login/device",
                "interval": 1,
                "expires_in": 900,
            }),
            _pending(),
            _resp({"access_token": "gho_done"}),
        ], fake)
        assert await auth.authorize() == "gho_done"
        assert http.post.await_count == 3
        assert fake.sleeps == [2, 2]
