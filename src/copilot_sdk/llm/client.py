"""Async GitHub Copilot chat client.

Uses ``httpx.AsyncClient`` and exposes ``async def chat()`` /
``async def chat_stream()`` plus the read-only models, embeddings and usage
calls.  Every call first asks the :class:`TokenManager` for a valid access
token, which may refresh it.  Failed calls are not retried.
"""

from __future__ import annotations

import logging
import time
from typing import Any, AsyncIterator

import httpx

from copilot_sdk.auth.store import CredentialStore
from copilot_sdk.auth.tokens import TokenManager
from copilot_sdk.cancellation import CancellationToken, run_cancellable
from copilot_sdk.config import SdkConfig
from copilot_sdk.errors import AuthenticationError, CopilotError, RateLimitError
from copilot_sdk.events.bus import EventBus, emit
from copilot_sdk.headers import api_headers, identity_headers
from copilot_sdk.types import EventType, StreamChunk

from .payload import ChatRequest, build_chat_payload, has_vision
from .stream import StreamDecoder

_logger = logging.getLogger(__name__)


def parse_retry_after(value: str | None) -> int | None:
    """Parse a ``retry-after`` header given in whole seconds."""
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def raise_for_api_error(resp: httpx.Response) -> None:
    """Raise the SDK error matching a non-success response."""
    if resp.is_success:
        return
    body = resp.text
    status = resp.status_code

    if status in (401, 403):
        raise AuthenticationError(
            "Authentication failed. Check your Copilot entitlement or run "
            "'copilot-sdk auth' again.",
            status,
            body,
        )
    if status == 429:
        retry_after = parse_retry_after(resp.headers.get("retry-after"))
        hint = f" Retry after {retry_after}s." if retry_after is not None else ""
        raise RateLimitError(f"Rate limit exceeded.{hint}", retry_after, body)
    raise CopilotError(f"API error: {status}", status, body)


class CopilotClient:
    """Client for the Copilot chat completion API."""

    def __init__(
        self,
        config: SdkConfig | None = None,
        tokens: TokenManager | None = None,
        *,
        bus: EventBus | None = None,
    ) -> None:
        self.config = config or SdkConfig()
        self._bus = bus
        base_url = self.config.endpoints.api_base_url.rstrip("/")
        timeout = self.config.timeout

        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout, connect=30),
        )
        self._stream_client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout, connect=30, read=60),
        )
        self._github = httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=30))
        self.tokens = tokens or TokenManager(
            CredentialStore(self.config.auth_path),
            self._github,
            self.config,
            bus=bus,
        )
        self._models_cache: list[dict[str, Any]] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Load the stored credential."""
        self.tokens.load()

    @property
    def user(self) -> str | None:
        """Login of the authenticated GitHub user, if known."""
        return self.tokens.principal

    def is_token_valid(self) -> bool:
        return self.tokens.is_valid()

    async def refresh_token(self) -> None:
        """Force a Copilot token refresh."""
        if self.tokens.record is None:
            self.tokens.load()
        await self.tokens.refresh()

    async def close(self) -> None:
        """Close underlying HTTP clients."""
        await self._client.aclose()
        await self._stream_client.aclose()
        await self._github.aclose()

    async def __aenter__(self) -> CopilotClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def chat(
        self,
        request: ChatRequest,
        cancel: CancellationToken | None = None,
    ) -> dict[str, Any]:
        """Send a non-streaming chat completion request."""
        record = await run_cancellable(self.tokens.ensure_valid(), cancel)
        payload = build_chat_payload(request, stream=False)
        headers = api_headers(
            record.access_token, self.config.client, vision=has_vision(payload["messages"]),
        )

        start = time.monotonic()
        await emit(self._bus, EventType.REQUEST_SENT, path="/chat/completions", stream=False)
        resp = await run_cancellable(
            self._send(self._client.post("/chat/completions", json=payload, headers=headers)),
            cancel,
        )
        await self._check(resp, "/chat/completions")
        _logger.debug(
            "Chat completion in %.0fms (model=%s)",
            (time.monotonic() - start) * 1000, request.model,
        )
        return resp.json()

    async def chat_stream(
        self,
        request: ChatRequest,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Streaming chat completion.  Yields :class:`StreamChunk` objects."""
        record = await run_cancellable(self.tokens.ensure_valid(), cancel)
        payload = build_chat_payload(request, stream=True)
        headers = api_headers(
            record.access_token, self.config.client, vision=has_vision(payload["messages"]),
        )
        decoder = StreamDecoder(
            decode_errors=self.config.stream.decode_errors,
            on_decode_error=self._on_decode_error,
        )

        await emit(self._bus, EventType.REQUEST_SENT, path="/chat/completions", stream=True)
        try:
            async with self._stream_client.stream(
                "POST", "/chat/completions", json=payload, headers=headers,
            ) as resp:
                if not resp.is_success:
                    await resp.aread()
                    await self._check(resp, "/chat/completions")
                async for chunk in decoder.decode(resp.aiter_bytes(), cancel):
                    yield chunk
        except httpx.HTTPError as exc:
            raise CopilotError(f"Streaming request failed: {exc}") from exc

        if not decoder.saw_terminator:
            _logger.debug("Stream ended without [DONE]")

    async def prompt(
        self,
        prompt: str,
        cancel: CancellationToken | None = None,
        **options: Any,
    ) -> str:
        """Chat with a single user prompt and return the reply text."""
        model = options.pop("model", None) or self.config.default_model
        request = ChatRequest.from_prompt(prompt, model, **options)
        response = await self.chat(request, cancel=cancel)
        choices = response.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""

    async def prompt_stream(
        self,
        prompt: str,
        cancel: CancellationToken | None = None,
        **options: Any,
    ) -> AsyncIterator[str]:
        """Stream the reply to a single user prompt as text fragments."""
        model = options.pop("model", None) or self.config.default_model
        request = ChatRequest.from_prompt(prompt, model, stream=True, **options)
        async for chunk in self.chat_stream(request, cancel=cancel):
            if chunk.content:
                yield chunk.content

    # ------------------------------------------------------------------
    # Read-only calls
    # ------------------------------------------------------------------

    async def get_models(self, force_refresh: bool = False) -> list[dict[str, Any]]:
        """Return available models; the list is fetched once per client."""
        if self._models_cache is not None and not force_refresh:
            return self._models_cache

        record = await self.tokens.ensure_valid()
        resp = await self._send(
            self._client.get("/models", headers=api_headers(record.access_token, self.config.client)),
        )
        await self._check(resp, "/models")
        self._models_cache = resp.json().get("data", [])
        return self._models_cache

    async def get_model(self, model_id: str) -> dict[str, Any] | None:
        for model in await self.get_models():
            if model.get("id") == model_id:
                return model
        return None

    async def create_embedding(self, request: dict[str, Any]) -> dict[str, Any]:
        """Create embeddings; *request* has ``input``, ``model`` and optional ``dimensions``."""
        record = await self.tokens.ensure_valid()
        resp = await self._send(
            self._client.post(
                "/embeddings",
                json=request,
                headers=api_headers(record.access_token, self.config.client),
            ),
        )
        await self._check(resp, "/embeddings")
        return resp.json()

    async def get_usage(self) -> dict[str, Any]:
        """Current Copilot plan, quota and usage information."""
        record = self.tokens.record
        if record is None:
            record = self.tokens.load()
        if not record.identity_token:
            raise AuthenticationError("Not authenticated. Run 'copilot-sdk auth' first.")
        url = f"{self.config.endpoints.github_api_url.rstrip('/')}/copilot_internal/user"
        resp = await self._send(
            self._github.get(url, headers=identity_headers(record.identity_token, self.config.client)),
        )
        await self._check(resp, "/copilot_internal/user")
        return resp.json()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _send(request_coro: Any) -> httpx.Response:
        try:
            return await request_coro
        except httpx.HTTPError as exc:
            raise CopilotError(f"Request failed: {exc}") from exc

    async def _check(self, resp: httpx.Response, path: str) -> None:
        if resp.is_success:
            return
        _logger.debug("%s returned HTTP %d", path, resp.status_code)
        await emit(self._bus, EventType.REQUEST_FAILED, status=resp.status_code, path=path)
        raise_for_api_error(resp)

    async def _on_decode_error(self, payload: str, exc: Exception) -> None:
        await emit(
            self._bus, EventType.STREAM_DECODE_ERROR,
            payload=payload[:200], error=str(exc),
        )


async def create_client(
    config: SdkConfig | None = None,
    *,
    bus: EventBus | None = None,
) -> CopilotClient:
    """Create and initialize a Copilot client."""
    client = CopilotClient(config, bus=bus)
    await client.init()
    return client
