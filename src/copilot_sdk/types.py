"""Shared data types for the Copilot SDK."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

# Persisted key names; shared with the JavaScript SDK's auth.json
_RECORD_KEYS = {
    "identity_token": "githubToken",
    "access_token": "copilotToken",
    "access_token_expiry": "copilotTokenExpiry",
    "refresh_interval_hint": "refreshIn",
    "created_at": "createdAt",
    "principal": "user",
}


@dataclass
class CredentialRecord:
    """Authentication state: a GitHub identity token plus a Copilot token.

    A record holding only ``identity_token`` is in the pre-exchange state.
    An ``access_token`` is only meaningful together with
    ``access_token_expiry`` (epoch seconds).
    """

    identity_token: str = field(default="", repr=False)
    access_token: str | None = field(default=None, repr=False)
    access_token_expiry: int | None = None
    refresh_interval_hint: int = 0
    created_at: str = ""
    principal: str | None = None

    def __post_init__(self) -> None:
        if not self.access_token or self.access_token_expiry is None:
            self.clear_access()

    @property
    def has_access_token(self) -> bool:
        return bool(self.access_token) and self.access_token_expiry is not None

    def clear_access(self) -> None:
        """Drop the access-token fields, returning to pre-exchange state."""
        self.access_token = None
        self.access_token_expiry = None

    def apply_exchange(
        self, access_token: str, expires_at: int, refresh_in: int,
    ) -> None:
        """Overwrite the access-token fields from an exchange response."""
        self.access_token = access_token
        self.access_token_expiry = int(expires_at)
        self.refresh_interval_hint = int(refresh_in)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            _RECORD_KEYS["identity_token"]: self.identity_token,
            _RECORD_KEYS["access_token"]: self.access_token or "",
            _RECORD_KEYS["access_token_expiry"]: self.access_token_expiry or 0,
            _RECORD_KEYS["refresh_interval_hint"]: self.refresh_interval_hint,
            _RECORD_KEYS["created_at"]: self.created_at,
        }
        if self.principal:
            data[_RECORD_KEYS["principal"]] = self.principal
        return data

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> CredentialRecord:
        expiry = raw.get(_RECORD_KEYS["access_token_expiry"]) or None
        return cls(
            identity_token=raw.get(_RECORD_KEYS["identity_token"]) or "",
            access_token=raw.get(_RECORD_KEYS["access_token"]) or None,
            access_token_expiry=int(expiry) if expiry is not None else None,
            refresh_interval_hint=int(
                raw.get(_RECORD_KEYS["refresh_interval_hint"]) or 0,
            ),
            created_at=raw.get(_RECORD_KEYS["created_at"]) or "",
            principal=raw.get(_RECORD_KEYS["principal"]) or None,
        )


@dataclass
class DeviceSession:
    """One device-authorization attempt.  Never persisted.

    ``started_at`` is a reading of the authorizer's clock; a session built
    without one is stamped when polling starts.
    """

    device_code: str = field(repr=False)
    user_code: str
    verification_uri: str
    poll_interval_seconds: int = 5
    expires_in_seconds: int = 900
    started_at: float | None = None

    @property
    def deadline(self) -> float | None:
        if self.started_at is None:
            return None
        return self.started_at + self.expires_in_seconds


# ---------------------------------------------------------------------------
# Stream chunks
# ---------------------------------------------------------------------------

class ChunkKind(enum.Enum):
    """What a decoded stream frame carries."""

    CONTENT = "content"
    TOOL_CALL = "tool_call"
    FINISH = "finish"
    UNKNOWN = "unknown"


@dataclass
class StreamChunk:
    """One decoded ``chat.completion.chunk`` record, tagged by kind."""

    kind: ChunkKind
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> StreamChunk:
        choice = _first_choice(data)
        delta = choice.get("delta") or {}
        if delta.get("tool_calls"):
            kind = ChunkKind.TOOL_CALL
        elif delta.get("content"):
            kind = ChunkKind.CONTENT
        elif choice.get("finish_reason"):
            kind = ChunkKind.FINISH
        else:
            kind = ChunkKind.UNKNOWN
        return cls(kind=kind, data=data)

    @property
    def delta(self) -> dict[str, Any]:
        return _first_choice(self.data).get("delta") or {}

    @property
    def content(self) -> str:
        return self.delta.get("content") or ""

    @property
    def tool_calls(self) -> list[dict[str, Any]]:
        return list(self.delta.get("tool_calls") or [])

    @property
    def finish_reason(self) -> str | None:
        return _first_choice(self.data).get("finish_reason")

    @property
    def usage(self) -> dict[str, Any]:
        return self.data.get("usage") or {}

    @property
    def model(self) -> str:
        return self.data.get("model", "")


def _first_choice(data: dict[str, Any]) -> dict[str, Any]:
    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


# ---------------------------------------------------------------------------
# Chat results
# ---------------------------------------------------------------------------

@dataclass
class ToolCall:
    """A completed tool call assembled from a response."""

    id: str
    name: str
    arguments: dict[str, Any]
    raw: str = ""


@dataclass
class ChatResult:
    """Final state of a streamed completion."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str = ""
    usage: dict[str, Any] = field(default_factory=dict)
    model: str = ""

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Event types emitted by SDK components."""

    # Device authorization
    AUTH_DEVICE_CODE = "auth.device_code"
    AUTH_PENDING = "auth.pending"
    AUTH_SLOW_DOWN = "auth.slow_down"
    AUTH_GRANTED = "auth.granted"
    AUTH_FAILED = "auth.failed"

    # Token lifecycle
    TOKEN_REFRESHED = "token.refreshed"

    # Requests and streams
    REQUEST_SENT = "request.sent"
    REQUEST_FAILED = "request.failed"
    STREAM_DECODE_ERROR = "stream.decode_error"


@dataclass
class SdkEvent:
    """Event emitted through the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
