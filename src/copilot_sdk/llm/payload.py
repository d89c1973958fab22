"""Chat request shape and its JSON payload."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any

# Optional request fields forwarded verbatim when set
_PASSTHROUGH_FIELDS = (
    "temperature",
    "top_p",
    "max_tokens",
    "n",
    "stop",
    "frequency_penalty",
    "presence_penalty",
    "seed",
    "response_format",
    "tools",
    "tool_choice",
    "user",
    "logprobs",
    "logit_bias",
)


@dataclass
class ChatRequest:
    """Everything needed for a single chat completion call.

    ``messages`` are OpenAI-style dicts; ``content`` may be a string or a
    list of ``{"type": "text"|"image_url", ...}`` parts.
    """

    model: str
    messages: list[dict[str, Any]] = field(default_factory=list)
    system_prompt: str | None = None
    stream: bool = False
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    n: int | None = None
    stop: str | list[str] | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    seed: int | None = None
    response_format: dict[str, Any] | None = None
    tools: list[dict[str, Any]] | None = None
    tool_choice: str | dict[str, Any] | None = None
    user: str | None = None
    logprobs: bool | None = None
    logit_bias: dict[str, float] | None = None

    @classmethod
    def from_prompt(cls, prompt: str, model: str, **options: Any) -> ChatRequest:
        """Single user message request; unknown option names raise TypeError."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise TypeError(f"Unknown chat options: {', '.join(unknown)}")
        options.pop("messages", None)
        return cls(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            **options,
        )


def build_chat_payload(request: ChatRequest, stream: bool) -> dict[str, Any]:
    """Build the ``/chat/completions`` body; unset fields are omitted."""
    messages = list(request.messages)
    if request.system_prompt:
        messages.insert(0, {"role": "system", "content": request.system_prompt})

    payload: dict[str, Any] = {
        "model": request.model,
        "messages": messages,
        "stream": stream,
    }
    for name in _PASSTHROUGH_FIELDS:
        value = getattr(request, name)
        if value is not None:
            payload[name] = value
    return payload


def has_vision(messages: list[dict[str, Any]]) -> bool:
    """True if any message content part is an image."""
    for message in messages:
        content = message.get("content")
        if not isinstance(content, list):
            continue
        if any(isinstance(part, dict) and part.get("type") == "image_url" for part in content):
            return True
    return False
