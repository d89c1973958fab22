"""Assemble a final chat result from streamed chunks."""

from __future__ import annotations

import json
import logging
from typing import Any

from copilot_sdk.types import ChatResult, StreamChunk, ToolCall

_logger = logging.getLogger(__name__)


class StreamAccumulator:
    """Accumulate content and native tool calls from streaming deltas.

    Tool calls arrive as incremental fragments: each carries an ``index``,
    the ``id`` and ``function.name`` come with the first fragment, and
    ``function.arguments`` fragments must be concatenated.
    """

    def __init__(self) -> None:
        self._content: list[str] = []
        self._calls: dict[int, dict[str, str]] = {}
        self.finish_reason = ""
        self.usage: dict[str, Any] = {}
        self.model = ""

    def feed(self, chunk: StreamChunk) -> None:
        if chunk.model:
            self.model = chunk.model
        if chunk.usage:
            self.usage = chunk.usage
        if chunk.finish_reason:
            self.finish_reason = chunk.finish_reason
        if chunk.content:
            self._content.append(chunk.content)
        for tc in chunk.tool_calls:
            idx = tc.get("index", 0)
            entry = self._calls.setdefault(idx, {"id": "", "name": "", "arguments": ""})
            if tc.get("id"):
                entry["id"] = tc["id"]
            func = tc.get("function") or {}
            if func.get("name"):
                entry["name"] = func["name"]
            if func.get("arguments"):
                entry["arguments"] += func["arguments"]

    @property
    def content(self) -> str:
        return "".join(self._content)

    def has_calls(self) -> bool:
        return bool(self._calls)

    def finalize(self) -> ChatResult:
        """Parse accumulated fragments into a :class:`ChatResult`."""
        tool_calls: list[ToolCall] = []
        for idx in sorted(self._calls):
            entry = self._calls[idx]
            if not entry["name"]:
                continue
            raw_args = entry["arguments"]
            try:
                args = json.loads(raw_args) if raw_args else {}
            except json.JSONDecodeError:
                _logger.debug("Tool call %s has invalid JSON arguments", entry["name"])
                args = {}
            tool_calls.append(
                ToolCall(
                    id=entry["id"],
                    name=entry["name"],
                    arguments=args,
                    raw=json.dumps(
                        {"function": {"name": entry["name"], "arguments": raw_args}},
                    ),
                )
            )
        return ChatResult(
            content=self.content,
            tool_calls=tool_calls,
            finish_reason=self.finish_reason,
            usage=self.usage,
            model=self.model,
        )
