"""Chat client, payloads and stream decoding."""

from copilot_sdk.llm.accumulator import StreamAccumulator
from copilot_sdk.llm.client import (
    CopilotClient,
    create_client,
    parse_retry_after,
    raise_for_api_error,
)
from copilot_sdk.llm.payload import ChatRequest, build_chat_payload, has_vision
from copilot_sdk.llm.stream import StreamDecoder

__all__ = [
    "ChatRequest",
    "CopilotClient",
    "StreamAccumulator",
    "StreamDecoder",
    "build_chat_payload",
    "create_client",
    "has_vision",
    "parse_retry_after",
    "raise_for_api_error",
]
