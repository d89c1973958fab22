"""Async GitHub Copilot SDK: device-flow auth, token refresh and streaming chat."""

from copilot_sdk.auth import CredentialStore, DeviceAuthorizer, TokenManager, device_login
from copilot_sdk.cancellation import CancellationToken
from copilot_sdk.config import SdkConfig, load_config
from copilot_sdk.errors import (
    AuthenticationError,
    CopilotError,
    CredentialStoreError,
    DeviceFlowError,
    OperationCancelled,
    RateLimitError,
    StreamDecodeError,
)
from copilot_sdk.llm import (
    ChatRequest,
    CopilotClient,
    StreamAccumulator,
    StreamDecoder,
    create_client,
)
from copilot_sdk.types import ChunkKind, CredentialRecord, DeviceSession, StreamChunk

__all__ = [
    "AuthenticationError",
    "CancellationToken",
    "ChatRequest",
    "ChunkKind",
    "CopilotClient",
    "CopilotError",
    "CredentialRecord",
    "CredentialStore",
    "CredentialStoreError",
    "DeviceAuthorizer",
    "DeviceFlowError",
    "DeviceSession",
    "OperationCancelled",
    "RateLimitError",
    "SdkConfig",
    "StreamAccumulator",
    "StreamChunk",
    "StreamDecodeError",
    "StreamDecoder",
    "TokenManager",
    "create_client",
    "device_login",
    "load_config",
]
