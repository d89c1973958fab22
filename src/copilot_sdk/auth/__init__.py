"""Credential acquisition, storage and refresh."""

from copilot_sdk.auth.device import (
    DeviceAuthorizer,
    DeviceFlowState,
    PollOutcome,
    PollResult,
    classify_poll_response,
)
from copilot_sdk.auth.login import device_login
from copilot_sdk.auth.store import CredentialStore
from copilot_sdk.auth.tokens import TokenManager, fetch_principal

__all__ = [
    "CredentialStore",
    "DeviceAuthorizer",
    "DeviceFlowState",
    "PollOutcome",
    "PollResult",
    "TokenManager",
    "classify_poll_response",
    "device_login",
    "fetch_principal",
]
