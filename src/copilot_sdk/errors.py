"""Exception hierarchy for the Copilot SDK.

Every error raised by the SDK derives from :class:`CopilotError`.  Messages
are meant to be shown to a user as-is, so they name the remediation and
never embed secret values.
"""

from __future__ import annotations

from typing import Any


class CopilotError(Exception):
    """Base error, also used for non-success API responses.

    ``status`` and ``body`` carry the HTTP status code and raw response body
    when the error originates from an HTTP response.
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body

    def __str__(self) -> str:
        if self.status is not None:
            return f"{self.message} (HTTP {self.status})"
        return self.message


class AuthenticationError(CopilotError):
    """Missing, expired, revoked or rejected credentials."""


class RateLimitError(CopilotError):
    """HTTP 429 from the API; ``retry_after`` is in seconds when known."""

    def __init__(
        self,
        message: str,
        retry_after: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message, 429, body)
        self.retry_after = retry_after


class DeviceFlowError(CopilotError):
    """The device-authorization flow failed or was refused.

    ``reason`` is the provider error code (``expired_token``,
    ``access_denied``, ...) when one was returned.
    """

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        status: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message, status, body)
        self.reason = reason


class CredentialStoreError(CopilotError):
    """The credential file could not be read or written."""


class StreamDecodeError(CopilotError):
    """A stream frame carried a payload that is not a JSON object."""

    def __init__(self, message: str, payload: str = "") -> None:
        super().__init__(message)
        self.payload = payload


class OperationCancelled(CopilotError):
    """Raised when a :class:`~copilot_sdk.cancellation.CancellationToken` fires."""
