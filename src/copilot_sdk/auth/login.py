"""End-to-end device login: GitHub grant, user lookup, first Copilot token."""

from __future__ import annotations

import logging

import httpx

from copilot_sdk.auth.device import DeviceAuthorizer
from copilot_sdk.auth.store import CredentialStore
from copilot_sdk.auth.tokens import TokenManager, fetch_principal
from copilot_sdk.cancellation import CancellationToken, run_cancellable
from copilot_sdk.config import SdkConfig
from copilot_sdk.events.bus import EventBus
from copilot_sdk.types import CredentialRecord

_logger = logging.getLogger(__name__)


async def device_login(
    config: SdkConfig,
    *,
    http: httpx.AsyncClient | None = None,
    bus: EventBus | None = None,
    cancel: CancellationToken | None = None,
    authorizer: DeviceAuthorizer | None = None,
) -> CredentialRecord:
    """Authenticate via the device flow and save the resulting record.

    Progress (user code, pending polls, grant) is reported on *bus*.
    """
    owns_http = http is None
    if http is None:
        http = httpx.AsyncClient(timeout=httpx.Timeout(config.timeout, connect=30))
    try:
        authorizer = authorizer or DeviceAuthorizer(http, config, bus=bus)
        identity_token = await authorizer.authorize(config.scopes, cancel=cancel)
        principal = await run_cancellable(
            fetch_principal(http, identity_token, config), cancel,
        )
        _logger.info("Logged in as %s", principal)

        manager = TokenManager(CredentialStore(config.auth_path), http, config, bus=bus)
        return await run_cancellable(manager.bootstrap(identity_token, principal), cancel)
    finally:
        if owns_http:
            await http.aclose()
