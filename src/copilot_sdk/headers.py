"""Request headers expected by GitHub and the Copilot API."""

from __future__ import annotations

import uuid

from copilot_sdk.config import ClientSpec


def _client_identity(client: ClientSpec) -> dict[str, str]:
    return {
        "Accept": "application/json",
        "Content-Type": "application/json",
        "Editor-Version": f"vscode/{client.vscode_version}",
        "Editor-Plugin-Version": f"copilot-chat/{client.copilot_version}",
        "User-Agent": f"GitHubCopilotChat/{client.copilot_version}",
        "X-Github-Api-Version": client.api_version,
    }


def identity_headers(identity_token: str, client: ClientSpec) -> dict[str, str]:
    """Headers for GitHub calls authenticated with the identity token."""
    headers = _client_identity(client)
    headers["Authorization"] = f"token {identity_token}"
    return headers


def api_headers(
    access_token: str,
    client: ClientSpec,
    vision: bool = False,
) -> dict[str, str]:
    """Headers for Copilot API calls authenticated with the access token.

    Each call gets a fresh ``X-Request-Id``.  ``vision`` adds the marker the
    API requires when any message carries an image.
    """
    headers = _client_identity(client)
    headers.update({
        "Authorization": f"Bearer {access_token}",
        "Copilot-Integration-Id": client.integration_id,
        "Openai-Intent": "conversation-panel",
        "X-Request-Id": str(uuid.uuid4()),
        "X-Vscode-User-Agent-Library-Version": "electron-fetch",
        "X-Initiator": "user",
    })
    if vision:
        headers["Copilot-Vision-Request"] = "true"
    return headers


def device_flow_headers() -> dict[str, str]:
    """Headers for the unauthenticated device-flow endpoints."""
    return {
        "Accept": "application/json",
        "Content-Type": "application/json",
    }
