"""Configuration for the Copilot SDK.

Config discovery (first match wins):
  1. ``--config`` flag / explicit path
  2. ``./copilot_sdk.yaml``
  3. ``~/.config/copilot-sdk/config.yaml``
  4. Built-in defaults
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

_logger = logging.getLogger(__name__)

# VS Code's OAuth app; Copilot only mints tokens for this client id
DEFAULT_CLIENT_ID = "Iv1.b507a08c87ecfe98"
DEFAULT_AUTH_FILE = "~/.copilot-sdk/auth.json"

_DECODE_ERROR_POLICIES = ("drop", "raise")


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

@dataclass
class EndpointSpec:
    """Base URLs of the identity provider and the API provider."""

    github_url: str = "https://github.com"
    github_api_url: str = "https://api.github.com"
    api_base_url: str = "https://api.githubcopilot.com"


@dataclass
class ClientSpec:
    """How the SDK identifies itself to GitHub and Copilot."""

    client_id: str = DEFAULT_CLIENT_ID
    copilot_version: str = "0.26.7"
    vscode_version: str = "1.104.3"
    api_version: str = "2025-04-01"
    integration_id: str = "vscode-chat"


@dataclass
class StreamSpec:
    """Stream decoding options."""

    decode_errors: str = "drop"  # "drop" | "raise"


@dataclass
class SdkConfig:
    """Top-level config for the Copilot SDK."""

    auth_file: str = DEFAULT_AUTH_FILE

    # Refresh the access token this many seconds before it expires
    refresh_buffer: int = 60

    # HTTP timeout in seconds
    timeout: float = 60

    scopes: str = "read:user"
    default_model: str = "gpt-4o"

    endpoints: EndpointSpec = field(default_factory=EndpointSpec)
    client: ClientSpec = field(default_factory=ClientSpec)
    stream: StreamSpec = field(default_factory=StreamSpec)

    @property
    def auth_path(self) -> Path:
        return Path(self.auth_file).expanduser()


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./copilot_sdk.yaml"),
    Path.home() / ".config" / "copilot-sdk" / "config.yaml",
]


def _parse_section(cls: type, raw: dict[str, Any] | None) -> Any:
    if not raw:
        return cls()
    known = {k: v for k, v in raw.items()
             if v is not None and k in cls.__dataclass_fields__}
    unknown = sorted(set(raw) - set(known))
    if unknown:
        _logger.warning("Ignoring unknown %s keys: %s", cls.__name__, ", ".join(unknown))
    return cls(**known)


def _parse_stream(raw: dict[str, Any] | None) -> StreamSpec:
    spec = _parse_section(StreamSpec, raw)
    if spec.decode_errors not in _DECODE_ERROR_POLICIES:
        _logger.warning(
            "Unknown stream.decode_errors %r, using 'drop'", spec.decode_errors,
        )
        spec.decode_errors = "drop"
    return spec


def load_config(path: str | Path | None = None) -> SdkConfig:
    """Load configuration from YAML.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.

    Returns
    -------
    SdkConfig
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s, using defaults", path)
            return SdkConfig()
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return SdkConfig()

    _logger.info("Loading config from %s", config_path)
    with open(config_path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    return SdkConfig(
        auth_file=raw.get("auth_file", DEFAULT_AUTH_FILE),
        refresh_buffer=int(raw.get("refresh_buffer", 60)),
        timeout=float(raw.get("timeout", 60)),
        scopes=raw.get("scopes", "read:user"),
        default_model=raw.get("default_model", "gpt-4o"),
        endpoints=_parse_section(EndpointSpec, raw.get("endpoints")),
        client=_parse_section(ClientSpec, raw.get("client")),
        stream=_parse_stream(raw.get("stream")),
    )
