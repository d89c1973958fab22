"""Command-line interface for the Copilot SDK."""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, TypeVar

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from copilot_sdk.auth.login import device_login
from copilot_sdk.config import SdkConfig, load_config
from copilot_sdk.errors import CopilotError, RateLimitError
from copilot_sdk.events.bus import EventBus
from copilot_sdk.llm.accumulator import StreamAccumulator
from copilot_sdk.llm.client import CopilotClient
from copilot_sdk.llm.payload import ChatRequest
from copilot_sdk.types import EventType, SdkEvent

console = Console()

T = TypeVar("T")

# Repository root: <repo>/src/copilot_sdk/cli.py -> <repo>
_REPO_ROOT = Path(__file__).resolve().parent.parent.parent


def get_version() -> str:
    """Read version from pyproject.toml."""
    toml = _REPO_ROOT / "pyproject.toml"
    if toml.exists():
        for line in toml.read_text().splitlines():
            if line.strip().startswith("version"):
                # version = "0.3.0"
                return line.split("=", 1)[1].strip().strip('"').strip("'")
    return "unknown"


class AuthProgressDisplay:
    """Renders device-flow events to the terminal."""

    def __init__(self, con: Console):
        self.con = con

    def handle(self, event: SdkEvent):
        if event.type == EventType.AUTH_DEVICE_CODE:
            self.con.print(Panel(
                f"Open this URL in your browser:\n\n"
                f"  [bold cyan]{event.data['verification_uri']}[/bold cyan]\n\n"
                f"Enter this code:\n\n"
                f"  [bold bright_white]{event.data['user_code']}[/bold bright_white]",
                title="GitHub device login",
                border_style="blue",
                expand=False,
            ))
            self.con.print("[dim]Waiting for authorization[/dim]", end="")

        elif event.type == EventType.AUTH_PENDING:
            self.con.print("[dim].[/dim]", end="")

        elif event.type == EventType.AUTH_SLOW_DOWN:
            self.con.print("[yellow]~[/yellow]", end="")

        elif event.type == EventType.AUTH_GRANTED:
            self.con.print("\n[green]GitHub authorization successful![/green]")

        elif event.type == EventType.AUTH_FAILED:
            self.con.print()

        elif event.type == EventType.TOKEN_REFRESHED:
            self.con.print("[green]Copilot token obtained.[/green]")


def _run(coro: Awaitable[T]) -> T:
    """Run *coro*, turning SDK errors into a red message and exit code 1."""
    try:
        return asyncio.run(coro)
    except RateLimitError as exc:
        console.print(f"[red]{exc}[/red]")
        if exc.retry_after is not None:
            console.print(f"[dim]Wait {exc.retry_after}s before retrying.[/dim]")
        sys.exit(1)
    except CopilotError as exc:
        console.print(f"[red]{exc}[/red]")
        sys.exit(1)


def _format_expiry(ts: datetime | None) -> str:
    if ts is None:
        return "none"
    remaining = int((ts - datetime.now(timezone.utc)).total_seconds())
    local = ts.astimezone().strftime("%Y-%m-%d %H:%M:%S")
    if remaining <= 0:
        return f"{local} (expired)"
    return f"{local} (in {remaining}s)"


@click.group()
@click.option("--config", "-c", "config_path", default=None,
              help="Path to copilot_sdk.yaml (auto-detected from CWD or ~/.config/copilot-sdk/)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.version_option(get_version(), prog_name="copilot-sdk")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool):
    """Copilot SDK - GitHub Copilot chat from the terminal."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)
    ctx.obj = load_config(config_path)


@main.command()
@click.pass_obj
def auth(config: SdkConfig):
    """Authenticate with GitHub via the device flow."""
    bus = EventBus()
    display = AuthProgressDisplay(console)
    bus.subscribe(display.handle)

    try:
        record = _run(device_login(config, bus=bus))
    except KeyboardInterrupt:
        console.print("\n[yellow]Authentication cancelled.[/yellow]")
        sys.exit(130)

    console.print(f"[bold]Logged in as:[/bold] {record.principal}")
    console.print(f"[dim]Authentication saved to: {config.auth_path}[/dim]")
    expiry = datetime.fromtimestamp(record.access_token_expiry, tz=timezone.utc)
    console.print(f"[dim]Token expires: {_format_expiry(expiry)}[/dim]")
    console.print(f"[dim]Refresh in: {record.refresh_interval_hint} seconds[/dim]")


@main.command()
@click.pass_obj
def status(config: SdkConfig):
    """Show the stored credential and token validity."""

    async def _status() -> CopilotClient:
        async with CopilotClient(config) as client:
            await client.init()
        return client

    client = _run(_status())
    valid = client.is_token_valid()
    console.print(f"[bold]User:[/bold] {client.user or '(unknown)'}")
    console.print(f"[bold]Auth file:[/bold] {config.auth_path}")
    console.print(f"[bold]Token expires:[/bold] {_format_expiry(client.tokens.token_expiry)}")
    mark = "[green]valid[/green]" if valid else "[yellow]needs refresh[/yellow]"
    console.print(f"[bold]Token:[/bold] {mark}")


@main.command()
@click.pass_obj
def refresh(config: SdkConfig):
    """Force a Copilot token refresh."""

    async def _refresh() -> datetime | None:
        async with CopilotClient(config) as client:
            await client.refresh_token()
            return client.tokens.token_expiry

    expiry = _run(_refresh())
    console.print(f"[green]Token refreshed.[/green] Expires: {_format_expiry(expiry)}")


@main.command()
@click.argument("prompt")
@click.option("--model", "-m", default=None, help="Model id (default from config)")
@click.option("--system", "-s", "system_prompt", default=None, help="System prompt")
@click.option("--no-stream", is_flag=True, help="Wait for the full reply")
@click.pass_obj
def chat(config: SdkConfig, prompt: str, model: str | None,
         system_prompt: str | None, no_stream: bool):
    """Send PROMPT and print the reply."""
    request = ChatRequest(
        model=model or config.default_model,
        messages=[{"role": "user", "content": prompt}],
        system_prompt=system_prompt,
    )

    async def _chat() -> None:
        async with CopilotClient(config) as client:
            await client.init()
            if no_stream:
                response = await client.chat(request)
                choices = response.get("choices") or [{}]
                console.print((choices[0].get("message") or {}).get("content") or "",
                              highlight=False)
                return

            acc = StreamAccumulator()
            async for chunk in client.chat_stream(request):
                acc.feed(chunk)
                if chunk.content:
                    console.print(chunk.content, end="", highlight=False)
            console.print()

            result = acc.finalize()
            for tc in result.tool_calls:
                console.print(f"[yellow]> {tc.name}[/yellow] [dim]{tc.arguments}[/dim]")
            if result.finish_reason and result.finish_reason != "stop":
                console.print(f"[dim]finish_reason: {result.finish_reason}[/dim]")

    try:
        _run(_chat())
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)


@main.command()
@click.pass_obj
def models(config: SdkConfig):
    """List available models."""

    async def _models() -> list[dict[str, Any]]:
        async with CopilotClient(config) as client:
            await client.init()
            return await client.get_models()

    table = Table(title="Copilot models")
    table.add_column("id", style="bold")
    table.add_column("name")
    table.add_column("vendor", style="dim")
    table.add_column("context", justify="right")
    for m in _run(_models()):
        limits = (m.get("capabilities") or {}).get("limits") or {}
        ctx_window = limits.get("max_context_window_tokens")
        table.add_row(
            m.get("id", ""), m.get("name", ""), m.get("vendor", ""),
            str(ctx_window) if ctx_window else "-",
        )
    console.print(table)


@main.command()
@click.pass_obj
def usage(config: SdkConfig):
    """Show plan and quota usage."""

    async def _usage() -> dict[str, Any]:
        async with CopilotClient(config) as client:
            await client.init()
            return await client.get_usage()

    data = _run(_usage())
    console.print(f"[bold]Plan:[/bold] {data.get('copilot_plan', '?')}")
    if data.get("quota_reset_date"):
        console.print(f"[dim]Quota resets: {data['quota_reset_date']}[/dim]")

    table = Table(title="Quota")
    table.add_column("quota", style="bold")
    table.add_column("remaining", justify="right")
    table.add_column("entitlement", justify="right")
    table.add_column("% left", justify="right")
    for name, q in (data.get("quota_snapshots") or {}).items():
        if q.get("unlimited"):
            table.add_row(name, "unlimited", "-", "-")
            continue
        table.add_row(
            name,
            str(q.get("remaining", "?")),
            str(q.get("entitlement", "?")),
            f"{q.get('percent_remaining', 0):.0f}",
        )
    console.print(table)


if __name__ == "__main__":
    main()
