"""Doctor command for environment diagnostics."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from adapters.http_client import build_async_client
from core.config import AppSettings, write_user_env_vars

app = typer.Typer(no_args_is_help=True, help="Environment diagnostics and configuration checks.")

_console = Console()


async def _check_http(settings: AppSettings, url: str) -> tuple[bool, str]:
    try:
        async with build_async_client(settings) as client:
            response = await client.get(url)
        return response.status_code < 400, f"HTTP {response.status_code}"
    except Exception as exc:
        return False, str(exc)


@app.command()
def run() -> None:
    """Run baseline diagnostics and show recommended fixes."""

    settings = AppSettings()

    table = Table(title="OCPI EMSP Doctor")
    table.add_column("Check", style="bright_green", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    # Config
    if settings.remote_versions_url:
        table.add_row("Versions URL", "OK", settings.remote_versions_url)
    else:
        table.add_row("Versions URL", "MISSING", "Run `doctor setup-remote`")
    if settings.remote_access_token:
        encoding = "base64" if settings.remote_access_token_base64 else "plain"
        table.add_row("Access token", "OK", f"Token set ({encoding})")
    else:
        table.add_row("Access token", "MISSING", "Requests will be sent without Authorization")
    table.add_row("Callback base", "OK", settings.local_commands_base_url)
    table.add_row("Timeout", "OK", f"{settings.request_timeout_seconds:g}s")

    # Connectivity (best-effort)
    ok_http = False
    if settings.remote_versions_url:
        ok_http, detail_http = asyncio.run(_check_http(settings, settings.remote_versions_url))
        table.add_row("Versions endpoint", "OK" if ok_http else "FAIL", detail_http)

    _console.print(table)

    if not ok_http:
        raise typer.Exit(code=1)


@app.command(name="setup-remote")
def setup_remote() -> None:
    """Interactive remote party setup (stores config in the user config .env)."""

    versions_url = typer.prompt("Remote versions URL").strip()
    token = typer.prompt("Remote access token", hide_input=True, confirmation_prompt=False).strip()
    base64_token = typer.confirm("Base64-encode the token (OCPI 2.2+)?", default=True)
    callback_base = typer.prompt(
        "Local commands base URL (callbacks)",
        default=AppSettings().local_commands_base_url,
        show_default=True,
    ).strip()

    if not versions_url or not token:
        raise typer.BadParameter("versions URL and token are required")

    env_path = write_user_env_vars(
        {
            "OCPI_EMSP_REMOTE_VERSIONS_URL": versions_url,
            "OCPI_EMSP_REMOTE_ACCESS_TOKEN": token,
            "OCPI_EMSP_REMOTE_ACCESS_TOKEN_BASE64": "true" if base64_token else "false",
            "OCPI_EMSP_LOCAL_COMMANDS_BASE_URL": callback_base,
        }
    )

    _console.print(f"[green]Saved remote config to:[/green] {env_path}")
