"""CLI principal (Typer + Rich).

Comandos:
- `versions` / `endpoints`: discovery y mapa de endpoints de la parte remota.
- `reserve-now`, `cancel-reservation`, `start-session`, `stop-session`,
  `unlock-connector`: emiten un comando y muestran la respuesta síncrona.
- `doctor`: diagnósticos y configuración.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional

import typer
from rich.console import Console

from cli import doctor
from cli.ui_components import (
    build_endpoints_table,
    build_envelope_panel,
    build_versions_table,
    configure_logging,
)
from core.config import AppSettings
from core.domain.envelope import ResponseEnvelope
from core.domain.errors import DiscoveryError
from core.domain.models import Token
from core.services.emsp_client import EMSPClient

app = typer.Typer(no_args_is_help=True, help="OCPI EMSP client: discovery and remote commands.")
app.add_typer(doctor.app, name="doctor")

_console = Console()

VersionOption = typer.Option(None, "--version", "-v", help="OCPI version to use (default: highest advertised).")
CommandIdOption = typer.Option(None, "--command-id", help="Command id (default: random UUID).")
TimeoutOption = typer.Option(None, "--timeout", min=0.1, help="Request timeout in seconds.")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override OCPI_EMSP_LOG_LEVEL."),
) -> None:
    settings = AppSettings()
    configure_logging(log_level or settings.log_level)


def _load_token(path: Path) -> Token:
    try:
        return Token.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise typer.BadParameter(f"Invalid token file {path}: {exc}") from exc


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _run_command(
    title: str,
    call: Callable[[EMSPClient], Awaitable[ResponseEnvelope]],
) -> None:
    async def runner() -> ResponseEnvelope:
        async with EMSPClient(AppSettings()) as client:
            return await call(client)

    envelope = asyncio.run(runner())
    _console.print(build_envelope_panel(envelope, title=title))
    if not envelope.succeeded:
        raise typer.Exit(code=1)


@app.command()
def versions() -> None:
    """Discover the remote versions and show the selected one."""

    async def runner() -> tuple[dict[str, str], str | None]:
        async with EMSPClient(AppSettings()) as client:
            selected = await client.registry.select_version()
            return client.registry.versions, selected

    try:
        advertised, selected = asyncio.run(runner())
    except DiscoveryError as exc:
        _console.print(f"[red]Discovery failed:[/red] {exc}")
        raise typer.Exit(code=1)

    if not advertised:
        _console.print("[yellow]The remote party advertises no OCPI versions.[/yellow]")
        raise typer.Exit(code=1)
    _console.print(build_versions_table(advertised, selected))


@app.command()
def endpoints(version: Optional[str] = VersionOption) -> None:
    """Show the endpoint map of the selected (or given) version."""

    async def runner():
        async with EMSPClient(AppSettings()) as client:
            selected = await client.registry.select_version(version)
            if selected is None:
                return None
            await client.registry.ensure_version_detail(selected)
            return client.registry.detail(selected)

    try:
        detail = asyncio.run(runner())
    except DiscoveryError as exc:
        _console.print(f"[red]Discovery failed:[/red] {exc}")
        raise typer.Exit(code=1)

    if detail is None:
        _console.print("[yellow]No version detail available.[/yellow]")
        raise typer.Exit(code=1)
    _console.print(build_endpoints_table(detail))


@app.command(name="reserve-now")
def reserve_now(
    token_file: Path = typer.Option(..., "--token-file", exists=True, dir_okay=False, help="Token JSON file."),
    expiry_date: datetime = typer.Option(..., "--expiry", help="Reservation expiry (UTC if no offset)."),
    reservation_id: str = typer.Option(..., "--reservation-id"),
    location_id: str = typer.Option(..., "--location-id"),
    evse_uid: Optional[str] = typer.Option(None, "--evse-uid"),
    authorization_reference: Optional[str] = typer.Option(None, "--authorization-reference"),
    command_id: Optional[str] = CommandIdOption,
    version: Optional[str] = VersionOption,
    timeout: Optional[float] = TimeoutOption,
) -> None:
    """Reserve an EVSE (or any EVSE of a location) for a token."""

    token = _load_token(token_file)
    _run_command(
        "ReserveNow",
        lambda client: client.reserve_now(
            token,
            _as_utc(expiry_date),
            reservation_id,
            location_id,
            evse_uid,
            authorization_reference,
            command_id=command_id,
            version=version,
            timeout=timeout,
        ),
    )


@app.command(name="cancel-reservation")
def cancel_reservation(
    reservation_id: str = typer.Option(..., "--reservation-id"),
    command_id: Optional[str] = CommandIdOption,
    version: Optional[str] = VersionOption,
    timeout: Optional[float] = TimeoutOption,
) -> None:
    """Cancel an existing reservation."""

    _run_command(
        "CancelReservation",
        lambda client: client.cancel_reservation(
            reservation_id, command_id=command_id, version=version, timeout=timeout
        ),
    )


@app.command(name="start-session")
def start_session(
    token_file: Path = typer.Option(..., "--token-file", exists=True, dir_okay=False, help="Token JSON file."),
    location_id: str = typer.Option(..., "--location-id"),
    evse_uid: Optional[str] = typer.Option(None, "--evse-uid"),
    connector_id: Optional[str] = typer.Option(None, "--connector-id"),
    authorization_reference: Optional[str] = typer.Option(None, "--authorization-reference"),
    command_id: Optional[str] = CommandIdOption,
    version: Optional[str] = VersionOption,
    timeout: Optional[float] = TimeoutOption,
) -> None:
    """Start a charging session remotely."""

    token = _load_token(token_file)
    _run_command(
        "StartSession",
        lambda client: client.start_session(
            token,
            location_id,
            evse_uid,
            connector_id,
            authorization_reference,
            command_id=command_id,
            version=version,
            timeout=timeout,
        ),
    )


@app.command(name="stop-session")
def stop_session(
    session_id: str = typer.Option(..., "--session-id"),
    command_id: Optional[str] = CommandIdOption,
    version: Optional[str] = VersionOption,
    timeout: Optional[float] = TimeoutOption,
) -> None:
    """Stop a running charging session."""

    _run_command(
        "StopSession",
        lambda client: client.stop_session(session_id, command_id=command_id, version=version, timeout=timeout),
    )


@app.command(name="unlock-connector")
def unlock_connector(
    location_id: str = typer.Option(..., "--location-id"),
    evse_uid: str = typer.Option(..., "--evse-uid"),
    connector_id: str = typer.Option(..., "--connector-id"),
    command_id: Optional[str] = CommandIdOption,
    version: Optional[str] = VersionOption,
    timeout: Optional[float] = TimeoutOption,
) -> None:
    """Unlock a connector."""

    _run_command(
        "UnlockConnector",
        lambda client: client.unlock_connector(
            location_id, evse_uid, connector_id, command_id=command_id, version=version, timeout=timeout
        ),
    )


def run() -> None:
    app()
