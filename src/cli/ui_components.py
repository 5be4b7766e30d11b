"""Componentes de UI para CLI (Rich).

Por qué separar componentes:
- Evita mezclar lógica de comandos con detalles visuales.
- Permite reutilizar tablas/paneles en múltiples comandos.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.domain.envelope import ResponseEnvelope
from core.domain.models import VersionDetail, version_sort_key


def configure_logging(level: str, console: Console | None = None) -> None:
    """Instala `RichHandler` como handler raíz."""

    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console or Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def build_versions_table(versions: dict[str, str], selected: str | None) -> Table:
    table = Table(title="OCPI Versions")
    table.add_column("Version", style="cyan", no_wrap=True)
    table.add_column("Detail URL", style="magenta")
    table.add_column("Selected", style="green")
    for version in sorted(versions, key=version_sort_key, reverse=True):
        table.add_row(version, versions[version], "yes" if version == selected else "")
    return table


def build_endpoints_table(detail: VersionDetail) -> Table:
    table = Table(title=f"OCPI {detail.version} Endpoints")
    table.add_column("Module", style="cyan", no_wrap=True)
    table.add_column("Role", style="white")
    table.add_column("URL", style="magenta")
    for endpoint in sorted(detail.endpoints, key=lambda e: (e.identifier, e.role.value)):
        table.add_row(endpoint.identifier, endpoint.role.value, endpoint.url)
    return table


def build_envelope_panel(envelope: ResponseEnvelope, *, title: str) -> Panel:
    """Panel para presentar un `ResponseEnvelope`."""

    ok = envelope.succeeded
    body = Text()
    body.append(f"Status: {envelope.status_code}", style="bold green" if ok else "bold red")
    if envelope.status_message:
        body.append(f"  {envelope.status_message}")
    if envelope.http_status is not None:
        body.append(f"\nHTTP: {envelope.http_status}", style="dim")
    body.append(f"\nX-Request-ID: {envelope.request_id}", style="dim")
    body.append(f"\nX-Correlation-ID: {envelope.correlation_id}", style="dim")

    data = envelope.data
    if data is not None:
        dump = getattr(data, "model_dump_json", None)
        body.append("\n\n")
        body.append(dump(indent=2) if dump is not None else str(data))

    return Panel(body, title=Text(title, style="bold yellow"), border_style="green" if ok else "red")
