"""Contrato del ejecutor HTTP.

Por qué Protocol:
- Define un contrato estructural (duck typing) sin herencia rígida.
- Permite que el transporte real (httpx) y los dobles de test sean
  intercambiables sin acoplar los servicios a una implementación concreta.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Protocol, runtime_checkable

if TYPE_CHECKING:
    import httpx


@runtime_checkable
class HTTPExecutor(Protocol):
    """Contrato mínimo para ejecutar una petición OCPI.

    Reglas de diseño:
    - `execute` es asíncrono; la cancelación es la de la tarea asyncio.
    - Fallos de red/timeout se elevan como `TransportError`.
    - Nunca interpreta el cuerpo: eso es trabajo de `adapters.ocpi_response`.
    """

    async def execute(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> "httpx.Response":
        ...
