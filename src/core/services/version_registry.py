"""Registro de versiones OCPI de la parte remota.

Responsabilidad:
- Descubrir (lazy) las versiones anunciadas en `remote_versions_url`.
- Descargar y cachear el detalle (mapa de endpoints) de cada versión.
- Seleccionar la versión más alta y memorizarla para toda la vida del cliente.

Concurrencia:
- Dos llamadas que compiten por poblar la misma entrada pueden hacer la
  petición dos veces; el contenido es idempotente y gana la última escritura.
"""

from __future__ import annotations

import logging
from typing import Any

from adapters.http_client import build_ocpi_headers
from adapters.ocpi_response import parse_array, parse_object
from core.domain.envelope import ResponseEnvelope
from core.domain.errors import DiscoveryError, TransportError
from core.domain.models import VersionDetail, VersionInformation, version_sort_key
from core.interfaces.transport import HTTPExecutor
from core.services.call_context import CallContext, IdFactory, new_id

LOG = logging.getLogger(__name__)


class VersionRegistry:
    def __init__(
        self,
        executor: HTTPExecutor,
        versions_url: str | None,
        *,
        id_factory: IdFactory = new_id,
    ) -> None:
        self._executor = executor
        self._versions_url = versions_url
        self._id_factory = id_factory

        self._versions: dict[str, str] = {}
        self._details: dict[str, VersionDetail] = {}
        self._selected: str | None = None

    @property
    def versions(self) -> dict[str, str]:
        """Copia del mapa versión -> URL de detalle."""

        return dict(self._versions)

    @property
    def selected_version(self) -> str | None:
        return self._selected

    def detail(self, version: str) -> VersionDetail | None:
        return self._details.get(version)

    async def get_versions(
        self,
        *,
        request_id: str | None = None,
        correlation_id: str | None = None,
        timeout: float | None = None,
    ) -> ResponseEnvelope[None, list[VersionInformation]]:
        """GET de la lista de versiones; en éxito reemplaza la caché."""

        ctx = CallContext.normalize(
            id_factory=self._id_factory,
            request_id=request_id,
            correlation_id=correlation_id,
            timeout=timeout,
        )
        if not self._versions_url:
            return ResponseEnvelope.error(
                "No remote versions URL configured!",
                request_id=ctx.request_id,
                correlation_id=ctx.correlation_id,
            )

        try:
            response = await self._executor.execute(
                "GET",
                self._versions_url,
                headers=build_ocpi_headers(request_id=ctx.request_id, correlation_id=ctx.correlation_id),
                timeout=ctx.timeout,
            )
        except TransportError as exc:
            LOG.warning("Version discovery against %s failed: %s", self._versions_url, exc)
            return ResponseEnvelope.exception(
                exc,
                request_id=ctx.request_id,
                correlation_id=ctx.correlation_id,
            )

        envelope = parse_array(
            response,
            parser=VersionInformation.model_validate,
            request_id=ctx.request_id,
            correlation_id=ctx.correlation_id,
        )
        if envelope.succeeded and envelope.data is not None:
            self._versions = {info.version: info.url for info in envelope.data}
            LOG.info("Remote party advertises OCPI versions: %s", ", ".join(self._versions) or "-")
        return envelope

    async def get_version_detail(
        self,
        version: str,
        *,
        request_id: str | None = None,
        correlation_id: str | None = None,
        timeout: float | None = None,
    ) -> ResponseEnvelope[str, VersionDetail]:
        """GET del detalle de `version`; en éxito lo cachea."""

        ctx = CallContext.normalize(
            id_factory=self._id_factory,
            request_id=request_id,
            correlation_id=correlation_id,
            timeout=timeout,
        )

        if version not in self._versions:
            versions = await self.get_versions(correlation_id=ctx.correlation_id, timeout=ctx.timeout)
            if not versions.succeeded:
                return versions.model_copy(update={"request": version})

        detail_url = self._versions.get(version)
        if detail_url is None:
            return ResponseEnvelope.error(
                "Unknown version identification!",
                request=version,
                request_id=ctx.request_id,
                correlation_id=ctx.correlation_id,
            )

        try:
            response = await self._executor.execute(
                "GET",
                detail_url,
                headers=build_ocpi_headers(request_id=ctx.request_id, correlation_id=ctx.correlation_id),
                timeout=ctx.timeout,
            )
        except TransportError as exc:
            LOG.warning("Fetching version detail %s from %s failed: %s", version, detail_url, exc)
            return ResponseEnvelope.exception(
                exc,
                request=version,
                request_id=ctx.request_id,
                correlation_id=ctx.correlation_id,
            )

        envelope = parse_object(
            response,
            parser=VersionDetail.model_validate,
            request=version,
            request_id=ctx.request_id,
            correlation_id=ctx.correlation_id,
        )
        if envelope.succeeded and envelope.data is not None:
            if envelope.data.version != version:
                LOG.warning(
                    "Version detail fetched for %s reports version %s", version, envelope.data.version
                )
            self._details[version] = envelope.data
        return envelope

    async def ensure_versions(self) -> None:
        """Descubre versiones si la caché está vacía. No reintenta."""

        if self._versions:
            return
        envelope = await self.get_versions()
        if not envelope.succeeded or envelope.data is None:
            raise DiscoveryError(
                f"Version discovery failed ({envelope.status_code}): {envelope.status_message}"
            )

    async def ensure_version_detail(self, version: str) -> None:
        if version in self._details:
            return
        envelope = await self.get_version_detail(version)
        if not envelope.succeeded or envelope.data is None:
            raise DiscoveryError(
                f"Version detail discovery for {version} failed "
                f"({envelope.status_code}): {envelope.status_message}"
            )

    async def select_version(self, explicit: str | None = None) -> str | None:
        """Negociación lazy y memorizada.

        Orden: versión explícita > selección previa > máxima anunciada.
        Devuelve None si la parte remota no anuncia ninguna versión.
        """

        if explicit:
            return explicit
        if self._selected is not None:
            return self._selected

        await self.ensure_versions()
        if not self._versions:
            LOG.warning("Remote party advertises no OCPI versions")
            return None

        best = max(self._versions, key=version_sort_key)
        await self.ensure_version_detail(best)
        self._selected = best
        LOG.info("Selected OCPI version %s", best)
        return best

    def invalidate(self) -> None:
        """Olvida versiones, detalles y selección (re-discovery explícito)."""

        self._versions.clear()
        self._details.clear()
        self._selected = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "versions_url": self._versions_url,
            "versions": dict(self._versions),
            "selected_version": self._selected,
            "version_details": [d.model_dump(mode="json") for d in self._details.values()],
        }
