"""Resolución (módulo, rol) -> URL base del endpoint remoto."""

from __future__ import annotations

import logging

from core.domain.models import InterfaceRole, ModuleId
from core.services.version_registry import VersionRegistry

LOG = logging.getLogger(__name__)


class EndpointResolver:
    def __init__(self, registry: VersionRegistry) -> None:
        self._registry = registry

    async def resolve(
        self,
        module: ModuleId | str,
        role: InterfaceRole,
        version: str | None = None,
    ) -> str | None:
        """URL del endpoint, o None si la parte remota no lo expone.

        `None` significa "funcionalidad no soportada por el remoto", no error.
        `DiscoveryError` del registro sí se propaga.
        """

        selected = await self._registry.select_version(version)
        if selected is None:
            return None

        detail = self._registry.detail(selected)
        if detail is None:
            await self._registry.ensure_version_detail(selected)
            detail = self._registry.detail(selected)
        if detail is None:
            return None

        url = detail.endpoint_url(module, role)
        if url is None:
            name = module.value if isinstance(module, ModuleId) else module
            LOG.info("Remote party exposes no %s %s endpoint in version %s", name, role.value, selected)
        return url
