"""Modelos del dominio OCPI (Pydantic v2).

Por qué Pydantic en el dominio:
- Nos da validación estricta y documentación autocontenida (Field) sin acoplar
  el Core a librerías de I/O.
- La (de)serialización JSON de versiones, endpoints y tokens sale gratis.

Nota:
- Estos modelos describen *qué* anuncia la parte remota, no *cómo* se obtiene.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator
from pydantic.config import ConfigDict


class ModuleId(str, Enum):
    """Módulos OCPI conocidos.

    El conjunto es extensible: `Endpoint.identifier` es un `str`, así que un
    módulo que no aparece aquí se conserva tal cual.
    """

    CDRS = "cdrs"
    CHARGING_PROFILES = "chargingprofiles"
    COMMANDS = "commands"
    CREDENTIALS = "credentials"
    HUB_CLIENT_INFO = "hubclientinfo"
    LOCATIONS = "locations"
    SESSIONS = "sessions"
    TARIFFS = "tariffs"
    TOKENS = "tokens"


class InterfaceRole(str, Enum):
    SENDER = "SENDER"
    RECEIVER = "RECEIVER"


def version_sort_key(version: str) -> tuple[tuple[int, int, str], ...]:
    """Clave de orden para ids de versión ("2.1.1" < "2.2" < "2.10").

    Partes numéricas se comparan como enteros; el resto lexicográficamente y
    después de cualquier parte numérica.
    """

    key: list[tuple[int, int, str]] = []
    for part in version.strip().split("."):
        if part.isdigit():
            key.append((0, int(part), ""))
        else:
            key.append((1, 0, part))
    return tuple(key)


class VersionInformation(BaseModel):
    """Una entrada de la lista de versiones (`GET <versions url>`)."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    version: str = Field(
        ...,
        min_length=1,
        description="Identificador de versión (p.ej. '2.2.1').",
    )
    url: str = Field(
        ...,
        min_length=1,
        description="URL del detalle de esa versión.",
    )


class Endpoint(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    identifier: str = Field(
        ...,
        min_length=1,
        description="Módulo OCPI (ver `ModuleId`).",
    )
    role: InterfaceRole = Field(
        ...,
        description="Lado que expone el endpoint (SENDER/RECEIVER).",
    )
    url: str = Field(
        ...,
        min_length=1,
        description="URL base del módulo.",
    )


class VersionDetail(BaseModel):
    """Mapa de endpoints de una versión.

    Invariante: como mucho un endpoint por par (módulo, rol).
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    version: str = Field(..., min_length=1)
    endpoints: tuple[Endpoint, ...] = Field(default_factory=tuple)

    @model_validator(mode="after")
    def _unique_module_role(self) -> "VersionDetail":
        seen: set[tuple[str, InterfaceRole]] = set()
        for endpoint in self.endpoints:
            key = (endpoint.identifier, endpoint.role)
            if key in seen:
                raise ValueError(
                    f"duplicate endpoint for module '{endpoint.identifier}' and role {endpoint.role.value}"
                )
            seen.add(key)
        return self

    def endpoint_url(self, module: ModuleId | str, role: InterfaceRole) -> str | None:
        identifier = module.value if isinstance(module, ModuleId) else module
        for endpoint in self.endpoints:
            if endpoint.identifier == identifier and endpoint.role == role:
                return endpoint.url
        return None


class TokenType(str, Enum):
    AD_HOC_USER = "AD_HOC_USER"
    APP_USER = "APP_USER"
    OTHER = "OTHER"
    RFID = "RFID"


class WhitelistType(str, Enum):
    ALWAYS = "ALWAYS"
    ALLOWED = "ALLOWED"
    ALLOWED_OFFLINE = "ALLOWED_OFFLINE"
    NEVER = "NEVER"


class EnergyContract(BaseModel):
    model_config = ConfigDict(extra="ignore")

    supplier_name: str = Field(..., min_length=1, max_length=64)
    contract_id: str | None = Field(default=None, max_length=64)


class Token(BaseModel):
    """Token OCPI (RFID/app) emitido por el EMSP.

    Se embebe en ReserveNow/StartSession y es el payload de Put/PatchToken.
    """

    model_config = ConfigDict(extra="ignore")

    country_code: str = Field(..., min_length=2, max_length=2)
    party_id: str = Field(..., min_length=3, max_length=3)
    uid: str = Field(..., min_length=1, max_length=36)
    type: TokenType = Field(...)
    contract_id: str = Field(..., min_length=1, max_length=36)
    visual_number: str | None = Field(default=None, max_length=64)
    issuer: str = Field(..., min_length=1, max_length=64)
    group_id: str | None = Field(default=None, max_length=36)
    valid: bool = Field(...)
    whitelist: WhitelistType = Field(...)
    language: str | None = Field(default=None, min_length=2, max_length=2)
    default_profile_type: str | None = None
    energy_contract: EnergyContract | None = None
    last_updated: datetime = Field(...)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
