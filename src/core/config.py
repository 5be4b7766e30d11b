"""Configuración del Core.

Por qué aquí:
- Centraliza variables de entorno (pydantic-settings) sin contaminar la CLI.
- Permite que adaptadores (HTTP) y servicios lean config de forma consistente.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_user_config_dir() -> Path:
    """Directorio de configuración por usuario (cross-platform, sin dependencias)."""

    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", str(Path.home())))
        return base / "ocpi-emsp"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "ocpi-emsp"

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "ocpi-emsp"
    return Path.home() / ".config" / "ocpi-emsp"


def get_user_env_file() -> Path:
    return get_user_config_dir() / ".env"


def _parse_env_lines(text: str) -> dict[str, str]:
    data: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key:
            data[key] = value
    return data


def write_user_env_vars(values: dict[str, str], *, env_path: Path | None = None) -> Path:
    """Escribe/actualiza variables en el .env global del usuario."""

    env_path = env_path or get_user_env_file()
    env_path.parent.mkdir(parents=True, exist_ok=True)

    existing: dict[str, str] = {}
    if env_path.exists():
        existing = _parse_env_lines(env_path.read_text(encoding="utf-8"))

    existing.update({k: v for k, v in values.items() if v is not None})

    lines = ["# ocpi-emsp user config (.env)"]
    for key in sorted(existing.keys()):
        lines.append(f"{key}={existing[key]}")
    env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return env_path


class AppSettings(BaseSettings):
    """Configuración central del cliente EMSP.

    Por qué pydantic-settings:
    - Tipado + validación en el borde (env vars) sin ensuciar el Core con lógica.
    - Un único contrato de configuración para CLI/adapters/servicios.
    """

    model_config = SettingsConfigDict(
        env_prefix="OCPI_EMSP_",
        extra="ignore",
        case_sensitive=False,
        # Orden: proyecto primero (dev), luego config global de usuario.
        env_file=(".env", str(get_user_env_file())),
        env_file_encoding="utf-8",
    )

    remote_versions_url: str | None = Field(
        default=None,
        description="URL del endpoint 'versions' del CPO remoto.",
    )
    remote_access_token: str | None = Field(
        default=None,
        description="Token OCPI (credentials token) para el header Authorization.",
    )
    remote_access_token_base64: bool = Field(
        default=False,
        description="Codificar el token en Base64 (OCPI 2.2+).",
    )
    local_commands_base_url: str = Field(
        default="http://localhost:8080/ocpi/commands",
        min_length=8,
        description="Base pública de nuestro módulo commands (destino de los callbacks).",
    )

    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout por request por defecto (segundos).",
    )
    user_agent: str = Field(
        default="ocpi-emsp/0.1",
        min_length=1,
        description="User-Agent de las peticiones OCPI.",
    )

    command_ttl_seconds: float | None = Field(
        default=86_400.0,
        ge=0,
        description="Tiempo de vida de un comando pendiente en el store (None o 0 = sin expiración).",
    )

    log_level: str = Field(
        default="INFO",
        min_length=1,
        description="Nivel de logging (DEBUG, INFO, WARNING, ...).",
    )
