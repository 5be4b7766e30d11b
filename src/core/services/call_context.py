"""Normalización de ids y opciones por llamada.

Todas las operaciones públicas aceptan ids opcionales; se rellenan aquí una
única vez, a la entrada, y el resto del flujo trabaja con valores concretos.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable

IdFactory = Callable[[], str]


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class CallContext:
    request_id: str
    correlation_id: str
    command_id: str | None = None
    version: str | None = None
    timeout: float | None = None

    @classmethod
    def normalize(
        cls,
        *,
        id_factory: IdFactory = new_id,
        request_id: str | None = None,
        correlation_id: str | None = None,
        command_id: str | None = None,
        with_command_id: bool = False,
        version: str | None = None,
        timeout: float | None = None,
    ) -> "CallContext":
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be greater than zero")
        if with_command_id and not command_id:
            command_id = id_factory()
        return cls(
            request_id=request_id or id_factory(),
            correlation_id=correlation_id or id_factory(),
            command_id=command_id,
            version=version or None,
            timeout=timeout,
        )
