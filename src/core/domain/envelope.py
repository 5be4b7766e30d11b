"""Sobre uniforme de respuesta (`ResponseEnvelope`).

Por qué un sobre genérico:
- Toda llamada (discovery, queries, comandos) devuelve la misma forma, con
  los ids de correlación usados, para cruzar logs y callbacks posteriores.
- Los fallos locales (sin red, excepción, endpoint ausente) usan status -1 y
  nunca se propagan como excepción al llamador.
"""

from __future__ import annotations

import traceback
from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

TRequest = TypeVar("TRequest")
TResult = TypeVar("TResult")

LOCAL_ERROR_STATUS = -1
NO_REMOTE_URL_MESSAGE = "No remote URL available!"
CANCELLED_MESSAGE = "Request cancelled"


class ResponseEnvelope(BaseModel, Generic[TRequest, TResult]):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    request: TRequest | None = Field(
        default=None,
        description="Payload saliente (p.ej. el comando) al que responde este sobre.",
    )
    data: TResult | None = Field(
        default=None,
        description="Resultado parseado (solo en éxito).",
    )
    status_code: int = Field(
        ...,
        description="Status OCPI (1xxx éxito, 2xxx/3xxx error remoto, -1 fallo local).",
    )
    status_message: str = Field(default="")
    detail: str | None = Field(
        default=None,
        description="Información de diagnóstico (cuerpo crudo, traceback).",
    )
    http_status: int | None = Field(default=None)
    timestamp: datetime | None = Field(default=None)

    request_id: str | None = Field(default=None)
    correlation_id: str | None = Field(default=None)
    location: str | None = Field(default=None)

    from_country_code: str | None = None
    from_party_id: str | None = None
    to_country_code: str | None = None
    to_party_id: str | None = None

    @property
    def succeeded(self) -> bool:
        return 1000 <= self.status_code < 2000

    @classmethod
    def error(
        cls,
        message: str,
        *,
        request: TRequest | None = None,
        detail: str | None = None,
        request_id: str | None = None,
        correlation_id: str | None = None,
    ) -> "ResponseEnvelope[TRequest, TResult]":
        return cls(
            request=request,
            status_code=LOCAL_ERROR_STATUS,
            status_message=message,
            detail=detail,
            request_id=request_id,
            correlation_id=correlation_id,
        )

    @classmethod
    def exception(
        cls,
        exc: BaseException,
        *,
        request: TRequest | None = None,
        request_id: str | None = None,
        correlation_id: str | None = None,
    ) -> "ResponseEnvelope[TRequest, TResult]":
        detail = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return cls.error(
            str(exc) or exc.__class__.__name__,
            request=request,
            detail=detail,
            request_id=request_id,
            correlation_id=correlation_id,
        )
