"""Comandos OCPI (módulo commands) y sus respuestas.

Por qué un módulo propio:
- Un comando tiene dos respuestas con semántica distinta: la síncrona
  (`CommandResponse`, ¿lo aceptó el CPO?) y la asíncrona (`CommandResult`,
  ¿qué pasó en el cargador?), que llega más tarde vía `response_url`.
- `PendingCommand` las junta bajo el mismo `command_id`.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Union

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

from core.domain.models import Token


class CommandType(str, Enum):
    CANCEL_RESERVATION = "CANCEL_RESERVATION"
    RESERVE_NOW = "RESERVE_NOW"
    START_SESSION = "START_SESSION"
    STOP_SESSION = "STOP_SESSION"
    UNLOCK_CONNECTOR = "UNLOCK_CONNECTOR"


class CommandResponseType(str, Enum):
    NOT_SUPPORTED = "NOT_SUPPORTED"
    REJECTED = "REJECTED"
    ACCEPTED = "ACCEPTED"
    UNKNOWN_SESSION = "UNKNOWN_SESSION"


class CommandResultType(str, Enum):
    ACCEPTED = "ACCEPTED"
    CANCELED_RESERVATION = "CANCELED_RESERVATION"
    EVSE_OCCUPIED = "EVSE_OCCUPIED"
    EVSE_INOPERATIVE = "EVSE_INOPERATIVE"
    FAILED = "FAILED"
    NOT_SUPPORTED = "NOT_SUPPORTED"
    REJECTED = "REJECTED"
    TIMEOUT = "TIMEOUT"
    UNKNOWN_RESERVATION = "UNKNOWN_RESERVATION"


class DisplayText(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    language: str = Field(..., min_length=2, max_length=2)
    text: str = Field(..., max_length=512)


class OCPICommand(BaseModel):
    """Base de todos los comandos salientes.

    `command_type` no viaja en el JSON: es el sufijo del path del POST y del
    `response_url`.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    command_type: ClassVar[CommandType]

    response_url: str = Field(
        ...,
        min_length=1,
        description="URL a la que el CPO enviará el `CommandResult`.",
    )

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class ReserveNowCommand(OCPICommand):
    command_type: ClassVar[CommandType] = CommandType.RESERVE_NOW

    token: Token
    expiry_date: datetime
    reservation_id: str = Field(..., min_length=1, max_length=36)
    location_id: str = Field(..., min_length=1, max_length=36)
    evse_uid: str | None = Field(default=None, max_length=36)
    authorization_reference: str | None = Field(default=None, max_length=36)


class CancelReservationCommand(OCPICommand):
    command_type: ClassVar[CommandType] = CommandType.CANCEL_RESERVATION

    reservation_id: str = Field(..., min_length=1, max_length=36)


class StartSessionCommand(OCPICommand):
    command_type: ClassVar[CommandType] = CommandType.START_SESSION

    token: Token
    location_id: str = Field(..., min_length=1, max_length=36)
    evse_uid: str | None = Field(default=None, max_length=36)
    connector_id: str | None = Field(default=None, max_length=36)
    authorization_reference: str | None = Field(default=None, max_length=36)


class StopSessionCommand(OCPICommand):
    command_type: ClassVar[CommandType] = CommandType.STOP_SESSION

    session_id: str = Field(..., min_length=1, max_length=36)


class UnlockConnectorCommand(OCPICommand):
    command_type: ClassVar[CommandType] = CommandType.UNLOCK_CONNECTOR

    location_id: str = Field(..., min_length=1, max_length=36)
    evse_uid: str = Field(..., min_length=1, max_length=36)
    connector_id: str = Field(..., min_length=1, max_length=36)


AnyCommand = Union[
    ReserveNowCommand,
    CancelReservationCommand,
    StartSessionCommand,
    StopSessionCommand,
    UnlockConnectorCommand,
]


class CommandResponse(BaseModel):
    """Respuesta síncrona del CPO al POST del comando."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    result: CommandResponseType
    timeout: int = Field(..., ge=0, description="Segundos que el CPO dará al cargador.")
    message: tuple[DisplayText, ...] = Field(default_factory=tuple)


class CommandResult(BaseModel):
    """Resultado asíncrono que el CPO envía a `response_url`."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    result: CommandResultType
    message: tuple[DisplayText, ...] = Field(default_factory=tuple)


@dataclass
class PendingCommand:
    """Estado de correlación de un comando emitido.

    Ciclo de vida:
    - se crea al despachar (o antes, como placeholder, si el callback gana);
    - `sync_response` lo escribe el dispatcher al completar el POST;
    - `async_result` lo escribe el handler del callback entrante.
    """

    command_id: str
    command_type: CommandType | None = None
    request_id: str | None = None
    correlation_id: str | None = None
    command: AnyCommand | None = None
    sync_response: CommandResponse | None = None
    async_result: CommandResult | None = None
    created_at: float = field(default_factory=time.monotonic)
    updated_at: float = field(default_factory=time.monotonic)
    result_ready: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)

    @classmethod
    def from_command(
        cls,
        command: AnyCommand,
        *,
        command_id: str,
        request_id: str,
        correlation_id: str,
    ) -> "PendingCommand":
        return cls(
            command_id=command_id,
            command_type=command.command_type,
            request_id=request_id,
            correlation_id=correlation_id,
            command=command,
        )

    def merged_with(
        self,
        command: AnyCommand,
        *,
        request_id: str,
        correlation_id: str,
    ) -> "PendingCommand":
        """Nueva versión con el payload saliente actualizado.

        Conserva el resultado asíncrono (y su evento) si ya había llegado.
        """

        return PendingCommand(
            command_id=self.command_id,
            command_type=command.command_type,
            request_id=request_id,
            correlation_id=correlation_id,
            command=command,
            sync_response=self.sync_response,
            async_result=self.async_result,
            created_at=self.created_at,
            result_ready=self.result_ready,
        )
