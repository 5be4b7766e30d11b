"""Despacho de comandos OCPI con correlación asíncrona.

Flujo por comando:
1. ids normalizados (caller o uuid4);
2. endpoint commands/RECEIVER vía `EndpointResolver`;
3. payload con `response_url` = `<base>/<versión>/emsp/<TIPO><command_id>`;
4. registro en `CommandCorrelationStore` ANTES del POST (un callback rápido
   siempre encuentra su entrada);
5. POST `<endpoint>/<TIPO>` con X-Request-ID / X-Correlation-ID;
6. `CommandResponse` al slot síncrono;
7. sobre de respuesta; cualquier excepción se convierte en sobre -1.

La cancelación de la tarea no retira el registro: un callback tardío se sigue
guardando. Los observadores reciben igualmente su evento de respuesta, con un
sobre -1 "Request cancelled".
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, TypeVar

from adapters.http_client import build_ocpi_headers, join_url
from adapters.ocpi_response import parse_object
from core.domain.commands import AnyCommand, CommandResponse, CommandType, PendingCommand
from core.domain.envelope import CANCELLED_MESSAGE, NO_REMOTE_URL_MESSAGE, ResponseEnvelope
from core.domain.models import InterfaceRole, ModuleId
from core.interfaces.transport import HTTPExecutor
from core.services.call_context import CallContext
from core.services.correlation_store import CommandCorrelationStore
from core.services.counters import APICounters
from core.services.endpoint_resolver import EndpointResolver
from core.services.hooks import CallEvent, ClientHooks
from core.services.version_registry import VersionRegistry

LOG = logging.getLogger(__name__)

TCommand = TypeVar("TCommand", bound=AnyCommand)


class CommandDispatcher:
    def __init__(
        self,
        *,
        executor: HTTPExecutor,
        registry: VersionRegistry,
        resolver: EndpointResolver,
        store: CommandCorrelationStore,
        local_commands_base_url: str,
        hooks: ClientHooks | None = None,
        counters: APICounters | None = None,
    ) -> None:
        self._executor = executor
        self._registry = registry
        self._resolver = resolver
        self._store = store
        self._local_base = local_commands_base_url.rstrip("/")
        self._hooks = hooks or ClientHooks()
        self._counters = counters or APICounters()

    def callback_url(self, version: str, command_type: CommandType, command_id: str) -> str:
        return f"{self._local_base}/{version}/emsp/{command_type.value}{command_id}"

    async def dispatch(
        self,
        command_type: CommandType,
        build: Callable[[str], TCommand],
        ctx: CallContext,
    ) -> ResponseEnvelope[TCommand, CommandResponse]:
        """Ejecuta el protocolo completo para un comando.

        `build` recibe el `response_url` y devuelve el comando a enviar.
        `ctx` debe venir normalizado y con `command_id`.
        """

        if not ctx.command_id:
            raise ValueError("dispatch requires a normalized CallContext with a command_id")
        command_id = ctx.command_id

        operation = command_type.value
        started_at = datetime.now(timezone.utc)
        started = time.perf_counter()
        self._hooks.emit_request(
            CallEvent(
                operation=operation,
                request_id=ctx.request_id,
                correlation_id=ctx.correlation_id,
                command_id=command_id,
                started_at=started_at,
            )
        )

        self._counters.request_ok(operation)

        command: TCommand | None = None
        envelope: ResponseEnvelope | None = None
        try:
            remote_url = await self._resolver.resolve(ModuleId.COMMANDS, InterfaceRole.RECEIVER, ctx.version)
            version = await self._registry.select_version(ctx.version) if remote_url else None
            if remote_url is None or version is None:
                LOG.warning("%s %s: no commands endpoint available", operation, command_id)
                self._counters.request_error(operation)
                envelope = ResponseEnvelope.error(
                    NO_REMOTE_URL_MESSAGE,
                    request_id=ctx.request_id,
                    correlation_id=ctx.correlation_id,
                )
            else:
                command = build(self.callback_url(version, command_type, command_id))
                envelope = await self._send(command, remote_url, ctx)
                self._counters.response_ok(operation)
        except asyncio.CancelledError:
            LOG.info("%s %s cancelled; pending entry kept", operation, command_id)
            envelope = ResponseEnvelope.error(
                CANCELLED_MESSAGE,
                request=command,
                request_id=ctx.request_id,
                correlation_id=ctx.correlation_id,
            )
            raise
        except Exception as exc:
            LOG.warning("%s %s failed: %s", operation, command_id, exc)
            self._counters.response_error(operation)
            envelope = ResponseEnvelope.exception(
                exc,
                request=command,
                request_id=ctx.request_id,
                correlation_id=ctx.correlation_id,
            )
        finally:
            self._hooks.emit_response(
                CallEvent(
                    operation=operation,
                    request_id=ctx.request_id,
                    correlation_id=ctx.correlation_id,
                    command_id=command_id,
                    started_at=started_at,
                    envelope=envelope,
                    elapsed_seconds=time.perf_counter() - started,
                )
            )
        return envelope

    async def _send(self, command: TCommand, remote_url: str, ctx: CallContext) -> ResponseEnvelope:
        command_id = ctx.command_id
        assert command_id is not None

        # Registro antes de transmitir.
        self._store.upsert(
            command_id,
            lambda cid: PendingCommand.from_command(
                command,
                command_id=cid,
                request_id=ctx.request_id,
                correlation_id=ctx.correlation_id,
            ),
            lambda cid, existing: existing.merged_with(
                command,
                request_id=ctx.request_id,
                correlation_id=ctx.correlation_id,
            ),
        )

        headers = build_ocpi_headers(request_id=ctx.request_id, correlation_id=ctx.correlation_id)
        headers["Content-Type"] = "application/json"
        response = await self._executor.execute(
            "POST",
            join_url(remote_url, command.command_type.value),
            headers=headers,
            json=command.to_json(),
            timeout=ctx.timeout,
        )

        envelope = parse_object(
            response,
            parser=CommandResponse.model_validate,
            request=command,
            request_id=ctx.request_id,
            correlation_id=ctx.correlation_id,
        )
        self._store.record_sync_response(command_id, envelope.data)
        LOG.info(
            "%s %s -> %s %s",
            command.command_type.value,
            command_id,
            envelope.status_code,
            envelope.data.result.value if envelope.data is not None else envelope.status_message,
        )
        return envelope
