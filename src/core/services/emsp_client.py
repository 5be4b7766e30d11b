"""Cliente OCPI del lado EMSP.

Este módulo cablea las piezas (registro de versiones, resolver, store de
correlación, dispatcher) y expone las operaciones públicas: comandos
asíncronos y las consultas simples (locations, tariffs, sessions, cdrs,
tokens). Cada instancia es dueña de su registro y de su store; nada se
comparte entre instancias salvo que se inyecte explícitamente.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

from adapters.http_client import HttpxExecutor, build_ocpi_headers, join_url
from adapters.ocpi_response import parse_array, parse_object
from core.config import AppSettings
from core.domain.commands import (
    CancelReservationCommand,
    CommandResponse,
    CommandResult,
    CommandType,
    ReserveNowCommand,
    StartSessionCommand,
    StopSessionCommand,
    UnlockConnectorCommand,
)
from core.domain.envelope import CANCELLED_MESSAGE, NO_REMOTE_URL_MESSAGE, ResponseEnvelope
from core.domain.models import InterfaceRole, ModuleId, Token, TokenType
from core.interfaces.transport import HTTPExecutor
from core.services.call_context import CallContext, IdFactory, new_id
from core.services.command_dispatcher import CommandDispatcher
from core.services.correlation_store import CommandCorrelationStore
from core.services.counters import APICounters
from core.services.endpoint_resolver import EndpointResolver
from core.services.hooks import CallEvent, ClientHooks
from core.services.version_registry import VersionRegistry

LOG = logging.getLogger(__name__)


def _require(**values: Any) -> None:
    for name, value in values.items():
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError(f"'{name}' is required")


def _raw_object(item: dict[str, Any]) -> dict[str, Any]:
    return item


class EMSPClient:
    def __init__(
        self,
        settings: AppSettings | None = None,
        *,
        executor: HTTPExecutor | None = None,
        store: CommandCorrelationStore | None = None,
        hooks: ClientHooks | None = None,
        counters: APICounters | None = None,
        id_factory: IdFactory = new_id,
    ) -> None:
        self._settings = settings or AppSettings()
        self._executor = executor or HttpxExecutor(self._settings)
        self._id_factory = id_factory

        self.hooks = hooks or ClientHooks()
        self.counters = counters or APICounters()
        self.store = store or CommandCorrelationStore(ttl_seconds=self._settings.command_ttl_seconds)
        self.registry = VersionRegistry(
            self._executor,
            self._settings.remote_versions_url,
            id_factory=id_factory,
        )
        self.resolver = EndpointResolver(self.registry)
        self.dispatcher = CommandDispatcher(
            executor=self._executor,
            registry=self.registry,
            resolver=self.resolver,
            store=self.store,
            local_commands_base_url=self._settings.local_commands_base_url,
            hooks=self.hooks,
            counters=self.counters,
        )

    async def aclose(self) -> None:
        close = getattr(self._executor, "aclose", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> "EMSPClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _command_context(
        self,
        command_id: str | None,
        request_id: str | None,
        correlation_id: str | None,
        version: str | None,
        timeout: float | None,
    ) -> CallContext:
        return CallContext.normalize(
            id_factory=self._id_factory,
            command_id=command_id,
            with_command_id=True,
            request_id=request_id,
            correlation_id=correlation_id,
            version=version,
            timeout=timeout,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def reserve_now(
        self,
        token: Token,
        expiry_date: datetime,
        reservation_id: str,
        location_id: str,
        evse_uid: str | None = None,
        authorization_reference: str | None = None,
        *,
        command_id: str | None = None,
        request_id: str | None = None,
        correlation_id: str | None = None,
        version: str | None = None,
        timeout: float | None = None,
    ) -> ResponseEnvelope[ReserveNowCommand, CommandResponse]:
        _require(token=token, expiry_date=expiry_date, reservation_id=reservation_id, location_id=location_id)
        ctx = self._command_context(command_id, request_id, correlation_id, version, timeout)
        return await self.dispatcher.dispatch(
            CommandType.RESERVE_NOW,
            lambda response_url: ReserveNowCommand(
                response_url=response_url,
                token=token,
                expiry_date=expiry_date,
                reservation_id=reservation_id,
                location_id=location_id,
                evse_uid=evse_uid,
                authorization_reference=authorization_reference,
            ),
            ctx,
        )

    async def cancel_reservation(
        self,
        reservation_id: str,
        *,
        command_id: str | None = None,
        request_id: str | None = None,
        correlation_id: str | None = None,
        version: str | None = None,
        timeout: float | None = None,
    ) -> ResponseEnvelope[CancelReservationCommand, CommandResponse]:
        _require(reservation_id=reservation_id)
        ctx = self._command_context(command_id, request_id, correlation_id, version, timeout)
        return await self.dispatcher.dispatch(
            CommandType.CANCEL_RESERVATION,
            lambda response_url: CancelReservationCommand(
                response_url=response_url,
                reservation_id=reservation_id,
            ),
            ctx,
        )

    async def start_session(
        self,
        token: Token,
        location_id: str,
        evse_uid: str | None = None,
        connector_id: str | None = None,
        authorization_reference: str | None = None,
        *,
        command_id: str | None = None,
        request_id: str | None = None,
        correlation_id: str | None = None,
        version: str | None = None,
        timeout: float | None = None,
    ) -> ResponseEnvelope[StartSessionCommand, CommandResponse]:
        _require(token=token, location_id=location_id)
        if connector_id and not evse_uid:
            raise ValueError("'connector_id' requires 'evse_uid'")
        ctx = self._command_context(command_id, request_id, correlation_id, version, timeout)
        return await self.dispatcher.dispatch(
            CommandType.START_SESSION,
            lambda response_url: StartSessionCommand(
                response_url=response_url,
                token=token,
                location_id=location_id,
                evse_uid=evse_uid,
                connector_id=connector_id,
                authorization_reference=authorization_reference,
            ),
            ctx,
        )

    async def stop_session(
        self,
        session_id: str,
        *,
        command_id: str | None = None,
        request_id: str | None = None,
        correlation_id: str | None = None,
        version: str | None = None,
        timeout: float | None = None,
    ) -> ResponseEnvelope[StopSessionCommand, CommandResponse]:
        _require(session_id=session_id)
        ctx = self._command_context(command_id, request_id, correlation_id, version, timeout)
        return await self.dispatcher.dispatch(
            CommandType.STOP_SESSION,
            lambda response_url: StopSessionCommand(
                response_url=response_url,
                session_id=session_id,
            ),
            ctx,
        )

    async def unlock_connector(
        self,
        location_id: str,
        evse_uid: str,
        connector_id: str,
        *,
        command_id: str | None = None,
        request_id: str | None = None,
        correlation_id: str | None = None,
        version: str | None = None,
        timeout: float | None = None,
    ) -> ResponseEnvelope[UnlockConnectorCommand, CommandResponse]:
        _require(location_id=location_id, evse_uid=evse_uid, connector_id=connector_id)
        ctx = self._command_context(command_id, request_id, correlation_id, version, timeout)
        return await self.dispatcher.dispatch(
            CommandType.UNLOCK_CONNECTOR,
            lambda response_url: UnlockConnectorCommand(
                response_url=response_url,
                location_id=location_id,
                evse_uid=evse_uid,
                connector_id=connector_id,
            ),
            ctx,
        )

    async def wait_for_command_result(self, command_id: str, timeout: float | None = None) -> CommandResult | None:
        return await self.store.wait_for_result(command_id, timeout)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _query(
        self,
        operation: str,
        module: ModuleId,
        role: InterfaceRole,
        *,
        method: str = "GET",
        path: tuple[str, ...] = (),
        params: dict[str, Any] | None = None,
        body: Any = None,
        request: Any = None,
        parser: Callable[[dict[str, Any]], Any] = _raw_object,
        many: bool = False,
        request_id: str | None = None,
        correlation_id: str | None = None,
        version: str | None = None,
        timeout: float | None = None,
    ) -> ResponseEnvelope:
        ctx = CallContext.normalize(
            id_factory=self._id_factory,
            request_id=request_id,
            correlation_id=correlation_id,
            version=version,
            timeout=timeout,
        )
        started_at = datetime.now(timezone.utc)
        started = time.perf_counter()
        self.hooks.emit_request(
            CallEvent(
                operation=operation,
                request_id=ctx.request_id,
                correlation_id=ctx.correlation_id,
                started_at=started_at,
            )
        )
        self.counters.request_ok(operation)

        envelope: ResponseEnvelope | None = None
        try:
            remote_url = await self.resolver.resolve(module, role, ctx.version)
            if remote_url is None:
                self.counters.request_error(operation)
                envelope = ResponseEnvelope.error(
                    NO_REMOTE_URL_MESSAGE,
                    request=request,
                    request_id=ctx.request_id,
                    correlation_id=ctx.correlation_id,
                )
            else:
                headers = build_ocpi_headers(request_id=ctx.request_id, correlation_id=ctx.correlation_id)
                if body is not None:
                    headers["Content-Type"] = "application/json"
                response = await self._executor.execute(
                    method,
                    join_url(remote_url, *path) if path else remote_url,
                    headers=headers,
                    json=body,
                    params=params,
                    timeout=ctx.timeout,
                )
                parse = parse_array if many else parse_object
                envelope = parse(
                    response,
                    parser=parser,
                    request=request,
                    request_id=ctx.request_id,
                    correlation_id=ctx.correlation_id,
                )
                self.counters.response_ok(operation)
        except asyncio.CancelledError:
            LOG.info("%s cancelled", operation)
            envelope = ResponseEnvelope.error(
                CANCELLED_MESSAGE,
                request=request,
                request_id=ctx.request_id,
                correlation_id=ctx.correlation_id,
            )
            raise
        except Exception as exc:
            LOG.warning("%s failed: %s", operation, exc)
            self.counters.response_error(operation)
            envelope = ResponseEnvelope.exception(
                exc,
                request=request,
                request_id=ctx.request_id,
                correlation_id=ctx.correlation_id,
            )
        finally:
            self.hooks.emit_response(
                CallEvent(
                    operation=operation,
                    request_id=ctx.request_id,
                    correlation_id=ctx.correlation_id,
                    started_at=started_at,
                    envelope=envelope,
                    elapsed_seconds=time.perf_counter() - started,
                )
            )
        return envelope

    @staticmethod
    def _page_params(
        offset: int | None,
        limit: int | None,
        date_from: datetime | None,
        date_to: datetime | None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if offset is not None:
            params["offset"] = offset
        if limit is not None:
            params["limit"] = limit
        if date_from is not None:
            params["date_from"] = date_from.isoformat()
        if date_to is not None:
            params["date_to"] = date_to.isoformat()
        return params

    async def _get_list(
        self,
        operation: str,
        module: ModuleId,
        *,
        offset: int | None,
        limit: int | None,
        date_from: datetime | None,
        date_to: datetime | None,
        **call: Any,
    ) -> ResponseEnvelope[None, list[dict[str, Any]]]:
        return await self._query(
            operation,
            module,
            InterfaceRole.SENDER,
            params=self._page_params(offset, limit, date_from, date_to),
            many=True,
            **call,
        )

    async def get_locations(
        self,
        *,
        offset: int | None = None,
        limit: int | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        **call: Any,
    ) -> ResponseEnvelope[None, list[dict[str, Any]]]:
        return await self._get_list(
            "GetLocations", ModuleId.LOCATIONS,
            offset=offset, limit=limit, date_from=date_from, date_to=date_to, **call,
        )

    async def get_tariffs(
        self,
        *,
        offset: int | None = None,
        limit: int | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        **call: Any,
    ) -> ResponseEnvelope[None, list[dict[str, Any]]]:
        return await self._get_list(
            "GetTariffs", ModuleId.TARIFFS,
            offset=offset, limit=limit, date_from=date_from, date_to=date_to, **call,
        )

    async def get_sessions(
        self,
        *,
        offset: int | None = None,
        limit: int | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        **call: Any,
    ) -> ResponseEnvelope[None, list[dict[str, Any]]]:
        return await self._get_list(
            "GetSessions", ModuleId.SESSIONS,
            offset=offset, limit=limit, date_from=date_from, date_to=date_to, **call,
        )

    async def get_cdrs(
        self,
        *,
        offset: int | None = None,
        limit: int | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        **call: Any,
    ) -> ResponseEnvelope[None, list[dict[str, Any]]]:
        return await self._get_list(
            "GetCDRs", ModuleId.CDRS,
            offset=offset, limit=limit, date_from=date_from, date_to=date_to, **call,
        )

    async def _get_one(
        self, operation: str, module: ModuleId, *path: str, **call: Any
    ) -> ResponseEnvelope[None, dict[str, Any]]:
        return await self._query(operation, module, InterfaceRole.SENDER, path=path, **call)

    async def get_location(self, location_id: str, **call: Any) -> ResponseEnvelope[None, dict[str, Any]]:
        _require(location_id=location_id)
        return await self._get_one("GetLocation", ModuleId.LOCATIONS, location_id, **call)

    async def get_evse(
        self, location_id: str, evse_uid: str, **call: Any
    ) -> ResponseEnvelope[None, dict[str, Any]]:
        _require(location_id=location_id, evse_uid=evse_uid)
        return await self._get_one("GetEVSE", ModuleId.LOCATIONS, location_id, evse_uid, **call)

    async def get_connector(
        self, location_id: str, evse_uid: str, connector_id: str, **call: Any
    ) -> ResponseEnvelope[None, dict[str, Any]]:
        _require(location_id=location_id, evse_uid=evse_uid, connector_id=connector_id)
        return await self._get_one(
            "GetConnector", ModuleId.LOCATIONS, location_id, evse_uid, connector_id, **call
        )

    async def get_tariff(self, tariff_id: str, **call: Any) -> ResponseEnvelope[None, dict[str, Any]]:
        _require(tariff_id=tariff_id)
        return await self._get_one("GetTariff", ModuleId.TARIFFS, tariff_id, **call)

    async def get_session(self, session_id: str, **call: Any) -> ResponseEnvelope[None, dict[str, Any]]:
        _require(session_id=session_id)
        return await self._get_one("GetSession", ModuleId.SESSIONS, session_id, **call)

    async def get_cdr(self, cdr_id: str, **call: Any) -> ResponseEnvelope[None, dict[str, Any]]:
        _require(cdr_id=cdr_id)
        return await self._get_one("GetCDR", ModuleId.CDRS, cdr_id, **call)

    async def get_token(
        self,
        country_code: str,
        party_id: str,
        token_uid: str,
        token_type: TokenType | None = None,
        **call: Any,
    ) -> ResponseEnvelope[None, Token]:
        _require(country_code=country_code, party_id=party_id, token_uid=token_uid)
        return await self._query(
            "GetToken",
            ModuleId.TOKENS,
            InterfaceRole.RECEIVER,
            path=(country_code, party_id, token_uid),
            params={"type": token_type.value} if token_type else None,
            parser=Token.model_validate,
            **call,
        )

    async def put_token(self, token: Token, **call: Any) -> ResponseEnvelope[Token, Token]:
        _require(token=token)
        return await self._query(
            "PutToken",
            ModuleId.TOKENS,
            InterfaceRole.RECEIVER,
            method="PUT",
            path=(token.country_code, token.party_id, token.uid),
            params={"type": token.type.value},
            body=token.to_json(),
            request=token,
            parser=Token.model_validate,
            **call,
        )

    async def patch_token(
        self,
        country_code: str,
        party_id: str,
        token_uid: str,
        patch: dict[str, Any],
        token_type: TokenType | None = None,
        **call: Any,
    ) -> ResponseEnvelope[dict[str, Any], Token]:
        _require(country_code=country_code, party_id=party_id, token_uid=token_uid, patch=patch)
        if "last_updated" not in patch:
            raise ValueError("a token patch must include 'last_updated'")
        return await self._query(
            "PatchToken",
            ModuleId.TOKENS,
            InterfaceRole.RECEIVER,
            method="PATCH",
            path=(country_code, party_id, token_uid),
            params={"type": token_type.value} if token_type else None,
            body=patch,
            request=patch,
            parser=Token.model_validate,
            **call,
        )
