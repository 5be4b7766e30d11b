"""Store de correlación de comandos (`command_id` -> `PendingCommand`).

Por qué un servicio inyectado (y no un dict global):
- El cliente lo crea y lo comparte por referencia con quien aloje el handler
  de callbacks entrantes; no hay estado ambiente.
- Un `threading.Lock` lo hace seguro tanto desde el event loop como desde el
  hilo de un listener HTTP externo.

Esperas:
- `wait_for_result` no bloquea hilos: cada espera es un `asyncio.Future` de
  su loop, que el callback completa con `loop.call_soon_threadsafe`.
- `remove()` y la purga por TTL despiertan a quien espere con `None`.

Política de expiración:
- TTL opcional medido desde la última escritura; la purga es lazy (en cada
  escritura) o explícita con `purge_expired()` / `remove()`.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Any, Callable, Mapping, Optional, Tuple

from pydantic import ValidationError

from core.domain.commands import CommandResponse, CommandResult, PendingCommand
from core.domain.errors import ProtocolError

LOG = logging.getLogger(__name__)

_Waiter = Tuple[asyncio.AbstractEventLoop, "asyncio.Future[Optional[CommandResult]]"]


def _resolve(future: "asyncio.Future[Optional[CommandResult]]", result: CommandResult | None) -> None:
    if not future.done():
        future.set_result(result)


def _wake(waiters: list[_Waiter], result: CommandResult | None) -> None:
    """Completa esperas desde cualquier hilo. Llamar fuera del lock."""

    for loop, future in waiters:
        if loop.is_closed():
            continue
        try:
            loop.call_soon_threadsafe(_resolve, future, result)
        except RuntimeError:
            # El loop se cerró entre la comprobación y la llamada.
            LOG.debug("Waiter loop closed before it could be woken")


class CommandCorrelationStore:
    def __init__(
        self,
        *,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, PendingCommand] = {}
        self._waiters: dict[str, list[_Waiter]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, command_id: object) -> bool:
        with self._lock:
            return command_id in self._entries

    @property
    def waiting(self) -> int:
        """Número de esperas `wait_for_result` en curso."""

        with self._lock:
            return sum(len(w) for w in self._waiters.values())

    def upsert(
        self,
        command_id: str,
        build_if_absent: Callable[[str], PendingCommand],
        merge_if_present: Callable[[str, PendingCommand], PendingCommand],
    ) -> PendingCommand:
        """Inserta o actualiza de forma atómica.

        `merge_if_present` debe conservar el resultado asíncrono existente.
        """

        stranded: list[_Waiter] = []
        with self._lock:
            now = self._clock()
            self._purge_expired_locked(now, stranded)
            existing = self._entries.get(command_id)
            if existing is None:
                entry = build_if_absent(command_id)
                entry.created_at = now
            else:
                entry = merge_if_present(command_id, existing)
            entry.updated_at = now
            self._entries[command_id] = entry
        _wake(stranded, None)
        return entry

    def try_get(self, command_id: str) -> PendingCommand | None:
        with self._lock:
            return self._entries.get(command_id)

    def record_sync_response(self, command_id: str, response: CommandResponse | None) -> bool:
        """Escribe la respuesta síncrona; no toca nada más."""

        with self._lock:
            entry = self._entries.get(command_id)
            if entry is None:
                return False
            entry.sync_response = response
            entry.updated_at = self._clock()
            return True

    def record_async_result(self, command_id: str, result: CommandResult) -> PendingCommand:
        """Escribe el resultado del callback y despierta a quien espere.

        Si el callback llega antes que el registro, deja un placeholder que el
        registro posterior fusiona sin perder este resultado.
        """

        with self._lock:
            now = self._clock()
            entry = self._entries.get(command_id)
            if entry is None:
                LOG.info("Command result for unknown command %s, storing placeholder", command_id)
                entry = PendingCommand(command_id=command_id, created_at=now)
                self._entries[command_id] = entry
            entry.async_result = result
            entry.updated_at = now
            entry.result_ready.set()
            waiters = self._waiters.pop(command_id, [])
        _wake(waiters, result)
        return entry

    def apply_callback(self, command_id: str, payload: Mapping[str, Any] | str | bytes) -> PendingCommand:
        """Parsea el cuerpo de un callback (`CommandResult`) y lo registra."""

        try:
            if isinstance(payload, (str, bytes)):
                result = CommandResult.model_validate_json(payload)
            else:
                result = CommandResult.model_validate(payload)
        except ValidationError as exc:
            raise ProtocolError(f"Invalid CommandResult for command {command_id}: {exc}") from exc
        return self.record_async_result(command_id, result)

    async def wait_for_result(self, command_id: str, timeout: float | None = None) -> CommandResult | None:
        """Espera el resultado asíncrono de un comando ya registrado.

        Devuelve None si el comando no existe, si vence `timeout` o si la
        entrada se retira antes de que llegue el callback. Cancelable.
        """

        loop = asyncio.get_running_loop()
        with self._lock:
            entry = self._entries.get(command_id)
            if entry is None:
                return None
            if entry.async_result is not None:
                return entry.async_result
            waiter: _Waiter = (loop, loop.create_future())
            self._waiters.setdefault(command_id, []).append(waiter)

        try:
            return await asyncio.wait_for(waiter[1], timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            self._discard_waiter(command_id, waiter)

    def _discard_waiter(self, command_id: str, waiter: _Waiter) -> None:
        with self._lock:
            waiters = self._waiters.get(command_id)
            if not waiters:
                return
            if waiter in waiters:
                waiters.remove(waiter)
            if not waiters:
                del self._waiters[command_id]

    def remove(self, command_id: str) -> bool:
        with self._lock:
            removed = self._entries.pop(command_id, None) is not None
            waiters = self._waiters.pop(command_id, [])
        _wake(waiters, None)
        return removed

    def purge_expired(self) -> list[str]:
        stranded: list[_Waiter] = []
        with self._lock:
            expired = self._purge_expired_locked(self._clock(), stranded)
        _wake(stranded, None)
        return expired

    def _purge_expired_locked(self, now: float, stranded: list[_Waiter]) -> list[str]:
        if not self._ttl:
            return []
        expired = [cid for cid, entry in self._entries.items() if now - entry.updated_at > self._ttl]
        for cid in expired:
            del self._entries[cid]
            stranded.extend(self._waiters.pop(cid, []))
        if expired:
            LOG.debug("Purged %d expired pending commands", len(expired))
        return expired

    def snapshot(self) -> list[PendingCommand]:
        with self._lock:
            return list(self._entries.values())
