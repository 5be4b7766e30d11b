"""Observadores de llamadas (request/response).

Lista ordenada de callbacks síncronos invocados alrededor de cada llamada.
Un observador que falla se registra en el log y no rompe la llamada.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from core.domain.envelope import ResponseEnvelope

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallEvent:
    """Instantánea de una llamada para los observadores."""

    operation: str
    request_id: str
    correlation_id: str
    started_at: datetime
    command_id: str | None = None
    envelope: ResponseEnvelope | None = None
    elapsed_seconds: float | None = None


Observer = Callable[[CallEvent], None]


@dataclass
class ClientHooks:
    """Optional callbacks for logging/metrics layers."""

    on_request: list[Observer] = field(default_factory=list)
    on_response: list[Observer] = field(default_factory=list)

    def emit_request(self, event: CallEvent) -> None:
        self._emit(self.on_request, event)

    def emit_response(self, event: CallEvent) -> None:
        self._emit(self.on_response, event)

    @staticmethod
    def _emit(observers: list[Observer], event: CallEvent) -> None:
        for observer in observers:
            try:
                observer(event)
            except Exception:
                LOG.exception("Observer %r failed for %s", observer, event.operation)
