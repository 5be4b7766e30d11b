"""Contadores por operación (GetLocations, StopSession, ...).

Semántica:
- `requests_ok`: la llamada empezó.
- `requests_error`: no había endpoint remoto; no se envió nada.
- `responses_ok`: hubo respuesta HTTP y se parseó (sea cual sea su status OCPI).
- `responses_error`: la llamada terminó en excepción (red, timeout, discovery).
"""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass, replace


@dataclass
class CounterValues:
    requests_ok: int = 0
    requests_error: int = 0
    responses_ok: int = 0
    responses_error: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class APICounters:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: dict[str, CounterValues] = {}

    def _inc(self, operation: str, name: str) -> None:
        with self._lock:
            values = self._values.setdefault(operation, CounterValues())
            setattr(values, name, getattr(values, name) + 1)

    def request_ok(self, operation: str) -> None:
        self._inc(operation, "requests_ok")

    def request_error(self, operation: str) -> None:
        self._inc(operation, "requests_error")

    def response_ok(self, operation: str) -> None:
        self._inc(operation, "responses_ok")

    def response_error(self, operation: str) -> None:
        self._inc(operation, "responses_error")

    def get(self, operation: str) -> CounterValues:
        """Copia de los valores de `operation` (ceros si nunca se llamó)."""

        with self._lock:
            return replace(self._values.get(operation) or CounterValues())

    def reset(self) -> None:
        with self._lock:
            self._values.clear()

    def to_dict(self) -> dict[str, dict[str, int]]:
        with self._lock:
            return {operation: values.to_dict() for operation, values in sorted(self._values.items())}
