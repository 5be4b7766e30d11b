"""Parseo de respuestas HTTP OCPI a `ResponseEnvelope`.

Forma esperada del cuerpo:

    {"data": ..., "status_code": 1000, "status_message": "...", "timestamp": "..."}

Reglas:
- HTTP 200/201 con status_code 1xxx -> éxito, `data` pasa por el parser.
- Cualquier otro status con cuerpo -> fallo remoto (status_code del cuerpo o 3000).
- Cuerpo vacío -> fallo local (-1) con el status HTTP como mensaje.
- JSON inválido o `data` que no valida -> fallo local (-1) con el error.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, TypeVar

import httpx
from pydantic import ValidationError

from core.domain.envelope import LOCAL_ERROR_STATUS, ResponseEnvelope
from core.domain.errors import ProtocolError

LOG = logging.getLogger(__name__)

T = TypeVar("T")

_REMOTE_ERROR_STATUS = 3000


def _header(response: httpx.Response, name: str) -> str | None:
    value = response.headers.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _decode_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolError(f"Invalid JSON in OCPI response: {exc}") from exc
    if not isinstance(body, dict):
        raise ProtocolError("OCPI response body is not a JSON object")
    return body


def _parse(
    response: httpx.Response,
    *,
    request: Any,
    request_id: str,
    correlation_id: str,
    convert: Callable[[Any], Any],
) -> ResponseEnvelope:
    remote = {
        "request_id": _header(response, "X-Request-ID") or request_id,
        "correlation_id": _header(response, "X-Correlation-ID") or correlation_id,
        "location": _header(response, "Location"),
        "from_country_code": _header(response, "OCPI-from-country-code"),
        "from_party_id": _header(response, "OCPI-from-party-id"),
        "to_country_code": _header(response, "OCPI-to-country-code"),
        "to_party_id": _header(response, "OCPI-to-party-id"),
    }

    try:
        if not response.content:
            return ResponseEnvelope(
                request=request,
                status_code=LOCAL_ERROR_STATUS,
                status_message=f"{response.status_code} - {response.reason_phrase}",
                http_status=response.status_code,
                **remote,
            )

        body = _decode_body(response)
        status_code = body.get("status_code")
        if status_code is not None and not isinstance(status_code, int):
            raise ProtocolError(f"Invalid OCPI status_code: {status_code!r}")
        status_message = body.get("status_message") or ""
        timestamp = body.get("timestamp")

        if (
            response.status_code in (200, 201)
            and status_code is not None
            and 1000 <= status_code < 2000
        ):
            raw = body.get("data")
            data = convert(raw) if raw is not None else None
            return ResponseEnvelope(
                request=request,
                data=data,
                status_code=status_code,
                status_message=status_message,
                timestamp=timestamp,
                http_status=response.status_code,
                **remote,
            )

        return ResponseEnvelope(
            request=request,
            status_code=status_code if status_code is not None else _REMOTE_ERROR_STATUS,
            status_message=status_message,
            detail=response.text,
            timestamp=timestamp,
            http_status=response.status_code,
            **remote,
        )
    except (ProtocolError, ValidationError, TypeError) as exc:
        LOG.warning("Could not parse OCPI response (HTTP %s): %s", response.status_code, exc)
        return ResponseEnvelope.exception(
            exc,
            request=request,
            request_id=remote["request_id"],
            correlation_id=remote["correlation_id"],
        )


def parse_object(
    response: httpx.Response,
    *,
    parser: Callable[[dict[str, Any]], T],
    request_id: str,
    correlation_id: str,
    request: Any = None,
) -> ResponseEnvelope:
    """Parsea una respuesta cuyo `data` es un objeto JSON."""

    def convert(raw: Any) -> T:
        if not isinstance(raw, dict):
            raise ProtocolError("OCPI 'data' is not a JSON object")
        return parser(raw)

    return _parse(
        response,
        request=request,
        request_id=request_id,
        correlation_id=correlation_id,
        convert=convert,
    )


def parse_array(
    response: httpx.Response,
    *,
    parser: Callable[[dict[str, Any]], T],
    request_id: str,
    correlation_id: str,
    request: Any = None,
) -> ResponseEnvelope:
    """Parsea una respuesta cuyo `data` es una lista de objetos JSON."""

    def convert(raw: Any) -> list[T]:
        if not isinstance(raw, list):
            raise ProtocolError("OCPI 'data' is not a JSON array")
        items: list[T] = []
        for item in raw:
            if not isinstance(item, dict):
                raise ProtocolError("OCPI 'data' array contains a non-object item")
            items.append(parser(item))
        return items

    return _parse(
        response,
        request=request,
        request_id=request_id,
        correlation_id=correlation_id,
        convert=convert,
    )
