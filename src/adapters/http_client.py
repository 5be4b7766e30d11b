"""Wrapper de httpx.

Por qué un wrapper:
- Estandariza timeouts, headers (Authorization: Token, User-Agent) y el mapeo
  de errores de red a `TransportError`.
- Facilita testeo: se puede sustituir por un `httpx.MockTransport` o por
  cualquier objeto que cumpla `HTTPExecutor`.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Mapping
from urllib.parse import quote

import httpx

from core.config import AppSettings
from core.domain.errors import TransportError

LOG = logging.getLogger(__name__)


def build_token_authorization(token: str, *, base64_encode: bool = False) -> str:
    """Valor del header Authorization OCPI.

    OCPI 2.2+ exige el token en Base64; 2.1.1 lo manda tal cual.
    """

    value = base64.b64encode(token.encode("utf-8")).decode("ascii") if base64_encode else token
    return f"Token {value}"


def build_ocpi_headers(*, request_id: str, correlation_id: str) -> dict[str, str]:
    return {
        "X-Request-ID": request_id,
        "X-Correlation-ID": correlation_id,
    }


def join_url(base: str, *parts: str) -> str:
    """Concatena segmentos a una URL base sin duplicar ni perder '/'."""

    url = base.rstrip("/")
    for part in parts:
        url += "/" + quote(str(part).strip("/"), safe="")
    return url


def build_async_client(
    settings: AppSettings | None = None,
    *,
    extra_headers: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Crea un `httpx.AsyncClient` con defaults OCPI.

    Por qué un builder:
    - Centraliza timeouts/headers para que discovery, queries y comandos se
      comporten igual.
    - `transport` permite inyectar un `httpx.MockTransport` en tests.
    """

    settings = settings or AppSettings()
    headers: dict[str, str] = {
        "User-Agent": settings.user_agent,
        "Accept": "application/json",
    }
    if settings.remote_access_token:
        headers["Authorization"] = build_token_authorization(
            settings.remote_access_token,
            base64_encode=settings.remote_access_token_base64,
        )
    if extra_headers:
        headers.update(extra_headers)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.request_timeout_seconds),
        follow_redirects=True,
        headers=headers,
        transport=transport,
    )


class HttpxExecutor:
    """Ejecutor HTTP por defecto (implementa `core.interfaces.transport.HTTPExecutor`)."""

    def __init__(
        self,
        settings: AppSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or AppSettings()
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = build_async_client(self._settings)
        return self._client

    async def execute(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        effective_timeout = timeout if timeout is not None else self._settings.request_timeout_seconds
        LOG.debug("%s %s (timeout=%ss)", method, url, effective_timeout)
        try:
            response = await self._get_client().request(
                method,
                url,
                headers=dict(headers or {}),
                json=json,
                params=dict(params) if params else None,
                timeout=httpx.Timeout(effective_timeout),
            )
        except httpx.TimeoutException as exc:
            raise TransportError(f"{method} {url} timed out after {effective_timeout}s") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc

        LOG.debug("%s %s -> HTTP %s", method, url, response.status_code)
        return response

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpxExecutor":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
