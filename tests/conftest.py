"""Shared fixtures: a fake CPO behind httpx.MockTransport and client factories."""
import itertools
from datetime import datetime, timezone
from typing import Any, Callable, Union

import httpx
import pytest

from adapters.http_client import HttpxExecutor, build_async_client
from core.config import AppSettings
from core.domain.models import Token
from core.services.emsp_client import EMSPClient

VERSIONS_URL = "https://cpo.example.com/ocpi/versions"
DETAIL_URL = "https://cpo.example.com/ocpi/{version}"
COMMANDS_URL = "https://cpo.example.com/ocpi/{version}/commands/"
CALLBACK_BASE = "https://emsp.example.com/ocpi/commands"

Route = Union[httpx.Response, Callable[[httpx.Request], Any]]


def ocpi_body(data: Any, status_code: int = 1000, status_message: str = "Success") -> dict[str, Any]:
    return {
        "data": data,
        "status_code": status_code,
        "status_message": status_message,
        "timestamp": "2024-01-01T00:00:00Z",
    }


def endpoint(identifier: str, role: str, version: str) -> dict[str, str]:
    return {
        "identifier": identifier,
        "role": role,
        "url": f"https://cpo.example.com/ocpi/{version}/{identifier}/",
    }


def default_endpoints(version: str) -> list[dict[str, str]]:
    return [
        endpoint("locations", "SENDER", version),
        endpoint("tariffs", "SENDER", version),
        endpoint("sessions", "SENDER", version),
        endpoint("cdrs", "SENDER", version),
        endpoint("tokens", "RECEIVER", version),
        endpoint("commands", "RECEIVER", version),
    ]


class FakeCPO:
    """Routes requests by (method, url without query) and records every call."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Route] = {}
        self.calls: list[httpx.Request] = []

    @staticmethod
    def _key_url(url: httpx.URL) -> str:
        return f"{url.scheme}://{url.host}{url.path}"

    def add(self, method: str, url: str, route: Route) -> None:
        self.routes[(method, url)] = route

    def add_json(self, method: str, url: str, data: Any, *, status_code: int = 1000, http_status: int = 200) -> None:
        self.add(method, url, httpx.Response(http_status, json=ocpi_body(data, status_code)))

    def with_versions(self, endpoints_by_version: dict[str, list[dict[str, str]]]) -> "FakeCPO":
        self.add_json(
            "GET",
            VERSIONS_URL,
            [{"version": v, "url": DETAIL_URL.format(version=v)} for v in endpoints_by_version],
        )
        for version, endpoints in endpoints_by_version.items():
            self.add_json(
                "GET",
                DETAIL_URL.format(version=version),
                {"version": version, "endpoints": endpoints},
            )
        return self

    def count(self, method: str, url: str) -> int:
        return sum(1 for r in self.calls if r.method == method and self._key_url(r.url) == url)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        route = self.routes.get((request.method, self._key_url(request.url)))
        if route is None:
            return httpx.Response(404, json=ocpi_body(None, 2000, "Unknown route"))
        if isinstance(route, httpx.Response):
            return route
        result = route(request)
        if not isinstance(result, httpx.Response):
            result = await result
        return result


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        _env_file=None,
        remote_versions_url=VERSIONS_URL,
        remote_access_token="secret-token",
        local_commands_base_url=CALLBACK_BASE,
        request_timeout_seconds=5.0,
    )


@pytest.fixture
def cpo() -> FakeCPO:
    return FakeCPO().with_versions({"2.1": default_endpoints("2.1"), "2.2": default_endpoints("2.2")})


@pytest.fixture
def make_executor(settings: AppSettings) -> Callable[[FakeCPO], HttpxExecutor]:
    def factory(fake: FakeCPO) -> HttpxExecutor:
        client = build_async_client(settings, transport=httpx.MockTransport(fake.handle))
        return HttpxExecutor(settings, client=client)

    return factory


@pytest.fixture
def id_factory() -> Callable[[], str]:
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


@pytest.fixture
def make_client(settings, make_executor, id_factory) -> Callable[..., EMSPClient]:
    def factory(fake: FakeCPO, **kwargs: Any) -> EMSPClient:
        return EMSPClient(settings, executor=make_executor(fake), id_factory=id_factory, **kwargs)

    return factory


@pytest.fixture
def token() -> Token:
    return Token(
        country_code="DE",
        party_id="GEF",
        uid="012345678",
        type="RFID",
        contract_id="DE-GEF-C12345678-X",
        issuer="GraphDefined EMSP",
        valid=True,
        whitelist="ALLOWED",
        last_updated=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
