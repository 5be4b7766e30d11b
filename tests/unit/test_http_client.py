"""Unit tests: httpx wrapper (headers, URL joining, error mapping)."""
import httpx
import pytest

from adapters.http_client import (
    HttpxExecutor,
    build_async_client,
    build_token_authorization,
    join_url,
)
from core.config import AppSettings
from core.domain.errors import TransportError

pytestmark = pytest.mark.unit


def test_token_authorization_plain_and_base64():
    assert build_token_authorization("abc") == "Token abc"
    assert build_token_authorization("abc", base64_encode=True) == "Token YWJj"


@pytest.mark.parametrize(
    "base, parts, expected",
    [
        ("https://x/ocpi/2.2/commands/", ("STOP_SESSION",), "https://x/ocpi/2.2/commands/STOP_SESSION"),
        ("https://x/ocpi/2.2/commands", ("STOP_SESSION",), "https://x/ocpi/2.2/commands/STOP_SESSION"),
        ("https://x/tokens", ("DE", "GEF", "a b/c"), "https://x/tokens/DE/GEF/a%20b%2Fc"),
    ],
)
def test_join_url(base, parts, expected):
    assert join_url(base, *parts) == expected


def test_client_defaults():
    settings = AppSettings(
        _env_file=None,
        remote_access_token="abc",
        remote_access_token_base64=True,
        user_agent="ocpi-emsp-test",
    )
    client = build_async_client(settings, extra_headers={"X-Extra": "1"})

    assert client.headers["Authorization"] == "Token YWJj"
    assert client.headers["User-Agent"] == "ocpi-emsp-test"
    assert client.headers["X-Extra"] == "1"


def test_client_without_token_has_no_authorization(monkeypatch):
    monkeypatch.delenv("OCPI_EMSP_REMOTE_ACCESS_TOKEN", raising=False)

    client = build_async_client(AppSettings(_env_file=None))

    assert "Authorization" not in client.headers


@pytest.mark.asyncio
async def test_executor_maps_timeouts(settings):
    def handler(request):
        raise httpx.ConnectTimeout("slow", request=request)

    client = build_async_client(settings, transport=httpx.MockTransport(handler))
    async with HttpxExecutor(settings, client=client) as executor:
        with pytest.raises(TransportError, match="timed out after 2.0s"):
            await executor.execute("GET", "https://cpo.example.com/ocpi/versions", timeout=2.0)


@pytest.mark.asyncio
async def test_executor_maps_network_errors(settings):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = build_async_client(settings, transport=httpx.MockTransport(handler))
    executor = HttpxExecutor(settings, client=client)

    with pytest.raises(TransportError, match="refused"):
        await executor.execute("GET", "https://cpo.example.com/ocpi/versions")


@pytest.mark.asyncio
async def test_executor_does_not_close_injected_client(settings):
    client = build_async_client(settings, transport=httpx.MockTransport(lambda r: httpx.Response(204)))
    executor = HttpxExecutor(settings, client=client)

    await executor.aclose()

    assert not client.is_closed
    await client.aclose()
