from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from app.economy.claims.errors import AuthError, DependencyError
from app.integrations.identity import HttpIdentityResolver
from app.integrations.kyc import AggregatorKycProvider

WALLET = "0x" + "A" * 40


def _mock_httpx(monkeypatch, handler: Callable[[httpx.Request], httpx.Response]) -> None:
    real_client = httpx.AsyncClient

    def _client(*args, **kwargs) -> httpx.AsyncClient:
        return real_client(*args, transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", _client)


@pytest.mark.asyncio
async def test_identity_resolver_returns_normalized_wallet(monkeypatch) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"walletAddress": WALLET})

    _mock_httpx(monkeypatch, handler)
    resolver = HttpIdentityResolver(base_url="https://identity.example/")

    assert await resolver.resolve("tok") == WALLET.lower()
    assert str(seen[0].url) == "https://identity.example/session"
    assert seen[0].headers["Authorization"] == "Bearer tok"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status_code", "body", "expected"),
    [
        (401, {}, AuthError),
        (403, {}, AuthError),
        (200, {"walletAddress": ""}, AuthError),
        (200, ["unexpected"], AuthError),
        (500, {}, DependencyError),
        (429, {}, DependencyError),
    ],
)
async def test_identity_resolver_error_mapping(
    monkeypatch,
    status_code: int,
    body: object,
    expected: type[Exception],
) -> None:
    _mock_httpx(monkeypatch, lambda request: httpx.Response(status_code, json=body))
    resolver = HttpIdentityResolver(base_url="https://identity.example")

    with pytest.raises(expected):
        await resolver.resolve("tok")


@pytest.mark.asyncio
async def test_identity_resolver_unreachable_is_dependency_error(monkeypatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    _mock_httpx(monkeypatch, handler)

    with pytest.raises(DependencyError):
        await HttpIdentityResolver(base_url="https://identity.example").resolve("tok")


@pytest.mark.asyncio
async def test_identity_resolver_without_base_url_is_dependency_error() -> None:
    with pytest.raises(DependencyError):
        await HttpIdentityResolver(base_url="").resolve("tok")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status_code", "body", "verified"),
    [
        (200, {"data": {"status": "verified"}}, True),
        (200, {"data": {"status": "pending"}}, False),
        (200, {"data": None}, False),
        (404, {"error": "not found"}, False),
    ],
)
async def test_kyc_provider_reads_verification_status(
    monkeypatch,
    status_code: int,
    body: object,
    verified: bool,
) -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(status_code, json=body)

    _mock_httpx(monkeypatch, handler)
    provider = AggregatorKycProvider(base_url="https://aggregator.example")

    status = await provider.get_status(WALLET.lower())

    assert status.verified is verified
    assert seen == [f"https://aggregator.example/kyc/{WALLET.lower()}"]


@pytest.mark.asyncio
async def test_kyc_provider_server_error_is_dependency_error(monkeypatch) -> None:
    _mock_httpx(monkeypatch, lambda request: httpx.Response(502))

    with pytest.raises(DependencyError):
        await AggregatorKycProvider(base_url="https://aggregator.example").get_status(WALLET)
