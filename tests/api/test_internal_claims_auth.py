from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from app.api.routes import internal_claims
from app.economy.claims.types import PayoutLeg
from app.main import app
from tests.economy.claims_fixtures import CLAIMANT, InMemoryClaimLedger

UTC = timezone.utc


def _settings(*, allowlist: str = "127.0.0.1/32") -> SimpleNamespace:
    return SimpleNamespace(
        internal_api_token="internal-secret",
        internal_api_allowlist=allowlist,
        internal_api_trusted_proxies="",
        claims_stale_pending_minutes=15,
    )


async def _seeded_ledger() -> InMemoryClaimLedger:
    ledger = InMemoryClaimLedger()
    now_utc = datetime.now(UTC)
    leg = PayoutLeg(recipient=CLAIMANT, amount=Decimal("2.50"), token_symbol="USDC")

    completed, _ = await ledger.create_provisional(
        subject_id="8453-done",
        claim_type="cashback",
        claimant_wallet=CLAIMANT,
        legs=[leg],
        now_utc=now_utc - timedelta(hours=1),
    )
    await ledger.transition(
        completed.id,
        new_status="completed",
        tx_hashes=["0x01"],
        now_utc=now_utc - timedelta(hours=1),
    )
    await ledger.create_provisional(
        subject_id="8453-stuck",
        claim_type="cashback",
        claimant_wallet=CLAIMANT,
        legs=[leg],
        now_utc=now_utc - timedelta(hours=2),
    )
    partial, _ = await ledger.create_provisional(
        subject_id="referral-3",
        claim_type="referral",
        claimant_wallet=CLAIMANT,
        legs=[leg, leg],
        now_utc=now_utc - timedelta(hours=3),
    )
    await ledger.transition(
        partial.id,
        new_status="failed",
        tx_hashes=["0x02"],
        now_utc=now_utc - timedelta(hours=3),
        failure_code="NONCE_ERROR",
    )
    return ledger


def test_internal_claims_dashboard_rejects_missing_token(monkeypatch) -> None:
    monkeypatch.setattr(internal_claims, "get_settings", lambda: _settings())

    client = TestClient(app)
    response = client.get("/internal/claims/dashboard")

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}


def test_internal_claims_dashboard_rejects_disallowed_ip(monkeypatch) -> None:
    monkeypatch.setattr(
        internal_claims,
        "get_settings",
        lambda: _settings(allowlist="192.168.0.0/16"),
    )

    client = TestClient(app)
    response = client.get(
        "/internal/claims/dashboard",
        headers={
            "X-Internal-Token": "internal-secret",
            "X-Forwarded-For": "192.168.1.5",
        },
    )

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}


@pytest.mark.asyncio
async def test_internal_claims_rejects_wrong_token_from_allowed_ip(monkeypatch) -> None:
    monkeypatch.setattr(internal_claims, "get_settings", lambda: _settings())

    async with AsyncClient(
        transport=ASGITransport(app=app, client=("127.0.0.1", 8080)),
        base_url="http://testserver",
    ) as client:
        response = await client.get(
            "/internal/claims/8453-done",
            headers={"X-Internal-Token": "wrong"},
        )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_internal_claims_dashboard_reports_counts_and_attention(monkeypatch) -> None:
    ledger = await _seeded_ledger()
    monkeypatch.setattr(internal_claims, "get_settings", lambda: _settings())
    monkeypatch.setattr(internal_claims, "_get_ledger", lambda: ledger)

    async with AsyncClient(
        transport=ASGITransport(app=app, client=("127.0.0.1", 8080)),
        base_url="http://testserver",
    ) as client:
        response = await client.get(
            "/internal/claims/dashboard?window_hours=24",
            headers={"X-Internal-Token": "internal-secret"},
        )

    assert response.status_code == 200
    payload = response.json()
    assert payload["window_hours"] == 24
    assert payload["stale_pending_minutes"] == 15
    assert payload["claims_pending_total"] == 1
    assert payload["claims_completed_total"] == 1
    assert payload["claims_failed_total"] == 1
    assert Decimal(payload["completed_amount_total"]) == Decimal("2.50")
    assert [claim["subject_id"] for claim in payload["stale_pending"]] == ["8453-stuck"]
    assert [claim["subject_id"] for claim in payload["partial_failures"]] == ["referral-3"]
    assert payload["partial_failures"][0]["tx_hashes"] == ["0x02"]
    assert payload["alerts"] == {
        "stale_pending_detected": True,
        "partial_payout_detected": True,
    }


@pytest.mark.asyncio
async def test_internal_claim_lookup_returns_detail_and_404(monkeypatch) -> None:
    ledger = await _seeded_ledger()
    monkeypatch.setattr(internal_claims, "get_settings", lambda: _settings())
    monkeypatch.setattr(internal_claims, "_get_ledger", lambda: ledger)

    async with AsyncClient(
        transport=ASGITransport(app=app, client=("127.0.0.1", 8080)),
        base_url="http://testserver",
    ) as client:
        found = await client.get(
            "/internal/claims/referral-3",
            headers={"X-Internal-Token": "internal-secret"},
        )
        missing = await client.get(
            "/internal/claims/8453-unknown",
            headers={"X-Internal-Token": "internal-secret"},
        )

    assert found.status_code == 200
    detail = found.json()
    assert detail["status"] == "failed"
    assert detail["failure_code"] == "NONCE_ERROR"
    assert len(detail["legs"]) == 2
    assert missing.status_code == 404
    assert missing.json() == {"detail": {"code": "E_CLAIM_NOT_FOUND"}}
