from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.economy.claims.types import PayoutLeg
from app.workers.celery_app import celery_app
from app.workers.tasks import claims_reliability
from tests.economy.claims_fixtures import CLAIMANT, InMemoryClaimLedger


def test_run_claims_reconciliation_task_wrapper(monkeypatch) -> None:
    async def fake_async(*, limit: int) -> dict[str, object]:
        return {"stale_pending_total": limit, "partial_failures_total": 0}

    monkeypatch.setattr(claims_reliability, "run_claims_reconciliation_async", fake_async)

    result = claims_reliability.run_claims_reconciliation(limit=7)
    assert result["stale_pending_total"] == 7


def test_reconciliation_is_scheduled_on_beat() -> None:
    schedule = celery_app.conf.beat_schedule["claims-reconciliation-every-10-minutes"]
    assert schedule["task"] == "app.workers.tasks.claims_reliability.run_claims_reconciliation"
    assert schedule["schedule"] == 600.0


async def _ledger_needing_attention() -> InMemoryClaimLedger:
    ledger = InMemoryClaimLedger()
    now_utc = datetime.now(timezone.utc)
    leg = PayoutLeg(recipient=CLAIMANT, amount=Decimal("1"), token_symbol="USDC")
    await ledger.create_provisional(
        subject_id="8453-stuck",
        claim_type="cashback",
        claimant_wallet=CLAIMANT,
        legs=[leg],
        now_utc=now_utc - timedelta(hours=1),
    )
    partial, _ = await ledger.create_provisional(
        subject_id="referral-9",
        claim_type="referral",
        claimant_wallet=CLAIMANT,
        legs=[leg, leg],
        now_utc=now_utc - timedelta(hours=2),
    )
    await ledger.transition(
        partial.id,
        new_status="failed",
        tx_hashes=["0x01"],
        now_utc=now_utc - timedelta(hours=2),
        failure_code="NONCE_ERROR",
    )
    return ledger


@pytest.mark.asyncio
async def test_reconciliation_alerts_on_stale_and_partial_claims(monkeypatch) -> None:
    ledger = await _ledger_needing_attention()
    sent: list[tuple[str, dict[str, object]]] = []

    async def fake_send_ops_alert(*, event: str, payload: dict[str, object]) -> bool:
        sent.append((event, payload))
        return True

    monkeypatch.setattr(claims_reliability, "SqlClaimLedger", lambda session_factory: ledger)
    monkeypatch.setattr(claims_reliability, "send_ops_alert", fake_send_ops_alert)
    monkeypatch.setattr(
        claims_reliability,
        "get_settings",
        lambda: SimpleNamespace(claims_stale_pending_minutes=15),
    )

    result = await claims_reliability.run_claims_reconciliation_async(limit=10)

    assert result["stale_pending_total"] == 1
    assert result["partial_failures_total"] == 1
    assert result["status_counts"] == {"pending": 1, "completed": 0, "failed": 1}
    assert [event for event, _ in sent] == [
        "claims_stale_pending_detected",
        "claims_partial_payout_detected",
    ]
    partial_payload = sent[1][1]
    assert partial_payload["claims"][0]["subject_id"] == "referral-9"
    assert partial_payload["claims"][0]["tx_hashes"] == ["0x01"]


@pytest.mark.asyncio
async def test_reconciliation_stays_quiet_when_ledger_is_clean(monkeypatch) -> None:
    sent: list[str] = []

    async def fake_send_ops_alert(*, event: str, payload: dict[str, object]) -> bool:
        sent.append(event)
        return True

    monkeypatch.setattr(
        claims_reliability,
        "SqlClaimLedger",
        lambda session_factory: InMemoryClaimLedger(),
    )
    monkeypatch.setattr(claims_reliability, "send_ops_alert", fake_send_ops_alert)
    monkeypatch.setattr(
        claims_reliability,
        "get_settings",
        lambda: SimpleNamespace(claims_stale_pending_minutes=15),
    )

    result = await claims_reliability.run_claims_reconciliation_async()

    assert result["stale_pending_total"] == 0
    assert sent == []
