from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Protocol

from app.economy.claims.types import ClaimRecord


class ClaimsReadModel(Protocol):
    async def count_by_status(self, *, since_utc: datetime | None = None) -> dict[str, int]: ...

    async def sum_completed_amount(self, *, since_utc: datetime | None = None) -> Decimal: ...

    async def list_stale_pending(
        self,
        *,
        older_than_utc: datetime,
        limit: int = 100,
    ) -> Sequence[ClaimRecord]: ...

    async def list_partial_failures(
        self,
        *,
        since_utc: datetime | None = None,
        limit: int = 100,
    ) -> Sequence[ClaimRecord]: ...


@dataclass(frozen=True, slots=True)
class ClaimsReliabilitySnapshot:
    generated_at: datetime
    window_hours: int
    counts_by_status: dict[str, int]
    completed_amount: Decimal
    stale_pending: tuple[ClaimRecord, ...]
    partial_failures: tuple[ClaimRecord, ...]

    @property
    def stale_pending_total(self) -> int:
        return len(self.stale_pending)

    @property
    def partial_failures_total(self) -> int:
        return len(self.partial_failures)


@dataclass(frozen=True, slots=True)
class ClaimsAlertState:
    stale_pending_detected: bool
    partial_payout_detected: bool

    @property
    def any_detected(self) -> bool:
        return self.stale_pending_detected or self.partial_payout_detected


async def build_claims_reliability_snapshot(
    ledger: ClaimsReadModel,
    *,
    now_utc: datetime,
    window_hours: int,
    stale_pending_minutes: int,
    limit: int = 100,
) -> ClaimsReliabilitySnapshot:
    since_utc = now_utc - timedelta(hours=window_hours)
    counts = await ledger.count_by_status(since_utc=since_utc)
    completed_amount = await ledger.sum_completed_amount(since_utc=since_utc)
    stale_pending = await ledger.list_stale_pending(
        older_than_utc=now_utc - timedelta(minutes=stale_pending_minutes),
        limit=limit,
    )
    # Failed rows are immutable, so only failures from the window are reported.
    partial_failures = await ledger.list_partial_failures(since_utc=since_utc, limit=limit)
    return ClaimsReliabilitySnapshot(
        generated_at=now_utc,
        window_hours=window_hours,
        counts_by_status=dict(counts),
        completed_amount=completed_amount,
        stale_pending=tuple(stale_pending),
        partial_failures=tuple(partial_failures),
    )


def evaluate_claims_alert_state(snapshot: ClaimsReliabilitySnapshot) -> ClaimsAlertState:
    return ClaimsAlertState(
        stale_pending_detected=snapshot.stale_pending_total > 0,
        partial_payout_detected=snapshot.partial_failures_total > 0,
    )


def summarize_claim(claim: ClaimRecord) -> dict[str, object]:
    return {
        "claim_id": claim.id,
        "subject_id": claim.subject_id,
        "claim_type": claim.claim_type,
        "status": claim.status,
        "amount": format(claim.amount, "f"),
        "tx_hashes": list(claim.tx_hashes),
        "failure_code": claim.failure_code,
        "created_at": claim.created_at.isoformat(),
    }
