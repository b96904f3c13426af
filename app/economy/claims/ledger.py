from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models.payout_claims import PayoutClaim
from app.db.repo.payout_claims_repo import PayoutClaimsRepo
from app.economy.claims.types import (
    CLAIM_STATUS_PENDING,
    ClaimRecord,
    PayoutLeg,
    TERMINAL_CLAIM_STATUSES,
)

logger = structlog.get_logger(__name__)


def to_claim_record(row: PayoutClaim) -> ClaimRecord:
    return ClaimRecord(
        id=int(row.id),
        subject_id=row.subject_id,
        claim_type=row.claim_type,
        claimant_wallet=row.claimant_wallet,
        legs=tuple(PayoutLeg.from_json(item) for item in row.legs or []),
        amount=Decimal(str(row.amount)),
        token_symbol=row.token_symbol,
        status=row.status,
        tx_hashes=tuple(str(item) for item in row.tx_hashes or []),
        failure_code=row.failure_code,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _require_terminal_target(new_status: str) -> None:
    if new_status not in TERMINAL_CLAIM_STATUSES:
        raise ValueError(f"claim can only move to a terminal status, got {new_status!r}")


class SqlClaimLedger:
    """Durable claim records in `payout_claims`.

    Every call runs in its own short transaction, so a record committed by
    `create_provisional` survives whatever happens to the payout afterwards.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find(self, subject_id: str) -> ClaimRecord | None:
        async with self._session_factory.begin() as session:
            row = await PayoutClaimsRepo.get_by_subject_id(session, subject_id)
            return to_claim_record(row) if row is not None else None

    async def create_provisional(
        self,
        *,
        subject_id: str,
        claim_type: str,
        claimant_wallet: str,
        legs: list[PayoutLeg],
        now_utc: datetime,
    ) -> tuple[ClaimRecord, bool]:
        if not legs:
            raise ValueError("claim requires at least one payout leg")
        token_symbol = legs[0].token_symbol
        amount = sum((leg.amount for leg in legs), Decimal("0"))

        async with self._session_factory.begin() as session:
            created_id = await PayoutClaimsRepo.try_create_pending(
                session,
                subject_id=subject_id,
                claim_type=claim_type,
                claimant_wallet=claimant_wallet,
                legs=[leg.as_json() for leg in legs],
                amount=amount,
                token_symbol=token_symbol,
                now_utc=now_utc,
            )
            if created_id is not None:
                row = await PayoutClaimsRepo.get_by_id(session, created_id)
            else:
                row = await PayoutClaimsRepo.get_by_subject_id(session, subject_id)
            if row is None:
                raise RuntimeError(f"claim row for subject {subject_id!r} vanished after insert")
            return to_claim_record(row), created_id is not None

    async def transition(
        self,
        claim_id: int,
        *,
        new_status: str,
        tx_hashes: list[str],
        now_utc: datetime,
        failure_code: str | None = None,
    ) -> bool:
        _require_terminal_target(new_status)
        async with self._session_factory.begin() as session:
            updated = await PayoutClaimsRepo.transition_from_pending(
                session,
                claim_id=claim_id,
                new_status=new_status,
                tx_hashes=list(tx_hashes),
                failure_code=failure_code,
                now_utc=now_utc,
            )
            if not updated:
                current = await PayoutClaimsRepo.get_by_id(session, claim_id)
                logger.warning(
                    "claim_transition_ignored",
                    claim_id=claim_id,
                    requested_status=new_status,
                    current_status=current.status if current is not None else None,
                )
            return updated

    async def sum_completed(
        self,
        wallet_address: str,
        *,
        claim_type: str | None = None,
    ) -> tuple[int, Decimal]:
        async with self._session_factory.begin() as session:
            return await PayoutClaimsRepo.sum_completed_for_wallet(
                session,
                wallet_address=wallet_address,
                claim_type=claim_type,
            )

    async def count_by_status(self, *, since_utc: datetime | None = None) -> dict[str, int]:
        async with self._session_factory.begin() as session:
            counts = await PayoutClaimsRepo.count_by_status(session, since_utc=since_utc)
        return {
            status: counts.get(status, 0)
            for status in (CLAIM_STATUS_PENDING, *sorted(TERMINAL_CLAIM_STATUSES))
        }

    async def sum_completed_amount(self, *, since_utc: datetime | None = None) -> Decimal:
        async with self._session_factory.begin() as session:
            return await PayoutClaimsRepo.sum_completed_amount(session, since_utc=since_utc)

    async def list_stale_pending(
        self,
        *,
        older_than_utc: datetime,
        limit: int = 100,
    ) -> Sequence[ClaimRecord]:
        async with self._session_factory.begin() as session:
            rows = await PayoutClaimsRepo.list_pending_older_than(
                session,
                older_than_utc=older_than_utc,
                limit=limit,
            )
            return [to_claim_record(row) for row in rows]

    async def list_partial_failures(
        self,
        *,
        since_utc: datetime | None = None,
        limit: int = 100,
    ) -> Sequence[ClaimRecord]:
        async with self._session_factory.begin() as session:
            rows = await PayoutClaimsRepo.list_failed_with_partial_payout(
                session,
                since_utc=since_utc,
                limit=limit,
            )
            return [to_claim_record(row) for row in rows]
