from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.payout_claims import PayoutClaim


class PayoutClaimsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, claim_id: int) -> PayoutClaim | None:
        return await session.get(PayoutClaim, claim_id)

    @staticmethod
    async def get_by_subject_id(session: AsyncSession, subject_id: str) -> PayoutClaim | None:
        stmt = select(PayoutClaim).where(PayoutClaim.subject_id == subject_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def try_create_pending(
        session: AsyncSession,
        *,
        subject_id: str,
        claim_type: str,
        claimant_wallet: str,
        legs: list[dict[str, str]],
        amount: Decimal,
        token_symbol: str,
        now_utc: datetime,
    ) -> int | None:
        stmt = (
            postgresql_insert(PayoutClaim)
            .values(
                subject_id=subject_id,
                claim_type=claim_type,
                claimant_wallet=claimant_wallet,
                legs=legs,
                amount=amount,
                token_symbol=token_symbol,
                status="pending",
                tx_hashes=[],
                failure_code=None,
                created_at=now_utc,
                updated_at=now_utc,
            )
            .on_conflict_do_nothing(index_elements=[PayoutClaim.subject_id])
            .returning(PayoutClaim.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def transition_from_pending(
        session: AsyncSession,
        *,
        claim_id: int,
        new_status: str,
        tx_hashes: list[str],
        failure_code: str | None,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(PayoutClaim)
            .where(
                PayoutClaim.id == claim_id,
                PayoutClaim.status == "pending",
            )
            .values(
                status=new_status,
                tx_hashes=tx_hashes,
                failure_code=failure_code,
                updated_at=now_utc,
            )
            .returning(PayoutClaim.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def sum_completed_for_wallet(
        session: AsyncSession,
        *,
        wallet_address: str,
        claim_type: str | None = None,
    ) -> tuple[int, Decimal]:
        stmt = select(
            func.count(PayoutClaim.id),
            func.coalesce(func.sum(PayoutClaim.amount), 0),
        ).where(
            PayoutClaim.claimant_wallet == wallet_address,
            PayoutClaim.status == "completed",
        )
        if claim_type is not None:
            stmt = stmt.where(PayoutClaim.claim_type == claim_type)
        result = await session.execute(stmt)
        count, total = result.one()
        return int(count or 0), Decimal(str(total or 0))

    @staticmethod
    async def count_by_status(
        session: AsyncSession,
        *,
        since_utc: datetime | None = None,
    ) -> dict[str, int]:
        stmt = select(PayoutClaim.status, func.count(PayoutClaim.id)).group_by(PayoutClaim.status)
        if since_utc is not None:
            stmt = stmt.where(PayoutClaim.created_at >= since_utc)
        result = await session.execute(stmt)
        return {str(status): int(count) for status, count in result.all()}

    @staticmethod
    async def sum_completed_amount(
        session: AsyncSession,
        *,
        since_utc: datetime | None = None,
    ) -> Decimal:
        stmt = select(func.coalesce(func.sum(PayoutClaim.amount), 0)).where(
            PayoutClaim.status == "completed"
        )
        if since_utc is not None:
            stmt = stmt.where(PayoutClaim.created_at >= since_utc)
        result = await session.execute(stmt)
        return Decimal(str(result.scalar_one() or 0))

    @staticmethod
    async def list_pending_older_than(
        session: AsyncSession,
        *,
        older_than_utc: datetime,
        limit: int = 100,
    ) -> list[PayoutClaim]:
        stmt = (
            select(PayoutClaim)
            .where(
                PayoutClaim.status == "pending",
                PayoutClaim.created_at < older_than_utc,
            )
            .order_by(PayoutClaim.created_at.asc(), PayoutClaim.id.asc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_failed_with_partial_payout(
        session: AsyncSession,
        *,
        since_utc: datetime | None = None,
        limit: int = 100,
    ) -> list[PayoutClaim]:
        stmt = (
            select(PayoutClaim)
            .where(
                PayoutClaim.status == "failed",
                func.jsonb_array_length(PayoutClaim.tx_hashes) > 0,
            )
            .order_by(PayoutClaim.updated_at.desc(), PayoutClaim.id.desc())
            .limit(limit)
        )
        if since_utc is not None:
            stmt = stmt.where(PayoutClaim.updated_at >= since_utc)
        result = await session.execute(stmt)
        return list(result.scalars().all())
