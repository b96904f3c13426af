from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.referrals import Referral


class ReferralsRepo:
    @staticmethod
    async def get_by_referred_wallet(
        session: AsyncSession,
        *,
        referred_wallet_address: str,
    ) -> Referral | None:
        stmt = select(Referral).where(
            func.lower(Referral.referred_wallet_address) == referred_wallet_address
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def mark_earned(
        session: AsyncSession,
        *,
        referral_id: int,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(Referral)
            .where(Referral.id == referral_id, Referral.status != "earned")
            .values(status="earned", completed_at=now_utc)
            .returning(Referral.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None
