from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.wallet_transactions import WalletTransaction

SETTLED_STATUSES = ("settled", "completed")


class WalletTransactionsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, transaction_id: str) -> WalletTransaction | None:
        return await session.get(WalletTransaction, transaction_id)

    @staticmethod
    async def sum_settled_volume(
        session: AsyncSession,
        *,
        wallet_address: str,
        network: str,
    ) -> Decimal:
        stmt = select(func.coalesce(func.sum(WalletTransaction.amount_usd), 0)).where(
            func.lower(WalletTransaction.wallet_address) == wallet_address,
            func.lower(WalletTransaction.network) == network,
            WalletTransaction.status.in_(SETTLED_STATUSES),
        )
        result = await session.execute(stmt)
        return Decimal(str(result.scalar_one() or 0))

    @staticmethod
    async def get_first_settled(
        session: AsyncSession,
        *,
        wallet_address: str,
    ) -> WalletTransaction | None:
        stmt = (
            select(WalletTransaction)
            .where(
                func.lower(WalletTransaction.wallet_address) == wallet_address,
                WalletTransaction.status.in_(SETTLED_STATUSES),
            )
            .order_by(WalletTransaction.created_at.asc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()
