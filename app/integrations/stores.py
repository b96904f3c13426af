from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models.referrals import Referral
from app.db.models.wallet_transactions import WalletTransaction
from app.db.repo.referrals_repo import ReferralsRepo
from app.db.repo.wallet_transactions_repo import WalletTransactionsRepo
from app.economy.claims.types import ReferralRecord, TransactionRecord, normalize_wallet


def _to_transaction(row: WalletTransaction) -> TransactionRecord:
    return TransactionRecord(
        id=row.id,
        wallet_address=normalize_wallet(row.wallet_address),
        sender_address=normalize_wallet(row.sender_address),
        network=row.network,
        status=row.status,
        amount_usd=Decimal(str(row.amount_usd)),
        updated_at=row.updated_at,
    )


def _to_referral(row: Referral) -> ReferralRecord:
    return ReferralRecord(
        id=int(row.id),
        referrer_wallet_address=normalize_wallet(row.referrer_wallet_address),
        referred_wallet_address=normalize_wallet(row.referred_wallet_address),
        status=row.status,
        reward_amount=Decimal(str(row.reward_amount or 0)),
    )


class SqlTransactionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, transaction_id: str) -> TransactionRecord | None:
        async with self._session_factory.begin() as session:
            row = await WalletTransactionsRepo.get_by_id(session, transaction_id)
            return _to_transaction(row) if row is not None else None

    async def sum_settled_volume(self, wallet_address: str, *, network: str) -> Decimal:
        async with self._session_factory.begin() as session:
            return await WalletTransactionsRepo.sum_settled_volume(
                session,
                wallet_address=normalize_wallet(wallet_address),
                network=network.strip().lower(),
            )

    async def get_first_settled(self, wallet_address: str) -> TransactionRecord | None:
        async with self._session_factory.begin() as session:
            row = await WalletTransactionsRepo.get_first_settled(
                session,
                wallet_address=normalize_wallet(wallet_address),
            )
            return _to_transaction(row) if row is not None else None


class SqlReferralStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_for_referred_wallet(self, wallet_address: str) -> ReferralRecord | None:
        async with self._session_factory.begin() as session:
            row = await ReferralsRepo.get_by_referred_wallet(
                session,
                referred_wallet_address=normalize_wallet(wallet_address),
            )
            return _to_referral(row) if row is not None else None

    async def mark_earned(self, referral_id: int, *, now_utc: datetime) -> None:
        async with self._session_factory.begin() as session:
            await ReferralsRepo.mark_earned(session, referral_id=referral_id, now_utc=now_utc)
