from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from app.db.models.referrals import Referral
from app.db.models.wallet_transactions import WalletTransaction
from app.db.session import SessionLocal


async def _seed_transaction(
    *,
    transaction_id: str,
    wallet: str,
    now_utc: datetime,
    amount_usd: str = "500",
    status: str = "settled",
    network: str = "base",
    age: timedelta = timedelta(hours=1),
) -> None:
    async with SessionLocal.begin() as session:
        session.add(
            WalletTransaction(
                id=transaction_id,
                wallet_address=wallet.upper().replace("0X", "0x"),
                sender_address=wallet,
                network=network,
                status=status,
                amount_usd=Decimal(amount_usd),
                created_at=now_utc - age,
                updated_at=now_utc - age,
            )
        )


async def _seed_referral(
    *,
    referrer: str,
    referred: str,
    now_utc: datetime,
    reward_amount: str = "1.00",
) -> int:
    async with SessionLocal.begin() as session:
        referral = Referral(
            referrer_wallet_address=referrer,
            referred_wallet_address=referred,
            referral_code="FRIEND01",
            status="pending",
            reward_amount=Decimal(reward_amount),
            created_at=now_utc - timedelta(days=1),
        )
        session.add(referral)
        await session.flush()
        return int(referral.id)
