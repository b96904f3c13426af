from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    Numeric,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class Referral(Base):
    __tablename__ = "referrals"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','processing','earned')",
            name="ck_referrals_status",
        ),
        CheckConstraint(
            "referrer_wallet_address <> referred_wallet_address",
            name="ck_referrals_no_self_referral",
        ),
        UniqueConstraint("referred_wallet_address", name="uq_referrals_referred_wallet_address"),
        Index("idx_referrals_referrer", "referrer_wallet_address"),
        Index("idx_referrals_code", "referral_code"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    referrer_wallet_address: Mapped[str] = mapped_column(String(64), nullable=False)
    referred_wallet_address: Mapped[str] = mapped_column(String(64), nullable=False)
    referral_code: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    reward_amount: Mapped[Decimal] = mapped_column(
        Numeric(20, 6), nullable=False, server_default=text("1.0")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
