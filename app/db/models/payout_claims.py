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
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class PayoutClaim(Base):
    __tablename__ = "payout_claims"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','completed','failed')",
            name="ck_payout_claims_status",
        ),
        CheckConstraint(
            "claim_type IN ('cashback','referral')",
            name="ck_payout_claims_claim_type",
        ),
        CheckConstraint("amount > 0", name="ck_payout_claims_amount_positive"),
        CheckConstraint(
            "jsonb_array_length(legs) BETWEEN 1 AND 2",
            name="ck_payout_claims_legs_count",
        ),
        UniqueConstraint("subject_id", name="uq_payout_claims_subject_id"),
        Index("idx_payout_claims_wallet_status", "claimant_wallet", "status", "claim_type"),
        Index(
            "idx_payout_claims_pending_created",
            "created_at",
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(128), nullable=False)
    claim_type: Mapped[str] = mapped_column(String(16), nullable=False)
    claimant_wallet: Mapped[str] = mapped_column(String(64), nullable=False)
    legs: Mapped[list[dict[str, str]]] = mapped_column(JSONB, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    token_symbol: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    tx_hashes: Mapped[list[str]] = mapped_column(
        JSONB,
        nullable=False,
        server_default=text("'[]'::jsonb"),
    )
    failure_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
