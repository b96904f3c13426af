"""payout_claims_initial

Revision ID: 5c1e9a2b7d40
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "5c1e9a2b7d40"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("sender_address", sa.String(64), nullable=False),
        sa.Column("network", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("amount_usd", sa.Numeric(20, 6), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "status IN ('pending','processing','settled','completed','failed','refunded')",
            name="ck_wallet_transactions_status",
        ),
        sa.CheckConstraint("amount_usd >= 0", name="ck_wallet_transactions_amount_non_negative"),
    )
    op.create_index(
        "idx_wallet_transactions_wallet_status",
        "wallet_transactions",
        ["wallet_address", "status", "created_at"],
    )

    op.create_table(
        "referrals",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("referrer_wallet_address", sa.String(64), nullable=False),
        sa.Column("referred_wallet_address", sa.String(64), nullable=False),
        sa.Column("referral_code", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("reward_amount", sa.Numeric(20, 6), nullable=False, server_default=sa.text("1.0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("status IN ('pending','processing','earned')", name="ck_referrals_status"),
        sa.CheckConstraint(
            "referrer_wallet_address <> referred_wallet_address",
            name="ck_referrals_no_self_referral",
        ),
        sa.UniqueConstraint("referred_wallet_address", name="uq_referrals_referred_wallet_address"),
    )
    op.create_index("idx_referrals_referrer", "referrals", ["referrer_wallet_address"])
    op.create_index("idx_referrals_code", "referrals", ["referral_code"])

    op.create_table(
        "payout_claims",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("subject_id", sa.String(128), nullable=False),
        sa.Column("claim_type", sa.String(16), nullable=False),
        sa.Column("claimant_wallet", sa.String(64), nullable=False),
        sa.Column("legs", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("amount", sa.Numeric(20, 6), nullable=False),
        sa.Column("token_symbol", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column(
            "tx_hashes",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("failure_code", sa.String(32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("status IN ('pending','completed','failed')", name="ck_payout_claims_status"),
        sa.CheckConstraint("claim_type IN ('cashback','referral')", name="ck_payout_claims_claim_type"),
        sa.CheckConstraint("amount > 0", name="ck_payout_claims_amount_positive"),
        sa.CheckConstraint("jsonb_array_length(legs) BETWEEN 1 AND 2", name="ck_payout_claims_legs_count"),
        sa.UniqueConstraint("subject_id", name="uq_payout_claims_subject_id"),
    )
    op.create_index(
        "idx_payout_claims_wallet_status",
        "payout_claims",
        ["claimant_wallet", "status", "claim_type"],
    )
    op.create_index(
        "idx_payout_claims_pending_created",
        "payout_claims",
        ["created_at"],
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.execute(
        """
        CREATE OR REPLACE FUNCTION fn_payout_claims_guard()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            IF TG_OP = 'DELETE' THEN
                RAISE EXCEPTION 'payout_claims rows are never deleted';
            END IF;
            IF OLD.status <> 'pending' THEN
                RAISE EXCEPTION 'payout_claims row % is already %', OLD.id, OLD.status;
            END IF;
            IF NEW.legs IS DISTINCT FROM OLD.legs
                OR NEW.subject_id IS DISTINCT FROM OLD.subject_id
                OR NEW.amount IS DISTINCT FROM OLD.amount THEN
                RAISE EXCEPTION 'payout_claims legs are fixed at creation';
            END IF;
            RETURN NEW;
        END;
        $$;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_payout_claims_guard
        BEFORE UPDATE OR DELETE ON payout_claims
        FOR EACH ROW
        EXECUTE FUNCTION fn_payout_claims_guard();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_payout_claims_guard ON payout_claims;")
    op.execute("DROP FUNCTION IF EXISTS fn_payout_claims_guard();")
    op.drop_index("idx_payout_claims_pending_created", table_name="payout_claims")
    op.drop_index("idx_payout_claims_wallet_status", table_name="payout_claims")
    op.drop_table("payout_claims")
    op.drop_index("idx_referrals_code", table_name="referrals")
    op.drop_index("idx_referrals_referrer", table_name="referrals")
    op.drop_table("referrals")
    op.drop_index("idx_wallet_transactions_wallet_status", table_name="wallet_transactions")
    op.drop_table("wallet_transactions")
