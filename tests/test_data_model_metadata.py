from __future__ import annotations

from sqlalchemy import CheckConstraint, UniqueConstraint

from app.db.models import PayoutClaim, Referral, WalletTransaction  # noqa: F401
from app.db.models.base import Base


def _constraint_names(table_name: str, kind: type) -> set[str]:
    table = Base.metadata.tables[table_name]
    return {constraint.name for constraint in table.constraints if isinstance(constraint, kind)}


def test_claim_tables_registered() -> None:
    assert {"payout_claims", "wallet_transactions", "referrals"}.issubset(
        set(Base.metadata.tables)
    )


def test_payout_claims_subject_is_unique() -> None:
    assert "uq_payout_claims_subject_id" in _constraint_names("payout_claims", UniqueConstraint)


def test_referred_wallet_has_single_referral() -> None:
    assert "uq_referrals_referred_wallet_address" in _constraint_names(
        "referrals",
        UniqueConstraint,
    )


def test_payout_claims_columns_cover_ledger_fields() -> None:
    columns = set(Base.metadata.tables["payout_claims"].columns.keys())
    assert {
        "id",
        "subject_id",
        "claim_type",
        "claimant_wallet",
        "legs",
        "amount",
        "token_symbol",
        "status",
        "tx_hashes",
        "failure_code",
        "created_at",
        "updated_at",
    }.issubset(columns)


def test_critical_check_constraints_present() -> None:
    assert {
        "ck_payout_claims_status",
        "ck_payout_claims_amount_positive",
        "ck_payout_claims_legs_count",
    }.issubset(_constraint_names("payout_claims", CheckConstraint))
    assert "ck_referrals_no_self_referral" in _constraint_names("referrals", CheckConstraint)

    pending_index_names = {
        index.name for index in Base.metadata.tables["payout_claims"].indexes
    }
    assert "idx_payout_claims_pending_created" in pending_index_names
