from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_DOWN, Decimal

from app.economy.claims.config import PayoutConfig
from app.economy.claims.eligibility import EligibilityCheck
from app.economy.claims.errors import (
    AuthorizationError,
    LimitError,
    NotFoundError,
    ValidationError,
)
from app.economy.claims.types import (
    CLAIM_TYPE_CASHBACK,
    CLAIM_TYPE_REFERRAL,
    ClaimLedger,
    ClaimRecord,
    EligibilityContext,
    KycStatusProvider,
    PayoutLeg,
    ReferralStore,
    TransactionStore,
    normalize_wallet,
)

CENT = Decimal("0.01")
SETTLED_TRANSACTION_STATUSES = frozenset({"settled", "completed"})

SubjectResolver = Callable[[EligibilityContext], Awaitable[None]]
CompletionHook = Callable[[ClaimRecord, datetime], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class ClaimProgram:
    claim_type: str
    resolve_subject: SubjectResolver
    checks: tuple[EligibilityCheck, ...]
    on_completed: CompletionHook | None = None


def _require_wallet(context: EligibilityContext) -> str:
    if context.wallet is None:
        raise RuntimeError("eligibility context has no resolved wallet")
    return context.wallet


def _campaign_window_check(campaign_end: datetime | None) -> EligibilityCheck:
    async def run(context: EligibilityContext) -> None:
        context.campaign_active = campaign_end is None or context.now_utc < campaign_end
        if not context.campaign_active:
            raise ValidationError(
                "CAMPAIGN_ENDED",
                "This campaign has ended.",
                http_status=410,
            )

    return EligibilityCheck(name="campaign_window", run=run)


def _wallet_caps_check(*, ledger: ClaimLedger, config: PayoutConfig) -> EligibilityCheck:
    async def run(context: EligibilityContext) -> None:
        wallet = _require_wallet(context)
        # Caps span every program: cashback and referral payouts share one budget.
        count, total = await ledger.sum_completed(wallet)
        context.prior_claims_count = count
        context.prior_claims_amount = total
        if count >= config.max_claims_per_wallet:
            raise LimitError(
                "MAX_CLAIMS_REACHED",
                "This wallet has already claimed the maximum number of rewards.",
                details={"max_claims": config.max_claims_per_wallet},
            )
        payout_amount = context.payout_amount or Decimal("0")
        if total + payout_amount > config.max_per_wallet:
            raise LimitError(
                "MAX_CASHBACK_REACHED",
                "This wallet has reached the maximum reward amount.",
                details={"max_amount": format(config.max_per_wallet, "f")},
            )

    return EligibilityCheck(name="wallet_caps", run=run)


def _missing_parties(results: list[bool], parties: list[str]) -> list[str]:
    return [party for party, verified in zip(parties, results) if not verified]


def build_cashback_program(
    config: PayoutConfig,
    *,
    ledger: ClaimLedger,
    kyc_provider: KycStatusProvider,
    transactions: TransactionStore,
) -> ClaimProgram:
    async def resolve_subject(context: EligibilityContext) -> None:
        subject_id = (context.subject_hint or "").strip()
        if not subject_id:
            raise NotFoundError(
                "TRANSACTION_NOT_FOUND",
                "A transaction id is required to claim cashback.",
            )
        context.subject_id = subject_id

    async def resolve_transaction(context: EligibilityContext) -> None:
        subject_id = context.subject_id or ""
        transaction = await transactions.get(subject_id)
        if transaction is None:
            raise NotFoundError("TRANSACTION_NOT_FOUND", "The transaction was not found.")
        context.transaction = transaction
        if transaction.status.lower() not in SETTLED_TRANSACTION_STATUSES:
            raise ValidationError(
                "TRANSACTION_NOT_SETTLED",
                "The transaction has not settled yet.",
                details={"status": transaction.status},
            )
        chain_prefix, separator, _ = subject_id.partition("-")
        if separator and chain_prefix.isdigit() and int(chain_prefix) != config.chain_id:
            raise ValidationError(
                "INVALID_NETWORK",
                "The transaction was made on an unsupported network.",
            )
        if transaction.network.strip().lower() != config.expected_network:
            raise ValidationError(
                "INVALID_NETWORK",
                "The transaction was made on an unsupported network.",
            )

    async def ownership(context: EligibilityContext) -> None:
        wallet = _require_wallet(context)
        transaction = context.transaction
        if transaction is None or normalize_wallet(transaction.sender_address) != wallet:
            raise AuthorizationError(
                "NOT_TRANSACTION_OWNER",
                "The transaction was not sent from this wallet.",
            )

    async def kyc(context: EligibilityContext) -> None:
        wallet = _require_wallet(context)
        status = await kyc_provider.get_status(wallet)
        context.kyc_verified["claimant"] = status.verified
        if not status.verified:
            raise ValidationError(
                "KYC_REQUIRED",
                "Identity verification is required before claiming.",
                details={"missing": ["claimant"]},
            )

    async def volume(context: EligibilityContext) -> None:
        wallet = _require_wallet(context)
        total = await transactions.sum_settled_volume(wallet, network=config.expected_network)
        context.qualifying_volume = total
        if total < config.min_qualifying_volume:
            raise ValidationError(
                "VOLUME_NOT_MET",
                "The minimum transaction volume has not been reached.",
                details={"required": format(config.min_qualifying_volume, "f")},
            )

    async def quote(context: EligibilityContext) -> None:
        wallet = _require_wallet(context)
        transaction = context.transaction
        if transaction is None:
            raise RuntimeError("cashback quote requires a resolved transaction")
        amount = (transaction.amount_usd * config.reward_rate).quantize(CENT, rounding=ROUND_DOWN)
        amount = min(amount, config.max_per_tx)
        if amount <= 0:
            raise ValidationError(
                "VOLUME_NOT_MET",
                "The transaction is too small to earn cashback.",
            )
        context.payout_amount = amount
        context.legs = [PayoutLeg(recipient=wallet, amount=amount, token_symbol=config.token_symbol)]

    return ClaimProgram(
        claim_type=CLAIM_TYPE_CASHBACK,
        resolve_subject=resolve_subject,
        checks=(
            _campaign_window_check(config.campaign_end),
            EligibilityCheck(name="subject", run=resolve_transaction),
            EligibilityCheck(name="ownership", run=ownership),
            EligibilityCheck(name="kyc", run=kyc),
            EligibilityCheck(name="volume", run=volume),
            EligibilityCheck(name="quote", run=quote),
            _wallet_caps_check(ledger=ledger, config=config),
        ),
    )


def build_referral_program(
    config: PayoutConfig,
    *,
    ledger: ClaimLedger,
    kyc_provider: KycStatusProvider,
    transactions: TransactionStore,
    referrals: ReferralStore,
) -> ClaimProgram:
    async def resolve_subject(context: EligibilityContext) -> None:
        wallet = _require_wallet(context)
        referral = await referrals.get_for_referred_wallet(wallet)
        context.referral = referral
        if referral is not None:
            context.subject_id = f"referral-{referral.id}"

    async def resolve_referral(context: EligibilityContext) -> None:
        wallet = _require_wallet(context)
        if context.referral is None:
            raise AuthorizationError(
                "NOT_A_PARTICIPANT",
                "No referral was found for this wallet.",
            )
        transaction = await transactions.get_first_settled(wallet)
        if transaction is None:
            raise NotFoundError(
                "TRANSACTION_NOT_FOUND",
                "No qualifying completed transaction was found.",
            )
        context.transaction = transaction

    async def ownership(context: EligibilityContext) -> None:
        wallet = _require_wallet(context)
        referral = context.referral
        transaction = context.transaction
        if referral is None or normalize_wallet(referral.referrer_wallet_address) == wallet:
            raise AuthorizationError(
                "NOT_A_PARTICIPANT",
                "This wallet cannot claim its own referral.",
            )
        if transaction is None or normalize_wallet(transaction.wallet_address) != wallet:
            raise AuthorizationError(
                "NOT_TRANSACTION_OWNER",
                "The qualifying transaction does not belong to this wallet.",
            )

    async def kyc(context: EligibilityContext) -> None:
        wallet = _require_wallet(context)
        referral = context.referral
        if referral is None:
            raise AuthorizationError("NOT_A_PARTICIPANT")
        referrer_status, referred_status = await asyncio.gather(
            kyc_provider.get_status(normalize_wallet(referral.referrer_wallet_address)),
            kyc_provider.get_status(wallet),
        )
        context.kyc_verified["referrer"] = referrer_status.verified
        context.kyc_verified["referred"] = referred_status.verified
        missing = _missing_parties(
            [referrer_status.verified, referred_status.verified],
            ["referrer", "referred"],
        )
        if missing:
            raise ValidationError(
                "KYC_REQUIRED",
                f"Identity verification is required for: {', '.join(missing)}.",
                details={"missing": missing},
            )

    async def volume(context: EligibilityContext) -> None:
        transaction = context.transaction
        if transaction is None:
            raise RuntimeError("referral volume check requires a resolved transaction")
        context.qualifying_volume = transaction.amount_usd
        if transaction.amount_usd < config.referral_min_transaction_amount:
            raise ValidationError(
                "VOLUME_NOT_MET",
                "The first completed transaction does not meet the minimum amount.",
                details={"required": format(config.referral_min_transaction_amount, "f")},
            )

    async def quote(context: EligibilityContext) -> None:
        wallet = _require_wallet(context)
        referral = context.referral
        if referral is None:
            raise RuntimeError("referral quote requires a resolved referral")
        reward = referral.reward_amount if referral.reward_amount > 0 else config.referral_reward_amount
        reward = reward.quantize(CENT, rounding=ROUND_DOWN)
        if reward * 2 > config.max_per_tx:
            reward = (config.max_per_tx / 2).quantize(CENT, rounding=ROUND_DOWN)
        context.payout_amount = reward * 2
        context.legs = [
            PayoutLeg(
                recipient=normalize_wallet(referral.referrer_wallet_address),
                amount=reward,
                token_symbol=config.token_symbol,
            ),
            PayoutLeg(recipient=wallet, amount=reward, token_symbol=config.token_symbol),
        ]

    async def mark_referral_earned(claim: ClaimRecord, now_utc: datetime) -> None:
        referral_id = int(claim.subject_id.removeprefix("referral-"))
        await referrals.mark_earned(referral_id, now_utc=now_utc)

    return ClaimProgram(
        claim_type=CLAIM_TYPE_REFERRAL,
        resolve_subject=resolve_subject,
        checks=(
            _campaign_window_check(None),
            EligibilityCheck(name="subject", run=resolve_referral),
            EligibilityCheck(name="ownership", run=ownership),
            EligibilityCheck(name="kyc", run=kyc),
            EligibilityCheck(name="volume", run=volume),
            EligibilityCheck(name="quote", run=quote),
            _wallet_caps_check(ledger=ledger, config=config),
        ),
        on_completed=mark_referral_earned,
    )

