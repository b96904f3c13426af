from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from app.core.config import Settings
from app.economy.claims.errors import PayoutConfigError

EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


@dataclass(frozen=True, slots=True)
class PayoutConfig:
    """Payout options assembled once at startup and injected into the orchestrator."""

    funding_wallet_key: str
    funding_wallet_address: str
    rpc_url: str
    token_address: str
    token_symbol: str
    token_decimals: int
    chain_id: int
    expected_network: str
    max_per_tx: Decimal
    max_per_wallet: Decimal
    max_claims_per_wallet: int
    reward_rate: Decimal
    campaign_end: datetime | None
    min_qualifying_volume: Decimal = Decimal("0")
    referral_reward_amount: Decimal = Decimal("1.00")
    referral_min_transaction_amount: Decimal = Decimal("20")
    payout_lock_timeout_seconds: float = 120.0
    transfer_receipt_timeout_seconds: float = 180.0

    @property
    def funding_configured(self) -> bool:
        return bool(
            self.funding_wallet_key
            and self.funding_wallet_address
            and self.rpc_url
            and self.token_address
        )

    def __repr__(self) -> str:
        return (
            f"PayoutConfig(funding_wallet_address={self.funding_wallet_address!r}, "
            f"token_symbol={self.token_symbol!r}, chain_id={self.chain_id})"
        )


def _parse_decimal(name: str, raw: str, *, allow_zero: bool = False) -> Decimal:
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation as exc:
        raise PayoutConfigError(f"{name} must be a decimal number") from exc
    if not value.is_finite() or value < 0 or (value == 0 and not allow_zero):
        raise PayoutConfigError(f"{name} must be a positive number")
    return value


def _parse_campaign_end(raw: str) -> datetime | None:
    candidate = raw.strip()
    if not candidate:
        return None
    try:
        parsed = datetime.fromisoformat(candidate.replace("Z", "+00:00"))
    except ValueError as exc:
        raise PayoutConfigError("CAMPAIGN_END must be an ISO-8601 instant") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_payout_config(settings: Settings) -> PayoutConfig:
    for name, address in (
        ("FUNDING_WALLET_ADDRESS", settings.funding_wallet_address),
        ("TOKEN_ADDRESS", settings.token_address),
    ):
        if address and EVM_ADDRESS_RE.match(address.strip()) is None:
            raise PayoutConfigError(f"{name} must be a 0x-prefixed 20-byte address")

    reward_rate = _parse_decimal("REWARD_RATE", settings.reward_rate)
    if reward_rate > 1:
        raise PayoutConfigError("REWARD_RATE must not exceed 1")
    if settings.max_claims_per_wallet <= 0:
        raise PayoutConfigError("MAX_CLAIMS_PER_WALLET must be positive")
    if not 0 <= settings.token_decimals <= 36:
        raise PayoutConfigError("TOKEN_DECIMALS is out of range")

    max_per_tx = _parse_decimal("MAX_PER_TX", settings.max_per_tx)
    max_per_wallet = _parse_decimal("MAX_PER_WALLET", settings.max_per_wallet)
    if max_per_tx > max_per_wallet:
        raise PayoutConfigError("MAX_PER_TX must not exceed MAX_PER_WALLET")

    return PayoutConfig(
        funding_wallet_key=settings.funding_wallet_key.strip(),
        funding_wallet_address=settings.funding_wallet_address.strip().lower(),
        rpc_url=settings.rpc_url.strip(),
        token_address=settings.token_address.strip(),
        token_symbol=settings.token_symbol.strip().upper(),
        token_decimals=settings.token_decimals,
        chain_id=settings.chain_id,
        expected_network=settings.expected_network.strip().lower(),
        max_per_tx=max_per_tx,
        max_per_wallet=max_per_wallet,
        max_claims_per_wallet=settings.max_claims_per_wallet,
        reward_rate=reward_rate,
        campaign_end=_parse_campaign_end(settings.campaign_end),
        min_qualifying_volume=_parse_decimal(
            "MIN_QUALIFYING_VOLUME",
            settings.min_qualifying_volume,
            allow_zero=True,
        ),
        referral_reward_amount=_parse_decimal(
            "REFERRAL_REWARD_AMOUNT",
            settings.referral_reward_amount,
        ),
        referral_min_transaction_amount=_parse_decimal(
            "REFERRAL_MIN_TRANSACTION_AMOUNT",
            settings.referral_min_transaction_amount,
            allow_zero=True,
        ),
        payout_lock_timeout_seconds=settings.payout_lock_timeout_seconds,
        transfer_receipt_timeout_seconds=settings.transfer_receipt_timeout_seconds,
    )
