from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol

CLAIM_STATUS_PENDING = "pending"
CLAIM_STATUS_COMPLETED = "completed"
CLAIM_STATUS_FAILED = "failed"
TERMINAL_CLAIM_STATUSES = frozenset({CLAIM_STATUS_COMPLETED, CLAIM_STATUS_FAILED})

CLAIM_TYPE_CASHBACK = "cashback"
CLAIM_TYPE_REFERRAL = "referral"


def normalize_wallet(address: str) -> str:
    return address.strip().lower()


@dataclass(frozen=True, slots=True)
class PayoutLeg:
    recipient: str
    amount: Decimal
    token_symbol: str

    def as_json(self) -> dict[str, str]:
        return {
            "recipient": self.recipient,
            "amount": format(self.amount, "f"),
            "token_symbol": self.token_symbol,
        }

    @classmethod
    def from_json(cls, payload: dict[str, Any]) -> PayoutLeg:
        return cls(
            recipient=str(payload["recipient"]),
            amount=Decimal(str(payload["amount"])),
            token_symbol=str(payload["token_symbol"]),
        )


@dataclass(frozen=True, slots=True)
class ClaimRecord:
    id: int
    subject_id: str
    claim_type: str
    claimant_wallet: str
    legs: tuple[PayoutLeg, ...]
    amount: Decimal
    token_symbol: str
    status: str
    tx_hashes: tuple[str, ...]
    failure_code: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CLAIM_STATUSES


@dataclass(frozen=True, slots=True)
class KycStatus:
    verified: bool


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    id: str
    wallet_address: str
    sender_address: str
    network: str
    status: str
    amount_usd: Decimal
    updated_at: datetime


@dataclass(frozen=True, slots=True)
class ReferralRecord:
    id: int
    referrer_wallet_address: str
    referred_wallet_address: str
    status: str
    reward_amount: Decimal


@dataclass(slots=True)
class ClaimRequest:
    claim_type: str
    auth_token: str | None
    subject_hint: str | None = None


@dataclass(slots=True)
class EligibilityContext:
    claim_type: str
    now_utc: datetime
    subject_hint: str | None = None
    wallet: str | None = None
    subject_id: str | None = None
    transaction: TransactionRecord | None = None
    referral: ReferralRecord | None = None
    kyc_verified: dict[str, bool] = field(default_factory=dict)
    campaign_active: bool | None = None
    qualifying_volume: Decimal | None = None
    prior_claims_count: int = 0
    prior_claims_amount: Decimal = Decimal("0")
    payout_amount: Decimal | None = None
    legs: list[PayoutLeg] = field(default_factory=list)


@dataclass(slots=True)
class ClaimOutcome:
    http_status: int
    success: bool
    code: str | None = None
    error: str | None = None
    message: str | None = None
    details: dict[str, Any] | None = None
    claim: ClaimRecord | None = None
    idempotent_replay: bool = False


@dataclass(frozen=True, slots=True)
class PayoutResult:
    tx_hashes: tuple[str, ...]


class IdentityResolver(Protocol):
    async def resolve(self, auth_token: str) -> str: ...


class KycStatusProvider(Protocol):
    async def get_status(self, wallet_address: str) -> KycStatus: ...


class TransactionStore(Protocol):
    async def get(self, transaction_id: str) -> TransactionRecord | None: ...

    async def sum_settled_volume(self, wallet_address: str, *, network: str) -> Decimal: ...

    async def get_first_settled(self, wallet_address: str) -> TransactionRecord | None: ...


class ReferralStore(Protocol):
    async def get_for_referred_wallet(self, wallet_address: str) -> ReferralRecord | None: ...

    async def mark_earned(self, referral_id: int, *, now_utc: datetime) -> None: ...


class TransferClient(Protocol):
    @property
    def funding_address(self) -> str: ...

    async def balance_of(self, token_symbol: str) -> Decimal: ...

    async def transfer(self, *, token_symbol: str, recipient: str, amount: Decimal) -> str: ...


class ClaimLedger(Protocol):
    async def find(self, subject_id: str) -> ClaimRecord | None: ...

    async def create_provisional(
        self,
        *,
        subject_id: str,
        claim_type: str,
        claimant_wallet: str,
        legs: list[PayoutLeg],
        now_utc: datetime,
    ) -> tuple[ClaimRecord, bool]: ...

    async def transition(
        self,
        claim_id: int,
        *,
        new_status: str,
        tx_hashes: list[str],
        now_utc: datetime,
        failure_code: str | None = None,
    ) -> bool: ...

    async def sum_completed(
        self,
        wallet_address: str,
        *,
        claim_type: str | None = None,
    ) -> tuple[int, Decimal]: ...
