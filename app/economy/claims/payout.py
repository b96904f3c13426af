from __future__ import annotations

from decimal import Decimal

import structlog

from app.economy.claims.errors import (
    DependencyError,
    InsufficientFundsError,
    TransferError,
    TransferUnconfirmedError,
)
from app.economy.claims.types import ClaimRecord, PayoutResult, TransferClient
from app.economy.claims.writer_lock import PayoutWriterLock

logger = structlog.get_logger(__name__)

TRANSFER_ERROR_MARKERS: tuple[tuple[str, str], ...] = (
    ("insufficient funds", "insufficient_funds"),
    ("nonce", "nonce_conflict"),
    ("gas", "gas_estimation_failed"),
)


def classify_transfer_error(exc: BaseException) -> str:
    message = str(exc).lower()
    for marker, category in TRANSFER_ERROR_MARKERS:
        if marker in message:
            return category
    return "generic"


class PayoutExecutor:
    def __init__(self, *, transfer_client: TransferClient, writer_lock: PayoutWriterLock) -> None:
        self._transfer_client = transfer_client
        self._writer_lock = writer_lock

    async def execute(self, claim: ClaimRecord) -> PayoutResult:
        funding_address = self._transfer_client.funding_address
        async with self._writer_lock.hold(funding_address):
            await self._preflight(claim)
            return await self._transfer_legs(claim)

    async def _preflight(self, claim: ClaimRecord) -> None:
        required = sum((leg.amount for leg in claim.legs), Decimal("0"))
        try:
            balance = await self._transfer_client.balance_of(claim.token_symbol)
        except Exception as exc:
            logger.warning(
                "payout_balance_query_failed",
                subject_id=claim.subject_id,
                error_type=type(exc).__name__,
            )
            raise DependencyError from exc

        if balance < required:
            logger.warning(
                "payout_insufficient_balance",
                subject_id=claim.subject_id,
                required=format(required, "f"),
                available=format(balance, "f"),
            )
            raise InsufficientFundsError(
                details={"required": format(required, "f"), "token": claim.token_symbol}
            )

    async def _transfer_legs(self, claim: ClaimRecord) -> PayoutResult:
        tx_hashes: list[str] = []
        for index, leg in enumerate(claim.legs):
            try:
                tx_hash = await self._transfer_client.transfer(
                    token_symbol=leg.token_symbol,
                    recipient=leg.recipient,
                    amount=leg.amount,
                )
            except Exception as exc:
                category = classify_transfer_error(exc)
                submitted_tx_hash = exc.tx_hash if isinstance(exc, TransferUnconfirmedError) else None
                logger.error(
                    "payout_leg_failed",
                    subject_id=claim.subject_id,
                    leg=index,
                    category=category,
                    completed_legs=len(tx_hashes),
                    tx_hash=submitted_tx_hash,
                    error_type=type(exc).__name__,
                )
                raise TransferError(
                    category,
                    partial_tx_hashes=tx_hashes,
                    failed_leg_index=index,
                    submitted_tx_hash=submitted_tx_hash,
                ) from exc

            tx_hashes.append(tx_hash)
            logger.info(
                "payout_leg_submitted",
                subject_id=claim.subject_id,
                leg=index,
                recipient=leg.recipient,
                amount=format(leg.amount, "f"),
                tx_hash=tx_hash,
            )
        return PayoutResult(tx_hashes=tuple(tx_hashes))
