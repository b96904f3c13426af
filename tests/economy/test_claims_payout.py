from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from app.economy.claims.errors import DependencyError, InsufficientFundsError, TransferError
from app.economy.claims.payout import PayoutExecutor, classify_transfer_error
from app.economy.claims.types import ClaimRecord, PayoutLeg
from tests.economy.claims_fixtures import (
    CLAIMANT,
    FUNDING,
    NOW_UTC,
    REFERRER,
    FakeTransferClient,
    RecordingWriterLock,
)


def _claim(*amounts: str) -> ClaimRecord:
    recipients = [REFERRER, CLAIMANT]
    legs = tuple(
        PayoutLeg(recipient=recipients[index % 2], amount=Decimal(amount), token_symbol="USDC")
        for index, amount in enumerate(amounts)
    )
    return ClaimRecord(
        id=1,
        subject_id="referral-1",
        claim_type="referral",
        claimant_wallet=CLAIMANT,
        legs=legs,
        amount=sum((leg.amount for leg in legs), Decimal("0")),
        token_symbol="USDC",
        status="pending",
        tx_hashes=(),
        failure_code=None,
        created_at=NOW_UTC - timedelta(seconds=1),
        updated_at=NOW_UTC - timedelta(seconds=1),
    )


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("insufficient funds for gas * price + value", "insufficient_funds"),
        ("nonce too low", "nonce_conflict"),
        ("Gas required exceeds allowance", "gas_estimation_failed"),
        ("execution reverted", "generic"),
    ],
)
def test_classify_transfer_error(message: str, expected: str) -> None:
    assert classify_transfer_error(RuntimeError(message)) == expected


def test_transfer_error_maps_category_to_code() -> None:
    error = TransferError("nonce_conflict", partial_tx_hashes=["0x1"], failed_leg_index=1)

    assert error.code == "NONCE_ERROR"
    assert error.http_status == 500
    assert error.details == {"completed_legs": 1, "failed_leg": 1}


def test_unknown_transfer_category_falls_back_to_generic() -> None:
    error = TransferError("weird")

    assert error.category == "generic"
    assert error.code == "TRANSFER_FAILED"


@pytest.mark.asyncio
async def test_executor_transfers_every_leg_in_order_under_writer_lock() -> None:
    client = FakeTransferClient()
    lock = RecordingWriterLock()
    executor = PayoutExecutor(transfer_client=client, writer_lock=lock)

    result = await executor.execute(_claim("1.00", "1.00"))

    assert len(result.tx_hashes) == 2
    assert client.transfers == [(REFERRER, Decimal("1.00")), (CLAIMANT, Decimal("1.00"))]
    assert lock.held_for == [FUNDING]


@pytest.mark.asyncio
async def test_executor_checks_balance_against_total_of_all_legs() -> None:
    client = FakeTransferClient(balance="1.50")
    executor = PayoutExecutor(transfer_client=client, writer_lock=RecordingWriterLock())

    with pytest.raises(InsufficientFundsError) as exc_info:
        await executor.execute(_claim("1.00", "1.00"))

    assert exc_info.value.code == "INSUFFICIENT_BALANCE"
    assert exc_info.value.details == {"required": "2.00", "token": "USDC"}
    assert client.transfers == []


@pytest.mark.asyncio
async def test_executor_maps_balance_query_failure_to_dependency_error() -> None:
    client = FakeTransferClient(balance_error=TimeoutError("rpc timeout"))
    executor = PayoutExecutor(transfer_client=client, writer_lock=RecordingWriterLock())

    with pytest.raises(DependencyError):
        await executor.execute(_claim("1.00"))


@pytest.mark.asyncio
async def test_executor_reports_hashes_submitted_before_leg_failure() -> None:
    client = FakeTransferClient(fail_on_leg=1, error_message="insufficient funds for gas")
    executor = PayoutExecutor(transfer_client=client, writer_lock=RecordingWriterLock())

    with pytest.raises(TransferError) as exc_info:
        await executor.execute(_claim("1.00", "1.00"))

    assert exc_info.value.code == "INSUFFICIENT_FUNDS"
    assert exc_info.value.failed_leg_index == 1
    assert len(exc_info.value.partial_tx_hashes) == 1


@pytest.mark.asyncio
async def test_executor_keeps_hash_of_broadcast_leg_without_receipt() -> None:
    client = FakeTransferClient(unconfirmed_on_leg=1)
    executor = PayoutExecutor(transfer_client=client, writer_lock=RecordingWriterLock())

    with pytest.raises(TransferError) as exc_info:
        await executor.execute(_claim("1.00", "1.00"))

    error = exc_info.value
    assert error.code == "TRANSFER_FAILED"
    assert error.failed_leg_index == 1
    assert error.partial_tx_hashes == ["0x" + format(1, "064x")]
    assert error.submitted_tx_hash == "0x" + format(2, "064x")
    assert error.recorded_tx_hashes == ["0x" + format(1, "064x"), "0x" + format(2, "064x")]
    assert error.details == {
        "completed_legs": 1,
        "failed_leg": 1,
        "unconfirmed_tx_hash": "0x" + format(2, "064x"),
    }
