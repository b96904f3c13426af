from __future__ import annotations

from typing import Any

TRANSFER_CATEGORY_CODES = {
    "insufficient_funds": "INSUFFICIENT_FUNDS",
    "nonce_conflict": "NONCE_ERROR",
    "gas_estimation_failed": "GAS_ESTIMATION_FAILED",
    "generic": "TRANSFER_FAILED",
}
TRANSFER_CATEGORY_MESSAGES = {
    "insufficient_funds": "Insufficient funds in the payout wallet.",
    "nonce_conflict": "Transaction nonce error. Please try again.",
    "gas_estimation_failed": "Gas estimation failed. Please try again.",
    "generic": "Failed to transfer the reward.",
}


class ClaimError(Exception):
    """Base for every failure that ends a claim request with a user-facing code."""

    code = "INTERNAL_ERROR"
    http_status = 500
    error = "Internal error"
    default_message = "Something went wrong while processing the claim."

    def __init__(
        self,
        code: str | None = None,
        message: str | None = None,
        *,
        http_status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.code)


class ValidationError(ClaimError):
    http_status = 400
    error = "Validation failed"
    default_message = "The claim request is not valid."


class AuthError(ClaimError):
    code = "AUTH_REQUIRED"
    http_status = 401
    error = "Unauthorized"
    default_message = "Authentication is required to claim a reward."


class AuthorizationError(ClaimError):
    http_status = 403
    error = "Not eligible"
    default_message = "This wallet is not eligible for the reward."


class NotFoundError(ClaimError):
    http_status = 404
    error = "Not found"
    default_message = "The claim subject was not found."


class ConflictError(ClaimError):
    http_status = 409
    error = "Conflict"
    default_message = "The claim conflicts with an existing one."


class LimitError(ClaimError):
    http_status = 429
    error = "Limit reached"
    default_message = "The reward limit for this wallet has been reached."


class DependencyError(ClaimError):
    code = "SERVICE_UNAVAILABLE"
    http_status = 503
    error = "Service unavailable"
    default_message = "The reward service is temporarily unavailable."


class ClaimCreationError(DependencyError):
    code = "CLAIM_CREATION_FAILED"
    http_status = 500
    error = "Claim creation failed"
    default_message = "The claim could not be recorded. Please try again."


class InsufficientFundsError(DependencyError):
    code = "INSUFFICIENT_BALANCE"
    http_status = 503
    error = "Insufficient balance"
    default_message = "The reward pool is temporarily depleted. Please try again later."


class TransferError(ClaimError):
    http_status = 500
    error = "Transfer failed"

    def __init__(
        self,
        category: str,
        *,
        partial_tx_hashes: list[str] | None = None,
        failed_leg_index: int | None = None,
        submitted_tx_hash: str | None = None,
    ) -> None:
        self.category = category if category in TRANSFER_CATEGORY_CODES else "generic"
        self.partial_tx_hashes = list(partial_tx_hashes or [])
        self.failed_leg_index = failed_leg_index
        self.submitted_tx_hash = submitted_tx_hash
        details: dict[str, Any] = {"completed_legs": len(self.partial_tx_hashes)}
        if failed_leg_index is not None:
            details["failed_leg"] = failed_leg_index
        if submitted_tx_hash is not None:
            details["unconfirmed_tx_hash"] = submitted_tx_hash
        super().__init__(
            TRANSFER_CATEGORY_CODES[self.category],
            TRANSFER_CATEGORY_MESSAGES[self.category],
            details=details,
        )

    @property
    def recorded_tx_hashes(self) -> list[str]:
        """Hashes to keep on the failed claim.

        A leg that was broadcast but never confirmed may still be mined, so its
        hash is kept alongside the confirmed ones for reconciliation.
        """
        if self.submitted_tx_hash is None:
            return list(self.partial_tx_hashes)
        return [*self.partial_tx_hashes, self.submitted_tx_hash]


class TransferUnconfirmedError(RuntimeError):
    """A transfer reached the network but its receipt could not be read."""

    def __init__(self, tx_hash: str) -> None:
        self.tx_hash = tx_hash
        super().__init__(f"transfer {tx_hash} was broadcast but its receipt is unavailable")


class PayoutConfigError(ValueError):
    pass


CODE_HTTP_STATUS = {
    "INVALID_REQUEST": 400,
    "UNSUPPORTED_CONTENT_TYPE": 415,
    "AUTH_REQUIRED": 401,
    "CAMPAIGN_ENDED": 410,
    "TRANSACTION_NOT_FOUND": 404,
    "TRANSACTION_NOT_SETTLED": 400,
    "INVALID_NETWORK": 400,
    "NOT_TRANSACTION_OWNER": 403,
    "KYC_REQUIRED": 400,
    "NOT_A_PARTICIPANT": 403,
    "VOLUME_NOT_MET": 400,
    "MAX_CLAIMS_REACHED": 429,
    "MAX_CASHBACK_REACHED": 429,
    "SERVICE_UNAVAILABLE": 503,
    "INSUFFICIENT_BALANCE": 503,
    "CLAIM_CREATION_FAILED": 500,
    "TRANSFER_FAILED": 500,
    "INSUFFICIENT_FUNDS": 500,
    "NONCE_ERROR": 500,
    "GAS_ESTIMATION_FAILED": 500,
    "INTERNAL_ERROR": 500,
}


def http_status_for_code(code: str | None) -> int:
    if code is None:
        return 500
    return CODE_HTTP_STATUS.get(code, 500)
