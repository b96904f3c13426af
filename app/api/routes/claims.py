from __future__ import annotations

import time
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.economy.claims.errors import ClaimError, ValidationError
from app.economy.claims.factory import get_claim_services
from app.economy.claims.orchestrator import ClaimOrchestrator, error_outcome
from app.economy.claims.types import (
    CLAIM_TYPE_CASHBACK,
    CLAIM_TYPE_REFERRAL,
    ClaimOutcome,
    ClaimRecord,
    ClaimRequest,
)

router = APIRouter(tags=["claims"])
logger = structlog.get_logger(__name__)
TRANSACTION_ID_MAX_LENGTH = 128


class ClaimSummaryResponse(BaseModel):
    amount: str
    token_type: str = Field(serialization_alias="tokenType")
    status: str
    tx_hash: str | None = Field(default=None, serialization_alias="txHash")
    tx_hashes: list[str] = Field(default_factory=list, serialization_alias="txHashes")


class ClaimEnvelopeResponse(BaseModel):
    success: bool
    error: str | None = None
    code: str | None = None
    message: str | None = None
    details: dict[str, Any] | None = None
    claim: ClaimSummaryResponse | None = None
    response_time_ms: int = Field(ge=0)


def _get_orchestrator(claim_type: str) -> ClaimOrchestrator:
    return get_claim_services().orchestrator_for(claim_type)


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _as_claim_summary(claim: ClaimRecord) -> ClaimSummaryResponse:
    return ClaimSummaryResponse(
        amount=format(claim.amount, "f"),
        token_type=claim.token_symbol,
        status=claim.status,
        tx_hash=claim.tx_hashes[0] if claim.tx_hashes else None,
        tx_hashes=list(claim.tx_hashes),
    )


def _envelope(outcome: ClaimOutcome, *, started_at: float) -> JSONResponse:
    body = ClaimEnvelopeResponse(
        success=outcome.success,
        error=outcome.error,
        code=outcome.code,
        message=outcome.message,
        details=outcome.details,
        claim=_as_claim_summary(outcome.claim) if outcome.claim is not None else None,
        response_time_ms=int((time.perf_counter() - started_at) * 1000),
    )
    return JSONResponse(
        status_code=outcome.http_status,
        content=body.model_dump(mode="json", by_alias=True),
    )


async def _read_transaction_id(request: Request) -> str:
    content_type = request.headers.get("content-type", "")
    if "application/json" not in content_type:
        raise ValidationError(
            "UNSUPPORTED_CONTENT_TYPE",
            "Request body must be JSON.",
            http_status=415,
        )
    try:
        payload = await request.json()
    except ValueError as exc:
        raise ValidationError("INVALID_REQUEST", "Request body is not valid JSON.") from exc

    transaction_id = payload.get("transactionId") if isinstance(payload, dict) else None
    if (
        not isinstance(transaction_id, str)
        or not transaction_id.strip()
        or len(transaction_id) > TRANSACTION_ID_MAX_LENGTH
    ):
        raise ValidationError("INVALID_REQUEST", "transactionId must be a non-empty string.")
    return transaction_id.strip()


async def _run_claim(claim_request: ClaimRequest, *, started_at: float) -> JSONResponse:
    try:
        orchestrator = _get_orchestrator(claim_request.claim_type)
        outcome = await orchestrator.handle(claim_request)
    except Exception:
        logger.exception("claim_request_crashed", claim_type=claim_request.claim_type)
        outcome = error_outcome(ClaimError())
    logger.info(
        "claim_request_completed",
        claim_type=claim_request.claim_type,
        http_status=outcome.http_status,
        code=outcome.code,
        idempotent_replay=outcome.idempotent_replay,
    )
    return _envelope(outcome, started_at=started_at)


@router.post("/api/cashback/claim", response_model=ClaimEnvelopeResponse)
async def claim_cashback(request: Request) -> JSONResponse:
    started_at = time.perf_counter()
    try:
        transaction_id = await _read_transaction_id(request)
    except ClaimError as exc:
        return _envelope(error_outcome(exc), started_at=started_at)

    return await _run_claim(
        ClaimRequest(
            claim_type=CLAIM_TYPE_CASHBACK,
            auth_token=_bearer_token(request),
            subject_hint=transaction_id,
        ),
        started_at=started_at,
    )


@router.post("/api/referral/claim", response_model=ClaimEnvelopeResponse)
async def claim_referral(request: Request) -> JSONResponse:
    started_at = time.perf_counter()
    return await _run_claim(
        ClaimRequest(claim_type=CLAIM_TYPE_REFERRAL, auth_token=_bearer_token(request)),
        started_at=started_at,
    )
