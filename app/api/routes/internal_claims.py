from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import structlog
from fastapi import APIRouter, HTTPException, Path, Query, Request
from pydantic import BaseModel, Field

from app.core.config import get_settings
from app.db.session import SessionLocal
from app.economy.claims.ledger import SqlClaimLedger
from app.economy.claims.types import ClaimRecord
from app.services.claims_reliability import (
    build_claims_reliability_snapshot,
    evaluate_claims_alert_state,
)
from app.services.internal_auth import (
    extract_client_ip,
    is_client_ip_allowed,
    is_internal_request_authenticated,
)

router = APIRouter(tags=["internal", "claims"])
logger = structlog.get_logger(__name__)


class ClaimLegResponse(BaseModel):
    recipient: str
    amount: Decimal
    token_symbol: str


class ClaimDetailResponse(BaseModel):
    claim_id: int = Field(gt=0)
    subject_id: str
    claim_type: str
    claimant_wallet: str
    status: str
    amount: Decimal
    token_symbol: str
    legs: list[ClaimLegResponse]
    tx_hashes: list[str]
    failure_code: str | None = None
    created_at: datetime
    updated_at: datetime


class ClaimsDashboardAlertsResponse(BaseModel):
    stale_pending_detected: bool
    partial_payout_detected: bool


class ClaimsDashboardResponse(BaseModel):
    generated_at: datetime
    window_hours: int = Field(ge=1, le=720)
    stale_pending_minutes: int = Field(ge=1)
    claims_pending_total: int = Field(ge=0)
    claims_completed_total: int = Field(ge=0)
    claims_failed_total: int = Field(ge=0)
    completed_amount_total: Decimal = Field(ge=Decimal("0"))
    stale_pending: list[ClaimDetailResponse]
    partial_failures: list[ClaimDetailResponse]
    alerts: ClaimsDashboardAlertsResponse


def _get_ledger() -> SqlClaimLedger:
    return SqlClaimLedger(SessionLocal)


def _assert_internal_access(request: Request) -> None:
    settings = get_settings()
    client_ip = extract_client_ip(
        request,
        trusted_proxies=getattr(settings, "internal_api_trusted_proxies", ""),
    )
    if not is_client_ip_allowed(client_ip=client_ip, allowlist=settings.internal_api_allowlist):
        logger.warning("internal_claims_auth_failed", reason="ip_not_allowed", client_ip=client_ip)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})

    if not is_internal_request_authenticated(request, expected_token=settings.internal_api_token):
        logger.warning(
            "internal_claims_auth_failed",
            reason="invalid_credentials",
            client_ip=client_ip,
        )
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})


def _as_claim_detail(claim: ClaimRecord) -> ClaimDetailResponse:
    return ClaimDetailResponse(
        claim_id=claim.id,
        subject_id=claim.subject_id,
        claim_type=claim.claim_type,
        claimant_wallet=claim.claimant_wallet,
        status=claim.status,
        amount=claim.amount,
        token_symbol=claim.token_symbol,
        legs=[
            ClaimLegResponse(
                recipient=leg.recipient,
                amount=leg.amount,
                token_symbol=leg.token_symbol,
            )
            for leg in claim.legs
        ],
        tx_hashes=list(claim.tx_hashes),
        failure_code=claim.failure_code,
        created_at=claim.created_at,
        updated_at=claim.updated_at,
    )


@router.get("/internal/claims/dashboard", response_model=ClaimsDashboardResponse)
async def get_claims_dashboard(
    request: Request,
    window_hours: int = Query(default=24, ge=1, le=720),
    limit: int = Query(default=50, ge=1, le=200),
) -> ClaimsDashboardResponse:
    _assert_internal_access(request)
    stale_pending_minutes = get_settings().claims_stale_pending_minutes
    snapshot = await build_claims_reliability_snapshot(
        _get_ledger(),
        now_utc=datetime.now(timezone.utc),
        window_hours=window_hours,
        stale_pending_minutes=stale_pending_minutes,
        limit=limit,
    )
    alert_state = evaluate_claims_alert_state(snapshot)
    return ClaimsDashboardResponse(
        generated_at=snapshot.generated_at,
        window_hours=snapshot.window_hours,
        stale_pending_minutes=stale_pending_minutes,
        claims_pending_total=snapshot.counts_by_status.get("pending", 0),
        claims_completed_total=snapshot.counts_by_status.get("completed", 0),
        claims_failed_total=snapshot.counts_by_status.get("failed", 0),
        completed_amount_total=snapshot.completed_amount,
        stale_pending=[_as_claim_detail(claim) for claim in snapshot.stale_pending],
        partial_failures=[_as_claim_detail(claim) for claim in snapshot.partial_failures],
        alerts=ClaimsDashboardAlertsResponse(
            stale_pending_detected=alert_state.stale_pending_detected,
            partial_payout_detected=alert_state.partial_payout_detected,
        ),
    )


@router.get("/internal/claims/{subject_id}", response_model=ClaimDetailResponse)
async def get_claim(
    request: Request,
    subject_id: str = Path(min_length=1, max_length=128),
) -> ClaimDetailResponse:
    _assert_internal_access(request)
    claim = await _get_ledger().find(subject_id)
    if claim is None:
        raise HTTPException(status_code=404, detail={"code": "E_CLAIM_NOT_FOUND"})
    return _as_claim_detail(claim)
