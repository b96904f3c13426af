from __future__ import annotations

from datetime import datetime, timezone

import structlog

from app.core.config import get_settings
from app.db.session import SessionLocal
from app.economy.claims.ledger import SqlClaimLedger
from app.services.alerts import send_ops_alert
from app.services.claims_reliability import (
    build_claims_reliability_snapshot,
    evaluate_claims_alert_state,
    summarize_claim,
)
from app.workers.asyncio_runner import run_async_job
from app.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)
RECONCILIATION_WINDOW_HOURS = 24


async def run_claims_reconciliation_async(*, limit: int = 100) -> dict[str, object]:
    """Reports claims that need a human: stale `pending` rows and partial payouts.

    Nothing is retried or rewritten here; on-chain transfers are irreversible
    and the operator decides how to settle each case.
    """
    settings = get_settings()
    snapshot = await build_claims_reliability_snapshot(
        SqlClaimLedger(SessionLocal),
        now_utc=datetime.now(timezone.utc),
        window_hours=RECONCILIATION_WINDOW_HOURS,
        stale_pending_minutes=settings.claims_stale_pending_minutes,
        limit=limit,
    )
    alert_state = evaluate_claims_alert_state(snapshot)
    result: dict[str, object] = {
        "generated_at": snapshot.generated_at.isoformat(),
        "window_hours": snapshot.window_hours,
        "status_counts": snapshot.counts_by_status,
        "completed_amount": format(snapshot.completed_amount, "f"),
        "stale_pending_total": snapshot.stale_pending_total,
        "partial_failures_total": snapshot.partial_failures_total,
    }

    if alert_state.stale_pending_detected:
        await send_ops_alert(
            event="claims_stale_pending_detected",
            payload={
                **result,
                "claims": [summarize_claim(claim) for claim in snapshot.stale_pending],
            },
        )
    if alert_state.partial_payout_detected:
        await send_ops_alert(
            event="claims_partial_payout_detected",
            payload={
                **result,
                "claims": [summarize_claim(claim) for claim in snapshot.partial_failures],
            },
        )

    if alert_state.any_detected:
        logger.warning("claims_reconciliation_attention_required", **result)
    else:
        logger.info("claims_reconciliation_finished", **result)
    return result


@celery_app.task(name="app.workers.tasks.claims_reliability.run_claims_reconciliation")
def run_claims_reconciliation(limit: int = 100) -> dict[str, object]:
    return run_async_job(
        lambda: run_claims_reconciliation_async(limit=limit),
        name="run_claims_reconciliation",
    )


celery_app.conf.beat_schedule = celery_app.conf.beat_schedule or {}
celery_app.conf.beat_schedule.update(
    {
        "claims-reconciliation-every-10-minutes": {
            "task": "app.workers.tasks.claims_reliability.run_claims_reconciliation",
            "schedule": 600.0,
            "options": {"queue": "q_normal"},
        },
    }
)
