from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

import structlog

from app.economy.claims.config import PayoutConfig
from app.economy.claims.eligibility import EligibilityVerifier
from app.economy.claims.errors import (
    TRANSFER_CATEGORY_CODES,
    TRANSFER_CATEGORY_MESSAGES,
    ClaimCreationError,
    ClaimError,
    DependencyError,
    TransferError,
    http_status_for_code,
)
from app.economy.claims.payout import PayoutExecutor
from app.economy.claims.programs import ClaimProgram
from app.economy.claims.types import (
    CLAIM_STATUS_COMPLETED,
    CLAIM_STATUS_FAILED,
    CLAIM_STATUS_PENDING,
    ClaimLedger,
    ClaimOutcome,
    ClaimRecord,
    ClaimRequest,
    EligibilityContext,
    PayoutResult,
    normalize_wallet,
)
from app.services.alerts import send_ops_alert

logger = structlog.get_logger(__name__)

CLAIM_PENDING_CODE = "CLAIM_PENDING"
FAILED_REPLAY_MESSAGES = {
    code: TRANSFER_CATEGORY_MESSAGES[category] for category, code in TRANSFER_CATEGORY_CODES.items()
}

AlertSender = Callable[..., Awaitable[bool]]
Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ClaimRun:
    """Mutable state threaded through the phases of one claim request."""

    request: ClaimRequest
    context: EligibilityContext
    claim: ClaimRecord | None = None
    payout: PayoutResult | None = None
    outcome: ClaimOutcome | None = None


PhaseFn = Callable[[ClaimRun], Awaitable[None]]
CompensateFn = Callable[[ClaimRun, ClaimError], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class ClaimPhase:
    name: str
    forward: PhaseFn
    compensate: CompensateFn | None = None


def success_outcome(claim: ClaimRecord, *, idempotent_replay: bool = False) -> ClaimOutcome:
    return ClaimOutcome(
        http_status=200,
        success=True,
        message="Reward claimed successfully.",
        claim=claim,
        idempotent_replay=idempotent_replay,
    )


def error_outcome(exc: ClaimError) -> ClaimOutcome:
    return ClaimOutcome(
        http_status=exc.http_status,
        success=False,
        code=exc.code,
        error=exc.error,
        message=exc.message,
        details=exc.details,
    )


def replay_outcome(claim: ClaimRecord) -> ClaimOutcome:
    if claim.status == CLAIM_STATUS_COMPLETED:
        return success_outcome(claim, idempotent_replay=True)
    if claim.status == CLAIM_STATUS_PENDING:
        return ClaimOutcome(
            http_status=202,
            success=False,
            code=CLAIM_PENDING_CODE,
            error="Claim in progress",
            message="This reward claim is already being processed.",
            claim=claim,
            idempotent_replay=True,
        )
    code = claim.failure_code or TRANSFER_CATEGORY_CODES["generic"]
    return ClaimOutcome(
        http_status=http_status_for_code(code),
        success=False,
        code=code,
        error="Claim failed",
        message=FAILED_REPLAY_MESSAGES.get(code, "This reward claim has already failed."),
        details={"completed_legs": len(claim.tx_hashes)} if claim.tx_hashes else None,
        claim=claim,
        idempotent_replay=True,
    )


class ClaimOrchestrator:
    """Drives one claim program through identity, eligibility, ledger and payout.

    Phases run in order and stop at the first failure. A phase may register a
    compensation that runs when a later phase fails; only the provisional
    ledger record has one, which moves the claim to `failed` together with
    any hashes the payout managed to submit. Once a transfer has gone out the
    request is reported as a success even if the final ledger write fails;
    that case is logged and alerted for manual reconciliation.
    """

    def __init__(
        self,
        *,
        program: ClaimProgram,
        config: PayoutConfig,
        verifier: EligibilityVerifier,
        ledger: ClaimLedger,
        executor: PayoutExecutor | None,
        alert_sender: AlertSender = send_ops_alert,
        clock: Clock = _utc_now,
    ) -> None:
        self._program = program
        self._config = config
        self._verifier = verifier
        self._ledger = ledger
        self._executor = executor
        self._alert_sender = alert_sender
        self._clock = clock
        self._phases: tuple[ClaimPhase, ...] = (
            ClaimPhase("resolve_identity", self._resolve_identity),
            ClaimPhase("require_funding_config", self._require_funding_config),
            ClaimPhase("resolve_subject", self._resolve_subject),
            ClaimPhase("idempotent_lookup", self._idempotent_lookup),
            ClaimPhase("verify_eligibility", self._verify_eligibility),
            ClaimPhase(
                "create_provisional",
                self._create_provisional,
                compensate=self._fail_provisional,
            ),
            ClaimPhase("execute_payout", self._execute_payout),
            ClaimPhase("finalize", self._finalize),
        )

    @property
    def claim_type(self) -> str:
        return self._program.claim_type

    @property
    def phase_names(self) -> tuple[str, ...]:
        return tuple(phase.name for phase in self._phases)

    async def handle(self, request: ClaimRequest) -> ClaimOutcome:
        run = ClaimRun(
            request=request,
            context=EligibilityContext(
                claim_type=self._program.claim_type,
                now_utc=self._clock(),
                subject_hint=request.subject_hint,
            ),
        )
        completed: list[ClaimPhase] = []
        for phase in self._phases:
            try:
                await phase.forward(run)
            except ClaimError as exc:
                return await self._abort(run, phase, completed, exc)
            except Exception as exc:
                logger.exception(
                    "claim_phase_crashed",
                    phase=phase.name,
                    claim_type=self._program.claim_type,
                    subject_id=run.context.subject_id,
                )
                return await self._abort(run, phase, completed, ClaimError())
            if run.outcome is not None:
                return run.outcome
            completed.append(phase)

        if run.claim is None:
            raise RuntimeError("claim phases finished without a claim record")
        return success_outcome(run.claim)

    async def _abort(
        self,
        run: ClaimRun,
        failed_phase: ClaimPhase,
        completed: Sequence[ClaimPhase],
        exc: ClaimError,
    ) -> ClaimOutcome:
        logger.info(
            "claim_phase_failed",
            phase=failed_phase.name,
            claim_type=self._program.claim_type,
            code=exc.code,
            wallet=run.context.wallet,
            subject_id=run.context.subject_id,
        )
        for phase in reversed(completed):
            if phase.compensate is None:
                continue
            try:
                await phase.compensate(run, exc)
            except Exception:
                logger.exception(
                    "claim_compensation_failed",
                    phase=phase.name,
                    subject_id=run.context.subject_id,
                    code=exc.code,
                )
                await self._alert(
                    "claim_compensation_failed",
                    {
                        "subject_id": run.context.subject_id,
                        "claim_type": self._program.claim_type,
                        "code": exc.code,
                    },
                )
        return error_outcome(exc)

    async def _alert(self, event: str, payload: dict[str, Any]) -> None:
        try:
            await self._alert_sender(event=event, payload=payload)
        except Exception:
            logger.exception("claim_alert_failed", alert_event=event)

    async def _resolve_identity(self, run: ClaimRun) -> None:
        run.context.wallet = await self._verifier.resolve_identity(run.request.auth_token)

    async def _require_funding_config(self, run: ClaimRun) -> None:
        if not self._config.funding_configured or self._executor is None:
            logger.error("claim_funding_not_configured", claim_type=self._program.claim_type)
            raise DependencyError

    async def _resolve_subject(self, run: ClaimRun) -> None:
        try:
            await self._program.resolve_subject(run.context)
        except ClaimError:
            raise
        except Exception as exc:
            logger.exception("claim_subject_lookup_failed", claim_type=self._program.claim_type)
            raise DependencyError from exc

    async def _idempotent_lookup(self, run: ClaimRun) -> None:
        subject_id = run.context.subject_id
        if subject_id is None:
            return
        try:
            existing = await self._ledger.find(subject_id)
        except Exception as exc:
            logger.exception("claim_ledger_lookup_failed", subject_id=subject_id)
            raise DependencyError from exc
        if existing is None:
            return
        # Other wallets fall through to eligibility and get its ownership error.
        if normalize_wallet(existing.claimant_wallet) != run.context.wallet:
            logger.info(
                "claim_replay_withheld",
                subject_id=subject_id,
                wallet=run.context.wallet,
            )
            return
        logger.info(
            "claim_idempotent_replay",
            subject_id=subject_id,
            status=existing.status,
        )
        run.outcome = replay_outcome(existing)

    async def _verify_eligibility(self, run: ClaimRun) -> None:
        await self._verifier.verify(run.context)
        if run.context.subject_id is None or not run.context.legs:
            raise RuntimeError("eligibility passed without a subject and quoted legs")

    async def _create_provisional(self, run: ClaimRun) -> None:
        context = run.context
        wallet = context.wallet
        subject_id = context.subject_id
        if wallet is None or subject_id is None:
            raise RuntimeError("provisional claim requires wallet and subject")
        try:
            claim, created = await self._ledger.create_provisional(
                subject_id=subject_id,
                claim_type=self._program.claim_type,
                claimant_wallet=wallet,
                legs=list(context.legs),
                now_utc=context.now_utc,
            )
        except Exception as exc:
            logger.exception("claim_creation_failed", subject_id=subject_id)
            raise ClaimCreationError from exc
        if not created:
            logger.info("claim_race_lost", subject_id=subject_id, status=claim.status)
            run.outcome = replay_outcome(claim)
            return
        run.claim = claim
        logger.info(
            "claim_provisional_created",
            claim_id=claim.id,
            subject_id=subject_id,
            claim_type=claim.claim_type,
            amount=format(claim.amount, "f"),
        )

    async def _fail_provisional(self, run: ClaimRun, exc: ClaimError) -> None:
        claim = run.claim
        if claim is None:
            return
        partial = exc.recorded_tx_hashes if isinstance(exc, TransferError) else []
        await self._ledger.transition(
            claim.id,
            new_status=CLAIM_STATUS_FAILED,
            tx_hashes=list(partial),
            now_utc=self._clock(),
            failure_code=exc.code,
        )
        if partial:
            logger.error(
                "claim_partial_payout",
                claim_id=claim.id,
                subject_id=claim.subject_id,
                tx_hashes=list(partial),
                code=exc.code,
            )

    async def _execute_payout(self, run: ClaimRun) -> None:
        if run.claim is None or self._executor is None:
            raise RuntimeError("payout requires a provisional claim and an executor")
        run.payout = await self._executor.execute(run.claim)

    async def _finalize(self, run: ClaimRun) -> None:
        claim = run.claim
        payout = run.payout
        if claim is None or payout is None:
            raise RuntimeError("finalize requires a claim and a payout result")
        now_utc = self._clock()
        tx_hashes = list(payout.tx_hashes)
        try:
            updated = await self._ledger.transition(
                claim.id,
                new_status=CLAIM_STATUS_COMPLETED,
                tx_hashes=tx_hashes,
                now_utc=now_utc,
            )
        except Exception:
            logger.exception(
                "claim_reconciliation_required",
                claim_id=claim.id,
                subject_id=claim.subject_id,
                tx_hashes=tx_hashes,
            )
            updated = None
        if not updated:
            if updated is False:
                logger.error(
                    "claim_reconciliation_required",
                    claim_id=claim.id,
                    subject_id=claim.subject_id,
                    tx_hashes=tx_hashes,
                    reason="transition_rejected",
                )
            await self._alert(
                "claim_reconciliation_required",
                {
                    "claim_id": claim.id,
                    "subject_id": claim.subject_id,
                    "claim_type": claim.claim_type,
                    "tx_hashes": tx_hashes,
                },
            )

        run.claim = replace(
            claim,
            status=CLAIM_STATUS_COMPLETED,
            tx_hashes=payout.tx_hashes,
            updated_at=now_utc,
        )
        logger.info(
            "claim_completed",
            claim_id=claim.id,
            subject_id=claim.subject_id,
            tx_hashes=tx_hashes,
        )

        if self._program.on_completed is not None:
            try:
                await self._program.on_completed(run.claim, now_utc)
            except Exception:
                logger.exception("claim_completion_hook_failed", subject_id=claim.subject_id)
