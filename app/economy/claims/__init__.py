from app.economy.claims.eligibility import EligibilityCheck, EligibilityVerifier
from app.economy.claims.errors import ClaimError
from app.economy.claims.orchestrator import ClaimOrchestrator
from app.economy.claims.payout import PayoutExecutor
from app.economy.claims.programs import (
    ClaimProgram,
    build_cashback_program,
    build_referral_program,
)

__all__ = [
    "ClaimError",
    "ClaimOrchestrator",
    "ClaimProgram",
    "EligibilityCheck",
    "EligibilityVerifier",
    "PayoutExecutor",
    "build_cashback_program",
    "build_referral_program",
]
