from app.economy.claims import ClaimOrchestrator, ClaimProgram, PayoutExecutor

__all__ = [
    "ClaimOrchestrator",
    "ClaimProgram",
    "PayoutExecutor",
]
