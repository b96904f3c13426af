from app.workers.tasks.claims_reliability import run_claims_reconciliation

__all__ = ["run_claims_reconciliation"]
