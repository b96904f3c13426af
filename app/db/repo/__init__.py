from app.db.repo.payout_claims_repo import PayoutClaimsRepo
from app.db.repo.referrals_repo import ReferralsRepo
from app.db.repo.wallet_transactions_repo import WalletTransactionsRepo

__all__ = [
    "PayoutClaimsRepo",
    "ReferralsRepo",
    "WalletTransactionsRepo",
]
