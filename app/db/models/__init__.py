from app.db.models.payout_claims import PayoutClaim
from app.db.models.referrals import Referral
from app.db.models.wallet_transactions import WalletTransaction

__all__ = [
    "PayoutClaim",
    "Referral",
    "WalletTransaction",
]
