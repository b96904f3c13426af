from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

import structlog
from redis.asyncio import Redis

from app.core.config import Settings, get_settings
from app.db.session import SessionLocal
from app.economy.claims.config import PayoutConfig, build_payout_config
from app.economy.claims.errors import PayoutConfigError
from app.economy.claims.eligibility import EligibilityVerifier
from app.economy.claims.ledger import SqlClaimLedger
from app.economy.claims.orchestrator import ClaimOrchestrator
from app.economy.claims.payout import PayoutExecutor
from app.economy.claims.programs import (
    ClaimProgram,
    build_cashback_program,
    build_referral_program,
)
from app.economy.claims.writer_lock import (
    LocalPayoutWriterLock,
    PayoutWriterLock,
    RedisPayoutWriterLock,
)
from app.integrations.identity import HttpIdentityResolver
from app.integrations.kyc import AggregatorKycProvider
from app.integrations.stores import SqlReferralStore, SqlTransactionStore
from app.integrations.transfer_client import Web3TransferClient

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ClaimServices:
    config: PayoutConfig
    ledger: SqlClaimLedger
    orchestrators: dict[str, ClaimOrchestrator]

    def orchestrator_for(self, claim_type: str) -> ClaimOrchestrator:
        return self.orchestrators[claim_type]


def build_writer_lock(settings: Settings, config: PayoutConfig) -> PayoutWriterLock:
    backend = settings.payout_lock_backend.strip().lower()
    if backend == "local":
        return LocalPayoutWriterLock(acquire_timeout_seconds=config.payout_lock_timeout_seconds)
    if backend != "redis":
        raise PayoutConfigError(f"unknown payout lock backend: {settings.payout_lock_backend}")
    return RedisPayoutWriterLock(
        Redis.from_url(settings.redis_url),
        acquire_timeout_seconds=config.payout_lock_timeout_seconds,
        hold_ttl_seconds=(
            config.payout_lock_timeout_seconds + config.transfer_receipt_timeout_seconds * 2
        ),
    )


def build_payout_executor(settings: Settings, config: PayoutConfig) -> PayoutExecutor | None:
    if not config.funding_configured:
        logger.warning("claim_funding_wallet_missing")
        return None
    transfer_client = Web3TransferClient(
        rpc_url=config.rpc_url,
        private_key=config.funding_wallet_key,
        token_address=config.token_address,
        token_symbol=config.token_symbol,
        token_decimals=config.token_decimals,
        chain_id=config.chain_id,
        receipt_timeout_seconds=config.transfer_receipt_timeout_seconds,
    )
    if transfer_client.funding_address != config.funding_wallet_address:
        raise PayoutConfigError("FUNDING_WALLET_ADDRESS does not match FUNDING_WALLET_KEY")
    return PayoutExecutor(
        transfer_client=transfer_client,
        writer_lock=build_writer_lock(settings, config),
    )


def build_claim_services(settings: Settings) -> ClaimServices:
    config = build_payout_config(settings)
    ledger = SqlClaimLedger(SessionLocal)
    transactions = SqlTransactionStore(SessionLocal)
    referrals = SqlReferralStore(SessionLocal)
    kyc_provider = AggregatorKycProvider(
        base_url=settings.aggregator_url,
        timeout_seconds=settings.collaborator_timeout_seconds,
    )
    identity_resolver = HttpIdentityResolver(
        base_url=settings.identity_service_url,
        timeout_seconds=settings.collaborator_timeout_seconds,
    )
    executor = build_payout_executor(settings, config)

    programs: tuple[ClaimProgram, ...] = (
        build_cashback_program(
            config,
            ledger=ledger,
            kyc_provider=kyc_provider,
            transactions=transactions,
        ),
        build_referral_program(
            config,
            ledger=ledger,
            kyc_provider=kyc_provider,
            transactions=transactions,
            referrals=referrals,
        ),
    )
    orchestrators = {
        program.claim_type: ClaimOrchestrator(
            program=program,
            config=config,
            verifier=EligibilityVerifier(
                identity_resolver=identity_resolver,
                checks=program.checks,
            ),
            ledger=ledger,
            executor=executor,
        )
        for program in programs
    }
    logger.info(
        "claim_services_ready",
        programs=sorted(orchestrators),
        funding_configured=config.funding_configured,
        lock_backend=settings.payout_lock_backend,
    )
    return ClaimServices(config=config, ledger=ledger, orchestrators=orchestrators)


@lru_cache(maxsize=1)
def get_claim_services() -> ClaimServices:
    return build_claim_services(get_settings())
