from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

import structlog

from app.economy.claims.errors import AuthError, ClaimError, DependencyError
from app.economy.claims.types import EligibilityContext, IdentityResolver, normalize_wallet

logger = structlog.get_logger(__name__)

CheckFn = Callable[[EligibilityContext], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class EligibilityCheck:
    name: str
    run: CheckFn


class EligibilityVerifier:
    """Runs read-only eligibility checks in a fixed priority order.

    Identity resolution is the first check and is exposed separately because
    the orchestrator needs the wallet before the idempotent lookup. The
    remaining checks come from the claim program and stop at the first
    failure, so the reported code only depends on the order below.
    """

    def __init__(
        self,
        *,
        identity_resolver: IdentityResolver,
        checks: Sequence[EligibilityCheck],
    ) -> None:
        self._identity_resolver = identity_resolver
        self._checks = tuple(checks)

    @property
    def check_names(self) -> tuple[str, ...]:
        return tuple(check.name for check in self._checks)

    async def resolve_identity(self, auth_token: str | None) -> str:
        if not auth_token or not auth_token.strip():
            raise AuthError
        try:
            wallet = await self._identity_resolver.resolve(auth_token.strip())
        except ClaimError:
            raise
        except Exception as exc:
            logger.warning("claim_identity_resolution_failed", error_type=type(exc).__name__)
            raise AuthError from exc
        if not wallet:
            raise AuthError
        return normalize_wallet(wallet)

    async def verify(self, context: EligibilityContext) -> EligibilityContext:
        if context.wallet is None:
            raise AuthError
        for check in self._checks:
            try:
                await check.run(context)
            except ClaimError as exc:
                logger.info(
                    "claim_eligibility_rejected",
                    check=check.name,
                    code=exc.code,
                    wallet=context.wallet,
                    subject_id=context.subject_id,
                )
                raise
            except Exception as exc:
                logger.exception(
                    "claim_eligibility_dependency_failed",
                    check=check.name,
                    subject_id=context.subject_id,
                )
                raise DependencyError from exc
        return context
