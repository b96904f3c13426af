from __future__ import annotations

import httpx
import structlog

from app.economy.claims.errors import DependencyError
from app.economy.claims.types import KycStatus

logger = structlog.get_logger(__name__)
KYC_VERIFIED_STATUS = "verified"


class AggregatorKycProvider:
    def __init__(self, *, base_url: str, timeout_seconds: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    async def get_status(self, wallet_address: str) -> KycStatus:
        if not self._base_url:
            logger.error("kyc_provider_not_configured")
            raise DependencyError

        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.get(f"{self._base_url}/kyc/{wallet_address}")
        except httpx.HTTPError as exc:
            logger.warning("kyc_provider_unreachable", error_type=type(exc).__name__)
            raise DependencyError from exc

        # Unknown wallets come back as 404 and count as unverified.
        if response.status_code == 404:
            return KycStatus(verified=False)
        if response.status_code >= 400:
            logger.warning("kyc_provider_error", status_code=response.status_code)
            raise DependencyError

        payload = response.json()
        data = payload.get("data") if isinstance(payload, dict) else None
        status = data.get("status") if isinstance(data, dict) else None
        return KycStatus(verified=status == KYC_VERIFIED_STATUS)
