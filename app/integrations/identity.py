from __future__ import annotations

import httpx
import structlog

from app.economy.claims.errors import AuthError, DependencyError
from app.economy.claims.types import normalize_wallet

logger = structlog.get_logger(__name__)


class HttpIdentityResolver:
    """Exchanges a bearer token for the caller's wallet address.

    The identity service answers `GET {base_url}/session` with
    `{"walletAddress": "0x..."}` for a valid token and 401/403 otherwise.
    """

    def __init__(self, *, base_url: str, timeout_seconds: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    async def resolve(self, auth_token: str) -> str:
        if not self._base_url:
            logger.error("identity_service_not_configured")
            raise DependencyError

        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.get(
                    f"{self._base_url}/session",
                    headers={"Authorization": f"Bearer {auth_token}"},
                )
        except httpx.HTTPError as exc:
            logger.warning("identity_service_unreachable", error_type=type(exc).__name__)
            raise DependencyError from exc

        if response.status_code in (401, 403, 404):
            raise AuthError
        if response.status_code >= 400:
            logger.warning("identity_service_error", status_code=response.status_code)
            raise DependencyError

        payload = response.json()
        wallet = payload.get("walletAddress") if isinstance(payload, dict) else None
        if not isinstance(wallet, str) or not wallet.strip():
            raise AuthError
        return normalize_wallet(wallet)
