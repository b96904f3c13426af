from __future__ import annotations

from decimal import Decimal
from typing import Any

import structlog
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3

from app.economy.claims.errors import TransferUnconfirmedError

logger = structlog.get_logger(__name__)

ERC20_ABI: list[dict[str, Any]] = [
    {
        "constant": False,
        "inputs": [
            {"name": "_to", "type": "address"},
            {"name": "_value", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
]
GAS_LIMIT_MULTIPLIER = Decimal("1.2")


class TransferRevertedError(RuntimeError):
    pass


def to_base_units(amount: Decimal, decimals: int) -> int:
    return int(amount.scaleb(decimals).to_integral_value())


def from_base_units(raw: int, decimals: int) -> Decimal:
    return Decimal(raw).scaleb(-decimals)


class Web3TransferClient:
    """Sends ERC-20 transfers from the funding wallet and waits for receipts.

    Only the configured token is supported; the signing key stays inside the
    eth-account `LocalAccount` and never reaches logs.
    """

    def __init__(
        self,
        *,
        rpc_url: str,
        private_key: str,
        token_address: str,
        token_symbol: str,
        token_decimals: int,
        chain_id: int,
        receipt_timeout_seconds: float = 180.0,
        receipt_poll_seconds: float = 2.0,
        w3: AsyncWeb3 | None = None,
    ) -> None:
        self._w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": 60}))
        self._account = Account.from_key(private_key)
        self._token = self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(token_address),
            abi=ERC20_ABI,
        )
        self._token_symbol = token_symbol.upper()
        self._token_decimals = token_decimals
        self._chain_id = chain_id
        self._receipt_timeout_seconds = receipt_timeout_seconds
        self._receipt_poll_seconds = receipt_poll_seconds

    @property
    def funding_address(self) -> str:
        return self._account.address.lower()

    def _require_token(self, token_symbol: str) -> None:
        if token_symbol.upper() != self._token_symbol:
            raise ValueError(f"unsupported payout token: {token_symbol}")

    async def balance_of(self, token_symbol: str) -> Decimal:
        self._require_token(token_symbol)
        raw = await self._token.functions.balanceOf(self._account.address).call()
        return from_base_units(int(raw), self._token_decimals)

    async def transfer(self, *, token_symbol: str, recipient: str, amount: Decimal) -> str:
        self._require_token(token_symbol)
        to_address = AsyncWeb3.to_checksum_address(recipient)
        amount_units = to_base_units(amount, self._token_decimals)
        transfer_call = self._token.functions.transfer(to_address, amount_units)

        nonce = await self._w3.eth.get_transaction_count(self._account.address, "pending")
        estimated_gas = await transfer_call.estimate_gas({"from": self._account.address})
        gas_limit = int(Decimal(estimated_gas) * GAS_LIMIT_MULTIPLIER)
        tx = await transfer_call.build_transaction(
            {
                "from": self._account.address,
                "nonce": nonce,
                "gas": gas_limit,
                "chainId": self._chain_id,
            }
        )

        signed = self._account.sign_transaction(tx)
        tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hash_hex = AsyncWeb3.to_hex(tx_hash)
        logger.info(
            "transfer_submitted",
            tx_hash=tx_hash_hex,
            recipient=to_address,
            amount_units=amount_units,
            nonce=nonce,
        )

        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self._receipt_timeout_seconds,
                poll_latency=self._receipt_poll_seconds,
            )
        except Exception as exc:
            logger.warning(
                "transfer_receipt_unavailable",
                tx_hash=tx_hash_hex,
                error_type=type(exc).__name__,
            )
            raise TransferUnconfirmedError(tx_hash_hex) from exc
        if receipt["status"] != 1:
            raise TransferRevertedError(f"transfer reverted on-chain: {tx_hash_hex}")
        return tx_hash_hex
