"""Async chain RPC access built on web3.py.

One :class:`ChainClient` per chain wraps an ``AsyncWeb3`` provider plus the
optional signing account. :class:`ChainRegistry` hands them out by chain id
and builds them lazily from the configured RPC endpoints.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional

from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from defi_agent.abis import (
    ERC20_ABI,
    POSITION_LIQUIDITY,
    POSITION_MANAGER_ABI,
    POSITION_TOKENS_OWED0,
    POSITION_TOKENS_OWED1,
)
from defi_agent.chains import resolve_rpc_url
from defi_agent.config import Settings
from defi_agent.errors import (
    ChainNotConfiguredError,
    ConfigurationError,
    RpcUnavailableError,
)
from defi_agent.utils.logging import get_logger

logger = get_logger(__name__)

# Exceptions a provider call can surface for transport or node-side failures.
RPC_ERRORS = (Web3Exception, asyncio.TimeoutError, OSError, ValueError)


@dataclass(frozen=True)
class FeeData:
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    @property
    def is_eip1559(self) -> bool:
        return self.max_fee_per_gas is not None and self.max_priority_fee_per_gas is not None


@dataclass(frozen=True)
class PositionSnapshot:
    liquidity: int
    tokens_owed0: int
    tokens_owed1: int

    @property
    def is_empty(self) -> bool:
        return self.liquidity == 0 and self.tokens_owed0 == 0 and self.tokens_owed1 == 0

    @classmethod
    def from_positions(cls, values: Any) -> "PositionSnapshot":
        return cls(
            liquidity=int(values[POSITION_LIQUIDITY]),
            tokens_owed0=int(values[POSITION_TOKENS_OWED0]),
            tokens_owed1=int(values[POSITION_TOKENS_OWED1]),
        )


class ChainClient:
    """Reads and signed writes against a single chain."""

    def __init__(
        self,
        chain_id: str,
        rpc_url: Optional[str] = None,
        account: Optional[LocalAccount] = None,
        timeout: float = 30.0,
        receipt_timeout: float = 180.0,
        web3: Optional[AsyncWeb3] = None,
    ) -> None:
        if web3 is None and not rpc_url:
            raise ChainNotConfiguredError(chain_id)
        self.chain_id = str(chain_id)
        self.account = account
        self.timeout = timeout
        self.receipt_timeout = receipt_timeout
        self.w3 = web3 or AsyncWeb3(
            AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": timeout})
        )

    @property
    def address(self) -> Optional[str]:
        return self.account.address if self.account else None

    def _erc20(self, token: str):
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(token), abi=ERC20_ABI
        )

    async def _read(self, description: str, call) -> Any:
        try:
            return await call
        except RPC_ERRORS as exc:
            logger.warning(
                "rpc_read_failed",
                chain_id=self.chain_id,
                call=description,
                error=str(exc),
            )
            raise RpcUnavailableError(
                f"RPC call {description} failed on chain {self.chain_id}: {exc}"
            ) from exc

    async def balance_of(self, token: str, owner: str) -> int:
        contract = self._erc20(token)
        call = contract.functions.balanceOf(Web3.to_checksum_address(owner)).call()
        return int(await self._read("balanceOf", call))

    async def native_balance(self, owner: str) -> int:
        call = self.w3.eth.get_balance(Web3.to_checksum_address(owner))
        return int(await self._read("eth_getBalance", call))

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        contract = self._erc20(token)
        call = contract.functions.allowance(
            Web3.to_checksum_address(owner), Web3.to_checksum_address(spender)
        ).call()
        return int(await self._read("allowance", call))

    async def decimals(self, token: str) -> int:
        contract = self._erc20(token)
        return int(await self._read("decimals", contract.functions.decimals().call()))

    async def position(self, manager: str, token_id: int) -> PositionSnapshot:
        contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(manager), abi=POSITION_MANAGER_ABI
        )
        values = await self._read(
            "positions", contract.functions.positions(int(token_id)).call()
        )
        return PositionSnapshot.from_positions(values)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        """Raw estimate; node errors (including reverts) propagate to the caller."""
        return int(await self.w3.eth.estimate_gas(tx))

    async def fee_data(self) -> FeeData:
        """EIP-1559 fees when the latest block has a base fee, else legacy gas price."""
        block = await self._read("eth_getBlockByNumber", self.w3.eth.get_block("latest"))
        base_fee = block.get("baseFeePerGas") if block else None
        if base_fee is not None:
            priority = int(
                await self._read("eth_maxPriorityFeePerGas", self.w3.eth.max_priority_fee)
            )
            return FeeData(
                max_fee_per_gas=int(base_fee) * 2 + priority,
                max_priority_fee_per_gas=priority,
            )
        gas_price = await self._read("eth_gasPrice", self.w3.eth.gas_price)
        return FeeData(gas_price=int(gas_price))

    async def pending_nonce(self, address: str) -> int:
        call = self.w3.eth.get_transaction_count(
            Web3.to_checksum_address(address), "pending"
        )
        return int(await self._read("eth_getTransactionCount", call))

    async def send_transaction(self, tx: Dict[str, Any]) -> str:
        """Sign ``tx`` with the configured account and broadcast it."""
        if self.account is None:
            raise ConfigurationError(
                "No signer configured. Set PRIVATE_KEY to execute transactions."
            )
        signed = self.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except TimeExhausted as exc:
            raise RpcUnavailableError(
                f"No receipt for {tx_hash} after {self.receipt_timeout:g}s"
            ) from exc
        except RPC_ERRORS as exc:
            raise RpcUnavailableError(
                f"Could not fetch receipt for {tx_hash}: {exc}"
            ) from exc
        return dict(receipt)

    async def replay_call(self, tx: Dict[str, Any], block_number: Any) -> Optional[str]:
        """Re-run a mined transaction with ``eth_call`` to recover its revert data.

        Returns the provider's error text (including any revert data), or
        ``None`` if the call unexpectedly succeeds.
        """
        call = {k: tx[k] for k in ("from", "to", "data", "value") if k in tx}
        try:
            await self.w3.eth.call(call, block_identifier=block_number)
        except ContractLogicError as exc:
            data = exc.data if isinstance(exc.data, str) else None
            return data or exc.message or str(exc)
        except RPC_ERRORS as exc:
            return str(exc)
        return None


class ChainRegistry:
    """Chain clients keyed by chain id, created on first use."""

    def __init__(
        self,
        rpc_urls: Optional[Dict[str, str]] = None,
        account: Optional[LocalAccount] = None,
        quicknode_subdomain: Optional[str] = None,
        quicknode_api_key: Optional[str] = None,
        timeout: float = 30.0,
        receipt_timeout: float = 180.0,
    ) -> None:
        self._rpc_urls = dict(rpc_urls or {})
        self.account = account
        self._quicknode_subdomain = quicknode_subdomain
        self._quicknode_api_key = quicknode_api_key
        self._timeout = timeout
        self._receipt_timeout = receipt_timeout
        self._clients: Dict[str, ChainClient] = {}

    @classmethod
    def from_settings(
        cls, settings: Settings, account: Optional[LocalAccount] = None
    ) -> "ChainRegistry":
        return cls(
            rpc_urls=settings.chain_rpc_urls,
            account=account,
            quicknode_subdomain=settings.quicknode_subdomain,
            quicknode_api_key=settings.quicknode_api_key,
            timeout=settings.rpc_timeout_seconds,
            receipt_timeout=settings.receipt_timeout_seconds,
        )

    def register(self, client: ChainClient) -> None:
        self._clients[client.chain_id] = client

    def get(self, chain_id: str) -> ChainClient:
        chain_id = str(chain_id)
        client = self._clients.get(chain_id)
        if client is not None:
            return client
        url = resolve_rpc_url(
            chain_id,
            self._rpc_urls,
            self._quicknode_subdomain,
            self._quicknode_api_key,
        )
        if not url:
            raise ChainNotConfiguredError(chain_id)
        client = ChainClient(
            chain_id,
            url,
            account=self.account,
            timeout=self._timeout,
            receipt_timeout=self._receipt_timeout,
        )
        self._clients[chain_id] = client
        logger.info("chain_client_created", chain_id=chain_id)
        return client


__all__ = [
    "ChainClient",
    "ChainRegistry",
    "FeeData",
    "PositionSnapshot",
    "RPC_ERRORS",
]
