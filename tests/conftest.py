"""Shared fakes: an in-memory capability server and chain client."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from defi_agent.chain_client import ChainRegistry, FeeData, PositionSnapshot
from defi_agent.config import Settings
from defi_agent.errors import RpcUnavailableError
from defi_agent.hooks import HookContext
from defi_agent.mcp_client import CapabilityClient
from defi_agent.tokens import TokenInfo, build_token_map

USER = "0x1111111111111111111111111111111111111111"
ROUTER = "0x2222222222222222222222222222222222222222"
POOL = "0x3333333333333333333333333333333333333333"

USDC_ARB = TokenInfo("42161", "0xaf88d065e77c8cC2239327C5EDb3A432268e5831", 6, "USDC", "USD Coin")
USDC_BASE = TokenInfo("8453", "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", 6, "USDC", "USD Coin")
WETH_ARB = TokenInfo("42161", "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1", 18, "WETH", "Wrapped Ether")
WETH_BASE = TokenInfo("8453", "0x4200000000000000000000000000000000000006", 18, "WETH", "Wrapped Ether")
ETH_ARB = TokenInfo("42161", "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE", 18, "ETH", "Ether")
ARB_ARB = TokenInfo("42161", "0x912CE59144191C1204E64559FE8253a0e49E6548", 18, "ARB", "Arbitrum")
WSTETH_ETH = TokenInfo("1", "0x7f39C581F595B53c5cb19bD0b3f8dA6c935E2Ca0", 18, "WSTETH", "Wrapped stETH")

ALL_TOKENS = [USDC_ARB, USDC_BASE, WETH_ARB, WETH_BASE, ETH_ARB, ARB_ARB, WSTETH_ETH]


class FakeCapabilityClient(CapabilityClient):
    """Answers tool calls from a ``{method: response}`` table.

    A response may be a payload, an exception to raise, or a callable taking
    the request params.
    """

    name = "fake"

    def __init__(self, responses: Optional[Dict[str, Any]] = None) -> None:
        self.responses = dict(responses or {})
        self.calls: List[tuple] = []
        self.started = False

    @property
    def tools(self) -> List[Dict[str, Any]]:
        return [{"name": name} for name in self.responses]

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def call_tool(self, method: str, params: Dict[str, Any]) -> Any:
        self.calls.append((method, params))
        response = self.responses[method]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(params)
        return response


class FakeChainClient:
    """Chain reads and writes backed by dictionaries."""

    def __init__(
        self,
        chain_id: str = "42161",
        balances: Optional[Dict[str, int]] = None,
        allowances: Optional[Dict[str, int]] = None,
        native: int = 0,
        address: Optional[str] = None,
        fail_reads: bool = False,
    ) -> None:
        self.chain_id = chain_id
        self.balances = {k.lower(): v for k, v in (balances or {}).items()}
        self.allowances = {k.lower(): v for k, v in (allowances or {}).items()}
        self.native = native
        self.address = address
        self.fail_reads = fail_reads
        self.decimals_by_token: Dict[str, int] = {}
        self.positions: List[PositionSnapshot] = []
        self.calls: List[tuple] = []

    def _check(self) -> None:
        if self.fail_reads:
            raise RpcUnavailableError("connection refused")

    async def balance_of(self, token: str, owner: str) -> int:
        self.calls.append(("balanceOf", token, owner))
        self._check()
        return self.balances.get(token.lower(), 0)

    async def native_balance(self, owner: str) -> int:
        self.calls.append(("getBalance", owner))
        self._check()
        return self.native

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        self.calls.append(("allowance", token, owner, spender))
        self._check()
        return self.allowances.get(token.lower(), 0)

    async def decimals(self, token: str) -> int:
        self.calls.append(("decimals", token))
        self._check()
        return self.decimals_by_token.get(token.lower(), 18)

    async def position(self, manager: str, token_id: int) -> PositionSnapshot:
        self.calls.append(("positions", manager, token_id))
        if len(self.positions) > 1:
            return self.positions.pop(0)
        return self.positions[0]

    async def fee_data(self) -> FeeData:
        return FeeData(max_fee_per_gas=200, max_priority_fee_per_gas=10)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, DEFAULT_CHAIN_ID="42161")


@pytest.fixture
def token_map():
    return build_token_map(ALL_TOKENS)


@pytest.fixture
def chain_client() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture
def capability_client() -> FakeCapabilityClient:
    return FakeCapabilityClient()


@pytest.fixture
def ctx(token_map, capability_client, chain_client, settings) -> HookContext:
    registry = ChainRegistry()
    registry.register(chain_client)
    return HookContext(
        token_map=token_map,
        capability_client=capability_client,
        chains=registry,
        settings=settings,
        user_address=USER,
        context_id="ctx-test",
    )


def tx_entry(to: str = ROUTER, data: str = "0xabcdef", chain_id: str = "42161") -> Dict[str, str]:
    return {"to": to, "data": data, "value": "0", "chainId": chain_id}
