"""Tests for the lending, liquidity and position tools."""

from types import SimpleNamespace

import pytest
from conftest import POOL, USDC_ARB, USER, WETH_ARB, tx_entry

from defi_agent.errors import TransactionFailedError, UnsupportedOperation
from defi_agent.executor import ExecutedTransaction
from defi_agent.position_mutator import CLOSED, PositionState, WithdrawalResult
from defi_agent.tasks import EXECUTED_TRANSACTIONS_ARTIFACT, TaskState
from defi_agent.tools import build_tools
from defi_agent.tools import positions as positions_module
from defi_agent.tools.lending import lending_tool, wallet_positions_tool
from defi_agent.tools.liquidity import (
    liquidity_tools,
    supply_liquidity_tool,
    withdraw_liquidity_tool,
)
from defi_agent.tools.positions import close_position_tool

PLAN = {"transactions": [tx_entry()], "chainId": "42161"}

POOLS = {
    "liquidityPools": [
        {
            "token0": {"chainId": "42161", "address": WETH_ARB.address},
            "token1": {"chainId": "42161", "address": USDC_ARB.address},
            "symbol0": "WETH",
            "symbol1": "USDC",
            "price": "3000",
            "providerId": "camelot",
        }
    ]
}


def _position(token_id: str, symbol0: str = "WETH", symbol1: str = "USDC"):
    return {
        "tokenId": token_id,
        "poolAddress": POOL,
        "token0": {"chainId": "42161", "address": WETH_ARB.address},
        "token1": {"chainId": "42161", "address": USDC_ARB.address},
        "symbol0": symbol0,
        "symbol1": symbol1,
        "amount0": "0.5",
        "amount1": "1500",
        "providerId": "camelot",
    }


POSITIONS = {"positions": [_position("11"), _position("42")]}


class TestLendingTools:
    @pytest.mark.asyncio
    async def test_supply_request_and_plan(self, ctx, chain_client, capability_client):
        chain_client.balances[USDC_ARB.address.lower()] = 200_000_000
        chain_client.allowances[USDC_ARB.address.lower()] = 10**30
        capability_client.responses["supply"] = PLAN

        result = await lending_tool("supply").run(
            {"tokenName": "usdc", "amount": "100", "chain": "arbitrum"}, ctx
        )

        assert result.state is TaskState.COMPLETED
        assert result.text == "Supply transaction plan created for 100 USDC. Ready to sign."
        assert capability_client.calls == [
            (
                "supply",
                {
                    "tokenUid": {"chainId": "42161", "address": USDC_ARB.address},
                    "amount": "100",
                    "walletAddress": USER,
                },
            )
        ]
        data = result.artifacts[0].parts[0].data
        assert len(data["txPlan"]) == 1
        assert data["txPreview"]["action"] == "supply"

    @pytest.mark.asyncio
    async def test_borrow_skips_balance_and_approval(self, ctx, chain_client, capability_client):
        capability_client.responses["borrow"] = {
            **PLAN,
            "currentBorrowApy": "4.2",
            "liquidationThreshold": "0.83",
        }
        result = await lending_tool("borrow").run(
            {"tokenName": "USDC", "amount": "100", "chain": "arbitrum"}, ctx
        )
        assert result.state is TaskState.COMPLETED
        data = result.artifacts[0].parts[0].data
        assert len(data["txPlan"]) == 1
        assert data["txPreview"]["currentBorrowApy"] == "4.2"
        assert chain_client.calls == []

    @pytest.mark.asyncio
    async def test_ambiguous_token_requires_input(self, ctx, capability_client):
        result = await lending_tool("withdraw").run(
            {"tokenName": "USDC", "amount": "1"}, ctx
        )
        assert result.state is TaskState.INPUT_REQUIRED
        assert capability_client.calls == []

    def test_unknown_action(self):
        with pytest.raises(UnsupportedOperation):
            lending_tool("stake")

    @pytest.mark.asyncio
    async def test_wallet_positions(self, ctx, capability_client):
        capability_client.responses["getWalletPositions"] = {
            "positions": [
                {
                    "lendingPosition": {
                        "totalCollateralUsd": "1000",
                        "totalBorrowsUsd": "200",
                        "healthFactor": "3.1",
                    }
                }
            ]
        }
        result = await wallet_positions_tool().run({}, ctx)
        assert result.text.splitlines() == [
            "Found 1 lending position(s):",
            "- Collateral: 1000 | Borrowed: 200 | Health factor: 3.1",
        ]


class TestSupplyLiquidity:
    def _fund(self, chain_client):
        chain_client.balances[WETH_ARB.address.lower()] = 10**18
        chain_client.balances[USDC_ARB.address.lower()] = 2_000 * 10**6

    @pytest.mark.asyncio
    async def test_full_range_by_default(self, ctx, chain_client, capability_client):
        self._fund(chain_client)
        capability_client.responses.update(
            {"getLiquidityPools": POOLS, "supplyLiquidity": PLAN}
        )

        result = await supply_liquidity_tool().run(
            {"pair": "weth/usdc", "amount0": "0.5", "amount1": "1500"}, ctx
        )

        assert result.state is TaskState.COMPLETED
        assert result.text == (
            "Transaction plan created to supply liquidity to WETH/USDC. Ready to sign."
        )
        method, request = capability_client.calls[-1]
        assert method == "supplyLiquidity"
        assert request["fullRange"] is True
        assert "limitedRange" not in request
        assert request["supplierAddress"] == USER
        assert request["token0"] == {"chainId": "42161", "address": WETH_ARB.address}
        assert len(result.artifacts[0].parts[0].data["txPlan"]) == 1

    @pytest.mark.asyncio
    async def test_price_bounds_make_limited_range(self, ctx, chain_client, capability_client):
        self._fund(chain_client)
        capability_client.responses.update(
            {"getLiquidityPools": POOLS, "supplyLiquidity": PLAN}
        )
        await supply_liquidity_tool().run(
            {
                "pair": "WETH/USDC",
                "amount0": "0.5",
                "amount1": "1500",
                "priceFrom": "2800",
                "priceTo": "3200",
            },
            ctx,
        )
        _, request = capability_client.calls[-1]
        assert request["limitedRange"] == {"minPrice": "2800", "maxPrice": "3200"}
        assert "fullRange" not in request

    @pytest.mark.asyncio
    async def test_unknown_pair(self, ctx, capability_client):
        capability_client.responses["getLiquidityPools"] = POOLS
        result = await supply_liquidity_tool().run(
            {"pair": "FOO/BAR", "amount0": "1", "amount1": "1"}, ctx
        )
        assert result.state is TaskState.FAILED
        assert result.text == 'Liquidity pair handle "FOO/BAR" not found or not supported.'

    @pytest.mark.asyncio
    async def test_checks_second_token_balance(self, ctx, chain_client, capability_client):
        chain_client.balances[WETH_ARB.address.lower()] = 10**18
        capability_client.responses["getLiquidityPools"] = POOLS
        result = await supply_liquidity_tool().run(
            {"pair": "WETH/USDC", "amount0": "0.5", "amount1": "1500"}, ctx
        )
        assert result.text == "Insufficient USDC balance. You need 1500 but only have 0."
        assert [c[0] for c in capability_client.calls] == ["getLiquidityPools"]


class TestWithdrawLiquidity:
    @pytest.mark.asyncio
    async def test_selects_position_by_number(self, ctx, capability_client):
        capability_client.responses.update(
            {"getWalletLiquidityPositions": POSITIONS, "withdrawLiquidity": PLAN}
        )
        result = await withdraw_liquidity_tool().run({"positionNumber": 2}, ctx)

        assert result.state is TaskState.COMPLETED
        assert capability_client.calls[-1] == (
            "withdrawLiquidity",
            {"tokenId": "42", "providerId": "camelot", "supplierAddress": USER},
        )
        preview = result.artifacts[0].parts[0].data["txPreview"]
        assert preview["tokenId"] == "42"

    @pytest.mark.asyncio
    async def test_out_of_range(self, ctx, capability_client):
        capability_client.responses["getWalletLiquidityPositions"] = POSITIONS
        result = await withdraw_liquidity_tool().run({"positionNumber": 3}, ctx)
        assert result.text == "Position 3 not found. You have 2 liquidity position(s)."

    @pytest.mark.asyncio
    async def test_position_numbers_start_at_one(self, ctx, capability_client):
        result = await withdraw_liquidity_tool().run({"positionNumber": 0}, ctx)
        assert result.text.startswith("Invalid arguments for withdrawLiquidity:")
        assert capability_client.calls == []


class TestListings:
    @pytest.mark.asyncio
    async def test_pools(self, ctx, capability_client):
        capability_client.responses["getLiquidityPools"] = POOLS
        tools = {tool.name: tool for tool in liquidity_tools()}
        result = await tools["getLiquidityPools"].run({}, ctx)
        assert result.text == (
            "Available Liquidity Pools:\n- WETH/USDC on Arbitrum (Price: 3000)"
        )
        assert result.artifacts[0].name == "available-liquidity-pools"

    @pytest.mark.asyncio
    async def test_positions(self, ctx, capability_client):
        capability_client.responses["getWalletLiquidityPositions"] = POSITIONS
        tools = {tool.name: tool for tool in liquidity_tools()}
        result = await tools["getWalletLiquidityPositions"].run({}, ctx)
        lines = result.text.splitlines()
        assert lines[0] == "Your Liquidity Positions:"
        assert "2: WETH/USDC (token id 42)" in lines


class TestClosePosition:
    @pytest.mark.asyncio
    async def test_requires_signer(self, ctx):
        result = await close_position_tool().run({"tokenId": 7}, ctx)
        assert result.state is TaskState.FAILED
        assert "PRIVATE_KEY" in result.text

    @pytest.mark.asyncio
    async def test_reports_withdrawal(self, ctx, chain_client, monkeypatch):
        ctx.chains.account = SimpleNamespace(address=USER)
        calls = {}

        class StubMutator:
            def __init__(self, executor, client, manager, recipient):
                calls["manager"] = manager
                calls["recipient"] = recipient
                calls["client"] = client

            async def withdraw(self, token_id):
                calls["token_id"] = token_id
                return WithdrawalResult(
                    transactions=[ExecutedTransaction("0xabc", "42161", 10, 21000)],
                    burned=True,
                    message=CLOSED,
                    states=[PositionState.BURNABLE, PositionState.DONE],
                )

        monkeypatch.setattr(positions_module, "PositionMutator", StubMutator)
        result = await close_position_tool().run({"tokenId": 7, "chain": "arbitrum"}, ctx)

        assert result.state is TaskState.COMPLETED
        assert result.text == CLOSED
        assert calls["token_id"] == 7
        assert calls["client"] is chain_client
        assert calls["manager"] == ctx.settings.position_manager_address
        assert calls["recipient"] == USER
        data = result.artifacts[0].parts[0].data
        assert data["burned"] is True
        assert data["states"] == ["BURNABLE", "DONE"]
        assert data["transactions"][0]["explorerUrl"] == "https://arbiscan.io/tx/0xabc"

    @pytest.mark.asyncio
    async def test_failed_collect_reports_confirmed_decrease(self, ctx, monkeypatch):
        ctx.chains.account = SimpleNamespace(address=USER)
        error = TransactionFailedError("STF", "0xcollect")
        error.executed = [ExecutedTransaction("0xdecrease", "42161", 5, 100)]

        class StubMutator:
            def __init__(self, executor, client, manager, recipient):
                pass

            async def withdraw(self, token_id):
                raise error

        monkeypatch.setattr(positions_module, "PositionMutator", StubMutator)
        result = await close_position_tool().run({"tokenId": 7}, ctx)

        assert result.state is TaskState.FAILED
        assert result.text.startswith("Transaction 0xcollect reverted: STF")
        assert "- 0xdecrease (https://arbiscan.io/tx/0xdecrease)" in result.text
        artifact = result.artifacts[0]
        assert artifact.name == EXECUTED_TRANSACTIONS_ARTIFACT
        assert artifact.parts[0].data["transactions"][0]["hash"] == "0xdecrease"


def test_signing_tools_are_optional():
    names = [tool.name for tool in build_tools(include_signing=False)]
    assert "closeLiquidityPosition" not in names
    assert {"swapTokens", "supply", "borrow", "supplyLiquidity"} <= set(names)
    assert "closeLiquidityPosition" in [tool.name for tool in build_tools()]
