"""Tests for approval injection in transaction plans."""

import pytest
from conftest import ETH_ARB, ROUTER, USDC_ARB, USER, FakeChainClient, tx_entry

from defi_agent.abis import APPROVE_SELECTOR
from defi_agent.errors import EmptyTransactionPlanError
from defi_agent.plan_builder import build_transaction_plan, is_native_token
from defi_agent.schemas import TransactionPlanEntry

AMOUNT = 100 * 10**6


def _plan(*entries):
    return [TransactionPlanEntry.model_validate(e) for e in entries or [tx_entry()]]


@pytest.mark.asyncio
async def test_sufficient_allowance_keeps_plan():
    client = FakeChainClient(allowances={USDC_ARB.address: AMOUNT})
    plan = _plan()
    result = await build_transaction_plan(plan, USDC_ARB, AMOUNT, USER, client)
    assert result == plan
    assert client.calls == [("allowance", USDC_ARB.address, USER, ROUTER)]


@pytest.mark.asyncio
async def test_insufficient_allowance_prepends_approval():
    """Approval targets the token and approves the first transaction's target."""
    client = FakeChainClient(allowances={USDC_ARB.address: 50 * 10**6})
    plan = _plan(tx_entry(), tx_entry(data="0x1234"))
    result = await build_transaction_plan(plan, USDC_ARB, AMOUNT, USER, client)

    assert len(result) == 3
    approval = result[0]
    assert approval.to == USDC_ARB.address
    assert approval.chain_id == "42161"
    assert approval.value == "0"
    assert approval.data.startswith("0x" + APPROVE_SELECTOR.hex())
    assert ROUTER[2:].lower() in approval.data.lower()
    assert result[1:] == plan


@pytest.mark.asyncio
async def test_failed_allowance_read_requires_approval():
    client = FakeChainClient(fail_reads=True)
    result = await build_transaction_plan(_plan(), USDC_ARB, AMOUNT, USER, client)
    assert len(result) == 2


@pytest.mark.asyncio
async def test_native_token_needs_no_approval():
    client = FakeChainClient()
    result = await build_transaction_plan(_plan(), ETH_ARB, 10**18, USER, client)
    assert len(result) == 1
    assert client.calls == []


@pytest.mark.asyncio
async def test_missing_owner_skips_check():
    client = FakeChainClient()
    result = await build_transaction_plan(_plan(), USDC_ARB, AMOUNT, None, client)
    assert len(result) == 1
    assert client.calls == []


@pytest.mark.asyncio
async def test_empty_plan_is_rejected():
    with pytest.raises(EmptyTransactionPlanError):
        await build_transaction_plan([], USDC_ARB, AMOUNT, USER, FakeChainClient())


def test_native_token_addresses():
    assert is_native_token("0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE")
    assert is_native_token("0x0000000000000000000000000000000000000000")
    assert not is_native_token(USDC_ARB.address)
