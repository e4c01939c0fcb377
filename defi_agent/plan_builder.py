"""Assemble ordered transaction plans, prepending ERC-20 approvals when needed."""

from __future__ import annotations

from typing import List, Optional, Sequence

from defi_agent.abis import encode_approve
from defi_agent.chain_client import ChainClient
from defi_agent.errors import EmptyTransactionPlanError, RpcUnavailableError
from defi_agent.schemas import TransactionPlanEntry
from defi_agent.tokens import TokenInfo
from defi_agent.utils.logging import get_logger
from defi_agent.utils.units import MAX_UINT256

logger = get_logger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
NATIVE_TOKEN_ADDRESS = "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee"


def is_native_token(address: str) -> bool:
    return (address or "").lower() in (ZERO_ADDRESS, NATIVE_TOKEN_ADDRESS)


def build_approval_entry(
    token: TokenInfo, spender: str, amount: int = MAX_UINT256
) -> TransactionPlanEntry:
    return TransactionPlanEntry(
        to=token.address,
        data=encode_approve(spender, amount),
        value="0",
        chain_id=token.chain_id,
    )


async def needs_approval(
    chain_client: ChainClient,
    token: TokenInfo,
    owner: str,
    spender: str,
    required: int,
) -> bool:
    """Compare the live allowance with ``required``.

    A failed allowance read counts as insufficient.
    """
    try:
        allowance = await chain_client.allowance(token.address, owner, spender)
    except (RpcUnavailableError, ValueError) as exc:
        logger.warning(
            "allowance_check_failed",
            token=token.symbol,
            chain_id=token.chain_id,
            spender=spender,
            error=str(exc),
        )
        return True
    logger.debug(
        "allowance_checked",
        token=token.symbol,
        allowance=str(allowance),
        required=str(required),
    )
    return allowance < required


async def build_transaction_plan(
    transactions: Sequence[TransactionPlanEntry],
    token: Optional[TokenInfo],
    atomic_amount: Optional[int],
    owner: Optional[str],
    chain_client: Optional[ChainClient],
) -> List[TransactionPlanEntry]:
    """Return ``transactions`` with an approval in front when one is required.

    The spender is the target of the first server transaction. Without a
    token, amount, owner or chain client there is nothing to check and the
    server plan is returned as-is.
    """
    if not transactions:
        raise EmptyTransactionPlanError()

    plan = list(transactions)
    if (
        token is None
        or atomic_amount is None
        or not owner
        or chain_client is None
        or is_native_token(token.address)
    ):
        return plan

    spender = plan[0].to
    if await needs_approval(chain_client, token, owner, spender, atomic_amount):
        logger.info(
            "approval_injected",
            token=token.symbol,
            chain_id=token.chain_id,
            spender=spender,
        )
        plan.insert(0, build_approval_entry(token, spender))
    return plan


__all__ = [
    "NATIVE_TOKEN_ADDRESS",
    "ZERO_ADDRESS",
    "build_approval_entry",
    "build_transaction_plan",
    "is_native_token",
    "needs_approval",
]
