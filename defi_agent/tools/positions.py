"""Direct on-chain close of a liquidity position through the position mutator."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from defi_agent.chains import find_chain_id
from defi_agent.executor import TransactionExecutor
from defi_agent.hooks import (
    HookContext,
    Tool,
    ToolArgs,
    compose_before_hooks,
    require_signer,
    require_user_address,
    with_hooks,
)
from defi_agent.position_mutator import PositionMutator
from defi_agent.tasks import Task, create_artifact, create_success_task


class ClosePositionParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token_id: int = Field(alias="tokenId", ge=0, description="Position NFT token id")
    chain: str = Field(
        default="",
        description="Chain of the position manager; defaults to the default chain",
    )


async def _close_position(args: ToolArgs, ctx: HookContext) -> Task:
    chain_id = ctx.default_chain_id
    if args.get("chain"):
        chain_id = find_chain_id(args["chain"]) or args["chain"]
    client = ctx.chains.get(chain_id)
    mutator = PositionMutator(
        TransactionExecutor(ctx.chains),
        client,
        ctx.settings.position_manager_address,
        recipient=client.address or ctx.user_address,
    )
    result = await mutator.withdraw(args["tokenId"])
    data = {
        "tokenId": str(args["tokenId"]),
        "transactions": [tx.to_wire() for tx in result.transactions],
        "burned": result.burned,
        "states": [state.value for state in result.states],
        "message": result.message,
    }
    return create_success_task(
        result.message,
        [create_artifact("position-withdrawal", data=data)],
        ctx.context_id,
    )


def close_position_tool() -> Tool:
    tool = Tool(
        name="closeLiquidityPosition",
        description=(
            "Sign and send the transactions that fully close a liquidity "
            "position: decrease liquidity, collect tokens and fees, then burn "
            "the position once it is empty."
        ),
        parameters=ClosePositionParams,
        execute=_close_position,
    )
    return with_hooks(
        tool, before=compose_before_hooks(require_user_address, require_signer)
    )


__all__ = ["ClosePositionParams", "close_position_tool"]
