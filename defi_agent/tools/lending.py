"""Lending market tools: supply, withdraw, borrow, repay and wallet positions."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field

from defi_agent.errors import UnsupportedOperation
from defi_agent.hooks import (
    BeforeHook,
    EmptyParams,
    HookContext,
    Tool,
    ToolArgs,
    balance_check_hook,
    compose_before_hooks,
    require_user_address,
    token_resolution_hook,
    transaction_response_hook,
    with_hooks,
)
from defi_agent.schemas import (
    BorrowResponse,
    LendingTransactionResponse,
    TransactionResponse,
    WalletPositionsResponse,
)
from defi_agent.tasks import Task, create_artifact, create_success_task
from defi_agent.tokens import TokenInfo
from defi_agent.utils.formatting import (
    format_lending_positions,
    lending_preview,
    lending_summary,
)
from defi_agent.validation import parse_tool_response

LENDING_ACTIONS: Dict[str, str] = {
    "supply": "Supply (deposit) a token as collateral into the lending market.",
    "withdraw": "Withdraw a previously supplied token from the lending market.",
    "borrow": "Borrow a token against supplied collateral.",
    "repay": "Repay a borrowed token.",
}

# Actions that spend the user's tokens: balance is checked and an approval may
# be required.
SPENDING_ACTIONS = frozenset({"supply", "repay"})


class LendingParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token_name: str = Field(
        alias="tokenName", description="Symbol of the token, e.g. USDC"
    )
    amount: str = Field(description="Human readable amount, e.g. '100'")
    chain: Optional[str] = Field(
        default=None, description="Chain name if the user specified one"
    )


def _lending_execute(action: str):
    async def execute(args: ToolArgs, ctx: HookContext) -> Any:
        token: TokenInfo = args["token_info"]
        request = {
            "tokenUid": {"chainId": token.chain_id, "address": token.address},
            "amount": args["amount"],
            "walletAddress": ctx.user_address,
        }
        return await ctx.capability_client.call_tool(action, request)

    return execute


def _lending_preview(action: str):
    def preview(response: TransactionResponse, args: ToolArgs) -> Tuple[Dict[str, Any], str]:
        token: TokenInfo = args["token_info"]
        return (
            lending_preview(
                response, args["tokenName"], args["amount"], action, token.chain_id
            ),
            lending_summary(action, args["amount"], args["tokenName"]),
        )

    return preview


def lending_tool(action: str) -> Tool:
    if action not in LENDING_ACTIONS:
        raise UnsupportedOperation(f"Unsupported lending action: {action}")

    schema: Type[TransactionResponse] = (
        BorrowResponse if action == "borrow" else LendingTransactionResponse
    )
    spends = action in SPENDING_ACTIONS
    before: BeforeHook = compose_before_hooks(
        require_user_address,
        token_resolution_hook(),
        balance_check_hook if spends else None,
    )
    tool = Tool(
        name=action,
        description=LENDING_ACTIONS[action],
        parameters=LendingParams,
        execute=_lending_execute(action),
    )
    return with_hooks(
        tool,
        before=before,
        after=transaction_response_hook(schema, _lending_preview(action), approve=spends),
    )


async def _get_wallet_positions(args: ToolArgs, ctx: HookContext) -> Any:
    return await ctx.capability_client.call_tool(
        "getWalletPositions", {"walletAddress": ctx.user_address}
    )


def _positions_result(result: Any, ctx: HookContext, args: ToolArgs) -> Task:
    response = parse_tool_response(result, WalletPositionsResponse)
    return create_success_task(
        format_lending_positions(response.positions),
        [create_artifact("wallet-positions", data=response.model_dump(by_alias=True))],
        ctx.context_id,
    )


def wallet_positions_tool() -> Tool:
    tool = Tool(
        name="getWalletLendingPositions",
        description="Show the user's current lending and borrowing positions.",
        parameters=EmptyParams,
        execute=_get_wallet_positions,
    )
    return with_hooks(tool, before=require_user_address, after=_positions_result)


def lending_tools() -> List[Tool]:
    return [lending_tool(action) for action in LENDING_ACTIONS] + [
        wallet_positions_tool()
    ]


__all__ = [
    "LENDING_ACTIONS",
    "LendingParams",
    "lending_tool",
    "lending_tools",
    "wallet_positions_tool",
]
