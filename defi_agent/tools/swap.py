"""Token swap tool."""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from defi_agent.hooks import (
    HookContext,
    Tool,
    ToolArgs,
    balance_check_hook,
    compose_before_hooks,
    require_user_address,
    token_pair_resolution_hook,
    transaction_response_hook,
    with_hooks,
)
from defi_agent.schemas import SwapTokensResponse
from defi_agent.tokens import TokenInfo
from defi_agent.utils.formatting import swap_preview, swap_summary
from defi_agent.utils.units import parse_units

DEFAULT_SLIPPAGE = "0.5"


class SwapTokensParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_token: str = Field(
        alias="fromToken", description="Symbol of the token to sell, e.g. USDC"
    )
    to_token: str = Field(
        alias="toToken", description="Symbol of the token to buy, e.g. WETH"
    )
    amount: str = Field(
        description="Human readable amount of fromToken to sell, e.g. '1.5'"
    )
    from_chain: Optional[str] = Field(
        default=None,
        alias="fromChain",
        description="Chain of the token being sold, if the user named one",
    )
    to_chain: Optional[str] = Field(
        default=None,
        alias="toChain",
        description="Chain of the token being bought, if the user named one",
    )


def _identifier(token: TokenInfo) -> Dict[str, str]:
    return {"chainId": token.chain_id, "address": token.address}


async def _swap_tokens(args: ToolArgs, ctx: HookContext) -> Any:
    from_token: TokenInfo = args["from_token_info"]
    to_token: TokenInfo = args["to_token_info"]
    atomic_amount = args.get("atomic_amount")
    if atomic_amount is None:
        atomic_amount = parse_units(args["amount"], from_token.decimals)
    request = {
        "orderType": "MARKET_SELL",
        "baseToken": _identifier(from_token),
        "quoteToken": _identifier(to_token),
        "amount": str(atomic_amount),
        "recipient": ctx.user_address,
        "slippageTolerance": DEFAULT_SLIPPAGE,
    }
    return await ctx.capability_client.call_tool("swapTokens", request)


def _preview(response: SwapTokensResponse, args: ToolArgs) -> Tuple[Dict[str, Any], str]:
    return (
        swap_preview(response, args["fromToken"], args["toToken"], args["amount"]),
        swap_summary(args["amount"], args["fromToken"], args["toToken"]),
    )


def swap_tokens_tool() -> Tool:
    tool = Tool(
        name="swapTokens",
        description=(
            "Swap or convert one token into another. Builds a transaction plan "
            "that the user signs; an ERC-20 approval is added when needed."
        ),
        parameters=SwapTokensParams,
        execute=_swap_tokens,
    )
    return with_hooks(
        tool,
        before=compose_before_hooks(
            require_user_address, token_pair_resolution_hook, balance_check_hook
        ),
        after=transaction_response_hook(SwapTokensResponse, _preview),
    )


__all__ = ["SwapTokensParams", "swap_tokens_tool"]
