"""Concentrated-liquidity tools backed by the capability server."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from defi_agent.hooks import (
    EmptyParams,
    HookContext,
    Tool,
    ToolArgs,
    check_balance,
    compose_before_hooks,
    require_user_address,
    transaction_response_hook,
    with_hooks,
)
from defi_agent.schemas import (
    LiquidityPool,
    LiquidityPoolsResponse,
    LiquidityPosition,
    LiquidityPositionsResponse,
    LiquidityTransactionResponse,
    TokenIdentifier,
)
from defi_agent.tasks import Task, create_artifact, create_error_task, create_success_task
from defi_agent.tokens import TokenInfo, candidates_for
from defi_agent.utils.formatting import (
    format_liquidity_positions,
    format_pools,
    liquidity_preview,
    liquidity_summary,
)
from defi_agent.utils.logging import get_logger
from defi_agent.validation import parse_tool_response

logger = get_logger(__name__)


class SupplyLiquidityParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pair: str = Field(description='Liquidity pair handle, e.g. "WETH/USDC"')
    amount0: str = Field(description="Amount of the first token of the pair")
    amount1: str = Field(description="Amount of the second token of the pair")
    price_from: Optional[str] = Field(
        default=None,
        alias="priceFrom",
        description="Lower price bound; omit both bounds for a full-range position",
    )
    price_to: Optional[str] = Field(
        default=None, alias="priceTo", description="Upper price bound"
    )


class WithdrawLiquidityParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    position_number: int = Field(
        alias="positionNumber",
        ge=1,
        description="1-based index of the position in the user's position list",
    )


def pair_handle(symbol0: str, symbol1: str) -> str:
    return f"{symbol0}/{symbol1}"


async def fetch_pools(ctx: HookContext) -> List[LiquidityPool]:
    raw = await ctx.capability_client.call_tool("getLiquidityPools", {})
    return parse_tool_response(raw, LiquidityPoolsResponse).liquidity_pools


async def fetch_positions(ctx: HookContext) -> List[LiquidityPosition]:
    raw = await ctx.capability_client.call_tool(
        "getWalletLiquidityPositions", {"walletAddress": ctx.user_address}
    )
    return parse_tool_response(raw, LiquidityPositionsResponse).positions


async def _pool_token(ctx: HookContext, uid: TokenIdentifier, symbol: str) -> TokenInfo:
    """Token info for one side of a pool, reading decimals on-chain if unknown."""
    for candidate in candidates_for(ctx.token_map, symbol):
        if (
            candidate.chain_id == uid.chain_id
            and candidate.address.lower() == uid.address.lower()
        ):
            return candidate
    decimals = await ctx.chains.get(uid.chain_id).decimals(uid.address)
    return TokenInfo(
        chain_id=uid.chain_id,
        address=uid.address,
        decimals=decimals,
        symbol=symbol.upper(),
        name=symbol,
    )


async def pool_resolution_hook(args: ToolArgs, ctx: HookContext) -> Union[ToolArgs, Task]:
    wanted = args["pair"].strip().upper()
    pools = await fetch_pools(ctx)
    for pool in pools:
        if pair_handle(pool.symbol0, pool.symbol1).upper() == wanted:
            args["pool"] = pool
            return args
    return create_error_task(
        f'Liquidity pair handle "{args["pair"]}" not found or not supported.',
        ctx.context_id,
    )


async def pool_balance_hook(args: ToolArgs, ctx: HookContext) -> ToolArgs:
    pool: LiquidityPool = args["pool"]
    sides = (
        (pool.token0, pool.symbol0, args["amount0"]),
        (pool.token1, pool.symbol1, args["amount1"]),
    )
    for uid, symbol, amount in sides:
        token = await _pool_token(ctx, uid, symbol)
        await check_balance(ctx, token, amount, ctx.user_address)
    return args


async def _supply_liquidity(args: ToolArgs, ctx: HookContext) -> Any:
    pool: LiquidityPool = args["pool"]
    request: Dict[str, Any] = {
        "token0": pool.token0.model_dump(by_alias=True),
        "token1": pool.token1.model_dump(by_alias=True),
        "amount0": args["amount0"],
        "amount1": args["amount1"],
        "supplierAddress": ctx.user_address,
    }
    if args.get("priceFrom") and args.get("priceTo"):
        request["limitedRange"] = {
            "minPrice": args["priceFrom"],
            "maxPrice": args["priceTo"],
        }
    else:
        request["fullRange"] = True
    return await ctx.capability_client.call_tool("supplyLiquidity", request)


def _supply_preview(
    response: LiquidityTransactionResponse, args: ToolArgs
) -> Tuple[Dict[str, Any], str]:
    pool: LiquidityPool = args["pool"]
    handle = pair_handle(pool.symbol0, pool.symbol1)
    preview = liquidity_preview(
        "supply",
        response.chain_id,
        pair=handle,
        token0Symbol=pool.symbol0,
        token0Amount=args["amount0"],
        token1Symbol=pool.symbol1,
        token1Amount=args["amount1"],
        priceFrom=args.get("priceFrom"),
        priceTo=args.get("priceTo"),
    )
    return preview, liquidity_summary("supply", handle)


def supply_liquidity_tool() -> Tool:
    tool = Tool(
        name="supplyLiquidity",
        description=(
            "Supply two tokens into a liquidity pool, optionally within a "
            "price range."
        ),
        parameters=SupplyLiquidityParams,
        execute=_supply_liquidity,
    )
    return with_hooks(
        tool,
        before=compose_before_hooks(
            require_user_address, pool_resolution_hook, pool_balance_hook
        ),
        after=transaction_response_hook(
            LiquidityTransactionResponse, _supply_preview, approve=False
        ),
    )


async def position_selection_hook(
    args: ToolArgs, ctx: HookContext
) -> Union[ToolArgs, Task]:
    positions = await fetch_positions(ctx)
    index = args["positionNumber"]
    if index > len(positions):
        return create_error_task(
            f"Position {index} not found. You have {len(positions)} liquidity "
            "position(s).",
            ctx.context_id,
        )
    args["position"] = positions[index - 1]
    return args


async def _withdraw_liquidity(args: ToolArgs, ctx: HookContext) -> Any:
    position: LiquidityPosition = args["position"]
    request = {
        "tokenId": position.token_id,
        "providerId": position.provider_id,
        "supplierAddress": ctx.user_address,
    }
    return await ctx.capability_client.call_tool("withdrawLiquidity", request)


def _withdraw_preview(
    response: LiquidityTransactionResponse, args: ToolArgs
) -> Tuple[Dict[str, Any], str]:
    position: LiquidityPosition = args["position"]
    handle = pair_handle(position.symbol0, position.symbol1)
    preview = liquidity_preview(
        "withdraw",
        response.chain_id,
        pair=handle,
        tokenId=position.token_id,
        token0Symbol=position.symbol0,
        token0Amount=position.amount0,
        token1Symbol=position.symbol1,
        token1Amount=position.amount1,
    )
    return preview, liquidity_summary("withdraw", handle)


def withdraw_liquidity_tool() -> Tool:
    tool = Tool(
        name="withdrawLiquidity",
        description="Build a plan that withdraws one of the user's liquidity positions.",
        parameters=WithdrawLiquidityParams,
        execute=_withdraw_liquidity,
    )
    return with_hooks(
        tool,
        before=compose_before_hooks(require_user_address, position_selection_hook),
        after=transaction_response_hook(
            LiquidityTransactionResponse, _withdraw_preview, approve=False
        ),
    )


async def _list_pools(args: ToolArgs, ctx: HookContext) -> Task:
    pools = await fetch_pools(ctx)
    return create_success_task(
        format_pools(pools),
        [
            create_artifact(
                "available-liquidity-pools",
                data={"liquidityPools": [p.model_dump(by_alias=True) for p in pools]},
            )
        ],
        ctx.context_id,
    )


async def _list_positions(args: ToolArgs, ctx: HookContext) -> Task:
    positions = await fetch_positions(ctx)
    logger.info("liquidity_positions_loaded", count=len(positions))
    return create_success_task(
        format_liquidity_positions(positions),
        [
            create_artifact(
                "wallet-liquidity-positions",
                data={"positions": [p.model_dump(by_alias=True) for p in positions]},
            )
        ],
        ctx.context_id,
    )


def liquidity_tools() -> List[Tool]:
    return [
        with_hooks(
            Tool(
                name="getLiquidityPools",
                description="List the liquidity pools available for supplying.",
                parameters=EmptyParams,
                execute=_list_pools,
            )
        ),
        with_hooks(
            Tool(
                name="getWalletLiquidityPositions",
                description="List the user's liquidity positions, numbered from 1.",
                parameters=EmptyParams,
                execute=_list_positions,
            ),
            before=require_user_address,
        ),
        supply_liquidity_tool(),
        withdraw_liquidity_tool(),
    ]


__all__ = [
    "SupplyLiquidityParams",
    "WithdrawLiquidityParams",
    "fetch_pools",
    "fetch_positions",
    "liquidity_tools",
    "pool_resolution_hook",
    "position_selection_hook",
    "supply_liquidity_tool",
    "withdraw_liquidity_tool",
]
