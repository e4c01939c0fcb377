"""Previews and plain-text summaries for transaction plans and listings."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

from defi_agent.chains import chain_name
from defi_agent.schemas import (
    LiquidityPool,
    LiquidityPosition,
    SwapTokensResponse,
    TransactionResponse,
)


def swap_preview(
    response: SwapTokensResponse,
    from_symbol: str,
    to_symbol: str,
    amount: str,
) -> Dict[str, Any]:
    estimation = response.estimation
    tracking = response.provider_tracking
    preview = {
        "fromTokenSymbol": from_symbol.upper(),
        "fromTokenAddress": response.base_token.address,
        "fromTokenAmount": (estimation and estimation.base_token_delta) or amount,
        "fromChain": response.base_token.chain_id,
        "toTokenSymbol": to_symbol.upper(),
        "toTokenAddress": response.quote_token.address,
        "toTokenAmount": (estimation and estimation.quote_token_delta) or "0",
        "toChain": response.quote_token.chain_id,
        "exchangeRate": (estimation and estimation.effective_price) or "0",
        "executionTime": estimation.time_estimate if estimation else None,
        "expiration": estimation.expiration if estimation else None,
        "explorerUrl": tracking.explorer_url if tracking else None,
    }
    return {k: v for k, v in preview.items() if v is not None}


def swap_summary(amount: str, from_symbol: str, to_symbol: str) -> str:
    return (
        f"Transaction plan created for swapping {amount} {from_symbol.upper()} "
        f"to {to_symbol.upper()}. Ready to sign."
    )


def lending_preview(
    response: TransactionResponse,
    token_name: str,
    amount: str,
    action: str,
    chain_id: str,
) -> Dict[str, Any]:
    """Lending preview; protocol extras such as APY or LTV are passed through."""
    return {
        "tokenName": token_name.upper(),
        "amount": amount,
        "action": action,
        "chainId": chain_id,
        **response.preview_extras(),
    }


def lending_summary(action: str, amount: str, token_name: str) -> str:
    return (
        f"{action.capitalize()} transaction plan created for {amount} "
        f"{token_name.upper()}. Ready to sign."
    )


def liquidity_preview(
    action: str,
    chain_id: str,
    **fields: Optional[str],
) -> Dict[str, Any]:
    preview: Dict[str, Any] = {"action": action, "chainId": chain_id}
    preview.update({k: v for k, v in fields.items() if v is not None})
    return preview


def liquidity_summary(action: str, pair: str) -> str:
    if action == "supply":
        return f"Transaction plan created to supply liquidity to {pair}. Ready to sign."
    return f"Transaction plan created to withdraw liquidity from {pair}. Ready to sign."


def format_pools(pools: Sequence[LiquidityPool]) -> str:
    if not pools:
        return "No liquidity pools available."
    lines = ["Available Liquidity Pools:"]
    lines.extend(
        f"- {pool.symbol0}/{pool.symbol1} on {chain_name(pool.token0.chain_id)} "
        f"(Price: {pool.price})"
        for pool in pools
    )
    return "\n".join(lines)


def format_liquidity_positions(positions: Sequence[LiquidityPosition]) -> str:
    if not positions:
        return "No liquidity positions found."
    lines: List[str] = ["Your Liquidity Positions:"]
    for index, pos in enumerate(positions, 1):
        lines.append(f"{index}: {pos.symbol0}/{pos.symbol1} (token id {pos.token_id})")
        lines.append(f"  Amount0: {pos.amount0} {pos.symbol0}")
        lines.append(f"  Amount1: {pos.amount1} {pos.symbol1}")
        if pos.price:
            lines.append(f"  Price: {pos.price}")
    return "\n".join(lines)


def format_lending_positions(positions: Sequence[Mapping[str, Any]]) -> str:
    """Summarize ``getWalletPositions`` entries; unknown shapes are counted only."""
    if not positions:
        return "No lending positions found."
    lines = [f"Found {len(positions)} lending position(s):"]
    for position in positions:
        lending = position.get("lendingPosition") if isinstance(position, Mapping) else None
        if not isinstance(lending, Mapping):
            continue
        lines.append(
            "- Collateral: {c} | Borrowed: {b} | Health factor: {h}".format(
                c=lending.get("totalCollateralUsd", "?"),
                b=lending.get("totalBorrowsUsd", "?"),
                h=lending.get("healthFactor", "?"),
            )
        )
    return "\n".join(lines)


def format_confirmed_before_failure(executed: Sequence[Any]) -> str:
    """List transactions that landed on-chain before a later step failed."""
    lines = [f"{len(executed)} transaction(s) were already confirmed:"]
    for tx in executed:
        url = tx.explorer_url
        lines.append(f"- {tx.hash} ({url})" if url else f"- {tx.hash}")
    return "\n".join(lines)


__all__ = [
    "format_confirmed_before_failure",
    "format_lending_positions",
    "format_liquidity_positions",
    "format_pools",
    "lending_preview",
    "lending_summary",
    "liquidity_preview",
    "liquidity_summary",
    "swap_preview",
    "swap_summary",
]
