"""Minimal ABI fragments and calldata encoders for the contracts we touch."""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from eth_abi import encode
from web3 import Web3

ERC20_ABI: List[Dict[str, Any]] = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
]

POSITION_MANAGER_ABI: List[Dict[str, Any]] = [
    {
        "name": "positions",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [
            {"name": "nonce", "type": "uint96"},
            {"name": "operator", "type": "address"},
            {"name": "token0", "type": "address"},
            {"name": "token1", "type": "address"},
            {"name": "tickLower", "type": "int24"},
            {"name": "tickUpper", "type": "int24"},
            {"name": "liquidity", "type": "uint128"},
            {"name": "feeGrowthInside0LastX128", "type": "uint256"},
            {"name": "feeGrowthInside1LastX128", "type": "uint256"},
            {"name": "tokensOwed0", "type": "uint128"},
            {"name": "tokensOwed1", "type": "uint128"},
        ],
    },
]

# Indices into the Algebra ``positions`` return tuple (no fee field).
POSITION_LIQUIDITY = 6
POSITION_TOKENS_OWED0 = 9
POSITION_TOKENS_OWED1 = 10


def function_selector(signature: str) -> bytes:
    return bytes(Web3.keccak(text=signature)[:4])


APPROVE_SELECTOR = function_selector("approve(address,uint256)")
DECREASE_LIQUIDITY_SELECTOR = function_selector(
    "decreaseLiquidity((uint256,uint128,uint256,uint256,uint256))"
)
COLLECT_SELECTOR = function_selector("collect((uint256,address,uint128,uint128))")
BURN_SELECTOR = function_selector("burn(uint256)")


def _calldata(selector: bytes, types: Sequence[str], args: Sequence[Any]) -> str:
    return "0x" + (selector + encode(list(types), list(args))).hex()


def encode_approve(spender: str, amount: int) -> str:
    return _calldata(
        APPROVE_SELECTOR,
        ["address", "uint256"],
        [Web3.to_checksum_address(spender), amount],
    )


def encode_decrease_liquidity(
    token_id: int,
    liquidity: int,
    amount0_min: int,
    amount1_min: int,
    deadline: int,
) -> str:
    return _calldata(
        DECREASE_LIQUIDITY_SELECTOR,
        ["(uint256,uint128,uint256,uint256,uint256)"],
        [(token_id, liquidity, amount0_min, amount1_min, deadline)],
    )


def encode_collect(
    token_id: int, recipient: str, amount0_max: int, amount1_max: int
) -> str:
    return _calldata(
        COLLECT_SELECTOR,
        ["(uint256,address,uint128,uint128)"],
        [(token_id, Web3.to_checksum_address(recipient), amount0_max, amount1_max)],
    )


def encode_burn(token_id: int) -> str:
    return _calldata(BURN_SELECTOR, ["uint256"], [token_id])


__all__ = [
    "APPROVE_SELECTOR",
    "BURN_SELECTOR",
    "COLLECT_SELECTOR",
    "DECREASE_LIQUIDITY_SELECTOR",
    "ERC20_ABI",
    "POSITION_LIQUIDITY",
    "POSITION_MANAGER_ABI",
    "POSITION_TOKENS_OWED0",
    "POSITION_TOKENS_OWED1",
    "encode_approve",
    "encode_burn",
    "encode_collect",
    "encode_decrease_liquidity",
    "function_selector",
]
