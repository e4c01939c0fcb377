"""Supported chains, their aliases and RPC endpoint helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class ChainConfig:
    chain_id: str
    name: str
    aliases: Tuple[str, ...] = field(default_factory=tuple)
    # Segment of the QuickNode hostname; empty for Ethereum mainnet.
    quicknode_segment: str = ""
    explorer_url: str = ""


CHAINS: Dict[str, ChainConfig] = {
    "1": ChainConfig(
        chain_id="1",
        name="Ethereum",
        aliases=("mainnet",),
        quicknode_segment="",
        explorer_url="https://etherscan.io",
    ),
    "42161": ChainConfig(
        chain_id="42161",
        name="Arbitrum",
        quicknode_segment="arbitrum-mainnet",
        explorer_url="https://arbiscan.io",
    ),
    "10": ChainConfig(
        chain_id="10",
        name="Optimism",
        quicknode_segment="optimism",
        explorer_url="https://optimistic.etherscan.io",
    ),
    "137": ChainConfig(
        chain_id="137",
        name="Polygon",
        aliases=("matic",),
        quicknode_segment="matic",
        explorer_url="https://polygonscan.com",
    ),
    "8453": ChainConfig(
        chain_id="8453",
        name="Base",
        quicknode_segment="base-mainnet",
        explorer_url="https://basescan.org",
    ),
}

DEFAULT_CHAIN_ID = "42161"


def find_chain_id(name: str) -> Optional[str]:
    """Map a chain name, alias or numeric id to its canonical id."""
    normalized = (name or "").strip().lower()
    if not normalized:
        return None
    if normalized in CHAINS:
        return normalized
    for chain in CHAINS.values():
        if chain.name.lower() == normalized or normalized in chain.aliases:
            return chain.chain_id
    return None


def chain_name(chain_id: str) -> str:
    chain = CHAINS.get(str(chain_id))
    return chain.name if chain else f"Chain {chain_id}"


def chain_sort_key(chain_id: str) -> Tuple[int, str]:
    """Sort numeric ids numerically, anything else after them."""
    text = str(chain_id)
    return (int(text), "") if text.isdigit() else (10**18, text)


def explorer_tx_url(chain_id: str, tx_hash: str) -> Optional[str]:
    chain = CHAINS.get(str(chain_id))
    if not chain or not chain.explorer_url:
        return None
    return f"{chain.explorer_url}/tx/{tx_hash}"


def quicknode_rpc_url(chain_id: str, subdomain: str, api_key: str) -> Optional[str]:
    chain = CHAINS.get(str(chain_id))
    if not chain:
        return None
    if chain.quicknode_segment:
        return f"https://{subdomain}.{chain.quicknode_segment}.quiknode.pro/{api_key}"
    return f"https://{subdomain}.quiknode.pro/{api_key}"


def resolve_rpc_url(
    chain_id: str,
    overrides: Dict[str, str],
    quicknode_subdomain: Optional[str] = None,
    quicknode_api_key: Optional[str] = None,
) -> Optional[str]:
    """Explicit per-chain URLs win; otherwise fall back to QuickNode."""
    url = overrides.get(str(chain_id))
    if url:
        return url
    if quicknode_subdomain and quicknode_api_key:
        return quicknode_rpc_url(chain_id, quicknode_subdomain, quicknode_api_key)
    return None


__all__ = [
    "CHAINS",
    "ChainConfig",
    "DEFAULT_CHAIN_ID",
    "chain_name",
    "chain_sort_key",
    "explorer_tx_url",
    "find_chain_id",
    "quicknode_rpc_url",
    "resolve_rpc_url",
]
