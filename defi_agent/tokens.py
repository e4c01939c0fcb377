"""Token and chain resolution against the capability server's token map."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from defi_agent.chains import DEFAULT_CHAIN_ID, chain_name, chain_sort_key, find_chain_id


@dataclass(frozen=True)
class TokenInfo:
    chain_id: str
    address: str
    decimals: int = 18
    symbol: str = ""
    name: str = ""


TokenMap = Mapping[str, Sequence[TokenInfo]]


class ResolutionStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"
    CHAIN_NOT_SUPPORTED = "chain_not_supported"
    NOT_ON_CHAIN = "not_on_chain"


@dataclass(frozen=True)
class TokenResolution:
    status: ResolutionStatus
    token: Optional[TokenInfo] = None
    message: str = ""
    options: Tuple[TokenInfo, ...] = ()

    @property
    def found(self) -> bool:
        return self.status is ResolutionStatus.FOUND

    @property
    def needs_input(self) -> bool:
        """True when the user can fix the problem by naming a chain."""
        return self.status is ResolutionStatus.AMBIGUOUS


@dataclass(frozen=True)
class PairResolution:
    from_token: Optional[TokenInfo] = None
    to_token: Optional[TokenInfo] = None
    failure: Optional[TokenResolution] = None

    @property
    def found(self) -> bool:
        return self.failure is None


def candidates_for(token_map: TokenMap, name: str) -> List[TokenInfo]:
    return sorted(
        token_map.get((name or "").strip().upper(), ()),
        key=lambda t: chain_sort_key(t.chain_id),
    )


def disambiguation_message(
    symbol: str, options: Sequence[TokenInfo], direction: str = ""
) -> str:
    field_name = f"{direction}Chain" if direction else "chain"
    lines = [f"Multiple chains supported for {symbol.upper()}:"]
    lines.extend(
        f"{i}. {chain_name(option.chain_id)}" for i, option in enumerate(options, 1)
    )
    lines.append(f"Please specify the '{field_name}'.")
    return "\n".join(lines)


def find_token(
    token_map: TokenMap,
    name: str,
    chain: Optional[str] = None,
    direction: str = "",
) -> TokenResolution:
    """Resolve one symbol, optionally pinned to a chain name or alias."""
    symbol = (name or "").strip().upper()
    candidates = candidates_for(token_map, symbol)
    if not candidates:
        return TokenResolution(
            ResolutionStatus.NOT_FOUND, message=f"Token {name} not supported."
        )

    if chain:
        chain_id = find_chain_id(chain)
        if chain_id is None:
            return TokenResolution(
                ResolutionStatus.CHAIN_NOT_SUPPORTED,
                message=f"Chain '{chain}' is not supported.",
            )
        for candidate in candidates:
            if candidate.chain_id == chain_id:
                return TokenResolution(ResolutionStatus.FOUND, token=candidate)
        return TokenResolution(
            ResolutionStatus.NOT_ON_CHAIN,
            message=f"Token {name} is not supported on {chain_name(chain_id)}.",
        )

    if len(candidates) == 1:
        return TokenResolution(ResolutionStatus.FOUND, token=candidates[0])

    return TokenResolution(
        ResolutionStatus.AMBIGUOUS,
        message=disambiguation_message(symbol, candidates, direction),
        options=tuple(candidates),
    )


def _on_chain(candidates: Sequence[TokenInfo], chain_id: str) -> Optional[TokenInfo]:
    for candidate in candidates:
        if candidate.chain_id == chain_id:
            return candidate
    return None


def infer_common_chain(
    from_candidates: Sequence[TokenInfo],
    to_candidates: Sequence[TokenInfo],
    default_chain_id: str = DEFAULT_CHAIN_ID,
) -> Optional[str]:
    common = {t.chain_id for t in from_candidates} & {t.chain_id for t in to_candidates}
    if not common:
        return None
    if default_chain_id in common:
        return default_chain_id
    return sorted(common, key=chain_sort_key)[0]


def resolve_token_pair(
    token_map: TokenMap,
    from_name: str,
    to_name: str,
    from_chain: Optional[str] = None,
    to_chain: Optional[str] = None,
    default_chain_id: str = DEFAULT_CHAIN_ID,
) -> PairResolution:
    """Resolve both legs of a swap, inferring a shared chain when possible.

    An explicit chain on either leg wins (``from_chain`` before ``to_chain``)
    and is applied to the other leg when that leg has no chain of its own.
    Without explicit chains the candidate chain sets are intersected so the
    user does not have to name the chain twice.
    """
    from_candidates = candidates_for(token_map, from_name)
    to_candidates = candidates_for(token_map, to_name)
    if not from_candidates:
        return PairResolution(failure=find_token(token_map, from_name))
    if not to_candidates:
        return PairResolution(failure=find_token(token_map, to_name))

    if from_chain or to_chain:
        primary_chain = from_chain or to_chain
        from_res = find_token(token_map, from_name, from_chain or primary_chain, "from")
        if not from_res.found and not from_chain:
            from_res = find_token(token_map, from_name, None, "from")
        to_res = find_token(token_map, to_name, to_chain or primary_chain, "to")
        if not to_res.found and not to_chain:
            to_res = find_token(token_map, to_name, None, "to")
        for res in (from_res, to_res):
            if not res.found:
                return PairResolution(failure=res)
        return PairResolution(from_token=from_res.token, to_token=to_res.token)

    common = infer_common_chain(from_candidates, to_candidates, default_chain_id)
    if common is not None:
        return PairResolution(
            from_token=_on_chain(from_candidates, common),
            to_token=_on_chain(to_candidates, common),
        )

    # No shared chain: a cross-chain route must be chosen explicitly.
    return PairResolution(
        failure=TokenResolution(
            ResolutionStatus.AMBIGUOUS,
            message=_no_common_chain_message(
                from_name, from_candidates, to_name, to_candidates
            ),
            options=tuple(from_candidates),
        )
    )


def _no_common_chain_message(
    from_name: str,
    from_candidates: Sequence[TokenInfo],
    to_name: str,
    to_candidates: Sequence[TokenInfo],
) -> str:
    lines = [f"No single chain supports both {from_name.upper()} and {to_name.upper()}."]
    for label, symbol, options in (
        ("from", from_name, from_candidates),
        ("to", to_name, to_candidates),
    ):
        names = ", ".join(chain_name(t.chain_id) for t in options)
        lines.append(f"{symbol.upper()} ({label}): {names}")
    lines.append("Please specify the 'fromChain' and 'toChain'.")
    return "\n".join(lines)


def build_token_map(tokens: Sequence[TokenInfo]) -> Dict[str, List[TokenInfo]]:
    """Group tokens by upper-cased symbol, keeping one entry per chain."""
    token_map: Dict[str, List[TokenInfo]] = {}
    for token in tokens:
        symbol = token.symbol.strip().upper()
        if not symbol:
            continue
        entries = token_map.setdefault(symbol, [])
        if any(existing.chain_id == token.chain_id for existing in entries):
            continue
        entries.append(token)
    return token_map


__all__ = [
    "PairResolution",
    "ResolutionStatus",
    "TokenInfo",
    "TokenMap",
    "TokenResolution",
    "build_token_map",
    "candidates_for",
    "disambiguation_message",
    "find_token",
    "infer_common_chain",
    "resolve_token_pair",
]
