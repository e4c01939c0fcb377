"""Build the symbol -> token candidates map from the capability server."""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from defi_agent.errors import CapabilityServerError, PipelineError, ResponseValidationError
from defi_agent.mcp_client import CapabilityClient
from defi_agent.schemas import CapabilityToken, GetCapabilitiesResponse
from defi_agent.tokens import TokenInfo, build_token_map
from defi_agent.utils.logging import get_logger
from defi_agent.validation import parse_tool_response

logger = get_logger(__name__)

CAPABILITIES_TOOL = "getCapabilities"


def _token_info(token: CapabilityToken) -> Optional[TokenInfo]:
    if not token.symbol:
        return None
    return TokenInfo(
        chain_id=token.token_uid.chain_id,
        address=token.token_uid.address,
        decimals=token.decimals,
        symbol=token.symbol.upper(),
        name=token.name or token.symbol,
    )


def tokens_from_capabilities(response: GetCapabilitiesResponse) -> List[TokenInfo]:
    """Flatten swap and lending capabilities into a token list."""
    tokens: List[TokenInfo] = []
    for capability in response.capabilities:
        candidates: List[CapabilityToken] = []
        if capability.swap_capability:
            candidates.extend(capability.swap_capability.supported_tokens)
        if capability.lending_capability and capability.lending_capability.underlying_token:
            candidates.append(capability.lending_capability.underlying_token)
        for candidate in candidates:
            info = _token_info(candidate)
            if info is not None:
                tokens.append(info)
    return tokens


def read_cache(path: Path) -> Optional[List[TokenInfo]]:
    if not path.exists():
        return None
    try:
        entries = json.loads(path.read_text(encoding="utf-8"))
        return [TokenInfo(**entry) for entry in entries]
    except (OSError, ValueError, TypeError) as exc:
        logger.warning("token_cache_unreadable", path=str(path), error=str(exc))
        return None


def write_cache(path: Path, tokens: Iterable[TokenInfo]) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps([asdict(t) for t in tokens], indent=2), encoding="utf-8"
        )
    except OSError as exc:
        logger.warning("token_cache_write_failed", path=str(path), error=str(exc))


async def load_token_map(
    client: CapabilityClient,
    capability_types: Sequence[str] = ("SWAP", "LENDING_MARKET"),
    cache_path: Optional[Path] = None,
    use_cache: bool = False,
) -> Dict[str, List[TokenInfo]]:
    """Query ``getCapabilities`` for every type and group tokens by symbol.

    A capability type that fails is logged and skipped; if every type fails
    the last error propagates.
    """
    if use_cache and cache_path is not None:
        cached = read_cache(cache_path)
        if cached is not None:
            logger.info("token_map_cache_hit", path=str(cache_path), tokens=len(cached))
            return build_token_map(cached)

    tokens: List[TokenInfo] = []
    last_error: Optional[PipelineError] = None
    loaded_types = 0
    for capability_type in capability_types:
        try:
            raw = await client.call_tool(CAPABILITIES_TOOL, {"type": capability_type})
            response = parse_tool_response(raw, GetCapabilitiesResponse)
        except (CapabilityServerError, ResponseValidationError) as exc:
            logger.warning(
                "capabilities_load_failed", type=capability_type, error=str(exc)
            )
            last_error = exc
            continue
        loaded_types += 1
        tokens.extend(tokens_from_capabilities(response))

    if capability_types and loaded_types == 0 and last_error is not None:
        raise last_error

    token_map = build_token_map(tokens)
    logger.info(
        "token_map_loaded",
        symbols=len(token_map),
        tokens=sum(len(v) for v in token_map.values()),
    )
    if use_cache and cache_path is not None:
        write_cache(cache_path, [t for entries in token_map.values() for t in entries])
    return token_map


__all__ = [
    "load_token_map",
    "read_cache",
    "tokens_from_capabilities",
    "write_cache",
]
