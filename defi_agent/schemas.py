"""Typed payloads exchanged with the capability server.

Required fields are strict: a missing ``transactions`` or ``chainId`` is a
validation error, never a default. Unknown extra fields are kept so previews
can surface provider-specific data (APYs, fee breakdowns).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CapabilityModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class TokenIdentifier(CapabilityModel):
    chain_id: str = Field(alias="chainId", min_length=1)
    address: str = Field(min_length=1)

    @field_validator("chain_id", mode="before")
    @classmethod
    def _chain_id_to_str(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class TransactionPlanEntry(BaseModel):
    """One unsigned transaction; immutable once built."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    to: str = Field(min_length=1)
    data: str = Field(min_length=1)
    value: str = Field(min_length=1)
    chain_id: str = Field(alias="chainId", min_length=1)

    @field_validator("value", "chain_id", mode="before")
    @classmethod
    def _int_to_str(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    def to_wire(self) -> Dict[str, str]:
        return self.model_dump(by_alias=True)


class TransactionPlanError(CapabilityModel):
    code: Optional[str] = None
    message: str
    details: Optional[Dict[str, Any]] = None


class TransactionResponse(CapabilityModel):
    """Common shape of every response that carries a transaction plan."""

    transactions: List[TransactionPlanEntry]
    chain_id: str = Field(alias="chainId", min_length=1)
    error: Optional[TransactionPlanError] = None

    @field_validator("chain_id", mode="before")
    @classmethod
    def _chain_id_to_str(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    def preview_extras(self) -> Dict[str, Any]:
        """Response fields other than the plan itself, for the preview."""
        return self.model_dump(
            by_alias=True,
            exclude={"transactions", "chain_id", "error"},
            exclude_none=True,
        )


class SwapEstimation(CapabilityModel):
    base_token_delta: Optional[str] = Field(default=None, alias="baseTokenDelta")
    quote_token_delta: Optional[str] = Field(default=None, alias="quoteTokenDelta")
    effective_price: Optional[str] = Field(default=None, alias="effectivePrice")
    time_estimate: Optional[str] = Field(default=None, alias="timeEstimate")
    expiration: Optional[str] = None


class ProviderTracking(CapabilityModel):
    request_id: Optional[str] = Field(default=None, alias="requestId")
    provider_name: Optional[str] = Field(default=None, alias="providerName")
    explorer_url: Optional[str] = Field(default=None, alias="explorerUrl")


class SwapTokensResponse(TransactionResponse):
    status: Optional[str] = None
    order_type: Optional[str] = Field(default=None, alias="orderType")
    base_token: TokenIdentifier = Field(alias="baseToken")
    quote_token: TokenIdentifier = Field(alias="quoteToken")
    fee_breakdown: Optional[Dict[str, Any]] = Field(default=None, alias="feeBreakdown")
    estimation: Optional[SwapEstimation] = None
    provider_tracking: Optional[ProviderTracking] = Field(
        default=None, alias="providerTracking"
    )


class LendingTransactionResponse(TransactionResponse):
    """Response of ``supply``, ``withdraw`` and ``repay``."""

    token_uid: Optional[TokenIdentifier] = Field(default=None, alias="tokenUid")
    amount: Optional[str] = None
    wallet_address: Optional[str] = Field(default=None, alias="walletAddress")
    fee_breakdown: Optional[Dict[str, Any]] = Field(default=None, alias="feeBreakdown")


class BorrowResponse(TransactionResponse):
    current_borrow_apy: str = Field(alias="currentBorrowApy")
    liquidation_threshold: str = Field(alias="liquidationThreshold")
    fee_breakdown: Optional[Dict[str, Any]] = Field(default=None, alias="feeBreakdown")


class LiquidityTransactionResponse(TransactionResponse):
    """Response of ``supplyLiquidity`` and ``withdrawLiquidity``."""


class CapabilityToken(CapabilityModel):
    symbol: Optional[str] = None
    name: Optional[str] = None
    decimals: int = 18
    token_uid: TokenIdentifier = Field(alias="tokenUid")

    @field_validator("decimals", mode="before")
    @classmethod
    def _default_decimals(cls, value: Any) -> Any:
        return 18 if value is None else value


class SwapCapability(CapabilityModel):
    supported_tokens: List[CapabilityToken] = Field(
        default_factory=list, alias="supportedTokens"
    )


class LendingCapability(CapabilityModel):
    underlying_token: Optional[CapabilityToken] = Field(
        default=None, alias="underlyingToken"
    )


class Capability(CapabilityModel):
    swap_capability: Optional[SwapCapability] = Field(
        default=None, alias="swapCapability"
    )
    lending_capability: Optional[LendingCapability] = Field(
        default=None, alias="lendingCapability"
    )


class GetCapabilitiesResponse(CapabilityModel):
    capabilities: List[Capability]


class WalletPositionsResponse(CapabilityModel):
    positions: List[Dict[str, Any]]


class LiquidityPool(CapabilityModel):
    token0: TokenIdentifier
    token1: TokenIdentifier
    symbol0: str
    symbol1: str
    price: str
    provider_id: str = Field(alias="providerId")


class LiquidityPoolsResponse(CapabilityModel):
    liquidity_pools: List[LiquidityPool] = Field(alias="liquidityPools")


class LiquidityPosition(CapabilityModel):
    token_id: str = Field(alias="tokenId")
    pool_address: Optional[str] = Field(default=None, alias="poolAddress")
    token0: TokenIdentifier
    token1: TokenIdentifier
    symbol0: str
    symbol1: str
    amount0: str
    amount1: str
    price: Optional[str] = None
    provider_id: str = Field(alias="providerId")


class LiquidityPositionsResponse(CapabilityModel):
    positions: List[LiquidityPosition]


__all__ = [
    "BorrowResponse",
    "Capability",
    "CapabilityToken",
    "GetCapabilitiesResponse",
    "LendingTransactionResponse",
    "LiquidityPool",
    "LiquidityPoolsResponse",
    "LiquidityPosition",
    "LiquidityPositionsResponse",
    "LiquidityTransactionResponse",
    "SwapTokensResponse",
    "TokenIdentifier",
    "TransactionPlanEntry",
    "TransactionResponse",
    "WalletPositionsResponse",
]
