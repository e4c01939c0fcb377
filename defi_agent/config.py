"""Application configuration management."""

from __future__ import annotations

import json
import re
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional

from pydantic import AnyHttpUrl, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_POSITION_MANAGER = "0x00c7f3082833e796A5b3e4Bd59f6642FF44DCD15"

_PRIVATE_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


class Settings(BaseSettings):
    """Runtime configuration loaded from environment or `.env`."""

    model_config = SettingsConfigDict(
        env_file=(".env",),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    gemini_api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY")
    gemini_model: str = Field(
        default="gemini-1.5-flash-latest",
        alias="GEMINI_MODEL",
    )

    mcp_server_cmd: Optional[str] = Field(default=None, alias="MCP_SERVER_CMD")
    mcp_server_url: Optional[AnyHttpUrl] = Field(default=None, alias="MCP_SERVER_URL")
    mcp_tool_timeout_ms: int = Field(
        default=30_000,
        alias="MCP_TOOL_TIMEOUT_MS",
        ge=1_000,
    )
    mcp_max_retries: int = Field(default=3, alias="MCP_MAX_RETRIES", ge=0, le=10)

    agent_cache_tokens: bool = Field(default=False, alias="AGENT_CACHE_TOKENS")
    token_cache_path: Path = Field(
        default=Path(".cache/capabilities.json"),
        alias="TOKEN_CACHE_PATH",
    )
    capability_types: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["SWAP", "LENDING_MARKET"],
        alias="CAPABILITY_TYPES",
    )

    user_address: Optional[str] = Field(default=None, alias="USER_ADDRESS")
    private_key: Optional[str] = Field(default=None, alias="PRIVATE_KEY", repr=False)

    chain_rpc_urls: Annotated[Dict[str, str], NoDecode] = Field(
        default_factory=dict,
        alias="CHAIN_RPC_URLS",
    )
    quicknode_subdomain: Optional[str] = Field(
        default=None, alias="QUICKNODE_SUBDOMAIN"
    )
    quicknode_api_key: Optional[str] = Field(
        default=None, alias="QUICKNODE_API_KEY", repr=False
    )
    default_chain_id: str = Field(default="42161", alias="DEFAULT_CHAIN_ID")
    position_manager_address: str = Field(
        default=DEFAULT_POSITION_MANAGER,
        alias="POSITION_MANAGER_ADDRESS",
    )
    rpc_timeout_seconds: float = Field(
        default=30.0, alias="RPC_TIMEOUT_SECONDS", gt=0
    )
    receipt_timeout_seconds: float = Field(
        default=180.0, alias="RECEIPT_TIMEOUT_SECONDS", gt=0
    )

    max_steps: int = Field(default=5, alias="MAX_STEPS", ge=1, le=20)

    database_url: str = Field(
        default="sqlite+aiosqlite:///./.tmp/tasks.db",
        alias="DATABASE_URL",
    )
    task_retention_hours: int = Field(
        default=72,
        alias="TASK_RETENTION_HOURS",
        ge=1,
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: Optional[Path] = Field(default=None, alias="LOG_FILE")

    @field_validator("capability_types", mode="before")
    @classmethod
    def _parse_capability_types(cls, value: Any) -> List[str]:
        if value in (None, "", []):
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return [str(v) for v in value]

    @field_validator("chain_rpc_urls", mode="before")
    @classmethod
    def _parse_rpc_urls(cls, value: Any) -> Dict[str, str]:
        """Accept a JSON object or comma separated ``chainId=url`` pairs."""
        if value in (None, "", {}):
            return {}
        if isinstance(value, str):
            text = value.strip()
            if text.startswith("{"):
                value = json.loads(text)
            else:
                pairs: Dict[str, str] = {}
                for part in text.split(","):
                    if not part.strip():
                        continue
                    chain_id, sep, url = part.partition("=")
                    if not sep or not url.strip():
                        raise ValueError(f"Invalid CHAIN_RPC_URLS entry: {part!r}")
                    pairs[chain_id.strip()] = url.strip()
                return pairs
        return {str(k): str(v) for k, v in dict(value).items()}

    @field_validator("private_key", mode="before")
    @classmethod
    def _check_private_key(cls, value: Any) -> Optional[str]:
        if value in (None, ""):
            return None
        text = str(value).strip()
        if not _PRIVATE_KEY_RE.match(text):
            raise ValueError("PRIVATE_KEY must be 32 bytes of hex")
        return text

    @property
    def mcp_tool_timeout_seconds(self) -> float:
        return self.mcp_tool_timeout_ms / 1000


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Return cached Settings instance, raising a helpful message on failure."""
    try:
        return Settings()
    except (
        ValidationError
    ) as exc:  # pragma: no cover - configuration failure visible on boot
        raise RuntimeError(f"Invalid configuration: {exc}") from exc


__all__ = ["DEFAULT_POSITION_MANAGER", "Settings", "load_settings"]
