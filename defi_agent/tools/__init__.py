"""Hooked tool definitions exposed to the orchestration loop."""

from typing import List

from defi_agent.hooks import Tool
from defi_agent.tools.lending import lending_tools
from defi_agent.tools.liquidity import liquidity_tools
from defi_agent.tools.positions import close_position_tool
from defi_agent.tools.swap import swap_tokens_tool


def build_tools(include_signing: bool = True) -> List[Tool]:
    """Every tool, optionally without the ones that sign transactions."""
    tools = [swap_tokens_tool(), *lending_tools(), *liquidity_tools()]
    if include_signing:
        tools.append(close_position_tool())
    return tools


__all__ = ["build_tools"]
