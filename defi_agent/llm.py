"""Language-model boundary for the orchestration loop.

The orchestrator talks to a :class:`LanguageModel`; :class:`GeminiModel` is the
concrete provider using Gemini native function calling.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import google.generativeai as genai

from defi_agent.tool_converter import proto_to_python, to_function_declarations
from defi_agent.utils.logging import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are a DeFi assistant that prepares on-chain transactions.

## Your Capabilities
You can call tools to:
- Swap tokens (swapTokens)
- Supply, withdraw, borrow and repay on lending markets
- List lending positions (getWalletLendingPositions)
- List liquidity pools and positions, supply or withdraw liquidity
- Close a liquidity position on-chain (closeLiquidityPosition)

## Guidelines
- Pass token symbols exactly as the user wrote them (e.g. USDC, WETH)
- Amounts are human readable strings such as "100" or "0.5"
- Only pass a chain when the user named one
- If a tool asks for more information, relay the question to the user
- Never invent token addresses or chain ids
- Be concise
"""


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""

    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ModelTurn:
    """One model response: final text, tool calls, or both."""

    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)


class LanguageModel(Protocol):
    async def generate(
        self,
        history: Sequence[Dict[str, Any]],
        tools: Sequence[Dict[str, Any]],
    ) -> ModelTurn:
        ...


def _jsonable(value: Any) -> Any:
    """Round-trip through JSON so protobuf Struct accepts the value."""
    return json.loads(json.dumps(value, default=str))


def history_to_contents(history: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Map ``{role, content, ...}`` history entries onto Gemini contents.

    Consecutive tool results are merged into a single user turn, which is
    how Gemini expects function responses to follow a function-call turn.
    """
    contents: List[Dict[str, Any]] = []
    tool_parts: Optional[List[Any]] = None
    for entry in history:
        role = entry.get("role")
        if role == "tool":
            part = genai.protos.Part(
                function_response=genai.protos.FunctionResponse(
                    name=entry["name"],
                    response={"result": _jsonable(entry.get("content"))},
                )
            )
            if tool_parts is None:
                tool_parts = []
                contents.append({"role": "user", "parts": tool_parts})
            tool_parts.append(part)
            continue

        tool_parts = None

        if role == "model":
            parts: List[Any] = []
            if entry.get("content"):
                parts.append(genai.protos.Part(text=entry["content"]))
            for call in entry.get("tool_calls", []):
                parts.append(
                    genai.protos.Part(
                        function_call=genai.protos.FunctionCall(
                            name=call["name"], args=_jsonable(call.get("arguments", {}))
                        )
                    )
                )
            if parts:
                contents.append({"role": "model", "parts": parts})
            continue

        contents.append({"role": "user", "parts": [{"text": str(entry.get("content", ""))}]})

    return contents


def parse_response(response: Any) -> ModelTurn:
    """Extract text and function calls from a Gemini response."""
    turn = ModelTurn()
    if not getattr(response, "candidates", None):
        return turn

    texts = []
    for part in response.candidates[0].content.parts:
        function_call = getattr(part, "function_call", None)
        if function_call and function_call.name:
            args = proto_to_python(function_call.args) if function_call.args else {}
            turn.tool_calls.append(ToolCall(name=function_call.name, arguments=args))
        elif getattr(part, "text", None):
            texts.append(part.text)
    turn.text = "\n".join(texts)
    return turn


class GeminiModel:
    """:class:`LanguageModel` backed by ``google.generativeai``."""

    def __init__(
        self,
        api_key: str,
        model_name: str = "gemini-1.5-flash-latest",
        system_instruction: str = SYSTEM_PROMPT,
    ) -> None:
        genai.configure(api_key=api_key)
        self.model_name = model_name
        self.system_instruction = system_instruction
        self._model: Optional[genai.GenerativeModel] = None
        self._tool_names: Tuple[str, ...] = ()

    def _ensure_model(self, tools: Sequence[Dict[str, Any]]) -> genai.GenerativeModel:
        names = tuple(tool["name"] for tool in tools)
        if self._model is None or names != self._tool_names:
            functions = to_function_declarations(tools)
            self._model = genai.GenerativeModel(
                model_name=self.model_name,
                tools=[genai.protos.Tool(function_declarations=functions)]
                if functions
                else None,
                system_instruction=self.system_instruction,
            )
            self._tool_names = names
            logger.info(
                "gemini_model_initialized",
                model=self.model_name,
                function_count=len(functions),
            )
        return self._model

    async def generate(
        self,
        history: Sequence[Dict[str, Any]],
        tools: Sequence[Dict[str, Any]],
    ) -> ModelTurn:
        model = self._ensure_model(tools)
        contents = history_to_contents(history)
        response = await asyncio.to_thread(model.generate_content, contents)
        return parse_response(response)


__all__ = [
    "GeminiModel",
    "LanguageModel",
    "ModelTurn",
    "SYSTEM_PROMPT",
    "ToolCall",
    "history_to_contents",
    "parse_response",
]
