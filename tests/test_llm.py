"""Tests for the Gemini boundary: schema conversion and history mapping."""

from types import SimpleNamespace

import google.generativeai as genai
import pytest

from defi_agent import llm
from defi_agent.hooks import EmptyParams
from defi_agent.llm import GeminiModel, history_to_contents, parse_response
from defi_agent.tool_converter import (
    json_schema_to_gemini,
    proto_to_python,
    to_function_declaration,
)
from defi_agent.tools.swap import SwapTokensParams


def _response(*parts):
    return SimpleNamespace(
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=list(parts)))]
    )


def _text_part(text):
    return SimpleNamespace(function_call=None, text=text)


def _call_part(name, args):
    return SimpleNamespace(function_call=SimpleNamespace(name=name, args=args), text="")


class TestToolConverter:
    def test_parameter_schema(self):
        schema = json_schema_to_gemini(SwapTokensParams.model_json_schema(by_alias=True))
        assert schema.type_ == genai.protos.Type.OBJECT
        assert set(schema.properties) == {
            "fromToken",
            "toToken",
            "amount",
            "fromChain",
            "toChain",
        }
        assert list(schema.required) == ["fromToken", "toToken", "amount"]
        assert schema.properties["fromChain"].nullable is True
        assert schema.properties["amount"].type_ == genai.protos.Type.STRING

    def test_array_items(self):
        schema = json_schema_to_gemini({"type": "array", "items": {"type": "integer"}})
        assert schema.items.type_ == genai.protos.Type.INTEGER

    def test_empty_parameters_are_omitted(self):
        declaration = to_function_declaration(
            {
                "name": "getLiquidityPools",
                "description": "List pools",
                "parameters": EmptyParams.model_json_schema(),
            }
        )
        assert declaration.name == "getLiquidityPools"
        assert "parameters" not in declaration

    def test_proto_to_python(self):
        assert proto_to_python({"a": ["x", {"b": 1}]}) == {"a": ["x", {"b": 1}]}
        assert proto_to_python("text") == "text"


class TestHistoryToContents:
    def test_tool_results_merge_into_one_turn(self):
        history = [
            {"role": "user", "content": "swap 1 USDC to WETH"},
            {
                "role": "model",
                "content": "",
                "tool_calls": [
                    {"name": "swapTokens", "arguments": {"amount": "1"}},
                    {"name": "getLiquidityPools", "arguments": {}},
                ],
            },
            {"role": "tool", "name": "swapTokens", "content": {"ok": True}},
            {"role": "tool", "name": "getLiquidityPools", "content": {"ok": False}},
            {"role": "model", "content": "Done"},
        ]
        contents = history_to_contents(history)

        assert [c["role"] for c in contents] == ["user", "model", "user", "model"]
        assert contents[0]["parts"] == [{"text": "swap 1 USDC to WETH"}]
        assert [p.function_call.name for p in contents[1]["parts"]] == [
            "swapTokens",
            "getLiquidityPools",
        ]
        responses = contents[2]["parts"]
        assert [p.function_response.name for p in responses] == [
            "swapTokens",
            "getLiquidityPools",
        ]
        assert contents[3]["parts"][0].text == "Done"


class TestParseResponse:
    def test_text_and_calls(self):
        turn = parse_response(
            _response(_call_part("swapTokens", {"amount": "1"}), _text_part("Working on it"))
        )
        assert turn.text == "Working on it"
        assert turn.tool_calls[0].name == "swapTokens"
        assert turn.tool_calls[0].arguments == {"amount": "1"}

    def test_no_candidates(self):
        turn = parse_response(SimpleNamespace(candidates=[]))
        assert turn.text == ""
        assert turn.tool_calls == []


class FakeGenerativeModel:
    created = []

    def __init__(self, model_name, tools=None, system_instruction=None):
        self.model_name = model_name
        self.tools = tools
        self.system_instruction = system_instruction
        self.contents = []
        FakeGenerativeModel.created.append(self)

    def generate_content(self, contents):
        self.contents.append(contents)
        return _response(_text_part("Hello"))


class TestGeminiModel:
    @pytest.mark.asyncio
    async def test_model_is_rebuilt_only_when_tools_change(self, monkeypatch):
        FakeGenerativeModel.created = []
        monkeypatch.setattr(llm.genai, "configure", lambda **kwargs: None)
        monkeypatch.setattr(llm.genai, "GenerativeModel", FakeGenerativeModel)

        model = GeminiModel("key", "gemini-test")
        tools = [{"name": "swapTokens", "description": "Swap", "parameters": {}}]
        history = [{"role": "user", "content": "hi"}]

        turn = await model.generate(history, tools)
        await model.generate(history, tools)
        await model.generate(history, [])

        assert turn.text == "Hello"
        assert len(FakeGenerativeModel.created) == 2
        assert FakeGenerativeModel.created[0].model_name == "gemini-test"
        assert FakeGenerativeModel.created[1].tools is None
        assert FakeGenerativeModel.created[0].contents[0] == [
            {"role": "user", "parts": [{"text": "hi"}]}
        ]
