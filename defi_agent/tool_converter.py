"""Convert tool declarations to Gemini function declarations and back."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Dict, Iterable, List, Optional

import google.generativeai as genai

_TYPE_MAP = {
    "string": genai.protos.Type.STRING,
    "number": genai.protos.Type.NUMBER,
    "integer": genai.protos.Type.INTEGER,
    "boolean": genai.protos.Type.BOOLEAN,
    "array": genai.protos.Type.ARRAY,
    "object": genai.protos.Type.OBJECT,
}


def _collapse_any_of(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Reduce ``anyOf: [X, null]`` (pydantic Optional) to ``X`` marked nullable."""
    variants = schema.get("anyOf")
    if not variants:
        return schema
    concrete = [v for v in variants if v.get("type") != "null"]
    merged = {k: v for k, v in schema.items() if k != "anyOf"}
    if concrete:
        merged = {**concrete[0], **merged}
    if len(concrete) < len(variants):
        merged["nullable"] = True
    return merged


def json_schema_to_gemini(schema: Dict[str, Any]) -> genai.protos.Schema:
    """Convert a JSON schema fragment into a ``genai.protos.Schema``.

    Only the subset Gemini understands is carried over: type, description,
    enum, nullable, items, properties and required.
    """
    schema = _collapse_any_of(schema)
    json_type = schema.get("type", "object" if "properties" in schema else "string")
    if isinstance(json_type, list):
        json_type = next((t for t in json_type if t != "null"), "string")

    kwargs: Dict[str, Any] = {"type": _TYPE_MAP.get(json_type, genai.protos.Type.STRING)}
    if schema.get("description"):
        kwargs["description"] = schema["description"]
    if schema.get("enum"):
        kwargs["enum"] = [str(value) for value in schema["enum"]]
    if schema.get("nullable"):
        kwargs["nullable"] = True
    if json_type == "array" and isinstance(schema.get("items"), dict):
        kwargs["items"] = json_schema_to_gemini(schema["items"])
    if json_type == "object":
        properties = schema.get("properties") or {}
        if properties:
            kwargs["properties"] = {
                name: json_schema_to_gemini(prop) for name, prop in properties.items()
            }
            required = [name for name in schema.get("required", []) if name in properties]
            if required:
                kwargs["required"] = required
    return genai.protos.Schema(**kwargs)


def to_function_declaration(declaration: Dict[str, Any]) -> genai.protos.FunctionDeclaration:
    parameters: Optional[Dict[str, Any]] = declaration.get("parameters")
    kwargs: Dict[str, Any] = {
        "name": declaration["name"],
        "description": declaration.get("description", ""),
    }
    # Gemini rejects OBJECT schemas without properties.
    if parameters and parameters.get("properties"):
        kwargs["parameters"] = json_schema_to_gemini(parameters)
    return genai.protos.FunctionDeclaration(**kwargs)


def to_function_declarations(
    declarations: Iterable[Dict[str, Any]],
) -> List[genai.protos.FunctionDeclaration]:
    return [to_function_declaration(d) for d in declarations]


def proto_to_python(value: Any) -> Any:
    """Turn proto-plus map/repeated containers into plain dicts and lists."""
    if isinstance(value, (str, bytes)):
        return value
    if isinstance(value, Mapping):
        return {str(k): proto_to_python(v) for k, v in value.items()}
    if isinstance(value, Sequence):
        return [proto_to_python(v) for v in value]
    return value


__all__ = [
    "json_schema_to_gemini",
    "proto_to_python",
    "to_function_declaration",
    "to_function_declarations",
]
