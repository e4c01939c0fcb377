"""Unwrapping and schema validation of capability-server tool results."""

from __future__ import annotations

import json
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from defi_agent.errors import CapabilityServerError, ResponseValidationError
from defi_agent.utils.logging import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _content_texts(content: Any) -> list[str]:
    """Collect text payloads from an MCP ``content`` list (text and resource parts)."""
    if not isinstance(content, list):
        return []
    texts: list[str] = []
    for block in content:
        if not isinstance(block, dict):
            continue
        if block.get("type") == "text" and isinstance(block.get("text"), str):
            texts.append(block["text"])
        elif block.get("type") == "resource":
            resource = block.get("resource")
            if isinstance(resource, dict) and isinstance(resource.get("text"), str):
                texts.append(resource["text"])
    return texts


def unwrap_tool_payload(raw: Any) -> Any:
    """Return the logical payload of a tool result.

    Handles ``structuredContent`` and the nested-text convention, where the
    payload is JSON serialized into ``content[].text``. Anything else is
    returned unchanged so it can be validated directly.
    """
    if not isinstance(raw, dict):
        return raw

    if raw.get("isError"):
        message = "\n".join(_content_texts(raw.get("content"))).strip()
        raise CapabilityServerError(message or "Capability server tool call failed.")

    structured = raw.get("structuredContent")
    if structured is not None:
        return structured

    for text in _content_texts(raw.get("content")):
        try:
            return json.loads(text)
        except (TypeError, json.JSONDecodeError):
            continue

    return raw


def parse_tool_response(raw: Any, schema: Type[ModelT]) -> ModelT:
    """Unwrap ``raw`` and validate it against ``schema``.

    Raises:
        ResponseValidationError: carrying the original payload when the data
            does not match the schema.
    """
    if isinstance(raw, BaseModel):
        raw = raw.model_dump(by_alias=True)

    payload = unwrap_tool_payload(raw)
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        summary = _summarize(exc)
        logger.warning(
            "response_validation_failed",
            schema=schema.__name__,
            errors=summary,
        )
        raise ResponseValidationError(
            f"Capability server returned an invalid {schema.__name__}: {summary}",
            payload=raw,
            errors=exc.errors(include_url=False),
        ) from exc


def _summarize(exc: ValidationError, limit: int = 3) -> Optional[str]:
    parts = []
    for error in exc.errors()[:limit]:
        location = ".".join(str(p) for p in error.get("loc", ())) or "<root>"
        parts.append(f"{location}: {error.get('msg')}")
    if exc.error_count() > limit:
        parts.append(f"... {exc.error_count() - limit} more")
    return "; ".join(parts)


__all__ = ["parse_tool_response", "unwrap_tool_payload"]
