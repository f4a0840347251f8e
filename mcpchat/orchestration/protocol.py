"""Prompt construction and tool-call parsing for text-only models.

The model is told to answer with a ``<tool_call>{...}</tool_call>`` marker
when it wants a tool.  Models drift from that format, so parsing tries an
ordered list of extraction strategies and keeps the first candidate that
decodes as JSON.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Iterable, Optional, Sequence, Tuple

from mcpchat.core.errors import ToolCallParseError
from mcpchat.core.models import ToolCall, ToolDescriptor

logger = logging.getLogger(__name__)

OPEN_TAG = "<tool_call>"
CLOSE_TAG = "</tool_call>"

DEFAULT_INSTRUCTION = "You are a helpful AI assistant. Answer questions clearly and concisely."
NO_DESCRIPTION = "No description"
ARGUMENT_KEYS: Tuple[str, ...] = ("arguments", "parameters")

TOOL_INSTRUCTIONS = f"""INSTRUCTIONS:
1. When you need to use a tool, respond ONLY with the tool call in this exact format:
{OPEN_TAG}{{"name": "tool_name", "arguments": {{"arg1": "value"}}}}{CLOSE_TAG}

2. Do NOT include any other text when making a tool call.
3. Wait for the tool result before continuing.
4. After receiving tool results, provide a helpful response to the user.
5. Only use tools when necessary to answer the user's question."""


def build_instruction(tools: Sequence[ToolDescriptor]) -> str:
    """Render the system instruction advertising ``tools`` to the model."""
    if not tools:
        return DEFAULT_INSTRUCTION

    lines = "\n".join(_describe_tool(tool) for tool in tools)
    return (
        "You are a helpful AI assistant with access to tools.\n\n"
        f"AVAILABLE TOOLS:\n{lines}\n\n"
        f"{TOOL_INSTRUCTIONS}"
    )


def _describe_tool(tool: ToolDescriptor) -> str:
    properties = tool.input_schema.get("properties") or {}
    params = ", ".join(
        f"{name}: {_param_type(prop)}" for name, prop in properties.items()
    )
    return f"- {tool.name}({params}): {tool.description or NO_DESCRIPTION}"


def _param_type(prop: Any) -> str:
    if isinstance(prop, dict):
        kind = prop.get("type")
        if isinstance(kind, list):
            return "|".join(str(k) for k in kind)
        if kind:
            return str(kind)
    return "any"


# -- extraction strategies ---------------------------------------------------

_WELL_FORMED = re.compile(r"<tool_call>(.*?)</tool_call>", re.DOTALL)
_MISSING_SLASH = re.compile(r"<tool_call>(.*?)<tool_call>", re.DOTALL)


def extract_well_formed(text: str) -> Optional[str]:
    """``<tool_call>{...}</tool_call>``"""
    match = _WELL_FORMED.search(text)
    return match.group(1) if match else None


def extract_missing_slash(text: str) -> Optional[str]:
    """``<tool_call>{...}<tool_call>`` and ``<tool_call>{...}><tool_call>``"""
    match = _MISSING_SLASH.search(text)
    return match.group(1) if match else None


def extract_unclosed(text: str) -> Optional[str]:
    """``<tool_call>{...`` with no close tag: take the first balanced object."""
    start = text.find(OPEN_TAG)
    if start == -1:
        return None
    body = text[start + len(OPEN_TAG):]
    brace = body.find("{")
    if brace == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(brace, len(body)):
        char = body[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return body[: index + 1]
    return None


Strategy = Callable[[str], Optional[str]]

EXTRACTION_STRATEGIES: Tuple[Strategy, ...] = (
    extract_well_formed,
    extract_missing_slash,
    extract_unclosed,
)


def parse_tool_call(
    text: str, strategies: Iterable[Strategy] = EXTRACTION_STRATEGIES
) -> Optional[ToolCall]:
    """Return the tool call embedded in ``text``, or ``None``.

    Never raises: unusable markers are logged and treated as plain text.
    """
    if OPEN_TAG not in text:
        return None

    payload = None
    for strategy in strategies:
        candidate = strategy(text)
        if candidate is None:
            continue
        try:
            payload = _decode(candidate)
        except ToolCallParseError as exc:
            logger.debug(f"{strategy.__name__} rejected candidate: {exc}")
            continue
        break

    if payload is None:
        logger.warning("Failed to parse tool call from model output")
        return None

    try:
        return _to_tool_call(payload)
    except ToolCallParseError as exc:
        logger.warning(f"Ignoring tool call: {exc}")
        return None


def _decode(candidate: str) -> Any:
    cleaned = candidate.strip()
    if cleaned.endswith(">"):
        cleaned = cleaned[:-1].rstrip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ToolCallParseError(f"invalid JSON: {exc}") from exc


def _to_tool_call(payload: Any) -> ToolCall:
    if not isinstance(payload, dict):
        raise ToolCallParseError("payload is not a JSON object")

    name = payload.get("name")
    if not name or not isinstance(name, str):
        raise ToolCallParseError("missing tool name")

    arguments: Any = {}
    for key in ARGUMENT_KEYS:
        if payload.get(key) is not None:
            arguments = payload[key]
            break
    if not isinstance(arguments, dict):
        raise ToolCallParseError(f"arguments for {name} are not an object")

    return ToolCall(name=name, arguments=arguments)
