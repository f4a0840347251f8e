"""Route tool invocations to the connection that owns the tool."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from mcpchat.core.errors import ServerNotConnected, ToolExecutionError
from mcpchat.core.models import ContentPart, OpaquePart, TextPart
from mcpchat.services.mcp import ConnectionRegistry

logger = logging.getLogger(__name__)


class ToolRouter:
    """Forward ``tools/call`` requests through the registry and flatten replies to text."""

    def __init__(self, registry: ConnectionRegistry, *, timeout: Optional[float] = None) -> None:
        self._registry = registry
        self._timeout = timeout

    async def call_tool(self, server_name: str, tool_name: str, arguments: Dict[str, Any]) -> str:
        connection = self._registry.get(server_name)
        if connection is None:
            raise ServerNotConnected(server_name)

        try:
            reply = await asyncio.wait_for(
                connection.call_tool(tool_name, arguments), timeout=self._timeout
            )
        except ServerNotConnected:
            raise
        except asyncio.TimeoutError as exc:
            raise ToolExecutionError(tool_name, f"timed out after {self._timeout}s") from exc
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Error calling tool {tool_name} on {server_name}: {exc}")
            raise ToolExecutionError(tool_name, exc) from exc

        text = render_reply(reply)
        if reply_is_error(reply):
            raise ToolExecutionError(tool_name, text)
        return text


def reply_is_error(reply: Any) -> bool:
    """True when the server flagged the result as a tool-level failure."""
    return _flag(reply, "isError") or _flag(reply, "is_error")


def content_parts(reply: Any) -> Optional[List[ContentPart]]:
    """Classify a reply's content parts, or ``None`` if it has no part sequence."""
    content = _field(reply, "content")
    if not isinstance(content, (list, tuple)):
        return None

    parts: List[ContentPart] = []
    for item in content:
        text = _field(item, "text")
        if isinstance(text, str):
            parts.append(TextPart(text))
        else:
            parts.append(OpaquePart(_to_jsonable(item)))
    return parts


def render_reply(reply: Any) -> str:
    parts = content_parts(reply)
    if parts is None:
        return json.dumps(_to_jsonable(reply), default=str)
    return "\n".join(part.render() for part in parts)


def _field(value: Any, name: str) -> Any:
    if isinstance(value, dict):
        return value.get(name)
    return getattr(value, name, None)


def _flag(value: Any, name: str) -> bool:
    return bool(_field(value, name))


def _to_jsonable(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json", exclude_none=True)
    return value
