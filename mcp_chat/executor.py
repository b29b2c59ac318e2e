"""
Tool call executor: runs one model response's batch of tool calls.

Every call settles into a ToolCallResult. Bad arguments, unknown tools
and tool failures become error results; nothing raised by one call can
abort the batch.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Sequence

from langchain_core.messages import ToolMessage

from mcp_chat.registry import ResolutionKind, ToolRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolCallRequest:
    """A model-issued call, with its arguments still as raw JSON text."""
    call_id: str
    tool_name: str
    arguments_json: str


@dataclass(frozen=True)
class ToolCallResult:
    call_id: str
    tool_name: str
    server_name: str | None = None
    content: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_message(self) -> ToolMessage:
        """The tool-role message fed back to the model."""
        return ToolMessage(
            content=self.content if self.ok else self.error,
            tool_call_id=self.call_id,
            status="success" if self.ok else "error",
        )


def parse_arguments(arguments_json: str | None) -> dict[str, Any]:
    """Decode a tool call's arguments. Empty input means no arguments."""
    if arguments_json is None or not arguments_json.strip():
        return {}
    arguments = json.loads(arguments_json)
    if not isinstance(arguments, dict):
        raise ValueError(f"expected a JSON object, got {type(arguments).__name__}")
    return arguments


class ToolCallExecutor:
    """
    Resolves and runs tool calls concurrently against a registry's pool.

    Args:
        registry: Router over the request's fixed pool.
        invocation_timeout: Optional per-call timeout in seconds, counted
            from when the request is written to the server, not while it
            queues behind other calls to the same server. None means calls
            may take as long as the server needs.
    """

    def __init__(self, registry: ToolRegistry, *, invocation_timeout: float | None = None):
        self.registry = registry
        self.invocation_timeout = invocation_timeout

    async def execute(self, requests: Sequence[ToolCallRequest]) -> list[ToolCallResult]:
        """Run every request; results are in request order."""
        return list(await asyncio.gather(*(self._execute_one(r) for r in requests)))

    async def _execute_one(self, request: ToolCallRequest) -> ToolCallResult:
        name = request.tool_name

        try:
            arguments = parse_arguments(request.arguments_json)
        except (ValueError, RecursionError) as e:
            logger.error(f"Error parsing args for {name}: {e}")
            return ToolCallResult(request.call_id, name, error=f"Error: Invalid arguments - {e}")

        resolution = self.registry.resolve(name)
        if not resolution.found:
            logger.error(f"Tool '{name}' not found in any active server.")
            return ToolCallResult(request.call_id, name, error=f"Error: Tool '{name}' not available.")
        if resolution.kind is ResolutionKind.COLLISION:
            logger.warning(
                f"Tool '{name}' is exposed by {list(resolution.candidates)}, "
                f"using '{resolution.connection.server_name}'"
            )

        server_name = resolution.connection.server_name
        logger.info(f"Executing tool '{name}' on server '{server_name}'...")
        try:
            content = await resolution.connection.adapter.invoke(
                name, arguments, timeout=self.invocation_timeout
            )
        except asyncio.TimeoutError:
            message = f"timed out after {self.invocation_timeout:g}s"
            logger.error(f"Error executing {name}: {message}")
            return ToolCallResult(request.call_id, name, server_name, error=f"Error executing tool: {message}")
        except Exception as e:
            logger.error(f"Error executing {name}: {e}")
            return ToolCallResult(
                request.call_id, name, server_name,
                error=f"Error executing tool: {str(e) or 'Unknown error'}",
            )

        logger.info(f"Tool {name} executed.")
        return ToolCallResult(request.call_id, name, server_name, content=content)
