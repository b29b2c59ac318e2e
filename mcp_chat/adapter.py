"""
Protocol client for one MCP tool server.

Usage:
    adapter = ProtocolClientAdapter(descriptor)
    tools = await adapter.connect()
    content = await adapter.invoke("lookup", {"query": "x"})
    await adapter.close()
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any

from mcp_chat import __version__
from mcp_chat.descriptors import ServerDescriptor, resolve_launch
from mcp_chat.errors import McpChatError, ServerConnectionError, ToolInvocationError
from mcp_chat.transport import JsonRpcRequest, StdioTransport, Transport

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"


@dataclass(frozen=True)
class ToolDescriptor:
    """A tool as advertised by a server's tools/list."""
    name: str
    description: str | None = None
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    @classmethod
    def from_dict(cls, data: dict) -> "ToolDescriptor":
        return cls(
            name=data["name"],
            description=data.get("description"),
            input_schema=data.get("inputSchema") or {"type": "object", "properties": {}},
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "inputSchema": self.input_schema}
        if self.description is not None:
            data["description"] = self.description
        return data


class ProtocolClientAdapter:
    """
    Wraps one subprocess connection.

    connect() resolves the launch spec, spawns the server, performs the
    initialize handshake and lists tools. invoke() sends a single
    tools/call. close() is idempotent and safe on a never-connected
    adapter.
    """

    def __init__(
        self,
        descriptor: ServerDescriptor,
        *,
        working_root: str | os.PathLike | None = None,
    ):
        self.descriptor = descriptor
        self.working_root = working_root
        self.tools: list[ToolDescriptor] = []
        self._transport: Transport | None = None
        self._closed = False

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def client_name(self) -> str:
        return f"mcp-chat-{self.descriptor.name}-{self.descriptor.id[:4]}"

    def is_connected(self) -> bool:
        return self._transport is not None and self._transport.is_alive()

    async def connect(self) -> list[ToolDescriptor]:
        """
        Spawn the server, handshake and discover its tools.

        Raises:
            ServerConnectionError: any resolution, spawn or protocol failure
                (ConfigurationError for descriptor problems).
        """
        if self._closed:
            raise ServerConnectionError(f"Adapter for {self.name} is closed", server_name=self.name)

        try:
            launch = resolve_launch(self.descriptor, working_root=self.working_root)
        except ServerConnectionError as e:
            e.server_name = self.name
            raise

        logger.info(f"Connecting to {self.name}: cmd='{launch.command}', script='{launch.script}'")
        transport = StdioTransport(launch.command, launch.args, launch.env, label=self.name)
        self._transport = transport
        await transport.start()

        try:
            await self._handshake(transport)
            self.tools = await self._list_tools(transport)
        except ServerConnectionError:
            raise
        except (McpChatError, RuntimeError, ValueError, KeyError, TypeError) as e:
            raise ServerConnectionError(
                f"Handshake with {self.name} failed: {e}", server_name=self.name
            ) from e

        logger.info(f"Connected to {self.name} ({len(self.tools)} tools)")
        return self.tools

    async def _handshake(self, transport: Transport) -> dict:
        response = await transport.send(JsonRpcRequest(
            method="initialize",
            params={
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": self.client_name, "version": __version__},
            },
        ))
        response.raise_for_error()
        await transport.notify(JsonRpcRequest(method="notifications/initialized"))
        server_info = (response.result or {}).get("serverInfo", {})
        logger.debug(f"{self.name} initialized: {server_info}")
        return response.result or {}

    async def _list_tools(self, transport: Transport) -> list[ToolDescriptor]:
        tools: list[ToolDescriptor] = []
        cursor = None
        while True:
            params = {"cursor": cursor} if cursor else {}
            response = await transport.send(JsonRpcRequest(method="tools/list", params=params))
            response.raise_for_error()
            result = response.result or {}
            tools.extend(ToolDescriptor.from_dict(t) for t in result.get("tools", []))
            cursor = result.get("nextCursor")
            if not cursor:
                return tools

    async def invoke(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        *,
        timeout: float | None = None,
    ) -> str:
        """
        Call a tool on this server. No retry.

        timeout, when set, bounds the exchange once the request is on the
        wire; asyncio.TimeoutError propagates to the caller.

        Returns:
            The result content, as-is when it is a string, JSON otherwise.

        Raises:
            ToolInvocationError: transport fault, JSON-RPC error or an
                isError result.
        """
        if not self.is_connected():
            raise ToolInvocationError(f"Server {self.name} is not running")

        try:
            response = await self._transport.send(JsonRpcRequest(
                method="tools/call",
                params={"name": tool_name, "arguments": arguments},
            ), timeout=timeout)
        except RuntimeError as e:
            raise ToolInvocationError(str(e)) from e
        response.raise_for_error()

        result = response.result or {}
        content = result.get("content", []) if isinstance(result, dict) else result
        if isinstance(result, dict) and result.get("isError"):
            raise ToolInvocationError(_text_of(content) or f"Tool '{tool_name}' reported an error")

        if isinstance(content, str):
            return content
        return json.dumps(content)

    async def close(self) -> None:
        """Terminate the subprocess. Idempotent."""
        self._closed = True
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.stop()


def _text_of(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            item.get("text", "") for item in content
            if isinstance(item, dict) and item.get("type") == "text"
        ]
        return "\n".join(p for p in parts if p)
    return ""
