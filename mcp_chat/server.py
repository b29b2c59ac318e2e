"""
Minimal MCP server side, for writing tool servers the client can spawn.

The server speaks the subset of MCP the client uses: the initialize
handshake, ping, tools/list and tools/call, one JSON-RPC message per
line on stdin/stdout. A tool is a ToolHandler subclass; a failing
handler becomes an isError result rather than a protocol error.

    from mcp_chat.server import StdioToolServer, ToolHandler

    class WordCount(ToolHandler):
        name = "word_count"
        description = "Counts words in a text"
        parameters = {"text": {"type": "string"}}
        required = ["text"]

        def handle(self, params: dict) -> int:
            return len(params["text"].split())

    if __name__ == "__main__":
        server = StdioToolServer("words")
        server.register(WordCount())
        server.run()
"""

from __future__ import annotations

import json
import logging
import sys
from abc import ABC, abstractmethod
from typing import Any, TextIO

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class ToolHandler(ABC):
    """One tool: its name, JSON-schema properties and a synchronous handle()."""

    name: str = ""
    description: str = ""
    parameters: dict[str, dict] = {}
    required: list[str] = []

    @abstractmethod
    def handle(self, params: dict[str, Any]) -> Any:
        """Return the result; strings go out as text, anything else as JSON text."""

    def get_schema(self) -> dict:
        """Return the tool schema for tools/list."""
        schema: dict[str, Any] = {"type": "object", "properties": self.parameters}
        if self.required:
            schema["required"] = list(self.required)
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": schema,
        }


class MethodNotFound(Exception):
    pass


class StdioToolServer:
    """
    MCP tool server that communicates via stdin/stdout.

    Protocol:
    - One JSON-RPC message per line
    - Supports methods:
        - "initialize" → protocol version, capabilities, server info
        - "ping"       → health check
        - "tools/list" → registered tool schemas
        - "tools/call" → calls a tool by name with arguments
    - Notifications (no id) are accepted and never answered.
    """

    def __init__(self, name: str = "mcp-chat-tools", version: str = "0.1.0"):
        self.name = name
        self.version = version
        self._handlers: dict[str, ToolHandler] = {}

    def register(self, handler: ToolHandler) -> None:
        """Register a tool handler."""
        if not handler.name:
            raise ValueError(f"ToolHandler {handler.__class__.__name__} has no name")
        self._handlers[handler.name] = handler
        logger.info(f"Registered tool: {handler.name}")

    def run(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        """
        Main loop: read requests from stdin, dispatch, write responses to stdout.

        This blocks until stdin is closed (parent process terminates).
        """
        stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        logger.info(f"Tool server starting with {len(self._handlers)} tools: "
                    f"{list(self._handlers.keys())}")

        for line in stdin:
            line = line.strip()
            if not line:
                continue

            try:
                request = json.loads(line)
            except json.JSONDecodeError as e:
                self._write_error(None, PARSE_ERROR, f"Parse error: {e}")
                continue

            request_id = request.get("id")
            method = request.get("method", "")
            params = request.get("params") or {}

            if request_id is None:
                logger.debug(f"Notification: {method}")
                continue

            try:
                result = self._dispatch(method, params)
                self._write_result(request_id, result)
            except MethodNotFound as e:
                self._write_error(request_id, METHOD_NOT_FOUND, str(e))
            except ValueError as e:
                self._write_error(request_id, INVALID_PARAMS, str(e))
            except Exception as e:
                self._write_error(request_id, INTERNAL_ERROR, str(e))

    def _dispatch(self, method: str, params: dict) -> Any:
        """Route a method call to the appropriate handler."""

        if method == "initialize":
            return {
                "protocolVersion": params.get("protocolVersion", PROTOCOL_VERSION),
                "capabilities": {"tools": {}},
                "serverInfo": {"name": self.name, "version": self.version},
            }

        if method == "ping":
            return {}

        if method == "tools/list":
            return {"tools": [h.get_schema() for h in self._handlers.values()]}

        if method == "tools/call":
            tool_name = params.get("name", "")
            tool_params = params.get("arguments") or {}

            handler = self._handlers.get(tool_name)
            if not handler:
                raise ValueError(
                    f"Unknown tool: '{tool_name}'. "
                    f"Available: {list(self._handlers.keys())}"
                )

            try:
                output = handler.handle(tool_params)
            except Exception as e:
                logger.error(f"Tool {tool_name} failed: {e}")
                return {"content": [{"type": "text", "text": str(e)}], "isError": True}

            text = output if isinstance(output, str) else json.dumps(output)
            return {"content": [{"type": "text", "text": text}], "isError": False}

        raise MethodNotFound(f"Unknown method: '{method}'")

    def _write(self, payload: dict) -> None:
        self._stdout.write(json.dumps(payload) + "\n")
        self._stdout.flush()

    def _write_result(self, request_id: Any, result: Any) -> None:
        """Write a JSON-RPC success response to stdout."""
        self._write({"jsonrpc": "2.0", "id": request_id, "result": result})

    def _write_error(self, request_id: Any, code: int, message: str) -> None:
        """Write a JSON-RPC error response to stdout."""
        self._write({
            "jsonrpc": "2.0",
            "id": request_id,
            "error": {"code": code, "message": message},
        })
