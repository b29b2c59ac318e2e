"""
Error taxonomy for the MCP chat client.

Per-server and per-call failures are caught where they happen and turned
into data (pool exclusion, error-shaped tool messages). Only
NoServersAvailableError and UpstreamModelError reach the request boundary,
where they become a single terminal error frame.
"""

from __future__ import annotations

from typing import Any


class McpChatError(Exception):
    """Base class for all errors raised by this package."""


class ServerConnectionError(McpChatError):
    """A tool server could not be spawned, handshaken or listed in time."""

    def __init__(self, message: str, *, server_name: str | None = None):
        super().__init__(message)
        self.server_name = server_name


class ConfigurationError(ServerConnectionError):
    """A server descriptor is malformed (env JSON, path, file type)."""


class ToolInvocationError(McpChatError):
    """A single tool call failed."""

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        data: Any = None,
    ):
        super().__init__(message)
        self.code = code
        self.data = data


class NoServersAvailableError(McpChatError):
    """Every descriptor in a non-empty batch failed to connect."""

    def __init__(self, message: str = "Failed to connect to any configured MCP server."):
        super().__init__(message)


class UpstreamModelError(McpChatError):
    """The completion model call failed outright."""
