"""
MCP chat client. Lets a chat model call tools served by stdio subprocesses.

Architecture:
    ┌──────────────┐   tool calls   ┌──────────────┐     stdio      ┌──────────────┐
    │  Chat model  │ ─────────────► │ Conversation │ ────────────── │  Tool Server │
    │  (LangChain) │ ◄───────────── │     Loop     │   JSON-RPC     │ (subprocess) │
    └──────────────┘    results     └──────────────┘     pipes      └──────────────┘

Each tool server is a standalone process that communicates via
stdin/stdout using JSON-RPC 2.0 messages (the MCP protocol).

ProtocolClientAdapter wraps one server connection. ServerPoolManager
connects a request's servers concurrently and tears them down.
ToolRegistry flattens their tools into one catalog and routes calls.
ToolCallExecutor runs a batch of calls. ConversationLoop ties it
together and yields message/error/done events.
"""

__version__ = "0.1.0"

from mcp_chat.adapter import ProtocolClientAdapter, ToolDescriptor
from mcp_chat.config import Settings
from mcp_chat.descriptors import ServerDescriptor
from mcp_chat.errors import (
    ConfigurationError,
    McpChatError,
    NoServersAvailableError,
    ServerConnectionError,
    ToolInvocationError,
    UpstreamModelError,
)
from mcp_chat.manager import ActiveConnection, ServerPool, ServerPoolManager
from mcp_chat.registry import Resolution, ResolutionKind, ToolRegistry

# Executor and loop import langchain lazily so the servers stay standalone
_LAZY = {
    "ToolCallExecutor": "mcp_chat.executor",
    "ToolCallRequest": "mcp_chat.executor",
    "ToolCallResult": "mcp_chat.executor",
    "ChatRequest": "mcp_chat.loop",
    "ConversationLoop": "mcp_chat.loop",
    "LoopState": "mcp_chat.loop",
    "stream_chat": "mcp_chat.loop",
}


def __getattr__(name):
    module_name = _LAZY.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    import importlib
    return getattr(importlib.import_module(module_name), name)


__all__ = [
    "ActiveConnection",
    "ChatRequest",
    "ConfigurationError",
    "ConversationLoop",
    "LoopState",
    "McpChatError",
    "NoServersAvailableError",
    "ProtocolClientAdapter",
    "Resolution",
    "ResolutionKind",
    "ServerConnectionError",
    "ServerDescriptor",
    "ServerPool",
    "ServerPoolManager",
    "Settings",
    "ToolCallExecutor",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolDescriptor",
    "ToolInvocationError",
    "ToolRegistry",
    "UpstreamModelError",
    "stream_chat",
]
