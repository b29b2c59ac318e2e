"""
Shared fixtures for the MCP chat client tests.

FakeAdapter stands in for ProtocolClientAdapter when a test is about
pooling, routing or the loop rather than the wire. ScriptedChatModel is
LangChain's GenericFakeChatModel with tool binding recorded.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from pydantic import Field

from mcp_chat.adapter import ToolDescriptor
from mcp_chat.descriptors import ServerDescriptor
from mcp_chat.errors import ServerConnectionError
from mcp_chat.manager import ServerPoolManager

PROJECT_ROOT = Path(__file__).resolve().parent.parent
ECHO_SERVER = PROJECT_ROOT / "mcp_chat" / "servers" / "echo.py"
CALCULATOR_SERVER = PROJECT_ROOT / "mcp_chat" / "servers" / "calculator.py"


def make_descriptor(name: str, path: str | Path = "/nonexistent/server.py", env: str = "{}") -> ServerDescriptor:
    return ServerDescriptor(id=f"{name}-id", name=name, path=str(path), env=env)


class FakeAdapter:
    """In-memory adapter with scripted connect/invoke behaviour."""

    def __init__(
        self,
        descriptor: ServerDescriptor,
        tools: list[str] | None = None,
        *,
        delay: float = 0,
        error: Exception | None = None,
        results: dict[str, Any] | None = None,
    ):
        self.descriptor = descriptor
        self.tools: list[ToolDescriptor] = []
        self._tools = [
            ToolDescriptor(name=t, description=f"{t} tool") for t in (tools or [])
        ]
        self.delay = delay
        self.error = error
        self.results = results or {}
        self.calls: list[tuple[str, dict]] = []
        self.close_count = 0

    @property
    def name(self) -> str:
        return self.descriptor.name

    async def connect(self) -> list[ToolDescriptor]:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        self.tools = list(self._tools)
        return self.tools

    async def invoke(self, tool_name: str, arguments: dict, *, timeout: float | None = None) -> str:
        self.calls.append((tool_name, arguments))
        result = self.results.get(tool_name, f"{self.name}:{tool_name}")
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return await asyncio.wait_for(result(arguments), timeout=timeout)
        return result

    async def close(self) -> None:
        self.close_count += 1


class FakeFleet:
    """Adapter factory: server name → FakeAdapter settings."""

    def __init__(self, **specs: dict):
        self.specs = specs
        self.adapters: dict[str, list[FakeAdapter]] = {}

    def factory(self, descriptor: ServerDescriptor) -> FakeAdapter:
        spec = self.specs.get(descriptor.name, {"error": ServerConnectionError("Script not found")})
        adapter = FakeAdapter(descriptor, **spec)
        self.adapters.setdefault(descriptor.name, []).append(adapter)
        return adapter

    def manager(self, connect_timeout: float = 1.0) -> ServerPoolManager:
        return ServerPoolManager(connect_timeout=connect_timeout, adapter_factory=self.factory)

    def all_adapters(self) -> list[FakeAdapter]:
        return [a for group in self.adapters.values() for a in group]


class ScriptedChatModel(GenericFakeChatModel):
    """Replays scripted AI messages and records what it was given."""

    bound_tools: list = Field(default_factory=list)
    seen: list = Field(default_factory=list)

    def bind_tools(self, tools, *, tool_choice=None, **kwargs):
        self.bound_tools.append({"tools": list(tools), "tool_choice": tool_choice})
        return self

    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        self.seen.append(list(messages))
        return super()._generate(messages, stop=stop, run_manager=run_manager, **kwargs)


class ExplodingChatModel(GenericFakeChatModel):
    """Fails every completion, like a provider outage."""

    def bind_tools(self, tools, *, tool_choice=None, **kwargs):
        return self

    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        raise RuntimeError("quota exceeded")


def tool_call(name: str, args: dict | None = None, call_id: str = "call_1") -> dict:
    return {"name": name, "args": args or {}, "id": call_id, "type": "tool_call"}
