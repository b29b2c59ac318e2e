"""
Server pool manager: launches and tears down MCP tool server connections.

One manager serves one chat request. It connects to every configured
server concurrently, keeps the ones that answered within the timeout, and
closes everything it ever opened when the request ends.

Usage:
    manager = ServerPoolManager(connect_timeout=30)
    try:
        pool = await manager.initialize_all(descriptors)
        registry = ToolRegistry(pool)
        ...
    finally:
        await manager.close_all()
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Sequence

from mcp_chat.adapter import ProtocolClientAdapter
from mcp_chat.descriptors import ServerDescriptor
from mcp_chat.registry import tool_to_function_schema

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 30.0

AdapterFactory = Callable[[ServerDescriptor], ProtocolClientAdapter]


@dataclass(frozen=True)
class ActiveConnection:
    """A connected server and the tools it exposes."""
    server_name: str
    adapter: ProtocolClientAdapter
    tool_names: frozenset[str]
    catalog_entries: tuple[dict[str, Any], ...]

    @classmethod
    def from_adapter(cls, adapter: ProtocolClientAdapter) -> "ActiveConnection":
        return cls(
            server_name=adapter.name,
            adapter=adapter,
            tool_names=frozenset(t.name for t in adapter.tools),
            catalog_entries=tuple(tool_to_function_schema(t) for t in adapter.tools),
        )


class ServerPool(Mapping):
    """
    Read-only, ordered mapping of server name → ActiveConnection.

    Iteration order is the order of the descriptors that produced the
    connections, which is what routing tie-breaks rely on.
    """

    def __init__(self, connections: Sequence[ActiveConnection] = ()):
        self._connections: dict[str, ActiveConnection] = {}
        for connection in connections:
            self._connections.setdefault(connection.server_name, connection)

    def __getitem__(self, name: str) -> ActiveConnection:
        return self._connections[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._connections)

    def __len__(self) -> int:
        return len(self._connections)

    def __repr__(self) -> str:
        return f"ServerPool({list(self._connections)})"


class ServerPoolManager:
    """
    Manages the lifecycle of MCP tool server connections for one request.

    Responsibilities:
    - Connect to every descriptor concurrently, each under a timeout
    - Exclude (and close) servers that fail, without affecting the others
    - Track every adapter ever created so teardown is complete
    - Snapshot server capabilities for display (probe)
    """

    def __init__(
        self,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        working_root: str | os.PathLike | None = None,
        adapter_factory: AdapterFactory | None = None,
    ):
        self.connect_timeout = connect_timeout
        self.working_root = working_root
        self._adapter_factory = adapter_factory or self._default_adapter
        self._adapters: list[ProtocolClientAdapter] = []
        self.failures: dict[str, str] = {}

    def _default_adapter(self, descriptor: ServerDescriptor) -> ProtocolClientAdapter:
        return ProtocolClientAdapter(descriptor, working_root=self.working_root)

    async def initialize_all(self, descriptors: Sequence[ServerDescriptor]) -> ServerPool:
        """
        Connect to all descriptors concurrently.

        Returns once every attempt has settled. Failed or timed-out
        servers are absent from the result; this never raises for
        per-server problems. failures maps each server name that ended up
        without a connection to its first error.
        """
        results = await asyncio.gather(*(self._connect_one(d) for d in descriptors))

        connections: list[ActiveConnection] = []
        pooled: set[str] = set()
        for descriptor, (adapter, _) in zip(descriptors, results):
            if adapter is None:
                continue
            if descriptor.name in pooled:
                logger.warning(f"Duplicate server name '{descriptor.name}', keeping the first one")
                await self._discard(adapter)
                continue
            pooled.add(descriptor.name)
            connections.append(ActiveConnection.from_adapter(adapter))

        for descriptor, (_, error) in zip(descriptors, results):
            if error is not None and descriptor.name not in pooled:
                self.failures.setdefault(descriptor.name, error)

        pool = ServerPool(connections)
        logger.info(f"Finished initializing {len(pool)} / {len(descriptors)} clients.")
        return pool

    async def _connect_one(
        self, descriptor: ServerDescriptor
    ) -> tuple[ProtocolClientAdapter | None, str | None]:
        adapter = self._adapter_factory(descriptor)
        self._adapters.append(adapter)
        logger.info(f"Connecting to {descriptor.name}...")

        try:
            await asyncio.wait_for(adapter.connect(), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            error = f"Connection timeout ({self.connect_timeout:g}s)"
        except asyncio.CancelledError:
            await self._discard(adapter)
            raise
        except Exception as e:
            error = str(e) or e.__class__.__name__
        else:
            return adapter, None

        logger.error(f"Failed to initialize MCP client for {descriptor.name}: {error}")
        await self._discard(adapter)
        return None, error

    async def _discard(self, adapter: ProtocolClientAdapter) -> None:
        if adapter in self._adapters:
            self._adapters.remove(adapter)
        await self._close(adapter)

    async def _close(self, adapter: ProtocolClientAdapter) -> None:
        try:
            await adapter.close()
        except Exception as e:
            logger.error(f"Error closing client {adapter.name}: {e}")

    async def close_all(self) -> None:
        """Close every adapter this manager created. Never raises."""
        adapters, self._adapters = self._adapters, []
        if not adapters:
            return
        logger.info(f"Cleaning up {len(adapters)} active MCP clients...")
        await asyncio.gather(*(self._close(a) for a in adapters))
        logger.info("Finished cleaning up clients.")

    async def probe(self, descriptors: Sequence[ServerDescriptor]) -> list[dict[str, Any]]:
        """
        Connect, list tools and disconnect, for every descriptor.

        Returns one status entry per descriptor, in input order:
            {"serverName", "tools", "status": "connected"|"error", "error"?}
        """
        if not descriptors:
            raise ValueError("Server configurations array is required")

        async def probe_one(descriptor: ServerDescriptor) -> dict[str, Any]:
            adapter, error = await self._connect_one(descriptor)
            if adapter is None:
                return {
                    "serverName": descriptor.name,
                    "tools": [],
                    "status": "error",
                    "error": error or "Unknown connection error",
                }
            tools = [t.to_dict() for t in adapter.tools]
            await self._discard(adapter)
            return {"serverName": descriptor.name, "tools": tools, "status": "connected"}

        try:
            return list(await asyncio.gather(*(probe_one(d) for d in descriptors)))
        finally:
            await self.close_all()

    async def __aenter__(self) -> "ServerPoolManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close_all()
