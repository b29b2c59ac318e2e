"""
Tool registry and router.

Flattens the tools of every active connection into one catalog in the
LLM function-calling format, and maps a tool-call name back to the
connection that should run it.

Routing policy: the first connection in pool order that exposes a name
wins. When several connections expose the same name the resolution says
so (Resolution.kind is COLLISION) instead of hiding it.
"""

from __future__ import annotations

import enum
import logging
from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mcp_chat.adapter import ToolDescriptor
    from mcp_chat.manager import ActiveConnection, ServerPool

logger = logging.getLogger(__name__)


def tool_to_function_schema(tool: "ToolDescriptor") -> dict[str, Any]:
    """Translate an MCP tool into an OpenAI-style function tool entry."""
    function: dict[str, Any] = {"name": tool.name}
    if tool.description is not None:
        function["description"] = tool.description
    function["parameters"] = tool.input_schema
    return {"type": "function", "function": function}


class ResolutionKind(enum.Enum):
    FOUND = "found"
    COLLISION = "collision"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Resolution:
    """Outcome of routing one tool name."""
    kind: ResolutionKind
    tool_name: str
    connection: "ActiveConnection | None" = None
    candidates: tuple[str, ...] = ()

    @property
    def found(self) -> bool:
        return self.connection is not None


class ToolRegistry:
    """
    Catalog and router over a fixed pool.

    The pool is captured at construction; later failures of individual
    tools do not change what is routable.
    """

    def __init__(self, pool: "ServerPool"):
        self._pool = pool
        self.catalog = build_catalog(pool)
        self.collisions = find_collisions(pool)
        if self.collisions:
            logger.warning(
                f"Duplicate tool names across servers: {sorted(self.collisions)}. "
                f"Calls route to the first server in configuration order."
            )

    @property
    def pool(self) -> "ServerPool":
        return self._pool

    @property
    def tool_names(self) -> list[str]:
        return [entry["function"]["name"] for entry in self.catalog]

    def resolve(self, tool_name: str) -> Resolution:
        return resolve(self._pool, tool_name)


def build_catalog(pool: "ServerPool") -> list[dict[str, Any]]:
    """Concatenate every connection's schemas in pool order."""
    catalog: list[dict[str, Any]] = []
    for connection in pool.values():
        catalog.extend(connection.catalog_entries)
    return catalog


def find_collisions(pool: "ServerPool") -> set[str]:
    """Names exposed by more than one connection."""
    counts = Counter(name for connection in pool.values() for name in connection.tool_names)
    return {name for name, count in counts.items() if count > 1}


def resolve(pool: "ServerPool", tool_name: str) -> Resolution:
    owners = [c for c in pool.values() if tool_name in c.tool_names]
    if not owners:
        return Resolution(ResolutionKind.NOT_FOUND, tool_name)

    kind = ResolutionKind.FOUND if len(owners) == 1 else ResolutionKind.COLLISION
    return Resolution(
        kind,
        tool_name,
        connection=owners[0],
        candidates=tuple(c.server_name for c in owners),
    )
