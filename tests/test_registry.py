import pytest

from mcp_chat.adapter import ToolDescriptor
from mcp_chat.registry import ResolutionKind, ToolRegistry, resolve, tool_to_function_schema

from conftest import FakeFleet, make_descriptor


async def build_pool(**servers):
    fleet = FakeFleet(**{name: {"tools": tools} for name, tools in servers.items()})
    return await fleet.manager().initialize_all([make_descriptor(name) for name in servers])


def test_function_schema_without_description():
    tool = ToolDescriptor(name="ping", input_schema={"type": "object", "properties": {"host": {"type": "string"}}})
    assert tool_to_function_schema(tool) == {
        "type": "function",
        "function": {
            "name": "ping",
            "parameters": {"type": "object", "properties": {"host": {"type": "string"}}},
        },
    }


class TestCatalog:

    @pytest.mark.asyncio
    async def test_catalog_concatenates_in_pool_order(self):
        pool = await build_pool(alpha=["b_tool", "a_tool"], beta=["c_tool"])
        registry = ToolRegistry(pool)

        assert registry.tool_names == ["b_tool", "a_tool", "c_tool"]
        assert registry.collisions == set()

    @pytest.mark.asyncio
    async def test_collisions_are_recorded(self, caplog):
        pool = await build_pool(alpha=["search", "lookup"], beta=["search"])
        registry = ToolRegistry(pool)

        assert registry.collisions == {"search"}
        assert registry.tool_names == ["search", "lookup", "search"]
        assert "Duplicate tool names" in caplog.text

    @pytest.mark.asyncio
    async def test_empty_pool(self):
        pool = await build_pool()
        registry = ToolRegistry(pool)
        assert registry.catalog == []


class TestResolve:

    @pytest.mark.asyncio
    async def test_every_catalog_name_routes_back_to_its_owner(self):
        pool = await build_pool(alpha=["a1", "a2"], beta=["b1"], gamma=["g1", "g2", "g3"])
        registry = ToolRegistry(pool)

        for connection in pool.values():
            for entry in connection.catalog_entries:
                resolution = registry.resolve(entry["function"]["name"])
                assert resolution.kind is ResolutionKind.FOUND
                assert resolution.connection is connection

    @pytest.mark.asyncio
    async def test_collision_goes_to_first_connection(self):
        pool = await build_pool(alpha=["X"], beta=["X", "Y"])

        for _ in range(3):
            resolution = resolve(pool, "X")
            assert resolution.kind is ResolutionKind.COLLISION
            assert resolution.connection.server_name == "alpha"
            assert resolution.candidates == ("alpha", "beta")

    @pytest.mark.asyncio
    async def test_not_found(self):
        pool = await build_pool(alpha=["X"])
        resolution = resolve(pool, "missing")

        assert resolution.kind is ResolutionKind.NOT_FOUND
        assert not resolution.found
        assert resolution.connection is None
