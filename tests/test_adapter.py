"""
End-to-end tests for ProtocolClientAdapter against the reference servers
in mcp_chat/servers, spawned as real subprocesses.
"""

import json

import pytest

from mcp_chat.adapter import ProtocolClientAdapter, ToolDescriptor
from mcp_chat.errors import ConfigurationError, ServerConnectionError, ToolInvocationError

from conftest import CALCULATOR_SERVER, ECHO_SERVER, make_descriptor


def text_payload(content: str):
    """Decode the JSON text inside a serialized content list."""
    items = json.loads(content)
    assert items[0]["type"] == "text"
    return json.loads(items[0]["text"])


class TestConnect:

    @pytest.mark.asyncio
    async def test_connect_lists_tools(self):
        adapter = ProtocolClientAdapter(make_descriptor("echo", ECHO_SERVER))
        try:
            tools = await adapter.connect()
        finally:
            await adapter.close()

        assert [t.name for t in tools] == ["echo", "fail"]
        echo = tools[0]
        assert echo.description.startswith("Echoes back")
        assert echo.input_schema["required"] == ["message"]

    @pytest.mark.asyncio
    async def test_client_name_uses_server_name_and_id_prefix(self):
        adapter = ProtocolClientAdapter(make_descriptor("echo", ECHO_SERVER))
        assert adapter.client_name == "mcp-chat-echo-echo"

    @pytest.mark.asyncio
    async def test_missing_script(self, tmp_path):
        adapter = ProtocolClientAdapter(make_descriptor("ghost", tmp_path / "ghost.py"), working_root=tmp_path)
        with pytest.raises(ConfigurationError, match="Script not found") as exc_info:
            await adapter.connect()
        assert exc_info.value.server_name == "ghost"
        await adapter.close()

    @pytest.mark.asyncio
    async def test_malformed_env(self):
        adapter = ProtocolClientAdapter(make_descriptor("echo", ECHO_SERVER, env="{oops"))
        with pytest.raises(ServerConnectionError, match="Invalid JSON Env"):
            await adapter.connect()
        await adapter.close()

    @pytest.mark.asyncio
    async def test_handshake_failure(self, tmp_path):
        script = tmp_path / "broken.py"
        script.write_text("import sys\nsys.exit(1)\n")
        adapter = ProtocolClientAdapter(make_descriptor("broken", script))
        try:
            with pytest.raises(ServerConnectionError, match="Handshake with broken failed"):
                await adapter.connect()
        finally:
            await adapter.close()
        assert not adapter.is_connected()


class TestInvoke:

    @pytest.mark.asyncio
    async def test_invoke_returns_serialized_content(self):
        adapter = ProtocolClientAdapter(make_descriptor("echo", ECHO_SERVER))
        await adapter.connect()
        try:
            content = await adapter.invoke("echo", {"message": "hello"})
        finally:
            await adapter.close()

        assert text_payload(content) == {"echoed": "hello", "length": 5}

    @pytest.mark.asyncio
    async def test_descriptor_env_reaches_the_server(self):
        adapter = ProtocolClientAdapter(make_descriptor("echo", ECHO_SERVER, env='{"ECHO_PREFIX": ">> "}'))
        await adapter.connect()
        try:
            content = await adapter.invoke("echo", {"message": "hi"})
        finally:
            await adapter.close()

        assert text_payload(content)["echoed"] == ">> hi"

    @pytest.mark.asyncio
    async def test_tool_error_result(self):
        adapter = ProtocolClientAdapter(make_descriptor("echo", ECHO_SERVER))
        await adapter.connect()
        try:
            with pytest.raises(ToolInvocationError, match="disk full"):
                await adapter.invoke("fail", {"reason": "disk full"})
            # the connection survives a failing tool
            content = await adapter.invoke("echo", {"message": "still here"})
        finally:
            await adapter.close()

        assert text_payload(content)["echoed"] == "still here"

    @pytest.mark.asyncio
    async def test_unknown_tool_is_a_protocol_error(self):
        adapter = ProtocolClientAdapter(make_descriptor("calculator", CALCULATOR_SERVER))
        await adapter.connect()
        try:
            with pytest.raises(ToolInvocationError, match="Unknown tool") as exc_info:
                await adapter.invoke("missing", {})
        finally:
            await adapter.close()
        assert exc_info.value.code == -32602

    @pytest.mark.asyncio
    async def test_calculator_round(self):
        adapter = ProtocolClientAdapter(make_descriptor("calculator", CALCULATOR_SERVER))
        await adapter.connect()
        try:
            content = await adapter.invoke("convert_units", {"value": 10, "from_unit": "km", "to_unit": "miles"})
            with pytest.raises(ToolInvocationError, match="No expression"):
                await adapter.invoke("calculate", {"expression": ""})
        finally:
            await adapter.close()

        assert text_payload(content)["result"] == pytest.approx(6.213712)

    @pytest.mark.asyncio
    async def test_invoke_after_close(self):
        adapter = ProtocolClientAdapter(make_descriptor("echo", ECHO_SERVER))
        await adapter.connect()
        await adapter.close()
        with pytest.raises(ToolInvocationError, match="not running"):
            await adapter.invoke("echo", {"message": "x"})


class TestClose:

    @pytest.mark.asyncio
    async def test_close_twice(self):
        adapter = ProtocolClientAdapter(make_descriptor("echo", ECHO_SERVER))
        await adapter.connect()
        await adapter.close()
        await adapter.close()
        assert not adapter.is_connected()

    @pytest.mark.asyncio
    async def test_close_never_connected(self):
        adapter = ProtocolClientAdapter(make_descriptor("echo", ECHO_SERVER))
        await adapter.close()
        with pytest.raises(ServerConnectionError, match="closed"):
            await adapter.connect()


def test_tool_descriptor_defaults():
    tool = ToolDescriptor.from_dict({"name": "lookup"})
    assert tool.description is None
    assert tool.input_schema == {"type": "object", "properties": {}}
    assert tool.to_dict() == {"name": "lookup", "inputSchema": {"type": "object", "properties": {}}}
