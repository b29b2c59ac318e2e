"""
Echo MCP tool server, a minimal reference implementation.

Use this as a template for building new tool servers. Its tools are
handy for exercising the client end to end:

  - echo: returns its message back
  - fail: always fails, reported as an isError result

Test:
    echo '{"jsonrpc":"2.0","method":"ping","id":1}' | python mcp_chat/servers/echo.py
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from mcp_chat.server import StdioToolServer, ToolHandler


class EchoTool(ToolHandler):
    name = "echo"
    description = "Echoes back the input message. Useful for testing."
    parameters = {
        "message": {
            "type": "string",
            "description": "The message to echo back",
        },
    }
    required = ["message"]

    def handle(self, params: dict) -> dict:
        message = params.get("message", "")
        prefix = os.environ.get("ECHO_PREFIX", "")
        return {"echoed": prefix + message, "length": len(message)}


class FailTool(ToolHandler):
    name = "fail"
    description = "Always fails with the given reason."
    parameters = {
        "reason": {"type": "string", "description": "Error text to report"},
    }

    def handle(self, params: dict) -> dict:
        raise RuntimeError(params.get("reason") or "requested failure")


if __name__ == "__main__":
    server = StdioToolServer("echo")
    server.register(EchoTool())
    server.register(FailTool())
    server.run()
