"""
Transport layer for MCP tool communication.

Implements:
  - StdioTransport: newline-delimited JSON-RPC over a child process's
    stdin/stdout, driven by asyncio so many servers can be talked to
    from one event loop.
"""

from __future__ import annotations

import asyncio
import collections
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from mcp_chat.errors import ServerConnectionError, ToolInvocationError

logger = logging.getLogger(__name__)

# Tool results can be large; asyncio's default line limit is 64 KiB.
STREAM_LIMIT = 16 * 1024 * 1024
STDERR_TAIL_LINES = 50

METHOD_NOT_FOUND = -32601


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request. A request without an id is a notification."""
    method: str
    params: dict[str, Any] = field(default_factory=dict)
    id: int | str | None = None

    @property
    def is_notification(self) -> bool:
        return self.id is None

    def to_json(self) -> str:
        payload: dict[str, Any] = {"jsonrpc": "2.0", "method": self.method}
        if self.params:
            payload["params"] = self.params
        if self.id is not None:
            payload["id"] = self.id
        return json.dumps(payload)


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response."""
    id: int | str | None
    result: Any = None
    error: dict | None = None

    @classmethod
    def from_dict(cls, parsed: dict) -> "JsonRpcResponse":
        return cls(
            id=parsed.get("id"),
            result=parsed.get("result"),
            error=parsed.get("error"),
        )

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def raise_for_error(self) -> None:
        """Raise ToolInvocationError carrying the JSON-RPC error fields."""
        if not self.is_error:
            return
        error = self.error if isinstance(self.error, dict) else {"message": str(self.error)}
        raise ToolInvocationError(
            str(error.get("message", "Unknown JSON-RPC error")),
            code=error.get("code"),
            data=error.get("data"),
        )


class Transport(ABC):
    """Abstract transport layer for MCP communication."""

    @abstractmethod
    async def send(self, request: JsonRpcRequest, *, timeout: float | None = None) -> JsonRpcResponse:
        """Send a request and return the matching response."""
        ...

    @abstractmethod
    async def notify(self, request: JsonRpcRequest) -> None:
        """Send a notification; no response is expected."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the transport (e.g., launch subprocess)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the transport. Safe to call more than once."""
        ...

    @abstractmethod
    def is_alive(self) -> bool:
        """Check if the transport is active."""
        ...


class StdioTransport(Transport):
    """
    JSON-RPC over stdin/stdout pipes to a subprocess.

    This is MCP's native local transport. The tool server runs as
    a child process. We write JSON-RPC requests to its stdin and
    read responses from its stdout. One line = one message.

    Requests on one transport are serialized: a request holds the pipe
    until its own response (matched by id) has been read.
    """

    def __init__(
        self,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        *,
        label: str = "",
    ):
        """
        Args:
            command: Interpreter or executable to launch.
            args: Arguments passed to the command (usually the script path).
            env: Complete environment for the subprocess.
            label: Name used in log lines (normally the server name).
        """
        self.command = command
        self.args = list(args or [])
        self.env = env
        self.label = label or command
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task | None = None
        self._stderr_tail: collections.deque[str] = collections.deque(maxlen=STDERR_TAIL_LINES)
        self._lock = asyncio.Lock()
        self._request_id = 0

    async def start(self) -> None:
        """Launch the tool server subprocess."""
        if self.is_alive():
            logger.warning(f"[{self.label}] Transport already running, stopping first")
            await self.stop()

        logger.info(f"[{self.label}] Starting stdio transport: {self.command} {' '.join(self.args)}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise ServerConnectionError(
                f"Failed to spawn '{self.command}': {e}", server_name=self.label
            ) from e
        self._stderr_task = asyncio.create_task(self._drain_stderr(self._process))

    async def stop(self) -> None:
        """Terminate the tool server subprocess."""
        process, self._process = self._process, None
        if process is None:
            return

        if process.stdin and not process.stdin.is_closing():
            process.stdin.close()
        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout=5)
            except asyncio.TimeoutError:
                logger.warning(f"[{self.label}] Tool server did not exit, killing it")
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

        if self._stderr_task:
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass
            self._stderr_task = None
        logger.info(f"[{self.label}] Stdio transport stopped")

    def is_alive(self) -> bool:
        """Check if the subprocess is running."""
        return self._process is not None and self._process.returncode is None

    def next_id(self) -> int:
        """Generate the next request ID."""
        self._request_id += 1
        return self._request_id

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)

    async def notify(self, request: JsonRpcRequest) -> None:
        async with self._lock:
            await self._write(request)

    async def send(self, request: JsonRpcRequest, *, timeout: float | None = None) -> JsonRpcResponse:
        """
        Send a request via stdin and read lines until its response arrives.

        timeout covers only this request's own exchange, starting once the
        pipe is ours; time spent queued behind other requests is not counted.
        """
        if request.is_notification:
            request.id = self.next_id()

        async with self._lock:
            await self._write(request)
            if timeout is None:
                return await self._read_response(request.id)
            return await asyncio.wait_for(self._read_response(request.id), timeout=timeout)

    async def _read_response(self, request_id: int | str) -> JsonRpcResponse:
        while True:
            message = await self._read_message()
            if "method" in message:
                await self._handle_server_message(message)
                continue
            if message.get("id") != request_id:
                logger.debug(f"[{self.label}] Skipping response for unknown id {message.get('id')!r}")
                continue
            return JsonRpcResponse.from_dict(message)

    async def _write(self, request: JsonRpcRequest) -> None:
        if self._process is None:
            raise RuntimeError(f"Transport for '{self.label}' is not running. Call start() first.")
        if self._process.returncode is not None:
            raise RuntimeError(self._died_message())
        await self._write_line(request.to_json())

    async def _write_line(self, text: str) -> None:
        self._process.stdin.write((text + "\n").encode("utf-8"))
        try:
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise RuntimeError(self._died_message()) from e

    async def _read_message(self) -> dict:
        """Read the next JSON object line from stdout."""
        process = self._process
        if process is None:
            raise RuntimeError(f"Transport for '{self.label}' is not running.")

        while True:
            line = await process.stdout.readline()
            if not line:
                # Process may have died; let stderr catch up before reporting
                await asyncio.sleep(0)
                raise RuntimeError(self._died_message())

            text = line.decode("utf-8", errors="replace").strip()
            if not text:
                continue
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                logger.debug(f"[{self.label}] Ignoring non-JSON stdout line: {text[:200]}")
                continue
            if isinstance(message, dict):
                return message
            logger.debug(f"[{self.label}] Ignoring non-object message: {text[:200]}")

    async def _handle_server_message(self, message: dict) -> None:
        """Server-initiated traffic: notifications are dropped, requests answered."""
        method = message.get("method")
        if "id" not in message:
            logger.debug(f"[{self.label}] Notification from server: {method}")
            return

        if method == "ping":
            reply = {"jsonrpc": "2.0", "id": message["id"], "result": {}}
        else:
            reply = {
                "jsonrpc": "2.0",
                "id": message["id"],
                "error": {"code": METHOD_NOT_FOUND, "message": f"Method not found: {method}"},
            }
        await self._write_line(json.dumps(reply))

    async def _drain_stderr(self, process: asyncio.subprocess.Process) -> None:
        while True:
            line = await process.stderr.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            self._stderr_tail.append(text)
            logger.debug(f"[{self.label}] stderr: {text}")

    def _died_message(self) -> str:
        return f"Tool server process died. stderr: {self.stderr_tail[-500:]}"
