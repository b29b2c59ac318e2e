"""
Conversation Loop Driver.

Drives one chat request as a small state machine:

    INITIALIZING → ITERATING → (TOOL_CALLS_PENDING → ITERATING)* → TERMINATED

INITIALIZING connects the configured servers and builds the tool catalog.
ITERATING calls the model once and streams its message. TOOL_CALLS_PENDING
runs the requested tools and streams their results. The iteration budget
caps the number of model calls; running out while the model still asks
for tools ends the request with a warning message, not an error.

Usage:
    loop = ConversationLoop(model, max_iterations=5)
    async for event in loop.run(messages, servers):
        send(encode_sse(event))
"""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, convert_to_messages

from mcp_chat.config import Settings
from mcp_chat.descriptors import ServerDescriptor
from mcp_chat.errors import McpChatError, NoServersAvailableError, UpstreamModelError
from mcp_chat.events import done_event, error_event, message_event
from mcp_chat.executor import ToolCallExecutor, ToolCallRequest
from mcp_chat.manager import ServerPoolManager
from mcp_chat.model import bind_catalog, extract_tool_calls
from mcp_chat.registry import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 5
BUDGET_WARNING = "(Warning: Reached maximum tool call iterations ({limit}).)"


class LoopState(enum.Enum):
    INITIALIZING = "initializing"
    ITERATING = "iterating"
    TOOL_CALLS_PENDING = "tool_calls_pending"
    TERMINATED = "terminated"


@dataclass
class ChatRequest:
    """Inbound request: a message history plus the servers to use."""
    messages: list[dict[str, Any]]
    servers: list[ServerDescriptor] = field(default_factory=list)

    @classmethod
    def from_dict(cls, body: Mapping[str, Any]) -> "ChatRequest":
        messages = body.get("messages")
        servers = body.get("servers")
        if not messages or not isinstance(messages, list) or not isinstance(servers, list):
            raise ValueError("Missing required fields (messages, servers array)")
        return cls(
            messages=list(messages),
            servers=[ServerDescriptor.from_dict(s) for s in servers],
        )


class ConversationLoop:
    """
    One request's model/tool conversation. Instances are single-use.

    Args:
        model: LangChain chat model used for completions.
        max_iterations: Maximum number of model calls.
        invocation_timeout: Optional per-tool-call timeout in seconds.
        pool_manager: Manager that owns this request's connections.
    """

    def __init__(
        self,
        model: BaseChatModel,
        *,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        invocation_timeout: float | None = None,
        pool_manager: ServerPoolManager | None = None,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.model = model
        self.max_iterations = max_iterations
        self.invocation_timeout = invocation_timeout
        self.pool_manager = pool_manager or ServerPoolManager()

        self.state = LoopState.INITIALIZING
        self.iterations = 0
        self.history: list[BaseMessage] = []
        self.registry: ToolRegistry | None = None
        self._servers: Sequence[ServerDescriptor] = ()
        self._bound_model = None
        self._executor: ToolCallExecutor | None = None
        self._pending: list[ToolCallRequest] = []
        self._started = False

        self._handlers: dict[LoopState, Callable[[], Awaitable[list[dict]]]] = {
            LoopState.INITIALIZING: self._initialize,
            LoopState.ITERATING: self._iterate,
            LoopState.TOOL_CALLS_PENDING: self._run_tools,
        }

    @classmethod
    def from_settings(
        cls,
        model: BaseChatModel,
        settings: Settings,
        *,
        working_root: str | os.PathLike | None = None,
    ) -> "ConversationLoop":
        manager = ServerPoolManager(
            connect_timeout=settings.connect_timeout,
            working_root=working_root or settings.working_root,
        )
        return cls(
            model,
            max_iterations=settings.max_iterations,
            invocation_timeout=settings.invocation_timeout,
            pool_manager=manager,
        )

    async def run(
        self,
        messages: Sequence[Any],
        servers: Sequence[ServerDescriptor] = (),
    ) -> AsyncIterator[dict]:
        """
        Yield event frames until the request ends.

        The last frame is "done" on normal completion (including budget
        exhaustion) and "error" on a fatal failure. Every connection is
        closed on every exit path, including the caller abandoning the
        iterator.
        """
        if self._started:
            raise RuntimeError("ConversationLoop instances are single-use")
        self._started = True
        self._servers = list(servers)

        try:
            self.history = list(convert_to_messages(messages))
            while self.state is not LoopState.TERMINATED:
                for event in await self._handlers[self.state]():
                    yield event
            yield done_event()
        except McpChatError as e:
            self.state = LoopState.TERMINATED
            logger.error(f"Chat request failed: {e}")
            yield error_event(str(e))
        except Exception as e:
            self.state = LoopState.TERMINATED
            logger.exception("Unexpected error during stream processing")
            yield error_event(str(e) or "An internal server error occurred during stream processing")
        finally:
            await self.pool_manager.close_all()

    async def _initialize(self) -> list[dict]:
        pool = await self.pool_manager.initialize_all(self._servers)
        if not pool and self._servers:
            raise NoServersAvailableError()

        self.registry = ToolRegistry(pool)
        self._executor = ToolCallExecutor(self.registry, invocation_timeout=self.invocation_timeout)
        self._bound_model = bind_catalog(self.model, self.registry.catalog)
        self.state = LoopState.ITERATING
        return []

    async def _iterate(self) -> list[dict]:
        if self.iterations >= self.max_iterations:
            logger.warning(f"Reached max tool call iterations ({self.max_iterations}).")
            warning = AIMessage(content=BUDGET_WARNING.format(limit=self.max_iterations))
            self.history.append(warning)
            self.state = LoopState.TERMINATED
            return [message_event(warning)]

        self.iterations += 1
        logger.info(
            f"Model call iteration {self.iterations}, "
            f"{len(self.registry.catalog)} total tools available."
        )
        response = await self._complete()
        self.history.append(response)
        events = [message_event(response)]

        self._pending = extract_tool_calls(response)
        if self._pending:
            logger.info(
                f"Iteration {self.iterations}: tool calls requested: "
                f"{[r.tool_name for r in self._pending]}"
            )
            self.state = LoopState.TOOL_CALLS_PENDING
        else:
            logger.info(f"Iteration {self.iterations}: no tool calls requested. Loop finished.")
            self.state = LoopState.TERMINATED
        return events

    async def _complete(self) -> AIMessage:
        try:
            response = await self._bound_model.ainvoke(self.history)
        except Exception as e:
            raise UpstreamModelError(f"Model request failed: {e}") from e
        if not isinstance(response, AIMessage):
            raise UpstreamModelError(f"Model returned {type(response).__name__}, expected an AI message")
        return response

    async def _run_tools(self) -> list[dict]:
        requests, self._pending = self._pending, []
        results = await self._executor.execute(requests)
        events = []
        for result in results:
            message = result.to_message()
            self.history.append(message)
            events.append(message_event(message))
        self.state = LoopState.ITERATING
        return events


def stream_chat(
    body: Mapping[str, Any],
    model: BaseChatModel,
    settings: Settings | None = None,
) -> AsyncIterator[dict]:
    """
    Validate a request body and return its event stream.

    Raises:
        ValueError: the body lacks messages or a servers list, or a server
            entry has no name (before any server is started). Other
            descriptor problems only exclude that server.
    """
    request = ChatRequest.from_dict(body)
    loop = ConversationLoop.from_settings(model, settings or Settings.from_env())
    return loop.run(request.messages, request.servers)
