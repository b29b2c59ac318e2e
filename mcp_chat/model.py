"""
Completion model wiring.

The conversation loop talks to any LangChain chat model. This module
builds one from settings, binds the tool catalog, and reads tool-call
requests back out of the model's AI message.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage
from langchain_core.runnables import Runnable

from mcp_chat.config import Settings
from mcp_chat.executor import ToolCallRequest

logger = logging.getLogger(__name__)


def build_chat_model(settings: Settings) -> BaseChatModel:
    """Create the chat model named by settings.model ("provider:model")."""
    from langchain.chat_models import init_chat_model

    kwargs: dict[str, Any] = {"timeout": settings.model_timeout}
    if settings.base_url:
        kwargs["base_url"] = settings.base_url
    logger.info(f"Using model {settings.model}" + (f" at {settings.base_url}" if settings.base_url else ""))
    return init_chat_model(settings.model, **kwargs)


def bind_catalog(model: BaseChatModel, catalog: Sequence[dict]) -> Runnable:
    """Attach tools with automatic tool choice; no tools means a plain model."""
    if not catalog:
        return model
    return model.bind_tools(list(catalog), tool_choice="auto")


def extract_tool_calls(message: AIMessage) -> list[ToolCallRequest]:
    """
    Tool calls requested by an AI message, arguments kept as raw JSON.

    Provider payloads (additional_kwargs["tool_calls"]) keep the original
    order and argument text, so they are preferred. Otherwise the parsed
    tool_calls come first, then the ones LangChain could not parse.
    """
    raw_calls = message.additional_kwargs.get("tool_calls") if message.additional_kwargs else None
    if raw_calls:
        requests = []
        for call in raw_calls:
            function = call.get("function") or {}
            requests.append(ToolCallRequest(
                call_id=call.get("id") or _call_id(),
                tool_name=function.get("name", ""),
                arguments_json=function.get("arguments") or "",
            ))
        return requests

    requests = [
        ToolCallRequest(
            call_id=call.get("id") or _call_id(),
            tool_name=call["name"],
            arguments_json=json.dumps(call.get("args") or {}),
        )
        for call in message.tool_calls
    ]
    requests.extend(
        ToolCallRequest(
            call_id=call.get("id") or _call_id(),
            tool_name=call.get("name") or "",
            arguments_json=call.get("args") or "",
        )
        for call in message.invalid_tool_calls
    )
    return requests


def _call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"
