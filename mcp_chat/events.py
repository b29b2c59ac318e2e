"""
Outbound event frames.

A chat request produces an ordered stream of frames:
    {"type": "message", "message": {...}}   zero or more
    {"type": "error", "error": "..."}       fatal path, last frame
    {"type": "done"}                        normal path, last frame

Messages are OpenAI-style role-tagged dicts, the same shape the caller
sends in. The encoders render a frame for a concrete transport.
"""

from __future__ import annotations

import json
from typing import Any

from langchain_core.messages import BaseMessage, convert_to_openai_messages

MESSAGE = "message"
ERROR = "error"
DONE = "done"


def message_to_dict(message: BaseMessage) -> dict[str, Any]:
    return convert_to_openai_messages(message)


def message_event(message: BaseMessage) -> dict[str, Any]:
    return {"type": MESSAGE, "message": message_to_dict(message)}


def error_event(error: str) -> dict[str, Any]:
    return {"type": ERROR, "error": error}


def done_event() -> dict[str, Any]:
    return {"type": DONE}


def is_terminal(event: dict[str, Any]) -> bool:
    return event.get("type") in (ERROR, DONE)


def encode_sse(event: dict[str, Any]) -> str:
    """One Server-Sent Events frame."""
    return f"data: {json.dumps(event)}\n\n"


def encode_jsonl(event: dict[str, Any]) -> str:
    return json.dumps(event) + "\n"
