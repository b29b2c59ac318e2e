"""Runtime settings, read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path


def _env_str(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip()
    return normalized or default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float | None) -> float | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """
    Attributes:
        model: LangChain "provider:model" string for init_chat_model.
        base_url: Optional OpenAI-compatible endpoint.
        model_timeout: Seconds before a completion request is abandoned.
        connect_timeout: Seconds allowed for spawn + handshake + tools/list.
        max_iterations: Model passes per request before the loop gives up.
        invocation_timeout: Optional per-tool-call timeout (None = wait).
        working_root: Fallback root for relative server script paths.
        log_level: Root logging level name.
    """
    model: str = "openai:gpt-4o-mini"
    base_url: str | None = None
    model_timeout: float = 300.0
    connect_timeout: float = 30.0
    max_iterations: int = 5
    invocation_timeout: float | None = None
    working_root: Path = field(default_factory=Path.cwd)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            model=_env_str("MCP_CHAT_MODEL", cls.model),
            base_url=_env_str("MCP_CHAT_BASE_URL"),
            model_timeout=_env_float("MCP_CHAT_MODEL_TIMEOUT", cls.model_timeout),
            connect_timeout=_env_float("MCP_CHAT_CONNECT_TIMEOUT", cls.connect_timeout),
            max_iterations=max(1, _env_int("MCP_CHAT_MAX_ITERATIONS", cls.max_iterations)),
            invocation_timeout=_env_float("MCP_CHAT_INVOCATION_TIMEOUT", None),
            working_root=Path(_env_str("MCP_CHAT_WORKING_ROOT", os.getcwd())),
            log_level=(_env_str("MCP_CHAT_LOG_LEVEL", "INFO") or "INFO").upper(),
        )

    def with_overrides(self, **changes) -> "Settings":
        """Copy with the given non-None fields replaced."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})
