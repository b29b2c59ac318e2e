"""
Server descriptors and launch resolution.

A descriptor is what the front end (or the installer) hands us for one
tool server: a routing name, a script path and a JSON object of
environment variables. Turning it into something spawnable is pure:
no global environment is mutated, the merged table is passed straight
to the subprocess.
"""

from __future__ import annotations

import json
import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from mcp_chat.errors import ConfigurationError


def _node_executable() -> str:
    return shutil.which("node") or "node"


# file extension → launcher
INTERPRETERS = {
    ".py": lambda: sys.executable,
    ".js": _node_executable,
    ".mjs": _node_executable,
    ".cjs": _node_executable,
}


@dataclass(frozen=True)
class ServerDescriptor:
    """One configured tool server, as supplied by the caller."""
    id: str
    name: str
    path: str
    env: str | Mapping[str, Any] = "{}"
    market_id: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ServerDescriptor":
        """
        Accept the installer's `{id, name, path, env, marketId?}` shape.

        Only the routing name is checked here. A missing path or env is
        kept as-is and fails when that one server is launched.

        Raises:
            ValueError: not an object, or no name.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"Server descriptor must be an object, got {type(data).__name__}")
        name = data.get("name")
        if name is None or str(name) == "":
            raise ValueError("Server descriptor is missing 'name'")
        name = str(name)
        path = data.get("path")
        env = data.get("env")
        return cls(
            id=str(data.get("id") or name),
            name=name,
            path=str(path) if path is not None else "",
            env=env if env is not None else "{}",
            market_id=data.get("marketId"),
        )


@dataclass(frozen=True)
class LaunchSpec:
    """Everything needed to spawn one server process."""
    command: str
    args: list[str]
    env: dict[str, str]
    script: Path


def parse_environment(raw: str | Mapping[str, Any] | None) -> dict[str, str]:
    """Parse a descriptor's env into a string → string dict."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON Env: {e}") from e
    else:
        parsed = raw

    if not isinstance(parsed, Mapping):
        raise ConfigurationError("Invalid JSON Env: Env must be JSON object")

    return {
        str(key): value if isinstance(value, str) else json.dumps(value)
        for key, value in parsed.items()
    }


def merge_environment(
    ambient: Mapping[str, str | None],
    overrides: Mapping[str, str],
) -> dict[str, str]:
    """Return a new environment: ambient minus unset entries, then overrides."""
    merged = {key: value for key, value in ambient.items() if value is not None}
    merged.update(overrides)
    return merged


def resolve_script_path(path: str, working_root: str | os.PathLike | None = None) -> Path:
    """Resolve to an absolute file path, falling back to the working root."""
    if not path or not str(path).strip():
        raise ConfigurationError("Script path is required")
    candidate = Path(path).expanduser().resolve()
    if not candidate.exists():
        root = Path(working_root) if working_root else Path.cwd()
        fallback = (root / path).resolve()
        if not fallback.exists():
            raise ConfigurationError(f"Script not found: {path}")
        candidate = fallback

    if not candidate.is_file():
        raise ConfigurationError(f"Path must be a file: {candidate}")
    return candidate


def resolve_launch(
    descriptor: ServerDescriptor,
    *,
    working_root: str | os.PathLike | None = None,
    ambient: Mapping[str, str | None] | None = None,
) -> LaunchSpec:
    """
    Turn a descriptor into a LaunchSpec.

    Raises:
        ConfigurationError: bad env JSON, missing script, not a file,
            or an extension with no known launcher.
    """
    overrides = parse_environment(descriptor.env)
    script = resolve_script_path(descriptor.path, working_root)

    launcher = INTERPRETERS.get(script.suffix.lower())
    if launcher is None:
        supported = ", ".join(sorted(INTERPRETERS))
        raise ConfigurationError(
            f"Unsupported script type '{script.suffix or script.name}' (expected one of: {supported})"
        )

    snapshot = dict(os.environ) if ambient is None else ambient
    return LaunchSpec(
        command=launcher(),
        args=[str(script)],
        env=merge_environment(snapshot, overrides),
        script=script,
    )
