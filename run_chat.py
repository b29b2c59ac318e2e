"""
Run Chat: configured MCP servers → tool catalog → model conversation.

This is the command-line front end for the chat client. It:
1. Loads server descriptors from a JSON file
2. Connects to every server (concurrently, with a timeout each)
3. Runs the model/tool conversation for one user message
4. Prints every event frame as it is produced
5. Stops all servers, whatever happened

Usage:
    # Show which tools each configured server exposes
    python run_chat.py --servers servers.json --probe

    # Chat with tools
    python run_chat.py --servers servers.json --message "What is sqrt(2) * pi?"

    # Use a specific model or an OpenAI-compatible endpoint
    MCP_CHAT_BASE_URL=https://api.example.com/v1 \\
        python run_chat.py --servers servers.json --message "Hi" --model openai:deepseek-ai/DeepSeek-V3

servers.json holds a list of descriptors:
    [{"id": "1", "name": "calculator", "path": "mcp_chat/servers/calculator.py", "env": "{}"}]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from mcp_chat.config import Settings
from mcp_chat.descriptors import ServerDescriptor
from mcp_chat.errors import ConfigurationError
from mcp_chat.events import ERROR, encode_jsonl, encode_sse, is_terminal
from mcp_chat.manager import ServerPoolManager

logger = logging.getLogger(__name__)

API_KEY_VARIABLES = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


def load_descriptors(path: Path) -> list[ServerDescriptor]:
    """Read a JSON list of server descriptors."""
    data = json.loads(path.read_text())
    if isinstance(data, dict):
        data = data.get("servers", [])
    if not isinstance(data, list):
        raise ConfigurationError(f"{path} must contain a list of servers")
    return [ServerDescriptor.from_dict(entry) for entry in data]


def missing_api_key(model: str) -> str | None:
    """Name of the provider key variable if it is required and unset."""
    provider = model.split(":", 1)[0] if ":" in model else "openai"
    variable = API_KEY_VARIABLES.get(provider)
    if variable and not os.environ.get(variable):
        return variable
    return None


async def run_probe(descriptors: list[ServerDescriptor], settings: Settings) -> int:
    manager = ServerPoolManager(
        connect_timeout=settings.connect_timeout,
        working_root=settings.working_root,
    )
    results = await manager.probe(descriptors)
    print(json.dumps(results, indent=2))
    return 0 if any(r["status"] == "connected" for r in results) else 1


async def run_chat(
    descriptors: list[ServerDescriptor],
    message: str,
    settings: Settings,
    output_format: str,
) -> int:
    from mcp_chat.loop import ConversationLoop
    from mcp_chat.model import build_chat_model

    encode = encode_sse if output_format == "sse" else encode_jsonl
    loop = ConversationLoop.from_settings(build_chat_model(settings), settings)

    exit_code = 0
    events = loop.run([{"role": "user", "content": message}], descriptors)
    try:
        async for event in events:
            sys.stdout.write(encode(event))
            sys.stdout.flush()
            if is_terminal(event):
                exit_code = 1 if event["type"] == ERROR else 0
    finally:
        await events.aclose()
    return exit_code


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Chat with a model that can call tools from MCP stdio servers.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_chat.py --servers servers.json --probe
  python run_chat.py --servers servers.json --message "Convert 10 km to miles"
        """,
    )
    parser.add_argument("--servers", "-s", type=Path, default=None, help="JSON file with server descriptors (default: no servers)")
    parser.add_argument("--message", type=str, help="User message to send")
    parser.add_argument("--probe", action="store_true", help="List each server's tools and exit")
    parser.add_argument("--model", "-m", type=str, default=None, help="Model override (e.g., openai:gpt-4o-mini)")
    parser.add_argument("--max-iterations", type=int, default=None, help="Maximum model calls per request")
    parser.add_argument("--format", choices=["jsonl", "sse"], default="jsonl", help="Event output format")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")

    args = parser.parse_args(argv)

    settings = Settings.from_env().with_overrides(model=args.model, max_iterations=args.max_iterations)
    logging.basicConfig(level=settings.log_level, format="%(levelname)s: %(message)s", stream=sys.stderr)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        descriptors = load_descriptors(args.servers) if args.servers else []
    except (OSError, ValueError, ConfigurationError) as e:
        parser.error(f"could not load servers: {e}")

    if args.probe:
        if not descriptors:
            parser.error("--probe needs --servers")
        return asyncio.run(run_probe(descriptors, settings))

    if not args.message:
        parser.error("--message is required (or use --probe)")

    variable = missing_api_key(settings.model)
    if variable:
        print(f"\n⚠  {variable} not set. Cannot invoke the model.", file=sys.stderr)
        print("   Export it, then re-run. Use --probe to check servers without a model.", file=sys.stderr)
        return 2

    try:
        return asyncio.run(run_chat(descriptors, args.message, settings, args.format))
    except KeyboardInterrupt:
        print("\nInterrupted; MCP servers stopped.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
