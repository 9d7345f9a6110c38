"""infill CLI.

Usage:
    infill serve --config default --port 8013
    infill complete path/to/file.py --line 10 --character 4
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

import uvicorn

from .coordinator import CompletionRequest, RequestCoordinator
from .core.config import load_config
from .core.document import Position, TextDocument
from .core.errors import ConfigurationError
from .inference import get_inference_client


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP service."""
    from .api import configure_web_app, web_app

    configure_web_app(load_config(args.config))
    uvicorn.run(web_app, host=args.host, port=args.port, log_level=args.log_level.lower())
    return 0


async def _complete_once(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    path = Path(args.file)
    document = TextDocument(path.read_text(encoding="utf-8"), str(path))
    if args.line >= document.line_count:
        print(f"Error: line {args.line} is outside the file", file=sys.stderr)
        return 1
    coordinator = RequestCoordinator(cfg, get_inference_client("llama", cfg))
    try:
        result = await coordinator.complete(
            CompletionRequest(
                document=document,
                position=Position(args.line, args.character),
                trigger="invoked",
            )
        )
    finally:
        await coordinator.stop()
    if result.suggestion is None:
        print(f"No suggestion ({result.outcome})", file=sys.stderr)
        return 1 if result.outcome == "failed" else 0
    print(result.suggestion)
    return 0


def cmd_complete(args: argparse.Namespace) -> int:
    """Request one suggestion for a position in a file."""
    return asyncio.run(_complete_once(args))


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="infill",
        description="infill: cached fill-in-the-middle code completion",
    )
    parser.add_argument(
        "--config",
        default=os.environ.get("INFILL_CONFIG_NAME", "default"),
        help="YAML profile under infill/core/configs",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP service")
    serve_parser.add_argument("--host", default=os.environ.get("INFILL_API_HOST", "127.0.0.1"))
    serve_parser.add_argument(
        "--port", type=int, default=int(os.environ.get("INFILL_API_PORT", "8013")),
    )
    serve_parser.set_defaults(func=cmd_serve)

    # complete command
    complete_parser = subparsers.add_parser("complete", help="Request one suggestion")
    complete_parser.add_argument("file", help="Source file")
    complete_parser.add_argument("--line", type=int, required=True, help="Zero-based line")
    complete_parser.add_argument("--character", type=int, default=0, help="Zero-based column")
    complete_parser.set_defaults(func=cmd_complete)

    args = parser.parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
