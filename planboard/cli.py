"""Command line entrypoint: ``python -m planboard.cli serve|reindex``."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from planboard.config import ConfigError, load_config
from planboard.logging_setup import setup_logging

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 18170


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="planboard",
        description="Index markdown project documents and serve the planboard tools.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP service under uvicorn.")
    serve.add_argument("--host", default=DEFAULT_HOST)
    serve.add_argument("--port", type=int, default=DEFAULT_PORT)

    commands.add_parser("reindex", help="Scan the library once and print a summary.")
    return parser


def _serve(host: str, port: int) -> None:
    import uvicorn

    uvicorn.run("planboard.main:create_app", factory=True, host=host, port=port)


async def _reindex() -> dict:
    from planboard.main import build_services

    config = load_config()
    setup_logging(log_dir=config.log_dir, console_level=config.console_log_level)
    services = build_services(config)
    result = await services.index.reindex()
    return {
        "reindex": result.to_dict(),
        "projects": [project.to_dict() for project in services.index.projects],
    }


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        if args.command == "serve":
            load_config()
            _serve(args.host, args.port)
            return 0
        summary = asyncio.run(_reindex())
    except ConfigError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 2
    print(json.dumps(summary, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
