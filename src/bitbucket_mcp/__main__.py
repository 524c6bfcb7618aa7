#!/usr/bin/env python3
"""bitbucket-mcp entry point.

Run:
  python -m bitbucket_mcp                # start MCP server (stdio)
  python -m bitbucket_mcp --http         # start HTTP service on $PORT (default 8080)
  python -m bitbucket_mcp --test         # run lightweight self-tests then exit
"""

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import replace

from bitbucket_mcp.config import load_config_from_env
from bitbucket_mcp.errors import SafeError


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(prog="bitbucket_mcp", add_help=True)
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--http",
        action="store_true",
        help="Serve the JSON HTTP surface instead of MCP over stdio.",
    )
    mode.add_argument(
        "--test",
        action="store_true",
        help="Run built-in server self tests (tool & resource listing) then exit.",
    )
    parser.add_argument("--port", type=int, default=None, help="HTTP port (overrides $PORT).")
    parser.add_argument("--host", default=None, help="HTTP bind address (overrides $HOST).")
    return parser.parse_args(argv)


def configure_logging() -> None:
    """Log to stderr; stdout is reserved for the MCP stdio protocol."""
    logging.basicConfig(
        level=os.getenv("BITBUCKET_MCP_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def main() -> None:
    """CLI dispatcher for the MCP and HTTP servers."""
    args = parse_args(sys.argv[1:])
    configure_logging()

    try:
        config = load_config_from_env()
    except SafeError as exc:
        print(f"Startup configuration error: {exc.message}", file=sys.stderr)
        sys.exit(2)

    try:
        if args.http:
            from bitbucket_mcp.http_server import start_server

            if args.port is not None or args.host is not None:
                config = replace(
                    config,
                    http_port=args.port if args.port is not None else config.http_port,
                    http_host=args.host if args.host is not None else config.http_host,
                )
            start_server(config)
            return

        from bitbucket_mcp.server import run_server, test_server

        if args.test:
            asyncio.run(test_server(config))
        else:
            asyncio.run(run_server(config))
    except KeyboardInterrupt:
        print("\nServer stopped by user", file=sys.stderr)
    except Exception as exc:  # pylint: disable=broad-exception-caught
        print(f"Server error: {exc}", file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
