"""MCP server wiring for bitbucket-mcp.

Exposes every tool from ``tools.TOOLS`` over stdio and serializes each envelope as
a single JSON TextContent.
"""

from __future__ import annotations

import json
import logging
from typing import Any

try:
    from mcp.server import Server
    from mcp.types import CallToolResult, Resource, TextContent, Tool
except ImportError as exc:  # pragma: no cover
    raise ImportError("MCP library not installed. Install with: pip install mcp") from exc

from . import __version__
from .audit import AuditLogger
from .config import AppConfig
from .errors import internal_error
from .tools import TOOL_METADATA, dispatch_tool

logger = logging.getLogger(__name__)

SERVER_NAME = "bitbucket-mcp"
INSTRUCTIONS = (
    "Bitbucket MCP tool: interact with the Bitbucket Cloud REST API. "
    "Set BITBUCKET_API_EMAIL and BITBUCKET_API_TOKEN env vars."
)

RESOURCES = (
    ("bitbucket-mcp://server-status", "Server Status", "Non-secret server configuration"),
    ("bitbucket-mcp://capabilities", "Capabilities", "Available operations"),
)


def build_tools() -> list[Tool]:
    """Tool descriptors for every registered operation."""
    return [
        Tool(name=name, description=meta["description"], inputSchema=meta["inputSchema"])
        for name, meta in TOOL_METADATA.items()
    ]


def build_resources() -> list[Resource]:
    return [Resource(uri=uri, name=name, description=description) for uri, name, description in RESOURCES]


def read_resource_text(config: AppConfig, uri: str) -> str:
    """Render a resource as JSON text."""
    if uri == "bitbucket-mcp://capabilities":
        caps = {
            "server": SERVER_NAME,
            "version": __version__,
            "operations": sorted(TOOL_METADATA.keys()),
            "api_base_url": config.api_base_url,
        }
        return json.dumps(caps, indent=2)

    if uri == "bitbucket-mcp://server-status":
        status: dict[str, Any] = {
            "server": SERVER_NAME,
            "version": __version__,
            "tools_available": len(TOOL_METADATA),
            "configured": config.credentials is not None,
            "api_base_url": config.api_base_url,
            "timeout_s": config.timeout_s,
            "audit": {"file_sink_enabled": config.audit_log_path is not None},
        }
        return json.dumps(status, indent=2)

    return json.dumps({"ok": False, "code": "NotFound", "message": "Unknown resource"}, indent=2)


def create_server(config: AppConfig, *, transport: Any | None = None) -> Server:
    """Build an MCP server bound to ``config``.

    ``transport`` is an optional httpx transport forwarded to the Bitbucket client (tests).
    """
    server: Server = Server(SERVER_NAME, version=__version__, instructions=INSTRUCTIONS)
    audit = AuditLogger(sink_path=config.audit_log_path)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        tools = build_tools()
        logger.info("Listed %s tools", len(tools))
        return tools

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> CallToolResult:
        """Execute a tool and return its JSON envelope, flagged as an error unless ok."""
        if not isinstance(arguments, dict):
            arguments = {}

        logger.info("Tool called: %s", name)

        try:
            raw_result = await dispatch_tool(name, arguments, config=config, audit=audit, transport=transport)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.error("Tool %s failed: %s", name, exc)
            raw_result = internal_error("Tool execution failed")
        return CallToolResult(
            content=[TextContent(type="text", text=json.dumps(raw_result, indent=2, default=str))],
            isError=not raw_result.get("ok", False),
        )

    @server.list_resources()
    async def list_resources() -> list[Resource]:
        return build_resources()

    @server.read_resource()
    async def read_resource(uri: Any) -> str:
        return read_resource_text(config, uri if isinstance(uri, str) else str(uri))

    return server


async def run_server(config: AppConfig) -> None:
    """Run the server over stdio."""
    if config.credentials is None:
        logger.warning("BITBUCKET_API_EMAIL/BITBUCKET_API_TOKEN not set; remote tools will return Config errors")

    from mcp.server.stdio import stdio_server

    server = create_server(config)
    logger.info("Starting Bitbucket MCP server (stdio)")
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


async def test_server(config: AppConfig) -> None:
    """Lightweight self-test to ensure tool/resource listing works."""
    tools = build_tools()
    resources = build_resources()
    for uri, _name, _description in RESOURCES:
        json.loads(read_resource_text(config, uri))
    logger.info("Self-test passed: %s tools, %s resources", len(tools), len(resources))
