"""HTTP server launcher for bitbucket-mcp.

Example:
    PORT=8080 python -m bitbucket_mcp --http
"""

from __future__ import annotations

import logging

import uvicorn

from .config import AppConfig
from .http_app import create_app

logger = logging.getLogger(__name__)


def start_server(config: AppConfig, *, log_level: str = "info") -> None:
    """Start the HTTP server bound to ``config.http_host``:``config.http_port``."""
    if config.credentials is None:
        logger.warning("BITBUCKET_API_EMAIL/BITBUCKET_API_TOKEN not set; Bitbucket endpoints will return errors")

    app = create_app(config)
    logger.info("Starting MCP server on %s:%s", config.http_host, config.http_port)
    uvicorn.run(app, host=config.http_host, port=config.http_port, log_level=log_level)
