"""Configuration loading for bitbucket-mcp.

Configuration is supplied by the host environment (e.g., MCP client config), not by the agent.
It is read once at process start into an immutable AppConfig that is passed to each adapter.
Credential values are secrets and must never be emitted to agents, logs, or audit reasons.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .errors import SafeError, config_error

DEFAULT_API_BASE_URL = "https://api.bitbucket.org/2.0"
DEFAULT_PROXY_BASE_URL = "https://api.bitbucket.org"
DEFAULT_HTTP_PORT = 8080


@dataclass(frozen=True, slots=True)
class Credentials:
    """Basic-auth identifier (Atlassian account email) and secret (API token)."""

    username: str
    app_password: str

    def __repr__(self) -> str:
        return "Credentials(username=<set>, app_password=<redacted>)"


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Process-wide configuration shared by the stdio and HTTP surfaces."""

    credentials: Credentials | None
    api_base_url: str = DEFAULT_API_BASE_URL
    proxy_base_url: str = DEFAULT_PROXY_BASE_URL
    proxy_token: str | None = None
    http_host: str = "0.0.0.0"
    http_port: int = DEFAULT_HTTP_PORT
    timeout_s: float = 30.0
    audit_log_path: Path | None = None

    def require_credentials(self) -> Credentials:
        """Return credentials or fail before any network call is attempted."""
        if self.credentials is None:
            raise config_error(
                "Missing required configuration (BITBUCKET_API_EMAIL, BITBUCKET_API_TOKEN)",
            )
        return self.credentials


def _parse_base_url(value: str | None, *, default: str, name: str) -> str:
    if not value:
        return default
    url = value.strip().rstrip("/")
    if not url.startswith(("https://", "http://")):
        raise config_error(f"{name} must be an http(s) URL")
    return url


def _parse_port(value: str | None) -> int:
    if not value:
        return DEFAULT_HTTP_PORT
    try:
        port = int(value)
    except ValueError as exc:
        raise config_error("PORT must be an integer") from exc
    if not 0 < port < 65536:
        raise config_error("PORT must be between 1 and 65535")
    return port


def _parse_timeout(value: str | None) -> float:
    if not value:
        return 30.0
    try:
        timeout = float(value)
    except ValueError as exc:
        raise config_error("BITBUCKET_MCP_TIMEOUT_S must be a number") from exc
    if timeout <= 0:
        raise config_error("BITBUCKET_MCP_TIMEOUT_S must be positive")
    return timeout


def load_credentials_from_env() -> Credentials | None:
    """Read the basic-auth pair; None when either value is absent or blank."""
    username = (os.getenv("BITBUCKET_API_EMAIL") or "").strip()
    app_password = (os.getenv("BITBUCKET_API_TOKEN") or "").strip()
    if not username or not app_password:
        return None
    return Credentials(username=username, app_password=app_password)


def load_config_from_env() -> AppConfig:
    """Load and validate configuration from environment variables.

    Missing credentials are not an error here: static surfaces (info, health,
    tool listing) work without them, and every remote call checks
    AppConfig.require_credentials() first.

    Raises:
        SafeError: If an optional setting is present but invalid.
    """
    audit_path_raw = os.getenv("BITBUCKET_MCP_AUDIT_LOG_PATH")
    audit_path: Path | None = None
    if audit_path_raw:
        p = Path(audit_path_raw)
        if not p.is_absolute():
            raise SafeError(code="Config", message="BITBUCKET_MCP_AUDIT_LOG_PATH must be an absolute path when set")
        audit_path = p

    proxy_token = (os.getenv("BITBUCKET_TOKEN") or "").strip() or None

    return AppConfig(
        credentials=load_credentials_from_env(),
        api_base_url=_parse_base_url(
            os.getenv("BITBUCKET_API_BASE_URL"), default=DEFAULT_API_BASE_URL, name="BITBUCKET_API_BASE_URL"
        ),
        proxy_base_url=_parse_base_url(
            os.getenv("BITBUCKET_PROXY_BASE_URL"), default=DEFAULT_PROXY_BASE_URL, name="BITBUCKET_PROXY_BASE_URL"
        ),
        proxy_token=proxy_token,
        http_host=os.getenv("HOST") or "0.0.0.0",
        http_port=_parse_port(os.getenv("PORT")),
        timeout_s=_parse_timeout(os.getenv("BITBUCKET_MCP_TIMEOUT_S")),
        audit_log_path=audit_path,
    )
