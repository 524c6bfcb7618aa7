"""Foundational tests: configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from bitbucket_mcp.config import (
    DEFAULT_API_BASE_URL,
    DEFAULT_PROXY_BASE_URL,
    AppConfig,
    Credentials,
    load_config_from_env,
)
from bitbucket_mcp.errors import SafeError

_ENV_VARS = (
    "BITBUCKET_API_EMAIL",
    "BITBUCKET_API_TOKEN",
    "BITBUCKET_API_BASE_URL",
    "BITBUCKET_PROXY_BASE_URL",
    "BITBUCKET_TOKEN",
    "PORT",
    "HOST",
    "BITBUCKET_MCP_TIMEOUT_S",
    "BITBUCKET_MCP_AUDIT_LOG_PATH",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_load_config_defaults_without_credentials() -> None:
    cfg = load_config_from_env()

    assert cfg.credentials is None
    assert cfg.api_base_url == DEFAULT_API_BASE_URL
    assert cfg.proxy_base_url == DEFAULT_PROXY_BASE_URL
    assert cfg.proxy_token is None
    assert cfg.http_port == 8080
    assert cfg.audit_log_path is None


def test_require_credentials_fails_when_missing() -> None:
    cfg = load_config_from_env()

    with pytest.raises(SafeError) as exc:
        _ = cfg.require_credentials()

    assert exc.value.code == "Config"
    assert "BITBUCKET_API_EMAIL" in exc.value.message


@pytest.mark.parametrize(
    ("email", "token"),
    [("me@example.com", ""), ("", "secret"), ("   ", "secret")],
)
def test_blank_credentials_are_treated_as_missing(monkeypatch: pytest.MonkeyPatch, email: str, token: str) -> None:
    monkeypatch.setenv("BITBUCKET_API_EMAIL", email)
    monkeypatch.setenv("BITBUCKET_API_TOKEN", token)

    assert load_config_from_env().credentials is None


def test_load_config_reads_all_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    audit = tmp_path / "audit.jsonl"
    monkeypatch.setenv("BITBUCKET_API_EMAIL", "me@example.com")
    monkeypatch.setenv("BITBUCKET_API_TOKEN", "secret")
    monkeypatch.setenv("BITBUCKET_API_BASE_URL", "http://localhost:9000/2.0/")
    monkeypatch.setenv("BITBUCKET_TOKEN", "bearer-tok")
    monkeypatch.setenv("PORT", "9090")
    monkeypatch.setenv("BITBUCKET_MCP_TIMEOUT_S", "2.5")
    monkeypatch.setenv("BITBUCKET_MCP_AUDIT_LOG_PATH", str(audit))

    cfg = load_config_from_env()

    assert cfg.require_credentials() == Credentials(username="me@example.com", app_password="secret")
    assert cfg.api_base_url == "http://localhost:9000/2.0"
    assert cfg.proxy_token == "bearer-tok"
    assert cfg.http_port == 9090
    assert cfg.timeout_s == 2.5
    assert cfg.audit_log_path == audit


@pytest.mark.parametrize(
    ("name", "value", "fragment"),
    [
        ("PORT", "not-int", "PORT"),
        ("PORT", "70000", "PORT"),
        ("BITBUCKET_MCP_TIMEOUT_S", "soon", "BITBUCKET_MCP_TIMEOUT_S"),
        ("BITBUCKET_MCP_TIMEOUT_S", "0", "BITBUCKET_MCP_TIMEOUT_S"),
        ("BITBUCKET_API_BASE_URL", "ftp://example.com", "BITBUCKET_API_BASE_URL"),
        ("BITBUCKET_MCP_AUDIT_LOG_PATH", "relative.jsonl", "absolute"),
    ],
)
def test_load_config_rejects_invalid_optional_settings(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str, fragment: str
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(SafeError) as exc:
        _ = load_config_from_env()

    assert exc.value.code == "Config"
    assert fragment in exc.value.message


def test_credentials_repr_never_contains_secret() -> None:
    creds = Credentials(username="me@example.com", app_password="super-secret")
    cfg = AppConfig(credentials=creds)

    assert "super-secret" not in repr(creds)
    assert "super-secret" not in repr(cfg)
