"""HTTP surface tests.

The FastAPI app is driven through TestClient; Bitbucket is an httpx MockTransport.
"""

from __future__ import annotations

import base64
import json

import httpx
import pytest
from bitbucket_mcp.config import AppConfig, Credentials
from bitbucket_mcp.http_app import create_app
from fastapi.testclient import TestClient


class Upstream:
    def __init__(self, routes: dict[tuple[str, str], httpx.Response] | None = None) -> None:
        self._routes = routes or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.raw_path.decode())
        if key not in self._routes:
            return httpx.Response(404, text=f"no route for {key}")
        return self._routes[key]


def _config(*, credentials: bool = True, proxy_token: str | None = None) -> AppConfig:
    return AppConfig(
        credentials=Credentials(username="user@example.com", app_password="secret") if credentials else None,
        api_base_url="https://bb.test/2.0",
        proxy_base_url="https://bb.test",
        proxy_token=proxy_token,
    )


def _client(upstream: Upstream, config: AppConfig | None = None) -> TestClient:
    return TestClient(create_app(config or _config(), transport=httpx.MockTransport(upstream)))


def test_static_endpoints() -> None:
    client = _client(Upstream())

    info = client.get("/mcp/info")
    assert info.status_code == 200
    assert info.json() == {
        "name": "bitbucket-mcp",
        "version": "0.1.0",
        "description": "MCP server for Bitbucket integration",
        "protocol": "model-context-protocol/1.0",
    }

    assert client.get("/mcp/health").json() == {"status": "ok"}

    context = client.get("/mcp/context").json()
    assert context["name"] == "bitbucket-mcp"
    assert context["description"] == "Bitbucket context provider for MCP"


def test_static_endpoints_work_without_credentials() -> None:
    client = _client(Upstream(), _config(credentials=False))

    assert client.get("/mcp/health").status_code == 200


def test_repo_summary() -> None:
    upstream = Upstream(
        {
            ("GET", "/2.0/repositories/ws/repo"): httpx.Response(
                200,
                json={
                    "uuid": "{abc}",
                    "name": "repo",
                    "full_name": "ws/repo",
                    "is_private": True,
                    "links": {"html": {"href": "https://bitbucket.org/ws/repo"}},
                },
            )
        }
    )

    resp = _client(upstream).post("/bitbucket/repo", json={"workspace": "ws", "repo_slug": "repo"})

    assert resp.status_code == 200
    assert resp.json() == {
        "repo": {"uuid": "{abc}", "name": "repo", "full_name": "ws/repo", "is_private": True},
        "error": None,
    }


def test_repo_upstream_error_is_400() -> None:
    upstream = Upstream({("GET", "/2.0/repositories/ws/missing"): httpx.Response(404, text="not found")})

    resp = _client(upstream).post("/bitbucket/repo", json={"workspace": "ws", "repo_slug": "missing"})

    assert resp.status_code == 400
    assert resp.json() == {"repo": None, "error": "Bitbucket API error: 404"}


def test_repo_transport_error_is_500() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = TestClient(create_app(_config(), transport=httpx.MockTransport(handler)))
    resp = client.post("/bitbucket/repo", json={"workspace": "ws", "repo_slug": "repo"})

    assert resp.status_code == 500
    assert resp.json()["error"] == "Request error: connection refused"


@pytest.mark.parametrize(
    ("path", "body"),
    [
        ("/bitbucket/repo", {"workspace": "ws", "repo_slug": "repo"}),
        ("/bitbucket/list_repos", {"workspace": "ws"}),
        ("/bitbucket/pull_request", {"workspace": "ws", "repo_slug": "repo"}),
        ("/bitbucket/pull_request", {"workspace": "ws", "repo_slug": "repo", "pr_id": 3}),
    ],
)
def test_missing_credentials_is_500_without_network(path: str, body: dict) -> None:
    upstream = Upstream()

    resp = _client(upstream, _config(credentials=False)).post(path, json=body)

    assert resp.status_code == 500
    assert "BITBUCKET_API_EMAIL" in resp.json()["error"]
    assert upstream.requests == []


def test_pull_request_upstream_error_is_400() -> None:
    upstream = Upstream(
        {("GET", "/2.0/repositories/ws/repo/pullrequests/9"): httpx.Response(404, text="not found")}
    )

    resp = _client(upstream).post("/bitbucket/pull_request", json={"workspace": "ws", "repo_slug": "repo", "pr_id": 9})

    assert resp.status_code == 400
    assert resp.json() == {"pull_requests": [], "error": "Bitbucket API error: 404"}


def test_undecodable_upstream_body_is_structured_400() -> None:
    upstream = Upstream({("GET", "/2.0/repositories/ws/repo"): httpx.Response(200, content=b'{"name": "\xff\xfe"}')})

    resp = _client(upstream).post("/bitbucket/repo", json={"workspace": "ws", "repo_slug": "repo"})

    assert resp.status_code == 400
    assert resp.json() == {"repo": None, "error": "Bitbucket returned invalid JSON"}


def test_unexpected_failure_returns_json_500() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise RuntimeError("boom")

    app = create_app(_config(), transport=httpx.MockTransport(handler))
    client = TestClient(app, raise_server_exceptions=False)

    resp = client.post("/bitbucket/list_repos", json={"workspace": "ws"})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal error"}
    assert "boom" not in resp.text


def test_list_repos_skips_incomplete_entries() -> None:
    page = {
        "values": [
            {"uuid": "{1}", "name": "a", "full_name": "ws/a", "is_private": False},
            {"uuid": "{2}", "name": "b"},
        ]
    }
    upstream = Upstream({("GET", "/2.0/repositories/ws"): httpx.Response(200, json=page)})

    resp = _client(upstream).post("/bitbucket/list_repos", json={"workspace": "ws"})

    assert resp.status_code == 200
    assert resp.json() == {
        "repos": [{"uuid": "{1}", "name": "a", "full_name": "ws/a", "is_private": False}],
        "error": None,
    }


def test_pull_request_single_round_trip() -> None:
    upstream = Upstream(
        {("GET", "/2.0/repositories/ws/repo/pullrequests/1"): httpx.Response(200, json={"id": 1, "title": "T"})}
    )

    resp = _client(upstream).post("/bitbucket/pull_request", json={"workspace": "ws", "repo_slug": "repo", "pr_id": 1})

    assert resp.status_code == 200
    assert resp.json() == {
        "pull_requests": [{"id": 1, "title": "T", "state": None, "author": None}],
        "error": None,
    }


def test_pull_request_listing() -> None:
    page = {
        "values": [
            {"id": 1, "title": "First", "state": "OPEN", "author": {"display_name": "Ada"}},
            {"id": 2, "title": "Second", "state": "MERGED"},
        ]
    }
    upstream = Upstream({("GET", "/2.0/repositories/ws/repo/pullrequests"): httpx.Response(200, json=page)})

    resp = _client(upstream).post("/bitbucket/pull_request", json={"workspace": "ws", "repo_slug": "repo"})

    assert resp.status_code == 200
    assert resp.json()["pull_requests"] == [
        {"id": 1, "title": "First", "state": "OPEN", "author": "Ada"},
        {"id": 2, "title": "Second", "state": "MERGED", "author": None},
    ]


@pytest.mark.parametrize(
    ("path", "body"),
    [
        ("/bitbucket/repo", {"workspace": "ws"}),
        ("/bitbucket/list_repos", {}),
        ("/bitbucket/pull_request", {"workspace": "ws", "repo_slug": "r", "pr_id": "abc"}),
        ("/bitbucket/proxy", {"path": "/2.0/user"}),
    ],
)
def test_invalid_body_is_400(path: str, body: dict) -> None:
    upstream = Upstream()

    resp = _client(upstream).post(path, json=body)

    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid request body"
    assert resp.json()["details"]
    assert upstream.requests == []


def test_proxy_relays_status_and_body_with_bearer() -> None:
    upstream = Upstream(
        {("GET", "/2.0/user?fields=username"): httpx.Response(200, json={"username": "ada"})}
    )

    resp = _client(upstream, _config(proxy_token="tok")).post(
        "/bitbucket/proxy",
        json={"method": "get", "path": "/2.0/user", "query": {"fields": "username"}},
    )

    assert resp.status_code == 200
    assert resp.json() == {"username": "ada"}
    sent = upstream.requests[0]
    assert sent.headers["Authorization"] == "Bearer tok"
    assert sent.url.host == "bb.test"


def test_proxy_relays_upstream_error_unchanged() -> None:
    upstream = Upstream(
        {("DELETE", "/2.0/repositories/ws/repo"): httpx.Response(403, json={"error": {"message": "Forbidden"}})}
    )

    resp = _client(upstream, _config(proxy_token="tok")).post(
        "/bitbucket/proxy",
        json={"method": "DELETE", "path": "2.0/repositories/ws/repo"},
    )

    assert resp.status_code == 403
    assert resp.json() == {"error": {"message": "Forbidden"}}


def test_proxy_sends_json_body() -> None:
    upstream = Upstream({("POST", "/2.0/repositories/ws/repo/issues"): httpx.Response(201, json={"id": 7})})

    resp = _client(upstream, _config(proxy_token="tok")).post(
        "/bitbucket/proxy",
        json={"method": "POST", "path": "/2.0/repositories/ws/repo/issues", "body": {"title": "Bug"}},
    )

    assert resp.status_code == 201
    assert json.loads(upstream.requests[0].content) == {"title": "Bug"}


def test_proxy_falls_back_to_basic_auth() -> None:
    upstream = Upstream({("GET", "/2.0/user"): httpx.Response(200, json={})})

    resp = _client(upstream).post("/bitbucket/proxy", json={"method": "GET", "path": "/2.0/user"})

    assert resp.status_code == 200
    expected = base64.b64encode(b"user@example.com:secret").decode()
    assert upstream.requests[0].headers["Authorization"] == f"Basic {expected}"


def test_proxy_unsupported_method_is_400() -> None:
    upstream = Upstream()

    resp = _client(upstream, _config(proxy_token="tok")).post(
        "/bitbucket/proxy", json={"method": "TRACE", "path": "/2.0/user"}
    )

    assert resp.status_code == 400
    assert resp.json() == {"error": "Unsupported HTTP method"}
    assert upstream.requests == []


def test_proxy_without_any_credentials_is_500() -> None:
    upstream = Upstream()

    resp = _client(upstream, _config(credentials=False)).post(
        "/bitbucket/proxy", json={"method": "GET", "path": "/2.0/user"}
    )

    assert resp.status_code == 500
    assert "BITBUCKET_TOKEN" in resp.json()["error"]
    assert upstream.requests == []


def test_proxy_relays_binary_body_unchanged() -> None:
    payload = bytes(range(256))
    upstream = Upstream(
        {
            ("GET", "/2.0/repositories/ws/repo/downloads/blob.bin"): httpx.Response(
                200, content=payload, headers={"Content-Type": "application/octet-stream"}
            )
        }
    )

    resp = _client(upstream, _config(proxy_token="tok")).post(
        "/bitbucket/proxy",
        json={"method": "GET", "path": "/2.0/repositories/ws/repo/downloads/blob.bin"},
    )

    assert resp.status_code == 200
    assert resp.content == payload
    assert resp.headers["content-type"] == "application/octet-stream"
