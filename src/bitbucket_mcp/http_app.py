"""HTTP surface for bitbucket-mcp.

Exposes:
- static MCP info/health/context endpoints
- repository lookup and listing (reshaped summaries)
- pull request lookup and listing (reshaped summaries)
- a generic proxy that relays the raw upstream response

Every endpoint funnels into exactly one Bitbucket call; errors are converted into
an HTTP status plus a JSON ``error`` field and never escape the handler.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from . import __version__
from .bitbucket_client import BitbucketClient, BitbucketProxy
from .config import AppConfig
from .errors import SafeError
from .summaries import (
    PullRequestSummary,
    RepositorySummary,
    summarize_pull_requests,
    summarize_repository,
    summarize_repository_page,
)

logger = logging.getLogger(__name__)

MCP_NAME = "bitbucket-mcp"
MCP_PROTOCOL = "model-context-protocol/1.0"


class RepoRequest(BaseModel):
    workspace: str = Field(min_length=1)
    repo_slug: str = Field(min_length=1)


class ListReposRequest(BaseModel):
    workspace: str = Field(min_length=1)


class PullRequestRequest(BaseModel):
    workspace: str = Field(min_length=1)
    repo_slug: str = Field(min_length=1)
    pr_id: int | None = None


class ProxyRequest(BaseModel):
    method: str
    path: str
    query: dict[str, Any] | None = None
    body: Any | None = None


class RepoResponse(BaseModel):
    repo: RepositorySummary | None = None
    error: str | None = None


class ListReposResponse(BaseModel):
    repos: list[RepositorySummary] = []
    error: str | None = None


class PullRequestResponse(BaseModel):
    pull_requests: list[PullRequestSummary] = []
    error: str | None = None


def status_for_error(err: SafeError) -> int:
    """Map a SafeError code onto the HTTP status returned to the caller."""
    if err.code in {"Bitbucket", "UserInput"}:
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(config: AppConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> FastAPI:
    """Build the FastAPI application bound to ``config``.

    ``transport`` is an optional httpx transport forwarded to outbound clients (tests).
    """
    app = FastAPI(
        title="Bitbucket MCP",
        description="MCP server for Bitbucket integration",
        version=__version__,
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]
        logger.warning("Validation error on %s %s: %s", request.method, request.url.path, details)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid request body", "details": details},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Unexpected failures still answer with a JSON ``error`` body and no internals."""
        logger.exception("Unexpected error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal error"},
        )

    async def call_bitbucket(op: Callable[[BitbucketClient], Awaitable[Any]]) -> Any:
        credentials = config.require_credentials()
        client = BitbucketClient(
            credentials=credentials,
            api_base_url=config.api_base_url,
            timeout_s=config.timeout_s,
            transport=transport,
        )
        return await op(client)

    @app.get("/mcp/info")
    async def mcp_info() -> dict[str, str]:
        return {
            "name": MCP_NAME,
            "version": __version__,
            "description": "MCP server for Bitbucket integration",
            "protocol": MCP_PROTOCOL,
        }

    @app.get("/mcp/health")
    async def mcp_health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/mcp/context")
    async def mcp_context() -> dict[str, str]:
        return {
            "name": MCP_NAME,
            "version": __version__,
            "description": "Bitbucket context provider for MCP",
        }

    @app.post("/bitbucket/repo")
    async def bitbucket_repo(req: RepoRequest) -> JSONResponse:
        try:
            data = await call_bitbucket(lambda c: c.get_repository(req.workspace, req.repo_slug))
        except SafeError as err:
            logger.error("Repository lookup %s/%s failed: %s", req.workspace, req.repo_slug, err.message)
            return JSONResponse(
                status_code=status_for_error(err),
                content=RepoResponse(error=err.message).model_dump(),
            )
        return JSONResponse(content=RepoResponse(repo=summarize_repository(data)).model_dump())

    @app.post("/bitbucket/list_repos")
    async def bitbucket_list_repos(req: ListReposRequest) -> JSONResponse:
        try:
            data = await call_bitbucket(lambda c: c.list_repositories(req.workspace))
        except SafeError as err:
            logger.error("Repository listing for %s failed: %s", req.workspace, err.message)
            return JSONResponse(
                status_code=status_for_error(err),
                content=ListReposResponse(error=err.message).model_dump(),
            )
        return JSONResponse(content=ListReposResponse(repos=summarize_repository_page(data)).model_dump())

    @app.post("/bitbucket/pull_request")
    async def bitbucket_pull_request(req: PullRequestRequest) -> JSONResponse:
        if req.pr_id is not None:
            pr_id = str(req.pr_id)
            op = lambda c: c.get_pullrequest(req.workspace, req.repo_slug, pr_id)  # noqa: E731
        else:
            op = lambda c: c.list_pullrequests(req.workspace, req.repo_slug)  # noqa: E731

        try:
            data = await call_bitbucket(op)
        except SafeError as err:
            logger.error("Pull request lookup %s/%s failed: %s", req.workspace, req.repo_slug, err.message)
            return JSONResponse(
                status_code=status_for_error(err),
                content=PullRequestResponse(error=err.message).model_dump(),
            )
        return JSONResponse(
            content=PullRequestResponse(pull_requests=summarize_pull_requests(data)).model_dump()
        )

    @app.post("/bitbucket/proxy")
    async def bitbucket_proxy(req: ProxyRequest) -> Response:
        try:
            proxy = BitbucketProxy(
                base_url=config.proxy_base_url,
                bearer_token=config.proxy_token,
                credentials=config.credentials,
                timeout_s=config.timeout_s,
                transport=transport,
            )
            upstream = await proxy.forward(method=req.method, path=req.path, query=req.query, body=req.body)
        except SafeError as err:
            logger.error("Proxy %s %s failed: %s", req.method, req.path, err.message)
            return JSONResponse(status_code=status_for_error(err), content={"error": err.message})
        return Response(
            content=upstream.content,
            status_code=upstream.status_code,
            media_type=upstream.content_type,
        )

    return app
