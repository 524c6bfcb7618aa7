"""Bitbucket Cloud REST client wrapper.

Provides:
- one outbound request per operation, basic auth, fixed base URL
- finite timeout, no retries
- safe error translation (upstream status + raw body always attached)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from .config import Credentials
from .errors import SafeError, network_error, upstream_error

logger = logging.getLogger(__name__)

PROXY_METHODS = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH"})


def _seg(value: object) -> str:
    """Percent-encode a single path segment."""
    return quote(str(value), safe="")


def _file_path(value: str) -> str:
    return quote(value.lstrip("/"), safe="/")


class BitbucketClient:
    """Minimal Bitbucket Cloud 2.0 REST client."""

    def __init__(
        self,
        *,
        credentials: Credentials,
        api_base_url: str = "https://api.bitbucket.org/2.0",
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create a Bitbucket REST client.

        Args:
            credentials: Basic-auth pair sent with every request.
            api_base_url: API root including the ``/2.0`` prefix.
            timeout_s: Total per-request timeout.
            transport: Optional httpx transport for tests.
        """
        self._auth = httpx.BasicAuth(credentials.username, credentials.app_password)
        self._api_base_url = api_base_url.rstrip("/")
        self._timeout = timeout_s
        self._transport = transport

    def _repo(self, workspace: str, repo_slug: str) -> str:
        return f"/repositories/{_seg(workspace)}/{_seg(repo_slug)}"

    def _pr(self, workspace: str, repo_slug: str, pr_id: str) -> str:
        return f"{self._repo(workspace, repo_slug)}/pullrequests/{_seg(pr_id)}"

    async def request(
        self,
        *,
        method: str,
        path: str,
        json_body: Any | None = None,
        params: dict[str, str] | None = None,
        as_text: bool = False,
    ) -> Any:
        """Make a request and return decoded JSON (or raw text when ``as_text``).

        A 204 or an empty 2xx body decodes to ``{}``.
        """
        url = f"{self._api_base_url}{path}"
        logger.debug("Bitbucket %s %s", method, path)

        async with httpx.AsyncClient(
            auth=self._auth,
            # diff endpoints answer with a same-host redirect
            follow_redirects=True,
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            try:
                resp = await client.request(
                    method,
                    url,
                    headers={"Accept": "text/plain" if as_text else "application/json"},
                    json=json_body,
                    params=params,
                )
            except httpx.HTTPError as exc:
                raise network_error(str(exc) or type(exc).__name__) from exc

        if not resp.is_success:
            logger.info("Bitbucket %s %s returned %s", method, path, resp.status_code)
            raise upstream_error(status_code=resp.status_code, body=resp.text)

        if as_text:
            return resp.text

        if resp.status_code == 204 or not resp.content.strip():
            return {}

        try:
            return resp.json()
        except ValueError as exc:  # JSONDecodeError, UnicodeDecodeError
            raise SafeError(code="Bitbucket", message="Bitbucket returned invalid JSON") from exc

    async def _get(self, path: str, **kwargs: Any) -> Any:
        return await self.request(method="GET", path=path, **kwargs)

    async def _post(self, path: str, body: Any | None = None) -> Any:
        return await self.request(method="POST", path=path, json_body=body)

    async def _put(self, path: str, body: Any) -> Any:
        return await self.request(method="PUT", path=path, json_body=body)

    async def _delete(self, path: str) -> Any:
        return await self.request(method="DELETE", path=path)

    # Users and workspaces

    async def get_user(self) -> Any:
        return await self._get("/user")

    async def list_workspaces(self) -> Any:
        return await self._get("/workspaces")

    async def get_workspace(self, workspace: str) -> Any:
        return await self._get(f"/workspaces/{_seg(workspace)}")

    async def list_users(self, workspace: str) -> Any:
        return await self._get(f"/workspaces/{_seg(workspace)}/members")

    # Repositories

    async def list_repositories(self, workspace: str) -> Any:
        return await self._get(f"/repositories/{_seg(workspace)}")

    async def get_repository(self, workspace: str, repo_slug: str) -> Any:
        return await self._get(self._repo(workspace, repo_slug))

    async def create_repository(self, workspace: str, repo_slug: str, body: dict[str, Any]) -> Any:
        return await self._post(self._repo(workspace, repo_slug), body)

    async def update_repository(self, workspace: str, repo_slug: str, body: dict[str, Any]) -> Any:
        return await self._put(self._repo(workspace, repo_slug), body)

    async def delete_repository(self, workspace: str, repo_slug: str) -> Any:
        return await self._delete(self._repo(workspace, repo_slug))

    # Refs

    async def list_branches(self, workspace: str, repo_slug: str) -> Any:
        return await self._get(f"{self._repo(workspace, repo_slug)}/refs/branches")

    async def get_branch(self, workspace: str, repo_slug: str, name: str) -> Any:
        return await self._get(f"{self._repo(workspace, repo_slug)}/refs/branches/{_seg(name)}")

    async def create_branch(self, workspace: str, repo_slug: str, body: dict[str, Any]) -> Any:
        return await self._post(f"{self._repo(workspace, repo_slug)}/refs/branches", body)

    async def delete_branch(self, workspace: str, repo_slug: str, name: str) -> Any:
        return await self._delete(f"{self._repo(workspace, repo_slug)}/refs/branches/{_seg(name)}")

    async def list_tags(self, workspace: str, repo_slug: str) -> Any:
        return await self._get(f"{self._repo(workspace, repo_slug)}/refs/tags")

    async def create_tag(self, workspace: str, repo_slug: str, body: dict[str, Any]) -> Any:
        return await self._post(f"{self._repo(workspace, repo_slug)}/refs/tags", body)

    # Commits and source

    async def list_commits(self, workspace: str, repo_slug: str) -> Any:
        return await self._get(f"{self._repo(workspace, repo_slug)}/commits")

    async def get_commit(self, workspace: str, repo_slug: str, commit: str) -> Any:
        return await self._get(f"{self._repo(workspace, repo_slug)}/commit/{_seg(commit)}")

    async def list_commit_statuses(self, workspace: str, repo_slug: str, commit: str) -> Any:
        return await self._get(f"{self._repo(workspace, repo_slug)}/commit/{_seg(commit)}/statuses")

    async def get_file_source(self, workspace: str, repo_slug: str, commit: str, path: str) -> str:
        return await self._get(
            f"{self._repo(workspace, repo_slug)}/src/{_seg(commit)}/{_file_path(path)}",
            as_text=True,
        )

    # Pipelines, deployments, downloads

    async def list_pipelines(self, workspace: str, repo_slug: str) -> Any:
        return await self._get(f"{self._repo(workspace, repo_slug)}/pipelines/")

    async def get_pipeline(self, workspace: str, repo_slug: str, pipeline_uuid: str) -> Any:
        return await self._get(f"{self._repo(workspace, repo_slug)}/pipelines/{_seg(pipeline_uuid)}")

    async def trigger_pipeline(self, workspace: str, repo_slug: str, body: dict[str, Any]) -> Any:
        return await self._post(f"{self._repo(workspace, repo_slug)}/pipelines/", body)

    async def list_deployments(self, workspace: str, repo_slug: str) -> Any:
        return await self._get(f"{self._repo(workspace, repo_slug)}/deployments/")

    async def list_downloads(self, workspace: str, repo_slug: str) -> Any:
        return await self._get(f"{self._repo(workspace, repo_slug)}/downloads")

    # Webhooks and branch restrictions

    async def list_webhooks(self, workspace: str, repo_slug: str) -> Any:
        return await self._get(f"{self._repo(workspace, repo_slug)}/hooks")

    async def create_webhook(self, workspace: str, repo_slug: str, body: dict[str, Any]) -> Any:
        return await self._post(f"{self._repo(workspace, repo_slug)}/hooks", body)

    async def delete_webhook(self, workspace: str, repo_slug: str, uid: str) -> Any:
        return await self._delete(f"{self._repo(workspace, repo_slug)}/hooks/{_seg(uid)}")

    async def list_branch_restrictions(self, workspace: str, repo_slug: str) -> Any:
        return await self._get(f"{self._repo(workspace, repo_slug)}/branch-restrictions")

    # Issues

    async def list_issues(self, workspace: str, repo_slug: str) -> Any:
        return await self._get(f"{self._repo(workspace, repo_slug)}/issues")

    async def get_issue(self, workspace: str, repo_slug: str, issue_id: str) -> Any:
        return await self._get(f"{self._repo(workspace, repo_slug)}/issues/{_seg(issue_id)}")

    async def create_issue(self, workspace: str, repo_slug: str, body: dict[str, Any]) -> Any:
        return await self._post(f"{self._repo(workspace, repo_slug)}/issues", body)

    async def delete_issue(self, workspace: str, repo_slug: str, issue_id: str) -> Any:
        return await self._delete(f"{self._repo(workspace, repo_slug)}/issues/{_seg(issue_id)}")

    # Snippets and projects

    async def list_snippets(self, workspace: str) -> Any:
        return await self._get(f"/snippets/{_seg(workspace)}")

    async def get_snippet(self, workspace: str, snippet_id: str) -> Any:
        return await self._get(f"/snippets/{_seg(workspace)}/{_seg(snippet_id)}")

    async def delete_snippet(self, workspace: str, snippet_id: str) -> Any:
        return await self._delete(f"/snippets/{_seg(workspace)}/{_seg(snippet_id)}")

    async def list_projects(self, workspace: str) -> Any:
        return await self._get(f"/workspaces/{_seg(workspace)}/projects")

    async def get_project(self, workspace: str, project_key: str) -> Any:
        return await self._get(f"/workspaces/{_seg(workspace)}/projects/{_seg(project_key)}")

    async def create_project(self, workspace: str, body: dict[str, Any]) -> Any:
        return await self._post(f"/workspaces/{_seg(workspace)}/projects", body)

    async def delete_project(self, workspace: str, project_key: str) -> Any:
        return await self._delete(f"/workspaces/{_seg(workspace)}/projects/{_seg(project_key)}")

    # Pull requests

    async def list_pullrequests(self, workspace: str, repo_slug: str) -> Any:
        return await self._get(f"{self._repo(workspace, repo_slug)}/pullrequests")

    async def create_pullrequest(self, workspace: str, repo_slug: str, body: dict[str, Any]) -> Any:
        return await self._post(f"{self._repo(workspace, repo_slug)}/pullrequests", body)

    async def get_pullrequest(self, workspace: str, repo_slug: str, pr_id: str) -> Any:
        return await self._get(self._pr(workspace, repo_slug, pr_id))

    async def update_pullrequest(self, workspace: str, repo_slug: str, pr_id: str, body: dict[str, Any]) -> Any:
        return await self._put(self._pr(workspace, repo_slug, pr_id), body)

    async def approve_pullrequest(self, workspace: str, repo_slug: str, pr_id: str) -> Any:
        return await self._post(f"{self._pr(workspace, repo_slug, pr_id)}/approve")

    async def unapprove_pullrequest(self, workspace: str, repo_slug: str, pr_id: str) -> Any:
        return await self._delete(f"{self._pr(workspace, repo_slug, pr_id)}/approve")

    async def decline_pullrequest(self, workspace: str, repo_slug: str, pr_id: str) -> Any:
        return await self._post(f"{self._pr(workspace, repo_slug, pr_id)}/decline")

    async def merge_pullrequest(
        self, workspace: str, repo_slug: str, pr_id: str, body: dict[str, Any] | None = None
    ) -> Any:
        return await self._post(f"{self._pr(workspace, repo_slug, pr_id)}/merge", body)

    async def list_pullrequest_comments(self, workspace: str, repo_slug: str, pr_id: str) -> Any:
        return await self._get(f"{self._pr(workspace, repo_slug, pr_id)}/comments")

    async def add_pullrequest_comment(
        self, workspace: str, repo_slug: str, pr_id: str, payload: dict[str, Any]
    ) -> Any:
        """Post a comment; ``payload`` must already be in ``{"content": {"raw": ...}}`` form."""
        return await self._post(f"{self._pr(workspace, repo_slug, pr_id)}/comments", payload)

    async def list_pullrequest_activity(self, workspace: str, repo_slug: str, pr_id: str) -> Any:
        return await self._get(f"{self._pr(workspace, repo_slug, pr_id)}/activity")

    async def get_pullrequest_diff(self, workspace: str, repo_slug: str, pr_id: str) -> str:
        return await self._get(f"{self._pr(workspace, repo_slug, pr_id)}/diff", as_text=True)

    async def get_pullrequest_diffstat(self, workspace: str, repo_slug: str, pr_id: str) -> Any:
        return await self._get(f"{self._pr(workspace, repo_slug, pr_id)}/diffstat")

    async def list_pullrequest_commits(self, workspace: str, repo_slug: str, pr_id: str) -> Any:
        return await self._get(f"{self._pr(workspace, repo_slug, pr_id)}/commits")

    async def list_pullrequest_tasks(self, workspace: str, repo_slug: str, pr_id: str) -> Any:
        return await self._get(f"{self._pr(workspace, repo_slug, pr_id)}/tasks")

    async def add_pullrequest_task(self, workspace: str, repo_slug: str, pr_id: str, body: dict[str, Any]) -> Any:
        return await self._post(f"{self._pr(workspace, repo_slug, pr_id)}/tasks", body)


@dataclass(frozen=True, slots=True)
class ProxyResponse:
    """Raw upstream response relayed by the proxy endpoint."""

    status_code: int
    content: bytes
    content_type: str | None


class BitbucketProxy:
    """Forwards arbitrary requests to the Bitbucket host verbatim.

    ``path`` is appended to the host root, so callers include the ``/2.0`` prefix.
    """

    def __init__(
        self,
        *,
        base_url: str = "https://api.bitbucket.org",
        bearer_token: str | None = None,
        credentials: Credentials | None = None,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if bearer_token is None and credentials is None:
            raise SafeError(
                code="Config",
                message="Missing required configuration (BITBUCKET_TOKEN or BITBUCKET_API_EMAIL/BITBUCKET_API_TOKEN)",
            )
        self._base_url = base_url.rstrip("/")
        self._bearer_token = bearer_token
        self._auth = (
            httpx.BasicAuth(credentials.username, credentials.app_password)
            if bearer_token is None and credentials is not None
            else None
        )
        self._timeout = timeout_s
        self._transport = transport

    async def forward(
        self,
        *,
        method: str,
        path: str,
        query: dict[str, Any] | None = None,
        body: Any | None = None,
    ) -> ProxyResponse:
        """Send one request and return the upstream status and body unchanged.

        Raises:
            SafeError: ``UserInput`` for unsupported methods, ``Network`` on transport failure.
        """
        verb = method.upper()
        if verb not in PROXY_METHODS:
            raise SafeError(code="UserInput", message="Unsupported HTTP method")
        if not path.startswith("/"):
            path = f"/{path}"

        headers = {"Content-Type": "application/json"}
        if self._bearer_token is not None:
            headers["Authorization"] = f"Bearer {self._bearer_token}"

        params = {k: v if isinstance(v, str) else json.dumps(v) for k, v in (query or {}).items()}

        async with httpx.AsyncClient(
            auth=self._auth,
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            try:
                resp = await client.request(
                    verb,
                    f"{self._base_url}{path}",
                    headers=headers,
                    params=params or None,
                    json=body,
                )
            except httpx.HTTPError as exc:
                raise network_error(str(exc) or type(exc).__name__) from exc

        logger.info("Proxied %s %s -> %s", verb, path, resp.status_code)
        return ProxyResponse(
            status_code=resp.status_code,
            content=resp.content,
            content_type=resp.headers.get("content-type"),
        )
