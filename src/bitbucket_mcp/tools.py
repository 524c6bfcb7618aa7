"""Tool registry and dispatch layer.

This module:
- defines the tools (public contract surface), one per Bitbucket client operation
- validates tool arguments against each tool's declared input schema
- funnels every call through a single invoke helper that checks credentials, builds
  the client, performs exactly one client call and translates the outcome into the
  success/error envelope
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from .audit import AuditLogger, build_event, new_correlation_id
from .bitbucket_client import BitbucketClient
from .comments import normalize_comment_input
from .config import AppConfig
from .errors import SafeError, internal_error, safe_error_to_result

logger = logging.getLogger(__name__)

ToolCall = Callable[[BitbucketClient, dict[str, Any]], Awaitable[Any]]

_STRING = {"type": "string", "minLength": 1}
_IDENTIFIER = {"type": ["string", "integer"]}
_OBJECT = {"type": "object"}

PARAMETER_SCHEMAS: dict[str, dict[str, Any]] = {
    "workspace": {**_STRING, "description": "Workspace slug or UUID"},
    "repo_slug": {**_STRING, "description": "Repository slug"},
    "pr_id": {**_IDENTIFIER, "description": "Pull request id"},
    "issue_id": {**_IDENTIFIER, "description": "Issue id"},
    "commit": {**_STRING, "description": "Commit hash or ref name"},
    "path": {**_STRING, "description": "File path within the repository"},
    "name": {**_STRING, "description": "Branch name"},
    "pipeline_uuid": {**_STRING, "description": "Pipeline UUID"},
    "uid": {**_STRING, "description": "Webhook UUID"},
    "snippet_id": {**_STRING, "description": "Snippet id"},
    "project_key": {**_STRING, "description": "Project key"},
    "body": {**_OBJECT, "description": "JSON request body sent to Bitbucket as-is"},
    "comment": {
        "description": 'Comment as {"content": {"raw": "..."}}, {"body": "..."}, or a plain string',
    },
}

_IDENTIFIER_PARAMS = frozenset(k for k, v in PARAMETER_SCHEMAS.items() if v.get("type") == _IDENTIFIER["type"])


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Static descriptor of one tool: name, description, parameters, client call."""

    name: str
    description: str
    required: tuple[str, ...]
    call: ToolCall
    optional: tuple[str, ...] = field(default=())

    @property
    def input_schema(self) -> dict[str, Any]:
        params = (*self.required, *self.optional)
        return {
            "type": "object",
            "required": list(self.required),
            "properties": {p: dict(PARAMETER_SCHEMAS[p]) for p in params},
            "additionalProperties": False,
        }


def _arg(arguments: dict[str, Any], key: str) -> Any:
    value = arguments[key]
    if key in _IDENTIFIER_PARAMS:
        return str(value)
    return value


def _bind(method: str, *required: str, optional: tuple[str, ...] = ()) -> ToolCall:
    """Build a ToolCall that passes arguments positionally to a client method."""

    async def call(client: BitbucketClient, arguments: dict[str, Any]) -> Any:
        args = [_arg(arguments, k) for k in required]
        kwargs = {k: _arg(arguments, k) for k in optional if k in arguments}
        return await getattr(client, method)(*args, **kwargs)

    return call


async def _add_pullrequest_comment(client: BitbucketClient, arguments: dict[str, Any]) -> Any:
    payload = normalize_comment_input(arguments["comment"])
    return await client.add_pullrequest_comment(
        arguments["workspace"],
        arguments["repo_slug"],
        _arg(arguments, "pr_id"),
        payload.to_json(),
    )


def _tool(
    name: str,
    description: str,
    *required: str,
    optional: tuple[str, ...] = (),
    call: ToolCall | None = None,
) -> ToolSpec:
    return ToolSpec(
        name=name,
        description=description,
        required=required,
        optional=optional,
        call=call or _bind(name, *required, optional=optional),
    )


_W = ("workspace",)
_WR = ("workspace", "repo_slug")
_WRP = ("workspace", "repo_slug", "pr_id")

TOOLS: tuple[ToolSpec, ...] = (
    _tool("get_user", "Get the authenticated Bitbucket user."),
    _tool("list_workspaces", "List workspaces visible to the authenticated user."),
    _tool("get_workspace", "Get workspace details.", *_W),
    _tool("list_users", "List members of a workspace.", *_W),
    _tool("list_repositories", "List repositories in a workspace.", *_W),
    _tool("get_repository", "Get repository details.", *_WR),
    _tool("create_repository", "Create a repository (body is the Bitbucket repository object).", *_WR, "body"),
    _tool("update_repository", "Update repository settings.", *_WR, "body"),
    _tool("delete_repository", "Delete a repository.", *_WR),
    _tool("list_branches", "List branches for a repository.", *_WR),
    _tool("get_branch", "Get a single branch.", *_WR, "name"),
    _tool("create_branch", 'Create a branch (body: {"name": ..., "target": {"hash": ...}}).', *_WR, "body"),
    _tool("delete_branch", "Delete a branch.", *_WR, "name"),
    _tool("list_tags", "List tags for a repository.", *_WR),
    _tool("create_tag", 'Create a tag (body: {"name": ..., "target": {"hash": ...}}).', *_WR, "body"),
    _tool("list_commits", "List commits for a repository.", *_WR),
    _tool("get_commit", "Get a single commit.", *_WR, "commit"),
    _tool("list_commit_statuses", "List build statuses for a commit.", *_WR, "commit"),
    _tool("get_file_source", "Read raw file content at a commit or ref.", *_WR, "commit", "path"),
    _tool("list_pipelines", "List pipelines for a repository.", *_WR),
    _tool("get_pipeline", "Get a single pipeline.", *_WR, "pipeline_uuid"),
    _tool("trigger_pipeline", "Trigger a pipeline (body is the Bitbucket pipeline object).", *_WR, "body"),
    _tool("list_deployments", "List deployments for a repository.", *_WR),
    _tool("list_downloads", "List download artifacts for a repository.", *_WR),
    _tool("list_webhooks", "List webhooks for a repository.", *_WR),
    _tool("create_webhook", "Create a repository webhook.", *_WR, "body"),
    _tool("delete_webhook", "Delete a repository webhook.", *_WR, "uid"),
    _tool("list_branch_restrictions", "List branch restrictions for a repository.", *_WR),
    _tool("list_issues", "List issues for a repository.", *_WR),
    _tool("get_issue", "Get a single issue.", *_WR, "issue_id"),
    _tool("create_issue", "Create an issue.", *_WR, "body"),
    _tool("delete_issue", "Delete an issue.", *_WR, "issue_id"),
    _tool("list_snippets", "List snippets for a workspace.", *_W),
    _tool("get_snippet", "Get a single snippet.", *_W, "snippet_id"),
    _tool("delete_snippet", "Delete a snippet.", *_W, "snippet_id"),
    _tool("list_projects", "List projects for a workspace.", *_W),
    _tool("get_project", "Get a single project.", *_W, "project_key"),
    _tool("create_project", "Create a project in a workspace.", *_W, "body"),
    _tool("delete_project", "Delete a project.", *_W, "project_key"),
    _tool("list_pullrequests", "List pull requests for a repository.", *_WR),
    _tool("create_pullrequest", "Create a pull request.", *_WR, "body"),
    _tool("get_pullrequest", "Get a single pull request.", *_WRP),
    _tool("update_pullrequest", "Update a pull request.", *_WRP, "body"),
    _tool("approve_pullrequest", "Approve a pull request.", *_WRP),
    _tool("unapprove_pullrequest", "Remove approval from a pull request.", *_WRP),
    _tool("decline_pullrequest", "Decline a pull request.", *_WRP),
    _tool("merge_pullrequest", "Merge a pull request (optional merge options body).", *_WRP, optional=("body",)),
    _tool("list_pullrequest_comments", "List comments on a pull request.", *_WRP),
    _tool(
        "add_pullrequest_comment",
        "Add a comment to a pull request.",
        *_WRP,
        "comment",
        call=_add_pullrequest_comment,
    ),
    _tool("list_pullrequest_activity", "List activity on a pull request.", *_WRP),
    _tool("get_pullrequest_diff", "Get the unified diff of a pull request (text).", *_WRP),
    _tool("get_pullrequest_diffstat", "Get the diffstat of a pull request.", *_WRP),
    _tool("list_pullrequest_commits", "List commits in a pull request.", *_WRP),
    _tool("list_pullrequest_tasks", "List tasks on a pull request.", *_WRP),
    _tool("add_pullrequest_task", 'Add a task to a pull request (body: {"content": {"raw": ...}}).', *_WRP, "body"),
)

TOOL_SPECS: dict[str, ToolSpec] = {t.name: t for t in TOOLS}

TOOL_METADATA: dict[str, dict[str, Any]] = {
    t.name: {"description": t.description, "inputSchema": t.input_schema} for t in TOOLS
}

_JSON_TYPES: dict[str, type | tuple[type, ...]] = {
    "string": str,
    "integer": int,
    "boolean": bool,
    "array": list,
    "object": dict,
}


def _matches_type(value: Any, expected: str) -> bool:
    if expected == "integer" and isinstance(value, bool):
        return False
    return isinstance(value, _JSON_TYPES[expected])


def validate_tool_arguments(tool_name: str, arguments: dict[str, Any]) -> None:
    """Validate tool arguments against the tool's declared input schema.

    This is intentionally a minimal validator that enforces:
    - required fields
    - no extra properties when additionalProperties=false
    - basic JSON types (a single type name or a list of alternatives)
    - string minLength

    It does NOT implement full JSON Schema.
    """
    if tool_name not in TOOL_METADATA:
        raise SafeError(code="UserInput", message="Unknown tool")

    schema = TOOL_METADATA[tool_name]["inputSchema"]
    props: dict[str, Any] = schema.get("properties", {})
    required: list[str] = schema.get("required", [])

    for k in required:
        if k not in arguments:
            raise SafeError(code="UserInput", message=f"Missing required field: {k}")

    if schema.get("additionalProperties", True) is False:
        extras = sorted(k for k in arguments if k not in props)
        if extras:
            raise SafeError(code="UserInput", message=f"Unexpected fields are not allowed: {', '.join(extras)}")

    for k, spec in props.items():
        if k not in arguments or "type" not in spec:
            continue
        v = arguments[k]
        expected = spec["type"]
        alternatives = expected if isinstance(expected, list) else [expected]
        if not any(_matches_type(v, t) for t in alternatives):
            raise SafeError(code="UserInput", message=f"Field '{k}' must be of type {' or '.join(alternatives)}")

        min_len = spec.get("minLength")
        if isinstance(v, str) and isinstance(min_len, int) and len(v) < min_len:
            raise SafeError(code="UserInput", message=f"Field '{k}' must be at least {min_len} characters")


def _target_from_args(arguments: dict[str, Any]) -> str:
    workspace = arguments.get("workspace")
    repo_slug = arguments.get("repo_slug")
    if isinstance(workspace, str) and workspace:
        if isinstance(repo_slug, str) and repo_slug:
            return f"{workspace}/{repo_slug}"
        return workspace
    return "<none>"


async def invoke_tool(
    spec: ToolSpec,
    arguments: dict[str, Any],
    *,
    config: AppConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Any:
    """Run one tool against Bitbucket: credentials, client, exactly one call.

    Raises:
        SafeError: Config before any network call when credentials are missing;
            UserInput, Network or Bitbucket otherwise.
    """
    credentials = config.require_credentials()
    client = BitbucketClient(
        credentials=credentials,
        api_base_url=config.api_base_url,
        timeout_s=config.timeout_s,
        transport=transport,
    )
    return await spec.call(client, arguments)


async def dispatch_tool(
    name: str,
    arguments: dict[str, Any],
    *,
    config: AppConfig,
    audit: AuditLogger | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """Dispatch a tool call.

    Always returns an envelope that includes correlation_id; never raises.
    """
    audit = audit or AuditLogger(sink_path=config.audit_log_path)
    correlation_id = new_correlation_id()
    target = _target_from_args(arguments)
    start = audit.measure_start()

    try:
        spec = TOOL_SPECS.get(name)
        if spec is None:
            raise SafeError(
                code="UserInput",
                message=f"Unknown tool: {name}",
                hint=f"Available tools: {', '.join(sorted(TOOL_SPECS))}",
            )

        validate_tool_arguments(name, arguments)
        result = await invoke_tool(spec, arguments, config=config, transport=transport)

        audit.write_event(
            build_event(
                correlation_id=correlation_id,
                operation=name,
                target=target,
                outcome="succeeded",
                duration_ms=audit.measure_duration_ms(start),
            )
        )
        return {"ok": True, "correlation_id": correlation_id, "result": result}

    except SafeError as err:
        outcome = "denied" if err.code in {"UserInput", "Config"} else "failed"
        logger.error("Tool %s failed: %s", name, err.message)
        audit.write_event(
            build_event(
                correlation_id=correlation_id,
                operation=name,
                target=target,
                outcome=outcome,
                reason=err.message,
                status_code=err.status_code,
                duration_ms=audit.measure_duration_ms(start),
            )
        )
        out = safe_error_to_result(err)
        out["correlation_id"] = correlation_id
        return out
    except Exception:  # pylint: disable=broad-exception-caught
        logger.exception("Tool %s raised unexpectedly", name)
        audit.write_event(
            build_event(
                correlation_id=correlation_id,
                operation=name,
                target=target,
                outcome="failed",
                reason="Internal error",
                duration_ms=audit.measure_duration_ms(start),
            )
        )
        out = internal_error("Internal error")
        out["correlation_id"] = correlation_id
        return out
