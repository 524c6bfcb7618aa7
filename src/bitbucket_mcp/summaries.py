"""Reshaped views used by the HTTP surface.

Only two responses are reshaped; everything else is passed through unchanged.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class RepositorySummary(BaseModel):
    uuid: str
    name: str
    full_name: str
    is_private: bool


class PullRequestSummary(BaseModel):
    id: int
    title: str
    state: str | None = None
    author: str | None = None


def _str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    return value if isinstance(value, str) else None


def summarize_repository(data: Any) -> RepositorySummary:
    """Summary of a single repository; absent or mistyped fields fall back to empty values."""
    if not isinstance(data, dict):
        data = {}
    is_private = data.get("is_private")
    return RepositorySummary(
        uuid=_str(data, "uuid") or "",
        name=_str(data, "name") or "",
        full_name=_str(data, "full_name") or "",
        is_private=is_private if isinstance(is_private, bool) else False,
    )


def summarize_repository_page(data: Any) -> list[RepositorySummary]:
    """Summaries for a ``values`` page, skipping entries without the four fields."""
    values = data.get("values") if isinstance(data, dict) else None
    if not isinstance(values, list):
        return []

    out: list[RepositorySummary] = []
    for repo in values:
        if not isinstance(repo, dict):
            continue
        uuid = _str(repo, "uuid")
        name = _str(repo, "name")
        full_name = _str(repo, "full_name")
        is_private = repo.get("is_private")
        if uuid is None or name is None or full_name is None or not isinstance(is_private, bool):
            continue
        out.append(RepositorySummary(uuid=uuid, name=name, full_name=full_name, is_private=is_private))
    return out


def _pull_request(pr: Any) -> PullRequestSummary | None:
    if not isinstance(pr, dict):
        return None
    pr_id = pr.get("id")
    title = _str(pr, "title")
    # bool is an int subclass
    if not isinstance(pr_id, int) or isinstance(pr_id, bool) or title is None:
        return None
    author = pr.get("author")
    return PullRequestSummary(
        id=pr_id,
        title=title,
        state=_str(pr, "state"),
        author=_str(author, "display_name") if isinstance(author, dict) else None,
    )


def summarize_pull_requests(data: Any) -> list[PullRequestSummary]:
    """Summaries for either a ``values`` page or a single pull request object."""
    if isinstance(data, dict) and isinstance(data.get("values"), list):
        summaries = (_pull_request(pr) for pr in data["values"])
        return [s for s in summaries if s is not None]

    single = _pull_request(data)
    return [single] if single is not None else []
