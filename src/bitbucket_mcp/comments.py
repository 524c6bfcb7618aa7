"""Pull request comment input normalization.

Callers use three conventions for comment text. Each shape is tried in a fixed
order and the first match wins; values are never merged across shapes:

1. ``{"content": {"raw": "..."}}`` (Bitbucket's own shape)
2. ``{"body": "..."}``
3. a bare string

Anything else is rejected before a request is built.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .errors import SafeError


@dataclass(frozen=True, slots=True)
class CommentPayload:
    """Canonical comment body sent to Bitbucket."""

    raw: str

    def to_json(self) -> dict[str, Any]:
        return {"content": {"raw": self.raw}}


def _from_content(value: dict[str, Any]) -> CommentPayload | None:
    if "content" not in value:
        return None
    content = value["content"]
    raw = content.get("raw") if isinstance(content, dict) else None
    return CommentPayload(raw=raw if isinstance(raw, str) else "")


def _from_body(value: dict[str, Any]) -> CommentPayload | None:
    if "body" not in value:
        return None
    body = value["body"]
    return CommentPayload(raw=body if isinstance(body, str) else "")


def normalize_comment_input(value: Any) -> CommentPayload:
    """Resolve any supported comment input into a CommentPayload.

    Raises:
        SafeError: code ``UserInput`` when no known shape matches.
    """
    if isinstance(value, dict):
        for parse in (_from_content, _from_body):
            payload = parse(value)
            if payload is not None:
                return payload
    elif isinstance(value, str):
        return CommentPayload(raw=value)

    raise SafeError(
        code="UserInput",
        message="Invalid comment input format",
        hint='Use {"content": {"raw": "..."}}, {"body": "..."}, or a plain string',
    )
