"""Safe error types and serialization helpers.

Errors returned to callers must be non-secret and stable. Upstream failures always
carry the Bitbucket status code and raw response body.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class SafeError(Exception):
    """An error safe to expose to callers.

    This must never include credentials (app password, API token, bearer token).
    """

    code: str
    message: str
    hint: str | None = None
    status_code: int | None = None
    body: str | None = None

    def __str__(self) -> str:
        return self.message


def config_error(message: str) -> SafeError:
    """Missing or invalid host configuration (raised before any network call)."""
    return SafeError(code="Config", message=message)


def upstream_error(*, status_code: int, body: str) -> SafeError:
    """Non-2xx response from Bitbucket."""
    return SafeError(
        code="Bitbucket",
        message=f"Bitbucket API error: {status_code}",
        status_code=status_code,
        body=body,
    )


def network_error(detail: str) -> SafeError:
    """Transport failure (DNS, connection, timeout)."""
    return SafeError(code="Network", message=f"Request error: {detail}")


def safe_error_to_result(err: SafeError) -> dict[str, Any]:
    """Convert a SafeError into the standard tool envelope."""
    out = to_error_result(code=err.code, message=err.message, hint=err.hint)
    if err.status_code is not None:
        out["status_code"] = err.status_code
    if err.body is not None:
        out["body"] = err.body
    return out


def to_error_result(*, code: str, message: str, hint: str | None = None) -> dict[str, Any]:
    """Build a standard tool error envelope."""
    out: dict[str, Any] = {"ok": False, "code": code, "message": message}
    if hint:
        out["hint"] = hint
    return out


def internal_error(message: str = "Internal error") -> dict[str, Any]:
    """Error for unexpected failures."""
    return to_error_result(code="Internal", message=message)
