"""Per-call audit trail for Bitbucket tool invocations.

Every dispatched tool produces exactly one JSON line: which operation ran,
against which ``workspace[/repo_slug]``, how it ended and, for upstream
failures, the Bitbucket status code. Lines go to stderr (stdout carries the MCP
protocol) and, when BITBUCKET_MCP_AUDIT_LOG_PATH is set, are appended to that
file. Credentials and request bodies are never part of an event.
"""

from __future__ import annotations

import json
import sys
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

Outcome = Literal["succeeded", "denied", "failed"]


def new_correlation_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class AuditEvent:
    timestamp: str
    correlation_id: str
    operation: str
    target: str
    outcome: Outcome
    reason: str | None
    status_code: int | None
    duration_ms: int | None

    def to_json_line(self) -> str:
        """Compact, key-sorted JSON; unset optional fields are omitted."""
        payload = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))


class AuditLogger:
    """Emits one line per tool call; the optional file sink is best-effort."""

    def __init__(self, *, sink_path: Path | None = None) -> None:
        self._sink_path = sink_path

    def write_event(self, event: AuditEvent) -> None:
        line = event.to_json_line()
        print(line, file=sys.stderr)
        if self._sink_path is None:
            return
        try:
            self._sink_path.parent.mkdir(parents=True, exist_ok=True)
            with self._sink_path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError:  # pragma: no cover
            # sink failures never fail the tool call
            return

    def measure_start(self) -> float:
        return time.monotonic()

    def measure_duration_ms(self, start: float) -> int:
        return int((time.monotonic() - start) * 1000)


def build_event(
    *,
    correlation_id: str,
    operation: str,
    target: str,
    outcome: Outcome,
    reason: str | None = None,
    status_code: int | None = None,
    duration_ms: int | None = None,
) -> AuditEvent:
    """Stamp an event with the current UTC time (RFC 3339, ``Z`` suffix)."""
    return AuditEvent(
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        correlation_id=correlation_id,
        operation=operation,
        target=target,
        outcome=outcome,
        reason=reason,
        status_code=status_code,
        duration_ms=duration_ms,
    )
