from __future__ import annotations

from typing import Protocol

from .clock import Clock
from .contracts import AuditEvent, AuditEventType


class AuditSink(Protocol):
    session_id: str
    clock: Clock
    audit_events: list[AuditEvent]


def _sanitize_detail(detail: str) -> str:
    # IMPORTANT: Never include speaker names or roles in detail.
    # Ids and counts only; the trail lives exactly as long as the session.
    detail = (detail or "").replace("\n", " ").strip()
    if len(detail) > 200:
        detail = detail[:200] + "…"
    return detail


def log_event(
    sink: AuditSink,
    event_type: AuditEventType,
    code: str,
    detail: str = "",
) -> AuditEvent:
    event = AuditEvent(
        ts_iso=sink.clock.wall().isoformat(),
        session_id=sink.session_id,
        type=event_type,
        code=code,
        detail=_sanitize_detail(detail),
    )
    sink.audit_events.append(event)
    return event
