import json
from collections.abc import Mapping
from typing import Any

from flask import g, has_request_context
from sqlalchemy.orm import Session

from app.console.models import AuditEvent, User


def changed_fields(before: Mapping[str, Any], after: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """{"field": {"old": ..., "new": ...}} for every key of `after` whose value differs."""
    return {k: {"old": before.get(k), "new": v} for k, v in after.items() if before.get(k) != v}


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper. Outside a request (scripts, tests) the
    request id is left empty unless one is passed in.
    """
    if request_id is None and has_request_context():
        request_id = getattr(g, "request_id", None)
    ev = AuditEvent(
        request_id=request_id,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        # datetimes and enums in metadata are stored by their str()
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
    )
    s.add(ev)
    return ev
