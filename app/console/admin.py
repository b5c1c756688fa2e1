from __future__ import annotations

import json

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import text

from app.console.db import db_session
from app.console.models import AuditEvent, Role
from app.console.rbac import require_permission

bp = Blueprint("admin", __name__)


@bp.get("/")
@require_permission("admin.view")
def index():
    s = db_session()
    status = {
        "env": (current_app.config.get("ENV") or "development").strip().lower(),
        "db_connected": False,
        "db_error": None,
        "metafield_owner_types": list(current_app.config.get("METAFIELD_OWNER_TYPES", ())),
    }

    # DB connectivity (lightweight)
    try:
        s.execute(text("SELECT 1"))
        status["db_connected"] = True
    except Exception as e:
        current_app.logger.warning("Admin status DB check failed: %s", e)
        status["db_error"] = str(e)

    return jsonify(status)


@bp.get("/roles")
@require_permission("admin.view")
def roles_list():
    """Role directory for visibility-role pickers."""
    s = db_session()
    roles = s.query(Role).order_by(Role.name.asc()).all()
    return jsonify({"roles": [{"roleKey": r.key, "name": r.name} for r in roles]})


@bp.get("/audit")
@require_permission("admin.view")
def audit_list():
    s = db_session()
    q = s.query(AuditEvent)

    action = (request.args.get("action") or "").strip()
    if action:
        q = q.filter(AuditEvent.action.like(f"{action}%"))
    entity_type = (request.args.get("entity_type") or "").strip()
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)

    try:
        limit = min(max(int(request.args.get("limit") or 100), 1), 500)
    except ValueError:
        limit = 100

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()
    return jsonify(
        {
            "events": [
                {
                    "id": ev.id,
                    "createdAt": ev.created_at.isoformat() if ev.created_at else None,
                    "requestId": ev.request_id,
                    "actor": ev.actor_user_email,
                    "action": ev.action,
                    "entityType": ev.entity_type,
                    "entityId": ev.entity_id,
                    "reason": ev.reason,
                    "metadata": json.loads(ev.metadata_json) if ev.metadata_json else None,
                }
                for ev in events
            ]
        }
    )
