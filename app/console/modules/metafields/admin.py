from __future__ import annotations

from typing import Any

from flask import Blueprint, abort, current_app, g, jsonify, request
from sqlalchemy.exc import OperationalError

from app.console.db import db_session
from app.console.models import User
from app.console.modules.metafields.errors import MetafieldError, TransportError, ValidationFailure
from app.console.modules.metafields.registry import (
    create_definition,
    definition_from_record,
    definition_payload,
    delete_definition,
    get_definition,
    list_definitions,
    update_definition,
)
from app.console.modules.metafields.service import (
    editable_values,
    ensure_visible,
    save_value,
    value_payload,
    visible_records,
)
from app.console.modules.metafields.validation import validation_error
from app.console.rbac import require_permission, user_is_superuser, user_role_keys

bp = Blueprint("metafields", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _owner_type(owner_type: str) -> str:
    v = (owner_type or "").strip().lower()
    if v not in current_app.config.get("METAFIELD_OWNER_TYPES", ()):
        abort(404)
    return v


def _json_body() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        payload = request.form.to_dict()
    if not isinstance(payload, dict):
        abort(400)
    return payload


def _reason(raw: Any) -> str | None:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ValidationFailure("reason must be text.", field="reason")
    return raw.strip() or None


def _actor() -> dict[str, Any]:
    u = _current_user()
    return {
        "actor_roles": user_role_keys(u),
        "actor_is_staff": bool(u.is_staff),
        "bypass_visibility": user_is_superuser(u),
    }


@bp.errorhandler(MetafieldError)
def _metafield_error(e: MetafieldError):
    if e.status_code >= 500:
        current_app.logger.error("Metafield request failed (request_id=%s): %s", getattr(g, "request_id", None), e)
    return jsonify(e.to_dict()), e.status_code


@bp.errorhandler(OperationalError)
def _db_unavailable(e: OperationalError):
    current_app.logger.exception("Database error during metafield request")
    return _metafield_error(TransportError.from_exception(e))


# ---------- Definitions ----------
@bp.get("/metafields/<owner_type>/definitions")
@require_permission("metafields.view")
def definitions_list(owner_type: str):
    s = db_session()
    records = visible_records(list_definitions(s, _owner_type(owner_type)), **_actor())
    return jsonify({"definitions": [definition_payload(r) for r in records]})


@bp.post("/metafields/<owner_type>/definitions")
@require_permission("metafields.manage")
def definitions_create(owner_type: str):
    s = db_session()
    u = _current_user()
    record = create_definition(s, _owner_type(owner_type), _json_body(), u)
    s.commit()
    current_app.logger.info("Metafield definition created: %s %s.%s", record.owner_type, record.namespace, record.key)
    return jsonify({"definition": definition_payload(record)}), 201


@bp.get("/metafields/<owner_type>/definitions/<int:definition_id>")
@require_permission("metafields.view")
def definition_detail(owner_type: str, definition_id: int):
    s = db_session()
    record = get_definition(s, _owner_type(owner_type), definition_id)
    ensure_visible(record, **_actor())
    return jsonify({"definition": definition_payload(record)})


@bp.patch("/metafields/<owner_type>/definitions/<int:definition_id>")
@require_permission("metafields.manage")
def definition_update(owner_type: str, definition_id: int):
    s = db_session()
    u = _current_user()
    payload = _json_body()
    reason = _reason(payload.pop("reason", None))
    record = update_definition(s, _owner_type(owner_type), definition_id, payload, u, reason=reason)
    s.commit()
    return jsonify({"definition": definition_payload(record)})


@bp.delete("/metafields/<owner_type>/definitions/<int:definition_id>")
@require_permission("metafields.manage")
def definition_delete(owner_type: str, definition_id: int):
    s = db_session()
    u = _current_user()
    cascade = (request.args.get("cascade") or "").strip().lower() in ("1", "true", "yes")
    reason = _reason(request.args.get("reason"))
    delete_definition(s, _owner_type(owner_type), definition_id, u, cascade=cascade, reason=reason)
    s.commit()
    return jsonify({"deleted": definition_id})


@bp.post("/metafields/<owner_type>/definitions/<int:definition_id>/validate")
@require_permission("metafields.view")
def definition_validate(owner_type: str, definition_id: int):
    """Dry-run validation for live form feedback; nothing is stored."""
    s = db_session()
    record = get_definition(s, _owner_type(owner_type), definition_id)
    ensure_visible(record, **_actor())
    error = validation_error(definition_from_record(record), _json_body().get("value"))
    return jsonify({"ok": error is None, "error": error})


# ---------- Values ----------
@bp.get("/metafields/<owner_type>/owners/<owner_id>/values")
@require_permission("metafields.view")
def owner_values(owner_type: str, owner_id: str):
    s = db_session()
    values = editable_values(s, _owner_type(owner_type), owner_id, **_actor())
    return jsonify({"ownerId": owner_id, "values": values})


@bp.put("/metafields/<owner_type>/owners/<owner_id>/values/<int:definition_id>")
@require_permission("metafields.edit_values")
def owner_value_save(owner_type: str, owner_id: str, definition_id: int):
    s = db_session()
    u = _current_user()
    owner_type = _owner_type(owner_type)
    payload = _json_body()
    if "value" not in payload:
        return jsonify({"error": "value is required", "code": "validation_failed"}), 400

    record = get_definition(s, owner_type, definition_id)
    ensure_visible(record, **_actor())
    row = save_value(s, owner_type, owner_id, definition_id, payload["value"], u)
    s.commit()
    return jsonify({"value": value_payload(record, row)})
