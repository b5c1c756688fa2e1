"""
Definition registry: create / update / list / get / delete metafield definitions.

Every operation is scoped to an owner type. Payloads use the wire field names
(namespace, key, name, description, valueType, isList, validationsJson,
visibilityJson); snake_case spellings are accepted too.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.console.audit import changed_fields, record_event
from app.console.models import User
from app.console.modules.metafields.errors import DefinitionInUse, DuplicateKeyError, InvalidDefinition, NotFound
from app.console.modules.metafields.models import MetafieldDefinitionRecord, MetafieldValueRecord
from app.console.modules.metafields.rules import (
    dump_validation_rules,
    dump_visibility_rules,
    parse_validation_rules,
    parse_visibility_rules,
)
from app.console.modules.metafields.types import MetafieldDefinition, ValueType

_FIELD_ALIASES = {
    "owner_type": ("ownerType", "owner_type"),
    "namespace": ("namespace",),
    "key": ("key",),
    "name": ("name",),
    "description": ("description",),
    "value_type": ("valueType", "value_type"),
    "is_list": ("isList", "is_list"),
    "validations_json": ("validationsJson", "validations_json", "validations"),
    "visibility_json": ("visibilityJson", "visibility_json", "visibility"),
}

_TRACKED_FIELDS = tuple(_FIELD_ALIASES)


def _pick(payload: Mapping[str, Any], field: str) -> tuple[bool, Any]:
    for alias in _FIELD_ALIASES[field]:
        if alias in payload:
            return True, payload[alias]
    return False, None


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "on", "yes")
    return bool(value)


def normalize_owner_type(owner_type: str | None) -> str:
    v = _text(owner_type).lower()
    if not v:
        raise InvalidDefinition("ownerType is required.")
    return v


def clean_definition_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """
    Validate a full set of definition fields and return them in storage form.
    Raises InvalidDefinition on the first problem.
    """
    missing = [label for f, label in (("namespace", "namespace"), ("key", "key"), ("name", "name"), ("value_type", "valueType")) if not _text(fields.get(f))]
    if missing:
        raise InvalidDefinition(f"Definition is missing required fields: {', '.join(missing)}.")

    try:
        value_type = ValueType.parse(fields.get("value_type"))
    except ValueError:
        allowed = ", ".join(v.value for v in ValueType)
        raise InvalidDefinition(f"Unknown valueType {fields.get('value_type')!r}. Must be one of: {allowed}.") from None

    validation = parse_validation_rules(value_type, fields.get("validations_json"), strict=True)
    visibility = parse_visibility_rules(fields.get("visibility_json"), strict=True)

    return {
        "owner_type": normalize_owner_type(fields.get("owner_type")),
        "namespace": _text(fields.get("namespace")),
        "key": _text(fields.get("key")),
        "name": _text(fields.get("name")),
        "description": _text(fields.get("description")) or None,
        "value_type": value_type.value,
        "is_list": _flag(fields.get("is_list")) and value_type is not ValueType.BOOLEAN,
        "validations_json": dump_validation_rules(validation),
        "visibility_json": dump_visibility_rules(visibility),
    }


def definition_from_record(record: MetafieldDefinitionRecord) -> MetafieldDefinition:
    """Engine view of a stored row; stored rules are parsed leniently."""
    value_type = ValueType.parse(record.value_type)
    return MetafieldDefinition(
        id=record.id,
        owner_type=record.owner_type,
        namespace=record.namespace,
        key=record.key,
        name=record.name,
        description=record.description or "",
        value_type=value_type,
        is_list=bool(record.is_list),
        validation=parse_validation_rules(value_type, record.validations_json),
        visibility=parse_visibility_rules(record.visibility_json),
    )


def definition_payload(record: MetafieldDefinitionRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "ownerType": record.owner_type,
        "namespace": record.namespace,
        "key": record.key,
        "name": record.name,
        "description": record.description or "",
        "valueType": record.value_type,
        "isList": bool(record.is_list),
        "validationsJson": record.validations_json or "{}",
        "visibilityJson": record.visibility_json or "{}",
        "createdAt": record.created_at.isoformat() if record.created_at else None,
        "updatedAt": record.updated_at.isoformat() if record.updated_at else None,
    }


def _find_by_key(
    s: Session, owner_type: str, namespace: str, key: str
) -> MetafieldDefinitionRecord | None:
    return (
        s.query(MetafieldDefinitionRecord)
        .filter(
            MetafieldDefinitionRecord.owner_type == owner_type,
            MetafieldDefinitionRecord.namespace == namespace,
            MetafieldDefinitionRecord.key == key,
        )
        .one_or_none()
    )


def _flush_unique(s: Session, record: MetafieldDefinitionRecord) -> None:
    try:
        with s.begin_nested():
            s.add(record)
            s.flush()
    except IntegrityError as e:
        raise DuplicateKeyError(record.owner_type, record.namespace, record.key) from e


def list_definitions(s: Session, owner_type: str) -> list[MetafieldDefinitionRecord]:
    """Definitions for one owner type, in creation order."""
    owner_type = normalize_owner_type(owner_type)
    return (
        s.query(MetafieldDefinitionRecord)
        .filter(MetafieldDefinitionRecord.owner_type == owner_type)
        .order_by(MetafieldDefinitionRecord.id.asc())
        .all()
    )


def get_definition(s: Session, owner_type: str, definition_id: int) -> MetafieldDefinitionRecord:
    owner_type = normalize_owner_type(owner_type)
    record = s.get(MetafieldDefinitionRecord, definition_id)
    if record is None or record.owner_type != owner_type:
        raise NotFound(f"Metafield definition {definition_id} not found.")
    return record


def create_definition(
    s: Session,
    owner_type: str,
    payload: Mapping[str, Any],
    user: User | None = None,
) -> MetafieldDefinitionRecord:
    fields = {f: _pick(payload, f)[1] for f in _TRACKED_FIELDS}
    fields["owner_type"] = owner_type
    cleaned = clean_definition_fields(fields)

    if _find_by_key(s, cleaned["owner_type"], cleaned["namespace"], cleaned["key"]) is not None:
        raise DuplicateKeyError(cleaned["owner_type"], cleaned["namespace"], cleaned["key"])

    now = datetime.utcnow()
    record = MetafieldDefinitionRecord(
        **cleaned,
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id if user else None,
        updated_by_user_id=user.id if user else None,
    )
    _flush_unique(s, record)

    record_event(
        s,
        actor=user,
        action="metafield_definition.create",
        entity_type="MetafieldDefinition",
        entity_id=str(record.id),
        metadata={
            "owner_type": record.owner_type,
            "namespace": record.namespace,
            "key": record.key,
            "value_type": record.value_type,
        },
    )
    return record


def _type_changed(old: str, new: Any) -> bool:
    try:
        return ValueType.parse(new) is not ValueType.parse(old)
    except ValueError:
        # unknown type; clean_definition_fields reports it
        return False


def update_definition(
    s: Session,
    owner_type: str,
    definition_id: int,
    patch: Mapping[str, Any],
    user: User | None = None,
    reason: str | None = None,
) -> MetafieldDefinitionRecord:
    """
    Apply the fields present in `patch`; the merged definition is re-validated as a whole.

    The owner type is fixed at creation. A valueType change without new
    validationsJson starts from empty rules, since bounds mean different things per type.
    """
    record = get_definition(s, owner_type, definition_id)

    present, new_owner_type = _pick(patch, "owner_type")
    if present and normalize_owner_type(new_owner_type) != record.owner_type:
        raise InvalidDefinition(f"ownerType cannot be changed (definition {record.id} belongs to {record.owner_type}).")

    merged = {f: getattr(record, f) for f in _TRACKED_FIELDS}
    for f in _TRACKED_FIELDS:
        present, value = _pick(patch, f)
        if present:
            merged[f] = value
    if not _pick(patch, "validations_json")[0] and _type_changed(record.value_type, merged["value_type"]):
        merged["validations_json"] = "{}"
    cleaned = clean_definition_fields(merged)

    identity = (cleaned["owner_type"], cleaned["namespace"], cleaned["key"])
    if identity != (record.owner_type, record.namespace, record.key):
        other = _find_by_key(s, *identity)
        if other is not None and other.id != record.id:
            raise DuplicateKeyError(*identity)

    changes = changed_fields({f: getattr(record, f) for f in cleaned}, cleaned)
    for f, change in changes.items():
        setattr(record, f, change["new"])

    if changes:
        record.updated_at = datetime.utcnow()
        record.updated_by_user_id = user.id if user else None
        _flush_unique(s, record)

    record_event(
        s,
        actor=user,
        action="metafield_definition.edit",
        entity_type="MetafieldDefinition",
        entity_id=str(record.id),
        reason=reason,
        metadata={"namespace": record.namespace, "key": record.key, "changes": changes},
    )
    return record


def count_values(s: Session, definition_id: int) -> int:
    return s.execute(
        select(func.count(MetafieldValueRecord.id)).where(MetafieldValueRecord.definition_id == definition_id)
    ).scalar_one()


def delete_definition(
    s: Session,
    owner_type: str,
    definition_id: int,
    user: User | None = None,
    *,
    cascade: bool = False,
    reason: str | None = None,
) -> None:
    """
    Refuses while stored values reference the definition unless cascade=True,
    in which case those values are deleted with it.
    """
    record = get_definition(s, owner_type, definition_id)
    value_count = count_values(s, record.id)
    if value_count and not cascade:
        raise DefinitionInUse(record.id, value_count)

    if value_count:
        s.query(MetafieldValueRecord).filter(MetafieldValueRecord.definition_id == record.id).delete(
            synchronize_session=False
        )
    s.delete(record)
    s.flush()

    record_event(
        s,
        actor=user,
        action="metafield_definition.delete",
        entity_type="MetafieldDefinition",
        entity_id=str(definition_id),
        reason=reason,
        metadata={
            "owner_type": record.owner_type,
            "namespace": record.namespace,
            "key": record.key,
            "deleted_values": value_count,
        },
    )
