"""
Metafield values for an owner (customer, product, ...).

save_value() is the write path: load definition -> validate -> encode -> upsert.
Upserts are last-writer-wins; there is no version check between concurrent editors.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.console.audit import record_event
from app.console.models import User
from app.console.modules.metafields.codec import decode, encode
from app.console.modules.metafields.errors import NotFound, ValidationFailure
from app.console.modules.metafields.models import MetafieldDefinitionRecord, MetafieldValueRecord
from app.console.modules.metafields.registry import (
    definition_from_record,
    definition_payload,
    get_definition,
    list_definitions,
    normalize_owner_type,
)
from app.console.modules.metafields.validation import validate
from app.console.modules.metafields.visibility import is_visible

logger = logging.getLogger(__name__)

OWNER_ID_MAX_LEN = 64


def normalize_owner_id(owner_id: Any) -> str:
    v = str(owner_id).strip() if owner_id is not None else ""
    if not v:
        raise ValidationFailure("owner_id is required.", field="owner_id")
    if len(v) > OWNER_ID_MAX_LEN:
        raise ValidationFailure(f"owner_id must be at most {OWNER_ID_MAX_LEN} characters.", field="owner_id")
    return v


def _get_value(s: Session, definition_id: int, owner_id: str) -> MetafieldValueRecord | None:
    return (
        s.query(MetafieldValueRecord)
        .filter(
            MetafieldValueRecord.definition_id == definition_id,
            MetafieldValueRecord.owner_id == owner_id,
        )
        .one_or_none()
    )


def upsert_value(
    s: Session,
    definition_id: int,
    owner_id: str,
    value_json: str,
    user: User | None = None,
) -> MetafieldValueRecord:
    """Store value_json for (definition, owner), replacing any previous value."""
    owner_id = normalize_owner_id(owner_id)
    now = datetime.utcnow()
    row = _get_value(s, definition_id, owner_id)
    if row is None:
        row = MetafieldValueRecord(
            definition_id=definition_id,
            owner_id=owner_id,
            value_json=value_json,
            created_at=now,
            updated_at=now,
            updated_by_user_id=user.id if user else None,
        )
        try:
            with s.begin_nested():
                s.add(row)
                s.flush()
            return row
        except IntegrityError:
            # Another writer inserted first; fall through and overwrite it.
            row = _get_value(s, definition_id, owner_id)
            if row is None:
                raise
    row.value_json = value_json
    row.updated_at = now
    row.updated_by_user_id = user.id if user else None
    s.flush()
    return row


def list_values(s: Session, owner_type: str, owner_id: str) -> list[MetafieldValueRecord]:
    """Stored values for one owner with their definitions, ordered by namespace then key."""
    owner_type = normalize_owner_type(owner_type)
    owner_id = normalize_owner_id(owner_id)
    return (
        s.query(MetafieldValueRecord)
        .join(MetafieldDefinitionRecord, MetafieldDefinitionRecord.id == MetafieldValueRecord.definition_id)
        .filter(
            MetafieldDefinitionRecord.owner_type == owner_type,
            MetafieldValueRecord.owner_id == owner_id,
        )
        .order_by(MetafieldDefinitionRecord.namespace.asc(), MetafieldDefinitionRecord.key.asc())
        .all()
    )


def save_value(
    s: Session,
    owner_type: str,
    owner_id: str,
    definition_id: int,
    raw_value: Any,
    user: User | None = None,
) -> MetafieldValueRecord:
    record = get_definition(s, owner_type, definition_id)
    definition = definition_from_record(record)

    validate(definition, raw_value)
    value_json = encode(definition, raw_value)

    row = upsert_value(s, record.id, owner_id, value_json, user=user)
    record_event(
        s,
        actor=user,
        action="metafield_value.upsert",
        entity_type="MetafieldValue",
        entity_id=str(row.id),
        metadata={
            "owner_type": record.owner_type,
            "owner_id": row.owner_id,
            "definition": definition.full_key,
            "value_json": value_json,
        },
    )
    return row


def value_payload(definition_record: MetafieldDefinitionRecord, row: MetafieldValueRecord | None) -> dict[str, Any]:
    decoded = decode(row.value_json if row else None)
    if decoded.is_legacy:
        logger.warning(
            "Legacy metafield value (definition_id=%s owner_id=%s)",
            definition_record.id,
            row.owner_id if row else None,
        )
    return {
        "definitionId": definition_record.id,
        "definition": definition_payload(definition_record),
        "valueJson": row.value_json if row else None,
        "kind": decoded.kind.value,
        "value": decoded.editable,
        "legacy": decoded.is_legacy,
        "updatedAt": row.updated_at.isoformat() if row and row.updated_at else None,
    }


def visible_records(
    records: Iterable[MetafieldDefinitionRecord],
    *,
    actor_roles: Iterable[str],
    actor_is_staff: bool,
    bypass_visibility: bool = False,
) -> list[MetafieldDefinitionRecord]:
    if bypass_visibility:
        return list(records)
    roles = frozenset(actor_roles)
    return [r for r in records if is_visible(definition_from_record(r), roles, actor_is_staff)]


def editable_values(
    s: Session,
    owner_type: str,
    owner_id: str,
    *,
    actor_roles: Iterable[str],
    actor_is_staff: bool,
    bypass_visibility: bool = False,
) -> list[dict[str, Any]]:
    """
    Every definition of the owner type the actor may see, paired with the owner's
    decoded value (empty when nothing is stored yet). Creation order.
    """
    stored = {row.definition_id: row for row in list_values(s, owner_type, owner_id)}
    records = visible_records(
        list_definitions(s, owner_type),
        actor_roles=actor_roles,
        actor_is_staff=actor_is_staff,
        bypass_visibility=bypass_visibility,
    )
    return [value_payload(record, stored.get(record.id)) for record in records]


def ensure_visible(
    record: MetafieldDefinitionRecord,
    *,
    actor_roles: Iterable[str],
    actor_is_staff: bool,
    bypass_visibility: bool = False,
) -> None:
    """Hidden definitions are reported as missing so their existence does not leak."""
    if bypass_visibility:
        return
    if not is_visible(definition_from_record(record), frozenset(actor_roles), actor_is_staff):
        raise NotFound(f"Metafield definition {record.id} not found.")
