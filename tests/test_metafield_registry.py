"""Tests for the definition registry and the value service (database-backed)."""
import json

import pytest
from werkzeug.security import generate_password_hash

from app.console import create_app
from app.console.db import session_scope
from app.console.models import AuditEvent, Base, User
from app.console.modules.metafields.errors import (
    DefinitionInUse,
    DuplicateKeyError,
    InvalidDefinition,
    NotFound,
    ValidationFailure,
)
from app.console.modules.metafields.models import MetafieldDefinitionRecord, MetafieldValueRecord
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
    list_values,
    save_value,
    upsert_value,
)
from app.console.modules.metafields.types import EnumRules, ValueType


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.delenv("METAFIELD_OWNER_TYPES", raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add(User(email="ops@example.com", password_hash=generate_password_hash("pw"), is_active=True))

    return app


def _payload(**overrides):
    payload = {
        "namespace": "custom",
        "key": "membership_rank",
        "name": "Membership rank",
        "valueType": "enum",
        "validationsJson": '{"required": true, "enum": ["bronze", "silver", "gold"]}',
        "visibilityJson": '{"public": true}',
    }
    payload.update(overrides)
    return payload


def _create(app, owner_type="customer", **overrides):
    with session_scope(app) as s:
        return create_definition(s, owner_type, _payload(**overrides)).id


def _audit_actions(app):
    with session_scope(app) as s:
        return [ev.action for ev in s.query(AuditEvent).order_by(AuditEvent.id.asc()).all()]


class TestCreateDefinition:
    def test_create_and_get(self, app):
        definition_id = _create(app)
        with session_scope(app) as s:
            record = get_definition(s, "customer", definition_id)
            payload = definition_payload(record)
        assert payload["ownerType"] == "customer"
        assert payload["valueType"] == "enum"
        assert payload["isList"] is False
        assert json.loads(payload["validationsJson"]) == {"enum": ["bronze", "silver", "gold"], "required": True}
        assert payload["visibilityJson"] == '{"public": true}'

    def test_snake_case_payload(self, app):
        with session_scope(app) as s:
            record = create_definition(
                s,
                "product",
                {"namespace": "specs", "key": "weight", "name": "Weight", "value_type": "number", "is_list": "true"},
            )
            assert record.is_list is True
            assert record.validations_json == "{}"

    def test_duplicate_key_rejected(self, app):
        _create(app)
        with session_scope(app) as s:
            with pytest.raises(DuplicateKeyError) as exc:
                create_definition(s, "customer", _payload(name="Again"))
        assert exc.value.status_code == 409
        assert exc.value.key == "membership_rank"

    def test_same_key_on_other_owner_type(self, app):
        _create(app, "customer")
        _create(app, "product")
        with session_scope(app) as s:
            assert len(list_definitions(s, "customer")) == 1
            assert len(list_definitions(s, "product")) == 1

    def test_invalid_regex_rejected(self, app):
        with session_scope(app) as s:
            with pytest.raises(InvalidDefinition):
                create_definition(s, "customer", _payload(valueType="string", validationsJson='{"regex": "("}'))
            assert list_definitions(s, "customer") == []

    def test_enum_without_values_rejected(self, app):
        with session_scope(app) as s:
            with pytest.raises(InvalidDefinition):
                create_definition(s, "customer", _payload(validationsJson='{"required": true}'))

    def test_missing_fields_rejected(self, app):
        with session_scope(app) as s:
            with pytest.raises(InvalidDefinition) as exc:
                create_definition(s, "customer", {"namespace": "custom", "valueType": "string"})
        assert "key" in exc.value.message
        assert "name" in exc.value.message

    def test_unknown_value_type_rejected(self, app):
        with session_scope(app) as s:
            with pytest.raises(InvalidDefinition):
                create_definition(s, "customer", _payload(valueType="integer"))

    def test_boolean_forced_non_list(self, app):
        with session_scope(app) as s:
            record = create_definition(
                s, "customer", _payload(key="vip", valueType="bool", isList=True, validationsJson="{}")
            )
            assert record.value_type == "boolean"
            assert record.is_list is False

    def test_list_in_creation_order(self, app):
        _create(app, key="zeta")
        _create(app, key="alpha")
        with session_scope(app) as s:
            assert [r.key for r in list_definitions(s, "customer")] == ["zeta", "alpha"]

    def test_audited(self, app):
        _create(app)
        assert _audit_actions(app) == ["metafield_definition.create"]


class TestGetDefinition:
    def test_missing(self, app):
        with session_scope(app) as s:
            with pytest.raises(NotFound):
                get_definition(s, "customer", 999)

    def test_wrong_owner_type(self, app):
        definition_id = _create(app, "customer")
        with session_scope(app) as s:
            with pytest.raises(NotFound):
                get_definition(s, "product", definition_id)


class TestUpdateDefinition:
    def test_partial_update(self, app):
        definition_id = _create(app)
        with session_scope(app) as s:
            record = update_definition(s, "customer", definition_id, {"name": "Tier"}, reason="rename")
            assert record.name == "Tier"
            assert record.key == "membership_rank"
        with session_scope(app) as s:
            ev = s.query(AuditEvent).filter(AuditEvent.action == "metafield_definition.edit").one()
            assert ev.reason == "rename"
            assert json.loads(ev.metadata_json)["changes"]["name"] == {"old": "Membership rank", "new": "Tier"}

    def test_key_change_collides(self, app):
        _create(app, key="first")
        second_id = _create(app, key="second")
        with session_scope(app) as s:
            with pytest.raises(DuplicateKeyError):
                update_definition(s, "customer", second_id, {"key": "first"})

    def test_updated_rules_revalidated(self, app):
        definition_id = _create(app)
        with session_scope(app) as s:
            with pytest.raises(InvalidDefinition):
                update_definition(s, "customer", definition_id, {"validationsJson": '{"enum": []}'})

    def test_switch_to_boolean_drops_list(self, app):
        definition_id = _create(app, valueType="string", isList=True, validationsJson="{}")
        with session_scope(app) as s:
            record = update_definition(s, "customer", definition_id, {"valueType": "boolean"})
            assert record.is_list is False

    def test_missing(self, app):
        with session_scope(app) as s:
            with pytest.raises(NotFound):
                update_definition(s, "customer", 42, {"name": "x"})

    def test_owner_type_is_fixed(self, app):
        definition_id = _create(app)
        with session_scope(app) as s:
            save_value(s, "customer", "c-1", definition_id, "gold")
        with session_scope(app) as s:
            with pytest.raises(InvalidDefinition):
                update_definition(s, "customer", definition_id, {"ownerType": "widget"})
            with pytest.raises(InvalidDefinition):
                update_definition(s, "customer", definition_id, {"owner_type": "product"})
        with session_scope(app) as s:
            assert get_definition(s, "customer", definition_id).owner_type == "customer"
            assert [r.definition_id for r in list_values(s, "customer", "c-1")] == [definition_id]

    def test_same_owner_type_in_patch_is_accepted(self, app):
        definition_id = _create(app)
        with session_scope(app) as s:
            record = update_definition(s, "customer", definition_id, {"ownerType": " Customer ", "name": "Tier"})
            assert record.owner_type == "customer"
            assert record.name == "Tier"

    def test_type_change_drops_old_rules(self, app):
        definition_id = _create(app, key="score", valueType="number", validationsJson='{"min": 0, "max": 100}')
        with session_scope(app) as s:
            record = update_definition(s, "customer", definition_id, {"valueType": "string"})
            assert record.validations_json == "{}"
            definition = definition_from_record(record)
        assert definition.validation.max is None

    def test_type_change_with_new_rules(self, app):
        definition_id = _create(app, key="score", valueType="number", validationsJson='{"min": 0, "max": 100}')
        with session_scope(app) as s:
            record = update_definition(
                s, "customer", definition_id, {"valueType": "string", "validationsJson": '{"max": 8}'}
            )
            assert json.loads(record.validations_json) == {"max": 8}

    def test_type_change_to_enum_needs_values(self, app):
        definition_id = _create(app, key="score", valueType="number", validationsJson='{"min": 0}')
        with session_scope(app) as s:
            with pytest.raises(InvalidDefinition):
                update_definition(s, "customer", definition_id, {"valueType": "enum"})

    def test_same_type_keeps_rules(self, app):
        definition_id = _create(app, key="score", valueType="number", validationsJson='{"min": 0}')
        with session_scope(app) as s:
            record = update_definition(s, "customer", definition_id, {"valueType": "number", "name": "Score"})
            assert record.validations_json == '{"min": 0}'


class TestDeleteDefinition:
    def test_delete_unused(self, app):
        definition_id = _create(app)
        with session_scope(app) as s:
            delete_definition(s, "customer", definition_id)
        with session_scope(app) as s:
            assert list_definitions(s, "customer") == []

    def test_in_use_refused_without_cascade(self, app):
        definition_id = _create(app)
        with session_scope(app) as s:
            save_value(s, "customer", "c-1", definition_id, "gold")
        with session_scope(app) as s:
            with pytest.raises(DefinitionInUse) as exc:
                delete_definition(s, "customer", definition_id)
        assert exc.value.value_count == 1

    def test_cascade_removes_values(self, app):
        definition_id = _create(app)
        with session_scope(app) as s:
            save_value(s, "customer", "c-1", definition_id, "gold")
            save_value(s, "customer", "c-2", definition_id, "silver")
        with session_scope(app) as s:
            delete_definition(s, "customer", definition_id, cascade=True, reason="retired")
        with session_scope(app) as s:
            assert s.query(MetafieldValueRecord).count() == 0
            assert s.get(MetafieldDefinitionRecord, definition_id) is None
        assert _audit_actions(app)[-1] == "metafield_definition.delete"


class TestValues:
    def test_save_validates_and_encodes(self, app):
        definition_id = _create(app)
        with session_scope(app) as s:
            with pytest.raises(ValidationFailure) as exc:
                save_value(s, "customer", "c-1", definition_id, "platinum")
            assert exc.value.message == "Value must be one of: bronze, silver, gold."
            row = save_value(s, "customer", "c-1", definition_id, "gold")
            assert row.value_json == '"gold"'

    def test_upsert_replaces(self, app):
        definition_id = _create(app)
        with session_scope(app) as s:
            save_value(s, "customer", "c-1", definition_id, "gold")
        with session_scope(app) as s:
            save_value(s, "customer", "c-1", definition_id, "bronze")
        with session_scope(app) as s:
            rows = s.query(MetafieldValueRecord).all()
            assert len(rows) == 1
            assert rows[0].value_json == '"bronze"'

    def test_owner_id_required(self, app):
        definition_id = _create(app)
        with session_scope(app) as s:
            with pytest.raises(ValidationFailure):
                upsert_value(s, definition_id, "  ", '"x"')
            with pytest.raises(ValidationFailure):
                upsert_value(s, definition_id, "x" * 65, '"x"')

    def test_list_values_ordered_by_namespace_then_key(self, app):
        b_id = _create(app, namespace="b", key="a", valueType="string", validationsJson="{}")
        a2_id = _create(app, namespace="a", key="z", valueType="string", validationsJson="{}")
        a1_id = _create(app, namespace="a", key="m", valueType="string", validationsJson="{}")
        other_id = _create(app, "product", namespace="a", key="a", valueType="string", validationsJson="{}")
        with session_scope(app) as s:
            for definition_id in (b_id, a2_id, a1_id):
                save_value(s, "customer", "c-1", definition_id, "x")
            save_value(s, "customer", "c-2", b_id, "y")
            save_value(s, "product", "c-1", other_id, "z")
        with session_scope(app) as s:
            rows = list_values(s, "customer", "c-1")
            assert [(r.definition.namespace, r.definition.key) for r in rows] == [("a", "m"), ("a", "z"), ("b", "a")]

    def test_editable_values_filters_and_decodes(self, app):
        public_id = _create(app)
        hidden_id = _create(app, key="margin", valueType="number", validationsJson="{}", visibilityJson='{"adminOnly": true}')
        sales_id = _create(app, key="notes", valueType="text", validationsJson="{}", visibilityJson='{"roles": ["sales"]}')
        with session_scope(app) as s:
            save_value(s, "customer", "c-1", public_id, "gold")
            upsert_value(s, sales_id, "c-1", "free text from an old import")
            save_value(s, "customer", "c-1", hidden_id, "12.5")

        with session_scope(app) as s:
            values = editable_values(s, "customer", "c-1", actor_roles=["sales"], actor_is_staff=False)
        assert [v["definitionId"] for v in values] == [public_id, sales_id]
        assert values[0]["value"] == "gold"
        assert values[0]["kind"] == "string"
        assert values[1]["legacy"] is True
        assert values[1]["value"] == "free text from an old import"

        with session_scope(app) as s:
            values = editable_values(s, "customer", "c-2", actor_roles=[], actor_is_staff=True)
        assert [v["definitionId"] for v in values] == [public_id, hidden_id]
        assert values[0]["kind"] == "empty"
        assert values[0]["value"] == ""
        assert values[0]["valueJson"] is None

        with session_scope(app) as s:
            values = editable_values(
                s, "customer", "c-1", actor_roles=[], actor_is_staff=False, bypass_visibility=True
            )
        assert len(values) == 3

    def test_ensure_visible(self, app):
        definition_id = _create(app, visibilityJson='{"adminOnly": true}')
        with session_scope(app) as s:
            record = get_definition(s, "customer", definition_id)
            ensure_visible(record, actor_roles=[], actor_is_staff=True)
            with pytest.raises(NotFound):
                ensure_visible(record, actor_roles=["sales"], actor_is_staff=False)

    def test_stored_rules_parsed_leniently(self, app):
        definition_id = _create(app)
        with session_scope(app) as s:
            record = get_definition(s, "customer", definition_id)
            record.validations_json = '{"enum": ["a"], "required": "sometimes"}'
        with session_scope(app) as s:
            definition = definition_from_record(get_definition(s, "customer", definition_id))
        assert definition.value_type is ValueType.ENUM
        assert definition.validation == EnumRules(required=False, values=("a",))
