"""initial schema: accounts, audit trail, metafield definitions and values

Revision ID: a7c3e9d1f2b4
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "a7c3e9d1f2b4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp())


def upgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)
    existing_tables = set(insp.get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("email", sa.String(length=320), nullable=False),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_staff", sa.Boolean(), nullable=False, server_default=sa.false()),
            _created_at(),
            sa.UniqueConstraint("email", name="uq_users_email"),
        )
    else:
        cols = {c["name"] for c in insp.get_columns("users")}
        if "is_staff" not in cols:
            op.add_column("users", sa.Column("is_staff", sa.Boolean(), nullable=False, server_default=sa.false()))

    if "roles" not in existing_tables:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("key", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=128), nullable=False),
            _created_at(),
            sa.UniqueConstraint("key", name="uq_roles_key"),
        )

    if "permissions" not in existing_tables:
        op.create_table(
            "permissions",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("key", sa.String(length=128), nullable=False),
            sa.Column("name", sa.String(length=128), nullable=False),
            _created_at(),
            sa.UniqueConstraint("key", name="uq_permissions_key"),
        )

    if "user_roles" not in existing_tables:
        op.create_table(
            "user_roles",
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        )

    if "role_permissions" not in existing_tables:
        op.create_table(
            "role_permissions",
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
        )

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            _created_at(),
            sa.Column("request_id", sa.String(length=64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_user_email", sa.String(length=320), nullable=True),
            sa.Column("action", sa.String(length=128), nullable=False),
            sa.Column("entity_type", sa.String(length=128), nullable=True),
            sa.Column("entity_id", sa.String(length=128), nullable=True),
            sa.Column("reason", sa.String(length=512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
        )

    if "metafield_definitions" not in existing_tables:
        op.create_table(
            "metafield_definitions",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("owner_type", sa.String(length=64), nullable=False),
            sa.Column("namespace", sa.String(length=128), nullable=False),
            sa.Column("key", sa.String(length=128), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("value_type", sa.String(length=32), nullable=False),
            sa.Column("is_list", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("validations_json", sa.Text(), nullable=False, server_default="{}"),
            sa.Column("visibility_json", sa.Text(), nullable=False, server_default="{}"),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("updated_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.UniqueConstraint("owner_type", "namespace", "key", name="uq_metafield_definitions_owner_ns_key"),
        )
        op.create_index("idx_metafield_definitions_owner_type", "metafield_definitions", ["owner_type"])

    if "metafield_values" not in existing_tables:
        op.create_table(
            "metafield_values",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column(
                "definition_id",
                sa.Integer(),
                sa.ForeignKey("metafield_definitions.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("owner_id", sa.String(length=64), nullable=False),
            sa.Column("value_json", sa.Text(), nullable=False),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.Column("updated_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.UniqueConstraint("definition_id", "owner_id", name="uq_metafield_values_definition_owner"),
        )
        op.create_index("idx_metafield_values_owner_id", "metafield_values", ["owner_id"])


def downgrade() -> None:
    op.drop_index("idx_metafield_values_owner_id", table_name="metafield_values")
    op.drop_table("metafield_values")
    op.drop_index("idx_metafield_definitions_owner_type", table_name="metafield_definitions")
    op.drop_table("metafield_definitions")
    op.drop_table("audit_events")
    op.drop_table("role_permissions")
    op.drop_table("user_roles")
    op.drop_table("permissions")
    op.drop_table("roles")
    op.drop_table("users")
