from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.console.models import Base


class MetafieldDefinitionRecord(Base):
    """
    Operator-defined custom attribute schema for one owner type.
    validations_json / visibility_json hold the canonical wire JSON (see rules.py).
    """

    __tablename__ = "metafield_definitions"
    __table_args__ = (
        UniqueConstraint("owner_type", "namespace", "key", name="uq_metafield_definitions_owner_ns_key"),
        Index("idx_metafield_definitions_owner_type", "owner_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_type: Mapped[str] = mapped_column(String(64), nullable=False)  # customer, product
    namespace: Mapped[str] = mapped_column(String(128), nullable=False)
    key: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    value_type: Mapped[str] = mapped_column(String(32), nullable=False)
    is_list: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    validations_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    visibility_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class MetafieldValueRecord(Base):
    """One stored value per (definition, owner); owner_id is the customer/product id."""

    __tablename__ = "metafield_values"
    __table_args__ = (
        UniqueConstraint("definition_id", "owner_id", name="uq_metafield_values_definition_owner"),
        Index("idx_metafield_values_owner_id", "owner_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    definition_id: Mapped[int] = mapped_column(
        ForeignKey("metafield_definitions.id", ondelete="CASCADE"), nullable=False
    )
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    definition: Mapped[MetafieldDefinitionRecord] = relationship(lazy="joined")
