"""
Common mixins for inventory models
"""
from sqlalchemy import Column, DateTime, Integer, ForeignKey, CheckConstraint
from sqlalchemy.orm import declared_attr
from sqlalchemy.sql import func

from app.common.entities import EntityKind, EntityRef


class TimestampMixin:
    """Mixin for models that need timestamp tracking"""

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class EntityRefMixin:
    """
    Mixin for rows that belong to either a product or a presentation.

    Exactly one of product_id / presentation_id is set; the check constraint
    is added by each model through ``entity_xor_constraint``.
    """

    @declared_attr
    def product_id(cls):
        return Column(Integer, ForeignKey("products.id"), nullable=True, index=True)

    @declared_attr
    def presentation_id(cls):
        return Column(Integer, ForeignKey("presentations.id"), nullable=True, index=True)

    @property
    def entity(self) -> EntityRef:
        if self.presentation_id is not None:
            return EntityRef(EntityKind.PRESENTATION, self.presentation_id)
        return EntityRef(EntityKind.PRODUCT, self.product_id)

    @classmethod
    def entity_column(cls, kind: EntityKind):
        return cls.presentation_id if kind == EntityKind.PRESENTATION else cls.product_id

    @classmethod
    def entity_criteria(cls, entity: EntityRef):
        """Columns filter matching one entity and nothing of the other kind."""
        if entity.kind == EntityKind.PRESENTATION:
            return [cls.presentation_id == entity.id]
        return [cls.product_id == entity.id, cls.presentation_id.is_(None)]


def entity_xor_constraint(table_name: str) -> CheckConstraint:
    return CheckConstraint(
        "(product_id IS NULL) <> (presentation_id IS NULL)",
        name=f"ck_{table_name}_entity_xor",
    )
