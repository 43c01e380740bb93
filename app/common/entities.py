"""
Sellable entity references shared by prices, lots, thresholds and movements.
"""
from dataclasses import dataclass
from enum import Enum


class EntityKind(str, Enum):
    PRODUCT = "PRODUCT"
    PRESENTATION = "PRESENTATION"


@dataclass(frozen=True, order=True)
class EntityRef:
    """Hashable (kind, id) pair; used as a grouping key across the ledgers."""
    kind: EntityKind
    id: int

    @classmethod
    def product(cls, product_id: int) -> "EntityRef":
        return cls(EntityKind.PRODUCT, product_id)

    @classmethod
    def presentation(cls, presentation_id: int) -> "EntityRef":
        return cls(EntityKind.PRESENTATION, presentation_id)

    @property
    def is_presentation(self) -> bool:
        return self.kind == EntityKind.PRESENTATION

    def __str__(self) -> str:
        return f"{self.kind.value.lower()}#{self.id}"
