from typing import Optional, Tuple
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from app.common.entities import EntityKind, EntityRef
from app.modules.products.models import Product, Presentation


class CatalogService:
    """Consultas de catálogo compartidas por precios, stock y ventas."""

    def __init__(self, db: Session):
        self.db = db

    def find_entity(self, entity: EntityRef) -> Optional[Tuple[int, str]]:
        """Retorna (product_id dueño, nombre visible) o None si no existe."""
        if entity.kind == EntityKind.PRESENTATION:
            row = self.db.query(Presentation.product_id, Presentation.name, Product.name).join(
                Product, Product.id == Presentation.product_id
            ).filter(Presentation.id == entity.id).first()
            if not row:
                return None
            return row[0], f"{row[2]} - {row[1]}"

        row = self.db.query(Product.id, Product.name).filter(Product.id == entity.id).first()
        if not row:
            return None
        return row[0], row[1]

    def get_entity(self, entity: EntityRef) -> Tuple[int, str]:
        found = self.find_entity(entity)
        if not found:
            label = "Presentación" if entity.is_presentation else "Producto"
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"{label} {entity.id} no encontrado"
            )
        return found

    def display_name(self, entity: EntityRef) -> str:
        found = self.find_entity(entity)
        return found[1] if found else str(entity.id)
