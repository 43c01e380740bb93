from app.database.database import Base
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum
from sqlalchemy.sql import func
from app.common.mixins import EntityRefMixin, entity_xor_constraint
import enum


class MovementReason(enum.Enum):
    SALE_EXIT = "SALE_EXIT"            # Salida por venta
    STOCK_DELIVERY = "STOCK_DELIVERY"  # Ingreso por entrega de proveedor
    LOT_REMOVAL = "LOT_REMOVAL"        # Eliminación de un lote
    ADJUSTMENT = "ADJUSTMENT"          # Ajuste manual


class StockMovement(Base, EntityRefMixin):
    """
    Historial de cambios de cantidad (solo inserción).

    quantity_before / quantity_after son agregados de la sucursal para la
    entidad, no cantidades de un lote puntual.
    """
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    reason = Column(Enum(MovementReason), nullable=False, index=True)
    reference_id = Column(Integer, nullable=True, index=True)  # venta, entrega, lote...
    quantity_before = Column(Integer, nullable=False)
    delta = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)
    note = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        entity_xor_constraint("stock_movements"),
    )
