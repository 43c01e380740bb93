"""
Modelos de stock por lotes

- StockDelivery: entrega/recepción que agrupa lotes ingresados juntos
- StockLot: lote fechado de un producto o presentación en una sucursal
- StockThreshold: stock mínimo que dispara alertas
"""
from app.database.database import Base
from sqlalchemy import Column, Integer, Date, DateTime, ForeignKey, Numeric, CheckConstraint, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.common.mixins import TimestampMixin, EntityRefMixin, entity_xor_constraint


class StockDelivery(Base, TimestampMixin):
    __tablename__ = "stock_deliveries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False, index=True)
    supplier_id = Column(Integer, nullable=True)
    received_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    total_cost = Column(Numeric(14, 4), nullable=False, default=0)

    lots = relationship("StockLot", back_populates="delivery")


class StockLot(Base, EntityRefMixin, TimestampMixin):
    __tablename__ = "stock_lots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False, index=True)
    delivery_id = Column(Integer, ForeignKey("stock_deliveries.id"), nullable=True, index=True)
    initial_quantity = Column(Integer, nullable=False)
    remaining_quantity = Column(Integer, nullable=False)
    unit_cost = Column(Numeric(14, 4), nullable=False, default=0)
    ingress_date = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expiry_date = Column(Date, nullable=True)

    delivery = relationship("StockDelivery", back_populates="lots")

    __table_args__ = (
        entity_xor_constraint("stock_lots"),
        CheckConstraint("remaining_quantity >= 0", name="ck_stock_lots_remaining_non_negative"),
        Index("ix_stock_lots_fifo", "branch_id", "product_id", "presentation_id", "ingress_date", "id"),
    )


class StockThreshold(Base, EntityRefMixin, TimestampMixin):
    __tablename__ = "stock_thresholds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    minimum = Column(Integer, nullable=False)

    __table_args__ = (
        entity_xor_constraint("stock_thresholds"),
        CheckConstraint("minimum >= 0", name="ck_stock_thresholds_minimum_non_negative"),
        Index("uq_stock_thresholds_product", "product_id", unique=True),
        Index("uq_stock_thresholds_presentation", "presentation_id", unique=True),
    )
