"""
Modelos de ventas

- Sale: Encabezado inmutable de la venta
- SaleLine: Línea vendida (producto o presentación) con el precio usado
- Payment: Pago único de la venta
"""

from app.database.database import Base
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric, Enum, Text, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.common.entities import EntityKind, EntityRef
import enum


class PaymentMethod(enum.Enum):
    CASH = "CASH"
    CARD = "CARD"
    TRANSFER = "TRANSFER"
    CHECK = "CHECK"
    CREDIT = "CREDIT"
    OTHER = "OTHER"


class VoucherType(enum.Enum):
    TICKET = "TICKET"    # Comprobante simple
    INVOICE = "INVOICE"  # Factura


class Sale(Base):
    __tablename__ = "sales"

    id = Column(Integer, primary_key=True, autoincrement=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True, index=True)  # NULL = CF
    payment_method = Column(Enum(PaymentMethod), nullable=True, index=True)  # Se fija al registrar el pago
    voucher_type = Column(Enum(VoucherType), nullable=False, default=VoucherType.TICKET)
    payment_reference = Column(String(100), nullable=True)
    total = Column(Numeric(14, 4), nullable=False)
    imei = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    lines = relationship("SaleLine", back_populates="sale", cascade="all, delete-orphan", order_by="SaleLine.id")
    payment = relationship("Payment", back_populates="sale", uselist=False, cascade="all, delete-orphan")


class SaleLine(Base):
    __tablename__ = "sale_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sale_id = Column(Integer, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    presentation_id = Column(Integer, ForeignKey("presentations.id"), nullable=True, index=True)
    price_id = Column(Integer, ForeignKey("price_records.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(14, 4), nullable=False)

    sale = relationship("Sale", back_populates="lines")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_positive"),
    )

    @property
    def entity(self) -> EntityRef:
        if self.presentation_id is not None:
            return EntityRef(EntityKind.PRESENTATION, self.presentation_id)
        return EntityRef(EntityKind.PRODUCT, self.product_id)

    @property
    def subtotal(self):
        return self.quantity * self.unit_price


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sale_id = Column(Integer, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, unique=True)
    method = Column(Enum(PaymentMethod), nullable=False)
    amount = Column(Numeric(14, 4), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    sale = relationship("Sale", back_populates="payment")
