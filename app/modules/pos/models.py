"""
Modelos SQLAlchemy para el módulo POS (Point of Sale)

- CashRegister: Cajas registradoras con apertura/cierre por sucursal
- CashMovement: Movimientos de caja (ventas, depósitos, retiros, ajustes)
- CashRegisterSale: Vínculo entre una venta y la caja abierta donde se cobró

Solo puede existir una caja abierta por sucursal simultáneamente.
"""

from app.database.database import Base
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric, Enum, Text
from sqlalchemy.orm import relationship
from datetime import datetime
from app.common.mixins import TimestampMixin
import enum


# ===== ENUMS =====

class CashRegisterStatus(enum.Enum):
    """Estados de caja registradora"""
    OPEN = "open"       # Caja abierta
    CLOSED = "closed"   # Caja cerrada


class MovementType(enum.Enum):
    """Tipos de movimiento de caja"""
    SALE = "sale"               # Venta (ingreso automático)
    DEPOSIT = "deposit"         # Depósito (ingreso manual)
    WITHDRAWAL = "withdrawal"   # Retiro (egreso manual)
    ADJUSTMENT = "adjustment"   # Ajuste por arqueo (puede ser + o -)


# ===== MODELOS =====

class CashRegister(Base, TimestampMixin):
    __tablename__ = "cash_registers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    status = Column(Enum(CashRegisterStatus), nullable=False, default=CashRegisterStatus.OPEN, index=True)

    # Balances
    opening_balance = Column(Numeric(14, 4), nullable=False, default=0)
    closing_balance = Column(Numeric(14, 4), nullable=True)  # Solo se llena al cerrar

    # Control de apertura/cierre
    opened_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    closed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    opened_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    closed_at = Column(DateTime, nullable=True)

    opening_notes = Column(Text, nullable=True)
    closing_notes = Column(Text, nullable=True)

    movements = relationship("CashMovement", back_populates="cash_register", cascade="all, delete-orphan")
    sales = relationship("CashRegisterSale", back_populates="cash_register")

    @property
    def calculated_balance(self):
        """Calcular balance actual basado en movimientos"""
        return self.opening_balance + sum((m.signed_amount for m in self.movements), 0)


class CashMovement(Base, TimestampMixin):
    __tablename__ = "cash_movements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cash_register_id = Column(Integer, ForeignKey("cash_registers.id"), nullable=False, index=True)
    type = Column(Enum(MovementType), nullable=False, index=True)
    amount = Column(Numeric(14, 4), nullable=False)  # Valor absoluto salvo ADJUSTMENT
    reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=True, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    cash_register = relationship("CashRegister", back_populates="movements")

    @property
    def signed_amount(self):
        """Monto con signo según el tipo de movimiento"""
        if self.type in (MovementType.SALE, MovementType.DEPOSIT):
            return abs(self.amount)
        if self.type == MovementType.WITHDRAWAL:
            return -abs(self.amount)
        return self.amount


class CashRegisterSale(Base):
    __tablename__ = "cash_register_sales"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cash_register_id = Column(Integer, ForeignKey("cash_registers.id"), nullable=False, index=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=False, unique=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    cash_register = relationship("CashRegister", back_populates="sales")
