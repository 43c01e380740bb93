"""
Esquemas Pydantic para cajas registradoras
"""

from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional
from datetime import datetime

from app.modules.pos.models import CashRegisterStatus


class CashRegisterOpen(BaseModel):
    """Esquema para abrir caja registradora"""
    branch_id: int
    user_id: int
    opening_balance: Decimal = Field(Decimal("0"), ge=0, description="Saldo inicial de apertura")
    opening_notes: Optional[str] = Field(None, max_length=500, description="Notas de apertura")


class CashRegisterClose(BaseModel):
    """Esquema para cerrar caja registradora"""
    user_id: int
    closing_balance: Decimal = Field(..., ge=0, description="Saldo final declarado")
    closing_notes: Optional[str] = Field(None, max_length=500, description="Notas de cierre")


class CashRegisterOut(BaseModel):
    id: int
    branch_id: int
    name: str
    status: CashRegisterStatus
    opening_balance: Decimal
    closing_balance: Optional[Decimal] = None
    opened_by: int
    closed_by: Optional[int] = None
    opened_at: datetime
    closed_at: Optional[datetime] = None
    opening_notes: Optional[str] = None
    closing_notes: Optional[str] = None

    model_config = {"from_attributes": True}
