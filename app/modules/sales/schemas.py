"""
Esquemas Pydantic para ventas
"""

from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List, Union
from datetime import datetime

from app.modules.clients.schemas import ClientQuickCreate
from app.modules.sales.models import PaymentMethod, VoucherType


class SaleLineIn(BaseModel):
    """
    Línea solicitada.

    La entidad vendida la determina el precio seleccionado; product_id y
    presentation_id son opcionales y, si vienen, deben coincidir con él.
    La cantidad se valida en el servicio (entero positivo).
    """
    product_id: Optional[int] = None
    presentation_id: Optional[int] = None
    quantity: Union[int, float]
    selected_price_id: int


class SaleCreate(BaseModel):
    branch_id: int
    user_id: int
    client_id: Optional[int] = None
    client: Optional[ClientQuickCreate] = Field(None, description="Datos para registrar un cliente nuevo")
    lines: List[SaleLineIn] = Field(..., min_length=1)
    payment_method: PaymentMethod
    voucher_type: VoucherType = VoucherType.TICKET
    payment_reference: Optional[str] = Field(None, max_length=100)
    imei: Optional[str] = Field(None, max_length=64)
    notes: Optional[str] = None


class SaleLineOut(BaseModel):
    id: int
    product_id: int
    presentation_id: Optional[int] = None
    price_id: int
    quantity: int
    unit_price: Decimal

    model_config = {"from_attributes": True}


class PaymentOut(BaseModel):
    id: int
    method: PaymentMethod
    amount: Decimal

    model_config = {"from_attributes": True}


class SaleOut(BaseModel):
    id: int
    branch_id: int
    user_id: int
    client_id: Optional[int] = None
    payment_method: Optional[PaymentMethod] = None
    voucher_type: VoucherType
    payment_reference: Optional[str] = None
    total: Decimal
    imei: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    lines: List[SaleLineOut] = []
    payment: Optional[PaymentOut] = None

    model_config = {"from_attributes": True}


class SaleFilters(BaseModel):
    branch_id: Optional[int] = None
    user_id: Optional[int] = None
    client_id: Optional[int] = None
    payment_method: Optional[PaymentMethod] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    limit: int = Field(100, ge=1, le=500)
    offset: int = Field(0, ge=0)


class SaleList(BaseModel):
    sales: List[SaleOut]
    total: int
    limit: int
    offset: int
