from pydantic import BaseModel, Field, model_validator
from decimal import Decimal
from typing import Optional, List
from datetime import date, datetime

from app.common.entities import EntityKind
from app.modules.movements.models import MovementReason


class StockEntryIn(BaseModel):
    entity_kind: EntityKind = EntityKind.PRODUCT
    entity_id: int
    quantity: int = Field(..., gt=0)
    unit_cost: Decimal = Field(Decimal("0"), ge=0, max_digits=14, decimal_places=4)
    ingress_date: Optional[datetime] = None
    expiry_date: Optional[date] = None


class StockDeliveryCreate(BaseModel):
    branch_id: int
    supplier_id: Optional[int] = None
    received_by: Optional[int] = None
    entries: List[StockEntryIn] = Field(..., min_length=1)


class StockLotOut(BaseModel):
    id: int
    product_id: Optional[int] = None
    presentation_id: Optional[int] = None
    branch_id: int
    delivery_id: Optional[int] = None
    initial_quantity: int
    remaining_quantity: int
    unit_cost: Decimal
    ingress_date: datetime
    expiry_date: Optional[date] = None

    model_config = {"from_attributes": True}


class StockDeliveryOut(BaseModel):
    id: int
    branch_id: int
    supplier_id: Optional[int] = None
    received_by: Optional[int] = None
    total_cost: Decimal
    lots: List[StockLotOut] = []

    model_config = {"from_attributes": True}


class LotDatesUpdate(BaseModel):
    ingress_date: datetime
    expiry_date: Optional[date] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.expiry_date is not None and self.expiry_date < self.ingress_date.date():
            raise ValueError("La fecha de caducidad no puede ser anterior a la fecha de ingreso")
        return self


class LotRemove(BaseModel):
    user_id: Optional[int] = None
    reason: Optional[str] = Field(None, max_length=255)


class LotFilters(BaseModel):
    branch_id: Optional[int] = None
    entity_kind: Optional[EntityKind] = None
    entity_id: Optional[int] = None
    only_available: bool = True
    ingress_from: Optional[datetime] = None
    ingress_to: Optional[datetime] = None
    expiring_before: Optional[date] = None


class ThresholdSet(BaseModel):
    entity_kind: EntityKind = EntityKind.PRODUCT
    entity_id: int
    minimum: Optional[int] = Field(None, ge=0, description="None elimina el umbral")


class ThresholdOut(BaseModel):
    id: int
    product_id: Optional[int] = None
    presentation_id: Optional[int] = None
    minimum: int

    model_config = {"from_attributes": True}


class StockTotalOut(BaseModel):
    entity_kind: EntityKind
    entity_id: int
    branch_id: int
    quantity: int


class StockMovementOut(BaseModel):
    id: int
    product_id: Optional[int] = None
    presentation_id: Optional[int] = None
    branch_id: int
    user_id: Optional[int] = None
    reason: MovementReason
    reference_id: Optional[int] = None
    quantity_before: int
    delta: int
    quantity_after: int
    note: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}
