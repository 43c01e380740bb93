from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List
from datetime import datetime

from app.common.entities import EntityKind
from app.modules.prices.models import PriceRole, PriceKind, PriceState


class PriceIn(BaseModel):
    role: PriceRole = PriceRole.PUBLIC
    ordinal: int = Field(1, ge=1)
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=4)


class StandardPricesReplace(BaseModel):
    prices: List[PriceIn] = Field(default_factory=list)
    user_id: Optional[int] = None


class RequestPriceCreate(BaseModel):
    entity_kind: EntityKind
    entity_id: int
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=4)
    role: PriceRole = PriceRole.PUBLIC
    approved_by: Optional[int] = None
    note: Optional[str] = Field(None, max_length=255)


class PriceOut(BaseModel):
    id: int
    product_id: Optional[int] = None
    presentation_id: Optional[int] = None
    role: PriceRole
    ordinal: int
    amount: Decimal
    state: PriceState
    kind: PriceKind
    used: bool
    valid_from: datetime
    valid_until: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ResolvedPrice(BaseModel):
    """Resultado de validar un precio seleccionado en una línea de venta"""
    price_id: int
    entity_kind: EntityKind
    entity_id: int
    product_id: int  # dueño; para presentaciones es el producto padre
    amount: Decimal
    kind: PriceKind
    state: PriceState
    used: bool

    @property
    def is_temporary(self) -> bool:
        return self.kind == PriceKind.REQUEST_GENERATED and self.state == PriceState.APPROVED
