from fastapi import APIRouter, Depends, status, Path
from typing import List
from sqlalchemy.orm import Session

from app.common.entities import EntityKind, EntityRef
from app.database.database import get_db
from app.modules.prices.service import PriceLedger
from app.modules.prices.schemas import StandardPricesReplace, RequestPriceCreate, PriceOut

prices_router = APIRouter(prefix="/prices", tags=["Prices"])


@prices_router.put("/{entity_kind}/{entity_id}", response_model=List[PriceOut])
def replace_standard_prices(
    data: StandardPricesReplace,
    entity_kind: EntityKind = Path(...),
    entity_id: int = Path(...),
    db: Session = Depends(get_db)
):
    """
    Reemplazar los precios estándar vigentes de un producto o presentación.

    Los precios anteriores quedan rechazados con fecha de vencimiento.
    """
    service = PriceLedger(db)
    return service.replace_standard_prices(EntityRef(entity_kind, entity_id), data.prices, data.user_id)


@prices_router.post("/requests", response_model=PriceOut, status_code=status.HTTP_201_CREATED)
def create_request_price(
    data: RequestPriceCreate,
    db: Session = Depends(get_db)
):
    """Registrar un precio temporal aprobado (un solo uso)."""
    service = PriceLedger(db)
    return service.create_request_price(data)


@prices_router.get("/{entity_kind}/{entity_id}", response_model=List[PriceOut])
def list_current_prices(
    entity_kind: EntityKind = Path(...),
    entity_id: int = Path(...),
    db: Session = Depends(get_db)
):
    service = PriceLedger(db)
    return service.list_current_prices(EntityRef(entity_kind, entity_id))
