from fastapi import APIRouter, Depends, HTTPException, status, Query
from typing import List, Optional
from datetime import date, datetime
from sqlalchemy.orm import Session

from app.common.entities import EntityKind, EntityRef
from app.database.database import get_db
from app.modules.products.service import CatalogService
from app.modules.stock.service import StockLedger
from app.modules.movements.service import MovementTracker
from app.modules.stock.schemas import (
    StockDeliveryCreate, StockDeliveryOut, StockLotOut, LotDatesUpdate, LotRemove,
    LotFilters, ThresholdSet, ThresholdOut, StockTotalOut, StockMovementOut
)

stock_router = APIRouter(prefix="/stock", tags=["Stock Management"])


@stock_router.post("/deliveries", response_model=StockDeliveryOut, status_code=status.HTTP_201_CREATED)
def receive_delivery(
    delivery: StockDeliveryCreate,
    db: Session = Depends(get_db)
):
    """Register a supplier delivery; one lot is created per entry."""
    service = StockLedger(db)
    return service.receive_delivery(delivery)


@stock_router.get("/lots", response_model=List[StockLotOut])
def list_lots(
    branch_id: Optional[int] = Query(None),
    entity_kind: Optional[EntityKind] = Query(None),
    entity_id: Optional[int] = Query(None),
    only_available: bool = Query(True),
    ingress_from: Optional[datetime] = Query(None),
    ingress_to: Optional[datetime] = Query(None),
    expiring_before: Optional[date] = Query(None),
    db: Session = Depends(get_db)
):
    """List lots in FIFO order."""
    filters = LotFilters(
        branch_id=branch_id,
        entity_kind=entity_kind,
        entity_id=entity_id,
        only_available=only_available,
        ingress_from=ingress_from,
        ingress_to=ingress_to,
        expiring_before=expiring_before,
    )
    service = StockLedger(db)
    return service.list_lots(filters)


@stock_router.get("/total", response_model=StockTotalOut)
def get_stock_total(
    entity_id: int = Query(...),
    branch_id: int = Query(...),
    entity_kind: EntityKind = Query(EntityKind.PRODUCT),
    db: Session = Depends(get_db)
):
    """Aggregate remaining quantity of a product or presentation in a branch."""
    entity = EntityRef(entity_kind, entity_id)
    CatalogService(db).get_entity(entity)
    service = StockLedger(db)
    return StockTotalOut(
        entity_kind=entity_kind,
        entity_id=entity_id,
        branch_id=branch_id,
        quantity=service.aggregate_quantity(entity, branch_id),
    )


@stock_router.patch("/lots/{lot_id}/dates", response_model=StockLotOut)
def update_lot_dates(
    lot_id: int,
    data: LotDatesUpdate,
    db: Session = Depends(get_db)
):
    """Correct the ingress and expiry dates of a lot."""
    service = StockLedger(db)
    return service.update_lot_dates(lot_id, data)


@stock_router.delete("/lots/{lot_id}", response_model=StockLotOut)
def remove_lot(
    lot_id: int,
    data: LotRemove,
    db: Session = Depends(get_db)
):
    """Delete a lot and record the removal movement."""
    service = StockLedger(db)
    return service.remove_lot(lot_id, data)


@stock_router.put("/thresholds", response_model=Optional[ThresholdOut])
def set_threshold(
    data: ThresholdSet,
    db: Session = Depends(get_db)
):
    """Create, update or (with ``minimum: null``) delete a stock minimum."""
    service = StockLedger(db)
    return service.set_threshold(data)


@stock_router.get("/thresholds", response_model=ThresholdOut)
def get_threshold(
    entity_id: int = Query(...),
    entity_kind: EntityKind = Query(EntityKind.PRODUCT),
    db: Session = Depends(get_db)
):
    service = StockLedger(db)
    threshold = service.get_threshold(EntityRef(entity_kind, entity_id))
    if not threshold:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Umbral no encontrado")
    return threshold


@stock_router.get("/movements", response_model=List[StockMovementOut])
def get_movement_history(
    entity_id: int = Query(...),
    branch_id: int = Query(...),
    entity_kind: EntityKind = Query(EntityKind.PRODUCT),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db)
):
    """Quantity change history of an entity in a branch, newest first."""
    tracker = MovementTracker(db)
    return tracker.history(EntityRef(entity_kind, entity_id), branch_id, limit)
