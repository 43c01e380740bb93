"""
Stock ledger: per-branch lots with FIFO depletion.

Lots are read ``FOR UPDATE`` and decremented with a conditional
``remaining_quantity >= n`` update, so two sales over the same lot set are
serialized by row locks instead of relying on serializable isolation.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
import logging

from fastapi import HTTPException, status
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.common.entities import EntityKind, EntityRef
from app.common.filters import all_of, compile_filter, Eq, Range, when
from app.modules.branches.models import Branch
from app.modules.movements.models import MovementReason
from app.modules.movements.service import MovementEntry, MovementTracker
from app.modules.notifications.service import ThresholdNotifier
from app.modules.products.service import CatalogService
from app.modules.stock.models import StockDelivery, StockLot, StockThreshold
from app.modules.stock.schemas import (
    StockDeliveryCreate, LotDatesUpdate, LotRemove, LotFilters, ThresholdSet, StockLotOut
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LotConsumption:
    lot_id: int
    quantity: int
    remaining_before: int
    remaining_after: int


@dataclass
class DepletionResult:
    entity: EntityRef
    requested: int
    consumed: List[LotConsumption] = field(default_factory=list)
    shortfall: int = 0

    @property
    def ok(self) -> bool:
        return self.shortfall == 0

    @property
    def consumed_quantity(self) -> int:
        return sum(c.quantity for c in self.consumed)


class StockLedger:
    """Service for lot-based stock operations."""

    MAX_DEPLETION_ATTEMPTS = 3

    def __init__(self, db: Session, tracker: Optional[MovementTracker] = None,
                 notifier: Optional[ThresholdNotifier] = None):
        self.db = db
        self.tracker = tracker or MovementTracker(db)
        self.notifier = notifier or ThresholdNotifier(db)

    # ----- queries -----

    def _lot_filter(self, entity: EntityRef, branch_id: int, only_available: bool = True):
        return [
            *StockLot.entity_criteria(entity),
            compile_filter(StockLot, all_of(
                Eq("branch_id", branch_id),
                when(only_available or None, lambda: Range("remaining_quantity", gt=0)),
            )),
        ]

    def aggregate_quantity(self, entity: EntityRef, branch_id: int) -> int:
        """Total remaining quantity of an entity across the branch lots."""
        total = self.db.query(func.coalesce(func.sum(StockLot.remaining_quantity), 0)).filter(
            *self._lot_filter(entity, branch_id, only_available=False)
        ).scalar()
        return int(total or 0)

    def aggregate_many(self, entities: Iterable[EntityRef], branch_id: int) -> Dict[EntityRef, int]:
        return {entity: self.aggregate_quantity(entity, branch_id) for entity in entities}

    def fifo_lots(self, entity: EntityRef, branch_id: int, lock: bool = False) -> List[StockLot]:
        """Lots with stock left, oldest ingress first; ties by lot id."""
        query = self.db.query(StockLot).filter(
            *self._lot_filter(entity, branch_id)
        ).order_by(StockLot.ingress_date.asc(), StockLot.id.asc()).populate_existing()
        if lock:
            query = query.with_for_update()
        return query.all()

    def list_lots(self, filters: LotFilters) -> List[StockLot]:
        entity = None
        if filters.entity_id is not None:
            entity = EntityRef(filters.entity_kind or EntityKind.PRODUCT, filters.entity_id)

        predicate = all_of(
            when(filters.branch_id, lambda: Eq("branch_id", filters.branch_id)),
            when(filters.only_available or None, lambda: Range("remaining_quantity", gt=0)),
            when(filters.ingress_from or filters.ingress_to, lambda: Range(
                "ingress_date", gte=filters.ingress_from, lte=filters.ingress_to
            )),
            when(filters.expiring_before, lambda: Range("expiry_date", lt=filters.expiring_before)),
        )
        query = self.db.query(StockLot).filter(compile_filter(StockLot, predicate))
        if entity is not None:
            query = query.filter(*StockLot.entity_criteria(entity))
        elif filters.entity_kind is not None:
            query = query.filter(StockLot.entity_column(filters.entity_kind).is_not(None))
        return query.order_by(StockLot.ingress_date.asc(), StockLot.id.asc()).all()

    # ----- depletion -----

    def _plan(self, lots: List[StockLot], quantity: int):
        plan = []
        pending = quantity
        for lot in lots:
            if pending <= 0:
                break
            take = min(pending, lot.remaining_quantity)
            plan.append((lot, take))
            pending -= take
        return plan, pending

    def deplete_fifo(self, entity: EntityRef, branch_id: int, quantity: int) -> DepletionResult:
        """
        Consume ``quantity`` units from the oldest lots first.

        Nothing is written when the lots cannot cover the request; the result
        then carries the missing units in ``shortfall``. Writes happen in a
        savepoint so a lot changed underneath us undoes this call only.
        """
        if quantity <= 0:
            raise ValueError("quantity must be positive")

        for attempt in range(1, self.MAX_DEPLETION_ATTEMPTS + 1):
            lots = self.fifo_lots(entity, branch_id, lock=True)
            plan, pending = self._plan(lots, quantity)
            if pending > 0:
                return DepletionResult(entity=entity, requested=quantity, shortfall=pending)

            consumed = []
            savepoint = self.db.begin_nested()
            conflict = False
            for lot, take in plan:
                result = self.db.execute(
                    update(StockLot)
                    .where(StockLot.id == lot.id, StockLot.remaining_quantity >= take)
                    .values(remaining_quantity=StockLot.remaining_quantity - take)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    conflict = True
                    break
                consumed.append(LotConsumption(
                    lot_id=lot.id,
                    quantity=take,
                    remaining_before=lot.remaining_quantity,
                    remaining_after=lot.remaining_quantity - take,
                ))

            if conflict:
                savepoint.rollback()
                logger.warning(f"Lote modificado concurrentemente para {entity} (intento {attempt})")
                continue

            savepoint.commit()
            for lot, _ in plan:
                self.db.expire(lot, ["remaining_quantity"])
            return DepletionResult(entity=entity, requested=quantity, consumed=consumed)

        available = self.aggregate_quantity(entity, branch_id)
        return DepletionResult(entity=entity, requested=quantity, shortfall=max(quantity - available, 1))

    # ----- ingress and corrections -----

    def receive_delivery(self, data: StockDeliveryCreate) -> StockDelivery:
        """Register a supplier delivery: one lot per entry plus movement records."""
        branch = self.db.query(Branch).filter(Branch.id == data.branch_id).first()
        if not branch:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Sucursal {data.branch_id} no encontrada"
            )

        catalog = CatalogService(self.db)
        entities = [EntityRef(e.entity_kind, e.entity_id) for e in data.entries]
        for entity in set(entities):
            catalog.get_entity(entity)

        try:
            before = self.aggregate_many(set(entities), data.branch_id)

            delivery = StockDelivery(
                branch_id=data.branch_id,
                supplier_id=data.supplier_id,
                received_by=data.received_by,
                total_cost=sum((e.unit_cost * e.quantity for e in data.entries), Decimal("0")),
            )
            self.db.add(delivery)
            self.db.flush()

            received: Dict[EntityRef, int] = {}
            for entity, entry in zip(entities, data.entries):
                self.db.add(StockLot(
                    product_id=None if entity.is_presentation else entity.id,
                    presentation_id=entity.id if entity.is_presentation else None,
                    branch_id=data.branch_id,
                    delivery_id=delivery.id,
                    initial_quantity=entry.quantity,
                    remaining_quantity=entry.quantity,
                    unit_cost=entry.unit_cost,
                    ingress_date=entry.ingress_date or datetime.now(timezone.utc),
                    expiry_date=entry.expiry_date,
                ))
                received[entity] = received.get(entity, 0) + entry.quantity
            self.db.flush()

            self.tracker.record(
                [MovementEntry(entity, before[entity], before[entity] + qty) for entity, qty in received.items()],
                branch_id=data.branch_id,
                user_id=data.received_by,
                reference_id=delivery.id,
                reason=MovementReason.STOCK_DELIVERY,
                note=f"Registro generado por entrega #{delivery.id}",
            )
            self.notifier.close_recovered({entity: before[entity] + qty for entity, qty in received.items()})

            self.db.commit()
            self.db.refresh(delivery)
            logger.info(f"Entrega #{delivery.id} registrada con {len(data.entries)} lotes")
            return delivery

        except HTTPException:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error al crear la entrega de stock: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Error al crear la entrega de stock"
            )

    def get_lot(self, lot_id: int) -> StockLot:
        lot = self.db.query(StockLot).filter(StockLot.id == lot_id).first()
        if not lot:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"No existe el lote con id={lot_id}"
            )
        return lot

    def update_lot_dates(self, lot_id: int, data: LotDatesUpdate) -> StockLot:
        """Correct ingress/expiry dates; ingress drives FIFO order for later sales."""
        lot = self.get_lot(lot_id)
        lot.ingress_date = data.ingress_date
        lot.expiry_date = data.expiry_date
        self.db.commit()
        self.db.refresh(lot)
        return lot

    def remove_lot(self, lot_id: int, data: LotRemove) -> StockLotOut:
        lot = self.get_lot(lot_id)
        entity = lot.entity
        snapshot = StockLotOut.model_validate(lot)
        try:
            before = self.aggregate_quantity(entity, lot.branch_id)
            after = before - lot.remaining_quantity

            self.tracker.record(
                [MovementEntry(entity, before, after)],
                branch_id=lot.branch_id,
                user_id=data.user_id,
                reference_id=lot.id,
                reason=MovementReason.LOT_REMOVAL,
                note=data.reason or "Sin motivo especificado",
            )
            self.db.delete(lot)
            self.db.commit()
            logger.info(f"Lote {lot_id} de {entity} eliminado ({before} -> {after})")
            return snapshot

        except Exception as e:
            self.db.rollback()
            logger.error(f"Error al eliminar el lote {lot_id}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Error al eliminar el lote"
            )

    # ----- thresholds -----

    def get_threshold(self, entity: EntityRef) -> Optional[StockThreshold]:
        return self.db.query(StockThreshold).filter(*StockThreshold.entity_criteria(entity)).first()

    def set_threshold(self, data: ThresholdSet) -> Optional[StockThreshold]:
        """Upsert the minimum for an entity; ``minimum=None`` removes it."""
        entity = EntityRef(data.entity_kind, data.entity_id)
        CatalogService(self.db).get_entity(entity)

        current = self.get_threshold(entity)
        if data.minimum is None:
            if current:
                self.db.delete(current)
                self.db.commit()
            return None

        if current:
            current.minimum = data.minimum
        else:
            current = StockThreshold(
                product_id=None if entity.is_presentation else entity.id,
                presentation_id=entity.id if entity.is_presentation else None,
                minimum=data.minimum,
            )
            self.db.add(current)
        self.db.commit()
        self.db.refresh(current)
        return current
