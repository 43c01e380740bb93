from dataclasses import dataclass
from typing import List, Optional, Sequence
import logging

from sqlalchemy.orm import Session

from app.common.entities import EntityRef
from app.modules.movements.models import StockMovement, MovementReason

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MovementEntry:
    entity: EntityRef
    quantity_before: int
    quantity_after: int

    @property
    def delta(self) -> int:
        return self.quantity_after - self.quantity_before


class MovementTracker:
    """Registro de movimientos de stock; escribe dentro de la transacción del llamador."""

    def __init__(self, db: Session):
        self.db = db

    def record(self, entries: Sequence[MovementEntry], branch_id: int, user_id: Optional[int],
               reference_id: Optional[int], reason: MovementReason,
               note: Optional[str] = None) -> List[StockMovement]:
        movements = []
        for entry in entries:
            movement = StockMovement(
                product_id=None if entry.entity.is_presentation else entry.entity.id,
                presentation_id=entry.entity.id if entry.entity.is_presentation else None,
                branch_id=branch_id,
                user_id=user_id,
                reason=reason,
                reference_id=reference_id,
                quantity_before=entry.quantity_before,
                delta=entry.delta,
                quantity_after=entry.quantity_after,
                note=note,
            )
            self.db.add(movement)
            movements.append(movement)

        if movements:
            self.db.flush()
            logger.debug(f"{len(movements)} movimientos {reason.value} registrados (ref={reference_id})")
        return movements

    def history(self, entity: EntityRef, branch_id: int, limit: int = 100) -> List[StockMovement]:
        return self.db.query(StockMovement).filter(
            *StockMovement.entity_criteria(entity),
            StockMovement.branch_id == branch_id
        ).order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit).all()
