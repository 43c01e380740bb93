from datetime import date
from decimal import Decimal
from typing import Optional
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.common.filters import all_of, compile_filter, Eq, Range
from app.core.config import settings
from app.modules.goals.models import SalesGoal

logger = logging.getLogger(__name__)


class GoalTracker:
    """Acumulado de ventas por usuario; escribe dentro de la transacción del llamador."""

    def __init__(self, db: Session):
        self.db = db

    def increment(self, user_id: int, amount: Decimal, channel: Optional[str] = None,
                  on: Optional[date] = None) -> int:
        """
        Suma ``amount`` a las metas activas del usuario vigentes en ``on``.

        Retorna el número de metas actualizadas; sin metas no hace nada.
        """
        today = on or date.today()
        criteria = compile_filter(SalesGoal, all_of(
            Eq("user_id", user_id),
            Eq("channel", channel or settings.GOAL_CHANNEL),
            Eq("is_active", True),
            Range("period_start", lte=today),
            Range("period_end", gte=today),
        ))
        result = self.db.execute(
            update(SalesGoal)
            .where(criteria)
            .values(accumulated=SalesGoal.accumulated + amount)
            .execution_options(synchronize_session=False)
        )
        updated = result.rowcount or 0
        if updated:
            logger.debug(f"Meta de usuario {user_id} incrementada en {amount} ({updated} metas)")
        return updated
