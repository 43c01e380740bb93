"""
Notificaciones de stock mínimo

Detecta cruces de umbral (antes > mínimo, después <= mínimo) y deduplica:
si ya existe una notificación abierta para el umbral solo se agregan los
destinatarios faltantes. Las notificaciones se escriben en la transacción
del llamador; el despacho externo se hace después del commit.
"""
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional
import logging

from sqlalchemy.orm import Session, selectinload

from app.common.entities import EntityRef
from app.core.config import settings
from app.modules.auth.models import User, UserRole
from app.modules.notifications.models import Notification, NotificationRecipient, NotificationCategory
from app.modules.products.service import CatalogService
from app.modules.stock.models import StockThreshold

logger = logging.getLogger(__name__)

Dispatcher = Callable[[int], None]


def celery_dispatcher(notification_id: int) -> None:
    from app.modules.notifications.tasks import dispatch_notification_task
    dispatch_notification_task.delay(notification_id)


class ThresholdNotifier:

    def __init__(self, db: Session, dispatcher: Optional[Dispatcher] = None):
        self.db = db
        self.dispatcher = dispatcher or celery_dispatcher
        self._pending: List[int] = []

    # ----- destinatarios -----

    def target_user_ids(self) -> List[int]:
        roles = [UserRole(r) for r in settings.NOTIFICATION_TARGET_ROLES if r in UserRole.__members__]
        rows = self.db.query(User.id).filter(
            User.role.in_(roles),
            User.is_active == True
        ).order_by(User.id).all()
        return [row[0] for row in rows]

    # ----- operaciones básicas -----

    def find_open(self, category: NotificationCategory, reference_id: int) -> Optional[Notification]:
        return self.db.query(Notification).options(
            selectinload(Notification.recipients)
        ).filter(
            Notification.category == category,
            Notification.reference_id == reference_id,
            Notification.is_open == True
        ).order_by(Notification.id.desc()).first()

    def notify_users(self, title: str, message: str, user_ids: Iterable[int],
                     category: NotificationCategory, reference_id: Optional[int]) -> Notification:
        """Crear notificación con sus destinatarios y encolar su despacho"""
        notification = Notification(
            category=category,
            reference_id=reference_id,
            title=title,
            message=message,
            is_open=True,
        )
        notification.recipients = [NotificationRecipient(user_id=uid) for uid in sorted(set(user_ids))]
        self.db.add(notification)
        self.db.flush()
        self._pending.append(notification.id)
        return notification

    def attach_recipients(self, notification_id: int, user_ids: Iterable[int]) -> List[int]:
        """
        Agrega solo los usuarios que aún no están asociados; retorna los agregados.

        Si hubo altas, la notificación vuelve a encolarse para que los nuevos
        destinatarios reciban el aviso tras el commit.
        """
        existing = {
            row[0] for row in self.db.query(NotificationRecipient.user_id).filter(
                NotificationRecipient.notification_id == notification_id
            ).all()
        }
        added = [uid for uid in sorted(set(user_ids)) if uid not in existing]
        for uid in added:
            self.db.add(NotificationRecipient(notification_id=notification_id, user_id=uid))
        if added:
            self.db.flush()
            if notification_id not in self._pending:
                self._pending.append(notification_id)
        return added

    # ----- cruces de umbral -----

    def _threshold(self, entity: EntityRef) -> Optional[StockThreshold]:
        return self.db.query(StockThreshold).filter(*StockThreshold.entity_criteria(entity)).first()

    def notify_threshold_crossings(self, before: Mapping[EntityRef, int],
                                   after: Mapping[EntityRef, int]) -> Dict[EntityRef, Notification]:
        """
        Emite una alerta por entidad que cruzó su mínimo.

        Retorna las notificaciones creadas o ampliadas, por entidad.
        """
        touched: Dict[EntityRef, Notification] = {}
        targets: Optional[List[int]] = None
        catalog = CatalogService(self.db)

        for entity, quantity_after in after.items():
            threshold = self._threshold(entity)
            if threshold is None:
                continue

            quantity_before = before.get(entity, quantity_after)
            crossed = quantity_before > threshold.minimum and quantity_after <= threshold.minimum
            if not crossed:
                continue

            if targets is None:
                targets = self.target_user_ids()

            existing = self.find_open(NotificationCategory.INVENTORY, threshold.id)
            if existing is not None:
                missing = [uid for uid in targets if uid not in existing.recipient_ids]
                if not missing:
                    continue
                self.attach_recipients(existing.id, missing)
                touched[entity] = existing
                continue

            name = catalog.display_name(entity)
            touched[entity] = self.notify_users(
                title=f"Stock mínimo de {name} alcanzado",
                message=f"{name} ha alcanzado el stock mínimo (quedan {quantity_after} uds).",
                user_ids=targets,
                category=NotificationCategory.INVENTORY,
                reference_id=threshold.id,
            )
            logger.info(f"Alerta de stock mínimo para {entity}: {quantity_before} -> {quantity_after}")

        return touched

    def close_recovered(self, quantities: Mapping[EntityRef, int]) -> int:
        """Cerrar alertas abiertas de entidades que volvieron por encima del mínimo"""
        closed = 0
        for entity, quantity in quantities.items():
            threshold = self._threshold(entity)
            if threshold is None or quantity <= threshold.minimum:
                continue
            existing = self.find_open(NotificationCategory.INVENTORY, threshold.id)
            if existing is not None:
                existing.is_open = False
                existing.closed_at = datetime.now(timezone.utc)
                closed += 1
        if closed:
            self.db.flush()
        return closed

    # ----- despacho post-commit -----

    def dispatch_pending(self) -> None:
        pending, self._pending = self._pending, []
        for notification_id in pending:
            try:
                self.dispatcher(notification_id)
            except Exception as e:
                # La venta ya está confirmada; el despacho se puede reintentar aparte
                logger.error(f"No se pudo despachar la notificación {notification_id}: {e}")

    def discard_pending(self) -> None:
        self._pending = []
