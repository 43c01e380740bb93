"""
Tareas de Celery para el despacho de notificaciones.
"""
from datetime import datetime, timezone
import logging

from app.core.celery import celery_app
from app.database.database import SessionLocal
from app.modules.notifications.models import Notification

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def dispatch_notification_task(self, notification_id: int):
    """
    Marca la notificación como despachada y registra sus destinatarios.
    """
    db = SessionLocal()
    try:
        notification = db.query(Notification).filter(Notification.id == notification_id).first()
        if notification is None:
            logger.warning(f"Notificación {notification_id} no existe; se omite el despacho")
            return {"status": "missing", "notification_id": notification_id}

        recipients = sorted(notification.recipient_ids)
        notification.dispatched_at = datetime.now(timezone.utc)
        db.commit()

        logger.info(f"Notificación {notification_id} despachada a usuarios {recipients}: {notification.title}")
        return {"status": "success", "notification_id": notification_id, "recipients": recipients}

    except Exception as exc:
        db.rollback()
        logger.error(f"Despacho de notificación {notification_id} falló: {exc}")
        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=30 * (2 ** self.request.retries))
        return {"status": "failed", "error": str(exc), "notification_id": notification_id}
    finally:
        db.close()
