"""
Tests para notificaciones de stock mínimo
"""

from app.common.entities import EntityRef
from app.modules.auth.models import User, UserRole
from app.modules.notifications.models import Notification, NotificationRecipient, NotificationCategory
from app.modules.notifications.service import ThresholdNotifier


class TestThresholdCrossings:
    """Tests de cruces de umbral"""

    def test_crossing_fires_once_and_does_not_refire(self, db_session, admin_user, seller_user, product, make_threshold):
        """Escenario C: umbral 5; 6 -> 4 notifica, 4 -> 2 no vuelve a notificar"""
        threshold = make_threshold(5, product=product)
        entity = EntityRef.product(product.id)
        notifier = ThresholdNotifier(db_session, dispatcher=lambda _id: None)

        fired = notifier.notify_threshold_crossings({entity: 6}, {entity: 4})
        assert list(fired) == [entity]
        notification = fired[entity]
        assert notification.reference_id == threshold.id
        assert notification.title == f"Stock mínimo de {product.name} alcanzado"
        assert notification.recipient_ids == {admin_user.id, seller_user.id}

        again = notifier.notify_threshold_crossings({entity: 4}, {entity: 2})
        assert again == {}
        assert db_session.query(Notification).count() == 1

    def test_no_crossing_when_staying_above(self, db_session, admin_user, product, make_threshold):
        make_threshold(5, product=product)
        entity = EntityRef.product(product.id)
        notifier = ThresholdNotifier(db_session, dispatcher=lambda _id: None)

        assert notifier.notify_threshold_crossings({entity: 10}, {entity: 6}) == {}
        assert db_session.query(Notification).count() == 0

    def test_landing_exactly_on_minimum_fires(self, db_session, admin_user, product, make_threshold):
        make_threshold(5, product=product)
        entity = EntityRef.product(product.id)
        notifier = ThresholdNotifier(db_session, dispatcher=lambda _id: None)

        assert entity in notifier.notify_threshold_crossings({entity: 6}, {entity: 5})

    def test_entities_without_threshold_are_ignored(self, db_session, admin_user, product):
        entity = EntityRef.product(product.id)
        notifier = ThresholdNotifier(db_session, dispatcher=lambda _id: None)

        assert notifier.notify_threshold_crossings({entity: 100}, {entity: 0}) == {}

    def test_open_notification_gets_missing_recipients_only(self, db_session, admin_user, product, make_threshold):
        threshold = make_threshold(5, product=product)
        entity = EntityRef.product(product.id)
        sent = []
        notifier = ThresholdNotifier(db_session, dispatcher=sent.append)
        first = notifier.notify_threshold_crossings({entity: 6}, {entity: 4})[entity]
        notifier.dispatch_pending()

        # un vendedor nuevo se da de alta y el stock se recupera sin cerrar la alerta
        newcomer = User(name="Nuevo", email="nuevo@example.com", role=UserRole.SELLER)
        db_session.add(newcomer)
        db_session.flush()

        second = notifier.notify_threshold_crossings({entity: 7}, {entity: 3})
        assert second[entity].id == first.id
        recipients = db_session.query(NotificationRecipient.user_id).filter(
            NotificationRecipient.notification_id == first.id
        ).all()
        assert sorted(r[0] for r in recipients) == sorted([admin_user.id, newcomer.id])
        # los destinatarios nuevos también reciben el aviso
        notifier.dispatch_pending()
        assert sent == [first.id, first.id]
        assert db_session.query(Notification).filter(
            Notification.category == NotificationCategory.INVENTORY,
            Notification.reference_id == threshold.id
        ).count() == 1

    def test_close_recovered(self, db_session, admin_user, product, make_threshold):
        make_threshold(5, product=product)
        entity = EntityRef.product(product.id)
        notifier = ThresholdNotifier(db_session, dispatcher=lambda _id: None)
        notification = notifier.notify_threshold_crossings({entity: 6}, {entity: 4})[entity]

        assert notifier.close_recovered({entity: 4}) == 0
        assert notifier.close_recovered({entity: 9}) == 1
        assert notification.is_open is False
        assert notification.closed_at is not None


class TestDispatch:
    """Tests del despacho posterior al commit"""

    def test_dispatch_pending_sends_and_clears(self, db_session, admin_user):
        sent = []
        notifier = ThresholdNotifier(db_session, dispatcher=sent.append)
        notification = notifier.notify_users("Prueba", "Mensaje", [admin_user.id], NotificationCategory.SALES, None)

        notifier.dispatch_pending()
        notifier.dispatch_pending()

        assert sent == [notification.id]

    def test_attach_queues_only_when_recipients_added(self, db_session, admin_user, seller_user):
        sent = []
        notifier = ThresholdNotifier(db_session, dispatcher=sent.append)
        notification = notifier.notify_users("Prueba", "Mensaje", [admin_user.id], NotificationCategory.SALES, None)
        notifier.dispatch_pending()

        assert notifier.attach_recipients(notification.id, [admin_user.id]) == []
        notifier.dispatch_pending()
        assert sent == [notification.id]

        assert notifier.attach_recipients(notification.id, [admin_user.id, seller_user.id]) == [seller_user.id]
        notifier.dispatch_pending()
        assert sent == [notification.id, notification.id]

    def test_discard_pending(self, db_session, admin_user):
        sent = []
        notifier = ThresholdNotifier(db_session, dispatcher=sent.append)
        notifier.notify_users("Prueba", "Mensaje", [admin_user.id], NotificationCategory.SALES, None)

        notifier.discard_pending()
        notifier.dispatch_pending()

        assert sent == []

    def test_dispatch_failure_is_logged_not_raised(self, db_session, admin_user):
        def broken(_id):
            raise RuntimeError("broker caído")

        notifier = ThresholdNotifier(db_session, dispatcher=broken)
        notifier.notify_users("Prueba", "Mensaje", [admin_user.id], NotificationCategory.SALES, None)
        notifier.dispatch_pending()
