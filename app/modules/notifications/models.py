from app.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Enum, Text, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from app.common.mixins import TimestampMixin
import enum


class NotificationCategory(enum.Enum):
    INVENTORY = "INVENTORY"
    PRICES = "PRICES"
    SALES = "SALES"


class Notification(Base, TimestampMixin):
    """
    Notificación interna.

    Para alertas de stock mínimo reference_id apunta al StockThreshold; una
    notificación abierta por umbral se reutiliza hasta que el stock se recupere.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    category = Column(Enum(NotificationCategory), nullable=False, index=True)
    reference_id = Column(Integer, nullable=True)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    is_open = Column(Boolean, nullable=False, default=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    dispatched_at = Column(DateTime(timezone=True), nullable=True)

    recipients = relationship("NotificationRecipient", back_populates="notification", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_notifications_category_reference", "category", "reference_id"),
    )

    @property
    def recipient_ids(self):
        return {r.user_id for r in self.recipients}


class NotificationRecipient(Base):
    __tablename__ = "notification_recipients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    notification_id = Column(Integer, ForeignKey("notifications.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)

    notification = relationship("Notification", back_populates="recipients")

    __table_args__ = (
        UniqueConstraint("notification_id", "user_id", name="uq_notification_recipient"),
    )
