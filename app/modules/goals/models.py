from app.database.database import Base
from sqlalchemy import Column, Integer, String, Date, Numeric, Boolean, ForeignKey, CheckConstraint
from app.common.mixins import TimestampMixin


class SalesGoal(Base, TimestampMixin):
    """Meta de ventas de un usuario por canal y período."""
    __tablename__ = "sales_goals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    channel = Column(String(50), nullable=False, default="store")
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    target = Column(Numeric(14, 4), nullable=False)
    accumulated = Column(Numeric(14, 4), nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("period_end >= period_start", name="ck_sales_goals_period"),
    )
