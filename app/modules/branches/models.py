from sqlalchemy import Column, Integer, String, Boolean
from app.database.database import Base
from app.common.mixins import TimestampMixin


class Branch(Base, TimestampMixin):
    """Sucursal; el stock y las cajas se llevan por sucursal."""
    __tablename__ = "branches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    address = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
