from sqlalchemy import Column, Integer, String, Boolean, Enum
from app.database.database import Base
from app.common.mixins import TimestampMixin
import enum


class UserRole(enum.Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    SELLER = "SELLER"
    MANAGER = "MANAGER"


class User(Base, TimestampMixin):
    """Usuario operador del sistema; solo el rol es relevante para las ventas."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(150), nullable=False)
    email = Column(String(150), unique=True, nullable=True)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.SELLER, index=True)
    branch_id = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
