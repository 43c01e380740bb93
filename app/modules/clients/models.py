from sqlalchemy import Column, Integer, String, Text
from app.database.database import Base
from app.common.mixins import TimestampMixin


class Client(Base, TimestampMixin):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(150), nullable=False, index=True)
    last_name = Column(String(150), nullable=True)
    dpi = Column(String(32), nullable=True, unique=True)
    nit = Column(String(32), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)

    @property
    def full_name(self):
        return f"{self.name} {self.last_name or ''}".strip()
