from app.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Numeric
from sqlalchemy.orm import relationship
from app.common.mixins import TimestampMixin


class Product(Base, TimestampMixin):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False, index=True)
    code = Column(String(64), nullable=False, unique=True)
    supplier_code = Column(String(64), nullable=True)
    description = Column(String, nullable=True)
    current_cost = Column(Numeric(14, 4), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    presentations = relationship("Presentation", back_populates="product", cascade="all, delete-orphan")


class Presentation(Base, TimestampMixin):
    """Presentación vendible de un producto (caja, fardo, unidad suelta...)."""
    __tablename__ = "presentations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    barcode = Column(String(64), nullable=True, unique=True)
    is_default = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    product = relationship("Product", back_populates="presentations")
