"""
Modelos del libro de precios

Un PriceRecord pertenece a un producto o a una presentación (nunca a ambos).
Los precios STANDARD se versionan: el vigente es el APPROVED con
valid_until nulo. Los REQUEST_GENERATED nacen de una solicitud aprobada y
solo pueden consumirse una vez (flag ``used``).
"""
from app.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, Enum, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.common.mixins import TimestampMixin, EntityRefMixin, entity_xor_constraint
import enum


class PriceState(enum.Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PriceKind(enum.Enum):
    STANDARD = "STANDARD"
    REQUEST_GENERATED = "REQUEST_GENERATED"


class PriceRole(enum.Enum):
    PUBLIC = "PUBLIC"
    WHOLESALE = "WHOLESALE"
    SPECIAL = "SPECIAL"
    DISTRIBUTOR = "DISTRIBUTOR"


class PriceRecord(Base, EntityRefMixin, TimestampMixin):
    __tablename__ = "price_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    role = Column(Enum(PriceRole), nullable=False, default=PriceRole.PUBLIC)
    ordinal = Column(Integer, nullable=False, default=1)
    amount = Column(Numeric(14, 4), nullable=False)
    state = Column(Enum(PriceState), nullable=False, default=PriceState.APPROVED, index=True)
    kind = Column(Enum(PriceKind), nullable=False, default=PriceKind.STANDARD, index=True)
    used = Column(Boolean, nullable=False, default=False)
    valid_from = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    valid_until = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(Integer, nullable=True)
    note = Column(String(255), nullable=True)

    product = relationship("Product")
    presentation = relationship("Presentation")

    __table_args__ = (
        entity_xor_constraint("price_records"),
        Index("ix_price_records_current", "product_id", "presentation_id", "state", "valid_until"),
    )
