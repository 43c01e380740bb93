from pydantic import BaseModel, Field, field_validator
from typing import Optional


class ClientQuickCreate(BaseModel):
    """Datos mínimos para registrar un cliente desde la venta"""
    name: Optional[str] = Field(None, max_length=150)
    last_name: Optional[str] = Field(None, max_length=150)
    dpi: Optional[str] = Field(None, max_length=32)
    nit: Optional[str] = Field(None, max_length=32)
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = None

    @field_validator("name", "last_name", "dpi", "nit", "phone", "address", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v
