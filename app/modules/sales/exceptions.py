"""
Errores de dominio del flujo de ventas.

Cada error lleva un ``kind`` estable que se expone al cliente; el mapeo a
códigos HTTP vive en ``app.main``.
"""
from typing import Any, Dict, Optional


class SaleError(Exception):
    kind = "Unexpected"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "detail": self.message}


class InvalidPriceError(SaleError):
    kind = "InvalidPrice"


class MismatchedEntityError(SaleError):
    kind = "MismatchedEntity"


class InvalidQuantityError(SaleError):
    kind = "InvalidQuantity"


class PriceClaimConflictError(SaleError):
    kind = "PriceClaimConflict"


class InsufficientStockError(SaleError):
    kind = "InsufficientStock"


class RegisterRequiredError(SaleError):
    kind = "RegisterRequired"


class UnexpectedSaleError(SaleError):
    """Falla interna; el detalle queda en los logs, no en el mensaje."""
    kind = "Unexpected"
