"""
Routers FastAPI para cajas registradoras

- POST /cash-registers/open: Apertura de caja en una sucursal
- GET /cash-registers/current: Caja abierta actual de una sucursal
- POST /cash-registers/{register_id}/close: Cierre con arqueo
"""

from fastapi import APIRouter, Depends, HTTPException, status, Query, Path
from sqlalchemy.orm import Session

from app.database.database import get_db
from app.modules.pos.services import CashRegisterService
from app.modules.pos.schemas import CashRegisterOpen, CashRegisterClose, CashRegisterOut


cash_registers_router = APIRouter(prefix="/cash-registers", tags=["POS"])


@cash_registers_router.post("/open", response_model=CashRegisterOut, status_code=status.HTTP_201_CREATED)
def open_cash_register(
    register_data: CashRegisterOpen,
    db: Session = Depends(get_db)
):
    """
    Abrir caja registradora en una sucursal.

    - **opening_balance**: Saldo inicial de apertura
    - **opening_notes**: Notas opcionales de apertura

    Solo puede haber una caja abierta por sucursal.
    """
    service = CashRegisterService(db)
    return service.open_cash_register(register_data)


@cash_registers_router.get("/current", response_model=CashRegisterOut)
def get_current_cash_register(
    branch_id: int = Query(..., description="ID de la sucursal"),
    db: Session = Depends(get_db)
):
    """Devuelve la caja abierta actual; 404 si no hay ninguna."""
    service = CashRegisterService(db)
    register = service.get_current_cash_register(branch_id)
    if not register:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No hay caja abierta para esta sucursal")
    return register


@cash_registers_router.post("/{register_id}/close", response_model=CashRegisterOut)
def close_cash_register(
    close_data: CashRegisterClose,
    register_id: int = Path(..., description="ID de la caja registradora"),
    db: Session = Depends(get_db)
):
    """
    Cerrar caja registradora con arqueo automático.

    Si el saldo declarado difiere del calculado se genera un movimiento
    de ajuste por la diferencia.
    """
    service = CashRegisterService(db)
    return service.close_cash_register(register_id, close_data)
