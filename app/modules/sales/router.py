from fastapi import APIRouter, Depends, status, Query
from typing import Optional
from datetime import datetime
from sqlalchemy.orm import Session

from app.database.database import get_db
from app.modules.sales.models import PaymentMethod
from app.modules.sales.service import SaleService
from app.modules.sales.schemas import SaleCreate, SaleOut, SaleFilters, SaleList

sales_router = APIRouter(prefix="/sales", tags=["Sales"])


@sales_router.post("/", response_model=SaleOut, status_code=status.HTTP_201_CREATED)
def create_sale(
    sale_data: SaleCreate,
    db: Session = Depends(get_db)
):
    """
    Registrar una venta.

    Valida precios, descuenta stock por FIFO, registra pago, caja y metas
    en una sola transacción. Los errores de dominio responden con
    ``{"kind", "detail"}``.
    """
    service = SaleService(db)
    return service.create_sale(sale_data)


@sales_router.get("/", response_model=SaleList)
def list_sales(
    branch_id: Optional[int] = Query(None),
    user_id: Optional[int] = Query(None),
    client_id: Optional[int] = Query(None),
    payment_method: Optional[PaymentMethod] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db)
):
    filters = SaleFilters(
        branch_id=branch_id,
        user_id=user_id,
        client_id=client_id,
        payment_method=payment_method,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    service = SaleService(db)
    return service.list_sales(filters)


@sales_router.get("/{sale_id}", response_model=SaleOut)
def get_sale(
    sale_id: int,
    db: Session = Depends(get_db)
):
    service = SaleService(db)
    return service.get_sale(sale_id)
