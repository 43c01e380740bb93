"""
Servicios de negocio para cajas registradoras

- CashRegisterService: Apertura/cierre de cajas y arqueo
- CashRegisterGate: Vincula una venta con la caja abierta de su sucursal

La apertura y el cierre confirman su propia transacción. La compuerta de
ventas escribe dentro de la transacción de la venta y no hace commit.
"""

from fastapi import HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from decimal import Decimal
from typing import Optional
from datetime import datetime
import logging

from app.modules.branches.models import Branch
from app.modules.pos.models import (
    CashRegister, CashMovement, CashRegisterSale,
    CashRegisterStatus, MovementType
)
from app.modules.pos.schemas import CashRegisterOpen, CashRegisterClose
from app.modules.sales.exceptions import RegisterRequiredError

logger = logging.getLogger(__name__)


class CashRegisterService:
    """Servicio para gestión de cajas registradoras"""

    def __init__(self, db: Session):
        self.db = db

    def open_cash_register(self, register_data: CashRegisterOpen) -> CashRegister:
        """Abrir caja registradora"""
        try:
            branch = self.db.query(Branch).filter(Branch.id == register_data.branch_id).first()
            if not branch:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Sucursal no encontrada"
                )

            # Verificar que no hay otra caja abierta en la misma sucursal
            if self.get_current_cash_register(register_data.branch_id):
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"Ya existe una caja abierta en la sucursal '{branch.name}'"
                )

            new_register = CashRegister(
                branch_id=register_data.branch_id,
                name=f"Caja {branch.name} - {datetime.now().strftime('%Y%m%d')}",
                status=CashRegisterStatus.OPEN,
                opening_balance=register_data.opening_balance,
                opened_by=register_data.user_id,
                opened_at=datetime.utcnow(),
                opening_notes=register_data.opening_notes
            )

            self.db.add(new_register)
            self.db.commit()
            self.db.refresh(new_register)

            logger.info(f"Caja #{new_register.id} abierta en sucursal {branch.id}")
            return new_register

        except HTTPException:
            raise
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Error de integridad al crear la caja"
            )
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error al abrir caja: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Error interno del servidor"
            )

    def get_current_cash_register(self, branch_id: int, lock: bool = False) -> Optional[CashRegister]:
        """
        Obtener la caja abierta actual de una sucursal.

        Retorna None si no existe caja abierta.
        """
        query = self.db.query(CashRegister).filter(
            CashRegister.branch_id == branch_id,
            CashRegister.status == CashRegisterStatus.OPEN
        ).order_by(CashRegister.opened_at.desc())
        if lock:
            query = query.with_for_update()
        return query.first()

    def close_cash_register(self, register_id: int, close_data: CashRegisterClose) -> CashRegister:
        """Cerrar caja registradora con arqueo"""
        try:
            register = self.db.query(CashRegister).filter(CashRegister.id == register_id).first()

            if not register:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Caja registradora no encontrada"
                )

            if register.status == CashRegisterStatus.CLOSED:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="La caja ya está cerrada"
                )

            difference = close_data.closing_balance - register.calculated_balance

            # Si hay diferencia, crear movimiento de ajuste
            if difference != 0:
                self.db.add(CashMovement(
                    cash_register_id=register_id,
                    type=MovementType.ADJUSTMENT,
                    amount=difference,
                    reference="ARQUEO",
                    notes=f"Ajuste por diferencia en arqueo: {'Sobrante' if difference > 0 else 'Faltante'} de {abs(difference)}",
                    created_by=close_data.user_id
                ))

            register.status = CashRegisterStatus.CLOSED
            register.closing_balance = close_data.closing_balance
            register.closed_by = close_data.user_id
            register.closed_at = datetime.utcnow()
            register.closing_notes = close_data.closing_notes

            self.db.commit()
            self.db.refresh(register)

            logger.info(f"Caja #{register.id} cerrada (diferencia {difference})")
            return register

        except HTTPException:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error al cerrar caja {register_id}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Error interno del servidor"
            )


class CashRegisterGate:
    """Liga ventas a la caja abierta de la sucursal"""

    def __init__(self, db: Session):
        self.db = db
        self.registers = CashRegisterService(db)

    def attach_and_record(self, sale_id: int, branch_id: int, user_id: int,
                          must_require_open_register_if_cash: bool,
                          cash_amount: Decimal = Decimal("0")) -> Optional[CashRegisterSale]:
        """
        Vincula la venta a la caja abierta y registra el ingreso en efectivo.

        Sin caja abierta: falla con RegisterRequired si se exige caja, o no
        hace nada en caso contrario.
        """
        register = self.registers.get_current_cash_register(branch_id, lock=True)

        if register is None:
            if must_require_open_register_if_cash:
                raise RegisterRequiredError(
                    "Debe abrir una caja para registrar ventas en efectivo.",
                    {"branch_id": branch_id, "sale_id": sale_id}
                )
            return None

        binding = CashRegisterSale(cash_register_id=register.id, sale_id=sale_id)
        self.db.add(binding)

        if cash_amount and cash_amount > 0:
            self.db.add(CashMovement(
                cash_register_id=register.id,
                type=MovementType.SALE,
                amount=cash_amount,
                reference=f"VENTA-{sale_id}",
                sale_id=sale_id,
                created_by=user_id
            ))

        self.db.flush()
        logger.debug(f"Venta #{sale_id} vinculada a caja #{register.id}")
        return binding
