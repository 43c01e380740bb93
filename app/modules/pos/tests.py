"""
Tests para cajas registradoras y la política de caja
"""

import pytest
from decimal import Decimal
from fastapi import HTTPException

from app.modules.auth.models import UserRole
from app.modules.pos.models import CashMovement, CashRegisterStatus, MovementType
from app.modules.pos.policy import register_required
from app.modules.pos.schemas import CashRegisterOpen, CashRegisterClose
from app.modules.pos.services import CashRegisterService, CashRegisterGate
from app.modules.sales.exceptions import RegisterRequiredError
from app.modules.sales.models import PaymentMethod


class TestRegisterPolicy:
    """Tests de la decisión de caja obligatoria"""

    @pytest.mark.parametrize("role,method,expected", [
        (UserRole.SELLER, PaymentMethod.CASH, True),
        (UserRole.ADMIN, PaymentMethod.CASH, True),
        (UserRole.SUPER_ADMIN, PaymentMethod.CASH, False),
        (UserRole.SELLER, PaymentMethod.CARD, False),
        (UserRole.SELLER, PaymentMethod.CREDIT, False),
    ])
    def test_register_required(self, role, method, expected):
        assert register_required(role, method) is expected


class TestCashRegisterService:
    """Tests de apertura y cierre de caja"""

    def test_open_and_current(self, db_session, branch, seller_user):
        service = CashRegisterService(db_session)
        register = service.open_cash_register(CashRegisterOpen(
            branch_id=branch.id, user_id=seller_user.id, opening_balance=Decimal("50.00")
        ))

        assert register.status == CashRegisterStatus.OPEN
        assert register.name.startswith(f"Caja {branch.name}")
        assert service.get_current_cash_register(branch.id).id == register.id

    def test_only_one_open_register_per_branch(self, db_session, branch, seller_user):
        service = CashRegisterService(db_session)
        service.open_cash_register(CashRegisterOpen(branch_id=branch.id, user_id=seller_user.id))

        with pytest.raises(HTTPException) as exc:
            service.open_cash_register(CashRegisterOpen(branch_id=branch.id, user_id=seller_user.id))
        assert exc.value.status_code == 409

    def test_open_unknown_branch(self, db_session, seller_user):
        with pytest.raises(HTTPException) as exc:
            CashRegisterService(db_session).open_cash_register(CashRegisterOpen(branch_id=999, user_id=seller_user.id))
        assert exc.value.status_code == 404

    def test_close_with_adjustment(self, db_session, branch, seller_user):
        service = CashRegisterService(db_session)
        register = service.open_cash_register(CashRegisterOpen(
            branch_id=branch.id, user_id=seller_user.id, opening_balance=Decimal("100.00")
        ))

        closed = service.close_cash_register(register.id, CashRegisterClose(
            user_id=seller_user.id, closing_balance=Decimal("90.00")
        ))

        assert closed.status == CashRegisterStatus.CLOSED
        assert closed.closed_by == seller_user.id
        adjustment = db_session.query(CashMovement).filter(CashMovement.type == MovementType.ADJUSTMENT).one()
        assert adjustment.amount == Decimal("-10.0000")
        assert service.get_current_cash_register(branch.id) is None

        with pytest.raises(HTTPException) as exc:
            service.close_cash_register(register.id, CashRegisterClose(
                user_id=seller_user.id, closing_balance=Decimal("90.00")
            ))
        assert exc.value.status_code == 409


class TestCashRegisterGate:
    """Tests de la compuerta de caja"""

    def test_required_without_register(self, db_session, branch, seller_user):
        with pytest.raises(RegisterRequiredError):
            CashRegisterGate(db_session).attach_and_record(1, branch.id, seller_user.id, True)

    def test_not_required_without_register(self, db_session, branch, seller_user):
        assert CashRegisterGate(db_session).attach_and_record(1, branch.id, seller_user.id, False) is None


class TestCashRegistersApi:
    """Tests de endpoints de caja"""

    def test_open_current_close(self, api_client, branch, seller_user):
        response = api_client.post("/cash-registers/open", json={"branch_id": branch.id, "user_id": seller_user.id})
        assert response.status_code == 201
        register_id = response.json()["id"]

        response = api_client.get("/cash-registers/current", params={"branch_id": branch.id})
        assert response.json()["id"] == register_id

        response = api_client.post(f"/cash-registers/{register_id}/close", json={
            "user_id": seller_user.id, "closing_balance": "0"
        })
        assert response.status_code == 200
        assert response.json()["status"] == "closed"

        response = api_client.get("/cash-registers/current", params={"branch_id": branch.id})
        assert response.status_code == 404
