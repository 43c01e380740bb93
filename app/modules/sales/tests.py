"""
Tests para el orquestador de ventas

Tests comprehensivos que cubren:
- Totales, depleción FIFO y consolidación de líneas
- Pagos (crédito en cero) y política de caja
- Precios temporales de un solo uso
- Reversión completa ante cualquier falla
- Clientes mínimos, metas y notificaciones posteriores al commit
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import update

from app.common.entities import EntityRef
from app.modules.auth.models import User, UserRole
from app.modules.clients.models import Client
from app.modules.clients.schemas import ClientQuickCreate
from app.modules.goals.models import SalesGoal
from app.modules.goals.service import GoalTracker
from app.modules.movements.models import StockMovement, MovementReason
from app.modules.notifications.models import Notification
from app.modules.pos.models import CashMovement, CashRegisterSale, MovementType
from app.modules.pos.schemas import CashRegisterOpen
from app.modules.pos.services import CashRegisterService
from app.modules.prices.models import PriceRecord, PriceKind
from app.modules.prices.service import PriceLedger
from app.modules.sales.exceptions import (
    InvalidPriceError, MismatchedEntityError, InvalidQuantityError,
    PriceClaimConflictError, InsufficientStockError, RegisterRequiredError,
    UnexpectedSaleError
)
from app.modules.sales.models import Sale, SaleLine, PaymentMethod
from app.modules.sales.schemas import SaleCreate, SaleLineIn, SaleFilters
from app.modules.sales.service import SaleService
from app.modules.stock.models import StockLot
from app.modules.stock.service import StockLedger


# ===== FIXTURES =====

@pytest.fixture
def price(make_price, product):
    return make_price(product=product, amount="12.50")


@pytest.fixture
def lots(make_lot, product):
    return [
        make_lot(5, "2024-01-01", product=product),
        make_lot(10, "2024-02-01", product=product),
    ]


def sale_request(branch, user, lines, method=PaymentMethod.CARD, **extra):
    return SaleCreate(
        branch_id=branch.id,
        user_id=user.id if hasattr(user, "id") else user,
        lines=[SaleLineIn(**line) for line in lines],
        payment_method=method,
        **extra
    )


def remaining(db_session, lot):
    db_session.expire_all()
    return db_session.get(StockLot, lot.id).remaining_quantity


def assert_no_trace(db_session):
    assert db_session.query(Sale).count() == 0
    assert db_session.query(SaleLine).count() == 0
    assert db_session.query(StockMovement).count() == 0
    assert db_session.query(Notification).count() == 0


# ===== FLUJO PRINCIPAL =====

class TestCreateSale:
    """Tests del flujo completo de venta"""

    def test_total_fifo_payment_and_audit(self, db_session, branch, seller_user, product, price, lots):
        sale = SaleService(db_session).create_sale(sale_request(
            branch, seller_user, [{"product_id": product.id, "quantity": 8, "selected_price_id": price.id}]
        ))

        assert sale.total == Decimal("100.0000")
        assert sale.total == sum(line.quantity * line.unit_price for line in sale.lines)
        assert [(line.quantity, line.unit_price) for line in sale.lines] == [(8, Decimal("12.50"))]
        assert remaining(db_session, lots[0]) == 0
        assert remaining(db_session, lots[1]) == 7

        sale = db_session.get(Sale, sale.id)
        assert sale.payment.method == PaymentMethod.CARD
        assert sale.payment.amount == sale.total
        assert sale.payment_method == PaymentMethod.CARD

        movement = db_session.query(StockMovement).one()
        assert movement.reason == MovementReason.SALE_EXIT
        assert movement.reference_id == sale.id
        assert (movement.quantity_before, movement.delta, movement.quantity_after) == (15, -8, 7)
        assert movement.note == f"Registro generado por venta #{sale.id}"

    def test_audit_delta_ignores_concurrent_sale(self, db_session, branch, seller_user, product, price, lots):
        """Otra venta descuenta del lote antes de que esta bloquee los lotes"""
        class ContendedLedger(StockLedger):
            def deplete_fifo(self, entity, branch_id, quantity):
                db_session.execute(
                    update(StockLot)
                    .where(StockLot.id == lots[0].id)
                    .values(remaining_quantity=StockLot.remaining_quantity - 3)
                )
                return super().deplete_fifo(entity, branch_id, quantity)

        sale = SaleService(db_session, stock=ContendedLedger(db_session)).create_sale(sale_request(
            branch, seller_user, [{"quantity": 8, "selected_price_id": price.id}]
        ))

        assert remaining(db_session, lots[0]) == 0
        assert remaining(db_session, lots[1]) == 4
        movement = db_session.query(StockMovement).one()
        assert movement.reference_id == sale.id
        assert (movement.quantity_before, movement.delta, movement.quantity_after) == (12, -8, 4)

    def test_credit_sale_pays_zero(self, db_session, branch, seller_user, product, price, lots):
        """Escenario D: método crédito registra pago en cero"""
        sale = SaleService(db_session).create_sale(sale_request(
            branch, seller_user, [{"quantity": 2, "selected_price_id": price.id}],
            method=PaymentMethod.CREDIT
        ))

        assert sale.total == Decimal("25.0000")
        assert sale.payment.method == PaymentMethod.CREDIT
        assert sale.payment.amount == Decimal("0")

    def test_lines_with_same_entity_and_price_are_consolidated(self, db_session, branch, seller_user, product, price, lots):
        sale = SaleService(db_session).create_sale(sale_request(branch, seller_user, [
            {"quantity": 2, "selected_price_id": price.id},
            {"product_id": product.id, "quantity": 3, "selected_price_id": price.id},
        ]))

        assert len(sale.lines) == 1
        assert sale.lines[0].quantity == 5
        assert remaining(db_session, lots[0]) == 0
        assert remaining(db_session, lots[1]) == 10

    def test_different_prices_keep_separate_lines(self, db_session, branch, seller_user, product, price, lots, make_price):
        wholesale = make_price(product=product, amount="11.00")
        sale = SaleService(db_session).create_sale(sale_request(branch, seller_user, [
            {"quantity": 2, "selected_price_id": price.id},
            {"quantity": 10, "selected_price_id": wholesale.id},
        ]))

        assert sorted(line.quantity for line in sale.lines) == [2, 10]
        assert sale.total == Decimal("135.0000")
        # un solo movimiento por entidad con el agregado consolidado
        movement = db_session.query(StockMovement).one()
        assert (movement.quantity_before, movement.quantity_after) == (15, 3)

    def test_presentation_lines_and_movements_per_kind(self, db_session, branch, seller_user, product, presentation,
                                                       price, lots, make_price, make_lot):
        box_price = make_price(presentation=presentation, amount="480.00")
        make_lot(3, "2024-01-10", presentation=presentation)

        sale = SaleService(db_session).create_sale(sale_request(branch, seller_user, [
            {"quantity": 1, "selected_price_id": price.id},
            {"presentation_id": presentation.id, "quantity": 2, "selected_price_id": box_price.id},
        ]))

        presentation_line = next(line for line in sale.lines if line.presentation_id is not None)
        assert presentation_line.product_id == product.id
        assert presentation_line.entity == EntityRef.presentation(presentation.id)
        assert sale.total == Decimal("972.5000")

        movements = db_session.query(StockMovement).filter(StockMovement.reference_id == sale.id).all()
        assert len(movements) == 2
        assert {m.presentation_id for m in movements} == {None, presentation.id}

    def test_total_rounds_to_four_decimals(self, db_session, branch, seller_user, product, lots, make_price):
        odd = make_price(product=product, amount="0.3333")
        sale = SaleService(db_session).create_sale(sale_request(
            branch, seller_user, [{"quantity": 3, "selected_price_id": odd.id}]
        ))
        assert sale.total == Decimal("0.9999")


# ===== VALIDACIONES =====

class TestLineValidation:
    """Tests de validación de líneas"""

    def test_unknown_price(self, db_session, branch, seller_user, lots):
        with pytest.raises(InvalidPriceError):
            SaleService(db_session).create_sale(sale_request(
                branch, seller_user, [{"quantity": 1, "selected_price_id": 999}]
            ))
        assert_no_trace(db_session)

    def test_presentation_id_on_product_price(self, db_session, branch, seller_user, presentation, price, lots):
        with pytest.raises(MismatchedEntityError):
            SaleService(db_session).create_sale(sale_request(branch, seller_user, [
                {"presentation_id": presentation.id, "quantity": 1, "selected_price_id": price.id}
            ]))

    def test_product_id_differs_from_price(self, db_session, branch, seller_user, price, lots):
        with pytest.raises(MismatchedEntityError):
            SaleService(db_session).create_sale(sale_request(branch, seller_user, [
                {"product_id": 999, "quantity": 1, "selected_price_id": price.id}
            ]))

    def test_presentation_of_other_product(self, db_session, branch, seller_user, presentation, make_price):
        box_price = make_price(presentation=presentation, amount="480.00")
        with pytest.raises(MismatchedEntityError):
            SaleService(db_session).create_sale(sale_request(branch, seller_user, [
                {"product_id": 999, "presentation_id": presentation.id, "quantity": 1,
                 "selected_price_id": box_price.id}
            ]))

    @pytest.mark.parametrize("quantity", [0, -2, 1.5, float("inf"), float("nan")])
    def test_invalid_quantity(self, db_session, branch, seller_user, price, lots, quantity):
        with pytest.raises(InvalidQuantityError):
            SaleService(db_session).create_sale(sale_request(
                branch, seller_user, [{"quantity": quantity, "selected_price_id": price.id}]
            ))
        assert_no_trace(db_session)

    def test_integral_float_quantity_is_accepted(self, db_session, branch, seller_user, price, lots):
        sale = SaleService(db_session).create_sale(sale_request(
            branch, seller_user, [{"quantity": 2.0, "selected_price_id": price.id}]
        ))
        assert sale.lines[0].quantity == 2

    def test_large_integer_quantity_keeps_precision(self, db_session, branch, seller_user, price, lots):
        quantity = 10 ** 17 + 1
        line = SaleLineIn(quantity=quantity, selected_price_id=price.id)
        assert line.quantity == quantity

        with pytest.raises(InsufficientStockError) as exc:
            SaleService(db_session).create_sale(sale_request(
                branch, seller_user, [{"quantity": quantity, "selected_price_id": price.id}]
            ))

        assert exc.value.context["requested"] == quantity
        assert exc.value.context["shortfall"] == quantity - 15
        assert_no_trace(db_session)


# ===== STOCK Y PRECIOS TEMPORALES =====

class TestAtomicity:
    """Tests de reversión completa"""

    def test_insufficient_stock_leaves_no_trace(self, db_session, branch, seller_user, product, price, lots,
                                               make_price, make_threshold):
        temporary = make_price(product=product, amount="9.00", kind=PriceKind.REQUEST_GENERATED)
        make_threshold(10, product=product)
        entity = EntityRef.product(product.id)
        before = StockLedger(db_session).aggregate_quantity(entity, branch.id)

        with pytest.raises(InsufficientStockError) as exc:
            SaleService(db_session).create_sale(sale_request(branch, seller_user, [
                {"quantity": 3, "selected_price_id": price.id},
                {"quantity": 20, "selected_price_id": temporary.id},
            ]))

        assert exc.value.kind == "InsufficientStock"
        assert StockLedger(db_session).aggregate_quantity(entity, branch.id) == before
        assert remaining(db_session, lots[0]) == 5
        assert db_session.get(PriceRecord, temporary.id).used is False
        assert_no_trace(db_session)

    def test_unexpected_failure_is_wrapped_and_rolled_back(self, db_session, branch, seller_user, product, price, lots):
        class BrokenGoals(GoalTracker):
            def increment(self, *args, **kwargs):
                raise RuntimeError("metas no disponibles")

        with pytest.raises(UnexpectedSaleError) as exc:
            SaleService(db_session, goals=BrokenGoals(db_session)).create_sale(sale_request(
                branch, seller_user, [{"quantity": 4, "selected_price_id": price.id}]
            ))

        assert "metas" not in exc.value.message
        assert remaining(db_session, lots[0]) == 5
        assert_no_trace(db_session)


class TestTemporaryPrices:
    """Tests de precios temporales de un solo uso"""

    def test_temporary_price_is_consumed(self, db_session, branch, seller_user, product, lots, make_price):
        temporary = make_price(product=product, amount="9.00", kind=PriceKind.REQUEST_GENERATED)
        service = SaleService(db_session)

        service.create_sale(sale_request(branch, seller_user, [{"quantity": 1, "selected_price_id": temporary.id}]))
        db_session.expire_all()
        assert db_session.get(PriceRecord, temporary.id).used is True

        with pytest.raises(InvalidPriceError):
            service.create_sale(sale_request(branch, seller_user, [{"quantity": 1, "selected_price_id": temporary.id}]))

    def test_lost_claim_aborts_before_stock(self, db_session, branch, seller_user, product, lots, make_price):
        """Otra venta reclamó el precio entre la validación y el reclamo"""
        temporary = make_price(product=product, amount="9.00", kind=PriceKind.REQUEST_GENERATED)

        class RivalLedger(PriceLedger):
            claimed = None

            def claim_temporary(self, price_ids):
                # la venta rival marca el precio primero
                self.db.execute(
                    update(PriceRecord)
                    .where(PriceRecord.id.in_(price_ids))
                    .values(used=True)
                )
                self.claimed = super().claim_temporary(price_ids)
                return self.claimed

        ledger = RivalLedger(db_session)
        with pytest.raises(PriceClaimConflictError):
            SaleService(db_session, prices=ledger).create_sale(sale_request(
                branch, seller_user, [{"quantity": 2, "selected_price_id": temporary.id}]
            ))

        assert ledger.claimed == 0
        assert remaining(db_session, lots[0]) == 5
        assert remaining(db_session, lots[1]) == 10
        assert_no_trace(db_session)

    def test_standard_prices_are_reusable(self, db_session, branch, seller_user, price, lots):
        service = SaleService(db_session)
        service.create_sale(sale_request(branch, seller_user, [{"quantity": 1, "selected_price_id": price.id}]))
        service.create_sale(sale_request(branch, seller_user, [{"quantity": 1, "selected_price_id": price.id}]))

        assert db_session.query(Sale).count() == 2
        assert db_session.get(PriceRecord, price.id).used is False


# ===== CAJA =====

class TestCashRegisterPolicy:
    """Tests de la política de caja"""

    def test_cash_sale_without_register_fails(self, db_session, branch, seller_user, price, lots):
        with pytest.raises(RegisterRequiredError):
            SaleService(db_session).create_sale(sale_request(
                branch, seller_user, [{"quantity": 1, "selected_price_id": price.id}], method=PaymentMethod.CASH
            ))
        assert remaining(db_session, lots[0]) == 5
        assert_no_trace(db_session)

    def test_unknown_user_defaults_to_seller_role(self, db_session, branch, price, lots):
        with pytest.raises(RegisterRequiredError):
            SaleService(db_session).create_sale(sale_request(
                branch, 999, [{"quantity": 1, "selected_price_id": price.id}], method=PaymentMethod.CASH
            ))

    def test_exempt_role_sells_cash_without_register(self, db_session, branch, super_admin, price, lots):
        sale = SaleService(db_session).create_sale(sale_request(
            branch, super_admin, [{"quantity": 1, "selected_price_id": price.id}], method=PaymentMethod.CASH
        ))
        assert sale.id is not None
        assert db_session.query(CashRegisterSale).count() == 0

    def test_card_sale_without_register(self, db_session, branch, seller_user, price, lots):
        sale = SaleService(db_session).create_sale(sale_request(
            branch, seller_user, [{"quantity": 1, "selected_price_id": price.id}]
        ))
        assert sale.id is not None

    def test_cash_sale_is_bound_to_open_register(self, db_session, branch, seller_user, price, lots):
        register = CashRegisterService(db_session).open_cash_register(CashRegisterOpen(
            branch_id=branch.id, user_id=seller_user.id, opening_balance=Decimal("100.00")
        ))

        sale = SaleService(db_session).create_sale(sale_request(
            branch, seller_user, [{"quantity": 2, "selected_price_id": price.id}], method=PaymentMethod.CASH
        ))

        binding = db_session.query(CashRegisterSale).one()
        assert (binding.cash_register_id, binding.sale_id) == (register.id, sale.id)
        movement = db_session.query(CashMovement).filter(CashMovement.sale_id == sale.id).one()
        assert movement.type == MovementType.SALE
        assert movement.amount == Decimal("25.0000")
        db_session.refresh(register)
        assert register.calculated_balance == Decimal("125.0000")

    def test_card_sale_is_bound_without_cash_movement(self, db_session, branch, seller_user, price, lots):
        CashRegisterService(db_session).open_cash_register(CashRegisterOpen(branch_id=branch.id, user_id=seller_user.id))

        sale = SaleService(db_session).create_sale(sale_request(
            branch, seller_user, [{"quantity": 1, "selected_price_id": price.id}]
        ))

        assert db_session.query(CashRegisterSale).filter(CashRegisterSale.sale_id == sale.id).count() == 1
        assert db_session.query(CashMovement).count() == 0


# ===== COLABORADORES =====

class TestCollaborators:
    """Tests de clientes, metas y notificaciones"""

    def test_inline_client_is_created(self, db_session, branch, seller_user, price, lots):
        sale = SaleService(db_session).create_sale(sale_request(
            branch, seller_user, [{"quantity": 1, "selected_price_id": price.id}],
            client=ClientQuickCreate(name="María", last_name="López", dpi="2567890120101", phone="5555-1234")
        ))

        client = db_session.get(Client, sale.client_id)
        assert client.full_name == "María López"

    def test_existing_dpi_is_reused(self, db_session, branch, seller_user, price, lots):
        existing = Client(name="María", dpi="2567890120101")
        db_session.add(existing)
        db_session.commit()

        sale = SaleService(db_session).create_sale(sale_request(
            branch, seller_user, [{"quantity": 1, "selected_price_id": price.id}],
            client=ClientQuickCreate(name="María L.", dpi="2567890120101")
        ))
        assert sale.client_id == existing.id
        assert db_session.query(Client).count() == 1

    def test_unknown_client_falls_back_to_cf(self, db_session, branch, seller_user, price, lots):
        sale = SaleService(db_session).create_sale(sale_request(
            branch, seller_user, [{"quantity": 1, "selected_price_id": price.id}], client_id=999
        ))
        assert sale.client_id is None

    def test_incomplete_client_data_falls_back_to_cf(self, db_session, branch, seller_user, price, lots):
        sale = SaleService(db_session).create_sale(sale_request(
            branch, seller_user, [{"quantity": 1, "selected_price_id": price.id}],
            client=ClientQuickCreate(name="   ", phone="5555-0000")
        ))
        assert sale.client_id is None
        assert db_session.query(Client).count() == 0

    def test_goal_is_incremented(self, db_session, branch, seller_user, price, lots):
        goal = SalesGoal(
            user_id=seller_user.id,
            channel="store",
            period_start=date.today() - timedelta(days=1),
            period_end=date.today() + timedelta(days=30),
            target=Decimal("1000.00"),
            accumulated=Decimal("10.00"),
        )
        expired = SalesGoal(
            user_id=seller_user.id,
            channel="store",
            period_start=date.today() - timedelta(days=60),
            period_end=date.today() - timedelta(days=30),
            target=Decimal("1000.00"),
            accumulated=Decimal("0"),
        )
        db_session.add_all([goal, expired])
        db_session.commit()

        SaleService(db_session).create_sale(sale_request(
            branch, seller_user, [{"quantity": 4, "selected_price_id": price.id}]
        ))

        db_session.expire_all()
        assert db_session.get(SalesGoal, goal.id).accumulated == Decimal("60.0000")
        assert db_session.get(SalesGoal, expired.id).accumulated == Decimal("0")

    def test_threshold_crossing_dispatched_after_commit(self, db_session, branch, admin_user, seller_user, product,
                                                        price, make_lot, make_threshold, dispatched):
        """Escenario C a través de ventas: 6 -> 4 notifica, 4 -> 2 no"""
        make_lot(6, "2024-01-01", product=product)
        make_threshold(5, product=product)
        service = SaleService(db_session)

        service.create_sale(sale_request(branch, seller_user, [{"quantity": 2, "selected_price_id": price.id}]))
        notification = db_session.query(Notification).one()
        assert dispatched == [notification.id]
        assert notification.recipient_ids == {admin_user.id, seller_user.id}

        SaleService(db_session).create_sale(sale_request(branch, seller_user, [{"quantity": 2, "selected_price_id": price.id}]))
        assert db_session.query(Notification).count() == 1
        assert dispatched == [notification.id]

    def test_late_recipient_is_dispatched_after_commit(self, db_session, branch, admin_user, seller_user, product,
                                                       price, make_lot, make_threshold, dispatched):
        make_lot(6, "2024-01-01", product=product)
        make_threshold(5, product=product)
        SaleService(db_session).create_sale(sale_request(branch, seller_user, [{"quantity": 2, "selected_price_id": price.id}]))
        notification = db_session.query(Notification).one()

        # alta de un vendedor y reposición directa sin cerrar la alerta (4 -> 7)
        newcomer = User(name="Nuevo", email="nuevo@example.com", role=UserRole.SELLER)
        db_session.add(newcomer)
        make_lot(3, "2024-03-01", product=product)

        SaleService(db_session).create_sale(sale_request(branch, seller_user, [{"quantity": 4, "selected_price_id": price.id}]))

        db_session.expire_all()
        assert db_session.query(Notification).count() == 1
        assert newcomer.id in db_session.get(Notification, notification.id).recipient_ids
        assert dispatched == [notification.id, notification.id]

    def test_failed_sale_dispatches_nothing(self, db_session, branch, admin_user, seller_user, product, price,
                                            make_lot, make_threshold, dispatched):
        make_lot(6, "2024-01-01", product=product)
        make_threshold(5, product=product)

        # la alerta se genera antes de que falle la caja
        with pytest.raises(RegisterRequiredError):
            SaleService(db_session).create_sale(sale_request(
                branch, seller_user, [{"quantity": 2, "selected_price_id": price.id}], method=PaymentMethod.CASH
            ))

        assert dispatched == []
        assert db_session.query(Notification).count() == 0


# ===== CONSULTAS =====

class TestSaleQueries:
    """Tests de consulta de ventas"""

    def test_get_and_list(self, db_session, branch, seller_user, admin_user, price, lots):
        service = SaleService(db_session)
        first = service.create_sale(sale_request(branch, seller_user, [{"quantity": 1, "selected_price_id": price.id}]))
        service.create_sale(sale_request(
            branch, admin_user, [{"quantity": 1, "selected_price_id": price.id}], method=PaymentMethod.CREDIT
        ))

        assert service.get_sale(first.id).lines[0].quantity == 1

        result = service.list_sales(SaleFilters(branch_id=branch.id))
        assert result["total"] == 2

        credit = service.list_sales(SaleFilters(payment_method=PaymentMethod.CREDIT))
        assert [s.user_id for s in credit["sales"]] == [admin_user.id]

        mine = service.list_sales(SaleFilters(user_id=seller_user.id))
        assert [s.id for s in mine["sales"]] == [first.id]

    def test_get_unknown_sale(self, db_session):
        from fastapi import HTTPException
        with pytest.raises(HTTPException) as exc:
            SaleService(db_session).get_sale(999)
        assert exc.value.status_code == 404


class TestSalesApi:
    """Tests de endpoints de ventas"""

    def test_create_sale(self, api_client, branch, seller_user, product, price, lots):
        response = api_client.post("/sales/", json={
            "branch_id": branch.id,
            "user_id": seller_user.id,
            "payment_method": "CARD",
            "lines": [{"product_id": product.id, "quantity": 3, "selected_price_id": price.id}]
        })

        assert response.status_code == 201
        data = response.json()
        assert Decimal(data["total"]) == Decimal("37.50")
        assert data["payment"]["method"] == "CARD"

        response = api_client.get(f"/sales/{data['id']}")
        assert response.status_code == 200
        assert len(response.json()["lines"]) == 1

    def test_domain_error_response(self, api_client, branch, seller_user, price, lots):
        response = api_client.post("/sales/", json={
            "branch_id": branch.id,
            "user_id": seller_user.id,
            "payment_method": "CARD",
            "lines": [{"quantity": 50, "selected_price_id": price.id}]
        })

        assert response.status_code == 409
        assert response.json()["kind"] == "InsufficientStock"

    def test_register_required_response(self, api_client, branch, seller_user, price, lots):
        response = api_client.post("/sales/", json={
            "branch_id": branch.id,
            "user_id": seller_user.id,
            "payment_method": "CASH",
            "lines": [{"quantity": 1, "selected_price_id": price.id}]
        })

        assert response.status_code == 409
        assert response.json()["kind"] == "RegisterRequired"
