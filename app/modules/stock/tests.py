"""
Tests para el módulo de Stock

- Depleción FIFO por fecha de ingreso (empates por id de lote)
- Faltantes sin escritura parcial
- Reintento ante lotes modificados concurrentemente
- Entregas, corrección de fechas, eliminación de lotes y umbrales
"""

import pytest
from datetime import datetime, date
from decimal import Decimal
from fastapi import HTTPException
from pydantic import ValidationError

from app.common.entities import EntityRef, EntityKind
from app.modules.movements.models import StockMovement, MovementReason
from app.modules.stock.models import StockLot, StockDelivery
from app.modules.stock.schemas import (
    StockDeliveryCreate, StockEntryIn, LotDatesUpdate, LotRemove, LotFilters, ThresholdSet
)
from app.modules.stock.service import StockLedger


def remaining(db_session, lot_id):
    db_session.expire_all()
    return db_session.get(StockLot, lot_id).remaining_quantity


class TestFifoDepletion:
    """Tests de depleción FIFO"""

    def test_consumes_oldest_lot_first(self, db_session, branch, product, make_lot):
        """Escenario A: lotes de 5 y 10, venta de 8 deja 0 y 7"""
        old = make_lot(5, "2024-01-01", product=product)
        new = make_lot(10, "2024-02-01", product=product)

        result = StockLedger(db_session).deplete_fifo(EntityRef.product(product.id), branch.id, 8)

        assert result.ok
        assert [c.lot_id for c in result.consumed] == [old.id, new.id]
        assert [c.quantity for c in result.consumed] == [5, 3]
        assert sum(c.remaining_before - c.remaining_after for c in result.consumed) == 8
        assert remaining(db_session, old.id) == 0
        assert remaining(db_session, new.id) == 7

    def test_shortfall_leaves_lots_untouched(self, db_session, branch, product, make_lot):
        """Escenario B: venta de 20 con 15 disponibles no escribe nada"""
        old = make_lot(5, "2024-01-01", product=product)
        new = make_lot(10, "2024-02-01", product=product)

        result = StockLedger(db_session).deplete_fifo(EntityRef.product(product.id), branch.id, 20)

        assert not result.ok
        assert result.shortfall == 5
        assert result.consumed == []
        assert remaining(db_session, old.id) == 5
        assert remaining(db_session, new.id) == 10

    def test_ties_broken_by_lot_id(self, db_session, branch, product, make_lot):
        first = make_lot(4, "2024-03-01", product=product)
        second = make_lot(4, "2024-03-01", product=product)

        StockLedger(db_session).deplete_fifo(EntityRef.product(product.id), branch.id, 5)

        assert remaining(db_session, first.id) == 0
        assert remaining(db_session, second.id) == 3

    def test_presentation_and_product_lots_are_separate(self, db_session, branch, product, presentation, make_lot):
        product_lot = make_lot(10, "2024-01-01", product=product)
        presentation_lot = make_lot(3, "2024-01-01", presentation=presentation)
        ledger = StockLedger(db_session)

        ledger.deplete_fifo(EntityRef.presentation(presentation.id), branch.id, 2)

        assert remaining(db_session, product_lot.id) == 10
        assert remaining(db_session, presentation_lot.id) == 1
        assert ledger.aggregate_quantity(EntityRef.product(product.id), branch.id) == 10
        assert ledger.aggregate_quantity(EntityRef.presentation(presentation.id), branch.id) == 1

    def test_aggregate_is_scoped_to_branch(self, db_session, branch, product, make_lot):
        from app.modules.branches.models import Branch
        other = Branch(name="Sucursal Norte")
        db_session.add(other)
        db_session.commit()
        make_lot(5, "2024-01-01", product=product)
        make_lot(7, "2024-01-01", product=product, branch_id=other.id)

        ledger = StockLedger(db_session)
        assert ledger.aggregate_quantity(EntityRef.product(product.id), branch.id) == 5
        assert ledger.aggregate_quantity(EntityRef.product(product.id), other.id) == 7

    def test_rejects_non_positive_quantity(self, db_session, branch, product):
        with pytest.raises(ValueError):
            StockLedger(db_session).deplete_fifo(EntityRef.product(product.id), branch.id, 0)

    def test_retries_when_lot_changed_underneath(self, db_session, branch, product, make_lot):
        """Un decremento condicional fallido revierte el savepoint y replanifica"""
        lot = make_lot(6, "2024-01-01", product=product)

        class StaleReadLedger(StockLedger):
            attempts = 0

            def _plan(self, lots, quantity):
                plan, pending = super()._plan(lots, quantity)
                self.attempts += 1
                if self.attempts == 1:
                    stale_lot, _ = plan[0]
                    return [(stale_lot, stale_lot.remaining_quantity + 1)], pending
                return plan, pending

        ledger = StaleReadLedger(db_session)
        result = ledger.deplete_fifo(EntityRef.product(product.id), branch.id, 4)

        assert result.ok
        assert ledger.attempts == 2
        assert remaining(db_session, lot.id) == 2


class TestDeliveries:
    """Tests de ingreso de mercadería"""

    def test_receive_delivery_creates_lots_and_movements(self, db_session, branch, admin_user, product, presentation):
        ledger = StockLedger(db_session)
        delivery = ledger.receive_delivery(StockDeliveryCreate(
            branch_id=branch.id,
            received_by=admin_user.id,
            entries=[
                StockEntryIn(entity_id=product.id, quantity=10, unit_cost=Decimal("2.50"),
                             ingress_date=datetime(2024, 5, 1)),
                StockEntryIn(entity_kind=EntityKind.PRESENTATION, entity_id=presentation.id, quantity=4,
                             unit_cost=Decimal("90.00"), ingress_date=datetime(2024, 5, 1)),
            ]
        ))

        assert delivery.id is not None
        assert len(delivery.lots) == 2
        assert delivery.total_cost == Decimal("385.0000")
        assert ledger.aggregate_quantity(EntityRef.product(product.id), branch.id) == 10

        movements = db_session.query(StockMovement).filter(
            StockMovement.reference_id == delivery.id,
            StockMovement.reason == MovementReason.STOCK_DELIVERY
        ).all()
        assert len(movements) == 2
        product_movement = next(m for m in movements if m.presentation_id is None)
        assert (product_movement.quantity_before, product_movement.delta, product_movement.quantity_after) == (0, 10, 10)

    def test_receive_delivery_unknown_branch(self, db_session, product):
        with pytest.raises(HTTPException) as exc:
            StockLedger(db_session).receive_delivery(StockDeliveryCreate(
                branch_id=999,
                entries=[StockEntryIn(entity_id=product.id, quantity=1)]
            ))
        assert exc.value.status_code == 404

    def test_receive_delivery_unknown_product(self, db_session, branch):
        with pytest.raises(HTTPException) as exc:
            StockLedger(db_session).receive_delivery(StockDeliveryCreate(
                branch_id=branch.id,
                entries=[StockEntryIn(entity_id=999, quantity=1)]
            ))
        assert exc.value.status_code == 404
        assert db_session.query(StockDelivery).count() == 0


class TestLotCorrections:
    """Tests de corrección y eliminación de lotes"""

    def test_update_lot_dates_changes_fifo_order(self, db_session, branch, product, make_lot):
        old = make_lot(5, "2024-01-01", product=product)
        new = make_lot(5, "2024-02-01", product=product)
        ledger = StockLedger(db_session)

        ledger.update_lot_dates(old.id, LotDatesUpdate(ingress_date=datetime(2024, 3, 1)))
        ledger.deplete_fifo(EntityRef.product(product.id), branch.id, 3)

        assert remaining(db_session, new.id) == 2
        assert remaining(db_session, old.id) == 5

    def test_expiry_before_ingress_is_rejected(self):
        with pytest.raises(ValidationError):
            LotDatesUpdate(ingress_date=datetime(2024, 3, 1), expiry_date=date(2024, 2, 1))

    def test_update_unknown_lot(self, db_session):
        with pytest.raises(HTTPException) as exc:
            StockLedger(db_session).update_lot_dates(999, LotDatesUpdate(ingress_date=datetime(2024, 3, 1)))
        assert exc.value.status_code == 404

    def test_remove_lot_records_movement(self, db_session, branch, admin_user, product, make_lot):
        make_lot(5, "2024-01-01", product=product)
        doomed = make_lot(3, "2024-02-01", product=product)
        ledger = StockLedger(db_session)

        removed = ledger.remove_lot(doomed.id, LotRemove(user_id=admin_user.id, reason="Producto dañado"))

        assert removed.id == doomed.id
        assert db_session.get(StockLot, doomed.id) is None
        assert ledger.aggregate_quantity(EntityRef.product(product.id), branch.id) == 5
        movement = db_session.query(StockMovement).filter(
            StockMovement.reason == MovementReason.LOT_REMOVAL
        ).one()
        assert (movement.quantity_before, movement.delta, movement.quantity_after) == (8, -3, 5)
        assert movement.note == "Producto dañado"

    def test_list_lots_filters(self, db_session, branch, product, presentation, make_lot):
        make_lot(5, "2024-01-01", product=product)
        empty = make_lot(0, "2024-01-15", product=product)
        make_lot(2, "2024-02-01", presentation=presentation)
        ledger = StockLedger(db_session)

        available = ledger.list_lots(LotFilters(branch_id=branch.id, entity_id=product.id))
        assert [lot.remaining_quantity for lot in available] == [5]

        everything = ledger.list_lots(LotFilters(branch_id=branch.id, only_available=False))
        assert empty.id in [lot.id for lot in everything]
        assert len(everything) == 3

        presentations = ledger.list_lots(LotFilters(entity_kind=EntityKind.PRESENTATION))
        assert [lot.presentation_id for lot in presentations] == [presentation.id]


class TestThresholds:
    """Tests de umbrales de stock mínimo"""

    def test_set_update_and_delete(self, db_session, product):
        ledger = StockLedger(db_session)
        entity = EntityRef.product(product.id)

        created = ledger.set_threshold(ThresholdSet(entity_id=product.id, minimum=5))
        updated = ledger.set_threshold(ThresholdSet(entity_id=product.id, minimum=8))
        assert created.id == updated.id
        assert ledger.get_threshold(entity).minimum == 8

        assert ledger.set_threshold(ThresholdSet(entity_id=product.id, minimum=None)) is None
        assert ledger.get_threshold(entity) is None


class TestStockApi:
    """Tests de endpoints de stock"""

    def test_delivery_and_total(self, api_client, branch, product):
        response = api_client.post("/stock/deliveries", json={
            "branch_id": branch.id,
            "entries": [{"entity_id": product.id, "quantity": 12, "unit_cost": "3.00"}]
        })
        assert response.status_code == 201
        assert len(response.json()["lots"]) == 1

        response = api_client.get("/stock/total", params={"entity_id": product.id, "branch_id": branch.id})
        assert response.status_code == 200
        assert response.json()["quantity"] == 12

    def test_movement_history(self, api_client, branch, admin_user, product, make_lot):
        lot = make_lot(5, "2024-01-01", product=product)
        api_client.request("DELETE", f"/stock/lots/{lot.id}", json={"user_id": admin_user.id})

        response = api_client.get("/stock/movements", params={"entity_id": product.id, "branch_id": branch.id})
        assert response.status_code == 200
        history = response.json()
        assert [m["reason"] for m in history] == ["LOT_REMOVAL"]
        assert history[0]["delta"] == -5
