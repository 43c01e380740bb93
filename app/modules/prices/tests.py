"""
Tests para el libro de precios

- Validación/resolución de precios seleccionados
- Reclamo atómico de precios temporales
- Versionado de precios estándar
"""

import pytest
from decimal import Decimal
from fastapi import HTTPException

from app.common.entities import EntityRef, EntityKind
from app.modules.prices.models import PriceRecord, PriceKind, PriceRole, PriceState
from app.modules.prices.schemas import PriceIn, RequestPriceCreate
from app.modules.prices.service import PriceLedger
from app.modules.sales.exceptions import InvalidPriceError


class TestValidateAndResolve:
    """Tests de resolución del precio seleccionado"""

    def test_product_price(self, db_session, product, make_price):
        price = make_price(product=product, amount="12.50")
        resolved = PriceLedger(db_session).validate_and_resolve(price.id)

        assert resolved.entity_kind == EntityKind.PRODUCT
        assert resolved.entity_id == product.id
        assert resolved.product_id == product.id
        assert resolved.amount == Decimal("12.50")
        assert not resolved.is_temporary

    def test_presentation_price_resolves_owner(self, db_session, product, presentation, make_price):
        price = make_price(presentation=presentation, amount="480.00")
        resolved = PriceLedger(db_session).validate_and_resolve(price.id)

        assert resolved.entity_kind == EntityKind.PRESENTATION
        assert resolved.entity_id == presentation.id
        assert resolved.product_id == product.id

    def test_missing_price(self, db_session):
        with pytest.raises(InvalidPriceError):
            PriceLedger(db_session).validate_and_resolve(999)

    def test_used_price(self, db_session, product, make_price):
        price = make_price(product=product, kind=PriceKind.REQUEST_GENERATED, used=True)
        with pytest.raises(InvalidPriceError):
            PriceLedger(db_session).validate_and_resolve(price.id)

    def test_rejected_price(self, db_session, product, make_price):
        price = make_price(product=product, state=PriceState.REJECTED)
        with pytest.raises(InvalidPriceError) as exc:
            PriceLedger(db_session).validate_and_resolve(price.id)
        assert exc.value.kind == "InvalidPrice"


class TestClaimTemporary:
    """Tests del reclamo de precios temporales"""

    def test_claim_marks_used_once(self, db_session, product, make_price):
        price = make_price(product=product, kind=PriceKind.REQUEST_GENERATED)
        ledger = PriceLedger(db_session)

        assert ledger.claim_temporary([price.id]) == 1
        assert ledger.claim_temporary([price.id]) == 0

        db_session.expire_all()
        assert db_session.get(PriceRecord, price.id).used is True

    def test_claim_ignores_standard_prices(self, db_session, product, make_price):
        standard = make_price(product=product)
        assert PriceLedger(db_session).claim_temporary([standard.id]) == 0

    def test_partial_claim_reports_count(self, db_session, product, make_price):
        fresh = make_price(product=product, kind=PriceKind.REQUEST_GENERATED)
        spent = make_price(product=product, kind=PriceKind.REQUEST_GENERATED, used=True)

        assert PriceLedger(db_session).claim_temporary([fresh.id, spent.id, fresh.id]) == 1

    def test_empty_claim(self, db_session):
        assert PriceLedger(db_session).claim_temporary([]) == 0


class TestStandardPriceVersioning:
    """Tests de reemplazo de precios estándar"""

    def test_replace_rejects_previous_current(self, db_session, product, make_price):
        old = make_price(product=product, amount="10.00")
        temporary = make_price(product=product, amount="8.00", kind=PriceKind.REQUEST_GENERATED)
        ledger = PriceLedger(db_session)
        entity = EntityRef.product(product.id)

        created = ledger.replace_standard_prices(entity, [
            PriceIn(role=PriceRole.PUBLIC, ordinal=1, amount=Decimal("11.00")),
            PriceIn(role=PriceRole.WHOLESALE, ordinal=1, amount=Decimal("9.50")),
        ])

        assert len(created) == 2
        db_session.expire_all()
        previous = db_session.get(PriceRecord, old.id)
        assert previous.state == PriceState.REJECTED
        assert previous.valid_until is not None
        assert db_session.get(PriceRecord, temporary.id).state == PriceState.APPROVED

        current = ledger.list_current_prices(entity)
        standard = [p for p in current if p.kind == PriceKind.STANDARD]
        assert sorted(p.amount for p in standard) == [Decimal("9.50"), Decimal("11.00")]

    def test_replace_rejects_duplicate_role_ordinal(self, db_session, product):
        with pytest.raises(HTTPException) as exc:
            PriceLedger(db_session).replace_standard_prices(EntityRef.product(product.id), [
                PriceIn(amount=Decimal("1.00")),
                PriceIn(amount=Decimal("2.00")),
            ])
        assert exc.value.status_code == 400

    def test_replace_unknown_entity(self, db_session):
        with pytest.raises(HTTPException) as exc:
            PriceLedger(db_session).replace_standard_prices(EntityRef.presentation(999), [])
        assert exc.value.status_code == 404

    def test_create_request_price(self, db_session, admin_user, presentation):
        record = PriceLedger(db_session).create_request_price(RequestPriceCreate(
            entity_kind=EntityKind.PRESENTATION,
            entity_id=presentation.id,
            amount=Decimal("450.00"),
            approved_by=admin_user.id,
            note="Cliente frecuente",
        ))

        assert record.kind == PriceKind.REQUEST_GENERATED
        assert record.state == PriceState.APPROVED
        assert record.used is False
        assert record.presentation_id == presentation.id
        assert record.product_id is None


class TestPricesApi:
    """Tests de endpoints de precios"""

    def test_replace_and_list(self, api_client, product):
        response = api_client.put(f"/prices/PRODUCT/{product.id}", json={
            "prices": [{"role": "PUBLIC", "ordinal": 1, "amount": "15.00"}]
        })
        assert response.status_code == 200

        response = api_client.get(f"/prices/PRODUCT/{product.id}")
        assert response.status_code == 200
        assert [Decimal(p["amount"]) for p in response.json()] == [Decimal("15.00")]
