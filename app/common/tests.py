"""
Tests para el constructor declarativo de filtros
"""

import pytest

from app.common.filters import (
    all_of, any_of, compile_filter, one_of, when, Contains, Eq, IsNull, Range
)
from app.modules.products.models import Product


def matching_codes(db_session, predicate):
    rows = db_session.query(Product.code).filter(compile_filter(Product, predicate)).order_by(Product.code).all()
    return [row[0] for row in rows]


@pytest.fixture
def catalog(db_session):
    db_session.add_all([
        Product(name="Cemento gris", code="A-1", current_cost=10, is_active=True),
        Product(name="Cal hidratada", code="A-2", current_cost=20, is_active=False),
        Product(name="Cemento blanco", code="B-1", current_cost=30, is_active=True, supplier_code="PRV-9"),
    ])
    db_session.commit()


class TestFilters:
    """Tests de compilación de predicados"""

    def test_all_of_drops_missing_criteria(self, db_session, catalog):
        predicate = all_of(
            Eq("is_active", True),
            when(None, lambda: Eq("code", "A-1")),
            when("", lambda: Eq("code", "A-1")),
        )
        assert matching_codes(db_session, predicate) == ["A-1", "B-1"]

    def test_range_and_contains(self, db_session, catalog):
        predicate = all_of(Range("current_cost", gte=15), Contains("name", "cemento"))
        assert matching_codes(db_session, predicate) == ["B-1"]

    def test_any_of_and_null(self, db_session, catalog):
        predicate = any_of(Eq("code", "A-2"), IsNull("supplier_code", null=False))
        assert matching_codes(db_session, predicate) == ["A-2", "B-1"]

    def test_empty_membership_matches_nothing(self, db_session, catalog):
        assert matching_codes(db_session, one_of("code", [])) == []
        assert matching_codes(db_session, any_of()) == []
        assert matching_codes(db_session, all_of()) == ["A-1", "A-2", "B-1"]

    def test_unknown_field(self):
        with pytest.raises(ValueError):
            compile_filter(Product, Eq("missing", 1))
