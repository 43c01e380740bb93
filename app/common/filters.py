"""
Declarative query filters.

Filters are built as a tree of small immutable predicates and compiled once
against a SQLAlchemy model::

    predicate = all_of(
        Eq("branch_id", branch_id),
        Range("remaining_quantity", gt=0),
        when(expiring_before, lambda: Range("expiry_date", lt=expiring_before)),
    )
    query = db.query(StockLot).filter(compile_filter(StockLot, predicate))

``all_of`` / ``any_of`` drop ``None`` members, so optional criteria are
expressed with ``when`` instead of branching around a mutable query.
"""
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Tuple, Union

from sqlalchemy import and_, false, or_, true
from sqlalchemy.sql.elements import ColumnElement


@dataclass(frozen=True)
class Eq:
    field: str
    value: Any


@dataclass(frozen=True)
class In:
    field: str
    values: Tuple[Any, ...]


@dataclass(frozen=True)
class Range:
    field: str
    gt: Any = None
    gte: Any = None
    lt: Any = None
    lte: Any = None


@dataclass(frozen=True)
class Contains:
    field: str
    text: str
    case_sensitive: bool = False


@dataclass(frozen=True)
class IsNull:
    field: str
    null: bool = True


@dataclass(frozen=True)
class And:
    predicates: Tuple["Predicate", ...]


@dataclass(frozen=True)
class Or:
    predicates: Tuple["Predicate", ...]


Predicate = Union[Eq, In, Range, Contains, IsNull, And, Or]


def all_of(*predicates: Optional[Predicate]) -> And:
    return And(tuple(p for p in predicates if p is not None))


def any_of(*predicates: Optional[Predicate]) -> Or:
    return Or(tuple(p for p in predicates if p is not None))


def one_of(field: str, values: Sequence[Any]) -> In:
    return In(field, tuple(values))


def when(condition: Any, build: Callable[[], Predicate]) -> Optional[Predicate]:
    """Return ``build()`` when ``condition`` is set (not None / not empty)."""
    if condition is None or condition == "" or condition == ():
        return None
    return build()


def _column(model, field: str):
    column = getattr(model, field, None)
    if column is None:
        raise ValueError(f"{model.__name__} has no column '{field}'")
    return column


def compile_filter(model, predicate: Predicate) -> ColumnElement:
    """Compile a predicate tree into a SQLAlchemy boolean expression."""
    if isinstance(predicate, Eq):
        column = _column(model, predicate.field)
        if predicate.value is None:
            return column.is_(None)
        return column == predicate.value

    if isinstance(predicate, In):
        if not predicate.values:
            return false()
        return _column(model, predicate.field).in_(predicate.values)

    if isinstance(predicate, Range):
        column = _column(model, predicate.field)
        bounds = []
        if predicate.gt is not None:
            bounds.append(column > predicate.gt)
        if predicate.gte is not None:
            bounds.append(column >= predicate.gte)
        if predicate.lt is not None:
            bounds.append(column < predicate.lt)
        if predicate.lte is not None:
            bounds.append(column <= predicate.lte)
        return and_(true(), *bounds)

    if isinstance(predicate, Contains):
        column = _column(model, predicate.field)
        pattern = f"%{predicate.text}%"
        return column.like(pattern) if predicate.case_sensitive else column.ilike(pattern)

    if isinstance(predicate, IsNull):
        column = _column(model, predicate.field)
        return column.is_(None) if predicate.null else column.is_not(None)

    if isinstance(predicate, And):
        return and_(true(), *(compile_filter(model, p) for p in predicate.predicates))

    if isinstance(predicate, Or):
        if not predicate.predicates:
            return false()
        return or_(*(compile_filter(model, p) for p in predicate.predicates))

    raise TypeError(f"Unsupported predicate: {predicate!r}")
