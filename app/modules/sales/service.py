"""
Orquestador de ventas

Compone precios, stock, movimientos, notificaciones, caja y metas en una
sola unidad de trabajo. Cualquier falla revierte la transacción completa;
las notificaciones externas se despachan solo después del commit.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple
import logging
import math

from fastapi import HTTPException, status
from sqlalchemy.orm import Session, selectinload

from app.common.entities import EntityKind, EntityRef
from app.common.filters import all_of, compile_filter, Eq, Range, when
from app.core.config import settings
from app.modules.auth.models import User, UserRole
from app.modules.clients.service import ClientService
from app.modules.goals.service import GoalTracker
from app.modules.movements.models import MovementReason
from app.modules.movements.service import MovementEntry, MovementTracker
from app.modules.notifications.service import ThresholdNotifier
from app.modules.pos.policy import register_required
from app.modules.pos.services import CashRegisterGate
from app.modules.prices.schemas import ResolvedPrice
from app.modules.prices.service import PriceLedger
from app.modules.products.service import CatalogService
from app.modules.sales.exceptions import (
    SaleError, InvalidQuantityError, MismatchedEntityError,
    PriceClaimConflictError, InsufficientStockError, UnexpectedSaleError
)
from app.modules.sales.models import Sale, SaleLine, Payment, PaymentMethod
from app.modules.sales.schemas import SaleCreate, SaleLineIn, SaleFilters
from app.modules.stock.service import StockLedger

logger = logging.getLogger(__name__)

CENT = Decimal("0.0001")


@dataclass
class ConsolidatedLine:
    entity: EntityRef
    price: ResolvedPrice
    quantity: int

    @property
    def subtotal(self) -> Decimal:
        return Decimal(self.quantity) * self.price.amount


class SaleService:
    """Servicio de ventas"""

    def __init__(self, db: Session,
                 prices: Optional[PriceLedger] = None,
                 stock: Optional[StockLedger] = None,
                 tracker: Optional[MovementTracker] = None,
                 notifier: Optional[ThresholdNotifier] = None,
                 registers: Optional[CashRegisterGate] = None,
                 goals: Optional[GoalTracker] = None,
                 clients: Optional[ClientService] = None):
        self.db = db
        self.tracker = tracker or MovementTracker(db)
        self.notifier = notifier or ThresholdNotifier(db)
        self.prices = prices or PriceLedger(db)
        self.stock = stock or StockLedger(db, tracker=self.tracker, notifier=self.notifier)
        self.registers = registers or CashRegisterGate(db)
        self.goals = goals or GoalTracker(db)
        self.clients = clients or ClientService(db)

    # ----- creación -----

    def create_sale(self, data: SaleCreate) -> Sale:
        """
        Registrar una venta completa.

        Errores de dominio (SaleError) se propagan con su tipo; cualquier
        otro error se envuelve en UnexpectedSaleError. En ambos casos la
        transacción se revierte sin dejar rastro.
        """
        logger.info(
            f"Creando venta: sucursal={data.branch_id} usuario={data.user_id} "
            f"líneas={len(data.lines)} método={data.payment_method.value}"
        )
        try:
            sale = self._create(data)
            self.db.commit()
        except SaleError as e:
            self.db.rollback()
            self.notifier.discard_pending()
            logger.warning(f"Venta rechazada [{e.kind}]: {e.message} {e.context}")
            raise
        except Exception as e:
            self.db.rollback()
            self.notifier.discard_pending()
            logger.exception(f"Error inesperado al crear la venta: {e}")
            raise UnexpectedSaleError("Error inesperado al registrar la venta.") from e

        self.notifier.dispatch_pending()
        self.db.refresh(sale)
        logger.info(f"Venta #{sale.id} registrada por {sale.total}")
        return sale

    def _create(self, data: SaleCreate) -> Sale:
        role = self._actor_role(data.user_id)
        client_id = self.clients.resolve(data.client_id, data.client)

        lines = self._consolidate(self._validate_lines(data.lines))
        entities = list(dict.fromkeys(line.entity for line in lines))

        self._claim_temporary_prices(lines)
        consumed = self._deplete(lines, data.branch_id)

        # Lotes ya bloqueados: antes = después + lo consumido por esta venta
        after = self.stock.aggregate_many(entities, data.branch_id)
        before = {entity: after[entity] + consumed[entity] for entity in entities}
        self.notifier.notify_threshold_crossings(before, after)

        total = sum((line.subtotal for line in lines), Decimal("0")).quantize(CENT, rounding=ROUND_HALF_UP)

        sale = Sale(
            branch_id=data.branch_id,
            user_id=data.user_id,
            client_id=client_id,
            voucher_type=data.voucher_type,
            payment_reference=data.payment_reference,
            total=total,
            imei=data.imei,
            notes=data.notes,
        )
        sale.lines = [
            SaleLine(
                product_id=line.price.product_id,
                presentation_id=line.entity.id if line.entity.is_presentation else None,
                price_id=line.price.price_id,
                quantity=line.quantity,
                unit_price=line.price.amount,
            )
            for line in lines
        ]
        self.db.add(sale)
        self.db.flush()

        self._record_movements(sale, entities, before, after)

        payment = self._attach_payment(sale, data.payment_method)

        self.registers.attach_and_record(
            sale_id=sale.id,
            branch_id=sale.branch_id,
            user_id=sale.user_id,
            must_require_open_register_if_cash=register_required(role, payment.method),
            cash_amount=payment.amount if payment.method == PaymentMethod.CASH else Decimal("0"),
        )

        self.goals.increment(sale.user_id, sale.total, settings.GOAL_CHANNEL)
        return sale

    def _actor_role(self, user_id: int) -> UserRole:
        role = self.db.query(User.role).filter(User.id == user_id).scalar()
        return role or UserRole.SELLER

    # ----- validación de líneas -----

    @staticmethod
    def _quantity(value: Any) -> int:
        # Los enteros se validan sin pasar por float para no perder precisión
        if isinstance(value, int) and not isinstance(value, bool):
            if value > 0:
                return value
        else:
            try:
                number = float(value)
            except (TypeError, ValueError):
                number = math.nan
            if math.isfinite(number) and number > 0 and number == int(number):
                return int(number)
        raise InvalidQuantityError(
            f"Cantidad no válida: {value}. Debe ser un entero positivo.",
            {"quantity": value}
        )

    @staticmethod
    def _check_entity(line: SaleLineIn, price: ResolvedPrice) -> EntityRef:
        """La entidad del precio manda; los ids enviados deben coincidir."""
        context = {
            "price_id": price.price_id,
            "product_id": line.product_id,
            "presentation_id": line.presentation_id,
        }
        if price.entity_kind == EntityKind.PRESENTATION:
            if line.presentation_id is not None and line.presentation_id != price.entity_id:
                raise MismatchedEntityError(
                    f"El precio #{price.price_id} pertenece a la presentación {price.entity_id}.",
                    context
                )
            if line.product_id is not None and line.product_id != price.product_id:
                raise MismatchedEntityError(
                    f"La presentación {price.entity_id} no pertenece al producto {line.product_id}.",
                    context
                )
        else:
            if line.presentation_id is not None:
                raise MismatchedEntityError(
                    f"El precio #{price.price_id} es de producto, no de presentación.",
                    context
                )
            if line.product_id is not None and line.product_id != price.entity_id:
                raise MismatchedEntityError(
                    f"El precio #{price.price_id} pertenece al producto {price.entity_id}.",
                    context
                )
        return EntityRef(price.entity_kind, price.entity_id)

    def _validate_lines(self, lines: List[SaleLineIn]) -> List[ConsolidatedLine]:
        validated = []
        for line in lines:
            quantity = self._quantity(line.quantity)
            price = self.prices.validate_and_resolve(line.selected_price_id)
            entity = self._check_entity(line, price)
            validated.append(ConsolidatedLine(entity=entity, price=price, quantity=quantity))
        return validated

    @staticmethod
    def _consolidate(lines: List[ConsolidatedLine]) -> List[ConsolidatedLine]:
        grouped: Dict[Tuple[EntityRef, int], ConsolidatedLine] = {}
        for line in lines:
            key = (line.entity, line.price.price_id)
            if key in grouped:
                grouped[key].quantity += line.quantity
            else:
                grouped[key] = ConsolidatedLine(entity=line.entity, price=line.price, quantity=line.quantity)
        return list(grouped.values())

    # ----- precios y stock -----

    def _claim_temporary_prices(self, lines: List[ConsolidatedLine]) -> None:
        ids = sorted({line.price.price_id for line in lines if line.price.is_temporary})
        if not ids:
            return
        claimed = self.prices.claim_temporary(ids)
        if claimed < len(ids):
            raise PriceClaimConflictError(
                "Uno o más precios temporales ya fueron utilizados por otra venta.",
                {"price_ids": ids, "claimed": claimed}
            )

    def _deplete(self, lines: List[ConsolidatedLine], branch_id: int) -> Dict[EntityRef, int]:
        """Descuenta cada línea en orden FIFO; retorna las unidades consumidas por entidad."""
        catalog = CatalogService(self.db)
        consumed: Dict[EntityRef, int] = {}
        for line in lines:
            result = self.stock.deplete_fifo(line.entity, branch_id, line.quantity)
            if not result.ok:
                name = catalog.display_name(line.entity)
                raise InsufficientStockError(
                    f"Stock insuficiente para {name}: faltan {result.shortfall} uds.",
                    {"entity": str(line.entity), "requested": line.quantity, "shortfall": result.shortfall}
                )
            consumed[line.entity] = consumed.get(line.entity, 0) + result.consumed_quantity
        return consumed

    # ----- auditoría y pago -----

    def _record_movements(self, sale: Sale, entities: List[EntityRef],
                          before: Dict[EntityRef, int], after: Dict[EntityRef, int]) -> None:
        note = f"Registro generado por venta #{sale.id}"
        for kind in (EntityKind.PRODUCT, EntityKind.PRESENTATION):
            entries = [
                MovementEntry(entity, before[entity], after[entity])
                for entity in entities if entity.kind == kind
            ]
            if entries:
                self.tracker.record(
                    entries,
                    branch_id=sale.branch_id,
                    user_id=sale.user_id,
                    reference_id=sale.id,
                    reason=MovementReason.SALE_EXIT,
                    note=note,
                )

    def _attach_payment(self, sale: Sale, method: PaymentMethod) -> Payment:
        # Venta a crédito: el pago se registra en cero
        amount = Decimal("0") if method == PaymentMethod.CREDIT else sale.total
        payment = Payment(sale_id=sale.id, method=method, amount=amount)
        sale.payment = payment
        sale.payment_method = method
        self.db.flush()
        return payment

    # ----- consultas -----

    def get_sale(self, sale_id: int) -> Sale:
        sale = self.db.query(Sale).options(
            selectinload(Sale.lines),
            selectinload(Sale.payment)
        ).filter(Sale.id == sale_id).first()
        if not sale:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Venta {sale_id} no encontrada"
            )
        return sale

    def list_sales(self, filters: SaleFilters) -> Dict[str, Any]:
        predicate = all_of(
            when(filters.branch_id, lambda: Eq("branch_id", filters.branch_id)),
            when(filters.user_id, lambda: Eq("user_id", filters.user_id)),
            when(filters.client_id, lambda: Eq("client_id", filters.client_id)),
            when(filters.payment_method, lambda: Eq("payment_method", filters.payment_method)),
            when(filters.date_from or filters.date_to, lambda: Range(
                "created_at", gte=filters.date_from, lte=filters.date_to
            )),
        )
        query = self.db.query(Sale).filter(compile_filter(Sale, predicate))
        total = query.count()
        sales = query.options(
            selectinload(Sale.lines),
            selectinload(Sale.payment)
        ).order_by(Sale.created_at.desc(), Sale.id.desc()).offset(filters.offset).limit(filters.limit).all()

        return {
            "sales": sales,
            "total": total,
            "limit": filters.limit,
            "offset": filters.offset
        }
