"""
Libro de precios

- Validación/resolución del precio seleccionado en una línea de venta
- Reclamo atómico de precios temporales (REQUEST_GENERATED, un solo uso)
- Versionado de precios STANDARD (reemplazo del vigente)
- Alta de precios generados por solicitud
"""
from datetime import datetime, timezone
from typing import List, Sequence
import logging

from fastapi import HTTPException, status
from sqlalchemy import update
from sqlalchemy.orm import Session

from app.common.entities import EntityKind, EntityRef
from app.common.filters import all_of, compile_filter, Eq, IsNull, one_of
from app.modules.prices.models import PriceRecord, PriceState, PriceKind
from app.modules.prices.schemas import PriceIn, RequestPriceCreate, ResolvedPrice
from app.modules.products.models import Presentation
from app.modules.products.service import CatalogService
from app.modules.sales.exceptions import InvalidPriceError

logger = logging.getLogger(__name__)


class PriceLedger:
    """Servicio del libro de precios"""

    def __init__(self, db: Session):
        self.db = db

    def validate_and_resolve(self, price_id: int) -> ResolvedPrice:
        """
        Resuelve el precio seleccionado y la entidad a la que pertenece.

        Falla con InvalidPrice si el precio no existe, ya fue usado, fue
        rechazado o no tiene entidad asociada.
        """
        price = self.db.query(PriceRecord).filter(PriceRecord.id == price_id).first()

        if not price or price.used:
            raise InvalidPriceError(f"Precio no válido (#{price_id}).", {"price_id": price_id})

        if price.state != PriceState.APPROVED:
            raise InvalidPriceError(f"El precio #{price_id} no está aprobado.", {"price_id": price_id})

        if price.presentation_id is not None:
            owner_id = self.db.query(Presentation.product_id).filter(
                Presentation.id == price.presentation_id
            ).scalar()
            if owner_id is None:
                raise InvalidPriceError(
                    f"Presentación {price.presentation_id} no existe.",
                    {"price_id": price_id}
                )
            return ResolvedPrice(
                price_id=price.id,
                entity_kind=EntityKind.PRESENTATION,
                entity_id=price.presentation_id,
                product_id=owner_id,
                amount=price.amount,
                kind=price.kind,
                state=price.state,
                used=price.used,
            )

        if price.product_id is not None:
            return ResolvedPrice(
                price_id=price.id,
                entity_kind=EntityKind.PRODUCT,
                entity_id=price.product_id,
                product_id=price.product_id,
                amount=price.amount,
                kind=price.kind,
                state=price.state,
                used=price.used,
            )

        raise InvalidPriceError(f"Precio #{price_id} sin entidad asociada.", {"price_id": price_id})

    def claim_temporary(self, price_ids: Sequence[int]) -> int:
        """
        Marca used=true en los precios temporales indicados, solo donde aún
        es false. Retorna el número de filas efectivamente reclamadas.
        """
        ids = sorted(set(price_ids))
        if not ids:
            return 0

        criteria = compile_filter(PriceRecord, all_of(
            one_of("id", ids),
            Eq("kind", PriceKind.REQUEST_GENERATED),
            Eq("state", PriceState.APPROVED),
            Eq("used", False),
        ))
        result = self.db.execute(
            update(PriceRecord)
            .where(criteria)
            .values(used=True)
            .execution_options(synchronize_session=False)
        )
        claimed = result.rowcount or 0
        logger.debug(f"Precios temporales reclamados: {claimed}/{len(ids)} ({ids})")
        return claimed

    def list_current_prices(self, entity: EntityRef) -> List[PriceRecord]:
        return self.db.query(PriceRecord).filter(
            *PriceRecord.entity_criteria(entity),
            compile_filter(PriceRecord, all_of(
                Eq("state", PriceState.APPROVED),
                IsNull("valid_until"),
                Eq("used", False),
            ))
        ).order_by(PriceRecord.role, PriceRecord.ordinal).all()

    def replace_standard_prices(self, entity: EntityRef, prices: List[PriceIn],
                                user_id: int = None) -> List[PriceRecord]:
        """
        Reemplaza los precios STANDARD vigentes de la entidad.

        Los vigentes pasan a REJECTED con valid_until=ahora y se insertan los
        nuevos como APPROVED. Los precios temporales no se tocan.
        """
        CatalogService(self.db).get_entity(entity)

        seen = set()
        for p in prices:
            key = (p.role, p.ordinal)
            if key in seen:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Precio duplicado para rol {p.role.value} y orden {p.ordinal}"
                )
            seen.add(key)

        try:
            now = datetime.now(timezone.utc)
            self.db.execute(
                update(PriceRecord)
                .where(
                    *PriceRecord.entity_criteria(entity),
                    PriceRecord.kind == PriceKind.STANDARD,
                    PriceRecord.state == PriceState.APPROVED,
                    PriceRecord.valid_until.is_(None),
                )
                .values(state=PriceState.REJECTED, valid_until=now)
                .execution_options(synchronize_session=False)
            )

            created = []
            for p in prices:
                record = PriceRecord(
                    product_id=None if entity.is_presentation else entity.id,
                    presentation_id=entity.id if entity.is_presentation else None,
                    role=p.role,
                    ordinal=p.ordinal,
                    amount=p.amount,
                    kind=PriceKind.STANDARD,
                    state=PriceState.APPROVED,
                    valid_from=now,
                    valid_until=None,
                    created_by=user_id,
                )
                self.db.add(record)
                created.append(record)

            self.db.commit()
            for record in created:
                self.db.refresh(record)

            logger.info(f"Precios estándar de {entity} reemplazados ({len(created)} nuevos)")
            return created

        except HTTPException:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error al reemplazar precios de {entity}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Error al actualizar los precios"
            )

    def create_request_price(self, data: RequestPriceCreate) -> PriceRecord:
        """Registrar un precio temporal aprobado desde una solicitud"""
        entity = EntityRef(data.entity_kind, data.entity_id)
        CatalogService(self.db).get_entity(entity)

        record = PriceRecord(
            product_id=None if entity.is_presentation else entity.id,
            presentation_id=entity.id if entity.is_presentation else None,
            role=data.role,
            ordinal=1,
            amount=data.amount,
            kind=PriceKind.REQUEST_GENERATED,
            state=PriceState.APPROVED,
            used=False,
            created_by=data.approved_by,
            note=data.note,
        )
        try:
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
            return record
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error al crear precio temporal para {entity}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Error al crear el precio temporal"
            )
