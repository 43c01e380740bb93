from typing import Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.modules.clients.models import Client
from app.modules.clients.schemas import ClientQuickCreate

logger = logging.getLogger(__name__)


class ClientService:
    """Alta rápida de clientes usada por el flujo de ventas."""

    def __init__(self, db: Session):
        self.db = db

    def exists(self, client_id: int) -> bool:
        return self.db.query(Client.id).filter(Client.id == client_id).first() is not None

    def create_minimal_client(self, fields: ClientQuickCreate) -> int:
        """
        Crea un cliente con los datos recibidos y retorna su id.

        Si el DPI ya está registrado se reutiliza el cliente existente.
        Corre dentro de un SAVEPOINT para no invalidar la transacción externa.
        """
        if fields.dpi:
            existing = self.db.query(Client).filter(Client.dpi == fields.dpi).first()
            if existing:
                return existing.id

        try:
            with self.db.begin_nested():
                client = Client(**fields.model_dump())
                self.db.add(client)
                self.db.flush()
        except IntegrityError:
            # Otro request registró el mismo DPI
            logger.warning(f"Cliente duplicado al crear desde venta (dpi={fields.dpi})")
            existing = self.db.query(Client).filter(Client.dpi == fields.dpi).first()
            if existing is None:
                raise
            return existing.id

        return client.id

    def resolve(self, client_id: Optional[int], fields: Optional[ClientQuickCreate]) -> Optional[int]:
        """
        Conecta un cliente existente o crea uno mínimo.

        Retorna None (venta CF) cuando no hay datos suficientes.
        """
        if client_id is not None:
            if self.exists(client_id):
                return client_id
            logger.warning(f"Cliente {client_id} no existe; la venta se registra como CF")
            return None

        if fields is None or not fields.name:
            return None

        return self.create_minimal_client(fields)
