from app.core.config import settings
from app.modules.auth.models import UserRole
from app.modules.sales.models import PaymentMethod


def register_required(role: UserRole, method: PaymentMethod) -> bool:
    """
    Indica si una venta debe quedar ligada a una caja abierta.

    Se exige caja para los métodos configurados (efectivo por defecto),
    salvo para los roles exentos.
    """
    if role is not None and role.value in settings.REGISTER_EXEMPT_ROLES:
        return False
    return method is not None and method.value in settings.REGISTER_REQUIRED_METHODS
