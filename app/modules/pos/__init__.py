"""
Módulo POS (Point of Sale)

ENTIDADES PRINCIPALES:
- CashRegister: Cajas registradoras con apertura/cierre y arqueo
- CashMovement: Movimientos de caja (ventas, depósitos, retiros, ajustes)
- CashRegisterSale: Venta ligada a la caja donde se cobró

REGLAS DE NEGOCIO:
- Solo una caja abierta por sucursal simultáneamente
- Ventas en efectivo requieren caja abierta, salvo roles exentos
- Arqueo automático en cierre de caja
"""
