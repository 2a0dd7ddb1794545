"""API Routes Package."""

from api.routes import gate, health, order_sheets, sales_orders, shipments

__all__ = [
    "gate",
    "health",
    "order_sheets",
    "sales_orders",
    "shipments",
]
