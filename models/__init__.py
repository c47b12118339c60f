from .driver import Driver, CommissionType
from .order import (
    Order,
    OrderType,
    OrderStatus,
    TERMINAL_STATUSES,
    AWAITING_DRIVER_STATUSES,
    ORDER_ID_PREFIXES,
    INITIAL_STATUS,
)
from .order_counter import OrderCounter
from .manual_daily import ManualDaily
from .payment import Payment
from .audit_log import AuditLog, AuditAction

__all__ = [
    "Driver",
    "CommissionType",
    "Order",
    "OrderType",
    "OrderStatus",
    "TERMINAL_STATUSES",
    "AWAITING_DRIVER_STATUSES",
    "ORDER_ID_PREFIXES",
    "INITIAL_STATUS",
    "OrderCounter",
    "ManualDaily",
    "Payment",
    "AuditLog",
    "AuditAction",
]
