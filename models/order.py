from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, Enum, DECIMAL, event
from sqlalchemy.orm import Session
from sqlalchemy.sql import func
from database import Base
from utils.exceptions import ValidationError
import enum


class OrderType(str, enum.Enum):
    standard = "standard"
    shopping = "shopping"


class OrderStatus(str, enum.Enum):
    waiting_merchant = "waiting_merchant"
    preparing = "preparing"
    ready = "ready"
    pending = "pending"
    in_transit = "in_transit"
    delivered = "delivered"
    cancelled = "cancelled"


TERMINAL_STATUSES = frozenset({OrderStatus.delivered, OrderStatus.cancelled})

# Statuses in which a driver+fee assignment starts the delivery
AWAITING_DRIVER_STATUSES = frozenset({OrderStatus.pending, OrderStatus.ready})

# Statuses that need a driver on the order
DRIVER_REQUIRED_STATUSES = frozenset({OrderStatus.in_transit, OrderStatus.delivered})

ORDER_ID_PREFIXES = {
    OrderType.standard: "ORD-",
    OrderType.shopping: "S-",
}

INITIAL_STATUS = {
    OrderType.standard: OrderStatus.pending,
    OrderType.shopping: OrderStatus.waiting_merchant,
}


class Order(Base):
    __tablename__ = "orders"

    order_id = Column(String(32), primary_key=True)
    order_type = Column(Enum(OrderType), nullable=False, default=OrderType.standard, index=True)
    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.pending, index=True)

    # Weak references, deleting a merchant or driver never cascades here
    merchant_id = Column(Integer, nullable=True, index=True)
    driver_id = Column(Integer, nullable=True, index=True)

    delivery_fee = Column(DECIMAL(10, 2), nullable=True)
    reconciled = Column(Boolean, nullable=False, default=False, index=True)

    # Customer details
    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(20), nullable=True)
    delivery_address = Column(String(500), nullable=True)
    notes = Column(Text, nullable=True)
    total_price = Column(DECIMAL(10, 2), nullable=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now(), index=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    delivered_at = Column(DateTime, nullable=True)

    # Optimistic concurrency, every UPDATE/DELETE checks this value
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def sync_assignment_status(self) -> None:
        """Apply the driver/status coupling.

        A driver plus a fee on an order that is waiting for one starts the
        delivery; an in-transit order without a driver goes back to pending.
        """
        if self.status in AWAITING_DRIVER_STATUSES and self.driver_id is not None and self.delivery_fee is not None:
            self.status = OrderStatus.in_transit
        elif self.status == OrderStatus.in_transit and self.driver_id is None:
            self.status = OrderStatus.pending
            self.delivery_fee = None

    def check_invariants(self) -> None:
        if self.reconciled and self.status != OrderStatus.delivered:
            raise ValidationError(
                "Only delivered orders can be reconciled",
                order_id=self.order_id,
                status=self.status.value if self.status else None,
            )
        if self.status in DRIVER_REQUIRED_STATUSES and self.driver_id is None:
            raise ValidationError(
                f"Order in status '{self.status.value}' must have a driver",
                order_id=self.order_id,
            )
        if self.delivery_fee is not None and self.delivery_fee < 0:
            raise ValidationError("Delivery fee cannot be negative", order_id=self.order_id)


@event.listens_for(Session, "before_flush")
def _enforce_order_invariants(session, flush_context, instances):
    """Every write path goes through here, including direct attribute edits."""
    for obj in list(session.new) + list(session.dirty):
        if isinstance(obj, Order):
            obj.sync_assignment_status()
            obj.check_invariants()
