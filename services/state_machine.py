"""
services/state_machine.py  –  Order status transitions

Legal edges live in one table per order type. The pure functions below
validate and apply a transition or a driver assignment to an Order value;
OrderStateMachine adds loading, authorization, audit and the transaction.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, FrozenSet, Optional
import logging

from sqlalchemy.orm import Session

from models.audit_log import AuditAction
from models.driver import Driver
from models.order import (
    Order, OrderType, OrderStatus,
    TERMINAL_STATUSES, AWAITING_DRIVER_STATUSES, DRIVER_REQUIRED_STATUSES,
)
from utils.audit import log_action
from utils.exceptions import InvalidTransition, NotFound, PermissionDenied, ValidationError
from utils.permissions import Actor, Permission, ensure_permission
from utils.transactions import run_in_transaction

logger = logging.getLogger(__name__)

S = OrderStatus
CENT = Decimal("0.01")


# ── Transition tables ────────────────────────────────────────────────────────

STANDARD_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    S.pending: frozenset({S.in_transit, S.cancelled}),
    S.in_transit: frozenset({S.pending, S.delivered, S.cancelled}),
    S.delivered: frozenset(),
    S.cancelled: frozenset(),
}


def _shopping_table() -> Dict[OrderStatus, FrozenSet[OrderStatus]]:
    # Any move along the shopping flow, forwards or backwards, except
    # pending -> delivered; cancel from anything that is still open
    flow = (S.waiting_merchant, S.preparing, S.ready, S.pending, S.in_transit, S.delivered)
    table = {}
    for source in flow:
        if source in TERMINAL_STATUSES:
            table[source] = frozenset()
            continue
        targets = {t for t in flow if t != source} | {S.cancelled}
        if source == S.pending:
            targets.discard(S.delivered)
        table[source] = frozenset(targets)
    table[S.cancelled] = frozenset()
    return table


SHOPPING_TRANSITIONS = _shopping_table()

TRANSITION_TABLES = {
    OrderType.standard: STANDARD_TRANSITIONS,
    OrderType.shopping: SHOPPING_TRANSITIONS,
}


def allowed_targets(order_type: OrderType, current: OrderStatus) -> FrozenSet[OrderStatus]:
    return TRANSITION_TABLES[order_type].get(current, frozenset())


def can_transition(order_type: OrderType, current: OrderStatus, target: OrderStatus) -> bool:
    return target in allowed_targets(order_type, current)


def check_transition(order_type: OrderType, current: OrderStatus, target: OrderStatus) -> None:
    if not can_transition(order_type, current, target):
        raise InvalidTransition(
            f"Cannot move a {order_type.value} order from '{current.value}' to '{target.value}'",
            order_type=order_type.value,
            current=current.value,
            requested=target.value,
        )


# ── Pure operations on an Order value ────────────────────────────────────────

def validate_fee(fee, actor: Actor) -> Decimal:
    """Parse a delivery fee; zero is reserved for privileged actors."""
    if fee is None or fee == "":
        raise ValidationError("Delivery fee is required")
    try:
        value = Decimal(str(fee))
    except (InvalidOperation, ValueError):
        raise ValidationError("Delivery fee must be a number", fee=str(fee))
    if not value.is_finite():
        raise ValidationError("Delivery fee must be a number", fee=str(fee))
    value = value.quantize(CENT, rounding=ROUND_HALF_UP)
    if value < 0:
        raise ValidationError("Delivery fee cannot be negative", fee=str(fee))
    if value == 0 and not (actor and actor.is_privileged):
        raise PermissionDenied("Only an admin can assign a zero delivery fee", fee=str(fee))
    return value


def apply_transition(order: Order, target: OrderStatus, now: Optional[datetime] = None) -> Order:
    now = now or datetime.utcnow()
    check_transition(order.order_type, order.status, target)

    if target in DRIVER_REQUIRED_STATUSES and order.driver_id is None:
        raise ValidationError(
            f"Assign a driver before moving order {order.order_id} to '{target.value}'",
            order_id=order.order_id,
        )
    if target == S.in_transit and order.delivery_fee is None:
        raise ValidationError("A delivery fee is required to start the delivery", order_id=order.order_id)

    # The driver hands the order back when it leaves transit for an earlier stage
    if order.status == S.in_transit and target not in (S.delivered, S.cancelled):
        order.driver_id = None
        order.delivery_fee = None

    order.status = target
    if target == S.delivered:
        order.delivered_at = now
    order.updated_at = now
    return order


def apply_assignment(order: Order, driver_id: int, fee: Decimal, now: Optional[datetime] = None) -> Order:
    """Set driver and fee. Starts the delivery when the order awaits a driver,
    transfers it when already in transit."""
    if order.is_terminal:
        raise InvalidTransition(
            f"Order {order.order_id} is already '{order.status.value}'",
            order_id=order.order_id,
            current=order.status.value,
        )

    order.driver_id = driver_id
    order.delivery_fee = fee
    if order.status in AWAITING_DRIVER_STATUSES:
        order.status = S.in_transit
    order.updated_at = now or datetime.utcnow()
    return order


def apply_unassignment(order: Order, now: Optional[datetime] = None) -> Order:
    if order.is_terminal:
        raise InvalidTransition(
            f"Cannot remove the driver of a '{order.status.value}' order",
            order_id=order.order_id,
            current=order.status.value,
        )
    order.driver_id = None
    order.delivery_fee = None
    order.sync_assignment_status()
    order.updated_at = now or datetime.utcnow()
    return order


# ── Service ──────────────────────────────────────────────────────────────────

class OrderStateMachine:
    def __init__(self, db: Session):
        self.db = db

    def load_order(self, order_id: str) -> Order:
        order = self.db.query(Order).filter(Order.order_id == order_id).first()
        if not order:
            raise NotFound(f"Order {order_id} not found", order_id=order_id)
        return order

    def load_assignable_driver(self, driver_id: int) -> Driver:
        driver = self.db.query(Driver).filter(Driver.driver_id == driver_id).first()
        if not driver:
            raise NotFound(f"Driver {driver_id} not found", driver_id=driver_id)
        if not driver.is_active:
            raise ValidationError(f"Driver {driver_id} is inactive", driver_id=driver_id)
        return driver

    # -- single-order operations ---------------------------------------------

    def transition(self, order_id: str, new_status: OrderStatus, actor: Actor) -> Order:
        ensure_permission(actor, Permission.manage_orders)

        def work():
            order = self.load_order(order_id)
            previous = order.status
            apply_transition(order, new_status)
            # flush so the driver coupling settles the final status
            self.db.flush()
            log_action(self.db, actor, AuditAction.update, f"order:{order_id}",
                       f"status {previous.value} -> {order.status.value}")
            return order

        order = run_in_transaction(self.db, work, label=f"transition {order_id}")
        logger.info(f"Order {order_id} moved to {order.status.value}")
        return order

    def assign_driver(self, order_id: str, driver_id: int, fee, actor: Actor) -> Order:
        ensure_permission(actor, Permission.manage_orders)
        value = validate_fee(fee, actor)

        def work():
            self.load_assignable_driver(driver_id)
            order = self.load_order(order_id)
            previous_driver = order.driver_id
            apply_assignment(order, driver_id, value)
            kind = "transferred" if previous_driver not in (None, driver_id) and order.status == S.in_transit else "assigned"
            log_action(self.db, actor, AuditAction.update, f"order:{order_id}",
                       f"{kind} to driver {driver_id} with fee {value}")
            return order

        order = run_in_transaction(self.db, work, label=f"assign {order_id}")
        logger.info(f"Order {order_id} assigned to driver {driver_id} (fee {value})")
        return order

    def unassign_driver(self, order_id: str, actor: Actor) -> Order:
        ensure_permission(actor, Permission.manage_orders)

        def work():
            order = self.load_order(order_id)
            previous_driver = order.driver_id
            apply_unassignment(order)
            log_action(self.db, actor, AuditAction.update, f"order:{order_id}",
                       f"driver {previous_driver} removed")
            return order

        return run_in_transaction(self.db, work, label=f"unassign {order_id}")
