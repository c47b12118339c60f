"""
services/order_service.py  –  Order intake, reads and detail edits

Ids are handed out per type from the order_counters table (ORD-1, ORD-2,
S-1, ...) inside the creating transaction; the counter row is locked so
two concurrent intakes never get the same number.
"""

from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from models.audit_log import AuditAction
from models.order import Order, OrderType, OrderStatus, ORDER_ID_PREFIXES, INITIAL_STATUS
from models.order_counter import OrderCounter
from utils.audit import log_action
from utils.exceptions import NotFound, PermissionDenied, ValidationError
from utils.permissions import Actor, Permission, Role, ensure_permission
from utils.transactions import run_in_transaction

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("customer_name", "customer_phone", "delivery_address", "notes")


def next_order_id(db: Session, order_type: OrderType) -> str:
    prefix = ORDER_ID_PREFIXES[order_type]
    counter = db.query(OrderCounter).filter(OrderCounter.prefix == prefix).with_for_update().first()
    if counter is None:
        counter = OrderCounter(prefix=prefix, last_value=0)
        db.add(counter)
    counter.last_value += 1
    return f"{prefix}{counter.last_value}"


def scope_query(q, actor: Actor):
    """Drivers only see orders assigned to them, merchants only their own."""
    if actor is None:
        return q
    if actor.role == Role.driver:
        return q.filter(Order.driver_id == actor.user_id)
    if actor.role == Role.merchant:
        return q.filter(Order.merchant_id == actor.user_id)
    return q


class OrderService:
    def __init__(self, db: Session):
        self.db = db

    def create_order(
        self,
        order_type: OrderType,
        actor: Actor,
        merchant_id: Optional[int] = None,
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
        delivery_address: Optional[str] = None,
        notes: Optional[str] = None,
        total_price=None,
    ) -> Order:
        if actor.role == Role.merchant:
            # A merchant always creates orders for itself
            merchant_id = actor.user_id
        elif actor.role not in (Role.admin, Role.supervisor):
            raise PermissionDenied("Only merchants and staff can create orders")
        elif actor.role == Role.supervisor:
            ensure_permission(actor, Permission.manage_orders)

        price = None
        if total_price is not None:
            try:
                price = Decimal(str(total_price))
            except (InvalidOperation, ValueError):
                raise ValidationError("total_price must be a number")
            if price < 0:
                raise ValidationError("total_price cannot be negative")

        def work():
            order = Order(
                order_id=next_order_id(self.db, order_type),
                order_type=order_type,
                status=INITIAL_STATUS[order_type],
                merchant_id=merchant_id,
                customer_name=customer_name,
                customer_phone=customer_phone,
                delivery_address=delivery_address,
                notes=notes,
                total_price=price,
                reconciled=False,
            )
            self.db.add(order)
            log_action(self.db, actor, AuditAction.create, f"order:{order.order_id}",
                       f"{order_type.value} order created for merchant {merchant_id}")
            return order

        order = run_in_transaction(self.db, work, label="create order")
        logger.info(f"📦 Order {order.order_id} created ({order_type.value})")
        return order

    def get_order(self, order_id: str, actor: Optional[Actor] = None) -> Order:
        order = scope_query(self.db.query(Order), actor).filter(Order.order_id == order_id).first()
        if not order:
            raise NotFound(f"Order {order_id} not found", order_id=order_id)
        return order

    def list_orders(
        self,
        actor: Optional[Actor] = None,
        status: Optional[OrderStatus] = None,
        order_type: Optional[OrderType] = None,
        driver_id: Optional[int] = None,
        merchant_id: Optional[int] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Order], int]:
        q = scope_query(self.db.query(Order), actor)
        if status is not None:
            q = q.filter(Order.status == status)
        if order_type is not None:
            q = q.filter(Order.order_type == order_type)
        if driver_id is not None:
            q = q.filter(Order.driver_id == driver_id)
        if merchant_id is not None:
            q = q.filter(Order.merchant_id == merchant_id)

        total = q.count()
        orders = (
            q.order_by(Order.created_at.desc(), Order.order_id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return orders, total

    def update_order_details(self, order_id: str, actor: Actor, **changes) -> Order:
        ensure_permission(actor, Permission.manage_orders)
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError("Only customer details and notes can be edited here", fields=sorted(unknown))

        def work():
            order = self.get_order(order_id)
            for field, value in changes.items():
                setattr(order, field, value)
            log_action(self.db, actor, AuditAction.update, f"order:{order_id}",
                       f"details edited: {sorted(changes)}")
            return order

        return run_in_transaction(self.db, work, label=f"edit {order_id}")

    def delete_order(self, order_id: str, actor: Actor) -> None:
        ensure_permission(actor, Permission.delete_orders)

        def work():
            order = self.get_order(order_id)
            if order.reconciled:
                # Payment amounts stay frozen, history drops the order on read
                logger.warning(f"⚠️ Deleting reconciled order {order_id}, its payment keeps the collected amount")
            self.db.delete(order)
            log_action(self.db, actor, AuditAction.delete, f"order:{order_id}",
                       f"{order.status.value} order deleted (reconciled={bool(order.reconciled)})")

        run_in_transaction(self.db, work, label=f"delete {order_id}")
        logger.info(f"🗑️ Order {order_id} deleted")
