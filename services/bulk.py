"""
services/bulk.py  –  Mass assign / status change / delete

One logical operation over every order matching an OrderFilter. Each order
gets its own transaction, so a conflict on one order never rolls back the
others. Orders the operation cannot apply to are skipped and counted; only
errors that concern the whole call (authorization, bad filter, unknown
driver, invalid fee) abort it.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Union
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.audit_log import AuditAction
from models.order import Order, OrderType, OrderStatus
from services.state_machine import (
    OrderStateMachine, apply_assignment, apply_transition, validate_fee,
)
from utils.audit import log_action
from utils.exceptions import DispatchError, NotFound, ValidationError
from utils.permissions import Actor, Permission, ensure_permission
from utils.transactions import run_in_transaction

logger = logging.getLogger(__name__)

ALL = "all"


@dataclass(frozen=True)
class OrderFilter:
    """Status bucket (None = every status) narrowed by type and merchant."""

    status: Optional[OrderStatus] = None
    order_type: Optional[OrderType] = None
    merchant_id: Optional[int] = None

    @classmethod
    def parse(
        cls,
        status: Union[str, OrderStatus, None] = ALL,
        order_type: Union[str, OrderType, None] = None,
        merchant_id: Optional[int] = None,
    ) -> "OrderFilter":
        try:
            parsed_status = None if status in (None, ALL) else OrderStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown status bucket '{status}'", status=str(status))
        try:
            parsed_type = None if order_type in (None, ALL) else OrderType(order_type)
        except ValueError:
            raise ValidationError(f"Unknown order type '{order_type}'", order_type=str(order_type))
        return cls(status=parsed_status, order_type=parsed_type, merchant_id=merchant_id)

    def apply(self, q):
        if self.status is not None:
            q = q.filter(Order.status == self.status)
        if self.order_type is not None:
            q = q.filter(Order.order_type == self.order_type)
        if self.merchant_id is not None:
            q = q.filter(Order.merchant_id == self.merchant_id)
        return q

    def matches(self, order: Order) -> bool:
        return (
            (self.status is None or order.status == self.status)
            and (self.order_type is None or order.order_type == self.order_type)
            and (self.merchant_id is None or order.merchant_id == self.merchant_id)
        )

    def describe(self) -> str:
        parts = [f"status={self.status.value if self.status else ALL}"]
        if self.order_type:
            parts.append(f"type={self.order_type.value}")
        if self.merchant_id is not None:
            parts.append(f"merchant={self.merchant_id}")
        return " ".join(parts)


@dataclass
class BulkResult:
    affected_count: int = 0
    skipped_count: int = 0

    def to_dict(self) -> dict:
        return {"affected_count": self.affected_count, "skipped_count": self.skipped_count}


def _is_assignable(order: Order) -> bool:
    return order.status == OrderStatus.pending and order.driver_id is None


class BulkOperationCoordinator:
    def __init__(self, db: Session):
        self.db = db
        self.machine = OrderStateMachine(db)

    def _matching_ids(self, order_filter: OrderFilter) -> List[str]:
        rows = order_filter.apply(self.db.query(Order.order_id)).order_by(Order.order_id).all()
        self.db.rollback()
        return [r[0] for r in rows]

    def _run_each(self, order_ids: List[str], apply_one: Callable[[Order], bool], label: str) -> BulkResult:
        """apply_one mutates the order and returns True, or returns False to skip it."""
        result = BulkResult()
        for order_id in order_ids:
            def work(order_id=order_id):
                order = self.db.query(Order).filter(Order.order_id == order_id).first()
                if order is None:
                    raise NotFound(f"Order {order_id} not found", order_id=order_id)
                return apply_one(order)

            try:
                applied = run_in_transaction(self.db, work, label=f"{label} {order_id}")
            except DispatchError as e:
                logger.info(f"{label}: order {order_id} skipped ({e.code}: {e.message})")
                result.skipped_count += 1
                continue
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.warning(f"{label}: order {order_id} skipped after store error: {e}")
                result.skipped_count += 1
                continue

            if applied:
                result.affected_count += 1
            else:
                result.skipped_count += 1
        return result

    def _audit(self, actor: Actor, action_type: AuditAction, details: str) -> None:
        def work():
            log_action(self.db, actor, action_type, "orders:bulk", details)

        run_in_transaction(self.db, work, label="bulk audit")

    # -- operations ----------------------------------------------------------

    def bulk_assign(self, order_filter: OrderFilter, driver_id: int, fee, actor: Actor) -> BulkResult:
        """Assign every pending, unassigned matching order to one driver."""
        ensure_permission(actor, Permission.manage_orders)
        value = validate_fee(fee, actor)
        self.machine.load_assignable_driver(driver_id)

        rows = order_filter.apply(
            self.db.query(Order.order_id).filter(
                Order.status == OrderStatus.pending,
                Order.driver_id.is_(None),
            )
        ).order_by(Order.order_id).all()
        self.db.rollback()

        def assign(order: Order) -> bool:
            # Re-checked under the order's own transaction, it may have moved since selection
            if not _is_assignable(order) or not order_filter.matches(order):
                return False
            apply_assignment(order, driver_id, value)
            return True

        result = self._run_each([r[0] for r in rows], assign, "bulk assign")
        self._audit(actor, AuditAction.update,
                    f"Bulk assign [{order_filter.describe()}] to driver {driver_id} with fee {value}: "
                    f"{result.affected_count} assigned, {result.skipped_count} skipped")
        logger.info(f"🚚 Bulk assign to driver {driver_id}: {result.to_dict()}")
        return result

    def bulk_change_status(self, order_filter: OrderFilter, target: OrderStatus, actor: Actor) -> BulkResult:
        ensure_permission(actor, Permission.manage_orders)
        if not isinstance(target, OrderStatus):
            try:
                target = OrderStatus(target)
            except ValueError:
                raise ValidationError(f"Unknown status '{target}'", status=str(target))

        def change(order: Order) -> bool:
            if not order_filter.matches(order):
                return False
            apply_transition(order, target)
            return True

        result = self._run_each(self._matching_ids(order_filter), change, "bulk status")
        self._audit(actor, AuditAction.update,
                    f"Bulk status [{order_filter.describe()}] -> {target.value}: "
                    f"{result.affected_count} changed, {result.skipped_count} skipped")
        logger.info(f"🔁 Bulk status change to {target.value}: {result.to_dict()}")
        return result

    def bulk_delete(self, order_filter: OrderFilter, actor: Actor) -> BulkResult:
        """Permanently remove matching orders.

        Not a transition: no status rules apply. Payments that settled a
        deleted order keep their amount; history stops showing the order.
        """
        ensure_permission(actor, Permission.delete_orders)
        reconciled_deleted = set()

        def delete(order: Order) -> bool:
            if not order_filter.matches(order):
                return False
            if order.reconciled:
                reconciled_deleted.add(order.order_id)
            self.db.delete(order)
            return True

        result = self._run_each(self._matching_ids(order_filter), delete, "bulk delete")
        if reconciled_deleted:
            logger.warning(
                f"⚠️ Bulk delete removed {len(reconciled_deleted)} reconciled order(s); "
                f"their payments keep the collected amount"
            )
        self._audit(actor, AuditAction.delete,
                    f"Bulk delete [{order_filter.describe()}]: {result.affected_count} deleted "
                    f"({len(reconciled_deleted)} reconciled), {result.skipped_count} skipped")
        logger.info(f"🗑️ Bulk delete: {result.to_dict()}")
        return result
