from __future__ import annotations

import unittest
from decimal import Decimal
from unittest import mock

from tests.support import (
    ADMIN, FINANCE, ORDER_DELETER, ORDER_MANAGER, DatabaseTestCase,
)
from sqlalchemy.exc import IntegrityError
from models.audit_log import AuditLog, AuditAction
from models.order import Order, OrderType, OrderStatus
from models.payment import Payment
from services import bulk as bulk_module
from services.bulk import BulkOperationCoordinator, OrderFilter
from services.ledger import SettlementLedger
from services.payment_history import payment_history
from utils.exceptions import PermissionDenied, StoreUnavailable, ValidationError

S = OrderStatus


class OrderFilterTestCase(unittest.TestCase):
    def test_all_bucket(self):
        f = OrderFilter.parse("all")
        self.assertIsNone(f.status)
        self.assertEqual(f.describe(), "status=all")

    def test_status_and_type(self):
        f = OrderFilter.parse("pending", "shopping", 9)
        self.assertEqual((f.status, f.order_type, f.merchant_id), (S.pending, OrderType.shopping, 9))

    def test_unknown_bucket(self):
        with self.assertRaises(ValidationError):
            OrderFilter.parse("lost")
        with self.assertRaises(ValidationError):
            OrderFilter.parse("all", "groceries")


class BulkAssignTestCase(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.bulk = BulkOperationCoordinator(self.db)
        self.driver = self.make_driver()

    def test_zero_fee_rejected_for_non_admin(self):
        orders = [self.make_order() for _ in range(5)]

        with self.assertRaises(PermissionDenied):
            self.bulk.bulk_assign(OrderFilter.parse("pending"), self.driver.driver_id, 0, ORDER_MANAGER)

        for o in orders:
            stored = self.order(o.order_id)
            self.assertEqual(stored.status, S.pending)
            self.assertIsNone(stored.driver_id)

    def test_fee_rounding_to_zero_rejected_for_non_admin(self):
        orders = [self.make_order() for _ in range(5)]

        for fee in ("0.001", "0.004"):
            with self.assertRaises(PermissionDenied):
                self.bulk.bulk_assign(OrderFilter.parse("pending"), self.driver.driver_id, fee, ORDER_MANAGER)

        for o in orders:
            stored = self.order(o.order_id)
            self.assertEqual(stored.status, S.pending)
            self.assertIsNone(stored.driver_id)

    def test_zero_fee_allowed_for_admin(self):
        self.make_order()
        result = self.bulk.bulk_assign(OrderFilter.parse("pending"), self.driver.driver_id, 0, ADMIN)
        self.assertEqual(result.affected_count, 1)

    def test_assigns_only_pending_unassigned_orders(self):
        pending = [self.make_order() for _ in range(3)]
        other = self.make_driver(name="Other")
        busy = self.make_order(status=S.in_transit, driver_id=other.driver_id, fee="10")
        cancelled = self.make_order(status=S.cancelled)

        result = self.bulk.bulk_assign(OrderFilter.parse("all"), self.driver.driver_id, "15", ORDER_MANAGER)

        self.assertEqual(result.to_dict(), {"affected_count": 3, "skipped_count": 0})
        for o in pending:
            stored = self.order(o.order_id)
            self.assertEqual(stored.status, S.in_transit)
            self.assertEqual(stored.driver_id, self.driver.driver_id)
            self.assertEqual(stored.delivery_fee, Decimal("15.00"))
        self.assertEqual(self.order(busy.order_id).driver_id, other.driver_id)
        self.assertEqual(self.order(cancelled.order_id).status, S.cancelled)

    def test_filter_by_type(self):
        standard = self.make_order()
        shopping = self.make_order(order_type=OrderType.shopping)

        result = self.bulk.bulk_assign(OrderFilter.parse("pending", "shopping"), self.driver.driver_id, "5", ADMIN)

        self.assertEqual(result.affected_count, 1)
        self.assertEqual(self.order(shopping.order_id).status, S.in_transit)
        self.assertEqual(self.order(standard.order_id).status, S.pending)

    def test_requires_manage_orders(self):
        self.make_order()
        with self.assertRaises(PermissionDenied):
            self.bulk.bulk_assign(OrderFilter.parse("pending"), self.driver.driver_id, "5", FINANCE)

    def test_one_audit_row_per_call(self):
        for _ in range(4):
            self.make_order()
        self.bulk.bulk_assign(OrderFilter.parse("pending"), self.driver.driver_id, "5", ADMIN)

        entries = self.db.query(AuditLog).all()
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].target, "orders:bulk")
        self.assertIn("4 assigned", entries[0].details)


class BulkStatusTestCase(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.bulk = BulkOperationCoordinator(self.db)
        self.driver = self.make_driver()
        self.pending = [self.make_order(), self.make_order()]
        self.moving = self.make_order(status=S.in_transit, driver_id=self.driver.driver_id, fee="10")
        self.done = self.make_delivered(self.driver, "10")

    def test_illegal_transitions_are_skipped(self):
        result = self.bulk.bulk_change_status(OrderFilter.parse("all"), S.cancelled, ORDER_MANAGER)

        self.assertEqual(result.to_dict(), {"affected_count": 3, "skipped_count": 1})
        self.assertEqual(self.order(self.done.order_id).status, S.delivered)
        for o in self.pending + [self.moving]:
            self.assertEqual(self.order(o.order_id).status, S.cancelled)

    def test_pending_never_jumps_to_delivered(self):
        result = self.bulk.bulk_change_status(OrderFilter.parse("all"), S.delivered, ORDER_MANAGER)

        self.assertEqual(result.to_dict(), {"affected_count": 1, "skipped_count": 3})
        for o in self.pending:
            self.assertEqual(self.order(o.order_id).status, S.pending)
        stored = self.order(self.moving.order_id)
        self.assertEqual(stored.status, S.delivered)
        self.assertIsNotNone(stored.delivered_at)

    def test_back_to_pending_clears_driver(self):
        result = self.bulk.bulk_change_status(OrderFilter.parse("in_transit"), S.pending, ORDER_MANAGER)

        self.assertEqual(result.affected_count, 1)
        stored = self.order(self.moving.order_id)
        self.assertEqual(stored.status, S.pending)
        self.assertIsNone(stored.driver_id)
        self.assertIsNone(stored.delivery_fee)

    def test_failure_on_one_order_keeps_the_others(self):
        real_apply = bulk_module.apply_transition
        unlucky = self.pending[0].order_id

        def flaky(order, target, now=None):
            if order.order_id == unlucky:
                raise StoreUnavailable()
            return real_apply(order, target, now)

        with mock.patch.object(bulk_module, "apply_transition", side_effect=flaky):
            result = self.bulk.bulk_change_status(OrderFilter.parse("pending"), S.cancelled, ADMIN)

        self.assertEqual(result.to_dict(), {"affected_count": 1, "skipped_count": 1})
        self.assertEqual(self.order(unlucky).status, S.pending)
        self.assertEqual(self.order(self.pending[1].order_id).status, S.cancelled)

    def test_store_error_on_one_order_keeps_the_others(self):
        real_apply = bulk_module.apply_transition
        unlucky = self.pending[0].order_id

        def failing(order, target, now=None):
            if order.order_id == unlucky:
                raise IntegrityError("UPDATE orders SET ...", {}, Exception("constraint failed"))
            return real_apply(order, target, now)

        with mock.patch.object(bulk_module, "apply_transition", side_effect=failing):
            result = self.bulk.bulk_change_status(OrderFilter.parse("pending"), S.cancelled, ADMIN)

        self.assertEqual(result.to_dict(), {"affected_count": 1, "skipped_count": 1})
        self.assertEqual(self.order(unlucky).status, S.pending)
        self.assertEqual(self.order(self.pending[1].order_id).status, S.cancelled)
        entry = self.db.query(AuditLog).filter(AuditLog.target == "orders:bulk").one()
        self.assertIn("1 skipped", entry.details)

    def test_unknown_target(self):
        with self.assertRaises(ValidationError):
            self.bulk.bulk_change_status(OrderFilter.parse("all"), "lost", ADMIN)


class BulkDeleteTestCase(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.bulk = BulkOperationCoordinator(self.db)
        self.driver = self.make_driver()

    def test_delete_by_bucket(self):
        keep = self.make_order()
        self.make_order(status=S.cancelled)
        self.make_order(status=S.cancelled)

        result = self.bulk.bulk_delete(OrderFilter.parse("cancelled"), ORDER_DELETER)

        self.assertEqual(result.affected_count, 2)
        self.assertEqual([o.order_id for o in self.db.query(Order).all()], [keep.order_id])

    def test_delete_all(self):
        self.make_order()
        self.make_order(status=S.in_transit, driver_id=self.driver.driver_id, fee="3")
        self.make_delivered(self.driver, "8")

        result = self.bulk.bulk_delete(OrderFilter.parse("all"), ADMIN)

        self.assertEqual(result.affected_count, 3)
        self.assertEqual(self.db.query(Order).count(), 0)

    def test_requires_delete_permission(self):
        self.make_order()
        with self.assertRaises(PermissionDenied):
            self.bulk.bulk_delete(OrderFilter.parse("all"), ORDER_MANAGER)
        self.assertEqual(self.db.query(Order).count(), 1)

    def test_deleting_reconciled_orders_keeps_payment_amount(self):
        self.make_delivered(self.driver, "100")
        self.make_delivered(self.driver, "60")
        payment = SettlementLedger(self.db).settle(self.driver.driver_id, FINANCE)

        self.bulk.bulk_delete(OrderFilter.parse("delivered"), ADMIN)

        self.db.expire_all()
        stored = self.db.get(Payment, payment.payment_id)
        self.assertEqual(stored.amount, Decimal("40.00"))
        self.assertEqual(payment_history(self.db, self.driver.driver_id), [])

        entry = self.db.query(AuditLog).filter(AuditLog.action_type == AuditAction.delete).one()
        self.assertIn("2 deleted (2 reconciled)", entry.details)


if __name__ == "__main__":
    unittest.main()
