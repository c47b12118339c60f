from __future__ import annotations

import unittest
from decimal import Decimal
from unittest import mock

from tests.support import FINANCE, ORDER_MANAGER, DatabaseTestCase
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from database import SessionLocal
from models.order import Order, OrderStatus
from services.ledger import SettlementLedger
from services.state_machine import OrderStateMachine
from utils import locks
from utils.exceptions import ConflictRetryExhausted, NotFound, NothingToSettle, StoreUnavailable
from utils.transactions import is_lock_conflict, run_in_transaction


def _operational(message):
    return OperationalError("UPDATE orders SET ...", {}, Exception(message))


class RunInTransactionTestCase(unittest.TestCase):
    def setUp(self):
        self.db = mock.Mock()

    def test_commits_and_returns_result(self):
        self.assertEqual(run_in_transaction(self.db, lambda: 42), 42)
        self.db.commit.assert_called_once_with()

    def test_stale_data_is_retried(self):
        calls = []

        def work():
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("version mismatch")
            return "ok"

        self.assertEqual(run_in_transaction(self.db, work, retries=3), "ok")
        self.assertEqual(len(calls), 3)
        self.assertEqual(self.db.rollback.call_count, 2)

    def test_retries_are_bounded(self):
        work = mock.Mock(side_effect=StaleDataError("version mismatch"))
        with self.assertRaises(ConflictRetryExhausted) as ctx:
            run_in_transaction(self.db, work, retries=2)
        self.assertEqual(work.call_count, 3)
        self.assertEqual(ctx.exception.details["attempts"], 3)
        self.db.commit.assert_not_called()

    def test_lock_conflicts_are_retried(self):
        work = mock.Mock(side_effect=[_operational("database is locked"), "done"])
        self.assertEqual(run_in_transaction(self.db, work, retries=1), "done")

    def test_other_operational_errors_mean_store_unavailable(self):
        work = mock.Mock(side_effect=_operational("Can't connect to MySQL server"))
        with self.assertRaises(StoreUnavailable):
            run_in_transaction(self.db, work)
        work.assert_called_once_with()

    def test_domain_errors_are_not_retried(self):
        work = mock.Mock(side_effect=NotFound("gone"))
        with self.assertRaises(NotFound):
            run_in_transaction(self.db, work, retries=5)
        work.assert_called_once_with()
        self.db.rollback.assert_called_once_with()

    def test_lock_conflict_detection(self):
        self.assertTrue(is_lock_conflict(_operational("Deadlock found when trying to get lock")))
        self.assertTrue(is_lock_conflict(OperationalError("x", {}, Exception(1205, "Lock wait timeout exceeded"))))
        self.assertFalse(is_lock_conflict(_operational("no such table: orders")))


class OptimisticVersionTestCase(DatabaseTestCase):
    def test_concurrent_update_raises_stale_data(self):
        driver = self.make_driver()
        order = self.make_delivered(driver, "10")
        other = SessionLocal()
        try:
            mine = self.db.query(Order).filter(Order.order_id == order.order_id).one()
            theirs = other.query(Order).filter(Order.order_id == order.order_id).one()

            theirs.notes = "edited elsewhere"
            other.commit()

            mine.reconciled = True
            with self.assertRaises(StaleDataError):
                self.db.commit()
            self.db.rollback()
        finally:
            other.close()

    def test_reconciliation_bumps_version(self):
        driver = self.make_driver()
        order = self.make_delivered(driver, "10")
        before = self.order(order.order_id).version

        SettlementLedger(self.db).settle(driver.driver_id, FINANCE)

        self.assertEqual(self.order(order.order_id).version, before + 1)

    def test_settle_with_stale_session_state_settles_once(self):
        driver = self.make_driver()
        self.make_delivered(driver, "100")
        other = SessionLocal()
        try:
            # The other worker read the outstanding set before this one settled it
            self.assertEqual(len(SettlementLedger(other).outstanding_orders(driver.driver_id)), 1)
            SettlementLedger(self.db).settle(driver.driver_id, FINANCE)
            other.rollback()

            with self.assertRaises(NothingToSettle):
                SettlementLedger(other).settle(driver.driver_id, FINANCE)
        finally:
            other.close()


class SettlementLockTestCase(unittest.TestCase):
    def test_no_redis_means_no_op(self):
        with mock.patch.object(locks, "_get_redis", return_value=None):
            with locks.settlement_lock(3):
                pass

    def test_busy_lock_fails_fast(self):
        client = mock.Mock()
        client.lock.return_value.acquire.return_value = False
        with mock.patch.object(locks, "_get_redis", return_value=client):
            with self.assertRaises(ConflictRetryExhausted):
                with locks.settlement_lock(3):
                    self.fail("body must not run without the lock")
        client.lock.assert_called_once()
        self.assertEqual(client.lock.call_args[0][0], "settlement:driver:3")

    def test_lock_released_after_block(self):
        client = mock.Mock()
        client.lock.return_value.acquire.return_value = True
        with mock.patch.object(locks, "_get_redis", return_value=client):
            with locks.settlement_lock(3):
                pass
        client.lock.return_value.release.assert_called_once_with()


class OrderStatusAfterConflictTestCase(DatabaseTestCase):
    def test_stale_transition_is_retried_against_fresh_state(self):
        driver = self.make_driver()
        order = self.make_order(status=OrderStatus.in_transit, driver_id=driver.driver_id, fee="10")
        self.db.query(Order).filter(Order.order_id == order.order_id).one()

        other = SessionLocal()
        try:
            theirs = other.query(Order).filter(Order.order_id == order.order_id).one()
            theirs.delivery_fee = Decimal("12")
            other.commit()
        finally:
            other.close()

        OrderStateMachine(self.db).transition(order.order_id, OrderStatus.delivered, ORDER_MANAGER)
        stored = self.order(order.order_id)
        self.assertEqual(stored.status, OrderStatus.delivered)
        self.assertEqual(stored.delivery_fee, Decimal("12.00"))


if __name__ == "__main__":
    unittest.main()
