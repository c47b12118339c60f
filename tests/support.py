"""Shared setup for the test modules.

Points the application at a throwaway SQLite file before config/database
are imported, so import this module before anything from the app.
"""

from __future__ import annotations

import os
import tempfile
import unittest
from datetime import datetime
from decimal import Decimal

_TMP_DIR = tempfile.mkdtemp(prefix="dispatch-ledger-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'dispatch_test.db')}"
os.environ["REDIS_URL"] = ""
os.environ["SECRET_KEY"] = "dispatch-ledger-test-secret"

import models  # noqa: E402,F401  registers every table
from database import Base, SessionLocal, engine  # noqa: E402
from models.driver import Driver, CommissionType  # noqa: E402
from models.manual_daily import ManualDaily  # noqa: E402
from models.order import Order, OrderType, OrderStatus  # noqa: E402
from utils.permissions import Actor  # noqa: E402

ADMIN = Actor.build(1, "admin")
ORDER_MANAGER = Actor.build(2, "supervisor", ["view_orders", "manage_orders"])
ORDER_DELETER = Actor.build(3, "supervisor", ["view_orders", "delete_orders"])
FINANCE = Actor.build(4, "supervisor", ["view_wallet", "manage_advanced_financials"])
MERCHANT = Actor.build(50, "merchant")
CUSTOMER = Actor.build(60, "customer")


def driver_actor(driver_id: int) -> Actor:
    return Actor.build(driver_id, "driver")


class DatabaseTestCase(unittest.TestCase):
    """Fresh tables and a fresh session for every test."""

    def setUp(self):
        Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)
        self.db = SessionLocal()
        self._seq = 0

    def tearDown(self):
        self.db.close()

    # -- fixtures ------------------------------------------------------------

    def make_driver(self, commission_type=CommissionType.percentage, rate="25",
                    opening_balance="0", active=True, name="Driver") -> Driver:
        driver = Driver(
            full_name=name,
            commission_type=commission_type,
            commission_rate=Decimal(rate),
            wallet_opening_balance=Decimal(opening_balance),
            is_active=active,
        )
        self.db.add(driver)
        self.db.commit()
        return driver

    def make_order(self, status=OrderStatus.pending, order_type=OrderType.standard, driver_id=None,
                   fee=None, reconciled=False, delivered_at=None, merchant_id=None) -> Order:
        """Insert an order directly in the given state, bypassing intake."""
        self._seq += 1
        prefix = "S-T" if order_type == OrderType.shopping else "ORD-T"
        if status == OrderStatus.delivered and delivered_at is None:
            delivered_at = datetime.utcnow()
        order = Order(
            order_id=f"{prefix}{self._seq}",
            order_type=order_type,
            status=status,
            driver_id=driver_id,
            delivery_fee=Decimal(str(fee)) if fee is not None else None,
            reconciled=reconciled,
            delivered_at=delivered_at,
            merchant_id=merchant_id,
        )
        self.db.add(order)
        self.db.commit()
        return order

    def make_delivered(self, driver: Driver, fee, **kwargs) -> Order:
        return self.make_order(status=OrderStatus.delivered, driver_id=driver.driver_id, fee=fee, **kwargs)

    def make_daily(self, driver: Driver, orders_count=0, fees="0", amount="0", day=None,
                   reconciled=False) -> ManualDaily:
        daily = ManualDaily(
            driver_id=driver.driver_id,
            day_date=day or datetime.utcnow().date(),
            orders_count=orders_count,
            total_delivery_fees=Decimal(fees),
            amount=Decimal(amount),
            reconciled=reconciled,
        )
        self.db.add(daily)
        self.db.commit()
        return daily

    def order(self, order_id: str) -> Order:
        self.db.expire_all()
        return self.db.query(Order).filter(Order.order_id == order_id).first()
