"""
services/ledger.py  –  Driver settlement ledger

Outstanding debt = delivered, unreconciled orders + unreconciled manual
dailies. The company share is the driver's commission on the orders plus
the pre-computed amount of each daily, never more than the fees collected.

    ledger = SettlementLedger(db)
    summary = ledger.compute_outstanding(driver_id)
    payment = ledger.settle(driver_id, actor)
    ledger.reverse_settlement(payment.payment_id, actor)
"""

from dataclasses import dataclass, field
from datetime import datetime, time
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Tuple
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from config import settings
from models.driver import Driver, CommissionType
from models.manual_daily import ManualDaily
from models.order import Order, OrderStatus, TERMINAL_STATUSES
from models.payment import Payment
from utils.audit import log_financial
from utils.exceptions import ActiveOrdersPresent, NotFound, NothingToSettle
from utils.locks import settlement_lock
from utils.permissions import Actor, Permission, Role, ensure_admin, ensure_permission
from utils.serializers import money, serialize_order
from utils.transactions import run_in_transaction

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_money(value) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


# ── Pure calculations ────────────────────────────────────────────────────────

def commission_on_orders(commission_type: CommissionType, rate, orders_count: int, total_fees: Decimal) -> Decimal:
    rate = Decimal(str(rate or 0))
    if commission_type == CommissionType.fixed:
        return orders_count * rate
    return total_fees * rate / Decimal(100)


def compute_breakdown(
    commission_type: CommissionType,
    rate,
    orders: Iterable[Order],
    dailies: Iterable[ManualDaily],
) -> Tuple[int, Decimal, Decimal]:
    """Return (orders_count, total_fees, company_share) for a set of ledger items.

    Cancelled orders never count, whatever their reconciled flag says.
    """
    orders = [o for o in orders if o.status != OrderStatus.cancelled]
    dailies = list(dailies)

    count = len(orders)
    total_fees = sum((Decimal(str(o.delivery_fee or 0)) for o in orders), ZERO)
    company_share = commission_on_orders(commission_type, rate, count, total_fees)

    # Dailies carry their own commission, the rate is not re-applied
    for d in dailies:
        count += int(d.orders_count or 0)
        total_fees += Decimal(str(d.total_delivery_fees or 0))
        company_share += Decimal(str(d.amount or 0))

    company_share = min(company_share, total_fees)
    return count, to_money(total_fees), to_money(company_share)


@dataclass
class LedgerSummary:
    driver_id: int
    orders: List[Order] = field(default_factory=list)
    manual_dailies: List[ManualDaily] = field(default_factory=list)
    orders_count: int = 0
    total_fees: Decimal = ZERO
    company_share: Decimal = ZERO
    driver_share: Decimal = ZERO
    opening_balance: Decimal = ZERO

    @property
    def order_ids(self) -> List[str]:
        return [o.order_id for o in self.orders]

    @property
    def manual_daily_ids(self) -> List[int]:
        return [d.manual_daily_id for d in self.manual_dailies]

    @property
    def is_empty(self) -> bool:
        return not self.orders and not self.manual_dailies

    def to_dict(self) -> dict:
        return {
            "driver_id": self.driver_id,
            "orders": [serialize_order(o) for o in self.orders],
            "manual_daily_ids": self.manual_daily_ids,
            "orders_count": self.orders_count,
            "total_fees": money(self.total_fees),
            "company_share": money(self.company_share),
            "driver_share": money(self.driver_share),
            "opening_balance": money(self.opening_balance),
        }


def summarize(driver: Driver, orders: List[Order], dailies: List[ManualDaily]) -> LedgerSummary:
    count, total_fees, company_share = compute_breakdown(
        driver.commission_type, driver.commission_rate, orders, dailies
    )
    opening = to_money(driver.wallet_opening_balance)
    return LedgerSummary(
        driver_id=driver.driver_id,
        orders=[o for o in orders if o.status != OrderStatus.cancelled],
        manual_dailies=list(dailies),
        orders_count=count,
        total_fees=total_fees,
        company_share=company_share,
        driver_share=to_money(total_fees - company_share + opening),
        opening_balance=opening,
    )


def settlement_timestamp(orders: Iterable[Order], now: datetime, cutoff_hour: int) -> datetime:
    """Early-morning settlements of the previous day's work are dated at the
    end of the last delivery day."""
    delivered = [o.delivered_at for o in orders if o.delivered_at]
    if not delivered or now.hour >= cutoff_hour:
        return now
    last = max(delivered)
    if last.date() < now.date():
        return datetime.combine(last.date(), time(23, 59, 59))
    return now


# ── Service ──────────────────────────────────────────────────────────────────

class SettlementLedger:
    def __init__(self, db: Session):
        self.db = db

    def get_driver(self, driver_id: int, for_update: bool = False) -> Driver:
        q = self.db.query(Driver).filter(Driver.driver_id == driver_id)
        if for_update:
            q = q.with_for_update()
        driver = q.first()
        if not driver:
            raise NotFound(f"Driver {driver_id} not found", driver_id=driver_id)
        return driver

    def outstanding_orders(self, driver_id: int) -> List[Order]:
        return (
            self.db.query(Order)
            .filter(
                Order.driver_id == driver_id,
                Order.status == OrderStatus.delivered,
                Order.reconciled.is_(False),
            )
            .order_by(Order.delivered_at, Order.order_id)
            .all()
        )

    def outstanding_dailies(self, driver_id: int) -> List[ManualDaily]:
        return (
            self.db.query(ManualDaily)
            .filter(ManualDaily.driver_id == driver_id, ManualDaily.reconciled.is_(False))
            .order_by(ManualDaily.day_date, ManualDaily.manual_daily_id)
            .all()
        )

    def count_active_orders(self, driver_id: int) -> int:
        return self.db.query(func.count(Order.order_id)).filter(
            Order.driver_id == driver_id,
            Order.status.notin_(list(TERMINAL_STATUSES)),
        ).scalar() or 0

    def compute_outstanding(self, driver_id: int) -> LedgerSummary:
        driver = self.get_driver(driver_id)
        return summarize(driver, self.outstanding_orders(driver_id), self.outstanding_dailies(driver_id))

    def outstanding_for(self, driver_id: int, actor: Actor) -> LedgerSummary:
        """compute_outstanding behind the wallet permission; drivers may read their own."""
        if not (actor.role == Role.driver and actor.user_id == driver_id):
            ensure_permission(actor, Permission.view_wallet)
        return self.compute_outstanding(driver_id)

    # -- settlement ----------------------------------------------------------

    def settle(self, driver_id: int, actor: Actor, now: Optional[datetime] = None) -> Payment:
        ensure_permission(actor, Permission.manage_advanced_financials)

        def work():
            driver = self.get_driver(driver_id, for_update=True)

            active = self.count_active_orders(driver_id)
            if active:
                raise ActiveOrdersPresent(
                    f"Driver {driver_id} has {active} active order(s). Complete or cancel them first.",
                    driver_id=driver_id,
                    active_orders=active,
                )

            summary = summarize(driver, self.outstanding_orders(driver_id), self.outstanding_dailies(driver_id))
            if summary.is_empty:
                raise NothingToSettle(driver_id=driver_id)

            payment = Payment(
                driver_id=driver_id,
                amount=summary.company_share,
                reconciled_order_ids=summary.order_ids,
                reconciled_manual_daily_ids=summary.manual_daily_ids,
                created_by=actor.user_id,
                created_at=settlement_timestamp(
                    summary.orders, now or datetime.utcnow(), settings.SETTLEMENT_BACKDATE_CUTOFF_HOUR
                ),
            )
            self.db.add(payment)

            for order in summary.orders:
                order.reconciled = True
            for daily in summary.manual_dailies:
                daily.reconciled = True

            # Version checks fire here, a concurrent settlement loses and retries
            self.db.flush()

            log_financial(
                self.db, actor, f"driver:{driver_id}",
                f"Settled {summary.orders_count} order(s) of driver {driver.full_name}: "
                f"collected {summary.company_share} of {summary.total_fees} "
                f"(payment {payment.payment_id})",
            )
            return payment

        with settlement_lock(driver_id):
            payment = run_in_transaction(self.db, work, label=f"settle driver {driver_id}")

        logger.info(
            f"💰 Driver {driver_id} settled: payment {payment.payment_id}, amount {payment.amount}, "
            f"{len(payment.reconciled_order_ids)} order(s), {len(payment.reconciled_manual_daily_ids)} daily entr(ies)"
        )
        return payment

    def reverse_settlement(self, payment_id: int, actor: Actor) -> None:
        ensure_admin(actor)

        found = self.db.query(Payment.driver_id).filter(Payment.payment_id == payment_id).first()
        self.db.rollback()
        if not found:
            raise NotFound(f"Payment {payment_id} not found", payment_id=payment_id)
        driver_id = found[0]

        def work():
            payment = (
                self.db.query(Payment)
                .filter(Payment.payment_id == payment_id)
                .with_for_update()
                .first()
            )
            if not payment:
                raise NotFound(f"Payment {payment_id} not found", payment_id=payment_id)

            order_ids = list(payment.reconciled_order_ids or [])
            daily_ids = list(payment.reconciled_manual_daily_ids or [])

            restored_orders = 0
            if order_ids:
                for order in self.db.query(Order).filter(Order.order_id.in_(order_ids)).all():
                    order.reconciled = False
                    restored_orders += 1
            if daily_ids:
                for daily in self.db.query(ManualDaily).filter(ManualDaily.manual_daily_id.in_(daily_ids)).all():
                    daily.reconciled = False

            self.db.delete(payment)
            log_financial(
                self.db, actor, f"payment:{payment_id}",
                f"Reversed settlement of driver {driver_id} (amount {payment.amount}); "
                f"{restored_orders} order(s) back to outstanding",
            )
            return restored_orders

        with settlement_lock(driver_id):
            restored = run_in_transaction(self.db, work, label=f"reverse payment {payment_id}")

        logger.info(f"↩️ Payment {payment_id} reversed, {restored} order(s) restored for driver {driver_id}")
