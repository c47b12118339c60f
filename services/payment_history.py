"""
services/payment_history.py  –  Read-side view of past settlements

Nothing here is stored. Each Payment's ids are resolved against the current
orders and manual dailies every time history is read, so deleted or
cancelled orders drop out of the breakdown. Only the frozen ``amount``
comes from the payment row.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from models.manual_daily import ManualDaily
from models.order import Order, OrderStatus
from models.payment import Payment
from services.ledger import SettlementLedger, compute_breakdown, to_money
from utils.permissions import Actor, Permission, Role, ensure_permission
from utils.serializers import iso, money

logger = logging.getLogger(__name__)


@dataclass
class PaymentView:
    payment_id: int
    driver_id: int
    created_at: datetime
    amount: Decimal
    order_ids: List[str]
    manual_daily_ids: List[int]
    orders_count: int
    manual_daily_count: int
    total_fees: Decimal
    company_share: Decimal
    driver_share: Decimal

    def to_dict(self) -> dict:
        return {
            "payment_id": self.payment_id,
            "driver_id": self.driver_id,
            "created_at": iso(self.created_at),
            "amount": money(self.amount),
            "order_ids": self.order_ids,
            "manual_daily_ids": self.manual_daily_ids,
            "orders_count": self.orders_count,
            "manual_daily_count": self.manual_daily_count,
            "total_fees": money(self.total_fees),
            "company_share": money(self.company_share),
            "driver_share": money(self.driver_share),
        }


def resolve_payment(payment: Payment, orders_by_id: dict, dailies_by_id: dict, driver) -> Optional[PaymentView]:
    """Build the view of one payment, or None when nothing it settled still exists."""
    orders = [
        orders_by_id[oid]
        for oid in (payment.reconciled_order_ids or [])
        if oid in orders_by_id and orders_by_id[oid].status != OrderStatus.cancelled
    ]
    dailies = [
        dailies_by_id[did]
        for did in (payment.reconciled_manual_daily_ids or [])
        if did in dailies_by_id
    ]
    if not orders and not dailies:
        return None

    count, total_fees, company_share = compute_breakdown(
        driver.commission_type, driver.commission_rate, orders, dailies
    )
    return PaymentView(
        payment_id=payment.payment_id,
        driver_id=payment.driver_id,
        created_at=payment.created_at,
        amount=to_money(payment.amount),
        order_ids=[o.order_id for o in orders],
        manual_daily_ids=[d.manual_daily_id for d in dailies],
        orders_count=count,
        manual_daily_count=len(dailies),
        total_fees=total_fees,
        company_share=company_share,
        driver_share=to_money(total_fees - company_share),
    )


def payment_history(db: Session, driver_id: int) -> List[PaymentView]:
    """Settlements of a driver, newest first."""
    driver = SettlementLedger(db).get_driver(driver_id)

    payments = (
        db.query(Payment)
        .filter(Payment.driver_id == driver_id)
        .order_by(Payment.created_at.desc(), Payment.payment_id.desc())
        .all()
    )
    if not payments:
        return []

    order_ids = {oid for p in payments for oid in (p.reconciled_order_ids or [])}
    daily_ids = {did for p in payments for did in (p.reconciled_manual_daily_ids or [])}

    orders_by_id = {}
    if order_ids:
        orders_by_id = {o.order_id: o for o in db.query(Order).filter(Order.order_id.in_(order_ids)).all()}
    dailies_by_id = {}
    if daily_ids:
        dailies_by_id = {
            d.manual_daily_id: d
            for d in db.query(ManualDaily).filter(ManualDaily.manual_daily_id.in_(daily_ids)).all()
        }

    views = []
    for payment in payments:
        view = resolve_payment(payment, orders_by_id, dailies_by_id, driver)
        if view is None:
            logger.info(f"Payment {payment.payment_id} hidden from history, none of its items remain")
            continue
        views.append(view)
    return views


def payment_history_for(db: Session, driver_id: int, actor: Actor) -> List[PaymentView]:
    if not (actor.role == Role.driver and actor.user_id == driver_id):
        ensure_permission(actor, Permission.view_wallet)
    return payment_history(db, driver_id)
