"""
services/manual_daily_service.py  –  Administrator-entered daily ledger entries

A daily stands in for one driver-day whose orders were not tracked one by
one. When no amount is given, the commission is computed from the driver's
current commission settings. Reconciled dailies are history and cannot be
edited or deleted.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from models.audit_log import AuditAction
from models.manual_daily import ManualDaily
from services.ledger import SettlementLedger, commission_on_orders, to_money
from utils.audit import log_action, log_financial
from utils.exceptions import NotFound, ValidationError
from utils.permissions import Actor, Permission, ensure_permission
from utils.transactions import run_in_transaction

logger = logging.getLogger(__name__)


def _decimal(value, field_name: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number", field=field_name)
    if not result.is_finite() or result < 0:
        raise ValidationError(f"{field_name} must be a non-negative number", field=field_name)
    return to_money(result)


def _count(value) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise ValidationError("orders_count must be an integer", field="orders_count")
    if result < 0:
        raise ValidationError("orders_count cannot be negative", field="orders_count")
    return result


class ManualDailyService:
    def __init__(self, db: Session):
        self.db = db
        self.ledger = SettlementLedger(db)

    def get(self, manual_daily_id: int) -> ManualDaily:
        daily = self.db.query(ManualDaily).filter(ManualDaily.manual_daily_id == manual_daily_id).first()
        if not daily:
            raise NotFound(f"Manual daily {manual_daily_id} not found", manual_daily_id=manual_daily_id)
        return daily

    def list_for_driver(self, driver_id: int, include_reconciled: bool = True) -> List[ManualDaily]:
        self.ledger.get_driver(driver_id)
        q = self.db.query(ManualDaily).filter(ManualDaily.driver_id == driver_id)
        if not include_reconciled:
            q = q.filter(ManualDaily.reconciled.is_(False))
        return q.order_by(ManualDaily.day_date.desc(), ManualDaily.manual_daily_id.desc()).all()

    def create(
        self,
        driver_id: int,
        day_date: date,
        orders_count: int,
        total_delivery_fees,
        actor: Actor,
        amount=None,
        note: Optional[str] = None,
    ) -> ManualDaily:
        ensure_permission(actor, Permission.manage_advanced_financials)
        count = _count(orders_count)
        fees = _decimal(total_delivery_fees, "total_delivery_fees")
        given_amount = _decimal(amount, "amount") if amount is not None else None

        def work():
            driver = self.ledger.get_driver(driver_id)
            value = given_amount
            if value is None:
                value = to_money(commission_on_orders(driver.commission_type, driver.commission_rate, count, fees))

            daily = ManualDaily(
                driver_id=driver_id,
                day_date=day_date,
                orders_count=count,
                total_delivery_fees=fees,
                amount=value,
                note=note,
                created_by=actor.user_id,
            )
            self.db.add(daily)
            self.db.flush()
            log_financial(
                self.db, actor, f"manual_daily:{daily.manual_daily_id}",
                f"Daily for driver {driver_id} on {day_date}: {count} order(s), fees {fees}, commission {value}",
            )
            return daily

        daily = run_in_transaction(self.db, work, label=f"create daily for driver {driver_id}")
        logger.info(f"📒 Manual daily {daily.manual_daily_id} created for driver {driver_id}")
        return daily

    def update(self, manual_daily_id: int, actor: Actor, **changes) -> ManualDaily:
        ensure_permission(actor, Permission.manage_advanced_financials)

        def work():
            daily = self.get(manual_daily_id)
            if daily.reconciled:
                raise ValidationError(
                    "A reconciled daily is part of a settlement and cannot be edited",
                    manual_daily_id=manual_daily_id,
                )

            if changes.get("day_date") is not None:
                daily.day_date = changes["day_date"]
            if changes.get("orders_count") is not None:
                daily.orders_count = _count(changes["orders_count"])
            if changes.get("total_delivery_fees") is not None:
                daily.total_delivery_fees = _decimal(changes["total_delivery_fees"], "total_delivery_fees")
            if "note" in changes:
                daily.note = changes["note"]

            if changes.get("amount") is not None:
                daily.amount = _decimal(changes["amount"], "amount")
            elif "orders_count" in changes or "total_delivery_fees" in changes:
                driver = self.ledger.get_driver(daily.driver_id)
                daily.amount = to_money(commission_on_orders(
                    driver.commission_type, driver.commission_rate,
                    daily.orders_count, Decimal(str(daily.total_delivery_fees)),
                ))

            log_financial(self.db, actor, f"manual_daily:{manual_daily_id}",
                          f"Daily edited: {sorted(changes)}")
            return daily

        return run_in_transaction(self.db, work, label=f"update daily {manual_daily_id}")

    def delete(self, manual_daily_id: int, actor: Actor) -> None:
        ensure_permission(actor, Permission.manage_advanced_financials)

        def work():
            daily = self.get(manual_daily_id)
            if daily.reconciled:
                raise ValidationError(
                    "A reconciled daily is part of a settlement and cannot be deleted",
                    manual_daily_id=manual_daily_id,
                )
            driver_id = daily.driver_id
            self.db.delete(daily)
            log_action(self.db, actor, AuditAction.delete, f"manual_daily:{manual_daily_id}",
                       f"Daily of driver {driver_id} deleted")

        run_in_transaction(self.db, work, label=f"delete daily {manual_daily_id}")
        logger.info(f"🗑️ Manual daily {manual_daily_id} deleted")
