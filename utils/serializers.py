from decimal import Decimal
from typing import Optional

from models.driver import Driver
from models.manual_daily import ManualDaily
from models.order import Order
from models.payment import Payment


# Helper to safely extract enum value for JSON serialization
def enum_val(v):
    """Return .value if it's an enum, otherwise the value itself (or None)."""
    if v is None:
        return None
    return v.value if hasattr(v, "value") else v


def money(v) -> Optional[float]:
    if v is None:
        return None
    return float(Decimal(str(v)))


def iso(v) -> Optional[str]:
    return v.isoformat() if v else None


def serialize_order(o: Order) -> dict:
    return {
        "order_id": o.order_id,
        "order_type": enum_val(o.order_type),
        "status": enum_val(o.status),
        "merchant_id": o.merchant_id,
        "driver_id": o.driver_id,
        "delivery_fee": money(o.delivery_fee),
        "reconciled": bool(o.reconciled),
        "customer_name": o.customer_name,
        "customer_phone": o.customer_phone,
        "delivery_address": o.delivery_address,
        "notes": o.notes,
        "total_price": money(o.total_price),
        "created_at": iso(o.created_at),
        "delivered_at": iso(o.delivered_at),
    }


def serialize_driver(d: Driver) -> dict:
    return {
        "driver_id": d.driver_id,
        "full_name": d.full_name,
        "phone_number": d.phone_number,
        "commission_type": enum_val(d.commission_type),
        "commission_rate": money(d.commission_rate),
        "wallet_opening_balance": money(d.wallet_opening_balance),
        "is_active": bool(d.is_active),
        "created_at": iso(d.created_at),
    }


def serialize_manual_daily(m: ManualDaily) -> dict:
    return {
        "manual_daily_id": m.manual_daily_id,
        "driver_id": m.driver_id,
        "day_date": iso(m.day_date),
        "orders_count": m.orders_count,
        "total_delivery_fees": money(m.total_delivery_fees),
        "amount": money(m.amount),
        "note": m.note,
        "reconciled": bool(m.reconciled),
        "created_at": iso(m.created_at),
    }


def serialize_payment(p: Payment) -> dict:
    return {
        "payment_id": p.payment_id,
        "driver_id": p.driver_id,
        "amount": money(p.amount),
        "reconciled_order_ids": list(p.reconciled_order_ids or []),
        "reconciled_manual_daily_ids": list(p.reconciled_manual_daily_ids or []),
        "created_at": iso(p.created_at),
    }
