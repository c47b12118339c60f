from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import Optional
from datetime import date
from decimal import Decimal
from database import get_db
from services.ledger import SettlementLedger
from services.manual_daily_service import ManualDailyService
from services.payment_history import payment_history_for
from utils.dependencies import get_current_actor
from utils.permissions import Actor, Permission, Role, ensure_permission
from utils.serializers import serialize_payment, serialize_manual_daily
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wallet", tags=["Wallet"])


# Schemas
class CreateManualDailyRequest(BaseModel):
    driver_id: int
    day_date: date
    orders_count: int = Field(0, ge=0)
    total_delivery_fees: Decimal = Field(Decimal("0"), ge=0)
    amount: Optional[Decimal] = Field(None, ge=0)  # computed from the driver's commission when omitted
    note: Optional[str] = None


class UpdateManualDailyRequest(BaseModel):
    day_date: Optional[date] = None
    orders_count: Optional[int] = Field(None, ge=0)
    total_delivery_fees: Optional[Decimal] = Field(None, ge=0)
    amount: Optional[Decimal] = Field(None, ge=0)
    note: Optional[str] = None


# ============================================================================
# OUTSTANDING & SETTLEMENT
# ============================================================================

@router.get("/drivers/{driver_id}/outstanding")
def get_outstanding(
    driver_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """What the driver currently owes: unreconciled delivered orders plus dailies"""
    summary = SettlementLedger(db).outstanding_for(driver_id, actor)
    return {
        "success": True,
        "message": "Outstanding balance retrieved successfully",
        "data": summary.to_dict()
    }


@router.post("/drivers/{driver_id}/settle", status_code=status.HTTP_201_CREATED)
def settle_driver(
    driver_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Close the driver's outstanding balance into one payment"""
    payment = SettlementLedger(db).settle(driver_id, actor)
    return {
        "success": True,
        "message": "Driver settled successfully",
        "data": serialize_payment(payment)
    }


@router.get("/drivers/{driver_id}/payments")
def get_payment_history(
    driver_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Past settlements, newest first, recomputed from the orders that still exist"""
    views = payment_history_for(db, driver_id, actor)
    return {
        "success": True,
        "message": "Payment history retrieved successfully",
        "data": [v.to_dict() for v in views]
    }


@router.delete("/payments/{payment_id}")
def reverse_settlement(
    payment_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Admin only: delete the payment and put its orders back into the outstanding balance"""
    SettlementLedger(db).reverse_settlement(payment_id, actor)
    return {
        "success": True,
        "message": f"Payment {payment_id} reversed"
    }


# ============================================================================
# MANUAL DAILIES
# ============================================================================

@router.get("/drivers/{driver_id}/manual-dailies")
def list_manual_dailies(
    driver_id: int,
    include_reconciled: bool = Query(True),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    if not (actor.role == Role.driver and actor.user_id == driver_id):
        ensure_permission(actor, Permission.view_wallet)
    dailies = ManualDailyService(db).list_for_driver(driver_id, include_reconciled=include_reconciled)
    return {
        "success": True,
        "message": "Manual dailies retrieved successfully",
        "data": [serialize_manual_daily(d) for d in dailies]
    }


@router.post("/manual-dailies", status_code=status.HTTP_201_CREATED)
def create_manual_daily(
    request: CreateManualDailyRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    daily = ManualDailyService(db).create(
        request.driver_id,
        request.day_date,
        request.orders_count,
        request.total_delivery_fees,
        actor,
        amount=request.amount,
        note=request.note,
    )
    return {
        "success": True,
        "message": "Manual daily created successfully",
        "data": serialize_manual_daily(daily)
    }


@router.patch("/manual-dailies/{manual_daily_id}")
def update_manual_daily(
    manual_daily_id: int,
    request: UpdateManualDailyRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    daily = ManualDailyService(db).update(manual_daily_id, actor, **request.model_dump(exclude_unset=True))
    return {
        "success": True,
        "message": "Manual daily updated successfully",
        "data": serialize_manual_daily(daily)
    }


@router.delete("/manual-dailies/{manual_daily_id}")
def delete_manual_daily(
    manual_daily_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    ManualDailyService(db).delete(manual_daily_id, actor)
    return {
        "success": True,
        "message": f"Manual daily {manual_daily_id} deleted"
    }
