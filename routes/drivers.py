from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import Optional
from decimal import Decimal
from database import get_db
from models.audit_log import AuditAction
from models.driver import Driver, CommissionType
from utils.audit import log_action, log_financial
from utils.dependencies import get_current_actor
from utils.exceptions import NotFound, PermissionDenied, ValidationError
from utils.permissions import Actor, Permission, Role, ensure_permission
from utils.serializers import serialize_driver
from utils.transactions import run_in_transaction
from config import settings
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/drivers", tags=["Drivers"])

READ_PERMISSIONS = (Permission.view_orders, Permission.manage_orders, Permission.view_wallet)


# Schemas
class CreateDriverRequest(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=255)
    phone_number: Optional[str] = None
    commission_type: Optional[CommissionType] = None
    commission_rate: Optional[Decimal] = Field(None, ge=0)
    wallet_opening_balance: Decimal = Decimal("0")


class UpdateDriverRequest(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=255)
    phone_number: Optional[str] = None
    commission_type: Optional[CommissionType] = None
    commission_rate: Optional[Decimal] = Field(None, ge=0)
    wallet_opening_balance: Optional[Decimal] = None
    is_active: Optional[bool] = None


def _ensure_can_read(actor: Actor, driver_id: Optional[int] = None):
    if actor.role == Role.driver and driver_id is not None and actor.user_id == driver_id:
        return
    if not any(actor.has(p) for p in READ_PERMISSIONS):
        raise PermissionDenied("Not allowed to view drivers")


def _check_rate(commission_type: CommissionType, rate: Decimal):
    if commission_type == CommissionType.percentage and rate > 100:
        raise ValidationError("A percentage commission cannot exceed 100", commission_rate=str(rate))


def _get_driver(db: Session, driver_id: int) -> Driver:
    driver = db.query(Driver).filter(Driver.driver_id == driver_id).first()
    if not driver:
        raise NotFound(f"Driver {driver_id} not found", driver_id=driver_id)
    return driver


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_driver(
    request: CreateDriverRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Register a driver; commission defaults to the configured percentage"""
    ensure_permission(actor, Permission.manage_advanced_financials)

    commission_type = request.commission_type or CommissionType(settings.DEFAULT_COMMISSION_TYPE)
    rate = request.commission_rate
    if rate is None:
        rate = Decimal(str(settings.DEFAULT_COMMISSION_RATE))
    _check_rate(commission_type, rate)

    def work():
        driver = Driver(
            full_name=request.full_name,
            phone_number=request.phone_number,
            commission_type=commission_type,
            commission_rate=rate,
            wallet_opening_balance=request.wallet_opening_balance,
            is_active=True,
        )
        db.add(driver)
        db.flush()
        log_action(db, actor, AuditAction.create, f"driver:{driver.driver_id}",
                   f"Driver {driver.full_name} created ({commission_type.value} {rate})")
        return driver

    driver = run_in_transaction(db, work, label="create driver")
    logger.info(f"✅ Driver {driver.driver_id} created")

    return {
        "success": True,
        "message": "Driver created successfully",
        "data": serialize_driver(driver)
    }


@router.get("/")
def list_drivers(
    active_only: bool = Query(False),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    _ensure_can_read(actor)

    query = db.query(Driver)
    if active_only:
        query = query.filter(Driver.is_active.is_(True))
    drivers = query.order_by(Driver.full_name).all()

    return {
        "success": True,
        "message": "Drivers retrieved successfully",
        "data": [serialize_driver(d) for d in drivers]
    }


@router.get("/{driver_id}")
def get_driver(
    driver_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    _ensure_can_read(actor, driver_id)
    return {
        "success": True,
        "message": "Driver retrieved successfully",
        "data": serialize_driver(_get_driver(db, driver_id))
    }


@router.patch("/{driver_id}")
def update_driver(
    driver_id: int,
    request: UpdateDriverRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Update profile, commission settings, opening balance or active flag.

    Commission changes apply to everything still outstanding; payment
    history is recomputed with the current settings as well.
    """
    ensure_permission(actor, Permission.manage_advanced_financials)
    changes = request.model_dump(exclude_unset=True)

    def work():
        driver = _get_driver(db, driver_id)
        for field, value in changes.items():
            if value is None and field in ("full_name", "commission_type", "commission_rate",
                                           "wallet_opening_balance", "is_active"):
                raise ValidationError(f"{field} cannot be empty", field=field)
            setattr(driver, field, value)
        _check_rate(driver.commission_type, Decimal(str(driver.commission_rate)))

        financial = {"commission_type", "commission_rate", "wallet_opening_balance"} & set(changes)
        if financial:
            log_financial(db, actor, f"driver:{driver_id}", f"Wallet settings changed: {sorted(financial)}")
        else:
            log_action(db, actor, AuditAction.update, f"driver:{driver_id}", f"Profile changed: {sorted(changes)}")
        return driver

    driver = run_in_transaction(db, work, label=f"update driver {driver_id}")

    return {
        "success": True,
        "message": "Driver updated successfully",
        "data": serialize_driver(driver)
    }
