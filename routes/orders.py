from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional
from decimal import Decimal
from database import get_db
from models.order import OrderType, OrderStatus
from services.order_service import OrderService
from services.state_machine import OrderStateMachine, allowed_targets
from utils.dependencies import get_current_actor
from utils.permissions import Actor
from utils.responses import paginated_response
from utils.serializers import serialize_order
from config import settings
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["Orders"])


# Schemas
class CreateOrderRequest(BaseModel):
    order_type: OrderType = OrderType.standard
    merchant_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    delivery_address: Optional[str] = None
    notes: Optional[str] = None
    total_price: Optional[Decimal] = None


class UpdateOrderDetailsRequest(BaseModel):
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    delivery_address: Optional[str] = None
    notes: Optional[str] = None


class TransitionRequest(BaseModel):
    status: OrderStatus


class AssignDriverRequest(BaseModel):
    driver_id: int
    delivery_fee: Optional[Decimal] = None


def _order_payload(order) -> dict:
    data = serialize_order(order)
    data["allowed_transitions"] = sorted(s.value for s in allowed_targets(order.order_type, order.status))
    return data


# ============================================================================
# INTAKE & READS
# ============================================================================

@router.post("/", status_code=status.HTTP_201_CREATED)
def create_order(
    request: CreateOrderRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Create an order; ids are ORD-<n> for standard and S-<n> for shopping orders"""
    order = OrderService(db).create_order(
        request.order_type,
        actor,
        merchant_id=request.merchant_id,
        customer_name=request.customer_name,
        customer_phone=request.customer_phone,
        delivery_address=request.delivery_address,
        notes=request.notes,
        total_price=request.total_price,
    )
    return {
        "success": True,
        "message": "Order created successfully",
        "data": _order_payload(order)
    }


@router.get("/")
def list_orders(
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    order_type: Optional[OrderType] = Query(None),
    driver_id: Optional[int] = Query(None),
    merchant_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """List orders visible to the caller with pagination"""
    orders, total = OrderService(db).list_orders(
        actor=actor,
        status=status_filter,
        order_type=order_type,
        driver_id=driver_id,
        merchant_id=merchant_id,
        page=page,
        page_size=page_size,
    )
    return paginated_response(
        [serialize_order(o) for o in orders],
        page=page,
        page_size=page_size,
        total=total,
        message="Orders retrieved successfully",
    )


@router.get("/{order_id}")
def get_order(
    order_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    order = OrderService(db).get_order(order_id, actor)
    return {
        "success": True,
        "message": "Order retrieved successfully",
        "data": _order_payload(order)
    }


@router.patch("/{order_id}")
def update_order_details(
    order_id: str,
    request: UpdateOrderDetailsRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Edit customer details and notes (status and money go through their own endpoints)"""
    changes = request.model_dump(exclude_unset=True)
    order = OrderService(db).update_order_details(order_id, actor, **changes)
    return {
        "success": True,
        "message": "Order updated successfully",
        "data": _order_payload(order)
    }


@router.delete("/{order_id}")
def delete_order(
    order_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    OrderService(db).delete_order(order_id, actor)
    return {
        "success": True,
        "message": f"Order {order_id} deleted"
    }


# ============================================================================
# LIFECYCLE
# ============================================================================

@router.post("/{order_id}/transition")
def transition_order(
    order_id: str,
    request: TransitionRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Move an order to another status"""
    order = OrderStateMachine(db).transition(order_id, request.status, actor)
    return {
        "success": True,
        "message": f"Order moved to {order.status.value}",
        "data": _order_payload(order)
    }


@router.post("/{order_id}/assign")
def assign_driver(
    order_id: str,
    request: AssignDriverRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Assign (or transfer) a driver with a delivery fee"""
    order = OrderStateMachine(db).assign_driver(order_id, request.driver_id, request.delivery_fee, actor)
    return {
        "success": True,
        "message": f"Order assigned to driver {request.driver_id}",
        "data": _order_payload(order)
    }


@router.post("/{order_id}/unassign")
def unassign_driver(
    order_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    order = OrderStateMachine(db).unassign_driver(order_id, actor)
    return {
        "success": True,
        "message": "Driver removed from order",
        "data": _order_payload(order)
    }
