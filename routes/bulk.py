from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional
from decimal import Decimal
from database import get_db
from models.order import OrderStatus
from services.bulk import BulkOperationCoordinator, OrderFilter, ALL
from utils.dependencies import get_current_actor
from utils.permissions import Actor
import logging

logger = logging.getLogger(__name__)

# Registered before the /orders router so "/orders/bulk/..." is not read as an order id
router = APIRouter(prefix="/orders/bulk", tags=["Bulk Operations"])


# Schemas
class BulkFilter(BaseModel):
    status: str = ALL
    order_type: Optional[str] = None
    merchant_id: Optional[int] = None

    def to_filter(self) -> OrderFilter:
        return OrderFilter.parse(self.status, self.order_type, self.merchant_id)


class BulkAssignRequest(BulkFilter):
    status: str = OrderStatus.pending.value
    driver_id: int
    delivery_fee: Optional[Decimal] = None


class BulkStatusRequest(BulkFilter):
    target_status: OrderStatus


class BulkDeleteRequest(BulkFilter):
    pass


@router.post("/assign")
def bulk_assign(
    request: BulkAssignRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Assign every pending, unassigned order in the bucket to one driver"""
    result = BulkOperationCoordinator(db).bulk_assign(
        request.to_filter(), request.driver_id, request.delivery_fee, actor
    )
    return {
        "success": True,
        "message": f"{result.affected_count} order(s) assigned",
        "data": result.to_dict()
    }


@router.post("/status")
def bulk_change_status(
    request: BulkStatusRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Move every order in the bucket to one status; illegal moves are skipped"""
    result = BulkOperationCoordinator(db).bulk_change_status(
        request.to_filter(), request.target_status, actor
    )
    return {
        "success": True,
        "message": f"{result.affected_count} order(s) updated, {result.skipped_count} skipped",
        "data": result.to_dict()
    }


@router.post("/delete")
def bulk_delete(
    request: BulkDeleteRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Permanently delete every order in the bucket ("all" deletes everything)"""
    result = BulkOperationCoordinator(db).bulk_delete(request.to_filter(), actor)
    return {
        "success": True,
        "message": f"{result.affected_count} order(s) deleted",
        "data": result.to_dict()
    }
