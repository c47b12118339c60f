from sqlalchemy import Column, Integer, ForeignKey, DateTime, DECIMAL, JSON, event
from sqlalchemy.sql import func
from database import Base
from utils.exceptions import ValidationError


class Payment(Base):
    """A closed settlement.

    Only ``amount`` (what was actually collected) is authoritative. Counts and
    shares are derived on read from the ids below against the current store.
    """

    __tablename__ = "payments"

    payment_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    driver_id = Column(Integer, ForeignKey("drivers.driver_id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(DECIMAL(10, 2), nullable=False)

    reconciled_order_ids = Column(JSON, nullable=False, default=list)
    reconciled_manual_daily_ids = Column(JSON, nullable=False, default=list)

    created_by = Column(Integer, nullable=True)
    # Settlement date, may be back-dated to the last delivery day
    created_at = Column(DateTime, nullable=False, index=True)
    recorded_at = Column(DateTime, server_default=func.now())


@event.listens_for(Payment, "before_update")
def _payments_are_immutable(mapper, connection, target):
    raise ValidationError("Payments cannot be modified, reverse the settlement instead",
                          payment_id=target.payment_id)
