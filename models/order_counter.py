from sqlalchemy import Column, Integer, String
from database import Base


class OrderCounter(Base):
    """Last sequence number handed out per order-id prefix (ORD-, S-)."""

    __tablename__ = "order_counters"

    prefix = Column(String(8), primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)
