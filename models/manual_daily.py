"""
models/manual_daily.py  –  Lump-sum ledger entries entered by an administrator

Covers days whose deliveries were not tracked order by order.
Each record = one driver × one day, carrying its own commission amount.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Date, DECIMAL, Boolean, Text
from sqlalchemy.sql import func
from database import Base


class ManualDaily(Base):
    __tablename__ = "manual_dailies"

    manual_daily_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    driver_id = Column(Integer, ForeignKey("drivers.driver_id", ondelete="CASCADE"), nullable=False, index=True)
    day_date = Column(Date, nullable=False, index=True)

    orders_count = Column(Integer, nullable=False, default=0)
    total_delivery_fees = Column(DECIMAL(10, 2), nullable=False, default=0)
    amount = Column(DECIMAL(10, 2), nullable=False, default=0)   # commission owed, already computed
    note = Column(Text, nullable=True)

    reconciled = Column(Boolean, nullable=False, default=False, index=True)
    created_by = Column(Integer, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
