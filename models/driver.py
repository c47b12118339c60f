from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, DECIMAL
from sqlalchemy.sql import func
from database import Base
import enum


class CommissionType(str, enum.Enum):
    percentage = "percentage"   # commission_rate is 0-100 % of collected fees
    fixed = "fixed"             # commission_rate is an amount per delivered order


class Driver(Base):
    __tablename__ = "drivers"

    driver_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    full_name = Column(String(255), nullable=False)
    phone_number = Column(String(20), nullable=True)
    commission_type = Column(Enum(CommissionType), nullable=False, default=CommissionType.percentage)
    commission_rate = Column(DECIMAL(10, 2), nullable=False, default=0)
    # One-off carry-over added to the driver's net share, may be negative
    wallet_opening_balance = Column(DECIMAL(10, 2), nullable=False, default=0)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
