from sqlalchemy import Column, Integer, String, Text, DateTime, Enum
from sqlalchemy.sql import func
from database import Base
import enum


class AuditAction(str, enum.Enum):
    create = "create"
    update = "update"
    delete = "delete"
    financial = "financial"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    log_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    actor_id = Column(Integer, nullable=True, index=True)
    actor_role = Column(String(32), nullable=True)
    action_type = Column(Enum(AuditAction), nullable=False, index=True)
    target = Column(String(255), nullable=False)
    details = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), index=True)
