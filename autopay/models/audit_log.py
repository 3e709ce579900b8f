"""Audit log model."""
from sqlalchemy import Column, String, JSON, Enum as SQLEnum

from autopay.db.base import Base
from .base import TimestampMixin, new_id
from .enums import AuditAction


class AuditLog(Base, TimestampMixin):
    """Audit trail of admin actions, provider failures and invariant alerts."""

    __tablename__ = 'audit_logs'

    id = Column(String(32), primary_key=True, default=new_id)
    actor = Column(String(128), nullable=True, index=True)  # user id, 'admin', 'system'

    action = Column(SQLEnum(AuditAction, name="auditaction"), nullable=False, index=True)
    target_type = Column(String(50), nullable=False, index=True)  # 'mandate', 'user', 'device'
    target_id = Column(String(255), nullable=True, index=True)

    details = Column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f'<AuditLog(action={self.action}, target_type={self.target_type}, target_id={self.target_id})>'
