"""Deferred provider-side repair."""
from sqlalchemy import Column, String, Integer, Text, Enum as SQLEnum

from autopay.db.base import Base
from .base import TimestampMixin, new_id
from .enums import ReconciliationStatus


class ReconciliationTask(Base, TimestampMixin):
    """A provider call that failed after the local transition already happened."""

    __tablename__ = 'reconciliation_tasks'

    id = Column(String(32), primary_key=True, default=new_id)
    kind = Column(String(50), nullable=False, index=True)  # 'cancel_subscription'
    mandate_id = Column(String(128), nullable=False, index=True)
    provider_reference = Column(String(255), nullable=False)
    status = Column(
        SQLEnum(ReconciliationStatus, name="reconciliationstatus"),
        default=ReconciliationStatus.pending,
        nullable=False,
        index=True,
    )
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return f'<ReconciliationTask(kind={self.kind}, mandate_id={self.mandate_id}, status={self.status})>'
