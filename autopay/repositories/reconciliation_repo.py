"""Reconciliation task repository."""
from typing import List

from sqlalchemy.orm import Session

from autopay.models.enums import ReconciliationStatus
from autopay.models.reconciliation_task import ReconciliationTask
from .base import BaseRepository


class ReconciliationTaskRepository(BaseRepository[ReconciliationTask]):

    def __init__(self, db: Session):
        super().__init__(ReconciliationTask, db)

    def list_pending(self, limit: int = 100) -> List[ReconciliationTask]:
        return (
            self.db.query(ReconciliationTask)
            .filter(ReconciliationTask.status == ReconciliationStatus.pending)
            .order_by(ReconciliationTask.created_at.asc())
            .limit(limit)
            .all()
        )
