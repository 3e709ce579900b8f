"""
Audit Logging Service
=====================

Persists admin actions, provider failures and invariant alerts.

Entries are staged on the caller's session so they commit (or roll back)
with the transition that produced them. Without a session each entry is
written in its own short transaction. Database failures fall back to the
application logger.
"""

import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from autopay.db.base import SessionLocal
from autopay.models.audit_log import AuditLog
from autopay.models.enums import AuditAction

logger = logging.getLogger(__name__)


class AuditLogService:
    """Service for managing audit logs with database persistence."""

    def __init__(self, db: Optional[Session] = None):
        """
        Initialize audit log service.

        Args:
            db: Optional database session. If not provided, creates new sessions.
        """
        self.db = db
        self._external_session = db is not None

    @contextmanager
    def _get_session(self):
        """Context manager for database session handling."""
        if self._external_session and self.db:
            yield self.db
        else:
            db = SessionLocal()
            try:
                yield db
                db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def record(
        self,
        actor: Optional[str],
        action: Union[str, AuditAction],
        target_type: str,
        target_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        """
        Record an audit log entry.

        Args:
            actor: Who performed the action ('admin', 'system' or a user id)
            action: Action performed
            target_type: Type of record affected (mandate, user, device)
            target_id: Id of the affected record
            details: Additional details as dictionary

        Returns:
            AuditLog instance if successful, None if failed
        """
        try:
            action_enum = AuditAction(action)
        except ValueError:
            logger.warning("Invalid audit action: %s, defaulting to 'update'", action)
            action_enum = AuditAction.update

        try:
            with self._get_session() as db:
                entry = AuditLog(
                    actor=actor,
                    action=action_enum,
                    target_type=target_type,
                    target_id=target_id,
                    details=details,
                )
                db.add(entry)
                logger.debug("Audit log recorded: %s on %s %s by %s", action_enum.value, target_type, target_id, actor)
                return entry
        except SQLAlchemyError as exc:
            logger.error("Failed to record audit log: %s", exc, exc_info=True)
            self._fallback_log(actor, action_enum, target_type, target_id, details)
            return None

    def alert(self, message: str, target_type: str, target_id: Optional[str], details: Optional[Dict[str, Any]] = None):
        """Report an invariant violation out-of-band."""
        logger.critical("ALERT %s (%s %s) %s", message, target_type, target_id, details or {})
        payload = dict(details or {})
        payload["message"] = message
        return self.record("system", AuditAction.invariant_violation, target_type, target_id, payload)

    def get_logs(
        self,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        limit: int = 100,
    ) -> List[AuditLog]:
        """Query audit logs, newest first."""
        with self._get_session() as db:
            query = db.query(AuditLog)
            if target_type:
                query = query.filter(AuditLog.target_type == target_type)
            if target_id:
                query = query.filter(AuditLog.target_id == target_id)
            if action:
                query = query.filter(AuditLog.action == action)
            return query.order_by(desc(AuditLog.created_at)).limit(limit).all()

    def _fallback_log(self, actor: Any, action: Any, target_type: str, target_id: Any, details: Optional[Dict[str, Any]]):
        """Fallback logging to application logger when database fails."""
        logger.warning(
            "AUDIT LOG (fallback): actor=%s, action=%s, target_type=%s, target_id=%s, details=%s",
            actor, action, target_type, target_id, json.dumps(details, default=str) if details else "None",
        )
