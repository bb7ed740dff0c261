# backend/modules/incentives/services/audit_service.py

"""
Audit trail writer for the incentives module.

``record`` joins the caller's transaction so the audit row commits or
rolls back with the change it describes. ``record_failure`` is called
after the caller has rolled back and commits on its own.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..exceptions import IncentiveErrorCodes, IncentiveException
from ..models.audit_models import IncentiveAuditLog

logger = logging.getLogger(__name__)


def to_jsonable(value: Any) -> Any:
    """Convert Decimals, dates and enums so values fit a JSON column."""
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class IncentiveAuditService:
    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = datetime.utcnow,
        default_actor: str = "system",
    ):
        self.db = db
        self.clock = clock
        self.default_actor = default_actor

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None,
    ) -> IncentiveAuditLog:
        entry = IncentiveAuditLog(
            timestamp=self.clock(),
            actor=actor or self.default_actor,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            old_values=to_jsonable(old_values) if old_values is not None else None,
            new_values=to_jsonable(new_values) if new_values is not None else None,
            audit_metadata=to_jsonable(metadata) if metadata is not None else None,
        )
        self.db.add(entry)
        return entry

    def record_failure(
        self,
        action: str,
        error: Exception,
        entity_type: str,
        entity_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None,
    ) -> Optional[IncentiveAuditLog]:
        """
        Persist a failed operation in its own transaction.

        The session must already be rolled back. Returns ``None`` when the
        audit write itself fails; the original error is what the caller
        re-raises, so that failure is logged rather than propagated.
        """
        if isinstance(error, IncentiveException):
            code = error.code
            context = dict(error.context)
        else:
            code = IncentiveErrorCodes.UNEXPECTED
            context = {}
        context.update(metadata or {})

        entry = IncentiveAuditLog(
            timestamp=self.clock(),
            actor=actor or self.default_actor,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            audit_metadata=to_jsonable(context),
            error_code=code,
            error_message=str(error),
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to write audit entry {action} for {entity_type} {entity_id}: {e}")
            return None
        return entry

    def get_audit_trail(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 100,
    ) -> List[IncentiveAuditLog]:
        query = self.db.query(IncentiveAuditLog)
        if entity_type:
            query = query.filter(IncentiveAuditLog.entity_type == entity_type)
        if entity_id:
            query = query.filter(IncentiveAuditLog.entity_id == entity_id)
        if action:
            query = query.filter(IncentiveAuditLog.action == action)
        return query.order_by(IncentiveAuditLog.id).limit(limit).all()
