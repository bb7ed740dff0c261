# backend/modules/incentives/models/audit_models.py

"""
Append-only audit trail for incentive operations.

Records who changed what, plus every failed write so operators can
reconstruct why a reward was not paid.
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Index

from core.database import Base


class IncentiveAuditLog(Base):
    __tablename__ = "incentive_audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime, nullable=False, index=True)

    # Who and what
    actor = Column(String(64), nullable=False)
    action = Column(String(64), nullable=False, index=True)

    # Entity information
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(80), nullable=True)

    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    audit_metadata = Column(JSON, nullable=True)

    # Populated for failed operations
    error_code = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_incentive_audit_entity", "entity_type", "entity_id"),
    )

    def __repr__(self):
        return (
            f"<IncentiveAuditLog(action='{self.action}', entity_type='{self.entity_type}', "
            f"entity_id='{self.entity_id}')>"
        )
