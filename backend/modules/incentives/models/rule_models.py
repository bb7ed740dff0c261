# backend/modules/incentives/models/rule_models.py

"""
Effective-dated incentive rule versions.

A rule row is never edited once a payout references it; changes are
published as a new version with its own window.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    JSON,
    Index,
    UniqueConstraint,
    Enum as SQLEnum,
)

from core.database import Base
from core.mixins import TimestampMixin
from ..enums.incentive_enums import RuleKind

DEFAULT_SCOPE = "DEFAULT"


class IncentiveRule(Base, TimestampMixin):
    """One immutable version of an incentive rule"""

    __tablename__ = "incentive_rules"

    id = Column(Integer, primary_key=True, index=True)
    rule_id = Column(String(64), nullable=False, unique=True, index=True)
    name = Column(String(200), nullable=False)
    kind = Column(SQLEnum(RuleKind), nullable=False, index=True)
    scope = Column(String(64), nullable=False, default=DEFAULT_SCOPE)
    version = Column(Integer, nullable=False, default=1)

    # Validity window, both ends inclusive; NULL effective_to is open-ended
    effective_from = Column(DateTime, nullable=False, index=True)
    effective_to = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    payload = Column(JSON, nullable=False)
    created_by = Column(String(64), nullable=True)

    __table_args__ = (
        UniqueConstraint("kind", "scope", "version", name="uq_incentive_rule_version"),
        Index("ix_incentive_rules_kind_scope", "kind", "scope", "is_active"),
    )

    def __repr__(self):
        return (
            f"<IncentiveRule(rule_id='{self.rule_id}', kind='{self.kind}', "
            f"scope='{self.scope}', version={self.version})>"
        )
