# backend/modules/incentives/models/payout_models.py

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Numeric,
    Text,
    ForeignKey,
    Index,
    UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship

from core.database import Base
from core.mixins import TimestampMixin
from ..enums.incentive_enums import ComponentType, PayoutPeriod, PayoutStatus


class IncentivePayout(Base, TimestampMixin):
    """
    Earned reward owed to a user.

    Rows are owned by the payout ledger; only the status fields change
    after insert (DUE -> PAID, DUE -> VOID).
    """

    __tablename__ = "incentive_payouts"

    id = Column(Integer, primary_key=True, index=True)
    payout_id = Column(String(80), nullable=False, unique=True, index=True)
    idempotency_key = Column(String(64), nullable=False, index=True)
    revision = Column(Integer, nullable=False, default=1)

    user_id = Column(String(64), nullable=False, index=True)
    store_id = Column(String(64), nullable=True)
    period = Column(SQLEnum(PayoutPeriod), nullable=False, index=True)
    period_key = Column(String(40), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    source_rule_ids = Column(Text, nullable=False, default="")

    status = Column(
        SQLEnum(PayoutStatus), nullable=False, default=PayoutStatus.DUE, index=True
    )
    status_reason = Column(String(255), nullable=True)
    status_changed_by = Column(String(64), nullable=True)
    status_changed_at = Column(DateTime, nullable=True)
    export_ref = Column(String(100), nullable=True)

    lines = relationship(
        "PayoutLineItem",
        back_populates="payout",
        order_by="PayoutLineItem.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("idempotency_key", "revision", name="uq_payout_key_revision"),
        Index("ix_incentive_payouts_user_period", "user_id", "period", "period_key"),
    )

    @property
    def rule_ids(self):
        return [r for r in self.source_rule_ids.split(",") if r]

    def __repr__(self):
        return (
            f"<IncentivePayout(payout_id='{self.payout_id}', amount={self.amount}, "
            f"status='{self.status}')>"
        )


class PayoutLineItem(Base):
    """Ordered breakdown line of a payout"""

    __tablename__ = "incentive_payout_lines"

    id = Column(Integer, primary_key=True, index=True)
    payout_pk = Column(
        Integer, ForeignKey("incentive_payouts.id", ondelete="CASCADE"), nullable=False
    )
    position = Column(Integer, nullable=False)
    rule_id = Column(String(64), nullable=False)
    component = Column(SQLEnum(ComponentType), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    note = Column(String(255), nullable=True)

    payout = relationship("IncentivePayout", back_populates="lines")
