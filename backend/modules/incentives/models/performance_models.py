# backend/modules/incentives/models/performance_models.py

from sqlalchemy import (
    Column,
    Integer,
    String,
    Date,
    DateTime,
    Boolean,
    Numeric,
    JSON,
    Index,
    UniqueConstraint,
    Enum as SQLEnum,
)

from core.database import Base
from core.mixins import TimestampMixin
from ..enums.incentive_enums import (
    SpinRewardType,
    SpinUnlockReason,
    SpinWindow,
    StoreType,
)


class DailyPerformance(Base, TimestampMixin):
    """Raw daily inputs of one user at one store and the rewards computed from them"""

    __tablename__ = "incentive_daily_performance"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    store_id = Column(String(64), nullable=False, index=True)
    performance_date = Column(Date, nullable=False, index=True)

    # Descriptive attributes captured with the event (leaderboard grouping)
    store_type = Column(SQLEnum(StoreType), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True)
    user_level = Column(String(10), nullable=True, index=True)

    # Raw inputs
    customer_count = Column(Integer, nullable=False, default=0)
    paid_bills_count = Column(Integer, nullable=False, default=0)
    revenue_pre_tax = Column(Numeric(12, 2), nullable=False, default=0)
    items_sold = Column(Integer, nullable=False, default=0)
    sku_counts = Column(JSON, nullable=False, default=dict)
    product_revenue = Column(JSON, nullable=False, default=dict)
    tele_dials = Column(Integer, nullable=False, default=0)
    tele_connected = Column(Integer, nullable=False, default=0)
    tele_bookings = Column(Integer, nullable=False, default=0)
    tele_qa_score = Column(Numeric(5, 2), nullable=False, default=0)

    # Computed outputs
    components = Column(JSON, nullable=False, default=list)
    daily_rewards_total = Column(Numeric(12, 2), nullable=False, default=0)
    eligible_for_spin = Column(Boolean, nullable=False, default=False)
    daily_tier_index = Column(Integer, nullable=True)
    payout_id = Column(String(80), nullable=True)
    calculated_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "store_id", "performance_date", name="uq_daily_performance_unit"
        ),
        Index("ix_daily_performance_date_store", "performance_date", "store_id"),
    )

    def __repr__(self):
        return (
            f"<DailyPerformance(user_id='{self.user_id}', store_id='{self.store_id}', "
            f"date={self.performance_date}, total={self.daily_rewards_total})>"
        )


class MonthlyPerformance(Base, TimestampMixin):
    """Cumulative month figures and the slab history applied to them"""

    __tablename__ = "incentive_monthly_performance"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    store_id = Column(String(64), nullable=False, index=True)
    year_month = Column(String(7), nullable=False, index=True)  # YYYY-MM

    total_revenue_pre_tax = Column(Numeric(14, 2), nullable=False, default=0)
    total_customer_count = Column(Integer, nullable=False, default=0)
    total_paid_bills = Column(Integer, nullable=False, default=0)
    product_units = Column(JSON, nullable=False, default=dict)
    days_recorded = Column(Integer, nullable=False, default=0)

    slabs_applied = Column(JSON, nullable=False, default=list)
    monthly_rewards_total = Column(Numeric(12, 2), nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "store_id", "year_month", name="uq_monthly_performance_unit"
        ),
    )

    def __repr__(self):
        return (
            f"<MonthlyPerformance(user_id='{self.user_id}', store_id='{self.store_id}', "
            f"year_month='{self.year_month}')>"
        )


class SpinRecord(Base):
    """One successful spin; rows are never updated"""

    __tablename__ = "incentive_spin_records"

    id = Column(Integer, primary_key=True, index=True)
    spin_id = Column(String(64), nullable=False, unique=True)
    user_id = Column(String(64), nullable=False, index=True)
    store_id = Column(String(64), nullable=True)
    rule_id = Column(String(64), nullable=False)
    spun_at = Column(DateTime, nullable=False, index=True)
    unlocked_by = Column(SQLEnum(SpinUnlockReason), nullable=False)

    reward_type = Column(SQLEnum(SpinRewardType), nullable=False)
    reward_value = Column(Numeric(12, 2), nullable=False)
    reward_label = Column(String(100), nullable=False)
    draw = Column(Numeric(10, 9), nullable=False)
    fallback_used = Column(Boolean, nullable=False, default=False)
    payout_id = Column(String(80), nullable=True)


class SpinCounter(Base):
    """Spins consumed by a user within a day or month window"""

    __tablename__ = "incentive_spin_counters"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False)
    window_type = Column(SQLEnum(SpinWindow), nullable=False)
    window_key = Column(String(10), nullable=False)  # YYYY-MM-DD or YYYY-MM
    spin_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("user_id", "window_type", "window_key", name="uq_spin_counter_window"),
    )
