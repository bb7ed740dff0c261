# backend/modules/incentives/schemas/performance_schemas.py

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..enums.incentive_enums import (
    ComponentType,
    Consequence,
    PayoutPeriod,
    PayoutStatus,
    SpinRewardType,
    SpinUnlockReason,
    StaffLevel,
    StoreType,
)


class DailyInputs(BaseModel):
    """Raw daily performance event from POS/CRM."""

    customer_count: int = Field(0, ge=0)
    paid_bills_count: int = Field(0, ge=0)
    revenue_pre_tax: Decimal = Field(Decimal("0"), ge=0)
    items_sold: int = Field(0, ge=0)
    sku_counts: Dict[str, int] = Field(default_factory=dict)
    product_revenue: Dict[str, Decimal] = Field(default_factory=dict)

    tele_dials: int = Field(0, ge=0)
    tele_connected: int = Field(0, ge=0)
    tele_bookings: int = Field(0, ge=0)
    tele_qa_score: Decimal = Field(Decimal("0"), ge=0, le=100)

    store_type: Optional[StoreType] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    user_level: Optional[StaffLevel] = None

    @field_validator("sku_counts")
    @classmethod
    def validate_sku_counts(cls, v):
        for sku, quantity in v.items():
            if quantity < 0:
                raise ValueError(f"Negative quantity for SKU {sku}")
        return v


class BreakdownLine(BaseModel):
    """One component of a payout"""

    model_config = ConfigDict(from_attributes=True)

    rule_id: str
    component: ComponentType
    amount: Decimal
    note: Optional[str] = None


class PayoutFilters(BaseModel):
    """Filters for the payout read path"""

    period: Optional[PayoutPeriod] = None
    period_key: Optional[str] = None
    status: Optional[PayoutStatus] = None
    store_id: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    limit: int = Field(100, ge=1, le=1000)


class SlabOutcome(BaseModel):
    rule_id: str
    slab_index: int
    slab: Dict[str, Any]
    incentive: Decimal
    salary_adjustment: Decimal
    deduction: Decimal
    revenue: Decimal
    payout_id: Optional[str] = None


class QuarterlyOutcome(BaseModel):
    user_id: str
    rule_id: str
    year_month: str
    months_evaluated: List[str]
    months_below_threshold: int
    avg_revenue: Decimal
    consequence: Optional[Consequence] = None
    apply_deductions: bool = False
    payout_id: Optional[str] = None


class SpinOutcome(BaseModel):
    spin_id: str
    user_id: str
    rule_id: str
    reward_type: SpinRewardType
    value: Decimal
    label: str
    unlocked_by: SpinUnlockReason
    fallback_used: bool = False
    payout_id: Optional[str] = None


class LeaderboardEntry(BaseModel):
    rank: int
    entity_id: str
    metric_value: Decimal
    participant_count: int


class UnitResult(BaseModel):
    """Outcome of one unit of work in a batch run"""

    user_id: str
    store_id: Optional[str] = None
    period_key: str
    success: bool
    payout_id: Optional[str] = None
    amount: Optional[Decimal] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    processing_time: float = 0.0
    detail: Dict[str, Any] = Field(default_factory=dict)
