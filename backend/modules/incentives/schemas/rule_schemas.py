# backend/modules/incentives/schemas/rule_schemas.py

"""
Rule payload schemas.

One model per rule kind. Payloads are validated here when a rule is
published and re-parsed from the stored JSON when a calculation needs
typed access.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..enums.incentive_enums import (
    Consequence,
    LeaderboardPeriod,
    RewardCalculation,
    RuleKind,
    SpinRewardType,
    StaffLevel,
    StoreType,
    TargetType,
    UnlockCondition,
)
from ..services.tier_matcher import Tier, validate_tiers

PROBABILITY_TOLERANCE = 1e-9


class RewardTier(BaseModel):
    min: Decimal = Field(..., ge=0)
    max: Optional[Decimal] = Field(None, ge=0)
    reward: Decimal = Field(..., ge=0)


def _to_tiers(rows: List[RewardTier]) -> List[Tier]:
    return [
        Tier(lower=row.min, upper=row.max, reward=row.reward, index=index)
        for index, row in enumerate(rows)
    ]


# Monthly slab ---------------------------------------------------------------


class SlabTier(BaseModel):
    min_sales: Decimal = Field(..., ge=0)
    max_sales: Optional[Decimal] = Field(None, ge=0)
    base_salary_adj: Decimal = Field(Decimal("0"))
    incentive_amount: Decimal = Field(..., ge=0)


class UnderPerformanceDeduction(BaseModel):
    threshold: Decimal = Field(..., ge=0, description="Revenue below which the deduction applies")
    amount_or_pct: Decimal = Field(..., ge=0)
    is_percentage: bool = False

    @model_validator(mode="after")
    def validate_percentage(self):
        if self.is_percentage and self.amount_or_pct > 100:
            raise ValueError("Percentage deduction cannot exceed 100")
        return self


class MonthlySlabPayload(BaseModel):
    slabs: List[SlabTier] = Field(..., min_length=1)
    under_performance_deduction: Optional[UnderPerformanceDeduction] = None
    currency: str = Field("INR", min_length=3, max_length=3)
    carryover_policy: Optional[str] = None

    @field_validator("slabs")
    @classmethod
    def validate_slabs(cls, v):
        try:
            validate_tiers(cls._slab_tiers(v))
        except ValueError as e:
            raise ValueError(f"Invalid slabs: {e}")
        return v

    @staticmethod
    def _slab_tiers(slabs: List[SlabTier]) -> List[Tier]:
        return [
            Tier(
                lower=slab.min_sales,
                upper=slab.max_sales,
                reward=slab.incentive_amount,
                index=index,
                extra=slab.base_salary_adj,
            )
            for index, slab in enumerate(slabs)
        ]

    def tiers(self) -> List[Tier]:
        return self._slab_tiers(self.slabs)


# Quarterly evaluation -------------------------------------------------------


class NonPerformanceThreshold(BaseModel):
    min_sales: Decimal = Field(..., ge=0)
    months_required: int = Field(..., ge=1)


class RecoveryPolicy(BaseModel):
    apply_deductions: bool = False


class QuarterlyEvalPayload(BaseModel):
    eval_window_months: int = Field(3, ge=1, le=12)
    non_performance_threshold: NonPerformanceThreshold
    consequence: Consequence
    recovery_policy: RecoveryPolicy = Field(default_factory=RecoveryPolicy)

    @model_validator(mode="after")
    def validate_window(self):
        if self.non_performance_threshold.months_required > self.eval_window_months:
            raise ValueError("months_required cannot exceed eval_window_months")
        return self


# Daily target ---------------------------------------------------------------


class StoreTypeOverride(BaseModel):
    store_type: StoreType
    tiers: List[RewardTier] = Field(..., min_length=1)

    @field_validator("tiers")
    @classmethod
    def validate_tier_shape(cls, v):
        try:
            validate_tiers(_to_tiers(v))
        except ValueError as e:
            raise ValueError(f"Invalid tiers: {e}")
        return v

    def as_tiers(self) -> List[Tier]:
        return _to_tiers(self.tiers)


class DailyTargetPayload(BaseModel):
    applies_to: Literal["STORE", "USER"] = "USER"
    target_type: TargetType = TargetType.CUSTOMER_COUNT
    store_type_overrides: List[StoreTypeOverride] = Field(..., min_length=1)
    min_valid_bills: Optional[int] = Field(
        None, ge=1, description="Minimum paid bills per user per day"
    )

    @field_validator("store_type_overrides")
    @classmethod
    def validate_unique_store_types(cls, v):
        seen = set()
        for override in v:
            if override.store_type in seen:
                raise ValueError(f"Duplicate override for store type {override.store_type.value}")
            seen.add(override.store_type)
        return v

    def tiers_for(self, store_type) -> Optional[List[Tier]]:
        for override in self.store_type_overrides:
            if override.store_type == store_type:
                return override.as_tiers()
        return None


# Product incentive ----------------------------------------------------------


class LineCaps(BaseModel):
    per_day: Optional[Decimal] = Field(None, ge=0)
    per_month: Optional[Decimal] = Field(None, ge=0)


class ProductLine(BaseModel):
    sku: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    reward_type: RewardCalculation
    reward_value: Decimal = Field(..., ge=0)
    caps: LineCaps = Field(default_factory=LineCaps)

    @model_validator(mode="after")
    def validate_line(self):
        if not (self.sku or self.brand or self.category):
            raise ValueError("Product line needs a sku, brand or category selector")
        if self.reward_type == RewardCalculation.PCT and self.reward_value > 100:
            raise ValueError("Percentage reward cannot exceed 100")
        return self


class ProductPayload(BaseModel):
    lines: List[ProductLine] = Field(..., min_length=1)
    reach: Literal["STORE", "REGION", "GLOBAL"] = "GLOBAL"


# Tele-sales -----------------------------------------------------------------


class TeleSalesPayload(BaseModel):
    dial_target_per_day: int = Field(..., ge=0)
    dial_reward: Decimal = Field(..., ge=0)
    booking_reward: Decimal = Field(Decimal("0"), ge=0)
    monthly_booking_bonus: Optional[Decimal] = Field(None, ge=0)
    quality_score_weight: float = Field(0.2, ge=0, le=1)


# Spin wheel -----------------------------------------------------------------


class SpinReward(BaseModel):
    label: str = Field(..., max_length=100)
    type: SpinRewardType
    value: Decimal = Field(..., ge=0)
    probability: float = Field(..., ge=0, le=1)


class SpinWheelPayload(BaseModel):
    unlock_condition: UnlockCondition
    rewards: List[SpinReward] = Field(..., min_length=1)
    daily_spin_cap: int = Field(1, ge=1)
    monthly_spin_cap: int = Field(4, ge=1)

    @field_validator("rewards")
    @classmethod
    def validate_probabilities(cls, v):
        total = sum(reward.probability for reward in v)
        if total > 1 + PROBABILITY_TOLERANCE:
            raise ValueError(f"Reward probabilities sum to {total:.4f}, above 1")
        return v


# Referral, mystery product, team battle, level policy -----------------------


class ReferralBonusTier(BaseModel):
    min_referrals: int = Field(..., ge=1)
    bonus: Decimal = Field(..., ge=0)


class ReferralPayload(BaseModel):
    vesting_months: int = Field(0, ge=0)
    bonus_for_referrer: Decimal = Field(..., ge=0)
    bonus_tiers: List[ReferralBonusTier] = Field(default_factory=list)
    eligibility: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("bonus_tiers")
    @classmethod
    def validate_ascending(cls, v):
        counts = [tier.min_referrals for tier in v]
        if counts != sorted(set(counts)):
            raise ValueError("bonus_tiers must be strictly ascending by min_referrals")
        return v


class MysteryWeek(BaseModel):
    sku: str = Field(..., min_length=1)
    reward_type: RewardCalculation = RewardCalculation.FLAT
    reward_value: Decimal = Field(Decimal("0"), ge=0)


class MysteryProductPayload(BaseModel):
    reveal_to: str = "ALL"
    rotation: Literal["WEEKLY"] = "WEEKLY"
    selection: Literal["MANUAL", "AUTO"] = "MANUAL"
    current_week: MysteryWeek


class PrizePool(BaseModel):
    type: SpinRewardType = SpinRewardType.CASH
    value: Decimal = Field(..., ge=0)
    split: Literal["WINNER_TAKES_ALL", "TOP3"] = "WINNER_TAKES_ALL"


class TeamBattlePayload(BaseModel):
    period: LeaderboardPeriod = LeaderboardPeriod.MONTHLY
    metric: TargetType = TargetType.REVENUE
    eligibility: Dict[str, Any] = Field(default_factory=dict)
    prize_pool: PrizePool
    tie_breaker: Literal["EARLIEST_RECORD"] = "EARLIEST_RECORD"


class LevelCohort(BaseModel):
    level: StaffLevel
    min_tenure_months: int = Field(0, ge=0)
    min_monthly_revenue: Decimal = Field(Decimal("0"), ge=0)


class LevelPolicyPayload(BaseModel):
    cohorts: List[LevelCohort] = Field(..., min_length=1)

    @field_validator("cohorts")
    @classmethod
    def validate_unique_levels(cls, v):
        levels = [cohort.level for cohort in v]
        if len(levels) != len(set(levels)):
            raise ValueError("Each level may appear in only one cohort")
        return v


PAYLOAD_SCHEMAS: Dict[RuleKind, Type[BaseModel]] = {
    RuleKind.MONTHLY_SLAB: MonthlySlabPayload,
    RuleKind.QUARTERLY_EVAL: QuarterlyEvalPayload,
    RuleKind.DAILY_TARGET: DailyTargetPayload,
    RuleKind.PRODUCT: ProductPayload,
    RuleKind.TELESALES: TeleSalesPayload,
    RuleKind.SPIN_WHEEL: SpinWheelPayload,
    RuleKind.REFERRAL: ReferralPayload,
    RuleKind.MYSTERY_PRODUCT: MysteryProductPayload,
    RuleKind.TEAM_BATTLE: TeamBattlePayload,
    RuleKind.LEVEL_POLICY: LevelPolicyPayload,
}


class RuleVersion(BaseModel):
    """Read-only snapshot of a stored rule version"""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    rule_id: str
    name: str
    kind: RuleKind
    scope: str
    version: int
    effective_from: datetime
    effective_to: Optional[datetime] = None
    is_active: bool
    payload: Dict[str, Any]
    created_by: Optional[str] = None

    def typed_payload(self) -> BaseModel:
        return PAYLOAD_SCHEMAS[self.kind].model_validate(self.payload)
