# backend/modules/incentives/services/daily_calculator.py

"""
Daily Performance Calculator.

Turns one day's raw inputs for a (user, store) into itemized rewards:
customer-count tier, product lines and tele-sales. The daily-target rule
is mandatory for integrity (a conflict aborts); product, tele-sales and
spin rules are optional and degrade to zero when they cannot be resolved.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config.incentive_config import IncentiveConfig
from ..enums.incentive_enums import (
    ComponentType,
    PayoutPeriod,
    RewardCalculation,
    RuleKind,
    TargetType,
    UnlockCondition,
)
from ..exceptions import (
    BelowMinimumActivity,
    IncentiveException,
    NoActiveRule,
    RuleConflict,
)
from ..models.performance_models import DailyPerformance
from ..schemas.performance_schemas import BreakdownLine, DailyInputs
from ..schemas.rule_schemas import (
    DailyTargetPayload,
    MysteryProductPayload,
    ProductPayload,
    RuleVersion,
    SpinWheelPayload,
    TeleSalesPayload,
)
from .audit_service import IncentiveAuditService, to_jsonable
from .payout_ledger import PayoutLedger
from .period_utils import money, month_bounds, year_month_of
from .product_matchers import build_matcher
from .rule_store import RuleStore
from .tier_matcher import Tier, match

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass
class DailyComputation:
    """Intermediate result of one daily calculation"""

    components: List[Dict[str, Any]] = field(default_factory=list)
    breakdown: List[BreakdownLine] = field(default_factory=list)
    source_rule_ids: List[str] = field(default_factory=list)
    matched_tier: Optional[Tier] = None
    eligible_for_spin: bool = False

    @property
    def total(self) -> Decimal:
        return money(sum((line.amount for line in self.breakdown), ZERO))


class DailyPerformanceCalculator:
    def __init__(
        self,
        db: Session,
        rule_store: RuleStore,
        ledger: PayoutLedger,
        audit: IncentiveAuditService,
        config: IncentiveConfig,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.rule_store = rule_store
        self.ledger = ledger
        self.audit = audit
        self.config = config
        self.clock = clock

    def compute_daily(
        self,
        user_id: str,
        store_id: str,
        performance_date: date,
        raw_inputs: Union[DailyInputs, Dict[str, Any]],
        as_of: Optional[datetime] = None,
    ) -> DailyPerformance:
        """
        Compute and persist the daily rewards of one (user, store, date).

        Re-submitting the same day overwrites the record and leaves exactly
        one live payout for it.

        Raises:
            BelowMinimumActivity: fewer paid bills than the required minimum
            RuleConflict: overlapping daily-target rules
        """
        inputs = (
            raw_inputs
            if isinstance(raw_inputs, DailyInputs)
            else DailyInputs.model_validate(raw_inputs)
        )
        at = as_of or self.clock()
        unit_id = f"{user_id}:{store_id}:{performance_date.isoformat()}"

        try:
            # The configured minimum is checked before any rule is resolved;
            # a daily-target rule may only raise it.
            minimum = self.config.INCENTIVE_MIN_PAID_BILLS
            if inputs.paid_bills_count < minimum:
                raise BelowMinimumActivity(inputs.paid_bills_count, minimum)

            daily_rule = self.rule_store.get_active_rule(
                RuleKind.DAILY_TARGET, TargetType.CUSTOMER_COUNT.value, at
            )
            daily_payload = daily_rule.typed_payload() if daily_rule else None

            if daily_payload is not None and (daily_payload.min_valid_bills or 0) > minimum:
                minimum = daily_payload.min_valid_bills
                if inputs.paid_bills_count < minimum:
                    raise BelowMinimumActivity(inputs.paid_bills_count, minimum)

            result = DailyComputation()
            self._apply_daily_target(result, daily_rule, daily_payload, inputs)

            existing = self._find_record(user_id, store_id, performance_date)
            self._apply_product_rules(result, user_id, performance_date, inputs, at, existing)
            self._apply_tele_sales(result, inputs, at)
            result.eligible_for_spin = self._spin_eligibility(result, inputs, at)

            record = self._upsert_record(user_id, store_id, performance_date, existing)
            self._fill_record(record, inputs, result)
            self.db.flush()

            payout = self.ledger.create_payout(
                user_id=user_id,
                store_id=store_id,
                period=PayoutPeriod.DAILY,
                period_key=performance_date.isoformat(),
                breakdown=result.breakdown,
                source_rule_ids=result.source_rule_ids,
            )
            record.payout_id = payout.payout_id if payout else None

            self.audit.record(
                action="DAILY_CALCULATED",
                entity_type="daily_performance",
                entity_id=unit_id,
                new_values={
                    "daily_rewards_total": record.daily_rewards_total,
                    "eligible_for_spin": record.eligible_for_spin,
                    "payout_id": payout.payout_id if payout else None,
                },
                metadata={"rule_ids": result.source_rule_ids},
            )
            self.db.commit()

        except BelowMinimumActivity as e:
            self.db.rollback()
            e.with_context(user_id=user_id, store_id=store_id, period=performance_date)
            logger.info(f"No daily reward for {unit_id}: {e.message}")
            self.audit.record_failure(
                "DAILY_CALCULATION_FAILED", e, "daily_performance", unit_id
            )
            raise
        except Exception as e:
            self.db.rollback()
            if isinstance(e, IncentiveException):
                e.with_context(user_id=user_id, store_id=store_id, period=performance_date)
            logger.error(f"Daily calculation failed for {unit_id}: {e}")
            self.audit.record_failure(
                "DAILY_CALCULATION_FAILED", e, "daily_performance", unit_id
            )
            raise

        self.db.refresh(record)
        logger.info(
            f"Daily rewards for {unit_id}: total {record.daily_rewards_total}, "
            f"spin eligible {record.eligible_for_spin}"
        )
        return record

    # Components ---------------------------------------------------------

    def _apply_daily_target(
        self,
        result: DailyComputation,
        rule: Optional[RuleVersion],
        payload: Optional[DailyTargetPayload],
        inputs: DailyInputs,
    ) -> None:
        if rule is None:
            logger.warning("No active daily target rule; customer-count reward is zero")
            return
        result.source_rule_ids.append(rule.rule_id)

        tiers = payload.tiers_for(inputs.store_type) if inputs.store_type else None
        if tiers is None:
            logger.info(
                f"Store type {inputs.store_type} has no override in {rule.rule_id}; "
                f"customer-count reward is zero"
            )
            return

        metric = {
            TargetType.CUSTOMER_COUNT: inputs.customer_count,
            TargetType.REVENUE: inputs.revenue_pre_tax,
            TargetType.PRODUCT_UNITS: inputs.items_sold,
        }[payload.target_type]

        tier = match(tiers, metric)
        result.matched_tier = tier
        if tier is None:
            return

        amount = money(tier.reward)
        self._add_component(
            result,
            rule.rule_id,
            ComponentType.DAILY_CUSTOMER,
            amount,
            note=f"Tier {tier.index} ({payload.target_type.value} {metric})",
            tier_index=tier.index,
        )

    def _apply_product_rules(
        self,
        result: DailyComputation,
        user_id: str,
        performance_date: date,
        inputs: DailyInputs,
        at: datetime,
        existing: Optional[DailyPerformance],
    ) -> None:
        try:
            rules = self.rule_store.get_active_rules(RuleKind.PRODUCT, at)
        except RuleConflict as e:
            self._degrade(e, "product")
            return
        if not rules:
            logger.warning("No active product rules; product reward is zero")
            return

        month_to_date = self._product_earnings_this_month(
            user_id, performance_date, existing
        )
        skus = set(inputs.sku_counts) | set(inputs.product_revenue)

        for rule in rules:
            payload: ProductPayload = rule.typed_payload()
            result.source_rule_ids.append(rule.rule_id)
            rule_total = ZERO

            for line_index, line in enumerate(payload.lines):
                matched = build_matcher(line).select(sorted(skus))
                if not matched:
                    continue

                if line.reward_type == RewardCalculation.FLAT:
                    quantity = sum(inputs.sku_counts.get(sku, 0) for sku in matched)
                    reward = line.reward_value * quantity
                else:
                    revenue = sum(
                        (inputs.product_revenue.get(sku, ZERO) for sku in matched), ZERO
                    )
                    reward = revenue * line.reward_value / 100

                if line.caps.per_day is not None:
                    reward = min(reward, line.caps.per_day)
                if line.caps.per_month is not None:
                    earned = month_to_date.get((rule.rule_id, line_index), ZERO)
                    reward = min(reward, max(ZERO, line.caps.per_month - earned))

                reward = money(reward)
                if reward <= 0:
                    continue
                rule_total += reward
                result.components.append(
                    {
                        "component": ComponentType.PRODUCT.value,
                        "rule_id": rule.rule_id,
                        "line_index": line_index,
                        "skus": matched,
                        "amount": str(reward),
                    }
                )

            if rule_total > 0:
                result.breakdown.append(
                    BreakdownLine(
                        rule_id=rule.rule_id,
                        component=ComponentType.PRODUCT,
                        amount=rule_total,
                        note=rule.name,
                    )
                )

    def _apply_tele_sales(
        self, result: DailyComputation, inputs: DailyInputs, at: datetime
    ) -> None:
        try:
            rule = self.rule_store.require_active_rule(RuleKind.TELESALES, at=at)
        except (NoActiveRule, RuleConflict) as e:
            self._degrade(e, "tele-sales")
            return
        payload: TeleSalesPayload = rule.typed_payload()
        result.source_rule_ids.append(rule.rule_id)

        amount = ZERO
        if inputs.tele_dials >= payload.dial_target_per_day:
            amount += payload.dial_reward
        amount += inputs.tele_bookings * payload.booking_reward

        weight = Decimal(str(payload.quality_score_weight))
        if weight > 0 and inputs.tele_qa_score > 0:
            amount += (inputs.tele_qa_score / 100) * weight * payload.dial_reward

        self._add_component(
            result,
            rule.rule_id,
            ComponentType.TELE,
            money(amount),
            note=f"{inputs.tele_dials} dials, {inputs.tele_bookings} bookings",
        )

    def _spin_eligibility(
        self, result: DailyComputation, inputs: DailyInputs, at: datetime
    ) -> bool:
        try:
            rule = self.rule_store.require_active_rule(RuleKind.SPIN_WHEEL, at=at)
        except (NoActiveRule, RuleConflict) as e:
            self._degrade(e, "spin eligibility")
            return False
        payload: SpinWheelPayload = rule.typed_payload()

        if payload.unlock_condition == UnlockCondition.DAILY_TARGET_MET:
            tier = result.matched_tier
            return tier is not None and tier.reward > 0

        if payload.unlock_condition == UnlockCondition.MYSTERY_UNLOCK:
            try:
                mystery = self.rule_store.require_active_rule(
                    RuleKind.MYSTERY_PRODUCT, at=at
                )
            except (NoActiveRule, RuleConflict) as e:
                self._degrade(e, "mystery product")
                return False
            mystery_payload: MysteryProductPayload = mystery.typed_payload()
            return inputs.sku_counts.get(mystery_payload.current_week.sku, 0) > 0

        # MONTHLY_TARGET_EXCEEDED is decided by the monthly run
        return False

    # Persistence --------------------------------------------------------

    def _find_record(
        self, user_id: str, store_id: str, performance_date: date
    ) -> Optional[DailyPerformance]:
        return (
            self.db.query(DailyPerformance)
            .filter(
                DailyPerformance.user_id == user_id,
                DailyPerformance.store_id == store_id,
                DailyPerformance.performance_date == performance_date,
            )
            .first()
        )

    def _upsert_record(
        self,
        user_id: str,
        store_id: str,
        performance_date: date,
        existing: Optional[DailyPerformance],
    ) -> DailyPerformance:
        if existing is not None:
            return existing

        record = DailyPerformance(
            user_id=user_id, store_id=store_id, performance_date=performance_date
        )
        try:
            with self.db.begin_nested():
                self.db.add(record)
                self.db.flush()
        except IntegrityError:
            record = self._find_record(user_id, store_id, performance_date)
            if record is None:
                raise
        return record

    def _fill_record(
        self, record: DailyPerformance, inputs: DailyInputs, result: DailyComputation
    ) -> None:
        record.store_type = inputs.store_type
        record.city = inputs.city
        record.state = inputs.state
        record.country = inputs.country
        record.user_level = inputs.user_level.value if inputs.user_level else None

        record.customer_count = inputs.customer_count
        record.paid_bills_count = inputs.paid_bills_count
        record.revenue_pre_tax = money(inputs.revenue_pre_tax)
        record.items_sold = inputs.items_sold
        record.sku_counts = dict(inputs.sku_counts)
        record.product_revenue = to_jsonable(inputs.product_revenue)
        record.tele_dials = inputs.tele_dials
        record.tele_connected = inputs.tele_connected
        record.tele_bookings = inputs.tele_bookings
        record.tele_qa_score = inputs.tele_qa_score

        record.components = result.components
        record.daily_rewards_total = result.total
        record.eligible_for_spin = result.eligible_for_spin
        record.daily_tier_index = result.matched_tier.index if result.matched_tier else None
        record.calculated_at = self.clock()

    def _product_earnings_this_month(
        self,
        user_id: str,
        performance_date: date,
        existing: Optional[DailyPerformance],
    ) -> Dict[Tuple[str, int], Decimal]:
        """Product earnings per (rule, line) on the user's other records this month"""
        start, end = month_bounds(year_month_of(performance_date))
        query = self.db.query(DailyPerformance).filter(
            DailyPerformance.user_id == user_id,
            DailyPerformance.performance_date >= start,
            DailyPerformance.performance_date <= end,
        )
        if existing is not None:
            query = query.filter(DailyPerformance.id != existing.id)

        earned: Dict[Tuple[str, int], Decimal] = defaultdict(lambda: ZERO)
        for record in query.all():
            for component in record.components or []:
                if component.get("component") != ComponentType.PRODUCT.value:
                    continue
                key = (component["rule_id"], component["line_index"])
                earned[key] += Decimal(component["amount"])
        return earned

    # Helpers ------------------------------------------------------------

    @staticmethod
    def _add_component(
        result: DailyComputation,
        rule_id: str,
        component: ComponentType,
        amount: Decimal,
        note: Optional[str] = None,
        **details,
    ) -> None:
        if amount <= 0:
            return
        result.components.append(
            {"component": component.value, "rule_id": rule_id, "amount": str(amount), **details}
        )
        result.breakdown.append(
            BreakdownLine(rule_id=rule_id, component=component, amount=amount, note=note)
        )

    def _degrade(self, error: Exception, component: str) -> None:
        if isinstance(error, RuleConflict):
            logger.error(f"Rule conflict for {component}; contribution is zero: {error}")
            self.audit.record(
                action="RULE_CONFLICT_DETECTED",
                entity_type="incentive_rule",
                entity_id=error.scope,
                metadata=error.context,
            )
        else:
            logger.warning(f"{component} degraded to zero: {error}")
