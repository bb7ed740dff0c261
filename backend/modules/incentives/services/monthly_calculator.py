# backend/modules/incentives/services/monthly_calculator.py

import logging
from collections import Counter
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..enums.incentive_enums import ComponentType, PayoutPeriod, RuleKind
from ..exceptions import IncentiveException, MonthlyPerformanceNotFound, NoApplicableSlab
from ..models.performance_models import DailyPerformance, MonthlyPerformance
from ..schemas.performance_schemas import BreakdownLine, SlabOutcome
from ..schemas.rule_schemas import MonthlySlabPayload
from .audit_service import IncentiveAuditService
from .payout_ledger import PayoutLedger
from .period_utils import money, month_bounds, parse_year_month
from .rule_store import RuleStore
from .tier_matcher import match

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class MonthlySlabCalculator:
    """Matches cumulative monthly revenue to a slab and records the monthly payout."""

    def __init__(
        self,
        db: Session,
        rule_store: RuleStore,
        ledger: PayoutLedger,
        audit: IncentiveAuditService,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.rule_store = rule_store
        self.ledger = ledger
        self.audit = audit
        self.clock = clock

    def compute_monthly_slab(
        self,
        user_id: str,
        store_id: str,
        year_month: str,
        as_of: Optional[datetime] = None,
    ) -> SlabOutcome:
        """
        Apply the active monthly slab rule to a user's month.

        Slabs are closed on both ends when bounded, so revenue equal to a
        shared boundary falls into the lower slab. Re-running the month
        appends to the slab history and returns the same payout while the
        result is unchanged.

        Raises:
            MonthlyPerformanceNotFound: no monthly record for the unit
            NoActiveRule: no monthly slab rule is active
            NoApplicableSlab: revenue lies below every slab
        """
        parse_year_month(year_month)
        at = as_of or self.clock()
        unit_id = f"{user_id}:{store_id}:{year_month}"

        try:
            record = self._get_record(user_id, store_id, year_month)
            if record is None:
                raise MonthlyPerformanceNotFound(user_id, year_month, store_id)

            rule = self.rule_store.require_active_rule(RuleKind.MONTHLY_SLAB, at=at)
            payload: MonthlySlabPayload = rule.typed_payload()

            revenue = money(record.total_revenue_pre_tax or 0)
            tier = match(payload.tiers(), revenue, closed_upper=True)
            if tier is None:
                raise NoApplicableSlab(rule.rule_id, revenue)

            slab = payload.slabs[tier.index]
            slab_incentive = money(slab.incentive_amount)
            deduction = self._deduction(payload, revenue, slab_incentive)
            net = max(ZERO, slab_incentive - deduction)

            record.slabs_applied = list(record.slabs_applied or []) + [
                {
                    "rule_id": rule.rule_id,
                    "slab_index": tier.index,
                    "incentive_amount": str(net),
                    "computed_at": self.clock().isoformat(),
                }
            ]
            record.monthly_rewards_total = net

            breakdown = []
            if slab_incentive > 0:
                breakdown.append(
                    BreakdownLine(
                        rule_id=rule.rule_id,
                        component=ComponentType.SLAB,
                        amount=slab_incentive,
                        note=f"Slab {tier.index} at revenue {revenue}",
                    )
                )
            if deduction > 0:
                breakdown.append(
                    BreakdownLine(
                        rule_id=rule.rule_id,
                        component=ComponentType.ADJUSTMENT,
                        amount=-deduction,
                        note="Under-performance deduction",
                    )
                )

            payout = self.ledger.create_payout(
                user_id=user_id,
                store_id=store_id,
                period=PayoutPeriod.MONTHLY,
                period_key=year_month,
                breakdown=breakdown,
                currency=payload.currency,
                source_rule_ids=[rule.rule_id],
            )

            outcome = SlabOutcome(
                rule_id=rule.rule_id,
                slab_index=tier.index,
                slab=slab.model_dump(mode="json"),
                incentive=net,
                salary_adjustment=money(slab.base_salary_adj),
                deduction=deduction,
                revenue=revenue,
                payout_id=payout.payout_id if payout else None,
            )
            self.audit.record(
                action="MONTHLY_SLAB_APPLIED",
                entity_type="monthly_performance",
                entity_id=unit_id,
                new_values=outcome.model_dump(),
            )
            self.db.commit()

        except Exception as e:
            self.db.rollback()
            if isinstance(e, IncentiveException):
                e.with_context(user_id=user_id, store_id=store_id, period=year_month)
            logger.error(f"Monthly slab calculation failed for {unit_id}: {e}")
            self.audit.record_failure(
                "MONTHLY_SLAB_FAILED", e, "monthly_performance", unit_id
            )
            raise

        logger.info(
            f"Monthly slab for {unit_id}: slab {outcome.slab_index}, "
            f"incentive {outcome.incentive}, deduction {outcome.deduction}"
        )
        return outcome

    @staticmethod
    def _deduction(
        payload: MonthlySlabPayload, revenue: Decimal, slab_incentive: Decimal
    ) -> Decimal:
        policy = payload.under_performance_deduction
        if policy is None or revenue >= policy.threshold:
            return ZERO

        if policy.is_percentage:
            deduction = revenue * policy.amount_or_pct / 100
        else:
            deduction = policy.amount_or_pct
        return money(min(deduction, slab_incentive))

    def rollup_month(
        self, user_id: str, store_id: str, year_month: str
    ) -> MonthlyPerformance:
        """Rebuild the monthly aggregate of a unit from its daily records."""
        start, end = month_bounds(year_month)
        unit_id = f"{user_id}:{store_id}:{year_month}"

        try:
            days = (
                self.db.query(DailyPerformance)
                .filter(
                    DailyPerformance.user_id == user_id,
                    DailyPerformance.store_id == store_id,
                    DailyPerformance.performance_date >= start,
                    DailyPerformance.performance_date <= end,
                )
                .all()
            )
            if not days:
                raise MonthlyPerformanceNotFound(user_id, year_month, store_id)

            units: Counter = Counter()
            for day in days:
                units.update(day.sku_counts or {})

            record = self._get_record(user_id, store_id, year_month)
            if record is None:
                record = MonthlyPerformance(
                    user_id=user_id, store_id=store_id, year_month=year_month
                )
                try:
                    with self.db.begin_nested():
                        self.db.add(record)
                        self.db.flush()
                except IntegrityError:
                    record = self._get_record(user_id, store_id, year_month)
                    if record is None:
                        raise

            record.total_revenue_pre_tax = money(
                sum((day.revenue_pre_tax or ZERO for day in days), ZERO)
            )
            record.total_customer_count = sum(day.customer_count for day in days)
            record.total_paid_bills = sum(day.paid_bills_count for day in days)
            record.product_units = dict(units)
            record.days_recorded = len(days)

            self.audit.record(
                action="MONTH_ROLLED_UP",
                entity_type="monthly_performance",
                entity_id=unit_id,
                new_values={
                    "total_revenue_pre_tax": record.total_revenue_pre_tax,
                    "days_recorded": record.days_recorded,
                },
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            if isinstance(e, IncentiveException):
                e.with_context(user_id=user_id, store_id=store_id, period=year_month)
            logger.error(f"Monthly roll-up failed for {unit_id}: {e}")
            self.audit.record_failure("MONTH_ROLLUP_FAILED", e, "monthly_performance", unit_id)
            raise

        self.db.refresh(record)
        return record

    def _get_record(
        self, user_id: str, store_id: str, year_month: str
    ) -> Optional[MonthlyPerformance]:
        return (
            self.db.query(MonthlyPerformance)
            .filter(
                MonthlyPerformance.user_id == user_id,
                MonthlyPerformance.store_id == store_id,
                MonthlyPerformance.year_month == year_month,
            )
            .first()
        )
