# backend/modules/incentives/services/quarterly_evaluator.py

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..enums.incentive_enums import ComponentType, PayoutPeriod, RuleKind
from ..exceptions import IncentiveException
from ..models.performance_models import MonthlyPerformance
from ..schemas.performance_schemas import BreakdownLine, QuarterlyOutcome
from ..schemas.rule_schemas import QuarterlyEvalPayload
from .audit_service import IncentiveAuditService
from .payout_ledger import PayoutLedger
from .period_utils import money, preceding_months
from .rule_store import RuleStore

logger = logging.getLogger(__name__)


class QuarterlyEvaluator:
    """
    Rolling non-performance review.

    Looks at the ``eval_window_months`` months before the evaluated month
    and records a zero-amount compliance payout when enough of them fall
    below the sales threshold.
    """

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

    def evaluate_quarter(
        self, user_id: str, year_month: str, as_of: Optional[datetime] = None
    ) -> Optional[QuarterlyOutcome]:
        """
        Evaluate the window of months preceding ``year_month``.

        Returns None when no quarterly rule is active or a month of the
        window has no performance record. Otherwise returns the outcome with
        the average monthly revenue and the count of months below threshold;
        ``consequence`` and ``payout_id`` stay None unless enough months fell
        below the threshold, so callers must check ``consequence``.
        """
        at = as_of or self.clock()
        unit_id = f"{user_id}:{year_month}"

        try:
            rule = self.rule_store.get_active_rule(RuleKind.QUARTERLY_EVAL, at=at)
            if rule is None:
                logger.info(f"No active quarterly evaluation rule; skipping {unit_id}")
                return None
            payload: QuarterlyEvalPayload = rule.typed_payload()

            months = preceding_months(year_month, payload.eval_window_months)
            revenue_by_month = self._monthly_revenue(user_id, months)
            missing = [m for m in months if m not in revenue_by_month]
            if missing:
                logger.info(f"Quarterly evaluation of {unit_id} skipped; missing months {missing}")
                return None

            threshold = payload.non_performance_threshold
            below = sum(1 for m in months if revenue_by_month[m] < threshold.min_sales)

            outcome = QuarterlyOutcome(
                user_id=user_id,
                rule_id=rule.rule_id,
                year_month=year_month,
                months_evaluated=months,
                months_below_threshold=below,
                avg_revenue=money(
                    sum(revenue_by_month.values(), Decimal("0")) / len(months)
                ),
                apply_deductions=payload.recovery_policy.apply_deductions,
            )
            if below < threshold.months_required:
                return outcome

            outcome.consequence = payload.consequence
            payout = self.ledger.create_payout(
                user_id=user_id,
                store_id=None,
                period=PayoutPeriod.QUARTERLY,
                period_key=year_month,
                breakdown=[
                    BreakdownLine(
                        rule_id=rule.rule_id,
                        component=ComponentType.ADJUSTMENT,
                        amount=Decimal("0"),
                        note=(
                            f"{payload.consequence.value}: {below} of {len(months)} months "
                            f"below {threshold.min_sales}"
                        ),
                    )
                ],
                source_rule_ids=[rule.rule_id],
            )
            outcome.payout_id = payout.payout_id if payout else None

            self.audit.record(
                action="QUARTERLY_CONSEQUENCE_RECORDED",
                entity_type="quarterly_evaluation",
                entity_id=unit_id,
                new_values=outcome.model_dump(),
            )
            self.db.commit()

        except Exception as e:
            self.db.rollback()
            if isinstance(e, IncentiveException):
                e.with_context(user_id=user_id, period=year_month)
            logger.error(f"Quarterly evaluation failed for {unit_id}: {e}")
            self.audit.record_failure(
                "QUARTERLY_EVALUATION_FAILED", e, "quarterly_evaluation", unit_id
            )
            raise

        logger.warning(
            f"User {user_id} below threshold in {below} of {len(months)} months; "
            f"consequence {outcome.consequence.value}"
        )
        return outcome

    def _monthly_revenue(self, user_id: str, months) -> Dict[str, Decimal]:
        rows = (
            self.db.query(
                MonthlyPerformance.year_month,
                func.sum(MonthlyPerformance.total_revenue_pre_tax),
            )
            .filter(
                MonthlyPerformance.user_id == user_id,
                MonthlyPerformance.year_month.in_(months),
            )
            .group_by(MonthlyPerformance.year_month)
            .all()
        )
        return {year_month: money(total or 0) for year_month, total in rows}
