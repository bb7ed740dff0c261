# backend/modules/incentives/services/incentive_engine.py

"""
Incentive engine facade.

Wires the rule store, calculators, spin wheel, ledger and leaderboards to
one session, clock and random source, and hands finished payouts and spin
outcomes to the notifier after they are committed.
"""

import logging
import random
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Set, Union

from sqlalchemy.orm import Session

from core.memory_cache import LRUCache
from ..config.incentive_config import IncentiveConfig, get_incentive_config
from ..enums.incentive_enums import (
    LeaderboardPeriod,
    LeaderboardScope,
    PayoutPeriod,
    SpinUnlockReason,
    StaffLevel,
    TargetType,
)
from ..models.audit_models import IncentiveAuditLog
from ..models.payout_models import IncentivePayout
from ..models.performance_models import DailyPerformance, SpinRecord
from ..schemas.performance_schemas import (
    DailyInputs,
    LeaderboardEntry,
    PayoutFilters,
    QuarterlyOutcome,
    SlabOutcome,
    SpinOutcome,
)
from .audit_service import IncentiveAuditService
from .daily_calculator import DailyPerformanceCalculator
from .leaderboard import ALL_LEVELS, LeaderboardAggregator
from .monthly_calculator import MonthlySlabCalculator
from .notifications import IncentiveNotifier, LoggingNotifier
from .payout_ledger import PayoutLedger
from .quarterly_evaluator import QuarterlyEvaluator
from .rule_store import RuleStore
from .spin_wheel import SpinWheelEngine

logger = logging.getLogger(__name__)


class IncentiveEngine:
    def __init__(
        self,
        db: Session,
        clock: Optional[Callable[[], datetime]] = None,
        rng: Optional[random.Random] = None,
        notifier: Optional[IncentiveNotifier] = None,
        config: Optional[IncentiveConfig] = None,
        rule_cache: Optional[LRUCache] = None,
    ):
        self.db = db
        self.config = config or get_incentive_config()
        self.clock = clock or datetime.utcnow
        self.notifier = notifier or LoggingNotifier()

        self.audit = IncentiveAuditService(
            db, clock=self.clock, default_actor=self.config.AUDIT_SYSTEM_ACTOR
        )
        self.rules = RuleStore(
            db, clock=self.clock, cache=rule_cache, config=self.config, audit=self.audit
        )
        self.ledger = PayoutLedger(
            db, self.audit, clock=self.clock, currency=self.config.INCENTIVE_CURRENCY
        )
        self.daily = DailyPerformanceCalculator(
            db, self.rules, self.ledger, self.audit, self.config, clock=self.clock
        )
        self.monthly = MonthlySlabCalculator(
            db, self.rules, self.ledger, self.audit, clock=self.clock
        )
        self.quarterly = QuarterlyEvaluator(
            db, self.rules, self.ledger, self.audit, clock=self.clock
        )
        self.spin_wheel = SpinWheelEngine(
            db, self.rules, self.ledger, self.audit, rng=rng, clock=self.clock
        )
        self.leaderboards = LeaderboardAggregator(
            db, clock=self.clock, default_limit=self.config.LEADERBOARD_LIMIT
        )

    # Calculations -------------------------------------------------------

    def compute_daily(
        self,
        user_id: str,
        store_id: str,
        performance_date: date,
        raw_inputs: Union[DailyInputs, Dict[str, Any]],
    ) -> DailyPerformance:
        known = self._unit_payout_ids(
            user_id, PayoutPeriod.DAILY, performance_date.isoformat(), store_id
        )
        record = self.daily.compute_daily(user_id, store_id, performance_date, raw_inputs)
        self._notify_payout(record.payout_id, known)
        return record

    def compute_monthly_slab(
        self, user_id: str, store_id: str, year_month: str
    ) -> SlabOutcome:
        known = self._unit_payout_ids(user_id, PayoutPeriod.MONTHLY, year_month, store_id)
        outcome = self.monthly.compute_monthly_slab(user_id, store_id, year_month)
        self._notify_payout(outcome.payout_id, known)
        return outcome

    def rollup_month(self, user_id: str, store_id: str, year_month: str):
        return self.monthly.rollup_month(user_id, store_id, year_month)

    def evaluate_quarter(self, user_id: str, year_month: str) -> Optional[QuarterlyOutcome]:
        return self.quarterly.evaluate_quarter(user_id, year_month)

    def spin(
        self,
        user_id: str,
        reason: Union[SpinUnlockReason, str],
        store_id: Optional[str] = None,
    ) -> SpinOutcome:
        outcome = self.spin_wheel.spin(user_id, reason, store_id=store_id)
        self._deliver(self.notifier.spin_completed, outcome, outcome.spin_id)
        return outcome

    def leaderboard(
        self,
        scope: Union[LeaderboardScope, str],
        metric: Union[TargetType, str],
        level: Union[StaffLevel, str] = ALL_LEVELS,
        period: Union[LeaderboardPeriod, str] = LeaderboardPeriod.MONTHLY,
    ) -> List[LeaderboardEntry]:
        return self.leaderboards.leaderboard(scope, metric, level, period)

    # Ledger -------------------------------------------------------------

    def get_payouts(
        self, user_id: str, filters: Optional[PayoutFilters] = None
    ) -> List[IncentivePayout]:
        return self.ledger.get_payouts(user_id, filters)

    def payout_summary(self, user_id: str) -> Dict[str, Dict[str, Any]]:
        return self.ledger.payout_summary(user_id)

    def mark_paid(
        self, payout_id: str, actor: str, export_ref: Optional[str] = None
    ) -> IncentivePayout:
        return self.ledger.mark_paid(payout_id, actor, export_ref)

    def void_payout(self, payout_id: str, actor: str, reason: str) -> IncentivePayout:
        return self.ledger.void(payout_id, actor, reason)

    def cancel_payout(self, payout_id: str, actor: str, reason: str) -> IncentivePayout:
        return self.ledger.cancel(payout_id, actor, reason)

    # Read paths ---------------------------------------------------------

    def get_spin_history(
        self, user_id: str, start: Optional[date] = None, end: Optional[date] = None
    ) -> List[SpinRecord]:
        return self.spin_wheel.get_spin_history(user_id, start, end)

    def get_daily_performance(
        self,
        user_id: str,
        store_id: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[DailyPerformance]:
        query = self.db.query(DailyPerformance).filter(DailyPerformance.user_id == user_id)
        if store_id:
            query = query.filter(DailyPerformance.store_id == store_id)
        if start:
            query = query.filter(DailyPerformance.performance_date >= start)
        if end:
            query = query.filter(DailyPerformance.performance_date <= end)
        return query.order_by(DailyPerformance.performance_date).all()

    def get_audit_trail(
        self, entity_type: Optional[str] = None, entity_id: Optional[str] = None
    ) -> List[IncentiveAuditLog]:
        return self.audit.get_audit_trail(entity_type, entity_id)

    # Notification -------------------------------------------------------

    def _unit_payout_ids(
        self, user_id: str, period: PayoutPeriod, period_key: str, store_id: Optional[str]
    ) -> Set[str]:
        payouts = self.ledger.get_payouts(
            user_id,
            PayoutFilters(period=period, period_key=period_key, store_id=store_id),
        )
        return {payout.payout_id for payout in payouts}

    def _notify_payout(self, payout_id: Optional[str], known: Set[str]) -> None:
        if not payout_id or payout_id in known:
            return
        payout = self.ledger.get_payout(payout_id)
        self._deliver(self.notifier.payout_created, payout, payout_id)

    def _deliver(self, send: Callable[[Any], bool], item: Any, ref: str) -> None:
        try:
            if not send(item):
                logger.warning(f"Notifier declined delivery for {ref}")
        except Exception as e:
            logger.error(f"Failed to deliver notification for {ref}: {e}")
