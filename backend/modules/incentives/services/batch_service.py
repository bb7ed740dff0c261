# backend/modules/incentives/services/batch_service.py

"""
Batch incentive processing.

Runs the monthly slab and quarterly evaluations over many units. Each
unit gets its own session and its failure is reported in its
``UnitResult`` without stopping the rest of the run.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from core.memory_cache import LRUCache
from ..config.incentive_config import IncentiveConfig, get_incentive_config
from ..exceptions import IncentiveErrorCodes, IncentiveException
from ..models.performance_models import DailyPerformance, MonthlyPerformance
from ..schemas.performance_schemas import UnitResult
from .incentive_engine import IncentiveEngine
from .notifications import IncentiveNotifier
from .period_utils import month_bounds, preceding_months

logger = logging.getLogger(__name__)

# Months scanned for users to include in a quarterly run
QUARTERLY_LOOKBACK_MONTHS = 12

Unit = Tuple[str, Optional[str]]


class IncentiveBatchService:
    """Service for batch incentive processing."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: Optional[IncentiveConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        notifier: Optional[IncentiveNotifier] = None,
        max_workers: Optional[int] = None,
    ):
        """Initialize batch incentive service.

        Args:
            session_factory: Callable returning a new database session
            config: Incentive configuration, loaded from the environment when omitted
            clock: Source of the current time
            notifier: Delivery channel shared by all units
            max_workers: Parallel units; defaults to BATCH_MAX_WORKERS
        """
        self.session_factory = session_factory
        self.config = config or get_incentive_config()
        self.clock = clock or datetime.utcnow
        self.notifier = notifier
        self.max_workers = max_workers or self.config.BATCH_MAX_WORKERS
        self.rule_cache = LRUCache(
            max_size=self.config.RULE_CACHE_MAX_SIZE,
            ttl_seconds=self.config.RULE_CACHE_TTL_SECONDS,
        )

    def run_monthly(
        self,
        year_month: str,
        units: Optional[Sequence[Unit]] = None,
        rollup: bool = True,
    ) -> List[UnitResult]:
        """Roll up (optionally) and apply monthly slabs for every (user, store) of the month.

        Args:
            year_month: Month to process, YYYY-MM
            units: (user_id, store_id) pairs, or None for every unit with data
            rollup: Rebuild monthly aggregates from daily records first

        Returns:
            One result per unit, in input order
        """
        units = list(units) if units is not None else self._monthly_units(year_month)
        logger.info(f"Monthly incentive run {year_month}: {len(units)} units")

        def work(engine: IncentiveEngine, unit: Unit) -> Dict[str, Any]:
            user_id, store_id = unit
            if rollup:
                engine.rollup_month(user_id, store_id, year_month)
            outcome = engine.compute_monthly_slab(user_id, store_id, year_month)
            return {
                "payout_id": outcome.payout_id,
                "amount": outcome.incentive,
                "detail": {"slab_index": outcome.slab_index, "deduction": str(outcome.deduction)},
            }

        return self._run(units, work, year_month)

    def run_quarterly(
        self, year_month: str, user_ids: Optional[Sequence[str]] = None
    ) -> List[UnitResult]:
        user_ids = list(user_ids) if user_ids is not None else self._quarterly_users(year_month)
        logger.info(f"Quarterly evaluation run {year_month}: {len(user_ids)} users")

        def work(engine: IncentiveEngine, unit: Unit) -> Dict[str, Any]:
            outcome = engine.evaluate_quarter(unit[0], year_month)
            if outcome is None:
                return {"detail": {"evaluated": False}}
            return {
                "payout_id": outcome.payout_id,
                "amount": Decimal("0"),
                "detail": {
                    "evaluated": True,
                    "months_below_threshold": outcome.months_below_threshold,
                    "avg_revenue": str(outcome.avg_revenue),
                    "consequence": outcome.consequence.value if outcome.consequence else None,
                },
            }

        return self._run([(user_id, None) for user_id in user_ids], work, year_month)

    def _run(
        self,
        units: List[Unit],
        work: Callable[[IncentiveEngine, Unit], Dict[str, Any]],
        period_key: str,
    ) -> List[UnitResult]:
        if not units:
            return []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [
                executor.submit(self._process_unit, unit, work, period_key) for unit in units
            ]
            return [future.result() for future in futures]

    def _process_unit(
        self,
        unit: Unit,
        work: Callable[[IncentiveEngine, Unit], Dict[str, Any]],
        period_key: str,
    ) -> UnitResult:
        start_time = time.time()
        user_id, store_id = unit
        db = self.session_factory()

        try:
            engine = IncentiveEngine(
                db,
                clock=self.clock,
                notifier=self.notifier,
                config=self.config,
                rule_cache=self.rule_cache,
            )
            produced = work(engine, unit)
            return UnitResult(
                user_id=user_id,
                store_id=store_id,
                period_key=period_key,
                success=True,
                payout_id=produced.get("payout_id"),
                amount=produced.get("amount"),
                detail=produced.get("detail", {}),
                processing_time=time.time() - start_time,
            )

        except IncentiveException as e:
            logger.error(f"Incentive unit {user_id}/{store_id} {period_key} failed: {e.message}")
            return UnitResult(
                user_id=user_id,
                store_id=store_id,
                period_key=period_key,
                success=False,
                error_code=e.code,
                error_message=e.message,
                processing_time=time.time() - start_time,
            )
        except Exception as e:
            logger.error(f"Unexpected error for unit {user_id}/{store_id} {period_key}: {str(e)}")
            return UnitResult(
                user_id=user_id,
                store_id=store_id,
                period_key=period_key,
                success=False,
                error_code=IncentiveErrorCodes.UNEXPECTED,
                error_message=str(e),
                processing_time=time.time() - start_time,
            )
        finally:
            db.close()

    def _monthly_units(self, year_month: str) -> List[Unit]:
        start, end = month_bounds(year_month)
        db = self.session_factory()
        try:
            daily_units = (
                db.query(DailyPerformance.user_id, DailyPerformance.store_id)
                .filter(
                    DailyPerformance.performance_date >= start,
                    DailyPerformance.performance_date <= end,
                )
                .distinct()
                .all()
            )
            monthly_units = (
                db.query(MonthlyPerformance.user_id, MonthlyPerformance.store_id)
                .filter(MonthlyPerformance.year_month == year_month)
                .distinct()
                .all()
            )
        finally:
            db.close()
        return sorted({(u, s) for u, s in daily_units} | {(u, s) for u, s in monthly_units})

    def _quarterly_users(self, year_month: str) -> List[str]:
        months = preceding_months(year_month, QUARTERLY_LOOKBACK_MONTHS)
        db = self.session_factory()
        try:
            rows = (
                db.query(MonthlyPerformance.user_id)
                .filter(MonthlyPerformance.year_month.in_(months))
                .distinct()
                .all()
            )
        finally:
            db.close()
        return sorted(user_id for (user_id,) in rows)

    def get_batch_statistics(self, results: List[UnitResult]) -> Dict[str, Any]:
        """Calculate statistics from batch results.

        Args:
            results: List of unit results

        Returns:
            Dictionary of statistics
        """
        successful = [r for r in results if r.success]
        failed = [r for r in results if not r.success]

        total_amount = sum((r.amount or Decimal("0") for r in successful), Decimal("0"))
        avg_processing_time = (
            sum(r.processing_time for r in results) / len(results) if results else 0
        )
        errors_by_code: Dict[str, int] = {}
        for r in failed:
            errors_by_code[r.error_code] = errors_by_code.get(r.error_code, 0) + 1

        return {
            "total_processed": len(results),
            "successful_count": len(successful),
            "failed_count": len(failed),
            "total_amount": total_amount,
            "errors_by_code": errors_by_code,
            "average_processing_time": avg_processing_time,
            "success_rate": len(successful) / len(results) * 100 if results else 0,
        }
