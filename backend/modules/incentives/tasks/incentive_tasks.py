# backend/modules/incentives/tasks/incentive_tasks.py

"""Celery tasks for the scheduled incentive runs."""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from celery.utils.log import get_task_logger

from core.database import SessionLocal
from .celery_config import celery_app
from ..services.batch_service import IncentiveBatchService
from ..services.period_utils import preceding_months, year_month_of

logger = get_task_logger(__name__)


def previous_year_month(today: Optional[date] = None) -> str:
    """Month that closed before ``today``."""
    today = today or datetime.utcnow().date()
    return preceding_months(year_month_of(today), 1)[0]


def _summarize(service: IncentiveBatchService, results) -> Dict[str, Any]:
    stats = service.get_batch_statistics(results)
    stats["total_amount"] = str(stats["total_amount"])
    stats["failures"] = [
        {
            "user_id": r.user_id,
            "store_id": r.store_id,
            "error_code": r.error_code,
            "error_message": r.error_message,
        }
        for r in results
        if not r.success
    ]
    return stats


@celery_app.task(bind=True, name="incentives.run_monthly", max_retries=3)
def run_monthly_incentives(self, year_month: Optional[str] = None, rollup: bool = True):
    """Apply monthly slabs to every unit of the month (previous month by default)."""
    year_month = year_month or previous_year_month()
    logger.info(f"Starting monthly incentive run for {year_month}")

    try:
        service = IncentiveBatchService(SessionLocal)
        results = service.run_monthly(year_month, rollup=rollup)
    except Exception as e:
        logger.error(f"Monthly incentive run {year_month} aborted: {str(e)}")
        raise self.retry(exc=e, countdown=60 * (2**self.request.retries))

    summary = _summarize(service, results)
    logger.info(
        f"Completed monthly incentive run {year_month}: "
        f"{summary['successful_count']}/{summary['total_processed']} units succeeded"
    )
    return summary


@celery_app.task(bind=True, name="incentives.run_quarterly", max_retries=3)
def run_quarterly_evaluation(
    self, year_month: Optional[str] = None, user_ids: Optional[List[str]] = None
):
    """Evaluate non-performance over the window preceding ``year_month`` (current month by default)."""
    year_month = year_month or year_month_of(datetime.utcnow().date())
    logger.info(f"Starting quarterly evaluation for {year_month}")

    try:
        service = IncentiveBatchService(SessionLocal)
        results = service.run_quarterly(year_month, user_ids=user_ids)
    except Exception as e:
        logger.error(f"Quarterly evaluation {year_month} aborted: {str(e)}")
        raise self.retry(exc=e, countdown=60 * (2**self.request.retries))

    summary = _summarize(service, results)
    logger.info(
        f"Completed quarterly evaluation {year_month}: "
        f"{summary['successful_count']}/{summary['total_processed']} users evaluated"
    )
    return summary
