# backend/modules/incentives/services/leaderboard.py

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional, Tuple, Union

from sqlalchemy import desc, distinct, func
from sqlalchemy.orm import Session

from ..enums.incentive_enums import (
    LeaderboardPeriod,
    LeaderboardScope,
    StaffLevel,
    TargetType,
)
from ..models.performance_models import DailyPerformance
from ..schemas.performance_schemas import LeaderboardEntry
from .period_utils import money

logger = logging.getLogger(__name__)

ALL_LEVELS = "ALL"

SCOPE_COLUMNS = {
    LeaderboardScope.USER: DailyPerformance.user_id,
    LeaderboardScope.STORE: DailyPerformance.store_id,
    LeaderboardScope.CITY: DailyPerformance.city,
    LeaderboardScope.STATE: DailyPerformance.state,
    LeaderboardScope.COUNTRY: DailyPerformance.country,
}

METRIC_COLUMNS = {
    TargetType.CUSTOMER_COUNT: DailyPerformance.customer_count,
    TargetType.REVENUE: DailyPerformance.revenue_pre_tax,
    TargetType.PRODUCT_UNITS: DailyPerformance.items_sold,
}


def period_range(period: LeaderboardPeriod, today: date) -> Tuple[date, date]:
    """Inclusive date range of a leaderboard period ending today."""
    if period == LeaderboardPeriod.DAILY:
        return today, today
    if period == LeaderboardPeriod.WEEKLY:
        return today - timedelta(days=6), today
    return today.replace(day=1), today


class LeaderboardAggregator:
    """
    Read-only rankings over daily performance records.

    Entities with equal metric values receive consecutive ranks ordered by
    their earliest contributing record; ranks are never shared.
    """

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = datetime.utcnow,
        default_limit: int = 100,
    ):
        self.db = db
        self.clock = clock
        self.default_limit = default_limit

    def leaderboard(
        self,
        scope: Union[LeaderboardScope, str],
        metric: Union[TargetType, str],
        level: Union[StaffLevel, str] = ALL_LEVELS,
        period: Union[LeaderboardPeriod, str] = LeaderboardPeriod.MONTHLY,
        limit: Optional[int] = None,
    ) -> List[LeaderboardEntry]:
        scope = LeaderboardScope(scope)
        metric = TargetType(metric)
        period = LeaderboardPeriod(period)
        start, end = period_range(period, self.clock().date())

        entity_col = SCOPE_COLUMNS[scope]
        metric_col = METRIC_COLUMNS[metric]
        metric_total = func.coalesce(func.sum(metric_col), 0).label("metric_value")
        first_record = func.min(DailyPerformance.id).label("first_record")

        query = self.db.query(
            entity_col.label("entity_id"),
            metric_total,
            func.count(distinct(DailyPerformance.user_id)).label("participants"),
            first_record,
        ).filter(
            DailyPerformance.performance_date >= start,
            DailyPerformance.performance_date <= end,
            entity_col.isnot(None),
        )

        if level != ALL_LEVELS:
            query = query.filter(DailyPerformance.user_level == StaffLevel(level).value)

        rows = (
            query.group_by(entity_col)
            .order_by(desc(metric_total), first_record)
            .limit(limit or self.default_limit)
            .all()
        )

        entries: List[LeaderboardEntry] = [
            LeaderboardEntry(
                rank=position,
                entity_id=str(row.entity_id),
                metric_value=(
                    money(row.metric_value)
                    if metric == TargetType.REVENUE
                    else Decimal(int(row.metric_value))
                ),
                participant_count=row.participants,
            )
            for position, row in enumerate(rows, start=1)
        ]
        logger.debug(
            f"Leaderboard {scope.value}/{metric.value}/{period.value} level {level}: "
            f"{len(entries)} entries from {start} to {end}"
        )
        return entries
