from .rule_models import IncentiveRule, DEFAULT_SCOPE
from .performance_models import (
    DailyPerformance,
    MonthlyPerformance,
    SpinRecord,
    SpinCounter,
)
from .payout_models import IncentivePayout, PayoutLineItem
from .audit_models import IncentiveAuditLog

__all__ = [
    "IncentiveRule",
    "DEFAULT_SCOPE",
    "DailyPerformance",
    "MonthlyPerformance",
    "SpinRecord",
    "SpinCounter",
    "IncentivePayout",
    "PayoutLineItem",
    "IncentiveAuditLog",
]
