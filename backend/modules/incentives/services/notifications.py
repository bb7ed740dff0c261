# backend/modules/incentives/services/notifications.py

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from dataclasses import dataclass
from datetime import datetime
import logging

from ..models.payout_models import IncentivePayout
from ..schemas.performance_schemas import SpinOutcome

logger = logging.getLogger(__name__)


@dataclass
class IncentiveNotice:
    """Finished incentive event handed to delivery"""

    user_id: str
    subject: str
    message: str
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.utcnow()


class IncentiveNotifier(ABC):
    """
    Delivery channel for finished payouts and spin outcomes.

    Called only after the deciding transaction has committed; a notifier
    never influences a calculation.
    """

    @abstractmethod
    def send(self, notice: IncentiveNotice) -> bool:
        pass

    def payout_created(self, payout: IncentivePayout) -> bool:
        return self.send(
            IncentiveNotice(
                user_id=payout.user_id,
                subject=f"{payout.period.value.title()} incentive {payout.period_key}",
                message=f"{payout.amount} {payout.currency} is due to you",
                metadata={"payout_id": payout.payout_id, "status": payout.status.value},
            )
        )

    def spin_completed(self, outcome: SpinOutcome) -> bool:
        return self.send(
            IncentiveNotice(
                user_id=outcome.user_id,
                subject="Spin wheel result",
                message=f"You won {outcome.label}",
                metadata={"spin_id": outcome.spin_id, "payout_id": outcome.payout_id},
            )
        )


class LoggingNotifier(IncentiveNotifier):
    """Default notifier; writes notices to the log"""

    def send(self, notice: IncentiveNotice) -> bool:
        logger.info(
            f"Incentive notice for user {notice.user_id}: {notice.subject} - {notice.message}"
        )
        return True
