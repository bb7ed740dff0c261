# backend/modules/incentives/services/spin_wheel.py

"""
Spin-Wheel Engine.

Caps are enforced with one conditional UPDATE per window
(``spin_count = spin_count + 1 WHERE spin_count < cap``); the draw only
happens after both windows granted a spin, all within one transaction.
"""

import logging
import random
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..enums.incentive_enums import (
    ComponentType,
    PayoutPeriod,
    RuleKind,
    SpinUnlockReason,
    SpinWindow,
)
from ..exceptions import IncentiveException, SpinCapExceeded
from ..models.performance_models import SpinCounter, SpinRecord
from ..schemas.performance_schemas import BreakdownLine, SpinOutcome
from ..schemas.rule_schemas import SpinReward, SpinWheelPayload
from .audit_service import IncentiveAuditService
from .payout_ledger import PayoutLedger
from .period_utils import money
from .rule_store import RuleStore

logger = logging.getLogger(__name__)


def draw_reward(
    rewards: Sequence[SpinReward], rng: random.Random
) -> Tuple[SpinReward, float, bool]:
    """
    Pick a reward by cumulative probability.

    Returns (reward, draw, fallback_used). When the draw lies above the
    sum of all probabilities the first reward is returned.
    """
    r = rng.random()
    cumulative = 0.0
    for reward in rewards:
        cumulative += reward.probability
        if cumulative >= r:
            return reward, r, False

    logger.warning(
        f"Spin draw {r:.6f} exceeds total probability {cumulative:.6f}; "
        f"falling back to '{rewards[0].label}'. Check the spin wheel configuration."
    )
    return rewards[0], r, True


class SpinWheelEngine:
    def __init__(
        self,
        db: Session,
        rule_store: RuleStore,
        ledger: PayoutLedger,
        audit: IncentiveAuditService,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.rule_store = rule_store
        self.ledger = ledger
        self.audit = audit
        self.rng = rng or random.Random()
        self.clock = clock

    def spin(
        self,
        user_id: str,
        reason: SpinUnlockReason,
        store_id: Optional[str] = None,
    ) -> SpinOutcome:
        """
        Draw one reward for the user.

        Raises:
            NoActiveRule: no spin wheel is configured
            SpinCapExceeded: the daily or monthly cap is used up; nothing is drawn
        """
        reason = SpinUnlockReason(reason)
        now = self.clock()

        try:
            rule = self.rule_store.require_active_rule(RuleKind.SPIN_WHEEL, at=now)
            payload: SpinWheelPayload = rule.typed_payload()

            self._claim(user_id, SpinWindow.DAY, now.strftime("%Y-%m-%d"), payload.daily_spin_cap)
            self._claim(user_id, SpinWindow.MONTH, now.strftime("%Y-%m"), payload.monthly_spin_cap)

            reward, r, fallback = draw_reward(payload.rewards, self.rng)
            spin_id = f"SPIN-{uuid.uuid4().hex[:20]}"
            value = money(reward.value)

            payout = None
            if value > 0:
                payout = self.ledger.create_payout(
                    user_id=user_id,
                    store_id=store_id,
                    period=PayoutPeriod.DAILY,
                    period_key=f"{now.date().isoformat()}#{spin_id}",
                    breakdown=[
                        BreakdownLine(
                            rule_id=rule.rule_id,
                            component=ComponentType.SPIN,
                            amount=value,
                            note=f"{reward.type.value}: {reward.label}",
                        )
                    ],
                    source_rule_ids=[rule.rule_id],
                )

            self.db.add(
                SpinRecord(
                    spin_id=spin_id,
                    user_id=user_id,
                    store_id=store_id,
                    rule_id=rule.rule_id,
                    spun_at=now,
                    unlocked_by=reason,
                    reward_type=reward.type,
                    reward_value=value,
                    reward_label=reward.label,
                    draw=Decimal(str(round(r, 9))),
                    fallback_used=fallback,
                    payout_id=payout.payout_id if payout else None,
                )
            )
            outcome = SpinOutcome(
                spin_id=spin_id,
                user_id=user_id,
                rule_id=rule.rule_id,
                reward_type=reward.type,
                value=value,
                label=reward.label,
                unlocked_by=reason,
                fallback_used=fallback,
                payout_id=payout.payout_id if payout else None,
            )
            self.audit.record(
                action="SPIN_COMPLETED",
                entity_type="spin",
                entity_id=spin_id,
                new_values=outcome.model_dump(),
            )
            self.db.commit()

        except Exception as e:
            self.db.rollback()
            if isinstance(e, IncentiveException):
                e.with_context(user_id=user_id, period=now.date())
            if isinstance(e, SpinCapExceeded):
                logger.info(f"Spin refused for {user_id}: {e.message}")
            else:
                logger.error(f"Spin failed for {user_id}: {e}")
            self.audit.record_failure("SPIN_FAILED", e, "spin", user_id)
            raise

        logger.info(f"User {user_id} spun {outcome.label} ({outcome.reward_type.value} {value})")
        return outcome

    def _claim(self, user_id: str, window: SpinWindow, window_key: str, cap: int) -> None:
        self._ensure_counter(user_id, window, window_key)
        claimed = (
            self.db.query(SpinCounter)
            .filter(
                SpinCounter.user_id == user_id,
                SpinCounter.window_type == window,
                SpinCounter.window_key == window_key,
                SpinCounter.spin_count < cap,
            )
            .update(
                {SpinCounter.spin_count: SpinCounter.spin_count + 1},
                synchronize_session=False,
            )
        )
        if claimed == 0:
            raise SpinCapExceeded(window.value, cap, user_id)

    def _ensure_counter(self, user_id: str, window: SpinWindow, window_key: str) -> None:
        exists = (
            self.db.query(SpinCounter.id)
            .filter(
                SpinCounter.user_id == user_id,
                SpinCounter.window_type == window,
                SpinCounter.window_key == window_key,
            )
            .first()
        )
        if exists:
            return
        try:
            with self.db.begin_nested():
                self.db.add(
                    SpinCounter(
                        user_id=user_id, window_type=window, window_key=window_key, spin_count=0
                    )
                )
                self.db.flush()
        except IntegrityError:
            logger.debug(f"Spin counter {user_id}/{window.value}/{window_key} created concurrently")

    def get_spin_history(
        self,
        user_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: int = 100,
    ) -> List[SpinRecord]:
        query = self.db.query(SpinRecord).filter(SpinRecord.user_id == user_id)
        if start:
            query = query.filter(SpinRecord.spun_at >= datetime.combine(start, datetime.min.time()))
        if end:
            query = query.filter(SpinRecord.spun_at <= datetime.combine(end, datetime.max.time()))
        return query.order_by(SpinRecord.spun_at.desc(), SpinRecord.id.desc()).limit(limit).all()
