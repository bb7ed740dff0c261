# backend/modules/incentives/services/payout_ledger.py

"""
Payout ledger.

Owns every IncentivePayout row. Creation is idempotent on a key derived
from (user, period kind, period key, source rule ids); the only changes
after insert are DUE -> PAID and DUE -> VOID.
"""

import hashlib
import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..enums.incentive_enums import PayoutPeriod, PayoutStatus
from ..exceptions import InvalidTransition, PayoutNotFound
from ..models.payout_models import IncentivePayout, PayoutLineItem
from ..schemas.performance_schemas import BreakdownLine, PayoutFilters
from .audit_service import IncentiveAuditService
from .period_utils import money

logger = logging.getLogger(__name__)

SUPERSEDED = "SUPERSEDED"


class PayoutLedger:
    def __init__(
        self,
        db: Session,
        audit: IncentiveAuditService,
        clock: Callable[[], datetime] = datetime.utcnow,
        currency: str = "INR",
    ):
        self.db = db
        self.audit = audit
        self.clock = clock
        self.currency = currency

    @staticmethod
    def generate_idempotency_key(
        user_id: str, period: PayoutPeriod, period_key: str, rule_ids: Iterable[str]
    ) -> str:
        """Generate the idempotency key of a payout"""
        key_data = {
            "user_id": user_id,
            "period": PayoutPeriod(period).value,
            "period_key": period_key,
            "rule_ids": sorted(set(rule_ids)),
        }
        key_string = json.dumps(key_data, sort_keys=True)
        return hashlib.sha256(key_string.encode()).hexdigest()

    @staticmethod
    def payout_id_for(period: PayoutPeriod, key: str, revision: int = 1) -> str:
        payout_id = f"PAY-{PayoutPeriod(period).value}-{key[:16]}"
        if revision > 1:
            payout_id += f"-R{revision}"
        return payout_id

    def create_payout(
        self,
        user_id: str,
        store_id: Optional[str],
        period: PayoutPeriod,
        period_key: str,
        breakdown: Sequence[BreakdownLine],
        currency: Optional[str] = None,
        source_rule_ids: Optional[Iterable[str]] = None,
    ) -> Optional[IncentivePayout]:
        """
        Record the payout of one (user, store, period, period_key) unit.

        Runs inside the caller's transaction and never commits. An identical
        call returns the existing payout. A changed result voids the unit's
        DUE payouts as SUPERSEDED and inserts a new revision; a PAID payout is
        never restated. An empty breakdown records nothing and retires any
        DUE payout of the unit.
        """
        period = PayoutPeriod(period)
        lines = [self._normalize(line) for line in breakdown]
        rule_ids = sorted(set(source_rule_ids or []) | {line.rule_id for line in lines})
        key = self.generate_idempotency_key(user_id, period, period_key, rule_ids)
        amount = money(sum((line.amount for line in lines), Decimal("0")))

        latest = self._latest_for_key(key)
        if (
            latest is not None
            and self._same_content(latest, amount, lines)
            and not self._was_superseded(latest)
        ):
            return latest

        unit_payouts = self._unit_payouts(user_id, store_id, period, period_key)
        paid = [p for p in unit_payouts if p.status == PayoutStatus.PAID]
        if paid:
            logger.warning(
                f"Payout {paid[0].payout_id} already PAID for {user_id} "
                f"{period.value} {period_key}; recalculated amount {amount} not restated"
            )
            self.audit.record(
                action="PAYOUT_RESTATEMENT_REJECTED",
                entity_type="payout",
                entity_id=paid[0].payout_id,
                new_values={"amount": amount, "rule_ids": rule_ids},
                metadata={"user_id": user_id, "period": period, "period_key": period_key},
            )
            return paid[0]

        for stale in unit_payouts:
            if stale.status == PayoutStatus.DUE:
                self._void_in_transaction(stale, SUPERSEDED, self.audit.default_actor)

        if not lines:
            return None

        revision = (latest.revision + 1) if latest is not None else 1
        payout = IncentivePayout(
            payout_id=self.payout_id_for(period, key, revision),
            idempotency_key=key,
            revision=revision,
            user_id=user_id,
            store_id=store_id,
            period=period,
            period_key=period_key,
            amount=amount,
            currency=currency or self.currency,
            source_rule_ids=",".join(rule_ids),
            status=PayoutStatus.DUE,
            lines=[
                PayoutLineItem(
                    position=position,
                    rule_id=line.rule_id,
                    component=line.component,
                    amount=line.amount,
                    note=line.note,
                )
                for position, line in enumerate(lines)
            ],
        )

        try:
            with self.db.begin_nested():
                self.db.add(payout)
                self.db.flush()
        except IntegrityError:
            # Another worker inserted this revision first
            existing = (
                self.db.query(IncentivePayout)
                .filter(
                    IncentivePayout.idempotency_key == key,
                    IncentivePayout.revision == revision,
                )
                .first()
            )
            if existing is None:
                raise
            logger.info(f"Payout {existing.payout_id} created concurrently; reusing it")
            return existing

        self.audit.record(
            action="PAYOUT_CREATED",
            entity_type="payout",
            entity_id=payout.payout_id,
            new_values={
                "amount": amount,
                "status": PayoutStatus.DUE,
                "revision": revision,
                "lines": [line.model_dump() for line in lines],
            },
            metadata={"user_id": user_id, "period": period, "period_key": period_key},
        )
        logger.info(
            f"Created payout {payout.payout_id} for user {user_id}: "
            f"{period.value} {period_key} amount {amount}"
        )
        return payout

    # Status transitions -------------------------------------------------

    def mark_paid(
        self, payout_id: str, actor: str, export_ref: Optional[str] = None
    ) -> IncentivePayout:
        return self._transition(
            payout_id, PayoutStatus.PAID, actor, "PAYOUT_PAID", export_ref=export_ref
        )

    def void(self, payout_id: str, actor: str, reason: str) -> IncentivePayout:
        return self._transition(payout_id, PayoutStatus.VOID, actor, "PAYOUT_VOIDED", reason)

    def cancel(self, payout_id: str, actor: str, reason: str) -> IncentivePayout:
        """Withdraw a payout before settlement; recorded as VOID"""
        return self._transition(
            payout_id, PayoutStatus.VOID, actor, "PAYOUT_CANCELLED", reason
        )

    def _transition(
        self,
        payout_id: str,
        target: PayoutStatus,
        actor: str,
        action: str,
        reason: Optional[str] = None,
        export_ref: Optional[str] = None,
    ) -> IncentivePayout:
        try:
            payout = self.get_payout(payout_id)
            values: Dict[Any, Any] = {
                IncentivePayout.status: target,
                IncentivePayout.status_changed_by: actor,
                IncentivePayout.status_changed_at: self.clock(),
            }
            if reason is not None:
                values[IncentivePayout.status_reason] = reason
            if export_ref is not None:
                values[IncentivePayout.export_ref] = export_ref

            updated = (
                self.db.query(IncentivePayout)
                .filter(
                    IncentivePayout.payout_id == payout_id,
                    IncentivePayout.status == PayoutStatus.DUE,
                )
                .update(values, synchronize_session=False)
            )
            if updated == 0:
                self.db.refresh(payout)
                raise InvalidTransition(payout_id, payout.status.value, target.value)

            self.audit.record(
                action=action,
                entity_type="payout",
                entity_id=payout_id,
                old_values={"status": PayoutStatus.DUE},
                new_values={"status": target, "reason": reason, "export_ref": export_ref},
                actor=actor,
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to move payout {payout_id} to {target.value}: {e}")
            self.audit.record_failure(
                f"{action}_FAILED", e, entity_type="payout", entity_id=payout_id, actor=actor
            )
            raise

        self.db.refresh(payout)
        return payout

    def _void_in_transaction(self, payout: IncentivePayout, reason: str, actor: str) -> None:
        payout.status = PayoutStatus.VOID
        payout.status_reason = reason
        payout.status_changed_by = actor
        payout.status_changed_at = self.clock()
        self.audit.record(
            action="PAYOUT_VOIDED",
            entity_type="payout",
            entity_id=payout.payout_id,
            old_values={"status": PayoutStatus.DUE},
            new_values={"status": PayoutStatus.VOID, "reason": reason},
            actor=actor,
        )
        logger.info(f"Voided payout {payout.payout_id}: {reason}")

    # Reads --------------------------------------------------------------

    def get_payout(self, payout_id: str) -> IncentivePayout:
        payout = (
            self.db.query(IncentivePayout)
            .filter(IncentivePayout.payout_id == payout_id)
            .first()
        )
        if not payout:
            raise PayoutNotFound(payout_id)
        return payout

    def get_payouts(
        self, user_id: str, filters: Optional[PayoutFilters] = None
    ) -> List[IncentivePayout]:
        filters = filters or PayoutFilters()
        query = self.db.query(IncentivePayout).filter(IncentivePayout.user_id == user_id)

        if filters.period:
            query = query.filter(IncentivePayout.period == filters.period)
        if filters.period_key:
            query = query.filter(IncentivePayout.period_key == filters.period_key)
        if filters.status:
            query = query.filter(IncentivePayout.status == filters.status)
        if filters.store_id:
            query = query.filter(IncentivePayout.store_id == filters.store_id)
        if filters.created_from:
            query = query.filter(IncentivePayout.created_at >= filters.created_from)
        if filters.created_to:
            query = query.filter(IncentivePayout.created_at <= filters.created_to)

        return query.order_by(IncentivePayout.id).limit(filters.limit).all()

    def payout_summary(self, user_id: str) -> Dict[str, Dict[str, Any]]:
        """Count and amount of a user's payouts per status"""
        rows = (
            self.db.query(
                IncentivePayout.status,
                func.count(IncentivePayout.id),
                func.sum(IncentivePayout.amount),
            )
            .filter(IncentivePayout.user_id == user_id)
            .group_by(IncentivePayout.status)
            .all()
        )
        summary = {
            status.value: {"count": 0, "amount": Decimal("0.00")} for status in PayoutStatus
        }
        for status, count, amount in rows:
            summary[PayoutStatus(status).value] = {
                "count": count,
                "amount": money(amount or 0),
            }
        return summary

    # Internals ----------------------------------------------------------

    def _latest_for_key(self, key: str) -> Optional[IncentivePayout]:
        return (
            self.db.query(IncentivePayout)
            .filter(IncentivePayout.idempotency_key == key)
            .order_by(IncentivePayout.revision.desc())
            .first()
        )

    def _unit_payouts(
        self, user_id: str, store_id: Optional[str], period: PayoutPeriod, period_key: str
    ) -> List[IncentivePayout]:
        query = self.db.query(IncentivePayout).filter(
            IncentivePayout.user_id == user_id,
            IncentivePayout.period == period,
            IncentivePayout.period_key == period_key,
            IncentivePayout.status != PayoutStatus.VOID,
        )
        if store_id is None:
            query = query.filter(IncentivePayout.store_id.is_(None))
        else:
            query = query.filter(IncentivePayout.store_id == store_id)
        return query.order_by(IncentivePayout.id).all()

    @staticmethod
    def _was_superseded(payout: IncentivePayout) -> bool:
        # A later recalculation replaced it; an identical result must be reissued
        return payout.status == PayoutStatus.VOID and payout.status_reason == SUPERSEDED

    @staticmethod
    def _normalize(line: BreakdownLine) -> BreakdownLine:
        return line.model_copy(update={"amount": money(line.amount)})

    @staticmethod
    def _same_content(
        payout: IncentivePayout, amount: Decimal, lines: List[BreakdownLine]
    ) -> bool:
        if money(payout.amount) != amount or len(payout.lines) != len(lines):
            return False
        for stored, line in zip(payout.lines, lines):
            if (
                stored.rule_id != line.rule_id
                or stored.component != line.component
                or money(stored.amount) != line.amount
                or (stored.note or None) != (line.note or None)
            ):
                return False
        return True
