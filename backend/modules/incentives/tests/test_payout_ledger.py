# backend/modules/incentives/tests/test_payout_ledger.py

"""
Tests for the payout ledger: idempotent creation, restatement and
status transitions.
"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from modules.incentives.enums.incentive_enums import (
    ComponentType,
    PayoutPeriod,
    PayoutStatus,
)
from modules.incentives.exceptions import InvalidTransition, PayoutNotFound
from modules.incentives.models.audit_models import IncentiveAuditLog
from modules.incentives.models.payout_models import IncentivePayout
from modules.incentives.schemas.performance_schemas import BreakdownLine, PayoutFilters
from modules.incentives.services.audit_service import IncentiveAuditService
from modules.incentives.services.payout_ledger import PayoutLedger

from .conftest import NOW


def line(amount, rule_id="DAILY_TARGET:CUSTOMER_COUNT:v1", component=ComponentType.DAILY_CUSTOMER):
    return BreakdownLine(rule_id=rule_id, component=component, amount=Decimal(amount))


@pytest.fixture
def create(db_session, ledger):
    """Create a daily payout for U1 at S001 and commit it."""

    def create_payout(breakdown, period_key="2024-05-15", user_id="U1", period=PayoutPeriod.DAILY):
        payout = ledger.create_payout(
            user_id=user_id,
            store_id="S001",
            period=period,
            period_key=period_key,
            breakdown=breakdown,
        )
        db_session.commit()
        return payout

    return create_payout


class TestIdempotencyKey:
    def test_key_ignores_rule_order_and_duplicates(self):
        first = PayoutLedger.generate_idempotency_key("U1", PayoutPeriod.DAILY, "2024-05-15", ["b", "a"])
        second = PayoutLedger.generate_idempotency_key("U1", "DAILY", "2024-05-15", ["a", "b", "a"])
        assert first == second

    def test_key_depends_on_unit(self):
        base = PayoutLedger.generate_idempotency_key("U1", PayoutPeriod.DAILY, "2024-05-15", ["a"])
        assert base != PayoutLedger.generate_idempotency_key("U2", PayoutPeriod.DAILY, "2024-05-15", ["a"])
        assert base != PayoutLedger.generate_idempotency_key("U1", PayoutPeriod.MONTHLY, "2024-05-15", ["a"])
        assert base != PayoutLedger.generate_idempotency_key("U1", PayoutPeriod.DAILY, "2024-05-16", ["a"])

    def test_payout_id_revision_suffix(self):
        key = "f" * 64
        assert PayoutLedger.payout_id_for(PayoutPeriod.DAILY, key) == f"PAY-DAILY-{'f' * 16}"
        assert PayoutLedger.payout_id_for(PayoutPeriod.DAILY, key, 3).endswith("-R3")


class TestCreatePayout:
    def test_creates_due_payout_with_lines(self, create):
        payout = create([line("100"), line("20.005", "TELESALES:DEFAULT:v1", ComponentType.TELE)])

        assert payout.status == PayoutStatus.DUE
        assert payout.revision == 1
        assert payout.amount == Decimal("120.01")
        assert payout.currency == "INR"
        assert [l.position for l in payout.lines] == [0, 1]
        assert payout.rule_ids == ["DAILY_TARGET:CUSTOMER_COUNT:v1", "TELESALES:DEFAULT:v1"]

    def test_identical_call_returns_existing(self, db_session, create):
        first = create([line("100")])
        second = create([line("100")])

        assert first.payout_id == second.payout_id
        assert db_session.query(IncentivePayout).count() == 1

    def test_changed_amount_supersedes(self, db_session, create):
        first = create([line("100")])
        second = create([line("250")])

        db_session.refresh(first)
        assert first.status == PayoutStatus.VOID
        assert first.status_reason == "SUPERSEDED"
        assert second.revision == 2
        assert second.payout_id.endswith("-R2")
        assert second.status == PayoutStatus.DUE

    def test_reverting_reissues_superseded_content(self, db_session, create):
        create([line("100")])
        create([line("250")])
        third = create([line("100")])

        assert third.revision == 3
        assert third.status == PayoutStatus.DUE
        live = (
            db_session.query(IncentivePayout)
            .filter(IncentivePayout.status == PayoutStatus.DUE)
            .all()
        )
        assert [p.payout_id for p in live] == [third.payout_id]

    def test_changed_rules_supersede_other_key(self, db_session, create):
        first = create([line("100")])
        second = create([line("100", "DAILY_TARGET:CUSTOMER_COUNT:v2")])

        db_session.refresh(first)
        assert first.status == PayoutStatus.VOID
        assert second.revision == 1
        assert second.idempotency_key != first.idempotency_key

    def test_paid_payout_is_not_restated(self, db_session, ledger, create):
        first = create([line("100")])
        ledger.mark_paid(first.payout_id, actor="finance@example.com")

        again = create([line("300")])

        assert again.payout_id == first.payout_id
        assert again.status == PayoutStatus.PAID
        assert again.amount == Decimal("100.00")
        assert (
            db_session.query(IncentiveAuditLog)
            .filter(IncentiveAuditLog.action == "PAYOUT_RESTATEMENT_REJECTED")
            .count()
            == 1
        )

    def test_empty_breakdown_retires_due_payout(self, db_session, create):
        first = create([line("100")])

        assert create([]) is None

        db_session.refresh(first)
        assert first.status == PayoutStatus.VOID

    def test_empty_breakdown_without_history(self, db_session, create):
        assert create([]) is None
        assert db_session.query(IncentivePayout).count() == 0

    def test_units_are_independent(self, db_session, create):
        create([line("100")], period_key="2024-05-15")
        create([line("100")], period_key="2024-05-16")
        create([line("100")], user_id="U2")

        assert (
            db_session.query(IncentivePayout)
            .filter(IncentivePayout.status == PayoutStatus.DUE)
            .count()
            == 3
        )


class TestTransitions:
    def test_mark_paid(self, db_session, ledger, create):
        payout = create([line("100")])

        paid = ledger.mark_paid(payout.payout_id, actor="finance@example.com", export_ref="NEFT-42")

        assert paid.status == PayoutStatus.PAID
        assert paid.export_ref == "NEFT-42"
        assert paid.status_changed_by == "finance@example.com"
        assert (
            db_session.query(IncentiveAuditLog)
            .filter(IncentiveAuditLog.action == "PAYOUT_PAID")
            .one()
            .entity_id
            == payout.payout_id
        )

    def test_paid_is_terminal(self, ledger, create):
        payout = create([line("100")])
        ledger.mark_paid(payout.payout_id, actor="finance@example.com")

        with pytest.raises(InvalidTransition) as exc_info:
            ledger.void(payout.payout_id, actor="finance@example.com", reason="late")
        assert exc_info.value.current == "PAID"

        with pytest.raises(InvalidTransition):
            ledger.mark_paid(payout.payout_id, actor="finance@example.com")

    def test_void_due_payout(self, ledger, create):
        payout = create([line("100")])

        voided = ledger.void(payout.payout_id, actor="ops@example.com", reason="Duplicate event")

        assert voided.status == PayoutStatus.VOID
        assert voided.status_reason == "Duplicate event"

        with pytest.raises(InvalidTransition):
            ledger.mark_paid(payout.payout_id, actor="finance@example.com")

    def test_cancel_records_void(self, db_session, incentive_engine, create):
        payout = create([line("100")])

        cancelled = incentive_engine.cancel_payout(payout.payout_id, "ops@example.com", "Store closed")

        assert cancelled.status == PayoutStatus.VOID
        assert (
            db_session.query(IncentiveAuditLog)
            .filter(IncentiveAuditLog.action == "PAYOUT_CANCELLED")
            .count()
            == 1
        )

    def test_unknown_payout(self, ledger):
        with pytest.raises(PayoutNotFound):
            ledger.mark_paid("PAY-DAILY-missing", actor="finance@example.com")


class TestReadPaths:
    def test_get_payouts_filters(self, ledger, create):
        daily = create([line("100")])
        monthly = create(
            [line("5000", "MONTHLY_SLAB:DEFAULT:v1", ComponentType.SLAB)],
            period=PayoutPeriod.MONTHLY,
            period_key="2024-05",
        )
        ledger.mark_paid(daily.payout_id, actor="finance@example.com")

        due = ledger.get_payouts("U1", PayoutFilters(status=PayoutStatus.DUE))
        monthly_only = ledger.get_payouts("U1", PayoutFilters(period=PayoutPeriod.MONTHLY))

        assert [p.payout_id for p in due] == [monthly.payout_id]
        assert [p.payout_id for p in monthly_only] == [monthly.payout_id]
        assert len(ledger.get_payouts("U1")) == 2
        assert ledger.get_payouts("U2") == []

    def test_payout_summary(self, ledger, create):
        first = create([line("100")], period_key="2024-05-14")
        create([line("40")], period_key="2024-05-15")
        ledger.mark_paid(first.payout_id, actor="finance@example.com")

        summary = ledger.payout_summary("U1")

        assert summary["PAID"] == {"count": 1, "amount": Decimal("100.00")}
        assert summary["DUE"] == {"count": 1, "amount": Decimal("40.00")}
        assert summary["VOID"]["count"] == 0


class TestConcurrentCreation:
    def test_ten_workers_create_one_payout(self, file_session_factory):
        def create_in_own_session(_):
            db = file_session_factory()
            try:
                ledger = PayoutLedger(db, IncentiveAuditService(db, clock=lambda: NOW), clock=lambda: NOW)
                payout = ledger.create_payout(
                    user_id="U1",
                    store_id="S001",
                    period=PayoutPeriod.DAILY,
                    period_key="2024-05-15",
                    breakdown=[line("100")],
                )
                db.commit()
                return payout.payout_id
            finally:
                db.close()

        with ThreadPoolExecutor(max_workers=10) as executor:
            payout_ids = list(executor.map(create_in_own_session, range(10)))

        assert len(set(payout_ids)) == 1

        check = file_session_factory()
        try:
            payouts = check.query(IncentivePayout).all()
            assert len(payouts) == 1
            assert payouts[0].status == PayoutStatus.DUE
            assert payouts[0].revision == 1
        finally:
            check.close()
