# backend/modules/incentives/tests/test_monthly_calculator.py

"""
Tests for the monthly slab calculation and the monthly roll-up.
"""

import pytest
from datetime import date
from decimal import Decimal

from modules.incentives.enums.incentive_enums import PayoutPeriod, RuleKind
from modules.incentives.exceptions import (
    MonthlyPerformanceNotFound,
    NoActiveRule,
    NoApplicableSlab,
)
from modules.incentives.models.payout_models import IncentivePayout

from .factories import (
    DailyPerformanceFactory,
    MonthlyPerformanceFactory,
    MonthlySlabPayloadFactory,
)


@pytest.fixture
def slab_rule(publish_rule):
    return publish_rule(RuleKind.MONTHLY_SLAB, MonthlySlabPayloadFactory())


class TestMonthlySlab:
    def test_revenue_above_threshold_gets_full_slab(
        self, incentive_engine, ledger, slab_rule
    ):
        MonthlyPerformanceFactory(user_id="U1", total_revenue_pre_tax=Decimal("150000"))

        outcome = incentive_engine.compute_monthly_slab("U1", "S001", "2024-05")

        assert outcome.slab_index == 1
        assert outcome.incentive == Decimal("5000.00")
        assert outcome.deduction == Decimal("0")
        assert outcome.rule_id == slab_rule.rule_id

        payout = ledger.get_payout(outcome.payout_id)
        assert payout.period == PayoutPeriod.MONTHLY
        assert payout.period_key == "2024-05"
        assert payout.amount == Decimal("5000.00")

    def test_percentage_deduction_never_goes_negative(self, incentive_engine, ledger, slab_rule):
        MonthlyPerformanceFactory(user_id="U1", total_revenue_pre_tax=Decimal("90000"))

        outcome = incentive_engine.compute_monthly_slab("U1", "S001", "2024-05")

        # 10% of 90000 exceeds the 2000 slab incentive
        assert outcome.slab_index == 0
        assert outcome.deduction == Decimal("2000.00")
        assert outcome.incentive == Decimal("0.00")
        payout = ledger.get_payout(outcome.payout_id)
        assert payout.amount == Decimal("0.00")
        assert [line.amount for line in payout.lines] == [Decimal("2000.00"), Decimal("-2000.00")]

    def test_flat_deduction(self, incentive_engine, publish_rule):
        publish_rule(
            RuleKind.MONTHLY_SLAB,
            MonthlySlabPayloadFactory(
                under_performance_deduction={
                    "threshold": 95000,
                    "amount_or_pct": 500,
                    "is_percentage": False,
                }
            ),
        )
        MonthlyPerformanceFactory(user_id="U1", total_revenue_pre_tax=Decimal("90000"))

        outcome = incentive_engine.compute_monthly_slab("U1", "S001", "2024-05")

        assert outcome.incentive == Decimal("1500.00")

    def test_shared_boundary_belongs_to_lower_slab(self, incentive_engine, slab_rule):
        MonthlyPerformanceFactory(user_id="U1", total_revenue_pre_tax=Decimal("100000"))

        outcome = incentive_engine.compute_monthly_slab("U1", "S001", "2024-05")

        assert outcome.slab_index == 0

    def test_salary_adjustment_reported(self, incentive_engine, publish_rule):
        publish_rule(
            RuleKind.MONTHLY_SLAB,
            MonthlySlabPayloadFactory(
                slabs=[
                    {"min_sales": 0, "max_sales": None, "base_salary_adj": -1000, "incentive_amount": 0}
                ],
                under_performance_deduction=None,
            ),
        )
        MonthlyPerformanceFactory(user_id="U1", total_revenue_pre_tax=Decimal("20000"))

        outcome = incentive_engine.compute_monthly_slab("U1", "S001", "2024-05")

        assert outcome.salary_adjustment == Decimal("-1000.00")
        assert outcome.incentive == Decimal("0.00")
        assert outcome.payout_id is None

    def test_revenue_below_every_slab(self, incentive_engine, publish_rule):
        publish_rule(
            RuleKind.MONTHLY_SLAB,
            MonthlySlabPayloadFactory(
                slabs=[{"min_sales": 50000, "max_sales": None, "incentive_amount": 1000}],
                under_performance_deduction=None,
            ),
        )
        MonthlyPerformanceFactory(user_id="U1", total_revenue_pre_tax=Decimal("10000"))

        with pytest.raises(NoApplicableSlab):
            incentive_engine.compute_monthly_slab("U1", "S001", "2024-05")

    def test_missing_monthly_record(self, incentive_engine, slab_rule):
        with pytest.raises(MonthlyPerformanceNotFound) as exc_info:
            incentive_engine.compute_monthly_slab("U404", "S001", "2024-05")

        assert exc_info.value.context["user_id"] == "U404"

    def test_no_slab_rule(self, incentive_engine):
        MonthlyPerformanceFactory(user_id="U1")

        with pytest.raises(NoActiveRule):
            incentive_engine.compute_monthly_slab("U1", "S001", "2024-05")

    def test_rerun_appends_history_and_reuses_payout(
        self, db_session, incentive_engine, slab_rule
    ):
        record = MonthlyPerformanceFactory(user_id="U1", total_revenue_pre_tax=Decimal("150000"))

        first = incentive_engine.compute_monthly_slab("U1", "S001", "2024-05")
        second = incentive_engine.compute_monthly_slab("U1", "S001", "2024-05")

        db_session.refresh(record)
        assert first.payout_id == second.payout_id
        assert len(record.slabs_applied) == 2
        assert record.slabs_applied[-1]["slab_index"] == 1
        assert record.monthly_rewards_total == Decimal("5000.00")
        assert db_session.query(IncentivePayout).count() == 1


class TestRollup:
    def test_rollup_aggregates_month(self, incentive_engine):
        for day, revenue, skus in (
            (3, "10000.50", {"SKU-1": 2}),
            (4, "20000.25", {"SKU-1": 1, "SKU-2": 4}),
            (20, "5000.00", {}),
        ):
            DailyPerformanceFactory(
                user_id="U1",
                performance_date=date(2024, 5, day),
                revenue_pre_tax=Decimal(revenue),
                customer_count=10,
                paid_bills_count=8,
                sku_counts=skus,
            )
        DailyPerformanceFactory(
            user_id="U1", performance_date=date(2024, 4, 30), revenue_pre_tax=Decimal("99999")
        )

        record = incentive_engine.rollup_month("U1", "S001", "2024-05")

        assert record.total_revenue_pre_tax == Decimal("35000.75")
        assert record.total_customer_count == 30
        assert record.total_paid_bills == 24
        assert record.product_units == {"SKU-1": 3, "SKU-2": 4}
        assert record.days_recorded == 3

    def test_rollup_then_slab(self, incentive_engine, slab_rule):
        DailyPerformanceFactory(
            user_id="U1", performance_date=date(2024, 5, 2), revenue_pre_tax=Decimal("150000")
        )

        incentive_engine.rollup_month("U1", "S001", "2024-05")
        outcome = incentive_engine.compute_monthly_slab("U1", "S001", "2024-05")

        assert outcome.incentive == Decimal("5000.00")

    def test_rollup_is_repeatable(self, db_session, incentive_engine):
        DailyPerformanceFactory(user_id="U1", performance_date=date(2024, 5, 2))

        first = incentive_engine.rollup_month("U1", "S001", "2024-05")
        second = incentive_engine.rollup_month("U1", "S001", "2024-05")

        assert first.id == second.id
        assert second.days_recorded == 1

    def test_rollup_without_daily_records(self, incentive_engine):
        with pytest.raises(MonthlyPerformanceNotFound):
            incentive_engine.rollup_month("U1", "S001", "2024-05")
