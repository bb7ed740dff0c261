# backend/modules/incentives/tests/test_incentive_tasks.py

from datetime import date
from decimal import Decimal
from unittest.mock import patch

from modules.incentives.schemas.performance_schemas import UnitResult
from modules.incentives.services.batch_service import IncentiveBatchService
from modules.incentives.tasks.celery_config import celery_app
from modules.incentives.tasks.incentive_tasks import (
    previous_year_month,
    run_monthly_incentives,
    run_quarterly_evaluation,
)


def unit_results():
    return [
        UnitResult(
            user_id="U1",
            store_id="S001",
            period_key="2024-04",
            success=True,
            payout_id="PAY-MONTHLY-abc",
            amount=Decimal("5000.00"),
        ),
        UnitResult(
            user_id="U2",
            store_id="S001",
            period_key="2024-04",
            success=False,
            error_code="INCENTIVE_NO_APPLICABLE_SLAB",
            error_message="Revenue 100 matches no slab",
        ),
    ]


class TestPreviousYearMonth:
    def test_mid_year(self):
        assert previous_year_month(date(2024, 5, 1)) == "2024-04"

    def test_january_rolls_back_a_year(self):
        assert previous_year_month(date(2024, 1, 10)) == "2023-12"


class TestMonthlyTask:
    def test_runs_batch_and_summarizes(self):
        with patch.object(
            IncentiveBatchService, "run_monthly", return_value=unit_results()
        ) as run_monthly:
            summary = run_monthly_incentives.apply(
                kwargs={"year_month": "2024-04", "rollup": False}
            ).get()

        run_monthly.assert_called_once_with("2024-04", rollup=False)
        assert summary["total_processed"] == 2
        assert summary["successful_count"] == 1
        assert summary["total_amount"] == "5000.00"
        assert summary["failures"] == [
            {
                "user_id": "U2",
                "store_id": "S001",
                "error_code": "INCENTIVE_NO_APPLICABLE_SLAB",
                "error_message": "Revenue 100 matches no slab",
            }
        ]

    def test_defaults_to_previous_month(self):
        with patch.object(IncentiveBatchService, "run_monthly", return_value=[]) as run_monthly, patch(
            "modules.incentives.tasks.incentive_tasks.previous_year_month", return_value="2024-04"
        ):
            summary = run_monthly_incentives.apply().get()

        run_monthly.assert_called_once_with("2024-04", rollup=True)
        assert summary["total_processed"] == 0
        assert summary["failures"] == []


class TestQuarterlyTask:
    def test_passes_users_through(self):
        with patch.object(IncentiveBatchService, "run_quarterly", return_value=[]) as run_quarterly:
            run_quarterly_evaluation.apply(
                kwargs={"year_month": "2024-07", "user_ids": ["U1", "U2"]}
            ).get()

        run_quarterly.assert_called_once_with("2024-07", user_ids=["U1", "U2"])


class TestCeleryConfig:
    def test_beat_schedule(self):
        schedule = celery_app.conf.beat_schedule

        assert schedule["monthly-incentive-run"]["task"] == "incentives.run_monthly"
        assert schedule["quarterly-evaluation-run"]["task"] == "incentives.run_quarterly"

    def test_tasks_registered_under_schedule_names(self):
        assert run_monthly_incentives.name == "incentives.run_monthly"
        assert run_quarterly_evaluation.name == "incentives.run_quarterly"
        assert celery_app.conf.task_routes["incentives.*"] == {"queue": "incentives"}
