# backend/modules/incentives/tests/test_incentive_jobs.py

import json
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest

from modules.incentives.schemas.performance_schemas import UnitResult
from modules.incentives.tasks import incentive_jobs
from modules.incentives.tasks.incentive_jobs import build_parser, main


def result(success=True, **overrides):
    values = {
        "user_id": "U1",
        "store_id": "S001",
        "period_key": "2024-04",
        "success": success,
        "amount": Decimal("5000.00") if success else None,
    }
    if not success:
        values.update(error_code="INCENTIVE_NO_APPLICABLE_SLAB", error_message="no slab")
    values.update(overrides)
    return UnitResult(**values)


@pytest.fixture
def batch_service():
    service = Mock()
    service.get_batch_statistics.side_effect = lambda results: {
        "total_processed": len(results),
        "failed_count": len([r for r in results if not r.success]),
    }
    with patch.object(incentive_jobs, "IncentiveBatchService", return_value=service), patch.object(
        incentive_jobs, "configure_logging"
    ):
        yield service


class TestParser:
    def test_monthly_arguments(self):
        args = build_parser().parse_args(["--workers", "4", "monthly", "2024-04", "--no-rollup"])

        assert args.job == "monthly"
        assert args.year_month == "2024-04"
        assert args.no_rollup is True
        assert args.workers == 4

    def test_quarterly_users(self):
        args = build_parser().parse_args(["quarterly", "2024-07", "--user", "U1", "--user", "U2"])

        assert args.user_ids == ["U1", "U2"]

    @pytest.mark.parametrize("value", ["2024-13", "202404", "May"])
    def test_rejects_invalid_month(self, value):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["monthly", value])

    def test_job_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestMain:
    def test_monthly_success(self, batch_service, capsys):
        batch_service.run_monthly.return_value = [result()]

        exit_code = main(["monthly", "2024-04"], session_factory=Mock())

        assert exit_code == 0
        batch_service.run_monthly.assert_called_once_with("2024-04", rollup=True)
        assert json.loads(capsys.readouterr().out) == {"total_processed": 1, "failed_count": 0}

    def test_failed_unit_sets_exit_code(self, batch_service, capsys):
        batch_service.run_monthly.return_value = [result(), result(success=False, user_id="U2")]

        assert main(["monthly", "2024-04", "--no-rollup"], session_factory=Mock()) == 1
        batch_service.run_monthly.assert_called_once_with("2024-04", rollup=False)
        assert json.loads(capsys.readouterr().out)["failed_count"] == 1

    def test_quarterly(self, batch_service, capsys):
        batch_service.run_quarterly.return_value = []

        assert main(["quarterly", "2024-07", "--user", "U1"], session_factory=Mock()) == 0
        batch_service.run_quarterly.assert_called_once_with("2024-07", user_ids=["U1"])
