# backend/modules/incentives/tasks/incentive_jobs.py

"""
Command-line entry point for incentive batch runs.

    python -m modules.incentives.tasks.incentive_jobs monthly 2024-05
    python -m modules.incentives.tasks.incentive_jobs quarterly 2024-07 --user U1 --user U2
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from core.database import SessionLocal
from core.logging_config import configure_logging
from ..services.batch_service import IncentiveBatchService
from ..services.period_utils import parse_year_month

logger = logging.getLogger(__name__)


def _year_month(value: str) -> str:
    try:
        parse_year_month(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run incentive batch jobs")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    parser.add_argument("--workers", type=int, default=None, help="Parallel units")
    subparsers = parser.add_subparsers(dest="job", required=True)

    monthly = subparsers.add_parser("monthly", help="Apply monthly slabs")
    monthly.add_argument("year_month", type=_year_month, help="Month to process, YYYY-MM")
    monthly.add_argument(
        "--no-rollup",
        action="store_true",
        help="Use existing monthly aggregates instead of rebuilding them from daily records",
    )

    quarterly = subparsers.add_parser("quarterly", help="Evaluate non-performance")
    quarterly.add_argument("year_month", type=_year_month, help="Month being evaluated, YYYY-MM")
    quarterly.add_argument(
        "--user", dest="user_ids", action="append", help="Limit to these users"
    )
    return parser


def main(argv: Optional[List[str]] = None, session_factory=SessionLocal) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    service = IncentiveBatchService(session_factory, max_workers=args.workers)
    if args.job == "monthly":
        results = service.run_monthly(args.year_month, rollup=not args.no_rollup)
    else:
        results = service.run_quarterly(args.year_month, user_ids=args.user_ids)

    stats = service.get_batch_statistics(results)
    for result in results:
        if not result.success:
            logger.error(
                f"{result.user_id}/{result.store_id or '-'}: "
                f"{result.error_code} {result.error_message}"
            )

    print(json.dumps(stats, default=str, indent=2))
    return 0 if stats["failed_count"] == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
