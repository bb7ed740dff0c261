# backend/modules/incentives/tests/test_rule_schemas.py

"""
Tests for rule payload validation, product matchers and engine configuration.
"""

import pytest
from decimal import Decimal
from pydantic import ValidationError

from modules.incentives.config.incentive_config import IncentiveConfig
from modules.incentives.enums.incentive_enums import StoreType
from modules.incentives.schemas.rule_schemas import (
    DailyTargetPayload,
    MonthlySlabPayload,
    ProductLine,
    QuarterlyEvalPayload,
    SpinWheelPayload,
    TeleSalesPayload,
)
from modules.incentives.services.product_matchers import (
    AllOfMatcher,
    BrandMatcher,
    SkuMatcher,
    build_matcher,
)

from .factories import (
    DailyTargetPayloadFactory,
    MonthlySlabPayloadFactory,
    QuarterlyEvalPayloadFactory,
    SpinWheelPayloadFactory,
    TeleSalesPayloadFactory,
)


class TestMonthlySlabPayload:
    def test_valid_payload_exposes_tiers(self):
        payload = MonthlySlabPayload.model_validate(MonthlySlabPayloadFactory())

        tiers = payload.tiers()
        assert [t.reward for t in tiers] == [Decimal("2000"), Decimal("5000")]
        assert tiers[-1].upper is None

    def test_overlapping_slabs_rejected(self):
        data = MonthlySlabPayloadFactory(
            slabs=[
                {"min_sales": 0, "max_sales": 120000, "incentive_amount": 2000},
                {"min_sales": 100000, "max_sales": None, "incentive_amount": 5000},
            ]
        )
        with pytest.raises(ValidationError, match="overlaps"):
            MonthlySlabPayload.model_validate(data)

    def test_percentage_deduction_above_100_rejected(self):
        data = MonthlySlabPayloadFactory(
            under_performance_deduction={
                "threshold": 50000,
                "amount_or_pct": 150,
                "is_percentage": True,
            }
        )
        with pytest.raises(ValidationError):
            MonthlySlabPayload.model_validate(data)


class TestDailyTargetPayload:
    def test_tiers_for_store_type(self):
        payload = DailyTargetPayload.model_validate(DailyTargetPayloadFactory())

        assert len(payload.tiers_for(StoreType.CHAMPION)) == 3
        assert payload.tiers_for(StoreType.LEARNING) is None

    def test_duplicate_store_type_rejected(self):
        override = {"store_type": "CHAMPION", "tiers": [{"min": 0, "max": None, "reward": 10}]}
        with pytest.raises(ValidationError, match="Duplicate"):
            DailyTargetPayload.model_validate(
                DailyTargetPayloadFactory(store_type_overrides=[override, override])
            )


class TestSpinWheelPayload:
    def test_probabilities_may_sum_below_one(self):
        data = SpinWheelPayloadFactory(
            rewards=[{"label": "Rs 10", "type": "CASH", "value": 10, "probability": 0.4}]
        )
        assert SpinWheelPayload.model_validate(data).daily_spin_cap == 1

    def test_probabilities_above_one_rejected(self):
        data = SpinWheelPayloadFactory(
            rewards=[
                {"label": "A", "type": "CASH", "value": 10, "probability": 0.7},
                {"label": "B", "type": "CASH", "value": 20, "probability": 0.4},
            ]
        )
        with pytest.raises(ValidationError, match="above 1"):
            SpinWheelPayload.model_validate(data)

    def test_probability_outside_unit_interval_rejected(self):
        data = SpinWheelPayloadFactory(
            rewards=[{"label": "A", "type": "CASH", "value": 10, "probability": -0.1}]
        )
        with pytest.raises(ValidationError):
            SpinWheelPayload.model_validate(data)


class TestOtherPayloads:
    def test_product_line_needs_selector(self):
        with pytest.raises(ValidationError, match="selector"):
            ProductLine.model_validate({"reward_type": "FLAT", "reward_value": 10})

    def test_product_percentage_capped_at_100(self):
        with pytest.raises(ValidationError, match="Percentage"):
            ProductLine.model_validate({"sku": "X", "reward_type": "PCT", "reward_value": 120})

    def test_quality_weight_bounded(self):
        with pytest.raises(ValidationError):
            TeleSalesPayload.model_validate(TeleSalesPayloadFactory(quality_score_weight=1.5))

    def test_months_required_within_window(self):
        data = QuarterlyEvalPayloadFactory(
            non_performance_threshold={"min_sales": 50000, "months_required": 4}
        )
        with pytest.raises(ValidationError, match="months_required"):
            QuarterlyEvalPayload.model_validate(data)


class TestProductMatchers:
    def test_sku_matcher_is_exact(self):
        matcher = SkuMatcher("SKU-1")
        assert matcher.select(["SKU-1", "SKU-10", "XSKU-1"]) == ["SKU-1"]

    def test_brand_matcher_matches_code_in_sku(self):
        assert BrandMatcher("ACME").select(["ACME-TV-1", "OTHER-1"]) == ["ACME-TV-1"]

    def test_build_matcher_combines_selectors(self):
        line = ProductLine.model_validate(
            {"brand": "ACME", "category": "TV", "reward_type": "FLAT", "reward_value": 5}
        )
        matcher = build_matcher(line)

        assert isinstance(matcher, AllOfMatcher)
        assert matcher.select(["ACME-TV-1", "ACME-AC-2", "ZEN-TV-3"]) == ["ACME-TV-1"]

    def test_build_matcher_single_selector(self):
        line = ProductLine.model_validate({"sku": "SKU-1", "reward_type": "FLAT", "reward_value": 5})
        assert isinstance(build_matcher(line), SkuMatcher)


class TestIncentiveConfig:
    def test_defaults(self):
        config = IncentiveConfig()
        assert config.INCENTIVE_MIN_PAID_BILLS == 2
        assert config.LEADERBOARD_LIMIT == 100

    def test_rejects_non_positive_values(self):
        with pytest.raises(ValidationError, match="must be positive"):
            IncentiveConfig(BATCH_MAX_WORKERS=0)
