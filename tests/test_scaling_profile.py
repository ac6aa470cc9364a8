from __future__ import annotations

from datetime import date, timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from pmc_workers.calibration_datapoints import TSSCalibrationDataPoint, direct_point
from pmc_workers.scaling_profile import (
    ScalingProfile,
    confidence_level,
    learning_confidence,
    learning_statistics,
    recalculate_profile,
    reset_profile,
    weighted_scaling_factor,
)

TODAY = date(2026, 9, 1)


def _point(ratio: float, *, age: int = 0, confidence: float = 0.9, **overrides):
    values = {
        "effective_date": TODAY - timedelta(days=age),
        "computed_daily_stress": 100.0,
        "extracted_daily_stress": 100.0 * ratio,
        "confidence": confidence,
    }
    values.update(overrides)
    return TSSCalibrationDataPoint(**values)


def _learned(points) -> ScalingProfile:
    return recalculate_profile(ScalingProfile(), points, TODAY)


class TestWeightedFactor:
    def test_nothing_usable(self):
        assert weighted_scaling_factor([], TODAY) == (1.0, 0.0, 0)
        assert weighted_scaling_factor([_point(1.2, confidence=0.3)], TODAY) == (1.0, 0.0, 0)

    def test_recent_points_dominate(self):
        factor, _, count = weighted_scaling_factor(
            [_point(1.4, age=0), _point(1.0, age=60)], TODAY
        )
        assert count == 2
        # weights 0.9 and 0.225
        assert factor == pytest.approx((1.4 * 0.9 + 1.0 * 0.225) / 1.125)

    @given(
        ratios=st.lists(
            st.floats(min_value=0.5, max_value=2.0, allow_nan=False), min_size=1, max_size=20
        ),
        ages=st.lists(st.integers(min_value=0, max_value=365), min_size=20, max_size=20),
    )
    @settings(max_examples=100)
    def test_factor_stays_within_observed_ratios(self, ratios, ages):
        points = [_point(ratio, age=age) for ratio, age in zip(ratios, ages)]
        factor, confidence, count = weighted_scaling_factor(points, TODAY)
        assert count == len(ratios)
        assert min(ratios) - 1e-9 <= factor <= max(ratios) + 1e-9
        assert 0.0 <= confidence <= 1.0


class TestConfidence:
    def test_identical_fresh_samples(self):
        assert learning_confidence([1.2] * 3, [1.0] * 3) == pytest.approx(0.72)
        assert learning_confidence([1.2] * 10, [1.0] * 10) == pytest.approx(1.0)

    def test_spread_lowers_confidence(self):
        tight = learning_confidence([1.1, 1.15, 1.2], [1.0] * 3)
        loose = learning_confidence([0.8, 1.2, 1.6], [1.0] * 3)
        assert loose < tight

    def test_empty(self):
        assert learning_confidence([], []) == 0.0

    @pytest.mark.parametrize(
        "value,label",
        [(0.95, "Very High"), (0.75, "High"), (0.55, "Medium"), (0.35, "Low"), (0.1, "Insufficient Data")],
    )
    def test_levels(self, value, label):
        assert confidence_level(value) == label


class TestGating:
    def test_defaults_apply_nothing(self):
        profile = ScalingProfile()
        assert not profile.can_apply_scaling
        assert profile.scaling_factor("bike") == 1.0
        assert profile.status_summary == "No calibration data yet"
        assert profile.calibration_status == "Not started"

    def test_too_few_samples(self):
        profile = _learned([_point(1.2), _point(1.2)])
        assert profile.global_factor == pytest.approx(1.2)
        assert not profile.can_apply_scaling
        assert profile.scaling_factor("run") == 1.0
        assert profile.status_summary == "Need 1 more calibrations"

    def test_applies_after_enough_consistent_samples(self):
        profile = _learned([_point(1.2) for _ in range(3)])
        assert profile.global_confidence == pytest.approx(0.72)
        assert profile.can_apply_scaling
        assert profile.scaling_factor("swim") == pytest.approx(1.2)
        assert profile.status_summary == "Active - applying 20% adjustment"

    def test_factor_outside_bounds_is_not_applied(self):
        profile = _learned([_point(1.8) for _ in range(5)])
        assert not profile.can_apply_scaling
        assert profile.scaling_factor("bike") == 1.0
        assert profile.status_summary == "Scaling factor outside safe bounds"

    def test_disabled_learning_is_not_applied(self):
        profile = _learned([_point(1.2) for _ in range(5)])
        profile.learning_enabled = False
        assert profile.scaling_factor("bike") == 1.0


class TestCategories:
    def test_category_factor_used_when_it_has_enough_samples(self):
        points = [_point(1.3, category="bike") for _ in range(3)] + [
            _point(1.0, category="run") for _ in range(2)
        ]
        profile = _learned(points)

        assert profile.categories["bike"].sample_count == 3
        assert profile.scaling_factor("bike") == pytest.approx(1.3)
        assert profile.scaling_factor("run") == pytest.approx(profile.global_factor)
        assert profile.scaling_factor("strength") == pytest.approx(profile.global_factor)

    def test_implausible_category_factor_falls_back_to_global(self):
        points = [_point(1.7, category="bike") for _ in range(3)] + [
            _point(1.0, category="run") for _ in range(9)
        ]
        profile = _learned(points)

        assert profile.can_apply_scaling
        assert profile.categories["bike"].factor == pytest.approx(1.7)
        assert profile.scaling_factor("bike") == pytest.approx(profile.global_factor)
        assert profile.scaling_factor("run") == pytest.approx(1.0)

    def test_multi_sport_points_only_count_globally(self):
        points = [_point(1.2, category="bike", is_multi_sport=True) for _ in range(4)]
        profile = _learned(points)
        assert profile.global_sample_count == 4
        assert profile.categories["bike"].sample_count == 0
        assert profile.categories["bike"].factor is None

    def test_intensity_buckets(self):
        points = [_point(1.1, intensity_bucket="tempo") for _ in range(2)]
        profile = _learned(points)
        assert profile.intensity_buckets["tempo"].sample_count == 2
        assert profile.intensity_buckets["recovery"].factor is None

    def test_per_category_status(self):
        profile = _learned([_point(1.3, category="bike") for _ in range(3)])
        status = {row["category"]: row for row in profile.per_category_status()}
        assert status["bike"]["status"] == "Active"
        assert status["run"]["status"] == "Need more data"
        assert status["run"]["factor"] is None


class TestRecalculation:
    def test_invalidated_points_are_ignored(self):
        outlier = _point(3.0)
        outlier.invalidate("bad read")
        profile = _learned([_point(1.1), _point(1.1), _point(1.1), outlier])
        assert profile.global_factor == pytest.approx(1.1)
        assert profile.global_sample_count == 3

    def test_recalculation_without_points_resets_statistics(self):
        profile = _learned([_point(1.2) for _ in range(4)])
        recalculate_profile(profile, [], TODAY)
        assert profile.global_factor == 1.0
        assert profile.global_confidence == 0.0
        assert profile.global_sample_count == 0

    def test_reset_keeps_switches(self):
        profile = _learned([_point(1.2, category="run") for _ in range(4)])
        profile.learning_enabled = False
        profile.calibration_complete = True
        reset_profile(profile)

        assert profile.global_factor == 1.0
        assert profile.global_sample_count == 0
        assert profile.categories["run"].sample_count == 0
        assert not profile.calibration_complete
        assert profile.learning_enabled is False


class TestProgress:
    def test_ready_to_complete(self):
        profile = _learned([_point(1.1) for _ in range(10)])
        assert profile.should_suggest_disabling_manual_calibration
        assert profile.calibration_status == "Ready to complete"
        assert profile.calibration_progress == pytest.approx(1.0)

    def test_in_progress(self):
        profile = _learned([_point(1.1) for _ in range(3)])
        assert not profile.should_suggest_disabling_manual_calibration
        assert profile.calibration_status.startswith("In progress (")

    def test_complete_flag_wins(self):
        profile = ScalingProfile(calibration_complete=True)
        assert profile.calibration_status == "Calibration complete"


class TestStatistics:
    def test_statistics_snapshot(self):
        old = _point(1.0, age=45)
        derived = _point(1.2, method="derived_from_fitness")
        points = [_point(1.2, age=i) for i in range(12)] + [old, derived]
        profile = _learned(points)
        stats = learning_statistics(profile, points, TODAY)

        assert stats.sample_count == 14
        assert stats.direct_sample_count == 13
        assert stats.recent_sample_count == 12
        assert len(stats.recent_points) == 10
        assert stats.recent_points[0].effective_date == TODAY
        assert stats.status_description.startswith("Active: adjusting stress by")

    def test_statistics_when_disabled(self):
        profile = ScalingProfile(learning_enabled=False)
        stats = learning_statistics(profile, [], TODAY)
        assert stats.status_description == "Learning disabled"
        assert stats.scaling_percentage == "0%"
        assert stats.confidence_level == "Insufficient Data"

    def test_direct_point_helper_is_learnable(self):
        profile = _learned([direct_point(TODAY, 110.0, 100.0, 0.9) for _ in range(3)])
        assert profile.global_factor == pytest.approx(1.1)
