import pytest

from pmc_workers.normalized_power import (
    grade_adjustment_factor,
    normalized_graded_pace,
    normalized_power,
)


def test_steady_power_normalizes_to_itself():
    assert normalized_power([200.0] * 600) == pytest.approx(200.0)


def test_variable_power_exceeds_average():
    samples = ([100.0] * 60 + [300.0] * 60) * 10
    average = sum(samples) / len(samples)
    assert normalized_power(samples) > average


def test_too_few_samples():
    assert normalized_power([200.0] * 30) is None
    assert normalized_power([200.0] * 100, window_seconds=0) is None


def test_flat_grade_has_no_adjustment():
    assert grade_adjustment_factor(0.0) == pytest.approx(1.0)


def test_grade_adjustment_is_clamped():
    assert grade_adjustment_factor(10.0) > 1.0
    assert grade_adjustment_factor(80.0) == 2.0
    assert grade_adjustment_factor(-80.0) >= 0.7


def test_climbing_makes_graded_pace_faster():
    flat = normalized_graded_pace(
        300.0, duration_seconds=3000, total_ascent=0, total_descent=0, distance_meters=10000
    )
    hilly = normalized_graded_pace(
        300.0, duration_seconds=3000, total_ascent=300, total_descent=0, distance_meters=10000
    )
    assert flat == pytest.approx(300.0)
    assert hilly < flat


def test_graded_pace_rejects_empty_distance():
    assert (
        normalized_graded_pace(
            300.0, duration_seconds=3000, total_ascent=0, total_descent=0, distance_meters=0
        )
        is None
    )
