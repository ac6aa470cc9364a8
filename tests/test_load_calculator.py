from __future__ import annotations

from datetime import date, timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from pmc_workers.load_calculator import (
    acute_chronic_ratio,
    acwr_status,
    compute_series,
    days_to_target_form,
    form_of,
    form_status,
    next_fatigue,
    next_fitness,
    project_series,
    step,
    sum_daily_stress,
    training_monotony,
    training_strain,
)
from pmc_workers.models import DailyLoadState

loads = st.floats(min_value=0, max_value=300, allow_nan=False)
stresses = st.floats(min_value=0, max_value=600, allow_nan=False)

START = date(2026, 3, 1)


class TestRecurrence:
    @given(value=loads)
    def test_constant_stress_equal_to_load_is_fixed_point(self, value):
        assert next_fitness(value, value) == pytest.approx(value)
        assert next_fatigue(value, value) == pytest.approx(value)

    @given(previous=loads)
    def test_rest_day_decays_by_time_constant(self, previous):
        assert next_fitness(previous, 0.0) == pytest.approx(previous * (1 - 1 / 42))
        assert next_fatigue(previous, 0.0) == pytest.approx(previous * (1 - 1 / 7))

    @given(previous=loads, stress=stresses)
    @settings(max_examples=200)
    def test_fatigue_reacts_faster_than_fitness(self, previous, stress):
        fitness_change = next_fitness(previous, stress) - previous
        fatigue_change = next_fatigue(previous, stress) - previous
        assert abs(fatigue_change) >= abs(fitness_change)
        if abs(stress - previous) > 1e-6:
            assert abs(fatigue_change) > abs(fitness_change)

    def test_custom_time_constants(self):
        assert next_fitness(10.0, 110.0, time_constant=10.0) == pytest.approx(20.0)
        assert next_fatigue(10.0, 110.0, time_constant=5.0) == pytest.approx(30.0)

    def test_form_is_fitness_minus_fatigue(self):
        assert form_of(40.0, 55.0) == -15.0


class TestStep:
    def test_step_from_nothing_starts_at_zero(self):
        state = step(None, START, 84.0)
        assert state.fitness == pytest.approx(2.0)
        assert state.fatigue == pytest.approx(12.0)
        assert state.form == pytest.approx(-10.0)
        assert state.total_stress == 84.0
        assert state.source == "computed"

    def test_step_chains_previous_state(self):
        previous = DailyLoadState.create(START, fitness=42.0, fatigue=70.0)
        state = step(previous, START + timedelta(days=1), 0.0)
        assert state.fitness == pytest.approx(41.0)
        assert state.fatigue == pytest.approx(60.0)


class TestSeries:
    def test_week_of_constant_training_from_zero(self):
        daily = {START + timedelta(days=i): 75.0 for i in range(7)}
        series = compute_series(daily, START, START + timedelta(days=6))

        assert len(series) == 7
        last = series[-1]
        assert 10 < last.fitness < 20
        assert last.fatigue == pytest.approx(75 * (1 - (6 / 7) ** 7))
        assert last.fatigue > last.fitness
        assert last.form < 0

    def test_missing_days_are_rest_days(self):
        series = compute_series(
            {START: 100.0},
            START,
            START + timedelta(days=2),
            initial_fitness=50.0,
            initial_fatigue=50.0,
        )
        assert [s.total_stress for s in series] == [100.0, 0.0, 0.0]
        assert series[1].fitness < series[0].fitness
        assert series[2].fatigue < series[1].fatigue

    def test_empty_range(self):
        assert compute_series({}, START, START - timedelta(days=1)) == []

    def test_pinned_day_is_kept_and_carried_forward(self):
        seed = DailyLoadState.create(
            START + timedelta(days=1), fitness=60.0, fatigue=30.0, source="manual_seed"
        )
        series = compute_series(
            {START: 100.0, START + timedelta(days=1): 100.0},
            START,
            START + timedelta(days=2),
            pinned={seed.day: seed},
        )
        assert series[1] is seed
        assert series[2].fitness == pytest.approx(60.0 * 41 / 42)
        assert series[2].fatigue == pytest.approx(30.0 * 6 / 7)

    @given(values=st.lists(stresses, min_size=1, max_size=30))
    def test_series_matches_repeated_step(self, values):
        daily = {START + timedelta(days=i): v for i, v in enumerate(values)}
        series = compute_series(daily, START, START + timedelta(days=len(values) - 1))

        state = None
        for i, value in enumerate(values):
            state = step(state, START + timedelta(days=i), value)
        assert series[-1].fitness == pytest.approx(state.fitness)
        assert series[-1].fatigue == pytest.approx(state.fatigue)

    def test_sum_daily_stress_groups_by_day(self):
        totals = sum_daily_stress([(START, 40.0), (START, 35.0), (START + timedelta(days=1), 10.0)])
        assert totals == {START: 75.0, START + timedelta(days=1): 10.0}


class TestProjection:
    def test_project_series_dates_and_values(self):
        projected = project_series(50.0, 60.0, [100.0, 0.0], start=START)
        assert [p.day for p in projected] == [START, START + timedelta(days=1)]
        assert projected[0].fitness == pytest.approx(50.0 + 50.0 / 42)
        assert projected[1].planned_stress == 0.0
        assert projected[1].form == pytest.approx(projected[1].fitness - projected[1].fatigue)

    def test_days_to_target_form_with_rest(self):
        days = days_to_target_form(60.0, 90.0, 0.0)
        assert days is not None
        assert 1 <= days <= 30

    def test_days_to_target_form_unreachable(self):
        assert days_to_target_form(10.0, 100.0, 50.0, max_days=5) is None


class TestRatiosAndStatus:
    def test_acute_chronic_ratio(self):
        assert acute_chronic_ratio(50.0, 60.0) == pytest.approx(1.2)
        assert acute_chronic_ratio(0.0, 60.0) is None

    @pytest.mark.parametrize(
        "ratio,expected",
        [
            (None, "unknown"),
            (1.0, "optimal"),
            (0.6, "undertraining"),
            (1.4, "caution"),
            (1.6, "high_risk"),
            (0.3, "very_low"),
        ],
    )
    def test_acwr_status(self, ratio, expected):
        assert acwr_status(ratio) == expected

    @pytest.mark.parametrize(
        "form,expected",
        [(30, "very_fresh"), (12, "fresh"), (0, "neutral"), (-20, "tired"), (-40, "very_tired")],
    )
    def test_form_status(self, form, expected):
        assert form_status(form) == expected

    def test_monotony_needs_a_week_of_varied_load(self):
        assert training_monotony([50.0] * 6) is None
        assert training_monotony([50.0] * 7) is None
        assert training_monotony([0.0] * 7) is None

        week = [100.0, 0.0, 80.0, 0.0, 60.0, 120.0, 0.0]
        monotony = training_monotony(week)
        assert monotony is not None and monotony > 0
        assert training_strain(week) == pytest.approx(sum(week) * monotony)
