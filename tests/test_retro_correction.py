from __future__ import annotations

from datetime import date, timedelta

import pytest
from hypothesis import given
from hypothesis import strategies as st

from pmc_workers.calibration_records import CalibrationRecord
from pmc_workers.errors import CalibrationError
from pmc_workers.load_calculator import compute_series
from pmc_workers.models import DailyLoadState
from pmc_workers.retro_correction import (
    applied_note,
    check_trend_preserved,
    ensure_applicable,
    materialize_missing_days,
    seeded_state,
    shift_states,
)

START = date(2026, 1, 1)
EFFECTIVE = START + timedelta(days=10)


def _history() -> list[DailyLoadState]:
    daily = {START + timedelta(days=i): float(40 + (i % 4) * 25) for i in range(20)}
    return compute_series(daily, START, START + timedelta(days=19))


def _record(**overrides) -> CalibrationRecord:
    state = next(s for s in _history() if s.day == EFFECTIVE)
    values = {
        "effective_date": EFFECTIVE,
        "computed_fitness": state.fitness,
        "computed_fatigue": state.fatigue,
        "computed_form": state.form,
        "confidence": 0.9,
    }
    values.update(overrides)
    return CalibrationRecord(**values)


class TestShift:
    def test_shift_moves_level_by_delta(self):
        history = _history()
        record = _record(observed_fitness=_record().computed_fitness + 10.0)
        shifted = shift_states(record, history)

        before = [s for s in history if s.day >= EFFECTIVE]
        assert len(shifted) == len(before)
        for old, new in zip(before, shifted):
            assert new.fitness == pytest.approx(old.fitness + 10.0)
            assert new.fatigue == pytest.approx(old.fatigue)
            assert new.form == pytest.approx(new.fitness - new.fatigue)
            assert new.total_stress == old.total_stress
            assert new.source == "calibration_adjusted"

    def test_days_before_effective_date_are_untouched(self):
        record = _record(observed_fitness=99.0)
        shifted = shift_states(record, _history())
        assert min(s.day for s in shifted) == EFFECTIVE

    def test_fatigue_only_observation_leaves_fitness(self):
        base = _record()
        record = _record(observed_fatigue=base.computed_fatigue - 7.0)
        shifted = shift_states(record, _history())
        before = [s for s in _history() if s.day >= EFFECTIVE]
        assert shifted[0].fitness == pytest.approx(before[0].fitness)
        assert shifted[0].fatigue == pytest.approx(before[0].fatigue - 7.0)

    @given(
        fitness_delta=st.floats(min_value=-40, max_value=40, allow_nan=False),
        fatigue_delta=st.floats(min_value=-40, max_value=40, allow_nan=False),
    )
    def test_shift_preserves_trend(self, fitness_delta, fatigue_delta):
        base = _record()
        record = _record(
            observed_fitness=base.computed_fitness + fitness_delta,
            observed_fatigue=base.computed_fatigue + fatigue_delta,
        )
        history = _history()
        shifted = shift_states(record, history)
        before = [s for s in history if s.day >= EFFECTIVE]
        assert check_trend_preserved(before, shifted, tolerance=1e-9)

    def test_trend_check_detects_reshaped_curve(self):
        history = _history()
        bent = [s.with_load(fitness=s.fitness * 1.1, fatigue=s.fatigue) for s in history]
        assert not check_trend_preserved(history, bent)
        assert not check_trend_preserved(history, history[:-1])


class TestApplicability:
    def test_low_confidence_is_refused(self):
        with pytest.raises(CalibrationError) as exc_info:
            ensure_applicable(_record(observed_fitness=80.0, confidence=0.5))
        assert exc_info.value.code == "low_confidence"

    def test_nothing_observed_is_refused(self):
        with pytest.raises(CalibrationError):
            ensure_applicable(_record(confidence=0.95))

    def test_trusted_record_passes(self):
        ensure_applicable(_record(observed_fitness=80.0, confidence=0.7))

    def test_applied_note(self):
        record = CalibrationRecord(
            effective_date=EFFECTIVE,
            computed_fitness=50.0,
            computed_fatigue=60.0,
            computed_form=-10.0,
            observed_fitness=60.0,
            observed_fatigue=55.0,
        )
        assert applied_note(record) == "Applied delta: CTL +10.0, ATL -5.0"


class TestMaterialize:
    def test_no_history_creates_zero_row(self):
        rows = materialize_missing_days(None, EFFECTIVE)
        assert rows == [DailyLoadState.create(EFFECTIVE)]

    def test_existing_row_needs_nothing(self):
        prior = DailyLoadState.create(EFFECTIVE, fitness=30.0, fatigue=20.0)
        assert materialize_missing_days(prior, EFFECTIVE) == []

    def test_gap_is_forward_filled_with_rest_days(self):
        prior = DailyLoadState.create(EFFECTIVE - timedelta(days=3), fitness=42.0, fatigue=70.0)
        rows = materialize_missing_days(prior, EFFECTIVE)

        assert [r.day for r in rows] == [EFFECTIVE - timedelta(days=i) for i in (2, 1, 0)]
        assert all(r.total_stress == 0.0 for r in rows)
        assert rows[0].fitness == pytest.approx(41.0)
        assert rows[0].fatigue == pytest.approx(60.0)
        assert rows[-1].fitness < rows[0].fitness


class TestSeed:
    def test_seed_without_existing_row(self):
        state = seeded_state(None, 55.0, 70.0, EFFECTIVE)
        assert state.form == -15.0
        assert state.source == "manual_seed"

    def test_seed_overwrites_existing_load(self):
        existing = DailyLoadState.create(EFFECTIVE, total_stress=80.0, fitness=10.0, fatigue=12.0)
        state = seeded_state(existing, 55.0, 70.0, EFFECTIVE)
        assert state.total_stress == 80.0
        assert state.fitness == 55.0
        assert state.fatigue == 70.0
