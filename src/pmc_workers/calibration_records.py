"""Comparison records between external PMC readings and computed state."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, date, datetime

from .models import CalibrationObservation, CalibrationSource, DailyLoadState

CALIBRATION_DELTA_THRESHOLD = 5.0
TRUST_CONFIDENCE = 0.7
SEED_NOTE = "Initial PMC seed values from user"


def _signed(value: float) -> str:
    return f"{value:+.1f}"


@dataclass
class CalibrationRecord:
    effective_date: date
    computed_fitness: float
    computed_fatigue: float
    computed_form: float
    observed_fitness: float | None = None
    observed_fatigue: float | None = None
    observed_form: float | None = None
    confidence: float = 0.0
    source: CalibrationSource = "screenshot"
    raw_text: str = ""
    applied: bool = False
    note: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    captured_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    # An absent reading counts as agreeing with the computed value.
    @property
    def fitness_delta(self) -> float:
        if self.observed_fitness is None:
            return 0.0
        return self.observed_fitness - self.computed_fitness

    @property
    def fatigue_delta(self) -> float:
        if self.observed_fatigue is None:
            return 0.0
        return self.observed_fatigue - self.computed_fatigue

    @property
    def form_delta(self) -> float:
        if self.observed_form is None:
            return 0.0
        return self.observed_form - self.computed_form

    @property
    def has_observed_values(self) -> bool:
        return (
            self.observed_fitness is not None
            or self.observed_fatigue is not None
            or self.observed_form is not None
        )

    @property
    def needs_calibration(self) -> bool:
        return any(
            abs(delta) > CALIBRATION_DELTA_THRESHOLD
            for delta in (self.fitness_delta, self.fatigue_delta, self.form_delta)
        )

    @property
    def is_trustworthy(self) -> bool:
        return self.confidence >= TRUST_CONFIDENCE and self.has_observed_values

    @property
    def delta_summary(self) -> str:
        parts: list[str] = []
        if self.observed_fitness is not None:
            parts.append(f"CTL: {_signed(self.fitness_delta)}")
        if self.observed_fatigue is not None:
            parts.append(f"ATL: {_signed(self.fatigue_delta)}")
        if self.observed_form is not None:
            parts.append(f"TSB: {_signed(self.form_delta)}")
        return ", ".join(parts)

    @property
    def confidence_level(self) -> str:
        if self.confidence >= 0.9:
            return "high"
        if self.confidence >= 0.7:
            return "medium"
        if self.confidence >= 0.5:
            return "low"
        return "very_low"

    def mark_applied(self, note: str) -> None:
        self.applied = True
        self.note = note


def build_calibration_record(
    observation: CalibrationObservation,
    computed: DailyLoadState | None,
    *,
    source: CalibrationSource = "screenshot",
    today: date | None = None,
) -> CalibrationRecord:
    """Compare an observation against the computed state nearest to (<=) its date.

    With no computed history the comparison is against a zero state.
    """
    effective_date = observation.effective_date or today or date.today()
    return CalibrationRecord(
        effective_date=effective_date,
        computed_fitness=computed.fitness if computed is not None else 0.0,
        computed_fatigue=computed.fatigue if computed is not None else 0.0,
        computed_form=computed.form if computed is not None else 0.0,
        observed_fitness=observation.fitness,
        observed_fatigue=observation.fatigue,
        observed_form=observation.form,
        confidence=observation.confidence,
        source=source,
        raw_text=observation.raw_text,
    )


def initial_seed_record(fitness: float, fatigue: float, effective_date: date) -> CalibrationRecord:
    """Manual seed: maximum confidence, applied as soon as it is written."""
    return CalibrationRecord(
        effective_date=effective_date,
        computed_fitness=0.0,
        computed_fatigue=0.0,
        computed_form=0.0,
        observed_fitness=fitness,
        observed_fatigue=fatigue,
        observed_form=fitness - fatigue,
        confidence=1.0,
        source="initial_seed",
        applied=True,
        note=SEED_NOTE,
    )


@dataclass(frozen=True)
class CalibrationCheck:
    is_needed: bool
    reason: str
    fitness_delta: float | None
    fatigue_delta: float | None
    form_delta: float | None


def check_calibration_needed(
    observation: CalibrationObservation,
    current: DailyLoadState | None,
) -> CalibrationCheck:
    """Preview whether an observation would trigger a correction."""
    if current is None:
        return CalibrationCheck(
            is_needed=True,
            reason="No existing metrics - initial calibration required",
            fitness_delta=None,
            fatigue_delta=None,
            form_delta=None,
        )

    fitness_delta = observation.fitness - current.fitness if observation.fitness is not None else None
    fatigue_delta = observation.fatigue - current.fatigue if observation.fatigue is not None else None
    form_delta = observation.form - current.form if observation.form is not None else None

    exceeded = [
        (label, delta)
        for label, delta in (("CTL", fitness_delta), ("ATL", fatigue_delta), ("TSB", form_delta))
        if delta is not None and abs(delta) > CALIBRATION_DELTA_THRESHOLD
    ]
    if exceeded:
        reason = "Values differ significantly from calculated: " + ", ".join(
            f"{label} by {int(delta)}" for label, delta in exceeded
        )
    else:
        reason = "Values are within acceptable range of calculated metrics"

    return CalibrationCheck(
        is_needed=bool(exceeded),
        reason=reason,
        fitness_delta=fitness_delta,
        fatigue_delta=fatigue_delta,
        form_delta=form_delta,
    )
