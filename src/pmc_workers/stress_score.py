"""Per-workout Training Stress Score estimation.

100 stress points == one hour at threshold effort. Every estimator is
best-effort: unusable input yields a zero score instead of an exception.
Range checking of inputs lives in ``validation``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from .models import ActivityCategory, StressMethod, WorkoutTelemetry, stress_method_quality
from .normalized_power import normalized_graded_pace, normalized_power
from .validation import finite_or_zero

# Upper bound of each heart-rate zone as a fraction of threshold HR, with the
# stress accumulated per hour spent in that zone.
_HR_ZONES: tuple[tuple[float, float], ...] = (
    (0.81, 30.0),
    (0.89, 50.0),
    (0.93, 70.0),
    (0.99, 90.0),
    (float("inf"), 110.0),
)

_DEFAULT_PERCEIVED_INTENSITY: dict[ActivityCategory, float] = {
    "run": 0.7,
    "bike": 0.65,
    "swim": 0.7,
    "strength": 0.6,
    "other": 0.5,
}


@dataclass(frozen=True)
class StressScoreResult:
    stress: float
    method: StressMethod
    intensity_factor: float
    normalized_power: float | None = None
    normalized_pace: float | None = None
    average_heart_rate: float | None = None
    original_stress: float | None = None
    applied_scaling_factor: float | None = None

    @property
    def quality(self) -> int:
        return stress_method_quality(self.method)

    @property
    def scaling_applied(self) -> bool:
        return self.applied_scaling_factor is not None

    @property
    def stress_per_hour(self) -> float:
        return self.intensity_factor**2 * 100

    @property
    def intensity_label(self) -> str:
        intensity = self.intensity_factor
        if intensity >= 1.05:
            return "All Out"
        if intensity >= 0.95:
            return "Threshold"
        if intensity >= 0.85:
            return "Tempo"
        if intensity >= 0.75:
            return "Endurance"
        if intensity >= 0.55:
            return "Recovery"
        return "Easy"


def _zero(method: StressMethod) -> StressScoreResult:
    return StressScoreResult(stress=0.0, method=method, intensity_factor=0.0)


def power_stress(
    normalized_power: float,
    duration_seconds: float,
    ftp: float,
    *,
    method: StressMethod = "power",
) -> StressScoreResult:
    """TSS = hours x NP x IF / FTP x 100, IF = NP / FTP."""
    np_watts = finite_or_zero(normalized_power)
    duration = finite_or_zero(duration_seconds)
    threshold = finite_or_zero(ftp)
    if threshold <= 0 or duration <= 0:
        return _zero(method)

    intensity = np_watts / threshold
    stress = (duration * np_watts * intensity) / (threshold * 3600) * 100
    return StressScoreResult(
        stress=stress,
        method=method,
        intensity_factor=intensity,
        normalized_power=np_watts,
    )


def running_power_stress(
    normalized_power: float,
    duration_seconds: float,
    running_ftp: float,
) -> StressScoreResult:
    return power_stress(normalized_power, duration_seconds, running_ftp, method="running_power")


def pace_stress(
    normalized_graded_pace: float,
    duration_seconds: float,
    threshold_pace: float,
) -> StressScoreResult:
    """rTSS with paces in sec/km: IF = threshold / NGP (lower pace is faster)."""
    pace = finite_or_zero(normalized_graded_pace)
    duration = finite_or_zero(duration_seconds)
    threshold = finite_or_zero(threshold_pace)
    if threshold <= 0 or duration <= 0 or pace <= 0:
        return _zero("pace")

    intensity = threshold / pace
    stress = (duration / 3600) * intensity**2 * 100
    return StressScoreResult(
        stress=stress,
        method="pace",
        intensity_factor=intensity,
        normalized_pace=pace,
    )


def swim_stress(
    pace_per_100m: float,
    duration_seconds: float,
    threshold_pace_per_100m: float,
) -> StressScoreResult:
    pace = finite_or_zero(pace_per_100m)
    duration = finite_or_zero(duration_seconds)
    threshold = finite_or_zero(threshold_pace_per_100m)
    if threshold <= 0 or duration <= 0 or pace <= 0:
        return _zero("swim")

    intensity = threshold / pace
    stress = (duration / 3600) * intensity**2 * 100
    return StressScoreResult(
        stress=stress,
        method="swim",
        intensity_factor=intensity,
        normalized_pace=pace,
    )


def heart_rate_stress(
    average_heart_rate: float,
    duration_seconds: float,
    threshold_heart_rate: float,
) -> StressScoreResult:
    """hrTSS from average HR: hours x (avgHR / LTHR)^2 x 100."""
    avg_hr = finite_or_zero(average_heart_rate)
    duration = finite_or_zero(duration_seconds)
    threshold = finite_or_zero(threshold_heart_rate)
    if threshold <= 0 or avg_hr <= 0 or duration <= 0:
        return _zero("heart_rate")

    intensity = avg_hr / threshold
    stress = (duration / 3600) * intensity**2 * 100
    return StressScoreResult(
        stress=stress,
        method="heart_rate",
        intensity_factor=intensity,
        average_heart_rate=avg_hr,
    )


def heart_rate_zone(heart_rate: float, threshold_heart_rate: float) -> int:
    """1-based zone index for ``heart_rate`` relative to threshold.

    An unknown (zero or non-finite) threshold puts everything in zone 1.
    """
    threshold = finite_or_zero(threshold_heart_rate)
    if threshold <= 0:
        return 1
    ratio = finite_or_zero(heart_rate) / threshold
    for index, (upper, _) in enumerate(_HR_ZONES, start=1):
        if ratio <= upper:
            return index
    return len(_HR_ZONES)


def heart_rate_zone_stress(
    heart_rate_samples: list[float],
    duration_seconds: float,
    threshold_heart_rate: float,
) -> StressScoreResult:
    """Zone-banded hrTSS; samples are taken as evenly spaced over the workout."""
    samples = [finite_or_zero(sample) for sample in heart_rate_samples]
    samples = [sample for sample in samples if sample > 0]
    duration = finite_or_zero(duration_seconds)
    threshold = finite_or_zero(threshold_heart_rate)
    if not samples or threshold <= 0 or duration <= 0:
        return _zero("heart_rate")

    seconds_per_sample = duration / len(samples)
    stress = 0.0
    for sample in samples:
        _, per_hour = _HR_ZONES[heart_rate_zone(sample, threshold) - 1]
        stress += seconds_per_sample / 3600 * per_hour

    avg_hr = sum(samples) / len(samples)
    return StressScoreResult(
        stress=stress,
        method="heart_rate",
        intensity_factor=avg_hr / threshold,
        average_heart_rate=avg_hr,
    )


def estimated_stress(duration_seconds: float, perceived_intensity: float) -> StressScoreResult:
    """Duration-only estimate; perceived intensity 0..1 maps to IF 0.5..1.1."""
    duration = finite_or_zero(duration_seconds)
    perceived = min(1.0, finite_or_zero(perceived_intensity))
    intensity = 0.5 + perceived * 0.6
    if duration <= 0:
        return StressScoreResult(stress=0.0, method="estimated", intensity_factor=intensity)
    stress = (duration / 3600) * intensity**2 * 100
    return StressScoreResult(stress=stress, method="estimated", intensity_factor=intensity)


def precalculated_stress(stress: float, intensity_factor: float | None = None) -> StressScoreResult:
    """Accept an imported score as-is."""
    return StressScoreResult(
        stress=finite_or_zero(stress),
        method="precalculated",
        intensity_factor=finite_or_zero(intensity_factor),
    )


def _positive(value: float | None) -> bool:
    return finite_or_zero(value) > 0


def _running_pace(telemetry: WorkoutTelemetry) -> float | None:
    if _positive(telemetry.normalized_graded_pace):
        return telemetry.normalized_graded_pace

    average = telemetry.average_pace
    if not _positive(average) and _positive(telemetry.distance_meters):
        average = telemetry.duration_seconds / (telemetry.distance_meters / 1000)
    if not _positive(average):
        return None

    if (
        telemetry.total_ascent is not None
        and telemetry.total_descent is not None
        and _positive(telemetry.distance_meters)
    ):
        graded = normalized_graded_pace(
            average,
            duration_seconds=telemetry.duration_seconds,
            total_ascent=finite_or_zero(telemetry.total_ascent),
            total_descent=finite_or_zero(telemetry.total_descent),
            distance_meters=telemetry.distance_meters,
        )
        if graded is not None:
            return graded
    return average


def _swim_pace(telemetry: WorkoutTelemetry) -> float | None:
    if _positive(telemetry.swim_pace_per_100m):
        return telemetry.swim_pace_per_100m
    if _positive(telemetry.distance_meters):
        return telemetry.duration_seconds / (telemetry.distance_meters / 100)
    return None


def _normalized_power(telemetry: WorkoutTelemetry) -> float | None:
    if _positive(telemetry.normalized_power):
        return telemetry.normalized_power
    if telemetry.power_samples:
        return normalized_power([finite_or_zero(sample) for sample in telemetry.power_samples])
    return None


def best_stress_score(telemetry: WorkoutTelemetry) -> StressScoreResult:
    """Score a workout with the highest-quality source its telemetry supports."""
    duration = telemetry.duration_seconds
    category = telemetry.category
    np_watts = _normalized_power(telemetry)

    if telemetry.precalculated_stress is not None:
        return precalculated_stress(
            telemetry.precalculated_stress, telemetry.precalculated_intensity_factor
        )

    if category == "bike" and _positive(np_watts) and _positive(telemetry.ftp):
        return power_stress(np_watts, duration, telemetry.ftp)

    if category == "run" and _positive(np_watts) and _positive(telemetry.running_ftp):
        return running_power_stress(np_watts, duration, telemetry.running_ftp)

    if category == "run" and _positive(telemetry.threshold_pace):
        pace = _running_pace(telemetry)
        if pace is not None:
            return pace_stress(pace, duration, telemetry.threshold_pace)

    if category == "swim" and _positive(telemetry.swim_threshold_pace_per_100m):
        pace = _swim_pace(telemetry)
        if pace is not None:
            return swim_stress(pace, duration, telemetry.swim_threshold_pace_per_100m)

    if _positive(telemetry.threshold_heart_rate):
        if telemetry.heart_rate_samples:
            return heart_rate_zone_stress(
                telemetry.heart_rate_samples, duration, telemetry.threshold_heart_rate
            )
        if _positive(telemetry.average_heart_rate):
            return heart_rate_stress(
                telemetry.average_heart_rate, duration, telemetry.threshold_heart_rate
            )

    perceived = telemetry.perceived_intensity
    if perceived is None:
        perceived = _DEFAULT_PERCEIVED_INTENSITY[category]
    return estimated_stress(duration, perceived)


def apply_scaling(result: StressScoreResult, factor: float) -> StressScoreResult:
    """Pre-scale a score by a learned factor; scaling twice is a no-op."""
    if result.scaling_applied:
        return result
    return replace(
        result,
        stress=result.stress * factor,
        original_stress=result.stress,
        applied_scaling_factor=factor,
    )
