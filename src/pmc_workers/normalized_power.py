"""Normalized Power and Normalized Graded Pace helpers."""

from __future__ import annotations

from collections.abc import Sequence

ROLLING_WINDOW_SECONDS = 30


def normalized_power(
    power_samples: Sequence[float],
    *,
    window_seconds: int = ROLLING_WINDOW_SECONDS,
) -> float | None:
    """NP from 1 Hz power samples: 4th root of the mean of (30 s rolling mean)^4."""
    if window_seconds <= 0 or len(power_samples) <= window_seconds:
        return None

    window_sum = sum(power_samples[:window_seconds])
    fourth_powers = [(window_sum / window_seconds) ** 4]
    for i in range(window_seconds, len(power_samples)):
        window_sum += power_samples[i] - power_samples[i - window_seconds]
        fourth_powers.append((window_sum / window_seconds) ** 4)

    mean_fourth = sum(fourth_powers) / len(fourth_powers)
    return mean_fourth ** 0.25


def grade_adjustment_factor(grade_pct: float) -> float:
    """Relative metabolic cost of running on a grade vs flat (Minetti polynomial).

    > 1 means harder than flat. Clamped to [0.7, 2.0].
    """
    g = grade_pct / 100.0
    cost = (
        155.4 * g**5
        - 30.4 * g**4
        - 43.3 * g**3
        + 46.3 * g**2
        + 19.5 * g
        + 3.6
    )
    return max(0.7, min(2.0, cost / 3.6))


def normalized_graded_pace(
    average_pace: float,
    *,
    duration_seconds: float,
    total_ascent: float,
    total_descent: float,
    distance_meters: float,
) -> float | None:
    """Approximate NGP (sec/km) from whole-workout elevation totals."""
    if distance_meters <= 0 or duration_seconds <= 0 or average_pace <= 0:
        return None

    net_grade = (total_ascent - total_descent) / distance_meters * 100
    # Empirical uplift for total climbing regardless of net change.
    climbing = (total_ascent + total_descent) / distance_meters * 50
    factor = grade_adjustment_factor(net_grade + climbing)
    return average_pace / factor
