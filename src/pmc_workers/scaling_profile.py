"""Learned multiplicative correction between computed and external stress.

The profile is a single mutable object owned by whoever loaded it (see
``store.load_scaling_profile``); learning rebuilds its statistics from the
full set of valid data points instead of updating them incrementally.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from .calibration_datapoints import (
    INTENSITY_BUCKETS,
    LEARNING_HALF_LIFE_DAYS,
    IntensityBucket,
    TSSCalibrationDataPoint,
)
from .models import SCALED_CATEGORIES, ActivityCategory
from .validation import clamp

logger = logging.getLogger(__name__)

SUGGEST_DISABLE_MIN_SAMPLES = 10
FULL_SAMPLE_COUNT = 10
RATIO_SPREAD_TOLERANCE = 0.3
MIN_APPLY_CONFIDENCE = 0.5


@dataclass
class FactorStats:
    factor: float | None = None
    sample_count: int = 0


def _empty_categories() -> dict[ActivityCategory, FactorStats]:
    return {category: FactorStats() for category in SCALED_CATEGORIES}


def _empty_buckets() -> dict[IntensityBucket, FactorStats]:
    return {bucket: FactorStats() for bucket in INTENSITY_BUCKETS}


def _now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class ScalingProfile:
    global_factor: float = 1.0
    global_confidence: float = 0.0
    global_sample_count: int = 0
    categories: dict[ActivityCategory, FactorStats] = field(default_factory=_empty_categories)
    intensity_buckets: dict[IntensityBucket, FactorStats] = field(default_factory=_empty_buckets)
    learning_enabled: bool = True
    min_samples_for_confidence: int = 3
    min_scaling_factor: float = 0.8
    max_scaling_factor: float = 1.5
    auto_disable_threshold: float = 0.95
    calibration_complete: bool = False
    manual_calibration_enabled: bool = True
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def can_apply_scaling(self) -> bool:
        return (
            self.learning_enabled
            and self.global_sample_count >= self.min_samples_for_confidence
            and self.global_confidence >= MIN_APPLY_CONFIDENCE
            and self.min_scaling_factor <= self.global_factor <= self.max_scaling_factor
        )

    def scaling_factor(self, category: ActivityCategory) -> float:
        """Multiplier for a new score in ``category``; 1.0 whenever scaling is gated off."""
        if not self.can_apply_scaling:
            return 1.0
        stats = self.categories.get(category)
        if (
            stats is not None
            and stats.factor is not None
            and stats.sample_count >= self.min_samples_for_confidence
            and self.min_scaling_factor <= stats.factor <= self.max_scaling_factor
        ):
            return stats.factor
        return self.global_factor

    @property
    def should_suggest_disabling_manual_calibration(self) -> bool:
        return (
            self.global_confidence >= self.auto_disable_threshold
            and self.global_sample_count >= SUGGEST_DISABLE_MIN_SAMPLES
        )

    @property
    def calibration_progress(self) -> float:
        sample_progress = min(1.0, self.global_sample_count / FULL_SAMPLE_COUNT)
        confidence_progress = min(1.0, self.global_confidence / self.auto_disable_threshold)
        return (sample_progress + confidence_progress) / 2

    @property
    def confidence_level(self) -> str:
        return confidence_level(self.global_confidence)

    @property
    def status_summary(self) -> str:
        if self.global_sample_count == 0:
            return "No calibration data yet"
        if self.global_sample_count < self.min_samples_for_confidence:
            missing = self.min_samples_for_confidence - self.global_sample_count
            return f"Need {missing} more calibrations"
        if not self.can_apply_scaling:
            return "Scaling factor outside safe bounds"
        return f"Active - applying {(self.global_factor - 1) * 100:.0f}% adjustment"

    @property
    def calibration_status(self) -> str:
        if self.calibration_complete:
            return "Calibration complete"
        if self.global_sample_count == 0:
            return "Not started"
        if self.should_suggest_disabling_manual_calibration:
            return "Ready to complete"
        return f"In progress ({self.calibration_progress * 100:.0f}%)"

    def per_category_status(self) -> list[dict[str, Any]]:
        return [
            {
                "category": category,
                "factor": stats.factor,
                "samples": stats.sample_count,
                "status": (
                    "Active"
                    if stats.sample_count >= self.min_samples_for_confidence
                    else "Need more data"
                ),
            }
            for category, stats in self.categories.items()
        ]


def confidence_level(confidence: float) -> str:
    if confidence >= 0.9:
        return "Very High"
    if confidence >= 0.7:
        return "High"
    if confidence >= 0.5:
        return "Medium"
    if confidence >= 0.3:
        return "Low"
    return "Insufficient Data"


def _sample_variance(values: Sequence[float]) -> float:
    if len(values) < 2:
        return 0.0
    mean = sum(values) / len(values)
    return sum((value - mean) ** 2 for value in values) / (len(values) - 1)


def learning_confidence(
    ratios: Sequence[float],
    time_weights: Sequence[float],
) -> float:
    """0.4 sample mass + 0.4 ratio agreement + 0.2 recency, bounded to [0, 1]."""
    if not ratios:
        return 0.0
    sample_score = min(1.0, len(ratios) / FULL_SAMPLE_COUNT)
    spread = math.sqrt(_sample_variance(ratios))
    agreement_score = max(0.0, 1.0 - spread / RATIO_SPREAD_TOLERANCE)
    recency_score = sum(time_weights) / max(1, len(time_weights))
    return clamp(sample_score * 0.4 + agreement_score * 0.4 + recency_score * 0.2, 0.0, 1.0)


def weighted_scaling_factor(
    points: Iterable[TSSCalibrationDataPoint],
    today: date,
    *,
    half_life_days: float = LEARNING_HALF_LIFE_DAYS,
) -> tuple[float, float, int]:
    """(factor, confidence, sample count) over the usable points; factor = sum(r*w) / sum(w)."""
    usable = [point for point in points if point.is_usable_for_learning]
    if not usable:
        return 1.0, 0.0, 0

    weighted_sum = 0.0
    total_weight = 0.0
    ratios: list[float] = []
    time_weights: list[float] = []
    for point in usable:
        ratio = point.scaling_ratio
        if ratio is None:
            continue
        weight = point.learning_weight(today, half_life_days)
        weighted_sum += ratio * weight
        total_weight += weight
        ratios.append(ratio)
        time_weights.append(point.time_weight(today, half_life_days))

    factor = weighted_sum / total_weight if total_weight > 0 else 1.0
    return factor, learning_confidence(ratios, time_weights), len(ratios)


def _stats_for(
    points: Sequence[TSSCalibrationDataPoint],
    today: date,
    half_life_days: float,
) -> FactorStats:
    factor, _, count = weighted_scaling_factor(points, today, half_life_days=half_life_days)
    if count == 0:
        return FactorStats()
    return FactorStats(factor=factor, sample_count=count)


def recalculate_profile(
    profile: ScalingProfile,
    points: Sequence[TSSCalibrationDataPoint],
    today: date,
    *,
    half_life_days: float = LEARNING_HALF_LIFE_DAYS,
) -> ScalingProfile:
    """Rebuild every statistic of ``profile`` in place from ``points``."""
    valid = [point for point in points if point.is_valid]

    factor, confidence, count = weighted_scaling_factor(valid, today, half_life_days=half_life_days)
    profile.global_factor = factor
    profile.global_confidence = confidence
    profile.global_sample_count = count

    for category in SCALED_CATEGORIES:
        single_sport = [
            point
            for point in valid
            if point.category == category and not point.is_multi_sport
        ]
        profile.categories[category] = _stats_for(single_sport, today, half_life_days)

    for bucket in INTENSITY_BUCKETS:
        bucketed = [point for point in valid if point.intensity_bucket == bucket]
        profile.intensity_buckets[bucket] = _stats_for(bucketed, today, half_life_days)

    profile.updated_at = _now()
    logger.info(
        "Recalculated scaling profile: factor=%.3f confidence=%.0f%% samples=%d",
        profile.global_factor,
        profile.global_confidence * 100,
        profile.global_sample_count,
    )
    return profile


def reset_profile(profile: ScalingProfile) -> ScalingProfile:
    """Forget everything learned; user-facing switches are kept."""
    profile.global_factor = 1.0
    profile.global_confidence = 0.0
    profile.global_sample_count = 0
    profile.categories = _empty_categories()
    profile.intensity_buckets = _empty_buckets()
    profile.calibration_complete = False
    profile.updated_at = _now()
    return profile


@dataclass(frozen=True)
class LearningStatistics:
    scaling_factor: float
    confidence: float
    sample_count: int
    learning_enabled: bool
    can_apply_scaling: bool
    categories: dict[ActivityCategory, FactorStats]
    direct_sample_count: int
    recent_sample_count: int
    recent_points: list[TSSCalibrationDataPoint]
    should_suggest_disabling_manual_calibration: bool

    @property
    def scaling_percentage(self) -> str:
        return f"{(self.scaling_factor - 1) * 100:.0f}%"

    @property
    def confidence_level(self) -> str:
        return confidence_level(self.confidence)

    @property
    def status_description(self) -> str:
        if not self.learning_enabled:
            return "Learning disabled"
        if self.sample_count == 0:
            return "No calibration data yet"
        if not self.can_apply_scaling:
            return "Need more data to apply scaling"
        return f"Active: adjusting stress by {self.scaling_percentage}"


def learning_statistics(
    profile: ScalingProfile,
    points: Sequence[TSSCalibrationDataPoint],
    today: date,
    *,
    recent_limit: int = 10,
) -> LearningStatistics:
    valid = sorted(
        (point for point in points if point.is_valid),
        key=lambda point: point.effective_date,
        reverse=True,
    )
    direct = [point for point in valid if point.method == "direct"]
    return LearningStatistics(
        scaling_factor=profile.global_factor,
        confidence=profile.global_confidence,
        sample_count=profile.global_sample_count,
        learning_enabled=profile.learning_enabled,
        can_apply_scaling=profile.can_apply_scaling,
        categories=dict(profile.categories),
        direct_sample_count=len(direct),
        recent_sample_count=sum(1 for point in direct if point.age_in_days(today) <= 30),
        recent_points=valid[:recent_limit],
        should_suggest_disabling_manual_calibration=(
            profile.should_suggest_disabling_manual_calibration
        ),
    )
