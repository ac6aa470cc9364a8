"""Stable error taxonomy for calibration flows."""

from __future__ import annotations

from typing import Literal

CalibrationErrorClass = Literal[
    "input",
    "trust",
    "persistence",
    "learning",
    "other",
]

CALIBRATION_ERROR_CLASS_BY_CODE: dict[str, CalibrationErrorClass] = {
    "no_usable_values": "input",
    "value_out_of_range": "input",
    "invalid_date": "input",
    "record_not_found": "input",
    "low_confidence": "trust",
    "persistence_failed": "persistence",
    "learning_failed": "learning",
}

# Only these reach the user as actionable messages; learning problems and
# derivation rejections stay internal.
_USER_ACTIONABLE_CODES = frozenset({"no_usable_values", "low_confidence", "record_not_found"})

_MESSAGES: dict[str, str] = {
    "no_usable_values": "No PMC values could be extracted from the observation",
    "low_confidence": "Observation confidence is too low to apply calibration",
    "record_not_found": "Calibration record does not exist",
    "persistence_failed": "Failed to save calibration data",
    "learning_failed": "Stress-score learning failed",
}


class CalibrationError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message or _MESSAGES.get(code, code))
        self.code = code
        self.field = field

    @property
    def error_class(self) -> CalibrationErrorClass:
        return classify_calibration_error(self.code)

    @property
    def user_actionable(self) -> bool:
        return is_user_actionable(self.code)


def classify_calibration_error(error_code: str | None) -> CalibrationErrorClass:
    normalized = str(error_code or "").strip().lower()
    if not normalized:
        return "other"
    return CALIBRATION_ERROR_CLASS_BY_CODE.get(normalized, "other")


def is_user_actionable(error_code: str | None) -> bool:
    return str(error_code or "").strip().lower() in _USER_ACTIONABLE_CODES
