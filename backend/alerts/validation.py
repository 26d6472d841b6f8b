"""
Trigger & Settings Validation

All checks raise core.errors.ValidationError before anything is written.
"""

import math
import re
from typing import Any, Dict

from core.errors import ValidationError


MIN_THRESHOLD = 1.0
MAX_THRESHOLD = 200.0
MAX_SIMULATOR_ID_LENGTH = 100

_PHONE_STRIP = re.compile(r"[\s\-()+]")
_SIMULATOR_ID = re.compile(r"^[A-Za-z0-9_\-]+$")
_INVALID_COUNTRY_CODES = {d * 3 for d in "0123456789"}


def normalize_phone_number(phone_number: Any) -> str:
    """
    Normalize to digits only (country code included), e.g. "+60 12-345 6789" → "60123456789".

    The gateway expects 10-15 digits.
    """
    if not phone_number or not isinstance(phone_number, str):
        raise ValidationError("Phone number is required", "phone_number",
                              ValidationError.INVALID_PHONE_NUMBER)

    cleaned = _PHONE_STRIP.sub("", phone_number)
    if not cleaned.isdigit():
        raise ValidationError("Phone number can only contain digits", "phone_number",
                              ValidationError.INVALID_PHONE_NUMBER)

    if not 10 <= len(cleaned) <= 15:
        raise ValidationError("Phone number must be 10-15 digits including country code",
                              "phone_number", ValidationError.INVALID_PHONE_NUMBER)

    if cleaned[:3] in _INVALID_COUNTRY_CODES:
        raise ValidationError("Invalid country code", "phone_number",
                              ValidationError.INVALID_PHONE_NUMBER)

    return cleaned


def normalize_threshold(threshold: Any) -> float:
    """1% to 200%, at most one decimal place"""
    if threshold is None or threshold == "":
        raise ValidationError("Threshold percentage is required", "threshold_percent")

    if isinstance(threshold, bool):
        raise ValidationError("Threshold must be a valid number", "threshold_percent")

    try:
        value = float(threshold)
    except (TypeError, ValueError):
        raise ValidationError("Threshold must be a valid number", "threshold_percent")

    if math.isnan(value) or math.isinf(value):
        raise ValidationError("Threshold must be a valid number", "threshold_percent")

    if value < MIN_THRESHOLD:
        raise ValidationError("Threshold must be at least 1%", "threshold_percent")

    if value > MAX_THRESHOLD:
        raise ValidationError("Threshold cannot exceed 200%", "threshold_percent")

    if abs(round(value, 1) - value) > 1e-9:
        raise ValidationError("Threshold can have at most 1 decimal place", "threshold_percent")

    return round(value, 1)


def validate_simulator_id(simulator_id: Any) -> str:
    if not simulator_id or not isinstance(simulator_id, str) or not simulator_id.strip():
        raise ValidationError("Simulator ID is required", "simulator_id")

    simulator_id = simulator_id.strip()
    if len(simulator_id) > MAX_SIMULATOR_ID_LENGTH:
        raise ValidationError("Simulator ID is too long (max 100 characters)", "simulator_id")

    if not _SIMULATOR_ID.match(simulator_id):
        raise ValidationError(
            "Simulator ID can only contain letters, numbers, hyphens, and underscores",
            "simulator_id",
        )
    return simulator_id


def validate_settings_update(updates: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a partial settings update; unknown keys are rejected"""
    allowed = {"cooldown_minutes", "max_daily_notifications_per_trigger", "enabled_globally"}
    unknown = set(updates) - allowed
    if unknown:
        raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}", "settings")

    cleaned: Dict[str, Any] = {}

    if updates.get("cooldown_minutes") is not None:
        value = updates["cooldown_minutes"]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError("Cooldown minutes must be a number", "cooldown_minutes")
        if not 1 <= value <= 1440:
            raise ValidationError("Cooldown minutes must be between 1 and 1440 (24 hours)",
                                  "cooldown_minutes")
        cleaned["cooldown_minutes"] = value

    if updates.get("max_daily_notifications_per_trigger") is not None:
        value = updates["max_daily_notifications_per_trigger"]
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError("Max daily notifications must be a whole number",
                                  "max_daily_notifications_per_trigger")
        if not 1 <= value <= 100:
            raise ValidationError("Max daily notifications must be between 1 and 100",
                                  "max_daily_notifications_per_trigger")
        cleaned["max_daily_notifications_per_trigger"] = value

    if updates.get("enabled_globally") is not None:
        value = updates["enabled_globally"]
        if not isinstance(value, bool):
            raise ValidationError("Enabled globally must be a boolean", "enabled_globally")
        cleaned["enabled_globally"] = value

    return cleaned
