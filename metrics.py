"""
Derived run metrics: pace, TRIMP training load and run-type classification.

All functions here are pure. Missing or nonsensical inputs produce None (or
the pace placeholder) instead of NaN/inf so nothing unusable reaches the
runs table.
"""

from __future__ import annotations

import math
from typing import Optional

from constants import (
    CLASSIFIER,
    DEFAULT_MAX_HR,
    DEFAULT_RESTING_HR,
    PACE_PLACEHOLDER,
    RunType,
    TRIMP_EXPONENT,
    TRIMP_MAX_RATIO,
    TRIMP_WEIGHT,
)
from hr_zones import normalize_max_hr


def _positive(value) -> Optional[float]:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def calculate_pace(distance_km, duration_min) -> Optional[float]:
    """Minutes per kilometre, or None when either input is not positive."""
    distance = _positive(distance_km)
    duration = _positive(duration_min)
    if distance is None or duration is None:
        return None
    return duration / distance


def format_pace(pace_min_km) -> str:
    """Render min/km as ``M:SS``; unusable input gives ``--:--``."""
    pace = _positive(pace_min_km)
    if pace is None:
        return PACE_PLACEHOLDER
    total_seconds = int(round(pace * 60))
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}:{seconds:02d}"


def parse_pace(pace_str) -> Optional[float]:
    """Inverse of format_pace: ``"5:30"`` -> 5.5."""
    if not pace_str or pace_str == PACE_PLACEHOLDER:
        return None
    try:
        m, s = map(int, str(pace_str).split(':'))
    except ValueError:
        return None
    if m < 0 or not 0 <= s < 60:
        return None
    return m + s / 60.0


def calculate_trimp(duration_min, avg_hr, max_hr=DEFAULT_MAX_HR, resting_hr=DEFAULT_RESTING_HR) -> Optional[float]:
    """
    Banister TRIMP for a whole activity.

    Uses the heart-rate reserve ratio, clamped to [0, 1.1]. Returns None when
    there is no heart rate, since load cannot be estimated without it.
    """
    hr = _positive(avg_hr)
    if hr is None:
        return None
    duration = _positive(duration_min) or 0.0

    max_hr_value = normalize_max_hr(max_hr)
    try:
        rest = float(resting_hr or 0)
    except (TypeError, ValueError):
        rest = 0.0
    if rest <= 0 or rest >= max_hr_value:
        rest = min(DEFAULT_RESTING_HR, max_hr_value * 0.5)

    ratio = (hr - rest) / (max_hr_value - rest)
    ratio = max(0.0, min(TRIMP_MAX_RATIO, ratio))
    load = duration * ratio * TRIMP_WEIGHT * math.exp(TRIMP_EXPONENT * ratio)
    return round(load, 1)


def classify_run(distance_km, duration_min, avg_hr=None, max_hr=None, reference_max_hr=DEFAULT_MAX_HR) -> str:
    """
    Label a run as one of RUN_TYPES.

    Rules run in a fixed order; see constants.CLASSIFIER for thresholds.
    Falls back to 'easy' when nothing matches.
    """
    distance = _positive(distance_km) or 0.0
    duration = _positive(duration_min) or 0.0
    reference = normalize_max_hr(reference_max_hr)

    avg = _positive(avg_hr)
    peak = _positive(max_hr)
    intensity = avg / reference if avg is not None else None
    peak_intensity = peak / reference if peak is not None else None

    if (
        intensity is not None
        and peak_intensity is not None
        and intensity < CLASSIFIER['INTERVAL_AVG_CEILING']
        and peak_intensity >= CLASSIFIER['INTERVAL_PEAK_FLOOR']
        and distance < CLASSIFIER['INTERVAL_MAX_KM']
    ):
        return RunType.INTERVAL.value

    if intensity is not None and intensity >= CLASSIFIER['TEMPO_AVG_FLOOR']:
        return RunType.TEMPO.value

    if distance >= CLASSIFIER['LONG_RUN_KM'] or duration >= CLASSIFIER['LONG_RUN_MIN']:
        return RunType.LONG.value

    if (
        intensity is not None
        and intensity < CLASSIFIER['RECOVERY_AVG_CEILING']
        and distance <= CLASSIFIER['RECOVERY_MAX_KM']
    ):
        return RunType.RECOVERY.value

    return RunType.EASY.value
