"""Shared heart-rate zone thresholds and time-in-zone helpers."""

from __future__ import annotations

from typing import Dict, Optional, Tuple

import numpy as np

from constants import DEFAULT_MAX_HR

HR_ZONE_ORDER: Tuple[str, ...] = (
    'Zone 1',
    'Zone 2',
    'Zone 3',
    'Zone 4',
    'Zone 5',
)

# Column name in the runs table for each zone's share of HR time.
HR_ZONE_FIELDS: Dict[str, str] = {
    'Zone 1': 'pct_z1',
    'Zone 2': 'pct_z2',
    'Zone 3': 'pct_z3',
    'Zone 4': 'pct_z4',
    'Zone 5': 'pct_z5',
}

HR_ZONE_DESCRIPTIONS: Dict[str, str] = {
    'Zone 1': 'Easy (<60% max HR)',
    'Zone 2': 'Aerobic (60-70% max HR)',
    'Zone 3': 'The Grey Zone (70-80% max HR)',
    'Zone 4': 'Hard (80-90% max HR)',
    'Zone 5': 'Max effort (>90% max HR)',
}

MIN_SAMPLE_SECONDS = 0.25
MAX_SAMPLE_SECONDS = 10.0


def normalize_max_hr(max_hr, default: float = DEFAULT_MAX_HR) -> float:
    """Return a valid max-HR value."""
    try:
        value = float(max_hr or 0)
    except (TypeError, ValueError):
        value = 0.0
    if value <= 0:
        return float(default)
    return value


def get_zone_thresholds(max_hr) -> Dict[str, float]:
    """Return upper bounds for Zones 1-4 and lower bound for Zone 5."""
    max_hr_value = normalize_max_hr(max_hr)
    return {
        'Zone 1': max_hr_value * 0.60,
        'Zone 2': max_hr_value * 0.70,
        'Zone 3': max_hr_value * 0.80,
        'Zone 4': max_hr_value * 0.90,
        'Zone 5': max_hr_value * 0.90,  # Zone 5 lower bound
    }


def classify_hr_zone_by_ratio(ratio: float) -> str:
    """Classify by HR/max-HR ratio using 5-zone Garmin-style boundaries."""
    try:
        ratio = float(ratio)
    except (TypeError, ValueError):
        ratio = 0.0
    if ratio < 0.60:
        return 'Zone 1'
    if ratio < 0.70:
        return 'Zone 2'
    if ratio < 0.80:
        return 'Zone 3'
    if ratio < 0.90:
        return 'Zone 4'
    return 'Zone 5'


def classify_hr_zone(hr_value, max_hr) -> str:
    """Classify a heart-rate value into one of 5 zones."""
    try:
        hr = float(hr_value or 0)
    except (TypeError, ValueError):
        hr = 0.0
    if hr <= 0:
        return 'Zone 1'
    ratio = hr / normalize_max_hr(max_hr)
    return classify_hr_zone_by_ratio(ratio)


def compute_sample_durations_seconds(timestamps, sample_count):
    """Estimate per-sample durations from timestamps (fallback to 1s cadence)."""
    if sample_count <= 0:
        return []

    default_seconds = 1.0
    durations = [default_seconds] * sample_count

    if not timestamps:
        return durations

    usable = min(sample_count, len(timestamps))
    if usable < 2:
        return durations

    deltas = {}
    for idx in range(1, usable):
        prev_ts = timestamps[idx - 1]
        cur_ts = timestamps[idx]
        if prev_ts is None or cur_ts is None:
            continue
        delta_seconds = (cur_ts - prev_ts).total_seconds()
        if delta_seconds > 0:
            deltas[idx] = float(delta_seconds)

    if deltas:
        default_seconds = float(np.median(list(deltas.values())))
    default_seconds = max(MIN_SAMPLE_SECONDS, min(MAX_SAMPLE_SECONDS, default_seconds))
    durations = [default_seconds] * sample_count

    # First sample has no predecessor; it keeps the median interval.
    for idx, delta_seconds in deltas.items():
        durations[idx] = max(MIN_SAMPLE_SECONDS, min(MAX_SAMPLE_SECONDS, delta_seconds))

    return durations


def compute_zone_percentages(hr_stream, max_hr, timestamps=None) -> Optional[Dict[str, float]]:
    """
    Share of heart-rate time spent in each zone, as percentages.

    Returns ``{'pct_z1': ..., 'pct_z5': ...}`` summing to ~100, or None when
    the stream carries no usable heart-rate samples.
    """
    hr_values = list(hr_stream or [])
    sample_durations = compute_sample_durations_seconds(timestamps or [], len(hr_values))
    max_hr_value = normalize_max_hr(max_hr)

    zone_seconds = {zone: 0.0 for zone in HR_ZONE_ORDER}
    for hr_raw, sample_seconds in zip(hr_values, sample_durations):
        try:
            hr_value = float(hr_raw)
        except (TypeError, ValueError):
            continue
        if hr_value <= 0:
            continue
        zone_seconds[classify_hr_zone(hr_value, max_hr_value)] += sample_seconds

    total_seconds = sum(zone_seconds.values())
    if total_seconds <= 0:
        return None

    return {
        HR_ZONE_FIELDS[zone]: round(zone_seconds[zone] / total_seconds * 100.0, 1)
        for zone in HR_ZONE_ORDER
    }
