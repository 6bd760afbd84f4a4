"""Run log statistics: lifetime totals, current-week figures and weekly rollups."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pandas as pd

from core.week_calculator import get_sunday_of_week

WEEKLY_COLUMNS = ['runs', 'distance_km', 'duration_min', 'load']


def _runs_frame(runs: List[Dict[str, Any]]) -> Optional[pd.DataFrame]:
    if not runs:
        return None
    df = pd.DataFrame(runs)
    df['date_obj'] = pd.to_datetime(df['date'], utc=True, errors='coerce', format='ISO8601')
    df = df.dropna(subset=['date_obj']).copy()
    if df.empty:
        return None
    for col in ('distance_km', 'duration_min', 'trimp'):
        if col not in df.columns:
            df[col] = 0.0
        df[col] = pd.to_numeric(df[col], errors='coerce').fillna(0.0)
    return df


def summarize_runs(runs: List[Dict[str, Any]], reference_date=None) -> Dict[str, Any]:
    """
    Headline numbers for a user's run log.

    The current week runs from the Sunday on or before reference_date
    (default: today, UTC) onwards.
    """
    summary = {
        'total_runs': 0,
        'total_distance_km': 0.0,
        'this_week_km': 0.0,
        'this_week_runs': 0,
        'this_week_load': 0.0,
    }
    df = _runs_frame(runs)
    if df is None:
        return summary

    if reference_date is None:
        reference_date = datetime.now(timezone.utc).date()
    sunday = get_sunday_of_week(reference_date)
    week_start = pd.Timestamp(sunday, tz='UTC')
    this_week = df[df['date_obj'] >= week_start]

    summary.update({
        'total_runs': int(len(df)),
        'total_distance_km': round(float(df['distance_km'].sum()), 1),
        'this_week_km': round(float(this_week['distance_km'].sum()), 1),
        'this_week_runs': int(len(this_week)),
        'this_week_load': round(float(this_week['trimp'].sum()), 1),
    })
    return summary


def weekly_summary(runs: List[Dict[str, Any]]) -> pd.DataFrame:
    """One row per Sunday-start week: run count, distance, duration and TRIMP load."""
    df = _runs_frame(runs)
    if df is None:
        return pd.DataFrame(columns=WEEKLY_COLUMNS)

    day = df['date_obj'].dt.normalize()
    df['week_start'] = (day - pd.to_timedelta((day.dt.dayofweek + 1) % 7, unit='D')).dt.date

    weekly = df.groupby('week_start').agg(
        runs=('distance_km', 'size'),
        distance_km=('distance_km', 'sum'),
        duration_min=('duration_min', 'sum'),
        load=('trimp', 'sum'),
    )
    return weekly[WEEKLY_COLUMNS].round({'distance_km': 1, 'duration_min': 1, 'load': 1}).sort_index()
