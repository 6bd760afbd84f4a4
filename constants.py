"""Shared thresholds, labels and defaults for run ingestion."""

from __future__ import annotations

from enum import Enum
from typing import Tuple

# --- INGESTION ---
FIT_EXTENSION = '.fit'
FIT_STORAGE_PREFIX = 'fit_'
STRAVA_STORAGE_PREFIX = 'strava_'

DATA_SOURCE_FIT = 'fit_upload'
DATA_SOURCE_STRAVA = 'strava_sync'

# Session sport labels accepted as a run. Everything else is rejected.
SUPPORTED_SPORTS: Tuple[str, ...] = ('running', 'run')
STRAVA_RUN_TYPES: Tuple[str, ...] = ('Run', 'VirtualRun')

MIN_DISTANCE_KM = 0.1
MIN_DURATION_MIN = 1.0

DEFAULT_DB_PATH = 'coach_runs.db'
DB_PATH_ENV = 'RUNCOACH_DB'

# --- HEART RATE DEFAULTS ---
DEFAULT_MAX_HR = 185.0
DEFAULT_RESTING_HR = 60.0

# --- TRIMP ---
# Banister weighting: load/min = r * 0.64 * e^(1.92 r), r = HR reserve ratio.
TRIMP_WEIGHT = 0.64
TRIMP_EXPONENT = 1.92
TRIMP_MAX_RATIO = 1.10


class RunType(str, Enum):
    """Fixed run-type labels produced by metrics.classify_run."""
    EASY = "easy"
    RECOVERY = "recovery"
    TEMPO = "tempo"
    INTERVAL = "interval"
    LONG = "long"


RUN_TYPES: Tuple[str, ...] = tuple(run_type.value for run_type in RunType)


# Classifier thresholds. Intensities are fractions of the reference max HR.
#   interval : avg < INTERVAL_AVG_CEILING, peak >= INTERVAL_PEAK_FLOOR,
#              distance < INTERVAL_MAX_KM
#   tempo    : avg >= TEMPO_AVG_FLOOR
#   long     : distance >= LONG_RUN_KM or duration >= LONG_RUN_MIN
#   recovery : avg < RECOVERY_AVG_CEILING and distance <= RECOVERY_MAX_KM
CLASSIFIER = {
    'INTERVAL_AVG_CEILING': 0.85,
    'INTERVAL_PEAK_FLOOR': 0.92,
    'INTERVAL_MAX_KM': 12.0,
    'TEMPO_AVG_FLOOR': 0.84,
    'LONG_RUN_KM': 16.0,
    'LONG_RUN_MIN': 90.0,
    'RECOVERY_AVG_CEILING': 0.68,
    'RECOVERY_MAX_KM': 8.0,
}

PACE_PLACEHOLDER = '--:--'

# --- ERROR COPY ---
MSG_NOT_FIT = 'Not a FIT file'
MSG_NO_SESSION = 'No session data found'
MSG_NOT_RUNNING = 'Not a running activity ({0})'
MSG_TOO_SHORT = 'Activity too short'

# --- PLANS ---
PLAN_STATUSES: Tuple[str, ...] = ('active', 'completed', 'deleted')
DAY_ORDER = {
    'sunday': 0,
    'monday': 1,
    'tuesday': 2,
    'wednesday': 3,
    'thursday': 4,
    'friday': 5,
    'saturday': 6,
}
