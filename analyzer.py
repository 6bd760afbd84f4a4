"""
FIT File Decoder
Turns raw FIT bytes into ActivitySession summaries for the run importer.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import fitparse

from constants import MSG_NO_SESSION
from errors import DecodeError


logger = logging.getLogger(__name__)

# user_profile fields that may carry the athlete's max HR, most specific first
PROFILE_MAX_HR_KEYS = (
    'default_max_running_heart_rate',
    'default_max_heart_rate',
    'max_heart_rate',
)


def get_best_value(record, legacy_key, enhanced_key):
    val = record.get(enhanced_key)
    if val is None:
        val = record.get(legacy_key)
    return val


def _as_utc(value) -> Optional[datetime]:
    # fitparse hands back naive UTC datetimes
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _sport_label(value) -> Optional[str]:
    if value is None:
        return None
    return str(value).strip().lower()


@dataclass(frozen=True)
class ActivitySession:
    """One recorded activity segment from a FIT file."""

    sport: Optional[str]
    total_distance_m: float = 0.0
    total_elapsed_time_s: float = 0.0
    total_timer_time_s: float = 0.0
    avg_heart_rate: Optional[int] = None
    max_heart_rate: Optional[int] = None
    total_calories: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    profile_max_hr: Optional[int] = None
    hr_stream: List[int] = field(default_factory=list)
    hr_timestamps: List[datetime] = field(default_factory=list)

    @property
    def distance_km(self) -> float:
        return (self.total_distance_m or 0.0) / 1000.0

    @property
    def duration_s(self) -> float:
        # Timer (moving) time first, elapsed time as fallback.
        return float(self.total_timer_time_s or self.total_elapsed_time_s or 0.0)

    @property
    def duration_min(self) -> float:
        return self.duration_s / 60.0

    def contains(self, ts: Optional[datetime]) -> bool:
        if ts is None or self.start_time is None:
            return False
        end = self.end_time or self.start_time + timedelta(seconds=self.total_elapsed_time_s or 0)
        return self.start_time <= ts <= end


class FitAnalyzer:
    """Decodes FIT files into session summaries plus their heart-rate samples."""

    def __init__(self, check_crc: bool = True):
        self.check_crc = check_crc

    def decode_file(self, path: str) -> List[ActivitySession]:
        with open(path, 'rb') as fh:
            return self.decode(fh.read())

    def decode(self, content: bytes) -> List[ActivitySession]:
        """
        Decode a FIT byte stream.

        Raises DecodeError for malformed, truncated or CRC-failing input and
        for files without a session message.
        """
        if not content:
            raise DecodeError("empty file")

        try:
            fitfile = fitparse.FitFile(io.BytesIO(content), check_crc=self.check_crc)
            messages = list(fitfile.get_messages(['session', 'user_profile', 'record']))
        except fitparse.FitParseError as exc:
            raise DecodeError(str(exc) or type(exc).__name__) from exc
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            # fitparse surfaces some corrupt definitions as plain errors
            raise DecodeError("unsupported record schema ({0})".format(exc)) from exc

        session_values: List[Dict[str, Any]] = []
        profile_max_hr = None
        hr_samples = []

        for msg in messages:
            vals = msg.get_values()
            if msg.name == 'session':
                session_values.append(vals)
            elif msg.name == 'user_profile':
                # Only take a valid positive value from the device profile
                for key in PROFILE_MAX_HR_KEYS:
                    profile_hr = vals.get(key) or 0
                    if isinstance(profile_hr, (int, float)) and profile_hr > 0:
                        profile_max_hr = int(profile_hr)
                        break
            elif msg.name == 'record':
                hr = vals.get('heart_rate')
                ts = _as_utc(vals.get('timestamp'))
                if hr is not None and ts is not None:
                    hr_samples.append((ts, hr))

        if not session_values:
            raise DecodeError(MSG_NO_SESSION)

        logger.debug("Decoded %d session(s), %d HR samples", len(session_values), len(hr_samples))
        sessions = [self._build_session(vals, profile_max_hr) for vals in session_values]
        return [self._attach_hr_samples(session, hr_samples, single=len(sessions) == 1)
                for session in sessions]

    @staticmethod
    def _build_session(vals: Dict[str, Any], profile_max_hr: Optional[int]) -> ActivitySession:
        start_time = _as_utc(vals.get('start_time')) or _as_utc(vals.get('timestamp'))
        elapsed = float(vals.get('total_elapsed_time') or 0.0)
        end_time = _as_utc(vals.get('timestamp'))
        if end_time is None and start_time is not None:
            end_time = start_time + timedelta(seconds=elapsed)

        return ActivitySession(
            sport=_sport_label(vals.get('sport')),
            total_distance_m=float(get_best_value(vals, 'total_distance', 'enhanced_total_distance') or 0.0),
            total_elapsed_time_s=elapsed,
            total_timer_time_s=float(vals.get('total_timer_time') or 0.0),
            avg_heart_rate=vals.get('avg_heart_rate') or None,
            max_heart_rate=vals.get('max_heart_rate') or None,
            total_calories=vals.get('total_calories') or None,
            start_time=start_time,
            end_time=end_time,
            profile_max_hr=profile_max_hr,
        )

    @staticmethod
    def _attach_hr_samples(session: ActivitySession, hr_samples, single: bool) -> ActivitySession:
        # Single-session files own every record; otherwise match by time window.
        if single:
            matched = hr_samples
        else:
            matched = [(ts, hr) for ts, hr in hr_samples if session.contains(ts)]
        if not matched:
            return session
        return replace(
            session,
            hr_stream=[hr for _ts, hr in matched],
            hr_timestamps=[ts for ts, _hr in matched],
        )
