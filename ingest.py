from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from analyzer import ActivitySession, FitAnalyzer
from constants import (
    DATA_SOURCE_FIT,
    DATA_SOURCE_STRAVA,
    DEFAULT_MAX_HR,
    DEFAULT_RESTING_HR,
    FIT_EXTENSION,
    FIT_STORAGE_PREFIX,
    MIN_DISTANCE_KM,
    MIN_DURATION_MIN,
    STRAVA_RUN_TYPES,
    STRAVA_STORAGE_PREFIX,
    SUPPORTED_SPORTS,
)
from db import DatabaseManager
from errors import (
    ActivityTooShort,
    DecodeError,
    DuplicateRunError,
    IngestError,
    UnsupportedActivityType,
    UnsupportedFormat,
)
from hr_zones import compute_zone_percentages
from metrics import calculate_pace, calculate_trimp, classify_run, format_pace


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DerivedRunRecord:
    user_id: str
    filename: str
    date: str
    distance_km: float
    duration_min: float
    duration_sec: int
    avg_hr: Optional[int]
    max_hr: Optional[int]
    avg_pace_min_km: Optional[float]
    avg_pace_str: str
    calories: Optional[int]
    run_type: str
    workout_name: str
    trimp: Optional[float]
    data_source: str = DATA_SOURCE_FIT
    pct_z1: Optional[float] = None
    pct_z2: Optional[float] = None
    pct_z3: Optional[float] = None
    pct_z4: Optional[float] = None
    pct_z5: Optional[float] = None

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class IngestOutcome:
    started_at: str
    finished_at: str
    accepted: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    runs: List[DerivedRunRecord] = field(default_factory=list)


@dataclass(frozen=True)
class HeartRateReference:
    max_hr: float = DEFAULT_MAX_HR
    resting_hr: float = DEFAULT_RESTING_HR


def fit_storage_key(upload_name: str) -> str:
    return FIT_STORAGE_PREFIX + upload_name


def workout_name_from_upload(upload_name: str) -> str:
    stem, ext = os.path.splitext(upload_name)
    return stem if ext.lower() == FIT_EXTENSION else upload_name


def _round_hr(value) -> Optional[int]:
    if value is None:
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    return int(round(value)) if value > 0 else None


def derive_run_record(
    user_id: str,
    filename: str,
    workout_name: str,
    session: ActivitySession,
    hr_reference: HeartRateReference,
    data_source: str = DATA_SOURCE_FIT,
) -> DerivedRunRecord:
    """
    Validate one decoded session and compute its stored metrics.

    Raises UnsupportedActivityType or ActivityTooShort.
    """
    sport = session.sport or ''
    if sport not in SUPPORTED_SPORTS:
        raise UnsupportedActivityType(sport)

    # Limits apply to the raw values; rounding is for storage only.
    if session.distance_km < MIN_DISTANCE_KM or session.duration_min < MIN_DURATION_MIN:
        raise ActivityTooShort(session.distance_km, session.duration_min)
    distance_km = round(session.distance_km, 2)
    duration_min = round(session.duration_min, 2)

    avg_hr = _round_hr(session.avg_heart_rate)
    max_hr = _round_hr(session.max_heart_rate)

    pace = calculate_pace(session.distance_km, session.duration_min)
    trimp = None
    if avg_hr is not None:
        trimp = calculate_trimp(
            session.duration_min,
            avg_hr,
            max_hr=hr_reference.max_hr,
            resting_hr=hr_reference.resting_hr,
        )
    run_type = classify_run(
        session.distance_km,
        session.duration_min,
        avg_hr=avg_hr,
        max_hr=max_hr,
        reference_max_hr=hr_reference.max_hr,
    )
    zones = compute_zone_percentages(
        session.hr_stream, hr_reference.max_hr, timestamps=session.hr_timestamps
    ) or {}

    started = session.start_time or datetime.now(timezone.utc)

    return DerivedRunRecord(
        user_id=user_id,
        filename=filename,
        date=started.isoformat(),
        distance_km=distance_km,
        duration_min=duration_min,
        duration_sec=int(round(session.duration_s)),
        avg_hr=avg_hr,
        max_hr=max_hr,
        avg_pace_min_km=round(pace, 2) if pace is not None else None,
        avg_pace_str=format_pace(pace),
        calories=session.total_calories,
        run_type=run_type,
        workout_name=workout_name,
        trimp=trimp,
        data_source=data_source,
        **zones,
    )


def session_from_strava_activity(activity: Mapping[str, Any]) -> ActivitySession:
    """Map a Strava activity summary onto the FIT session shape."""
    start_time = None
    raw_start = activity.get('start_date')
    if raw_start:
        start_time = datetime.fromisoformat(str(raw_start).replace('Z', '+00:00'))
        if start_time.tzinfo is None:
            start_time = start_time.replace(tzinfo=timezone.utc)

    return ActivitySession(
        sport='running' if activity.get('type') in STRAVA_RUN_TYPES else str(activity.get('type') or '').lower(),
        total_distance_m=float(activity.get('distance') or 0.0),
        total_elapsed_time_s=float(activity.get('elapsed_time') or 0.0),
        total_timer_time_s=float(activity.get('moving_time') or 0.0),
        avg_heart_rate=activity.get('average_heartrate'),
        max_heart_rate=activity.get('max_heartrate'),
        total_calories=activity.get('calories') or None,
        start_time=start_time,
    )


class RunImporter:
    """Batch ingestion of FIT uploads and Strava summaries into the runs table."""

    def __init__(self, db: Optional[DatabaseManager] = None, analyzer: Optional[FitAnalyzer] = None) -> None:
        self.db = db or DatabaseManager()
        self.analyzer = analyzer or FitAnalyzer()
        # One lock per (user_id, storage key) being imported, with its holder count.
        self._key_locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._key_users: Dict[Tuple[str, str], int] = {}

    async def ingest_files(self, user_id: str, files: Sequence[Tuple[str, bytes]]) -> IngestOutcome:
        """Ingest (filename, content) pairs for one user; never raises per file."""
        outcome = IngestOutcome(started_at=self._utc_now_iso(), finished_at='')
        profile = self._load_profile(user_id)

        for upload_name, content in files:
            await self._ingest_upload(user_id, upload_name, content, profile, outcome)

        return self._finish(user_id, outcome)

    async def ingest_paths(self, user_id: str, paths: Iterable[str]) -> IngestOutcome:
        """Read FIT files from disk and ingest them under their base names."""
        outcome = IngestOutcome(started_at=self._utc_now_iso(), finished_at='')
        profile = self._load_profile(user_id)

        for path in sorted(set(paths)):
            upload_name = os.path.basename(path)
            try:
                content = await asyncio.to_thread(self._read_bytes, path)
            except OSError as exc:
                outcome.errors.append("{0}: {1}".format(upload_name, exc))
                continue
            await self._ingest_upload(user_id, upload_name, content, profile, outcome)

        return self._finish(user_id, outcome)

    async def ingest_strava_activities(self, user_id: str, activities: Sequence[Mapping[str, Any]]) -> IngestOutcome:
        """Store Strava run summaries; non-run activity types are ignored."""
        outcome = IngestOutcome(started_at=self._utc_now_iso(), finished_at='')
        profile = self._load_profile(user_id)

        for activity in activities:
            if activity.get('type') not in STRAVA_RUN_TYPES:
                continue
            key = STRAVA_STORAGE_PREFIX + str(activity.get('id'))
            try:
                if self.db.run_exists(user_id, key):
                    outcome.skipped += 1
                    continue
                self._store_session(
                    user_id=user_id,
                    key=key,
                    workout_name=str(activity.get('name') or key),
                    session=session_from_strava_activity(activity),
                    profile=profile,
                    data_source=DATA_SOURCE_STRAVA,
                    outcome=outcome,
                )
            except IngestError as exc:
                outcome.errors.append("{0}: {1}".format(key, exc))
            except Exception as exc:
                logger.exception("Unexpected error ingesting %s for %s", key, user_id)
                outcome.errors.append("{0}: Unexpected error: {1}".format(key, exc))

        return self._finish(user_id, outcome)

    async def _ingest_upload(
        self,
        user_id: str,
        upload_name: str,
        content: bytes,
        profile: Optional[Dict[str, Any]],
        outcome: IngestOutcome,
    ) -> None:
        key = fit_storage_key(upload_name)
        claim = (user_id, key)
        try:
            if not upload_name.lower().endswith(FIT_EXTENSION):
                raise UnsupportedFormat()

            # A batch importing the same key waits here, then sees whether
            # the other import actually stored a row.
            async with self._key_lock(claim):
                if self.db.run_exists(user_id, key):
                    outcome.skipped += 1
                    return

                sessions = await asyncio.to_thread(self.analyzer.decode, content)
                if not sessions:
                    raise DecodeError("no sessions decoded")
                self._store_session(
                    user_id=user_id,
                    key=key,
                    workout_name=workout_name_from_upload(upload_name),
                    session=sessions[0],
                    profile=profile,
                    data_source=DATA_SOURCE_FIT,
                    outcome=outcome,
                )
        except IngestError as exc:
            if isinstance(exc, DecodeError):
                logger.warning("Decode failed for %s: %s", upload_name, exc.detail)
            outcome.errors.append("{0}: {1}".format(upload_name, exc))
        except Exception as exc:
            logger.exception("Unexpected error ingesting %s for %s", upload_name, user_id)
            outcome.errors.append("{0}: Unexpected error: {1}".format(upload_name, exc))

    def _store_session(
        self,
        user_id: str,
        key: str,
        workout_name: str,
        session: ActivitySession,
        profile: Optional[Dict[str, Any]],
        data_source: str,
        outcome: IngestOutcome,
    ) -> None:
        record = derive_run_record(
            user_id=user_id,
            filename=key,
            workout_name=workout_name,
            session=session,
            hr_reference=self._hr_reference(profile, session),
            data_source=data_source,
        )

        try:
            self.db.insert_run(record.to_row())
        except DuplicateRunError:
            # Another writer stored the same key after our existence check.
            outcome.skipped += 1
            return

        outcome.accepted += 1
        outcome.runs.append(record)

    @asynccontextmanager
    async def _key_lock(self, claim: Tuple[str, str]):
        lock = self._key_locks.get(claim)
        if lock is None:
            lock = self._key_locks[claim] = asyncio.Lock()
        self._key_users[claim] = self._key_users.get(claim, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._key_users[claim] -= 1
            if not self._key_users[claim]:
                del self._key_users[claim]
                del self._key_locks[claim]

    def _load_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.db.get_athlete_profile(user_id)
        except Exception as exc:
            logger.warning("Athlete profile lookup failed for %s, using defaults: %s", user_id, exc)
            return None

    @staticmethod
    def _hr_reference(profile: Optional[Dict[str, Any]], session: ActivitySession) -> HeartRateReference:
        # Max HR: athlete profile > device user profile > default (185)
        profile = profile or {}
        max_hr = profile.get('max_hr') or session.profile_max_hr or DEFAULT_MAX_HR
        resting_hr = profile.get('resting_hr') or DEFAULT_RESTING_HR
        return HeartRateReference(max_hr=float(max_hr), resting_hr=float(resting_hr))

    def _finish(self, user_id: str, outcome: IngestOutcome) -> IngestOutcome:
        outcome.finished_at = self._utc_now_iso()
        logger.info(
            "Ingest for %s: %d accepted, %d skipped, %d failed",
            user_id,
            outcome.accepted,
            outcome.skipped,
            len(outcome.errors),
        )
        return outcome

    @staticmethod
    def _read_bytes(path: str) -> bytes:
        with open(path, 'rb') as fh:
            return fh.read()

    @staticmethod
    def _utc_now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()
