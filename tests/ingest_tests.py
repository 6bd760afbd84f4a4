import asyncio
import os
import sqlite3
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from analyzer import ActivitySession, FitAnalyzer
from constants import RUN_TYPES
from db import DatabaseManager
from errors import DecodeError, PersistenceFailure
from fit_builder import SPORT_CYCLING, build_activity
from ingest import RunImporter

START = datetime(2026, 2, 1, 7, 0, tzinfo=timezone.utc)

SESSIONS = {
    b"run-10k": ActivitySession(
        sport="running",
        total_distance_m=10000.0,
        total_timer_time_s=3000.0,
        total_elapsed_time_s=3100.0,
        avg_heart_rate=145,
        max_heart_rate=166,
        total_calories=640,
        start_time=START,
    ),
    b"ride": ActivitySession(
        sport="cycling",
        total_distance_m=30000.0,
        total_timer_time_s=3600.0,
        start_time=START,
    ),
    b"stroll": ActivitySession(
        sport="running",
        total_distance_m=50.0,
        total_timer_time_s=30.0,
        start_time=START,
    ),
    b"short-99.9m": ActivitySession(
        sport="running",
        total_distance_m=99.9,
        total_timer_time_s=600.0,
        start_time=START,
    ),
    b"min-100m-60s": ActivitySession(
        sport="running",
        total_distance_m=100.0,
        total_timer_time_s=60.0,
        start_time=START,
    ),
    b"short-59.9s": ActivitySession(
        sport="running",
        total_distance_m=1000.0,
        total_timer_time_s=59.9,
        start_time=START,
    ),
    b"no-hr": ActivitySession(
        sport="running",
        total_distance_m=5000.0,
        total_timer_time_s=1500.0,
        start_time=START,
    ),
}


class StubAnalyzer:
    """Deterministic decoder stub keyed by file content."""

    def __init__(self):
        self.calls = 0

    def decode(self, content):
        self.calls += 1
        if content not in SESSIONS:
            raise DecodeError("unexpected end of file")
        return [SESSIONS[content]]


class ExplodingAnalyzer:
    """Decoder stub that fails with a non-ingest error."""

    def decode(self, content):
        raise RuntimeError("forced analyzer failure")


class FailingInsertDatabase(DatabaseManager):
    """Store whose writes always fail, as when the backend is unavailable."""

    def insert_run(self, run):
        raise PersistenceFailure("database is locked")


class RunImporterTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.db_path = self.root / "test.db"
        self.db = DatabaseManager(str(self.db_path))
        self.analyzer = StubAnalyzer()
        self.importer = RunImporter(db=self.db, analyzer=self.analyzer)

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_mixed_batch_accepts_skips_and_reports(self):
        outcome = await self.importer.ingest_files("runner-1", [
            ("morning.fit", b"run-10k"),
            ("commute.fit", b"ride"),
            ("morning.fit", b"run-10k"),
        ])

        self.assertEqual(outcome.accepted, 1)
        self.assertEqual(outcome.skipped, 1)
        self.assertEqual(outcome.errors, ["commute.fit: Not a running activity (cycling)"])
        self.assertEqual(self.db.get_count("runner-1"), 1)

    async def test_derived_record_is_persisted(self):
        await self.importer.ingest_files("runner-1", [("Tempo Tuesday.FIT", b"run-10k")])

        row = self.db.get_run("runner-1", "fit_Tempo Tuesday.FIT")
        self.assertIsNotNone(row)
        self.assertEqual(row["distance_km"], 10.0)
        self.assertEqual(row["duration_min"], 50.0)
        self.assertEqual(row["duration_sec"], 3000)
        self.assertEqual(row["avg_pace_min_km"], 5.0)
        self.assertEqual(row["avg_pace_str"], "5:00")
        self.assertEqual(row["avg_hr"], 145)
        self.assertEqual(row["calories"], 640)
        self.assertEqual(row["workout_name"], "Tempo Tuesday")
        self.assertEqual(row["data_source"], "fit_upload")
        self.assertIn(row["run_type"], RUN_TYPES)
        self.assertGreater(row["trimp"], 0)
        self.assertTrue(row["date"].startswith("2026-02-01T07:00:00"))

    async def test_reingesting_same_filename_is_skipped(self):
        first = await self.importer.ingest_files("runner-1", [("easy.fit", b"run-10k")])
        second = await self.importer.ingest_files("runner-1", [("easy.fit", b"run-10k")])

        self.assertEqual(first.accepted, 1)
        self.assertEqual(second.accepted, 0)
        self.assertEqual(second.skipped, 1)
        self.assertEqual(second.errors, [])
        self.assertEqual(self.db.get_count(), 1)
        # Skipped files are not decoded again.
        self.assertEqual(self.analyzer.calls, 1)

    async def test_same_filename_for_another_user_is_accepted(self):
        await self.importer.ingest_files("runner-1", [("easy.fit", b"run-10k")])
        outcome = await self.importer.ingest_files("runner-2", [("easy.fit", b"run-10k")])
        self.assertEqual(outcome.accepted, 1)
        self.assertEqual(self.db.get_count(), 2)

    async def test_corrupt_file_does_not_abort_batch(self):
        outcome = await self.importer.ingest_files("runner-1", [
            ("broken.fit", b"\x0e\x10garbage"),
            ("after.fit", b"run-10k"),
        ])

        self.assertEqual(outcome.accepted, 1)
        self.assertEqual(len(outcome.errors), 1)
        self.assertTrue(outcome.errors[0].startswith("broken.fit: Could not decode FIT file"))

    async def test_wrong_extension_is_rejected_before_decode(self):
        outcome = await self.importer.ingest_files("runner-1", [("run.gpx", b"run-10k")])
        self.assertEqual(outcome.errors, ["run.gpx: Not a FIT file"])
        self.assertEqual(self.analyzer.calls, 0)

    async def test_too_short_activity_is_rejected(self):
        outcome = await self.importer.ingest_files("runner-1", [("oops.fit", b"stroll")])
        self.assertEqual(outcome.accepted, 0)
        self.assertEqual(outcome.errors, ["oops.fit: Activity too short"])

    async def test_minimum_limits_use_unrounded_values(self):
        outcome = await self.importer.ingest_files("runner-1", [
            ("almost-100m.fit", b"short-99.9m"),
            ("exact-minimum.fit", b"min-100m-60s"),
            ("almost-minute.fit", b"short-59.9s"),
        ])

        self.assertEqual(outcome.accepted, 1)
        self.assertEqual(outcome.runs[0].filename, "fit_exact-minimum.fit")
        self.assertEqual(outcome.runs[0].distance_km, 0.1)
        self.assertEqual(outcome.runs[0].duration_min, 1.0)
        self.assertEqual(outcome.errors, [
            "almost-100m.fit: Activity too short",
            "almost-minute.fit: Activity too short",
        ])

    async def test_missing_heart_rate_leaves_load_empty(self):
        outcome = await self.importer.ingest_files("runner-1", [("nohr.fit", b"no-hr")])
        self.assertEqual(outcome.accepted, 1)
        record = outcome.runs[0]
        self.assertIsNone(record.trimp)
        self.assertIsNone(record.avg_hr)
        self.assertIsNone(record.pct_z1)
        self.assertEqual(record.avg_pace_str, "5:00")

    async def test_persistence_failure_is_reported_per_file(self):
        db = FailingInsertDatabase(str(self.root / "failing.db"))
        importer = RunImporter(db=db, analyzer=self.analyzer)

        outcome = await importer.ingest_files("runner-1", [
            ("a.fit", b"run-10k"),
            ("b.fit", b"ride"),
        ])

        self.assertEqual(outcome.accepted, 0)
        self.assertEqual(outcome.errors, [
            "a.fit: Could not save run: database is locked",
            "b.fit: Not a running activity (cycling)",
        ])

    async def test_unexpected_exception_becomes_generic_error(self):
        importer = RunImporter(db=self.db, analyzer=ExplodingAnalyzer())
        with self.assertLogs("ingest", level="ERROR"):
            outcome = await importer.ingest_files("runner-1", [("boom.fit", b"x")])
        self.assertEqual(outcome.errors, ["boom.fit: Unexpected error: forced analyzer failure"])

    async def test_concurrent_batches_store_one_record(self):
        results = await asyncio.gather(
            self.importer.ingest_files("runner-1", [("race.fit", b"run-10k")]),
            self.importer.ingest_files("runner-1", [("race.fit", b"run-10k")]),
        )

        self.assertEqual(sum(r.accepted for r in results), 1)
        self.assertEqual(sum(r.skipped for r in results), 1)
        self.assertEqual(self.db.get_count(), 1)

    async def test_concurrent_batch_retries_after_failed_import(self):
        db = FailingInsertDatabase(str(self.root / "failing.db"))
        importer = RunImporter(db=db, analyzer=self.analyzer)

        results = await asyncio.gather(
            importer.ingest_files("runner-1", [("race.fit", b"run-10k")]),
            importer.ingest_files("runner-1", [("race.fit", b"run-10k")]),
        )

        # Nothing was stored, so neither batch may call the file a duplicate.
        self.assertEqual([r.skipped for r in results], [0, 0])
        for result in results:
            self.assertEqual(result.errors, ["race.fit: Could not save run: database is locked"])
        self.assertEqual(db.get_count(), 0)
        self.assertEqual(importer._key_locks, {})

    async def test_athlete_profile_sets_reference_heart_rates(self):
        baseline = await self.importer.ingest_files("runner-1", [("a.fit", b"run-10k")])
        self.db.upsert_athlete_profile("runner-2", max_hr=205, resting_hr=45)
        tuned = await self.importer.ingest_files("runner-2", [("a.fit", b"run-10k")])

        self.assertLess(tuned.runs[0].trimp, baseline.runs[0].trimp)

    async def test_ingest_paths_reads_files_and_reports_missing(self):
        good = self.root / "good.fit"
        good.write_bytes(b"run-10k")
        missing = self.root / "gone.fit"

        outcome = await self.importer.ingest_paths("runner-1", [str(good), str(missing)])

        self.assertEqual(outcome.accepted, 1)
        self.assertEqual(len(outcome.errors), 1)
        self.assertTrue(outcome.errors[0].startswith("gone.fit: "))

    async def test_strava_runs_are_imported_once(self):
        activities = [
            {"id": 111, "type": "Run", "name": "Lunch Run", "distance": 8000.0,
             "moving_time": 2400, "elapsed_time": 2500, "average_heartrate": 151.4,
             "max_heartrate": 170.2, "start_date": "2026-02-03T12:00:00Z"},
            {"id": 222, "type": "Ride", "name": "Spin", "distance": 20000.0, "moving_time": 3600},
            {"id": 333, "type": "VirtualRun", "name": "Treadmill", "distance": 20.0, "moving_time": 20},
        ]

        first = await self.importer.ingest_strava_activities("runner-1", activities)
        second = await self.importer.ingest_strava_activities("runner-1", activities)

        self.assertEqual(first.accepted, 1)
        self.assertEqual(first.errors, ["strava_333: Activity too short"])
        self.assertEqual(second.accepted, 0)
        self.assertEqual(second.skipped, 1)

        row = self.db.get_run("runner-1", "strava_111")
        self.assertEqual(row["workout_name"], "Lunch Run")
        self.assertEqual(row["data_source"], "strava_sync")
        self.assertEqual(row["avg_hr"], 151)
        self.assertEqual(row["avg_pace_str"], "5:00")


class RealFitIngestTests(unittest.IsolatedAsyncioTestCase):
    """End-to-end through fitparse with generated FIT files."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db = DatabaseManager(os.path.join(self.temp_dir.name, "runs.db"))
        self.importer = RunImporter(db=self.db, analyzer=FitAnalyzer())

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_batch_of_real_files(self):
        run_file = build_activity(hr_samples=[100] * 60 + [165] * 60)
        ride_file = build_activity(sport=SPORT_CYCLING, distance_m=30000.0)
        truncated = run_file[: len(run_file) - 40]

        outcome = await self.importer.ingest_files("runner-1", [
            ("A.fit", run_file),
            ("B.fit", ride_file),
            ("A.fit", run_file),
            ("C.fit", truncated),
        ])

        self.assertEqual(outcome.accepted, 1)
        self.assertEqual(outcome.skipped, 1)
        self.assertEqual(outcome.errors[0], "B.fit: Not a running activity (cycling)")
        self.assertTrue(outcome.errors[1].startswith("C.fit: Could not decode FIT file"))

        record = outcome.runs[0]
        self.assertEqual(record.distance_km, 10.0)
        self.assertEqual(record.avg_pace_str, "5:00")
        self.assertAlmostEqual(record.pct_z1 + record.pct_z4, 100.0, places=1)


class DatabaseManagerTests(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db = DatabaseManager(os.path.join(self.temp_dir.name, "runs.db"))

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_migration_adds_zone_columns_to_old_schema(self):
        path = os.path.join(self.temp_dir.name, "old.db")
        conn = sqlite3.connect(path)
        conn.execute("CREATE TABLE runs (id INTEGER PRIMARY KEY, user_id TEXT, filename TEXT, date TEXT)")
        conn.commit()
        conn.close()

        db = DatabaseManager(path)
        with db.get_connection() as conn:
            columns = [info[1] for info in conn.execute("PRAGMA table_info(runs)").fetchall()]
        self.assertIn("pct_z1", columns)
        self.assertIn("pct_z5", columns)

    def test_profile_upsert_keeps_unset_fields(self):
        self.db.upsert_athlete_profile("runner-1", max_hr=190, resting_hr=50)
        self.db.upsert_athlete_profile("runner-1", max_hr=188)
        profile = self.db.get_athlete_profile("runner-1")
        self.assertEqual(profile["max_hr"], 188)
        self.assertEqual(profile["resting_hr"], 50)

    def test_active_plan_round_trip(self):
        plan_id = self.db.insert_training_plan("runner-1", {"weeks": []}, 12, start_date="2026-01-04")
        self.assertTrue(self.db.update_plan_json(plan_id, {"weeks": [{"week_number": 1}]}))
        plan = self.db.get_active_plan("runner-1")
        self.assertEqual(plan["plan_json"], {"weeks": [{"week_number": 1}]})
        self.assertIsNone(self.db.get_active_plan("runner-2"))


if __name__ == "__main__":
    unittest.main()
