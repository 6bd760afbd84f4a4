"""
Run Coach - Command Line Interface
Import FIT folders or Strava exports into the run log and print stats.
"""

import argparse
import asyncio
import json
import logging
import os
import sys

from constants import DB_PATH_ENV, DEFAULT_DB_PATH, FIT_EXTENSION
from core.run_stats import summarize_runs, weekly_summary
from db import DatabaseManager
from ingest import RunImporter

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _find_fit_files(folder_path):
    return sorted(
        os.path.join(folder_path, f)
        for f in os.listdir(folder_path)
        if f.lower().endswith(FIT_EXTENSION)
    )


def _print_outcome(outcome):
    print(f"\n✅ Imported {outcome.accepted} run(s), skipped {outcome.skipped} duplicate(s)")
    for run in outcome.runs:
        print(f"   {run.date[:10]}  {run.distance_km:6.2f} km  @ {run.avg_pace_str}/km  [{run.run_type}]  {run.workout_name}")
    if outcome.errors:
        print(f"\n⚠️ {len(outcome.errors)} file(s) failed:")
        for err in outcome.errors:
            print(f"   {err}")


def cmd_import(args, db):
    if not os.path.isdir(args.folder):
        print(f"❌ Error: {args.folder} is not a valid directory")
        return 1

    paths = _find_fit_files(args.folder)
    if not paths:
        print(f"⚠️ No .fit files found in {args.folder}")
        return 0

    print(f"📂 Importing {len(paths)} FIT file(s) from: {args.folder}")
    print("=" * 60)
    outcome = asyncio.run(RunImporter(db=db).ingest_paths(args.user, paths))
    _print_outcome(outcome)
    return 0


def cmd_strava(args, db):
    try:
        with open(args.export, 'r', encoding='utf-8') as fh:
            activities = json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        print(f"❌ Error reading {args.export}: {exc}")
        return 1
    if not isinstance(activities, list):
        print("❌ Error: expected a JSON list of Strava activities")
        return 1

    outcome = asyncio.run(RunImporter(db=db).ingest_strava_activities(args.user, activities))
    _print_outcome(outcome)
    return 0


def cmd_stats(args, db):
    runs = db.get_runs(args.user)
    summary = summarize_runs(runs)
    print(f"🏃 Runs:       {summary['total_runs']}  ({summary['total_distance_km']} km total)")
    print(f"📅 This week:  {summary['this_week_runs']} run(s), {summary['this_week_km']} km, load {summary['this_week_load']}")

    weekly = weekly_summary(runs)
    if not weekly.empty:
        print("\nLast weeks:")
        print(weekly.tail(args.weeks).to_string())
    return 0


def cmd_profile(args, db):
    if args.max_hr is not None or args.resting_hr is not None or args.name is not None:
        db.upsert_athlete_profile(args.user, max_hr=args.max_hr, resting_hr=args.resting_hr, name=args.name)
    profile = db.get_athlete_profile(args.user)
    if not profile:
        print(f"No profile stored for {args.user}")
        return 0
    print(f"👤 {profile['user_id']}: max HR {profile['max_hr'] or '-'} | resting HR {profile['resting_hr'] or '-'}")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog="runcoach", description="Import runs and report training stats.")
    parser.add_argument("--db", default=os.environ.get(DB_PATH_ENV, DEFAULT_DB_PATH),
                        help="SQLite database path (default: $%s or %s)" % (DB_PATH_ENV, DEFAULT_DB_PATH))
    parser.add_argument("--log-level", default="WARNING")
    sub = parser.add_subparsers(dest="command", required=True)

    p_import = sub.add_parser("import", help="Import every .fit file in a folder")
    p_import.add_argument("folder")
    p_import.add_argument("--user", required=True)
    p_import.set_defaults(func=cmd_import)

    p_strava = sub.add_parser("strava", help="Import a JSON list of Strava activities")
    p_strava.add_argument("export")
    p_strava.add_argument("--user", required=True)
    p_strava.set_defaults(func=cmd_strava)

    p_stats = sub.add_parser("stats", help="Show run totals and weekly load")
    p_stats.add_argument("--user", required=True)
    p_stats.add_argument("--weeks", type=int, default=8)
    p_stats.set_defaults(func=cmd_stats)

    p_profile = sub.add_parser("profile", help="Show or update heart-rate profile")
    p_profile.add_argument("--user", required=True)
    p_profile.add_argument("--max-hr", type=int)
    p_profile.add_argument("--resting-hr", type=int)
    p_profile.add_argument("--name")
    p_profile.set_defaults(func=cmd_profile)

    return parser


def main(argv=None):
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)
    db = DatabaseManager(args.db)
    return args.func(args, db)


if __name__ == "__main__":
    sys.exit(main())
