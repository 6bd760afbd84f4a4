import json
import logging
import sqlite3
from datetime import datetime, timezone

from constants import DEFAULT_DB_PATH, PLAN_STATUSES
from errors import DuplicateRunError, PersistenceFailure

logger = logging.getLogger(__name__)

RUN_COLUMNS = (
    'user_id', 'filename', 'date',
    'distance_km', 'duration_min', 'duration_sec',
    'avg_hr', 'max_hr', 'avg_pace_min_km', 'avg_pace_str',
    'calories', 'run_type', 'workout_name', 'trimp', 'data_source',
    'pct_z1', 'pct_z2', 'pct_z3', 'pct_z4', 'pct_z5',
)


def _utc_now_iso():
    return datetime.now(timezone.utc).isoformat()


class DatabaseManager:
    def __init__(self, db_path=DEFAULT_DB_PATH):
        self.db_path = db_path
        self.create_tables()

    def get_connection(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def create_tables(self):
        with self.get_connection() as conn:
            # One row per stored run; (user_id, filename) is the storage key
            conn.execute('''
                CREATE TABLE IF NOT EXISTS runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    date TEXT NOT NULL,
                    distance_km REAL NOT NULL,
                    duration_min REAL NOT NULL,
                    duration_sec INTEGER,
                    avg_hr INTEGER,
                    max_hr INTEGER,
                    avg_pace_min_km REAL,
                    avg_pace_str TEXT,
                    calories INTEGER,
                    run_type TEXT,
                    workout_name TEXT,
                    trimp REAL,
                    data_source TEXT,
                    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
                    UNIQUE (user_id, filename)
                )
            ''')
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_runs_user_date ON runs(user_id, date)"
            )

            conn.execute('''
                CREATE TABLE IF NOT EXISTS athlete_profile (
                    user_id TEXT PRIMARY KEY,
                    name TEXT,
                    max_hr INTEGER,
                    resting_hr INTEGER,
                    updated_at TEXT NOT NULL
                )
            ''')

            conn.execute('''
                CREATE TABLE IF NOT EXISTS training_plans (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    plan_type TEXT NOT NULL DEFAULT 'custom',
                    plan_json TEXT NOT NULL,
                    duration_weeks INTEGER NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active'
                        CHECK (status IN ('active', 'completed', 'deleted')),
                    start_date TEXT,
                    created_at TEXT NOT NULL
                )
            ''')

            # Migration: zone columns were added after the first schema.
            cursor = conn.execute("PRAGMA table_info(runs)")
            columns = [info[1] for info in cursor.fetchall()]

            migrations = {
                'pct_z1': 'REAL',
                'pct_z2': 'REAL',
                'pct_z3': 'REAL',
                'pct_z4': 'REAL',
                'pct_z5': 'REAL',
            }

            for col, dtype in migrations.items():
                if col not in columns:
                    logger.info("Migrating database: adding runs.%s column", col)
                    conn.execute(f"ALTER TABLE runs ADD COLUMN {col} {dtype}")

    # --- RUNS ---

    def run_exists(self, user_id, filename):
        with self.get_connection() as conn:
            cursor = conn.execute(
                "SELECT 1 FROM runs WHERE user_id = ? AND filename = ?",
                (user_id, filename),
            )
            return cursor.fetchone() is not None

    def insert_run(self, run):
        """
        Insert one derived run.

        Raises DuplicateRunError when the (user_id, filename) key is taken and
        PersistenceFailure for any other database error. Never overwrites.
        """
        values = tuple(run.get(col) for col in RUN_COLUMNS)
        placeholders = ', '.join('?' for _ in RUN_COLUMNS)
        try:
            with self.get_connection() as conn:
                cursor = conn.execute(
                    f"INSERT INTO runs ({', '.join(RUN_COLUMNS)}) VALUES ({placeholders})",
                    values,
                )
                return cursor.lastrowid
        except sqlite3.IntegrityError as exc:
            if 'UNIQUE' in str(exc).upper():
                raise DuplicateRunError(run.get('user_id'), run.get('filename')) from exc
            raise PersistenceFailure(str(exc)) from exc
        except sqlite3.Error as exc:
            raise PersistenceFailure(str(exc)) from exc

    def get_run(self, user_id, filename):
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM runs WHERE user_id = ? AND filename = ?",
                (user_id, filename),
            ).fetchone()
            return dict(row) if row else None

    def get_runs(self, user_id, since=None):
        """Runs for a user, newest first. ``since`` is an ISO date/datetime string."""
        query = "SELECT * FROM runs WHERE user_id = ?"
        params = [user_id]
        if since:
            query += " AND date >= ?"
            params.append(since)
        query += " ORDER BY date DESC"

        with self.get_connection() as conn:
            return [dict(row) for row in conn.execute(query, params).fetchall()]

    def get_count(self, user_id=None):
        with self.get_connection() as conn:
            if user_id is None:
                return conn.execute("SELECT COUNT(*) FROM runs").fetchone()[0]
            return conn.execute(
                "SELECT COUNT(*) FROM runs WHERE user_id = ?", (user_id,)
            ).fetchone()[0]

    def delete_run(self, user_id, filename):
        with self.get_connection() as conn:
            conn.execute(
                "DELETE FROM runs WHERE user_id = ? AND filename = ?",
                (user_id, filename),
            )

    # --- ATHLETE PROFILE ---

    def get_athlete_profile(self, user_id):
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT user_id, name, max_hr, resting_hr, updated_at FROM athlete_profile WHERE user_id = ?",
                (user_id,),
            ).fetchone()
            return dict(row) if row else None

    def upsert_athlete_profile(self, user_id, max_hr=None, resting_hr=None, name=None):
        """Create or patch a profile; None leaves the stored value untouched."""
        with self.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO athlete_profile (user_id, name, max_hr, resting_hr, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    name = COALESCE(excluded.name, athlete_profile.name),
                    max_hr = COALESCE(excluded.max_hr, athlete_profile.max_hr),
                    resting_hr = COALESCE(excluded.resting_hr, athlete_profile.resting_hr),
                    updated_at = excluded.updated_at
                """,
                (user_id, name, max_hr, resting_hr, _utc_now_iso()),
            )

    # --- TRAINING PLANS ---

    def insert_training_plan(self, user_id, plan_json, duration_weeks, start_date=None,
                             plan_type='custom', status='active'):
        if status not in PLAN_STATUSES:
            raise ValueError(f"Unknown plan status: {status}")
        with self.get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO training_plans
                    (user_id, plan_type, plan_json, duration_weeks, status, start_date, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    plan_type,
                    json.dumps(plan_json, default=str),
                    int(duration_weeks),
                    status,
                    start_date,
                    _utc_now_iso(),
                ),
            )
            return cursor.lastrowid

    def get_active_plan(self, user_id):
        """Most recently created active plan, with plan_json decoded."""
        with self.get_connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM training_plans
                WHERE user_id = ? AND status = 'active'
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                (user_id,),
            ).fetchone()
            if not row:
                return None
            plan = dict(row)
            plan['plan_json'] = json.loads(plan['plan_json']) if plan['plan_json'] else {}
            return plan

    def update_plan_json(self, plan_id, plan_json):
        with self.get_connection() as conn:
            cursor = conn.execute(
                "UPDATE training_plans SET plan_json = ? WHERE id = ?",
                (json.dumps(plan_json, default=str), plan_id),
            )
            return cursor.rowcount > 0
