# pvptracker/database.py

import logging
import os
import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

from pvptracker.errors import StorageError
from pvptracker.models import RatingChange, RatingDelta, Snapshot, SnapshotData

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "data/pvp_tracking.db"

# Fixed width so that text order in SQLite matches time order.
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def format_timestamp(value: Optional[datetime] = None) -> str:
    """Render an instant as fixed-width UTC ISO-8601 text."""
    if value is None:
        value = datetime.now(timezone.utc)
    elif value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class Database:
    """Handle all database operations."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = self._resolve_db_path(db_path)
        self.conn = None
        self.init_database()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @staticmethod
    def _resolve_db_path(db_path: str) -> str:
        """Return an absolute database path anchored to project root when relative."""
        if db_path == ":memory:":
            return db_path
        path = Path(db_path)
        if path.is_absolute():
            return str(path)

        project_root = Path(__file__).resolve().parents[1]
        return str(project_root / path)

    def init_database(self):
        """Open the connection and create tables if they don't exist."""
        try:
            if self.db_path != ":memory:":
                db_dir = os.path.dirname(self.db_path)
                if db_dir:
                    try:
                        os.makedirs(db_dir, exist_ok=True)
                    except OSError as e:
                        raise StorageError(f"Failed to create database directory '{db_dir}': {e}")

            # One connection, opened in the web app's lifespan, serves every request handler.
            self.conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA busy_timeout = 30000")
            self.conn.execute("PRAGMA foreign_keys = ON")
            self._set_wal_mode_best_effort()

            cursor = self.conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS characters (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    realm_slug TEXT NOT NULL,
                    region TEXT NOT NULL,
                    UNIQUE(name, realm_slug, region)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS pvp_snapshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    character_id INTEGER NOT NULL,
                    bracket TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    rating INTEGER NOT NULL,
                    season_played INTEGER NOT NULL,
                    season_won INTEGER NOT NULL,
                    season_lost INTEGER NOT NULL,
                    weekly_played INTEGER NOT NULL,
                    weekly_won INTEGER NOT NULL,
                    weekly_lost INTEGER NOT NULL,
                    season_id INTEGER,
                    FOREIGN KEY (character_id) REFERENCES characters(id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS rating_changes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    character_id INTEGER NOT NULL,
                    bracket TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    old_rating INTEGER NOT NULL,
                    new_rating INTEGER NOT NULL,
                    rating_change INTEGER NOT NULL,
                    games_played INTEGER NOT NULL CHECK (games_played > 0),
                    games_won INTEGER NOT NULL,
                    games_lost INTEGER NOT NULL,
                    FOREIGN KEY (character_id) REFERENCES characters(id)
                )
            """)

            self._migrate_schema()

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_snapshots_character_bracket
                ON pvp_snapshots(character_id, bracket, timestamp)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_changes_character_bracket
                ON rating_changes(character_id, bracket)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_changes_timestamp
                ON rating_changes(timestamp)
            """)

            self._commit_with_retry(context="initialize schema")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to initialize database '{self.db_path}': {e}")

    def _migrate_schema(self) -> None:
        """
        Apply additive, idempotent schema migrations for older local databases.
        """
        try:
            self._add_column_if_missing("pvp_snapshots", "season_id INTEGER", "season_id")
            self._normalize_legacy_timestamps("pvp_snapshots")
            self._normalize_legacy_timestamps("rating_changes")
            self._commit_with_retry(context="migrate schema commit")
        except sqlite3.Error as e:
            self.conn.rollback()
            raise StorageError(f"Failed to migrate database schema: {e}")

    def _normalize_legacy_timestamps(self, table_name: str) -> None:
        # Rows written with CURRENT_TIMESTAMP look like 'YYYY-MM-DD HH:MM:SS' (UTC).
        cursor = self.conn.cursor()
        cursor.execute(
            f"""
            UPDATE {table_name}
            SET timestamp = REPLACE(timestamp, ' ', 'T') || '.000000+00:00'
            WHERE LENGTH(timestamp) = 19
            """
        )
        if cursor.rowcount:
            logger.info("Normalized %s legacy timestamps in %s", cursor.rowcount, table_name)

    def _commit_with_retry(self, retries: int = 8, delay_seconds: float = 0.25, context: str = "commit") -> None:
        """
        Retry commit on transient SQLITE_BUSY/locked errors.
        """
        last_error = None
        for attempt in range(retries):
            try:
                self.conn.commit()
                return
            except sqlite3.OperationalError as e:
                last_error = e
                if "locked" not in str(e).lower() and "busy" not in str(e).lower():
                    raise
                if attempt == retries - 1:
                    break
                time.sleep(delay_seconds)
        try:
            self.conn.rollback()
        except sqlite3.Error as e:
            logger.warning("Rollback after failed %s also failed: %s", context, e)
        raise StorageError(
            f"Failed to {context}: database remained locked after {retries} attempts ({last_error})"
        )

    def _set_wal_mode_best_effort(self, retries: int = 5, delay_seconds: float = 0.2) -> None:
        """Try to enable WAL without failing startup if the DB is temporarily locked."""
        if self.db_path == ":memory:":
            return
        for attempt in range(retries):
            try:
                self.conn.execute("PRAGMA journal_mode = WAL")
                return
            except sqlite3.OperationalError as e:
                msg = str(e).lower()
                if "locked" not in msg and "busy" not in msg:
                    raise
                if attempt == retries - 1:
                    logger.warning("Could not enable WAL mode (database locked); continuing. (%s)", e)
                    return
                time.sleep(delay_seconds)

    def _get_table_columns(self, table_name: str) -> set:
        cursor = self.conn.cursor()
        cursor.execute(f"PRAGMA table_info({table_name})")
        return {row["name"] for row in cursor.fetchall()}

    def _add_column_if_missing(self, table_name: str, column_sql: str, column_name: str) -> None:
        columns = self._get_table_columns(table_name)
        if column_name not in columns:
            cursor = self.conn.cursor()
            cursor.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_sql}")

    # --- Characters ---

    @staticmethod
    def _normalize_identity(name: str, realm_slug: str, region: str) -> tuple:
        return (
            str(name).strip().lower(),
            str(realm_slug).strip().lower(),
            str(region).strip().lower(),
        )

    def get_or_create_character(self, name: str, realm_slug: str, region: str) -> int:
        """Return the character id for (name, realm, region), creating it on first sight."""
        key = self._normalize_identity(name, realm_slug, region)
        try:
            cursor = self.conn.cursor()
            cursor.execute(
                "INSERT OR IGNORE INTO characters (name, realm_slug, region) VALUES (?, ?, ?)",
                key,
            )
            created = cursor.rowcount > 0
            cursor.execute(
                "SELECT id FROM characters WHERE name = ? AND realm_slug = ? AND region = ?",
                key,
            )
            row = cursor.fetchone()
            self._commit_with_retry(context="commit character")
        except sqlite3.Error as e:
            self.conn.rollback()
            raise StorageError(f"Failed to resolve character '{name}-{realm_slug}-{region}': {e}")

        if created:
            logger.info("Tracking new character %s-%s (%s) as id %s", key[0], key[1], key[2], row["id"])
        return row["id"]

    def find_character(self, name: str, realm_slug: str, region: str) -> Optional[int]:
        """Look up a character id without creating it."""
        try:
            cursor = self.conn.cursor()
            cursor.execute(
                "SELECT id FROM characters WHERE name = ? AND realm_slug = ? AND region = ?",
                self._normalize_identity(name, realm_slug, region),
            )
            row = cursor.fetchone()
            return row["id"] if row else None
        except sqlite3.Error as e:
            raise StorageError(f"Failed to find character '{name}-{realm_slug}-{region}': {e}")

    def get_character(self, character_id: int) -> Optional[dict]:
        try:
            cursor = self.conn.cursor()
            cursor.execute(
                "SELECT id, name, realm_slug, region FROM characters WHERE id = ?",
                (character_id,),
            )
            row = cursor.fetchone()
            return dict(row) if row else None
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get character {character_id}: {e}")

    def get_all_characters(self) -> List[dict]:
        try:
            cursor = self.conn.cursor()
            cursor.execute("SELECT id, name, realm_slug, region FROM characters ORDER BY id")
            return [dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list characters: {e}")

    # --- Snapshots ---

    @staticmethod
    def _row_to_snapshot(row: sqlite3.Row) -> Snapshot:
        return Snapshot(
            snapshot_id=row["id"],
            character_id=row["character_id"],
            bracket=row["bracket"],
            captured_at=parse_timestamp(row["timestamp"]),
            rating=row["rating"],
            season_played=row["season_played"],
            season_won=row["season_won"],
            season_lost=row["season_lost"],
            weekly_played=row["weekly_played"],
            weekly_won=row["weekly_won"],
            weekly_lost=row["weekly_lost"],
            season_id=row["season_id"],
        )

    def _insert_snapshot(
        self,
        cursor: sqlite3.Cursor,
        character_id: int,
        bracket: str,
        data: SnapshotData,
        timestamp: str,
    ) -> int:
        cursor.execute("""
            INSERT INTO pvp_snapshots (
                character_id, bracket, timestamp, rating,
                season_played, season_won, season_lost,
                weekly_played, weekly_won, weekly_lost,
                season_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            character_id, bracket, timestamp, data.rating,
            data.season_played, data.season_won, data.season_lost,
            data.weekly_played, data.weekly_won, data.weekly_lost,
            data.season_id,
        ))
        return cursor.lastrowid

    def add_snapshot(
        self,
        character_id: int,
        bracket: str,
        data: SnapshotData,
        captured_at: Optional[datetime] = None,
    ) -> int:
        """
        Append a bracket snapshot. Identical readings are stored too.

        Returns:
            snapshot id
        """
        try:
            cursor = self.conn.cursor()
            snapshot_id = self._insert_snapshot(
                cursor, character_id, bracket, data, format_timestamp(captured_at)
            )
            self._commit_with_retry(context="commit snapshot")
            return snapshot_id
        except sqlite3.Error as e:
            self.conn.rollback()
            raise StorageError(f"Failed to add snapshot for character {character_id} [{bracket}]: {e}")

    def get_latest_snapshot(self, character_id: int, bracket: str) -> Optional[Snapshot]:
        """Most recent snapshot for the pair; later inserts win timestamp ties."""
        try:
            cursor = self.conn.cursor()
            cursor.execute("""
                SELECT * FROM pvp_snapshots
                WHERE character_id = ? AND bracket = ?
                ORDER BY timestamp DESC, id DESC
                LIMIT 1
            """, (character_id, bracket))
            row = cursor.fetchone()
            return self._row_to_snapshot(row) if row else None
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get latest snapshot for character {character_id} [{bracket}]: {e}")

    def get_snapshots(self, character_id: int, bracket: str, limit: Optional[int] = None) -> List[Snapshot]:
        """Snapshot time series for the pair, oldest first. `limit` keeps the newest N."""
        try:
            cursor = self.conn.cursor()
            query = """
                SELECT * FROM pvp_snapshots
                WHERE character_id = ? AND bracket = ?
                ORDER BY timestamp DESC, id DESC
            """
            params: List[Any] = [character_id, bracket]
            if limit is not None:
                query += " LIMIT ?"
                params.append(int(limit))
            cursor.execute(query, params)
            rows = cursor.fetchall()
            return [self._row_to_snapshot(row) for row in reversed(rows)]
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get snapshots for character {character_id} [{bracket}]: {e}")

    def snapshot_count(self, character_id: int, bracket: Optional[str] = None) -> int:
        try:
            cursor = self.conn.cursor()
            if bracket is None:
                cursor.execute(
                    "SELECT COUNT(*) FROM pvp_snapshots WHERE character_id = ?",
                    (character_id,),
                )
            else:
                cursor.execute(
                    "SELECT COUNT(*) FROM pvp_snapshots WHERE character_id = ? AND bracket = ?",
                    (character_id, bracket),
                )
            return int(cursor.fetchone()[0])
        except sqlite3.Error as e:
            raise StorageError(f"Failed to count snapshots for character {character_id}: {e}")

    # --- Rating changes ---

    @staticmethod
    def _row_to_rating_change(row: sqlite3.Row) -> RatingChange:
        return RatingChange(
            change_id=row["id"],
            character_id=row["character_id"],
            bracket=row["bracket"],
            recorded_at=parse_timestamp(row["timestamp"]),
            old_rating=row["old_rating"],
            new_rating=row["new_rating"],
            rating_change=row["rating_change"],
            games_played=row["games_played"],
            games_won=row["games_won"],
            games_lost=row["games_lost"],
        )

    @staticmethod
    def _insert_rating_change(
        cursor: sqlite3.Cursor,
        character_id: int,
        bracket: str,
        delta: RatingDelta,
        timestamp: str,
    ) -> int:
        if delta.played_delta <= 0:
            raise ValueError(f"Refusing to record a rating change with {delta.played_delta} games played")
        cursor.execute("""
            INSERT INTO rating_changes (
                character_id, bracket, timestamp, old_rating, new_rating, rating_change,
                games_played, games_won, games_lost
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            character_id, bracket, timestamp,
            delta.old_rating, delta.new_rating, delta.new_rating - delta.old_rating,
            delta.played_delta, delta.won_delta, delta.lost_delta,
        ))
        return cursor.lastrowid

    def add_rating_change(
        self,
        character_id: int,
        bracket: str,
        delta: RatingDelta,
        recorded_at: Optional[datetime] = None,
    ) -> int:
        """Append a detected rating change. Only valid for deltas with games played."""
        try:
            cursor = self.conn.cursor()
            change_id = self._insert_rating_change(
                cursor, character_id, bracket, delta, format_timestamp(recorded_at)
            )
            self._commit_with_retry(context="commit rating change")
            return change_id
        except sqlite3.Error as e:
            self.conn.rollback()
            raise StorageError(f"Failed to record rating change for character {character_id} [{bracket}]: {e}")

    def save_poll_result(
        self,
        character_id: int,
        bracket: str,
        data: SnapshotData,
        delta: Optional[RatingDelta] = None,
        captured_at: Optional[datetime] = None,
    ) -> tuple:
        """
        Persist one bracket reading and, if given, its rating change together.

        Both rows share the capture timestamp and land in one transaction.

        Returns:
            (snapshot_id, change_id or None)
        """
        timestamp = format_timestamp(captured_at)
        try:
            cursor = self.conn.cursor()
            snapshot_id = self._insert_snapshot(cursor, character_id, bracket, data, timestamp)
            change_id = None
            if delta is not None:
                change_id = self._insert_rating_change(cursor, character_id, bracket, delta, timestamp)
            self._commit_with_retry(context="commit poll result")
            return snapshot_id, change_id
        except ValueError:
            self.conn.rollback()
            raise
        except sqlite3.Error as e:
            self.conn.rollback()
            raise StorageError(f"Failed to save poll result for character {character_id} [{bracket}]: {e}")

    def get_rating_changes(self, character_id: int, bracket: Optional[str] = None) -> List[RatingChange]:
        """Recorded rating changes for a character, oldest first."""
        query = """
            SELECT * FROM rating_changes
            WHERE character_id = ?
        """
        params: List[Any] = [character_id]

        if bracket is not None:
            query += " AND bracket = ?"
            params.append(bracket)

        query += " ORDER BY timestamp ASC, id ASC"

        try:
            cursor = self.conn.cursor()
            cursor.execute(query, params)
            return [self._row_to_rating_change(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get rating changes for character {character_id}: {e}")

    def get_tracked_brackets(self, character_id: int) -> List[str]:
        """Brackets that have at least one snapshot, alphabetically."""
        try:
            cursor = self.conn.cursor()
            cursor.execute(
                "SELECT DISTINCT bracket FROM pvp_snapshots WHERE character_id = ? ORDER BY bracket",
                (character_id,),
            )
            return [row["bracket"] for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list brackets for character {character_id}: {e}")

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
