# tests/helpers.py

import os
import tempfile
from datetime import datetime, timedelta, timezone

from pvptracker.config import TrackerConfig
from pvptracker.database import Database
from pvptracker.errors import AuthError
from pvptracker.models import RatingDelta, SnapshotData

BASE_TIME = datetime(2025, 3, 1, 18, 0, tzinfo=timezone.utc)

ENV_VARS = [
    "BLIZZARD_CLIENT_ID",
    "BLIZZARD_CLIENT_SECRET",
    "PVP_CHARACTER_NAME",
    "PVP_REALM_SLUG",
    "PVP_REGION",
    "PVP_BRACKETS",
    "PVP_POLL_INTERVAL_SECONDS",
    "PVP_DB_PATH",
    "PVP_LOCALE",
    "PVP_HTTP_TIMEOUT_SECONDS",
]


def create_test_db():
    """Create a fresh database in a temp file. Returns (db, path)."""
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    return Database(db_path), db_path


def remove_test_db(db: Database, db_path: str) -> None:
    db.close()
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(db_path + suffix):
            os.remove(db_path + suffix)


def make_data(rating=1500, played=10, won=6, lost=4, weekly=(0, 0, 0), season_id=None) -> SnapshotData:
    return SnapshotData(
        rating=rating,
        season_played=played,
        season_won=won,
        season_lost=lost,
        weekly_played=weekly[0],
        weekly_won=weekly[1],
        weekly_lost=weekly[2],
        season_id=season_id,
    )


def make_delta(old=1500, new=1516, played=2, won=1, lost=1) -> RatingDelta:
    return RatingDelta(
        old_rating=old,
        new_rating=new,
        rating_delta=new - old,
        played_delta=played,
        won_delta=won,
        lost_delta=lost,
    )


def at(minutes: int) -> datetime:
    return BASE_TIME + timedelta(minutes=minutes)


def make_config(**overrides) -> TrackerConfig:
    values = dict(
        client_id="id",
        client_secret="secret",
        character_name="bigbrainwiz",
        realm_slug="malganis",
        region="us",
        brackets=["shuffle-priest-shadow", "blitz-priest-shadow"],
        poll_interval_seconds=300,
    )
    values.update(overrides)
    return TrackerConfig(**values)


class FakeAPIClient:
    """Scripted stand-in for BattleNetAPIClient."""

    def __init__(self, responses=None, active_brackets=None, auth_error=None):
        # bracket -> list of SnapshotData | None | Exception, consumed in order
        self.responses = {k: list(v) for k, v in (responses or {}).items()}
        self.active_brackets = active_brackets or []
        self.auth_error = auth_error
        self.fetched = []

    def get_access_token(self, force_refresh=False):
        if self.auth_error:
            raise AuthError(self.auth_error)
        return "token-123"

    def get_pvp_bracket(self, token, realm_slug, character_name, bracket):
        self.fetched.append(bracket)
        queue = self.responses.get(bracket) or [None]
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    def get_active_brackets(self, token, realm_slug, character_name):
        return list(self.active_brackets)
