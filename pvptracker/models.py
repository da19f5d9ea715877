# pvptracker/models.py

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class SnapshotData:
    """One bracket reading as returned by the API, before it is stored."""

    rating: int
    season_played: int
    season_won: int
    season_lost: int
    weekly_played: int = 0
    weekly_won: int = 0
    weekly_lost: int = 0
    season_id: Optional[int] = None


@dataclass(frozen=True)
class Snapshot:
    snapshot_id: int
    character_id: int
    bracket: str
    captured_at: datetime
    rating: int
    season_played: int
    season_won: int
    season_lost: int
    weekly_played: int
    weekly_won: int
    weekly_lost: int
    season_id: Optional[int] = None

    @property
    def data(self) -> SnapshotData:
        return SnapshotData(
            rating=self.rating,
            season_played=self.season_played,
            season_won=self.season_won,
            season_lost=self.season_lost,
            weekly_played=self.weekly_played,
            weekly_won=self.weekly_won,
            weekly_lost=self.weekly_lost,
            season_id=self.season_id,
        )


@dataclass(frozen=True)
class RatingDelta:
    old_rating: int
    new_rating: int
    rating_delta: int
    played_delta: int
    won_delta: int
    lost_delta: int


@dataclass(frozen=True)
class ChangeResult:
    activity_detected: bool
    delta: Optional[RatingDelta] = None


NO_ACTIVITY = ChangeResult(activity_detected=False)


@dataclass(frozen=True)
class RatingChange:
    change_id: int
    character_id: int
    bracket: str
    recorded_at: datetime
    old_rating: int
    new_rating: int
    rating_change: int
    games_played: int
    games_won: int
    games_lost: int

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["recorded_at"] = self.recorded_at.isoformat()
        return out


@dataclass
class HourlyBucket:
    hour: int
    games: int = 0
    wins: int = 0
    losses: int = 0
    rating_change: int = 0

    @property
    def win_rate(self) -> float:
        return (self.wins / self.games) * 100 if self.games > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["win_rate"] = round(self.win_rate, 1)
        return out


@dataclass
class BracketPollResult:
    bracket: str
    status: str
    snapshot_id: Optional[int] = None
    rating: Optional[int] = None
    season_played: Optional[int] = None
    delta: Optional[RatingDelta] = None
    error: Optional[str] = None


@dataclass
class PollCycleResult:
    started_at: datetime
    character_id: Optional[int] = None
    brackets: List[BracketPollResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def changes(self) -> List[BracketPollResult]:
        return [b for b in self.brackets if b.status == "changed"]

    @property
    def failed(self) -> List[BracketPollResult]:
        return [b for b in self.brackets if b.status == "error"]
