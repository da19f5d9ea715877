# pvptracker/stats.py

from datetime import tzinfo
from typing import Any, Dict, Iterable, List, Optional

from pvptracker.models import HourlyBucket, RatingChange


class HourlyStatsReporter:
    """Aggregate recorded rating changes by hour of day."""

    def __init__(self, tz: Optional[tzinfo] = None):
        # None means the machine's local time zone.
        self.tz = tz

    def _hour_of(self, change: RatingChange) -> int:
        return change.recorded_at.astimezone(self.tz).hour

    def aggregate(self, changes: Iterable[RatingChange]) -> List[HourlyBucket]:
        """
        Sum games, wins, losses and rating per hour bucket.

        Only hours with at least one change are returned, ordered 0..23.
        """
        buckets: Dict[int, HourlyBucket] = {}
        for change in changes:
            hour = self._hour_of(change)
            bucket = buckets.get(hour)
            if bucket is None:
                bucket = buckets[hour] = HourlyBucket(hour=hour)
            bucket.games += change.games_played
            bucket.wins += change.games_won
            bucket.losses += change.games_lost
            bucket.rating_change += change.rating_change
        return [buckets[hour] for hour in sorted(buckets)]

    @staticmethod
    def summarize(changes: List[RatingChange]) -> Dict[str, Any]:
        """Totals across a change history (expects oldest-first order)."""
        games = sum(c.games_played for c in changes)
        wins = sum(c.games_won for c in changes)
        return {
            "changes": len(changes),
            "games": games,
            "wins": wins,
            "losses": sum(c.games_lost for c in changes),
            "net_rating": sum(c.rating_change for c in changes),
            "win_rate": round((wins / games) * 100, 1) if games > 0 else 0.0,
            "first_rating": changes[0].old_rating if changes else None,
            "last_rating": changes[-1].new_rating if changes else None,
        }
