# pvptracker/ui.py

from datetime import tzinfo
from typing import Any, Dict, List, Optional

from pvptracker.models import HourlyBucket, PollCycleResult, RatingChange


class TerminalUI:
    """Simple terminal output for the tracker."""

    def __init__(self, tz: Optional[tzinfo] = None):
        self.tz = tz

    @staticmethod
    def _signed(value: int) -> str:
        return f"+{value}" if value >= 0 else str(value)

    def show_banner(self, label: str, brackets: List[str], interval_seconds: int):
        print("Starting PvP tracker...")
        print(f"Character: {label}")
        print(f"Brackets: {', '.join(brackets) if brackets else '(from PvP summary)'}")
        print(f"Poll interval: {interval_seconds / 60:g} minutes")
        print("Press Ctrl+C to stop.\n")

    def show_cycle(self, cycle: PollCycleResult):
        """One line per bracket for the cycle just finished."""
        if cycle.error:
            self.show_error(f"Poll failed: {cycle.error}")
            return
        for result in cycle.brackets:
            if result.status == "not_found":
                print(f"  {result.bracket}: No data")
            elif result.status == "error":
                print(f"  {result.bracket}: ERROR {result.error}")
            else:
                print(f"  {result.bracket}: Rating {result.rating}, Played {result.season_played}")
            if result.status == "changed" and result.delta is not None:
                print(f"  >>> CHANGE DETECTED! Rating {self._signed(result.delta.rating_delta)}")

    def show_rating_history(self, bracket: str, changes: List[RatingChange]):
        """Display recorded rating changes for a bracket."""
        if not changes:
            print(f"\n{bracket}: No rating changes recorded yet")
            return

        print(f"\n=== {bracket} Rating History ===")
        print("Timestamp                 | Rating Change | W/L    | New Rating")
        print("-" * 70)
        for change in changes:
            ts = change.recorded_at.astimezone(self.tz).strftime("%Y-%m-%d %H:%M:%S %z")
            wl = f"{change.games_won}W/{change.games_lost}L"
            print(
                f"{ts:<25} | {self._signed(change.rating_change):>13} | {wl:<6} | {change.new_rating}"
            )

    def show_hourly_stats(self, buckets: List[HourlyBucket]):
        """Display the time-of-day table."""
        print("\n--- Time of Day Analysis ---")
        if not buckets:
            print("  (no data)")
            return
        for bucket in buckets:
            print(
                f"  {bucket.hour:02d}:00: {bucket.games} games, "
                f"{self._signed(bucket.rating_change)} rating, {bucket.win_rate:.1f}% win rate"
            )

    def show_summary(self, summary: Dict[str, Any]):
        if not summary.get("changes"):
            return
        print(
            f"\nTotal: {summary['games']} games, {summary['wins']}W/{summary['losses']}L "
            f"({summary['win_rate']:.1f}%), net {self._signed(summary['net_rating'])} "
            f"({summary['first_rating']} -> {summary['last_rating']})"
        )

    def show_error(self, message: str):
        """Display error message."""
        print(f"\nERROR: {message}\n")
