# pvptracker/tracker.py

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, List, Optional

from pvptracker.api_client import BattleNetAPIClient
from pvptracker.config import TrackerConfig
from pvptracker.database import Database
from pvptracker.detector import detect_change
from pvptracker.errors import AuthError, FetchError, PayloadError
from pvptracker.models import BracketPollResult, PollCycleResult

logger = logging.getLogger(__name__)


class PvPTracker:
    """Run poll cycles for one character across its brackets."""

    def __init__(
        self,
        db: Database,
        api_client: BattleNetAPIClient,
        config: TrackerConfig,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.db = db
        self.api_client = api_client
        self.config = config
        self.clock = clock

    def resolve_brackets(self, token: str) -> List[str]:
        """Configured brackets, or the ones the PvP summary lists when none are configured."""
        if self.config.brackets:
            return list(self.config.brackets)
        brackets = self.api_client.get_active_brackets(
            token, self.config.realm_slug, self.config.character_name
        )
        logger.info("Discovered brackets from PvP summary: %s", ", ".join(brackets) or "(none)")
        return brackets

    def process_bracket(self, token: str, character_id: int, bracket: str) -> BracketPollResult:
        """
        Fetch, diff and persist one bracket.

        FetchError and PayloadError propagate to the caller; StorageError too.
        """
        data = self.api_client.get_pvp_bracket(
            token, self.config.realm_slug, self.config.character_name, bracket
        )
        if data is None:
            logger.info("  %s: No data", bracket)
            return BracketPollResult(bracket=bracket, status="not_found")

        logger.info("  %s: Rating %s, Played %s", bracket, data.rating, data.season_played)

        previous = self.db.get_latest_snapshot(character_id, bracket)
        result = detect_change(previous, data)
        snapshot_id, _ = self.db.save_poll_result(
            character_id,
            bracket,
            data,
            delta=result.delta,
            captured_at=self.clock(),
        )

        if previous is None:
            logger.info("First snapshot recorded for bracket: %s", bracket)
            status = "first_snapshot"
        elif result.activity_detected:
            delta = result.delta
            logger.info(
                "Rating change detected! %s -> %s (%+d)",
                delta.old_rating, delta.new_rating, delta.rating_delta,
            )
            logger.info(
                "Games: +%s played, +%s won, +%s lost",
                delta.played_delta, delta.won_delta, delta.lost_delta,
            )
            status = "changed"
        else:
            if data.season_played < previous.season_played:
                logger.info(
                    "  %s: season counter dropped (%s -> %s), treating as season reset",
                    bracket, previous.season_played, data.season_played,
                )
            status = "unchanged"

        return BracketPollResult(
            bracket=bracket,
            status=status,
            snapshot_id=snapshot_id,
            rating=data.rating,
            season_played=data.season_played,
            delta=result.delta,
        )

    def poll_once(self, stop_event: Optional[threading.Event] = None) -> PollCycleResult:
        """
        One polling cycle across all brackets.

        An auth failure ends the cycle. A failed bracket is logged and skipped.
        Storage failures are not caught. When `stop_event` gets set, the cycle
        stops before the next bracket.
        """
        cycle = PollCycleResult(started_at=self.clock())
        logger.info("Polling %s for changes...", self.config.character_label)

        try:
            token = self.api_client.get_access_token()
        except AuthError as e:
            logger.error("Auth failed, skipping this cycle: %s", e)
            cycle.error = str(e)
            return cycle

        cycle.character_id = self.db.get_or_create_character(
            self.config.character_name, self.config.realm_slug, self.config.region
        )

        try:
            brackets = self.resolve_brackets(token)
        except (FetchError, PayloadError) as e:
            logger.error("Could not discover brackets: %s", e)
            cycle.error = str(e)
            return cycle

        for bracket in brackets:
            if stop_event is not None and stop_event.is_set():
                logger.info("Stop requested, skipping remaining brackets")
                break
            try:
                cycle.brackets.append(self.process_bracket(token, cycle.character_id, bracket))
            except (FetchError, PayloadError) as e:
                logger.error("Error polling %s: %s", bracket, e)
                cycle.brackets.append(BracketPollResult(bracket=bracket, status="error", error=str(e)))

        return cycle

    def run_forever(
        self,
        interval_seconds: Optional[int] = None,
        stop_event: Optional[threading.Event] = None,
        on_cycle: Optional[Callable[[PollCycleResult], None]] = None,
    ) -> int:
        """
        Poll, then sleep `interval_seconds`, until `stop_event` is set.

        Cycles never overlap. The wait is interruptible and a cycle in progress
        stops at the next bracket boundary.

        Returns:
            number of cycles run
        """
        interval = interval_seconds or self.config.poll_interval_seconds
        stop_event = stop_event or threading.Event()
        cycles = 0
        while not stop_event.is_set():
            cycle = self.poll_once(stop_event=stop_event)
            cycles += 1
            if on_cycle is not None:
                on_cycle(cycle)
            if stop_event.wait(interval):
                break
        return cycles
