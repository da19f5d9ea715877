# main.py
"""
PvP rating tracker.

Run:
    python main.py                 # poll on the configured interval
    python main.py --once          # one cycle, then exit
    python main.py --stats         # print history and time-of-day table
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from pvptracker.api_client import BattleNetAPIClient
from pvptracker.config import TrackerConfig, load_config
from pvptracker.database import Database
from pvptracker.errors import ConfigError, StorageError
from pvptracker.stats import HourlyStatsReporter
from pvptracker.tracker import PvPTracker
from pvptracker.ui import TerminalUI

logger = logging.getLogger("pvptracker")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Battle.net PvP rating tracker")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="Run a single poll cycle and exit")
    mode.add_argument("--stats", action="store_true", help="Print recorded statistics and exit")
    parser.add_argument("--bracket", help="Limit --stats to one bracket")
    parser.add_argument("--db", help="Path to SQLite database (overrides PVP_DB_PATH)")
    parser.add_argument("--interval", type=int, help="Poll interval in seconds (overrides PVP_POLL_INTERVAL_SECONDS)")
    parser.add_argument("--env-file", help="Load settings from this file instead of .env")
    parser.add_argument("--verbose", action="store_true", help="Verbose logging")
    return parser


def show_stats(db: Database, config: TrackerConfig, ui: TerminalUI, bracket: Optional[str] = None) -> int:
    character_id = db.find_character(config.character_name, config.realm_slug, config.region)
    if character_id is None:
        ui.show_error(f"No data recorded for {config.character_label}")
        return 0

    if bracket is not None:
        brackets: List[str] = [bracket]
    else:
        brackets = list(config.brackets) or db.get_tracked_brackets(character_id)

    reporter = HourlyStatsReporter()
    for name in brackets:
        changes = db.get_rating_changes(character_id, name)
        ui.show_rating_history(name, changes)
        if changes:
            ui.show_hourly_stats(reporter.aggregate(changes))
            ui.show_summary(reporter.summarize(changes))
    return 0


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handle(signum, frame):
        print("\nShutting down...")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.env_file)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 1
    if args.db:
        config.db_path = args.db
    if args.interval:
        config.poll_interval_seconds = args.interval

    ui = TerminalUI()

    try:
        if args.stats:
            with Database(config.db_path) as db:
                return show_stats(db, config, ui, bracket=args.bracket)

        try:
            config.validate_credentials()
        except ConfigError as e:
            logger.error("%s", e)
            return 1

        api_client = BattleNetAPIClient(
            config.client_id,
            config.client_secret,
            region=config.region,
            locale=config.locale,
            timeout_seconds=config.http_timeout_seconds,
        )

        with Database(config.db_path) as db:
            tracker = PvPTracker(db, api_client, config)

            if args.once:
                ui.show_cycle(tracker.poll_once())
                return 0

            stop_event = threading.Event()
            _install_signal_handlers(stop_event)
            ui.show_banner(config.character_label, config.brackets, config.poll_interval_seconds)
            tracker.run_forever(stop_event=stop_event, on_cycle=ui.show_cycle)
            return 0
    except StorageError as e:
        logger.error("Storage failure, stopping: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
