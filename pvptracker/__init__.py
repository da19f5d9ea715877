# pvptracker/__init__.py
"""
Battle.net PvP rating tracker.

Polls a character's PvP brackets, diffs each sample against the last stored
one, and keeps the snapshot history and detected rating changes in SQLite.
"""

__version__ = "0.3.0"
