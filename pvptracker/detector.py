# pvptracker/detector.py

from typing import Optional

from pvptracker.models import NO_ACTIVITY, ChangeResult, RatingDelta, Snapshot, SnapshotData


def detect_change(previous: Optional[Snapshot], current: SnapshotData) -> ChangeResult:
    """
    Decide whether games were played between two readings of one bracket.

    Activity is keyed on the season "played" counter only. A flat counter means
    nothing happened; a lower counter means the season rolled over. Neither
    produces a delta, whatever the rating did.

    Won/lost deltas are passed through as observed, even when they do not add up
    to the played delta.

    Args:
        previous: Latest stored snapshot for the pair, or None on first sight
        current: Freshly fetched reading

    Returns:
        ChangeResult with a RatingDelta when activity was detected
    """
    if previous is None:
        return NO_ACTIVITY

    played_delta = current.season_played - previous.season_played
    if played_delta <= 0:
        return NO_ACTIVITY

    return ChangeResult(
        activity_detected=True,
        delta=RatingDelta(
            old_rating=previous.rating,
            new_rating=current.rating,
            rating_delta=current.rating - previous.rating,
            played_delta=played_delta,
            won_delta=current.season_won - previous.season_won,
            lost_delta=current.season_lost - previous.season_lost,
        ),
    )
