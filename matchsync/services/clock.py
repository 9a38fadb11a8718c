"""
ClockEstimator: live per-side remaining time, derived from a discrete server snapshot.

The server only stores each side's remaining time as of the last move. Between snapshots, the side to move
is "burning" time. estimate() re-derives what its clock should show now. It holds no state and starts no
timers: callers re-invoke it on their own tick (1s or finer).
"""

import time

from matchsync.core.models import ClockReading, MatchSnapshot
from matchsync.core.notation import side_to_move
from matchsync.core.shared_types import Color, MatchStatus


def wall_clock_millis() -> float:
    return time.time() * 1000


def estimate(
    snapshot: MatchSnapshot,
    now_millis: float,
    session_start_millis: float | None = None,
) -> ClockReading:
    """
    Remaining seconds per side at 'now_millis' (unix epoch, milliseconds).
    ----

    * Finished match: stored values, verbatim. No decay.
    * Ongoing match: only the side to move loses time, counted from the last move (or the start of the match,
      or else 'session_start_millis'). Never below zero. The other side is returned unchanged.
    """
    white = float(snapshot.player1_time_left_seconds)
    black = float(snapshot.player2_time_left_seconds)
    if snapshot.status != MatchStatus.ONGOING:
        return ClockReading(white_seconds=white, black_seconds=black)

    reference_millis = _reference_millis(snapshot, session_start_millis)
    if reference_millis is None:
        return ClockReading(white_seconds=white, black_seconds=black)

    elapsed_seconds = max(0.0, now_millis - reference_millis) / 1000
    if side_to_move(snapshot.position_notation) == Color.WHITE:
        white = max(0.0, white - elapsed_seconds)
    else:
        black = max(0.0, black - elapsed_seconds)
    return ClockReading(white_seconds=white, black_seconds=black)


def is_flag_fallen(reading: ClockReading, color: Color) -> bool:
    return reading.for_color(color) <= 0.0


def _reference_millis(
    snapshot: MatchSnapshot, session_start_millis: float | None
) -> float | None:
    reference = snapshot.last_move_at or snapshot.started_at
    if reference is not None:
        return reference.timestamp() * 1000
    return session_start_millis
