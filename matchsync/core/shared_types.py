"""
Type definitions used across layers
"""

from enum import StrEnum


class GameType(StrEnum):
    CLASSICAL = "CLASSICAL"
    RAPID = "RAPID"
    BLITZ = "BLITZ"
    BULLET = "BULLET"


class MatchStatus(StrEnum):
    ONGOING = "ONGOING"
    PLAYER1_WON = "PLAYER1_WON"
    PLAYER2_WON = "PLAYER2_WON"
    DRAW = "DRAW"
    ABANDONED = "ABANDONED"

    @property
    def is_terminal(self) -> bool:
        return self != MatchStatus.ONGOING


class Color(StrEnum):
    WHITE = "white"
    BLACK = "black"

    @property
    def opposite(self) -> "Color":
        return Color.BLACK if self == Color.WHITE else Color.WHITE


class MessageType(StrEnum):
    """Discriminator of the push envelope. Values are the wire values."""

    MOVE_MADE = "MOVE_MADE"
    RESIGNED = "RESIGNED"
    DRAW = "DRAW"
    DRAW_OFFERED = "DRAW_OFFERED"
    DRAW_DECLINED = "DRAW_DECLINED"
    ERROR = "ERROR"


# --- Client-side state machines ---
class ConnectionPhase(StrEnum):
    CONNECTING = "connecting"
    LIVE = "live"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"


class SessionPhase(StrEnum):
    LOADING = "loading"
    LIVE = "live"
    ERRORED = "errored"
    CLOSED = "closed"


class MatchmakingPhase(StrEnum):
    IDLE = "idle"
    SEARCHING = "searching"
    MATCHED = "matched"
    CANCELLED = "cancelled"
    ERRORED = "errored"

    @property
    def is_resolved(self) -> bool:
        return self in (
            MatchmakingPhase.MATCHED,
            MatchmakingPhase.CANCELLED,
            MatchmakingPhase.ERRORED,
        )


class DrawNegotiation(StrEnum):
    # NOTE derived from MatchSnapshot.draw_offered_by_player_id, never stored on its own
    NONE = "none"
    OFFERED_BY_ME = "offered_by_me"
    OFFERED_BY_OPPONENT = "offered_by_opponent"
