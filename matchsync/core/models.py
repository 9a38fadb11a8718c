"""
Boundary layer data model(s).

These objects are what the services (synchronizer, matchmaking, clock) work with.
The wire layer (matchsync.api) converts the JSON it receives into these, so nothing below the API layer ever handles raw dicts.
"""

from dataclasses import dataclass
from datetime import datetime

from matchsync.core.notation import side_to_move
from matchsync.core.shared_types import (
    Color,
    ConnectionPhase,
    DrawNegotiation,
    GameType,
    MatchStatus,
)

# Type aliases to make the models easier to read
PlayerId = int
MatchId = int
Square = str


@dataclass(frozen=True)
class TimeControl:
    initial_seconds: int
    increment_seconds: int = 0


TIME_CONTROLS: dict[GameType, TimeControl] = {
    GameType.CLASSICAL: TimeControl(1800, 0),
    GameType.RAPID: TimeControl(600, 0),
    GameType.BLITZ: TimeControl(180, 2),
    GameType.BULLET: TimeControl(60, 1),
}


@dataclass(frozen=True)
class MatchSnapshot:
    """Authoritative server view of a match. Always replaced as a whole, never patched field by field."""

    id: MatchId
    player1_id: PlayerId
    player2_id: PlayerId | None
    game_type: GameType
    status: MatchStatus
    position_notation: str
    current_ply: int
    player1_time_left_seconds: int
    player2_time_left_seconds: int
    last_move_notation: str | None = None
    last_move_at: datetime | None = None
    draw_offered_by_player_id: PlayerId | None = None
    started_at: datetime | None = None
    created_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def side_to_move(self) -> Color:
        return side_to_move(self.position_notation)

    def color_of(self, player_id: PlayerId | None) -> Color | None:
        """player1 plays the white pieces. Anyone else (spectator / unknown identity) has no color."""
        if player_id is None:
            return None
        if player_id == self.player1_id:
            return Color.WHITE
        if player_id == self.player2_id:
            return Color.BLACK
        return None

    def opponent_of(self, player_id: PlayerId) -> PlayerId | None:
        if player_id == self.player1_id:
            return self.player2_id
        if player_id == self.player2_id:
            return self.player1_id
        return None

    def time_left(self, color: Color) -> int:
        return (
            self.player1_time_left_seconds
            if color == Color.WHITE
            else self.player2_time_left_seconds
        )

    def draw_negotiation(self, my_id: PlayerId | None) -> DrawNegotiation:
        offered_by = self.draw_offered_by_player_id
        if offered_by is None:
            return DrawNegotiation.NONE
        if offered_by == my_id:
            return DrawNegotiation.OFFERED_BY_ME
        return DrawNegotiation.OFFERED_BY_OPPONENT


@dataclass(frozen=True)
class MoveRecord:
    """One entry of the server's move history."""

    ply: int
    move_notation: str
    from_square: Square
    to_square: Square
    fen_after: str | None = None
    check: bool = False
    checkmate: bool = False


@dataclass(frozen=True)
class ClockReading:
    white_seconds: float
    black_seconds: float

    def for_color(self, color: Color) -> float:
        return self.white_seconds if color == Color.WHITE else self.black_seconds


@dataclass(frozen=True)
class Selection:
    """Selected square + the legal-target cache computed by the rules engine for it."""

    square: Square
    targets: tuple[Square, ...] = ()


@dataclass(frozen=True)
class PendingMove:
    """Optimistic move: submitted, not yet confirmed. The displayed position does NOT include it."""

    from_square: Square
    to_square: Square
    promotion: str | None
    base_ply: int
    submitted_at: float

    @property
    def implied_ply(self) -> int:
        return self.base_ply + 1

    @property
    def uci(self) -> str:
        return f"{self.from_square}{self.to_square}{self.promotion or ''}"


@dataclass
class LocalSessionState:
    """Client-only view of a match session. Owned (and only mutated) by the MatchSessionSynchronizer."""

    snapshot: MatchSnapshot
    my_id: PlayerId | None
    connection_phase: ConnectionPhase = ConnectionPhase.CONNECTING
    pending_move: PendingMove | None = None
    selection: Selection | None = None
    last_error: str | None = None

    @property
    def my_color(self) -> Color | None:
        return self.snapshot.color_of(self.my_id)

    @property
    def is_my_turn(self) -> bool:
        if self.snapshot.status != MatchStatus.ONGOING:
            return False
        color = self.my_color
        return color is not None and color == self.snapshot.side_to_move

    @property
    def draw_negotiation(self) -> DrawNegotiation:
        return self.snapshot.draw_negotiation(self.my_id)


@dataclass(frozen=True)
class JoinQueueResult:
    """Outcome of a REST join call: either paired right away, or waiting in the queue."""

    match: MatchSnapshot | None = None

    @property
    def pending(self) -> bool:
        return self.match is None


@dataclass(frozen=True)
class Pairing:
    """A matchmaking notice. The server may name only the match id, or send the whole match."""

    match_id: MatchId
    match: MatchSnapshot | None = None


@dataclass
class MatchmakingTicket:
    game_type: GameType
    joined_at: datetime
    match_id: MatchId | None = None
