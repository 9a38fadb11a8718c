"""Wire models: REST bodies and push messages, validated at the ingestion boundary."""

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Mapping, Optional, Self, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from matchsync.core.exceptions import (
    InvalidMessageError,
    InvalidNotationError,
    StaleMessageError,
)
from matchsync.core.models import (
    TIME_CONTROLS,
    JoinQueueResult,
    MatchSnapshot,
    MoveRecord,
    Pairing,
)
from matchsync.core.notation import is_valid_fen, split_uci
from matchsync.core.shared_types import GameType, MatchStatus, MessageType


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """The backend sends local date-times without offset. Read those as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# --- RESPONSE MODELS ---
class MatchResponse(WireModel):
    id: int
    player1_id: int = Field(alias="player1Id")
    player2_id: Optional[int] = Field(default=None, alias="player2Id")
    status: MatchStatus
    current_ply: int = Field(default=0, alias="currentPly", ge=0)
    fen_current: str = Field(alias="fenCurrent")
    last_move_uci: Optional[str] = Field(default=None, alias="lastMoveUci")
    game_type: GameType = Field(alias="gameType")
    started_at: Optional[datetime] = Field(default=None, alias="startedAt")
    finished_at: Optional[datetime] = Field(default=None, alias="finishedAt")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    draw_offered_by_player_id: Optional[int] = Field(
        default=None, alias="drawOfferedByPlayerId"
    )
    player1_time_left_seconds: Optional[int] = Field(
        default=None, alias="player1TimeLeftSeconds"
    )
    player2_time_left_seconds: Optional[int] = Field(
        default=None, alias="player2TimeLeftSeconds"
    )
    last_move_at: Optional[datetime] = Field(default=None, alias="lastMoveAt")

    @field_validator("fen_current")
    @classmethod
    def validate_fen(cls, value: str) -> str:
        if not is_valid_fen(value):
            raise InvalidNotationError(
                f"Cannot interpret fenCurrent as a position: {value!r}"
            )
        return value.strip()

    def to_snapshot(self) -> MatchSnapshot:
        """Convert into the boundary model. Missing clocks default to the game type's initial time."""
        initial = TIME_CONTROLS[self.game_type].initial_seconds
        return MatchSnapshot(
            id=self.id,
            player1_id=self.player1_id,
            player2_id=self.player2_id,
            game_type=self.game_type,
            status=self.status,
            position_notation=self.fen_current,
            current_ply=self.current_ply,
            player1_time_left_seconds=(
                initial
                if self.player1_time_left_seconds is None
                else self.player1_time_left_seconds
            ),
            player2_time_left_seconds=(
                initial
                if self.player2_time_left_seconds is None
                else self.player2_time_left_seconds
            ),
            last_move_notation=self.last_move_uci,
            last_move_at=_as_utc(self.last_move_at),
            draw_offered_by_player_id=self.draw_offered_by_player_id,
            started_at=_as_utc(self.started_at),
            created_at=_as_utc(self.created_at),
            finished_at=_as_utc(self.finished_at),
        )

    @classmethod
    def from_snapshot(cls, snapshot: MatchSnapshot) -> Self:
        return cls(
            id=snapshot.id,
            player1_id=snapshot.player1_id,
            player2_id=snapshot.player2_id,
            status=snapshot.status,
            current_ply=snapshot.current_ply,
            fen_current=snapshot.position_notation,
            last_move_uci=snapshot.last_move_notation,
            game_type=snapshot.game_type,
            started_at=snapshot.started_at,
            finished_at=snapshot.finished_at,
            created_at=snapshot.created_at,
            draw_offered_by_player_id=snapshot.draw_offered_by_player_id,
            player1_time_left_seconds=snapshot.player1_time_left_seconds,
            player2_time_left_seconds=snapshot.player2_time_left_seconds,
            last_move_at=snapshot.last_move_at,
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class MoveHistoryResponse(WireModel):
    ply: int
    move_notation: str = Field(alias="moveNotation")
    from_square: str = Field(alias="fromSquare")
    to_square: str = Field(alias="toSquare")
    fen_after: Optional[str] = Field(default=None, alias="fenAfter")
    check: Optional[bool] = None
    checkmate: Optional[bool] = None

    def to_record(self) -> MoveRecord:
        return MoveRecord(
            ply=self.ply,
            move_notation=self.move_notation,
            from_square=self.from_square,
            to_square=self.to_square,
            fen_after=self.fen_after,
            check=bool(self.check),
            checkmate=bool(self.checkmate),
        )


class MatchReference(WireModel):
    """Matchmaking push that only names the match."""

    id: int


class QueueStatusResponse(WireModel):
    """Body of a join call that did not pair the player right away."""

    status: Literal["waiting"]


# --- REQUEST MODELS ---
class MoveBody(WireModel):
    """Body of a move, both for the push channel and the REST fallback."""

    move_uci: str = Field(alias="moveUci")

    @field_validator("move_uci")
    @classmethod
    def validate_move(cls, value: str) -> str:
        move = value.strip().lower()
        split_uci(move)
        return move


class CreateMatchBody(WireModel):
    player2_id: int = Field(alias="player2Id")
    game_type: GameType = Field(default=GameType.RAPID, alias="gameType")


# --- PUSH MESSAGES ---
class SnapshotMessage(WireModel):
    """Every push kind except ERROR carries the full match."""

    type: Literal["MOVE_MADE", "RESIGNED", "DRAW", "DRAW_OFFERED", "DRAW_DECLINED"]
    match: MatchResponse
    move_notation: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("moveUci", "moveNotation")
    )
    resigned_player_id: Optional[int] = Field(
        default=None, alias="resignedPlayerId"
    )


class ErrorMessage(WireModel):
    type: Literal["ERROR"]
    error: Optional[str] = None


PushMessage = Annotated[
    Union[SnapshotMessage, ErrorMessage], Field(discriminator="type")
]
_PUSH_ADAPTER: TypeAdapter[PushMessage] = TypeAdapter(PushMessage)

KNOWN_MESSAGE_TYPES = frozenset(message_type.value for message_type in MessageType)


def parse_push_message(raw: Mapping[str, Any]) -> SnapshotMessage | ErrorMessage:
    """
    Validate an inbound game-topic message.
    ----

    * unknown (or missing) type --> StaleMessageError, the caller should drop it.
    * known type with a malformed body --> InvalidMessageError
    """
    message_type = raw.get("type") if isinstance(raw, Mapping) else None
    if not isinstance(message_type, str) or message_type not in KNOWN_MESSAGE_TYPES:
        raise StaleMessageError(f"Unknown push message type: {message_type!r}")

    try:
        return _PUSH_ADAPTER.validate_python(dict(raw))
    except ValidationError as exc:
        raise InvalidMessageError(
            f"Malformed {message_type} message: {exc.error_count()} error(s)"
        ) from exc


def parse_match(raw: Mapping[str, Any]) -> MatchSnapshot:
    """Validate a match body (REST response or matchmaking push) and convert it to a snapshot."""
    try:
        return MatchResponse.model_validate(raw).to_snapshot()
    except ValidationError as exc:
        raise InvalidMessageError(
            f"Malformed match body: {exc.error_count()} error(s)"
        ) from exc


def parse_matchmaking_message(raw: Mapping[str, Any]) -> Pairing:
    """
    Validate a matchmaking-topic message.
    ----

    * the bare match, or an envelope carrying it under 'match' --> Pairing with the snapshot
    * only the match id (no 'player1Id') --> Pairing with the id alone
    * anything that does not name a match --> StaleMessageError
    """
    if not isinstance(raw, Mapping) or ("id" not in raw and "match" not in raw):
        raise StaleMessageError("Matchmaking message does not name a match.")
    body = raw.get("match") if "match" in raw else raw
    if not isinstance(body, Mapping):
        raise InvalidMessageError("Matchmaking message 'match' is not an object.")
    if "player1Id" not in body and "player1_id" not in body:
        try:
            reference = MatchReference.model_validate(body)
        except ValidationError as exc:
            raise InvalidMessageError("Matchmaking message has no valid match id.") from exc
        return Pairing(match_id=reference.id)
    match = parse_match(body)
    return Pairing(match_id=match.id, match=match)


def parse_join_response(raw: Mapping[str, Any] | None) -> JoinQueueResult:
    if raw is None:
        return JoinQueueResult()
    if "id" in raw:
        return JoinQueueResult(match=parse_match(raw))
    try:
        QueueStatusResponse.model_validate(raw)
    except ValidationError as exc:
        raise InvalidMessageError("Unexpected join queue response.") from exc
    return JoinQueueResult()

