"""Naming of push topics, publish destinations and REST endpoints."""

from enum import StrEnum

from matchsync.core.models import MatchId, PlayerId
from matchsync.core.shared_types import GameType


class Action(StrEnum):
    """Outbound actions. The value is the suffix of both the publish destination and the REST route."""

    MOVE = "move"
    RESIGN = "resign"
    OFFER_DRAW = "draw"
    ACCEPT_DRAW = "draw/accept"
    DECLINE_DRAW = "draw/decline"


# --- Push channel ---
def game_topic(match_id: MatchId) -> str:
    return f"/topic/game/{match_id}"


def matchmaking_topic(player_id: PlayerId) -> str:
    return f"/topic/matchmaking/{player_id}"


def action_destination(match_id: MatchId, action: Action) -> str:
    return f"/app/game/{match_id}/{action.value}"


# --- REST ---
def match_path(match_id: MatchId) -> str:
    return f"/api/matches/{match_id}"


def action_path(match_id: MatchId, action: Action) -> str:
    return f"{match_path(match_id)}/{action.value}"


def history_path(match_id: MatchId) -> str:
    return f"{match_path(match_id)}/history"


def user_matches_path(player_id: PlayerId) -> str:
    return f"/api/matches/user/{player_id}"


CREATE_MATCH_PATH = "/api/matches"
LEAVE_QUEUE_PATH = "/api/matchmaking/leave"


def join_queue_path(game_type: GameType) -> str:
    return f"/api/matchmaking/join?gameType={game_type.value}"
