"""
Hand-written stand-ins for the collaborators of the services: repository, credentials, realtime transport.
Shared by the transport and service tests.
"""

import asyncio
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Mapping

from matchsync.core.exceptions import RepositoryError, SyncError, TransportError
from matchsync.core.models import (
    JoinQueueResult,
    MatchId,
    MatchSnapshot,
    MoveRecord,
    PlayerId,
)
from matchsync.core.notation import STARTING_FEN
from matchsync.core.shared_types import GameType, MatchStatus
from matchsync.transport.channel import InboundMessage

AFTER_E4_FEN = "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1"
AFTER_E4_E5_FEN = "rnbqkbnr/pppp1ppp/8/4p3/4P3/8/PPPP1PPP/RNBQKBNR w KQkq - 0 2"

WHITE_ID = 1
BLACK_ID = 2


def make_snapshot(
    match_id: MatchId = 7,
    ply: int = 0,
    fen: str = STARTING_FEN,
    status: MatchStatus = MatchStatus.ONGOING,
    **changes: Any,
) -> MatchSnapshot:
    snapshot = MatchSnapshot(
        id=match_id,
        player1_id=WHITE_ID,
        player2_id=BLACK_ID,
        game_type=GameType.BLITZ,
        status=status,
        position_notation=fen,
        current_ply=ply,
        player1_time_left_seconds=180,
        player2_time_left_seconds=180,
    )
    return replace(snapshot, **changes)


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Let the event loop run until the predicate holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not reached in time")
        await asyncio.sleep(0.001)


# --- CREDENTIALS ---
class StaticCredentials:
    def __init__(self, token: str | None = "token-1", user_id: PlayerId | None = WHITE_ID) -> None:
        self.token = token
        self.user_id = user_id
        self.invalidated = False

    def current_token(self) -> str | None:
        return self.token

    def current_user_id(self) -> PlayerId | None:
        return self.user_id

    def invalidate(self) -> None:
        self.token = None
        self.invalidated = True


# --- REALTIME TRANSPORT ---
class FakeChannel:
    """In-memory channel. push() delivers a message, drop() simulates a lost connection."""

    def __init__(self) -> None:
        self.subscriptions: list[str] = []
        self.published: list[tuple[str, dict[str, Any]]] = []
        self.closed = False
        self.fail_publish = False
        self._inbox: asyncio.Queue[InboundMessage | None] = asyncio.Queue()

    async def subscribe(self, topic: str) -> None:
        self.subscriptions.append(topic)

    async def unsubscribe(self, topic: str) -> None:
        if topic in self.subscriptions:
            self.subscriptions.remove(topic)

    async def publish(self, destination: str, payload: Mapping[str, Any]) -> None:
        if self.fail_publish:
            raise TransportError("Publish failed")
        self.published.append((destination, dict(payload)))

    async def receive(self) -> InboundMessage:
        message = await self._inbox.get()
        if message is None:
            raise TransportError("Connection lost")
        return message

    async def close(self) -> None:
        self.closed = True

    def push(self, topic: str, body: Mapping[str, Any]) -> None:
        self._inbox.put_nowait(InboundMessage(topic=topic, body=body))

    def drop(self) -> None:
        self._inbox.put_nowait(None)


class FakeConnector:
    """Opens FakeChannels. Errors listed in 'failures' are raised by the first open() calls, in order."""

    def __init__(self, failures: list[SyncError] | None = None) -> None:
        self.failures = list(failures or [])
        self.channels: list[FakeChannel] = []
        self.tokens: list[str | None] = []

    async def open(self, token: str | None) -> FakeChannel:
        self.tokens.append(token)
        if self.failures:
            raise self.failures.pop(0)
        channel = FakeChannel()
        self.channels.append(channel)
        return channel

    @property
    def channel(self) -> FakeChannel:
        return self.channels[-1]


# --- REPOSITORY ---
class MockMatchRepository:
    """
    Mock the MatchRepository with a dictionary of snapshots.

    Every call is recorded. 'responses' overrides what a mutating call returns, 'errors' makes a call raise,
    and 'gate' (when set) holds every call until the event is set.
    """

    def __init__(self, *snapshots: MatchSnapshot) -> None:
        self.matches: dict[MatchId, MatchSnapshot] = {s.id: s for s in snapshots}
        self.calls: list[tuple[Any, ...]] = []
        self.responses: dict[str, MatchSnapshot] = {}
        self.errors: dict[str, SyncError] = {}
        self.join_result = JoinQueueResult()
        self.user_match_list: list[MatchSnapshot] = []
        self.history: list[MoveRecord] = []
        self.gate: asyncio.Event | None = None

    async def _call(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        if self.gate is not None:
            await self.gate.wait()
        if name in self.errors:
            raise self.errors[name]

    def called(self, name: str) -> list[tuple[Any, ...]]:
        return [call[1:] for call in self.calls if call[0] == name]

    async def _action(self, name: str, match_id: MatchId) -> MatchSnapshot:
        await self._call(name, match_id)
        return self.responses.get(name) or self.matches[match_id]

    async def get(self, match_id: MatchId) -> MatchSnapshot:
        await self._call("get", match_id)
        if match_id not in self.matches:
            raise RepositoryError(f"Match {match_id} not found")
        return self.matches[match_id]

    async def submit_move(
        self,
        match_id: MatchId,
        from_square: str,
        to_square: str,
        promotion: str | None = None,
    ) -> MatchSnapshot:
        await self._call("submit_move", match_id, from_square, to_square, promotion)
        return self.responses.get("submit_move") or self.matches[match_id]

    async def resign(self, match_id: MatchId) -> MatchSnapshot:
        return await self._action("resign", match_id)

    async def offer_draw(self, match_id: MatchId) -> MatchSnapshot:
        return await self._action("offer_draw", match_id)

    async def accept_draw(self, match_id: MatchId) -> MatchSnapshot:
        return await self._action("accept_draw", match_id)

    async def decline_draw(self, match_id: MatchId) -> MatchSnapshot:
        return await self._action("decline_draw", match_id)

    async def join_queue(self, game_type: GameType) -> JoinQueueResult:
        await self._call("join_queue", game_type)
        return self.join_result

    async def leave_queue(self) -> None:
        await self._call("leave_queue")

    async def move_history(self, match_id: MatchId) -> list[MoveRecord]:
        await self._call("move_history", match_id)
        return list(self.history)

    async def user_matches(self, player_id: PlayerId) -> list[MatchSnapshot]:
        await self._call("user_matches", player_id)
        return list(self.user_match_list)

    async def create_match(
        self, player2_id: PlayerId, game_type: GameType
    ) -> MatchSnapshot:
        await self._call("create_match", player2_id, game_type)
        match_id = max(self.matches, default=0) + 1
        snapshot = make_snapshot(
            match_id, player2_id=player2_id, game_type=game_type, created_at=datetime.now(timezone.utc)
        )
        self.matches[match_id] = snapshot
        return snapshot
