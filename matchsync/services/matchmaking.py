"""MatchmakingSession: join a queue for a game type, and find out which match the server paired us into."""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Self

from matchsync.api.models import parse_matchmaking_message
from matchsync.api.routes import matchmaking_topic
from matchsync.core.config import DEFAULT_MATCHMAKING_POLL_SECONDS, SyncConfig
from matchsync.core.exceptions import (
    AuthenticationError,
    InvalidMessageError,
    SessionStateError,
    StaleMessageError,
    SyncError,
)
from matchsync.core.models import (
    MatchId,
    MatchmakingTicket,
    MatchSnapshot,
    Pairing,
    PlayerId,
)
from matchsync.core.shared_types import GameType, MatchmakingPhase, MatchStatus
from matchsync.db.repository import CredentialProvider, MatchRepository
from matchsync.transport.channel import Connector
from matchsync.transport.connection import ConnectionManager

logger = logging.getLogger(__name__)

# server and client clocks are not in sync: accept matches created slightly before we joined
CLOCK_SKEW_ALLOWANCE = timedelta(seconds=5)

MatchmakingListener = Callable[["MatchmakingSession"], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MatchmakingSession:
    """
    Phases: IDLE -> SEARCHING -> MATCHED | CANCELLED | ERRORED. A resolved session may be started again.

    Pairing is detected by whichever comes first: the REST join response, a push on the player's matchmaking
    topic, or the bounded poll of the player's matches. The first one wins, the others are ignored.
    """

    def __init__(
        self,
        repository: MatchRepository,
        credentials: CredentialProvider,
        connection: ConnectionManager,
        poll_interval_seconds: float | None = DEFAULT_MATCHMAKING_POLL_SECONDS,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._repository = repository
        self._credentials = credentials
        self._connection = connection
        self._poll_interval = poll_interval_seconds
        self._now = now

        self._phase = MatchmakingPhase.IDLE
        self._listeners: list[MatchmakingListener] = []
        self._unsubscribe_topic: Callable[[], None] | None = None
        self._poll_task: asyncio.Task[None] | None = None
        # bumped on every start / cancel. In-flight completions of an older attempt are ignored
        self._attempt = 0
        self.ticket: MatchmakingTicket | None = None
        self.match: MatchSnapshot | None = None
        self._match_id: MatchId | None = None
        self.last_error: SyncError | None = None

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        repository: MatchRepository,
        credentials: CredentialProvider,
        connector: Connector,
    ) -> Self:
        connection = ConnectionManager(connector, config.reconnect_delay_seconds)
        return cls(
            repository,
            credentials,
            connection,
            poll_interval_seconds=config.matchmaking_poll_seconds,
        )

    @property
    def phase(self) -> MatchmakingPhase:
        return self._phase

    @property
    def match_id(self) -> MatchId | None:
        return self._match_id

    def add_listener(self, listener: MatchmakingListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # --- Actions ---
    async def start(self, game_type: GameType) -> MatchSnapshot | None:
        """
        Enter the queue.
        ----

        Returns the match when the server paired us synchronously, None while still searching (or when a push
        named only the id of the match: see match_id).
        REST failures move the session to ERRORED and are re-raised.
        """
        if self._phase == MatchmakingPhase.SEARCHING:
            raise SessionStateError("Already searching for a match.")
        my_id = self._credentials.current_user_id()
        if my_id is None:
            raise SessionStateError("Cannot join the queue without a logged-in user.")

        self._attempt += 1
        attempt = self._attempt
        self.ticket = MatchmakingTicket(game_type=game_type, joined_at=self._now())
        self.match = None
        self._match_id = None
        self.last_error = None
        self._set_phase(MatchmakingPhase.SEARCHING)

        self._unsubscribe_topic = self._connection.subscribe(
            matchmaking_topic(my_id), self.ingest_push
        )
        self._connection.connect(self._credentials)

        try:
            result = await self._repository.join_queue(game_type)
        except SyncError as exc:
            if self._is_searching(attempt):
                self._fail(exc)
                raise
            return self.match

        if not self._is_searching(attempt):
            # resolved by a push (or cancelled) while the join call was in flight
            return self.match
        if result.match is not None:
            self._resolve(Pairing(match_id=result.match.id, match=result.match))
            return self.match

        logger.info("Waiting in the %s queue", game_type.value)
        if self._poll_interval:
            self._poll_task = asyncio.get_running_loop().create_task(
                self._poll(attempt, my_id)
            )
        return None

    async def cancel(self) -> None:
        """Leave the queue. Best-effort on the server side: the session always ends CANCELLED."""
        if self._phase != MatchmakingPhase.SEARCHING:
            return
        self._attempt += 1
        self._release()
        self._set_phase(MatchmakingPhase.CANCELLED)
        try:
            await self._repository.leave_queue()
        except SyncError as exc:
            logger.info("Leaving the queue failed: %s", exc)

    async def close(self) -> None:
        """Cancel any search and close the realtime channel."""
        await self.cancel()
        await self._connection.close()

    def ingest_push(self, body: Mapping[str, Any]) -> bool:
        """Handler of the matchmaking topic. Returns True if the push resolved the search."""
        if self._phase != MatchmakingPhase.SEARCHING:
            logger.debug("Not searching, dropping matchmaking push")
            return False
        try:
            pairing = parse_matchmaking_message(body)
        except StaleMessageError as exc:
            logger.debug("Dropping matchmaking push: %s", exc)
            return False
        except InvalidMessageError as exc:
            logger.warning("Dropping malformed matchmaking push: %s", exc)
            return False
        return self._resolve(pairing)

    # --- Internal ---
    async def _poll(self, attempt: int, my_id: PlayerId) -> None:
        """Bounded fallback for a dropped push: stops as soon as the search is resolved."""
        assert self._poll_interval is not None
        while self._is_searching(attempt):
            await asyncio.sleep(self._poll_interval)
            if not self._is_searching(attempt):
                return
            try:
                matches = await self._repository.user_matches(my_id)
            except AuthenticationError as exc:
                if self._is_searching(attempt):
                    self._fail(exc)
                return
            except SyncError as exc:
                logger.info("Matchmaking poll failed: %s", exc)
                continue
            if not self._is_searching(attempt):
                return
            found = self._pick_match(matches)
            if found is not None:
                self._resolve(Pairing(match_id=found.id, match=found))

    def _pick_match(self, matches: list[MatchSnapshot]) -> MatchSnapshot | None:
        """Newest ongoing match of the requested game type, created after we joined."""
        assert self.ticket is not None
        earliest = self.ticket.joined_at - CLOCK_SKEW_ALLOWANCE
        candidates = [
            match
            for match in matches
            if match.status == MatchStatus.ONGOING
            and match.game_type == self.ticket.game_type
            and match.created_at is not None
            and match.created_at >= earliest
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda match: (match.created_at, match.id))

    def _resolve(self, pairing: Pairing) -> bool:
        if self._phase != MatchmakingPhase.SEARCHING:
            return False
        match = pairing.match
        my_id = self._credentials.current_user_id()
        # a bare id cannot be checked: it arrived on our own matchmaking topic
        if (
            match is not None
            and my_id is not None
            and my_id not in (match.player1_id, match.player2_id)
        ):
            logger.debug("Match %s does not involve player %s, ignoring it", match.id, my_id)
            return False

        self.match = match
        self._match_id = pairing.match_id
        if self.ticket is not None:
            self.ticket.match_id = pairing.match_id
        self._release()
        logger.info("Paired into match %s", pairing.match_id)
        self._set_phase(MatchmakingPhase.MATCHED)
        return True

    def _fail(self, exc: SyncError) -> None:
        logger.warning("Matchmaking failed: %s", exc)
        self.last_error = exc
        self._release()
        self._set_phase(MatchmakingPhase.ERRORED)

    def _release(self) -> None:
        """Drop the topic subscription and stop polling. The channel itself stays open until close()."""
        if self._unsubscribe_topic is not None:
            self._unsubscribe_topic()
            self._unsubscribe_topic = None
        task, self._poll_task = self._poll_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _is_searching(self, attempt: int) -> bool:
        return self._phase == MatchmakingPhase.SEARCHING and attempt == self._attempt

    def _set_phase(self, phase: MatchmakingPhase) -> None:
        self._phase = phase
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Matchmaking listener failed")
