"""
MatchSessionSynchronizer: the client-side state machine of one match.

Reconciles what the local player does (select, move, resign, draw negotiation) with what the server confirms,
over a push channel that may drop and a REST fallback. The server always wins: the local position only ever
changes when a server snapshot (push or REST response) is applied.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Self

from matchsync.api.models import (
    ErrorMessage,
    MoveBody,
    parse_push_message,
)
from matchsync.api.routes import Action, action_destination, game_topic
from matchsync.core.config import DEFAULT_PENDING_MOVE_TIMEOUT_SECONDS, SyncConfig
from matchsync.core.exceptions import (
    ActionRejectedError,
    IllegalMoveError,
    InvalidMessageError,
    InvalidNotationError,
    LoadError,
    MovePendingError,
    PromotionRequiredError,
    SessionStateError,
    StaleMessageError,
    SyncError,
    TransportError,
)
from matchsync.core.models import (
    ClockReading,
    LocalSessionState,
    MatchId,
    MatchSnapshot,
    MoveRecord,
    PendingMove,
    Selection,
)
from matchsync.core.notation import is_valid_square
from matchsync.core.shared_types import (
    ConnectionPhase,
    DrawNegotiation,
    MatchStatus,
    SessionPhase,
)
from matchsync.db.repository import CredentialProvider, MatchRepository
from matchsync.rules.oracle import LegalMoveOracle
from matchsync.services.clock import estimate, wall_clock_millis
from matchsync.transport.channel import Connector
from matchsync.transport.connection import ConnectionManager

logger = logging.getLogger(__name__)

StateListener = Callable[["MatchSessionSynchronizer"], None]
RestAction = Callable[[MatchId], Awaitable[MatchSnapshot]]


def check_fresh(held: MatchSnapshot, incoming: MatchSnapshot) -> None:
    """
    Ply-monotonicity check. Raises StaleMessageError if 'incoming' must not replace 'held'.
    ----

    * other match --> stale
    * ply not above the held one --> stale (duplicate, reordered or redelivered)
    """
    if incoming.id != held.id:
        raise StaleMessageError(f"Snapshot of match {incoming.id}, expected {held.id}.")
    if incoming.current_ply <= held.current_ply:
        raise StaleMessageError(
            f"Ply {incoming.current_ply} is not newer than ply {held.current_ply}."
        )


def is_same_ply_change(held: MatchSnapshot, incoming: MatchSnapshot) -> bool:
    """
    Resign and draw actions do not advance the ply. A snapshot at the held ply that differs from the held one
    is either such an action or a late redelivery of an older state: the two cannot be told apart from the data.
    A finished match never changes again.
    """
    return (
        incoming.id == held.id
        and incoming.current_ply == held.current_ply
        and not held.is_terminal
        and incoming != held
    )


class MatchSessionSynchronizer:
    """
    Session phases: LOADING -> LIVE | ERRORED, and any -> CLOSED on close().
    Within LIVE, the connection phase (CONNECTING / LIVE / RECONNECTING / DISCONNECTED) is tracked on the state.

    All mutation happens on the event loop, between awaits, so state changes are serialized without a lock.
    Network results that complete after close() are dropped. Listeners are called after every change.

    Pushes only ever move the match forward in ply. A push that changes the match at the held ply (resign, draw
    negotiation) is not trusted as is: it triggers a REST read of the match, and only the most recently started
    read may replace the snapshot at the held ply.
    """

    def __init__(
        self,
        match_id: MatchId,
        repository: MatchRepository,
        oracle: LegalMoveOracle,
        credentials: CredentialProvider,
        connection: ConnectionManager,
        pending_timeout_seconds: float = DEFAULT_PENDING_MOVE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.match_id = match_id
        self._repository = repository
        self._oracle = oracle
        self._credentials = credentials
        self._connection = connection
        self._pending_timeout = pending_timeout_seconds
        self._clock = clock

        self._phase = SessionPhase.LOADING
        self._state: LocalSessionState | None = None
        self._opening = False
        self._opened_at_millis: float | None = None
        self._listeners: list[StateListener] = []
        self._unsubscribe_topic: Callable[[], None] | None = None
        self._remove_phase_listener: Callable[[], None] | None = None
        self._pending_timer: asyncio.TimerHandle | None = None
        # bumped whenever a REST call that returns the match starts. Only the newest one may win at equal ply
        self._reads = 0
        self._refreshes: set[asyncio.Task[None]] = set()
        self.load_error: LoadError | None = None

    @classmethod
    def from_config(
        cls,
        match_id: MatchId,
        config: SyncConfig,
        repository: MatchRepository,
        oracle: LegalMoveOracle,
        credentials: CredentialProvider,
        connector: Connector,
    ) -> Self:
        connection = ConnectionManager(connector, config.reconnect_delay_seconds)
        return cls(
            match_id,
            repository,
            oracle,
            credentials,
            connection,
            pending_timeout_seconds=config.pending_move_timeout_seconds,
        )

    # --- Observers ---
    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def state(self) -> LocalSessionState | None:
        return self._state

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # --- Lifecycle ---
    async def open(self) -> None:
        """
        Load the initial snapshot, then subscribe to the match topic.
        ----

        Raises LoadError (terminal) if the match cannot be fetched. Does nothing more if close() was called
        while loading.
        """
        if self._phase != SessionPhase.LOADING or self._opening:
            raise SessionStateError(f"Cannot open a session that is {self._phase.value}.")
        self._opening = True

        try:
            snapshot = await self._repository.get(self.match_id)
        except SyncError as exc:
            if self._phase == SessionPhase.CLOSED:
                return
            self.load_error = LoadError(f"Cannot open match {self.match_id}: {exc}")
            logger.warning("%s", self.load_error)
            self._phase = SessionPhase.ERRORED
            self._notify()
            raise self.load_error from exc

        if self._phase == SessionPhase.CLOSED:
            return
        if snapshot.id != self.match_id:
            self.load_error = LoadError(
                f"Asked for match {self.match_id}, received match {snapshot.id}."
            )
            self._phase = SessionPhase.ERRORED
            self._notify()
            raise self.load_error

        self._opened_at_millis = wall_clock_millis()
        self._state = LocalSessionState(
            snapshot=snapshot, my_id=self._credentials.current_user_id()
        )
        self._phase = SessionPhase.LIVE
        self._unsubscribe_topic = self._connection.subscribe(
            game_topic(self.match_id), self.ingest_push
        )
        self._connection.connect(self._credentials)
        self._state.connection_phase = self._connection.phase
        self._remove_phase_listener = self._connection.add_phase_listener(
            self._on_connection_phase
        )
        logger.info("Opened match %s at ply %s", self.match_id, snapshot.current_ply)
        self._notify()

    async def close(self) -> None:
        """Unsubscribe and close the channel. Safe to call multiple times."""
        if self._phase == SessionPhase.CLOSED:
            return
        self._phase = SessionPhase.CLOSED
        self._cancel_pending_timer()
        for task in list(self._refreshes):
            task.cancel()

        if self._unsubscribe_topic is not None:
            self._unsubscribe_topic()
            self._unsubscribe_topic = None
        if self._remove_phase_listener is not None:
            self._remove_phase_listener()
            self._remove_phase_listener = None

        await self._connection.close()
        self._notify()

    # --- Local actions ---
    def select_square(self, square: str) -> Selection | None:
        """
        Update the selection (no network effect). Only on the local player's turn.
        ----

        * own piece --> select it, cache its legal targets
        * same square again --> clear the selection (toggle)
        * opponent piece / empty square with nothing selected --> no-op
        * opponent piece / empty square with a selection --> clear the selection

        NOTE clicking one of the cached targets is a move: call attempt_move() instead.
        """
        state = self._require_live()
        if not is_valid_square(square):
            raise InvalidNotationError(f"Cannot interpret {square!r} as a valid square name.")
        if not state.is_my_turn:
            return state.selection

        current = state.selection
        if current is not None and current.square == square:
            state.selection = None
            self._notify()
            return None

        position = state.snapshot.position_notation
        if self._oracle.piece_color_at(position, square) == state.my_color:
            targets = tuple(self._oracle.legal_targets(position, square))
            state.selection = Selection(square=square, targets=targets)
            self._notify()
            return state.selection

        if current is None:
            return None
        state.selection = None
        self._notify()
        return None

    async def attempt_move(
        self, from_square: str, to_square: str, promotion: str | None = None
    ) -> None:
        """
        Validate a move locally, then submit it (push channel when LIVE, REST otherwise).
        ----

        The displayed position does NOT change here: the move is tracked as pending until a server snapshot with
        a higher ply is applied, or until the pending timeout clears it.

        Raises (nothing mutated): ActionRejectedError, MovePendingError, IllegalMoveError, PromotionRequiredError.
        REST failures clear the pending move, are recorded as last_error and re-raised.
        """
        state = self._require_live()
        snapshot = state.snapshot
        if snapshot.status != MatchStatus.ONGOING:
            raise ActionRejectedError(f"Match is not ongoing. status: {snapshot.status.value}")

        self._expire_pending_move()
        if state.pending_move is not None:
            raise MovePendingError(
                f"Waiting for confirmation of {state.pending_move.uci}."
            )
        if not state.is_my_turn:
            raise ActionRejectedError("It is not your turn.")

        selection = state.selection
        if selection is None or selection.square != from_square:
            raise IllegalMoveError(f"Select the piece on {from_square} first.")
        if to_square not in selection.targets:
            raise IllegalMoveError(f"Move not allowed: {from_square}{to_square}")

        position = snapshot.position_notation
        if promotion is None and self._oracle.needs_promotion(
            position, from_square, to_square
        ):
            raise PromotionRequiredError(
                f"Choose a piece to promote to on {to_square}."
            )
        # legality only: the resulting position is not displayed before the server confirms it
        self._oracle.apply(position, from_square, to_square, promotion)

        pending = PendingMove(
            from_square=from_square,
            to_square=to_square,
            promotion=promotion.lower() if promotion else None,
            base_ply=snapshot.current_ply,
            submitted_at=self._clock(),
        )
        state.pending_move = pending
        state.selection = None
        state.last_error = None
        self._schedule_pending_timeout(pending)
        self._notify()

        body = MoveBody(move_uci=pending.uci).model_dump(by_alias=True)
        if await self._publish(Action.MOVE, body):
            return

        read = self._start_read()
        try:
            confirmed = await self._repository.submit_move(
                self.match_id, from_square, to_square, pending.promotion
            )
        except SyncError as exc:
            if not self._is_live_session():
                return
            if state.pending_move is pending:
                self._clear_pending_move()
            self._record_error(exc)
            raise
        self._apply_snapshot(confirmed, read)

    async def resign(self) -> None:
        """Idempotent: resigning a match that already ended is silently ignored."""
        state = self._require_player()
        if state.snapshot.is_terminal:
            logger.debug("Match %s already ended, ignoring resign", self.match_id)
            return
        await self._dispatch(Action.RESIGN, self._repository.resign)

    async def offer_draw(self) -> None:
        state = self._require_ongoing()
        negotiation = state.draw_negotiation
        if negotiation == DrawNegotiation.OFFERED_BY_ME:
            logger.debug("Draw already offered in match %s", self.match_id)
            return
        if negotiation == DrawNegotiation.OFFERED_BY_OPPONENT:
            raise ActionRejectedError(
                "Your opponent already offered a draw. Accept or decline it."
            )
        await self._dispatch(Action.OFFER_DRAW, self._repository.offer_draw)

    async def accept_draw(self) -> None:
        self._require_opponent_offer()
        await self._dispatch(Action.ACCEPT_DRAW, self._repository.accept_draw)

    async def decline_draw(self) -> None:
        self._require_opponent_offer()
        await self._dispatch(Action.DECLINE_DRAW, self._repository.decline_draw)

    # --- Server-originated state ---
    def ingest_push(self, body: object) -> bool:
        """
        Single entry point for pushed messages. Returns True if the snapshot was replaced.
        ----

        Unknown or malformed messages are dropped (logged, never raised). ERROR messages only set last_error.
        A push that changes the match without advancing the ply starts a read-back of the match and returns False.
        """
        if not self._is_live_session():
            logger.debug("Session %s is %s, dropping push", self.match_id, self._phase.value)
            return False

        try:
            message = parse_push_message(body)  # type: ignore[arg-type]
        except StaleMessageError as exc:
            logger.debug("Dropping push for match %s: %s", self.match_id, exc)
            return False
        except InvalidMessageError as exc:
            logger.warning("Dropping malformed push for match %s: %s", self.match_id, exc)
            return False

        if isinstance(message, ErrorMessage):
            assert self._state is not None
            self._state.last_error = message.error or "Unknown error"
            logger.info("Server error on match %s: %s", self.match_id, message.error)
            self._notify()
            return False

        return self._apply_snapshot(message.match.to_snapshot())

    def clock(self, now_millis: float | None = None) -> ClockReading:
        """Live clock display. Call on every UI tick."""
        state = self._require_live()
        now = wall_clock_millis() if now_millis is None else now_millis
        return estimate(state.snapshot, now, self._opened_at_millis)

    async def move_history(self) -> list[MoveRecord]:
        """Read-only: moves played so far according to the server."""
        if self._phase == SessionPhase.CLOSED:
            raise SessionStateError("Session is closed.")
        return await self._repository.move_history(self.match_id)

    # --- Internal: validation ---
    def _is_live_session(self) -> bool:
        return self._phase == SessionPhase.LIVE and self._state is not None

    def _require_live(self) -> LocalSessionState:
        if self._phase != SessionPhase.LIVE or self._state is None:
            raise SessionStateError(f"Session is {self._phase.value}.")
        return self._state

    def _require_player(self) -> LocalSessionState:
        state = self._require_live()
        if state.my_color is None:
            raise ActionRejectedError("You are not playing in this match.")
        return state

    def _require_ongoing(self) -> LocalSessionState:
        state = self._require_player()
        if state.snapshot.status != MatchStatus.ONGOING:
            raise ActionRejectedError(
                f"Match is not ongoing. status: {state.snapshot.status.value}"
            )
        return state

    def _require_opponent_offer(self) -> LocalSessionState:
        state = self._require_ongoing()
        if state.draw_negotiation != DrawNegotiation.OFFERED_BY_OPPONENT:
            raise ActionRejectedError("There is no draw offer from your opponent.")
        return state

    # --- Internal: dispatch ---
    async def _publish(self, action: Action, payload: dict[str, object]) -> bool:
        """Push channel first. False means: use the REST fallback."""
        if not self._connection.is_live:
            return False
        try:
            await self._connection.publish(
                action_destination(self.match_id, action), payload
            )
        except TransportError as exc:
            logger.info("Publishing %s failed (%s), using REST", action.value, exc)
            return False
        return True

    async def _dispatch(self, action: Action, rest_call: RestAction) -> None:
        if await self._publish(action, {}):
            return
        read = self._start_read()
        try:
            snapshot = await rest_call(self.match_id)
        except SyncError as exc:
            if not self._is_live_session():
                return
            self._record_error(exc)
            raise
        self._apply_snapshot(snapshot, read)

    def _record_error(self, exc: SyncError) -> None:
        assert self._state is not None
        logger.info("Action on match %s failed: %s", self.match_id, exc)
        self._state.last_error = str(exc)
        self._notify()

    # --- Internal: applying snapshots ---
    def _apply_snapshot(self, incoming: MatchSnapshot, read: int | None = None) -> bool:
        """
        Replace the snapshot wholesale, if it passes the ply-monotonicity check.
        ----

        read: number of the REST read that returned the snapshot, None for pushes.
        At the held ply, a push only triggers a refresh. A REST result is applied only if no newer read started.
        """
        if not self._is_live_session():
            return False
        state = self._state
        assert state is not None

        try:
            check_fresh(state.snapshot, incoming)
        except StaleMessageError as exc:
            if not is_same_ply_change(state.snapshot, incoming):
                logger.debug("Discarding snapshot for match %s: %s", self.match_id, exc)
                return False
            if read is None:
                logger.debug(
                    "Match %s changed at ply %s, reading it back",
                    self.match_id,
                    incoming.current_ply,
                )
                self._refresh()
                return False
            if read != self._reads:
                logger.debug("Discarding superseded read %s of match %s", read, self.match_id)
                return False

        position_changed = (
            incoming.position_notation != state.snapshot.position_notation
        )
        state.snapshot = incoming
        state.last_error = None

        pending = state.pending_move
        if pending is not None and (
            incoming.current_ply >= pending.implied_ply or incoming.is_terminal
        ):
            self._clear_pending_move()
        if state.selection is not None and (position_changed or not state.is_my_turn):
            state.selection = None

        self._notify()
        return True

    def _start_read(self) -> int:
        self._reads += 1
        return self._reads

    def _refresh(self) -> None:
        read = self._start_read()
        task = asyncio.get_running_loop().create_task(self._read_back(read))
        self._refreshes.add(task)
        task.add_done_callback(self._refreshes.discard)

    async def _read_back(self, read: int) -> None:
        try:
            snapshot = await self._repository.get(self.match_id)
        except SyncError as exc:
            logger.info("Reading back match %s failed: %s", self.match_id, exc)
            return
        self._apply_snapshot(snapshot, read)

    def _on_connection_phase(self, phase: ConnectionPhase) -> None:
        if self._state is None or self._phase != SessionPhase.LIVE:
            return
        self._state.connection_phase = phase
        self._notify()

    # --- Internal: pending move timeout ---
    def _expire_pending_move(self) -> None:
        state = self._state
        if state is None or state.pending_move is None:
            return
        if self._clock() - state.pending_move.submitted_at >= self._pending_timeout:
            logger.info(
                "Move %s not confirmed within %.1fs, clearing it",
                state.pending_move.uci,
                self._pending_timeout,
            )
            self._clear_pending_move()

    def _schedule_pending_timeout(self, pending: PendingMove) -> None:
        self._cancel_pending_timer()
        loop = asyncio.get_running_loop()
        self._pending_timer = loop.call_later(
            self._pending_timeout, self._on_pending_timeout, pending
        )

    def _on_pending_timeout(self, pending: PendingMove) -> None:
        self._pending_timer = None
        state = self._state
        if state is None or state.pending_move is not pending:
            return
        logger.info("Move %s timed out, clearing it", pending.uci)
        state.pending_move = None
        self._notify()

    def _clear_pending_move(self) -> None:
        assert self._state is not None
        self._state.pending_move = None
        self._cancel_pending_timer()

    def _cancel_pending_timer(self) -> None:
        if self._pending_timer is not None:
            self._pending_timer.cancel()
            self._pending_timer = None

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("State listener failed")
